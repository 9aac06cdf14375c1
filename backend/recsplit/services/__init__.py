# Services package init
"""
RecSplit Backend — Services Layer
===================================

Service Inventory:
    - SplitOrchestrator:  split pipeline with compensating rollback
    - RecordingService:   segment listing and deletion of local recordings
    - Segmenter:          ffmpeg / ffprobe subprocess wrapper
    - MetadataStore:      recording rows and per-user settings (SQLAlchemy)
    - audio_formats:      container and content-type selection
"""
