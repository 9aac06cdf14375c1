"""
RecSplit Backend — Application Package
========================================

Splits long audio recordings into fixed-length segment recordings while
keeping the blob store and the metadata database consistent.

    ┌─────────────────────────────────────┐
    │        Routes (API Layer)           │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (SplitOrchestrator, …)    │  ← pipeline + compensation
    ├─────────────────────────────────────┤
    │  Segmenter │ BlobStore │ Metadata   │  ← ffmpeg, files, SQLAlchemy
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
