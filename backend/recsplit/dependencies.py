"""
RecSplit Backend — FastAPI Dependency Providers
=================================================

What:  Builds the collaborators each request needs.
Why:   Routes stay thin and tests swap any collaborator through
       `app.dependency_overrides` without patching modules.
How:   Leaf providers (settings, metadata store, segmenter) are overridable;
       composite providers (factory, orchestrator, recording service) are
       assembled from them per request.

Caller identity:
    Authentication happens upstream. The trusted proxy in front of this
    service forwards the resolved user as `X-User-ID`; a request without it
    is rejected with 401.
"""

from typing import Optional

from fastapi import Depends, Header

from recsplit.config import Settings, settings
from recsplit.database import async_session_factory
from recsplit.exceptions import UnauthorizedError
from recsplit.services.metadata_store import MetadataStore
from recsplit.services.recording_service import RecordingService
from recsplit.services.segmenter import Segmenter
from recsplit.services.split_service import SplitOrchestrator
from recsplit.storage.factory import BlobStoreFactory

_metadata_store = MetadataStore(async_session_factory)


def get_settings() -> Settings:
    return settings


def get_metadata_store() -> MetadataStore:
    return _metadata_store


def get_segmenter(app_settings: Settings = Depends(get_settings)) -> Segmenter:
    return Segmenter(
        ffmpeg_binary=app_settings.ffmpeg_binary,
        ffprobe_binary=app_settings.ffprobe_binary,
    )


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError()
    return x_user_id.strip()


def get_blob_store_factory(
    metadata_store: MetadataStore = Depends(get_metadata_store),
    app_settings: Settings = Depends(get_settings),
) -> BlobStoreFactory:
    return BlobStoreFactory(metadata_store, app_settings)


def get_split_orchestrator(
    metadata_store: MetadataStore = Depends(get_metadata_store),
    blob_stores: BlobStoreFactory = Depends(get_blob_store_factory),
    segmenter: Segmenter = Depends(get_segmenter),
    app_settings: Settings = Depends(get_settings),
) -> SplitOrchestrator:
    return SplitOrchestrator(metadata_store, blob_stores, segmenter, app_settings)


def get_recording_service(
    metadata_store: MetadataStore = Depends(get_metadata_store),
    blob_stores: BlobStoreFactory = Depends(get_blob_store_factory),
    app_settings: Settings = Depends(get_settings),
) -> RecordingService:
    return RecordingService(metadata_store, blob_stores, app_settings)
