"""
RecSplit Backend — Per-User Blob Store Resolution
===================================================

What:  Resolves the BlobStore that holds a given user's recordings.
Why:   Storage is configured per user (StorageConfig row), falling back to the
       deployment default.
How:   `local` maps to LocalBlobStore rooted at the user's local_path or the
       configured storage_root. Remote backends are not provided by this
       service; a user configured for one gets a StorageError.
"""

import logging

from recsplit.config import Settings
from recsplit.exceptions import StorageError
from recsplit.services.metadata_store import MetadataStore
from recsplit.storage.base import BlobStore
from recsplit.storage.local import LocalBlobStore

logger = logging.getLogger(__name__)


class BlobStoreFactory:
    def __init__(self, metadata_store: MetadataStore, settings: Settings):
        self._metadata_store = metadata_store
        self._settings = settings

    def default_store(self) -> BlobStore:
        return LocalBlobStore(self._settings.storage_root)

    async def for_user(self, user_id: str) -> BlobStore:
        config = await self._metadata_store.get_storage_config(user_id)
        storage_type = (config.storage_type if config else self._settings.default_storage_type).lower()

        if storage_type == "local":
            root = (config.local_path if config and config.local_path else None) or self._settings.storage_root
            return LocalBlobStore(root)

        logger.error("User %s is configured for unsupported storage type %r", user_id, storage_type)
        raise StorageError(
            message=f"Storage type '{storage_type}' is not supported",
            context={"user_id": user_id, "storage_type": storage_type},
        )
