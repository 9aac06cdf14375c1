"""
RecSplit Backend — Local Filesystem Blob Store
================================================

What:  BlobStore backed by a directory on local disk.
Why:   Default backend for self-hosted installs.
How:   Keys map to paths below the store root; async file I/O via aiofiles.

Security Model:
    Keys are user-influenced (they derive from stored recording paths), so
    every key is checked before touching the filesystem:
    1. No `..` segments, no absolute paths, no NUL bytes
    2. The resolved path must stay below the store root
"""

import logging
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os

from recsplit.exceptions import StorageError
from recsplit.storage.base import BlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Stores each blob as one file under `root`."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        normalized = key.replace("\\", "/")
        if (
            not normalized
            or ".." in normalized.split("/")
            or normalized.startswith("/")
            or "\0" in normalized
        ):
            raise StorageError(
                message="Invalid storage key",
                context={"key": key, "reason": "path traversal detected"},
            )

        resolved = (self.root / normalized).resolve()
        if resolved == self.root or self.root not in resolved.parents:
            raise StorageError(
                message="Invalid storage key",
                context={"key": key, "reason": "path outside storage directory"},
            )
        return resolved

    async def download(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.error("Failed to read blob %s: %s", key, str(e))
            raise StorageError(
                message="Failed to download file from local storage",
                context={"key": key, "os_error": str(e)},
            ) from e

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Failed to write blob %s: %s", key, str(e))
            raise StorageError(
                message="Failed to upload file to local storage",
                context={"key": key, "os_error": str(e)},
            ) from e
        logger.debug("Stored blob %s (%d bytes, %s)", key, len(data), content_type)

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.debug("Delete: blob already gone: %s", key)
        except OSError as e:
            raise StorageError(
                message="Failed to delete file from local storage",
                context={"key": key, "os_error": str(e)},
            ) from e

    async def health_check(self) -> bool:
        probe = f".health-{uuid.uuid4().hex}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            await self.upload(probe, b"ok", "text/plain")
            await self.delete(probe)
            return True
        except (StorageError, OSError) as e:
            logger.warning("Local storage health check failed for %s: %s", self.root, e)
            return False
