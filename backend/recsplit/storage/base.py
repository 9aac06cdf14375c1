"""
RecSplit Backend — Abstract Blob Store Interface
==================================================

What:  The narrow capability set the split pipeline needs from blob storage.
Why:   The pipeline must not care whether blobs live on local disk or in a
       remote object store; tests substitute their own implementations.
How:   Concrete stores inherit from BlobStore and implement the coroutines.

Contract:
    - Keys are opaque strings chosen by the caller.
    - Every failure is raised as StorageError (never a raw OSError or SDK error).
    - upload() overwrites an existing key.
    - delete() of a missing key is not an error.
"""

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """Key → bytes storage consumed by the split pipeline."""

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """
        Return the full contents stored under `key`.

        Raises:
            StorageError: key missing, invalid, or the backend failed.
        """
        ...

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        """
        Store `data` under `key`.

        Raises:
            StorageError: key invalid or the backend failed.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Remove `key`.

        Raises:
            StorageError: key invalid or the backend failed.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability/writability probe used by GET /health."""
        ...
