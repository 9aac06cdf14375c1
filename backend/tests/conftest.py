"""
RecSplit Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   A real in-memory SQLite database (aiosqlite) behind MetadataStore, a
       LocalBlobStore under tmp_path with failure injection, and a fake
       segmenter that writes chunk files instead of running ffmpeg.

Fixture Hierarchy (all function-scoped):
    ├── test_settings:    Settings pointing at tmp_path, fast cleanup retries
    ├── metadata_store:   MetadataStore over a fresh in-memory database
    ├── blob_store:       FlakyBlobStore (a LocalBlobStore that can fail on demand)
    ├── fake_segmenter:   FakeSegmenter producing N chunk files
    ├── orchestrator:     SplitOrchestrator wired from the above
    ├── make_recording:   inserts a parent recording row + its source blob
    └── test_client:      HTTPX AsyncClient with dependency overrides
"""

import os
import tempfile

# Must be set before anything from recsplit is imported: Settings() and the
# module-level engine read them at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="recsplit_test_")
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Set

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.pool import StaticPool

from recsplit.config import Settings
from recsplit.database import Base
from recsplit.exceptions import StorageError
from recsplit.models.recording import Recording
from recsplit.models.settings import StorageConfig, UserSettings
from recsplit.services.metadata_store import MetadataStore
from recsplit.services.segmenter import list_chunks
from recsplit.services.split_service import SplitOrchestrator
from recsplit.storage.base import BlobStore
from recsplit.storage.factory import BlobStoreFactory
from recsplit.storage.local import LocalBlobStore

PARENT_START = datetime(2024, 1, 15, 9, 0, 0)
SOURCE_BYTES = b"OggS-source-audio"


# ══════════════════════════════════════════════════════════════════════════
# Test doubles
# ══════════════════════════════════════════════════════════════════════════


class FlakyBlobStore(LocalBlobStore):
    """
    LocalBlobStore with switchable failures.

    fail_upload_at: 1-based index of the upload call that fails
    upload_error:   exception raised by that call (StorageError by default)
    fail_delete:    keys whose delete always raises StorageError
    fail_every_delete: every delete raises StorageError
    """

    def __init__(self, root: str):
        super().__init__(root)
        self.fail_upload_at: Optional[int] = None
        self.upload_error: Exception = StorageError(message="Injected upload failure")
        self.fail_delete: Set[str] = set()
        self.fail_every_delete = False
        self.upload_calls: List[str] = []
        self.delete_calls: List[str] = []

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        self.upload_calls.append(key)
        if self.fail_upload_at is not None and len(self.upload_calls) == self.fail_upload_at:
            raise self.upload_error
        await super().upload(key, data, content_type)

    async def delete(self, key: str) -> None:
        self.delete_calls.append(key)
        if self.fail_every_delete or key in self.fail_delete:
            raise StorageError(message="Injected delete failure", context={"key": key})
        await super().delete(key)

    def stored_keys(self) -> Set[str]:
        if not self.root.exists():
            return set()
        return {
            path.relative_to(self.root).as_posix()
            for path in self.root.rglob("*")
            if path.is_file()
        }


class SingleStoreFactory(BlobStoreFactory):
    """Hands out one fixed store regardless of the user's StorageConfig."""

    def __init__(self, metadata_store: MetadataStore, settings: Settings, store: BlobStore):
        super().__init__(metadata_store, settings)
        self._store = store

    def default_store(self) -> BlobStore:
        return self._store

    async def for_user(self, user_id: str) -> BlobStore:
        return self._store


class FakeSegmenter:
    """
    Stands in for Segmenter: writes `chunk_count` files matching the output
    pattern, or raises `error`.
    """

    def __init__(self):
        self.chunk_count = 2
        self.codec: Optional[str] = None
        self.error: Optional[Exception] = None
        self.available = True
        self.calls: List[dict] = []

    def is_available(self) -> bool:
        return self.available

    async def probe_audio_codec(self, input_path: Path, timeout: float) -> Optional[str]:
        return self.codec

    async def segment(self, input_path: Path, output_pattern: Path, segment_seconds: int, timeout: float):
        self.calls.append(
            {
                "input_path": input_path,
                "input_bytes": input_path.read_bytes(),
                "output_pattern": output_pattern,
                "segment_seconds": segment_seconds,
                "timeout": timeout,
            }
        )
        if self.error is not None:
            raise self.error
        for index in range(self.chunk_count):
            Path(str(output_pattern) % index).write_bytes(f"chunk-{index}".encode())
        return list_chunks(output_pattern)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def test_settings(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        storage_root=str(tmp_path / "blobs"),
        tmp_dir=str(work),
        segment_timeout_seconds=60,
        probe_timeout_seconds=5,
        default_split_segment_minutes=60,
        min_split_segment_seconds=60,
        cleanup_retry_attempts=2,
        cleanup_retry_max_wait=0.01,
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def metadata_store(session_factory):
    return MetadataStore(session_factory)


@pytest.fixture
def blob_store(test_settings):
    return FlakyBlobStore(test_settings.storage_root)


@pytest.fixture
def blob_factory(metadata_store, test_settings, blob_store):
    return SingleStoreFactory(metadata_store, test_settings, blob_store)


@pytest.fixture
def fake_segmenter():
    return FakeSegmenter()


@pytest.fixture
def orchestrator(metadata_store, blob_factory, fake_segmenter, test_settings):
    return SplitOrchestrator(metadata_store, blob_factory, fake_segmenter, test_settings)


@pytest_asyncio.fixture
async def make_recording(metadata_store, blob_store):
    """
    Insert a parent recording (and upload its source blob).

    Usage:
        parent = await make_recording(duration_ms=7_200_000)
    """

    async def _make(
        user_id: str = "user-1",
        provenance_id: str = "PLAUD123",
        duration_ms: int = 7_200_000,
        storage_path: Optional[str] = None,
        filename: str = "Team sync.ogg",
        **overrides,
    ) -> Recording:
        storage_path = storage_path or f"{user_id}/{provenance_id}.ogg"
        fields = dict(
            user_id=user_id,
            device_sn="SN-0001",
            provenance_id=provenance_id,
            filename=filename,
            duration=duration_ms,
            start_time=PARENT_START,
            end_time=PARENT_START + timedelta(milliseconds=duration_ms),
            filesize=len(SOURCE_BYTES),
            file_md5="0" * 32,
            storage_type="local",
            storage_path=storage_path,
            source_version="1.2.3",
            timezone=1,
            zonemins=60,
            scene=7,
        )
        fields.update(overrides)
        row = Recording(**fields)
        await blob_store.upload(storage_path, SOURCE_BYTES, "audio/ogg")

        async def insert(writer):
            return await writer.insert_recordings([row])

        await metadata_store.run_in_transaction(insert)
        blob_store.upload_calls.clear()
        return row

    return _make


@pytest_asyncio.fixture
async def set_segment_minutes(session_factory):
    async def _set(user_id: str, minutes: int) -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add(UserSettings(user_id=user_id, split_segment_minutes=minutes))

    return _set


@pytest_asyncio.fixture
async def set_storage_config(session_factory):
    async def _set(user_id: str, storage_type: str, local_path: Optional[str] = None) -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add(StorageConfig(user_id=user_id, storage_type=storage_type, local_path=local_path))

    return _set


@pytest_asyncio.fixture
async def test_client(metadata_store, blob_factory, fake_segmenter, test_settings):
    """
    AsyncClient against the real app with collaborators swapped for fakes.

    Usage:
        response = await test_client.post("/api/recordings/x/split", headers={"X-User-ID": "user-1"})
    """
    from recsplit import dependencies
    from recsplit.main import app

    app.dependency_overrides[dependencies.get_settings] = lambda: test_settings
    app.dependency_overrides[dependencies.get_metadata_store] = lambda: metadata_store
    app.dependency_overrides[dependencies.get_blob_store_factory] = lambda: blob_factory
    app.dependency_overrides[dependencies.get_segmenter] = lambda: fake_segmenter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
