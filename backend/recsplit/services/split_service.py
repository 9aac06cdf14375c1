"""
RecSplit Backend — Split Orchestrator
=======================================

What:  Splits one long recording into N contiguous sub-recordings.
Why:   The operation spans three resources that fail independently: a temp
       working directory, the blob store and the metadata store. This module
       keeps them consistent.
How:   Check → download → segment → upload (with ledger) → one transaction →
       post-commit cleanup.

Orchestration Flow (POST /api/recordings/{id}/split):
    ┌─────────┐   ┌────────────┐   ┌──────────┐   ┌──────────┐   ┌─────────┐
    │ Resolve │──▶│ Existing   │──▶│ Download │──▶│ ffmpeg   │──▶│ Upload  │
    │ + owner │   │ split set  │   │ to tmp   │   │ segment  │   │ chunks  │
    └─────────┘   └────────────┘   └──────────┘   └──────────┘   └─────────┘
                        │ not forced                                  │
                        ▼                                             ▼
                   SplitConflict                     ┌────────────────────────┐
                                                     │ Transaction:           │
                                                     │  delete old rows       │
                                                     │  insert new rows       │
                                                     └────────────────────────┘
                                                                  │ committed
                                                                  ▼
                                                      delete replaced blobs

Compensation:
    Every key is recorded in the UploadLedger before its upload is attempted.
    A failure of kind storage/process/database/transaction/internal after
    that point deletes every recorded key (best effort) before the error
    propagates. Once the transaction commits the ledger is sealed and never
    rolls back; replaced blobs are deleted only after commit, so no committed
    row ever references a deleted blob.

Storage keys:
    <parent path without extension>_part<NNN>-<run token><ext>
    The run token keeps a re-split from overwriting blobs that committed rows
    (with their recorded MD5) still reference.

Concurrency:
    The existing-split check is read-then-act. Two concurrent forced
    re-splits of one recording both pass it; the unique provenance_id
    constraint makes the later commit fail, and that request's own uploads
    are compensated. The earlier request's result stands.
"""

import hashlib
import logging
import re
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import aiofiles
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from recsplit.config import Settings
from recsplit.exceptions import (
    ErrorKind,
    NotFoundError,
    RecSplitError,
    SplitFailedError,
    StorageError,
    ValidationError,
)
from recsplit.models.recording import Recording
from recsplit.provenance import format_part, split_provenance_id
from recsplit.services.audio_formats import (
    choose_output_container,
    container_of,
    content_type_for,
)
from recsplit.services.metadata_store import MetadataStore, RecordingWriter
from recsplit.services.segmenter import CHUNK_PATTERN, Segmenter
from recsplit.storage.base import BlobStore
from recsplit.storage.factory import BlobStoreFactory

logger = logging.getLogger(__name__)

TOO_SHORT_MESSAGE = "Recording is too short to split into multiple segments"

# Failure kinds after which already-uploaded segment blobs are deleted
_COMPENSATING_KINDS = frozenset(
    {
        ErrorKind.STORAGE,
        ErrorKind.PROCESS_TIMEOUT,
        ErrorKind.PROCESS_FAILURE,
        ErrorKind.DATABASE,
        ErrorKind.TRANSACTION,
        ErrorKind.INTERNAL,
    }
)


# ══════════════════════════════════════════════════════════════════════════
# Results
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SplitResult:
    segment_count: int
    recording_ids: List[str]


@dataclass(frozen=True)
class SplitConflict:
    """Segments already exist and the caller did not ask to replace them."""

    existing_count: int


SplitOutcome = Union[SplitResult, SplitConflict]


@dataclass(frozen=True)
class SegmentWindow:
    start_time: datetime
    end_time: datetime
    duration_ms: int


@dataclass(frozen=True)
class UploadedChunk:
    part_number: int
    storage_key: str
    size: int
    md5: str


# ══════════════════════════════════════════════════════════════════════════
# Pure helpers
# ══════════════════════════════════════════════════════════════════════════

def _to_millis(delta: timedelta) -> int:
    return delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000


def compute_segment_windows(
    start_time: datetime,
    end_time: datetime,
    segment_ms: int,
    count: int,
) -> List[SegmentWindow]:
    """
    Time ranges of `count` consecutive segments of a recording.

    Segment i covers [start + i*segment_ms, start + (i+1)*segment_ms); the
    last one ends at the parent's end_time (never before its own start), so
    the windows partition the parent with no gaps or overlaps.
    """
    if segment_ms <= 0:
        raise ValueError("segment_ms must be positive")
    span_ms = _to_millis(end_time - start_time)
    windows = []
    for index in range(count):
        start_offset = segment_ms * index
        if index < count - 1:
            end_offset = segment_ms * (index + 1)
        else:
            end_offset = max(start_offset, span_ms)
        windows.append(
            SegmentWindow(
                start_time=start_time + timedelta(milliseconds=start_offset),
                end_time=start_time + timedelta(milliseconds=end_offset),
                duration_ms=end_offset - start_offset,
            )
        )
    return windows


def segment_storage_key(parent_key: str, part_number: int, container: str, run_token: str) -> str:
    """`rec/a.mp3`, 2, `.ogg`, `ab12` -> `rec/a_part002-ab12.ogg`."""
    base = re.sub(r"\.[^./]+$", "", parent_key)
    return f"{base}_part{format_part(part_number)}-{run_token}{container}"


def segment_filename(parent_filename: str, part_number: int) -> str:
    base = re.sub(r"\.[^.]+$", "", parent_filename)
    return f"{base} (Part {part_number})"


async def delete_blob_quietly(store: BlobStore, key: str, settings: Settings) -> bool:
    """
    Best-effort delete: retried on StorageError, then logged and dropped.

    Returns True if the key is gone.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.cleanup_retry_attempts),
            wait=wait_exponential_jitter(initial=0.1, max=settings.cleanup_retry_max_wait),
            retry=retry_if_exception_type(StorageError),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        ):
            with attempt:
                await store.delete(key)
    except Exception as e:
        logger.warning(
            "Failed to delete blob %s: %s",
            key,
            e.message if isinstance(e, RecSplitError) else str(e),
        )
        return False
    return True


def remove_workdir(path: Path) -> None:
    """Remove a split's working directory; a failure is logged, never raised."""
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning("Failed to remove working directory %s: %s", path, e)


# ══════════════════════════════════════════════════════════════════════════
# Upload ledger
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class UploadLedger:
    """
    Keys whose upload was attempted during one split, in attempt order.

    Sealed at commit: from then on the keys belong to committed rows and
    rollback() refuses to touch them.
    """

    store: BlobStore
    settings: Settings
    keys: List[str] = field(default_factory=list)
    committed: bool = False

    def record(self, key: str) -> None:
        self.keys.append(key)

    def seal(self) -> None:
        self.committed = True

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    async def rollback(self, reason: str) -> int:
        """Delete every recorded key. Returns how many deletes failed."""
        if self.committed:
            logger.error("Refusing to roll back %d committed segment blobs (%s)", len(self.keys), reason)
            return 0
        if not self.keys:
            return 0
        logger.warning("Rolling back %d uploaded segment blobs after %s", len(self.keys), reason)
        failures = 0
        for key in self.keys:
            if not await delete_blob_quietly(self.store, key, self.settings):
                failures += 1
        if failures:
            logger.warning("%d segment blobs could not be removed and are now orphaned", failures)
        return failures


# ══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ══════════════════════════════════════════════════════════════════════════

class SplitOrchestrator:
    """
    Pipeline controller for splitting recordings.

    Collaborators are injected so each request (and each test) decides which
    metadata store, blob stores and segmenter are used.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        blob_stores: BlobStoreFactory,
        segmenter: Segmenter,
        settings: Settings,
    ):
        self._metadata_store = metadata_store
        self._blob_stores = blob_stores
        self._segmenter = segmenter
        self._settings = settings

    def segment_seconds_for(self, minutes: Optional[int]) -> int:
        """User preference in minutes → clamped segment length in seconds."""
        if minutes is None:
            minutes = self._settings.default_split_segment_minutes
        return max(minutes * 60, self._settings.min_split_segment_seconds)

    async def split(self, recording_id: str, requested_by: str, force: bool = False) -> SplitOutcome:
        """
        Split a recording owned by `requested_by`.

        Returns:
            SplitResult on success; SplitConflict when segments exist and
            `force` is False (nothing is changed).

        Raises:
            NotFoundError: recording missing or not owned by the caller
            ValidationError: fewer than two segments would be produced
            ProcessTimeoutError / ProcessFailureError: ffmpeg failed
            StorageError: download or upload failed
            TransactionError: the metadata write was rolled back
            SplitFailedError: anything unexpected
        """
        recording = await self._metadata_store.get_owned_recording(recording_id, requested_by)
        if recording is None:
            raise NotFoundError(resource="recording", resource_id=recording_id)

        minutes = await self._metadata_store.get_split_segment_minutes(requested_by)
        segment_seconds = self.segment_seconds_for(minutes)

        existing = await self._metadata_store.list_split_segments(requested_by, recording.provenance_id)
        if existing and not force:
            logger.info(
                "Recording %s already has %d segments; re-split not confirmed",
                recording.id,
                len(existing),
            )
            return SplitConflict(existing_count=len(existing))

        store = await self._blob_stores.for_user(requested_by)
        ledger = UploadLedger(store=store, settings=self._settings)

        try:
            workdir = Path(tempfile.mkdtemp(prefix="recsplit-split-", dir=self._settings.tmp_dir))
        except OSError as e:
            raise StorageError(
                message="Failed to create working directory",
                context={"tmp_dir": self._settings.tmp_dir, "os_error": str(e)},
            ) from e

        try:
            return await self._run(recording, existing, store, ledger, workdir, segment_seconds)
        except RecSplitError as e:
            if e.kind in _COMPENSATING_KINDS:
                await ledger.rollback(reason=e.kind.value)
            raise
        except Exception as e:
            logger.error("Unexpected error splitting recording %s: %s", recording.id, str(e), exc_info=True)
            await ledger.rollback(reason=ErrorKind.INTERNAL.value)
            raise SplitFailedError(
                context={"recording_id": recording.id, "original_error": type(e).__name__},
            ) from e
        finally:
            remove_workdir(workdir)

    async def _run(
        self,
        recording: Recording,
        existing: Sequence[Recording],
        store: BlobStore,
        ledger: UploadLedger,
        workdir: Path,
        segment_seconds: int,
    ) -> SplitResult:
        # ── Step 1: Stage the source in the working directory ─────────────
        source_path, container = await self._stage_source(recording, store, workdir)

        # ── Step 2: Cut it into chunks ────────────────────────────────────
        output_pattern = workdir / f"{CHUNK_PATTERN}{container}"
        chunks = await self._segmenter.segment(
            source_path,
            output_pattern,
            segment_seconds,
            timeout=self._settings.segment_timeout_seconds,
        )
        if len(chunks) < 2:
            raise ValidationError(
                message=TOO_SHORT_MESSAGE,
                context={"recording_id": recording.id, "segment_count": len(chunks)},
            )

        # ── Step 3: Upload every chunk, ledger first ──────────────────────
        run_token = uuid.uuid4().hex[:8]
        uploaded = await self._upload_chunks(recording, chunks, container, run_token, store, ledger)

        # ── Step 4: Build rows with their time windows ────────────────────
        windows = compute_segment_windows(
            recording.start_time,
            recording.end_time,
            segment_seconds * 1000,
            len(uploaded),
        )
        rows = [self._segment_row(recording, chunk, window) for chunk, window in zip(uploaded, windows)]
        replaced_ids = [row.id for row in existing]

        # ── Step 5: Replace the segment set in one transaction ────────────
        async def replace_segments(writer: RecordingWriter) -> List[str]:
            if replaced_ids:
                await writer.delete_recordings(replaced_ids)
            return await writer.insert_recordings(rows)

        new_ids = await self._metadata_store.run_in_transaction(replace_segments)
        ledger.seal()
        logger.info(
            "Recording %s split into %d segments (replaced %d)",
            recording.id,
            len(new_ids),
            len(replaced_ids),
        )

        # ── Step 6: Drop blobs of the replaced set ────────────────────────
        if existing:
            await self._delete_replaced_blobs(existing, store, ledger)

        return SplitResult(segment_count=len(new_ids), recording_ids=new_ids)

    async def _stage_source(self, recording: Recording, store: BlobStore, workdir: Path) -> Tuple[Path, str]:
        """Download the source blob and pick the segment container."""
        data = await store.download(recording.storage_path)
        input_container = container_of(recording.storage_path)
        source_path = workdir / f"input{input_container}"
        try:
            async with aiofiles.open(source_path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(
                message="Failed to stage recording for splitting",
                context={"path": str(source_path), "os_error": str(e)},
            ) from e

        codec = await self._segmenter.probe_audio_codec(
            source_path, timeout=self._settings.probe_timeout_seconds
        )
        container = choose_output_container(input_container, codec)
        logger.info(
            "Source %s: %d bytes, container %s, codec %s → segments as %s",
            recording.id,
            len(data),
            input_container,
            codec or "unknown",
            container,
        )
        return source_path, container

    async def _upload_chunks(
        self,
        recording: Recording,
        chunks: Sequence[Path],
        container: str,
        run_token: str,
        store: BlobStore,
        ledger: UploadLedger,
    ) -> List[UploadedChunk]:
        content_type = content_type_for(container)
        uploaded = []
        for index, chunk_path in enumerate(chunks):
            part_number = index + 1
            try:
                async with aiofiles.open(chunk_path, "rb") as f:
                    data = await f.read()
            except OSError as e:
                raise StorageError(
                    message="Failed to read produced segment",
                    context={"path": str(chunk_path), "os_error": str(e)},
                ) from e

            key = segment_storage_key(recording.storage_path, part_number, container, run_token)
            # Recorded before the attempt so a half-written blob is rolled back too
            ledger.record(key)
            await store.upload(key, data, content_type)
            uploaded.append(
                UploadedChunk(
                    part_number=part_number,
                    storage_key=key,
                    size=len(data),
                    md5=hashlib.md5(data).hexdigest(),
                )
            )
            logger.debug("Uploaded segment %d/%d: %s", part_number, len(chunks), key)
        return uploaded

    def _segment_row(self, parent: Recording, chunk: UploadedChunk, window: SegmentWindow) -> Recording:
        return Recording(
            user_id=parent.user_id,
            device_sn=parent.device_sn,
            provenance_id=split_provenance_id(parent.provenance_id, chunk.part_number),
            filename=segment_filename(parent.filename, chunk.part_number),
            duration=window.duration_ms,
            start_time=window.start_time,
            end_time=window.end_time,
            filesize=chunk.size,
            file_md5=chunk.md5,
            storage_type=parent.storage_type,
            storage_path=chunk.storage_key,
            downloaded_at=datetime.now(timezone.utc),
            source_version=parent.source_version,
            timezone=parent.timezone,
            zonemins=parent.zonemins,
            scene=parent.scene,
            is_trash=False,
            filename_modified=False,
        )

    async def _delete_replaced_blobs(
        self,
        replaced: Sequence[Recording],
        store: BlobStore,
        ledger: UploadLedger,
    ) -> None:
        """Post-commit cleanup; failures only orphan blobs, so they are logged."""
        failures = 0
        for row in replaced:
            if row.storage_path in ledger:
                logger.warning("Replaced segment %s shares key %s with a new upload; keeping it", row.id, row.storage_path)
                continue
            if not await delete_blob_quietly(store, row.storage_path, self._settings):
                failures += 1
        if failures:
            logger.warning("%d replaced segment blobs could not be deleted", failures)
