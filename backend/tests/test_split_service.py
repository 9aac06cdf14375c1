"""
RecSplit Backend — Split Orchestrator Tests
=============================================

What:  End-to-end tests of SplitOrchestrator against a real in-memory
       database and an on-disk blob store; only ffmpeg is faked.

What we test:
    ✅ Segment windows partition the parent exactly (last end == parent end)
    ✅ Segment rows: provenance ids, filenames, MD5, copied device fields
    ✅ Conflict without force is idempotent and changes nothing
    ✅ Forced re-split swaps the whole set and removes the old blobs
    ✅ Two overlapping forced re-splits: the later commit fails, cleans only its own blobs
    ✅ Upload failure rolls back every uploaded blob, writes no rows
    ✅ Transaction failure rolls back the new blobs, keeps the old set
    ✅ Too-short recordings fail before any upload
    ✅ Segment length clamping and container selection
    ✅ Temporary working directory removed on every path; a failed removal
       never changes the outcome
"""

import asyncio
import hashlib
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from recsplit.exceptions import (
    NotFoundError,
    ProcessFailureError,
    ProcessTimeoutError,
    SplitFailedError,
    StorageError,
    TransactionError,
    ValidationError,
)
from recsplit.services.split_service import (
    SplitConflict,
    SplitResult,
    UploadLedger,
    compute_segment_windows,
    segment_filename,
    segment_storage_key,
)

RMTREE = "recsplit.services.split_service.shutil.rmtree"


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


class TestSegmentWindows:
    """Pure time arithmetic."""

    def test_two_full_segments(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        windows = compute_segment_windows(start, start + timedelta(hours=2), 3_600_000, 2)

        assert [(_ms(w.start_time - start), _ms(w.end_time - start)) for w in windows] == [
            (0, 3_600_000),
            (3_600_000, 7_200_000),
        ]
        assert [w.duration_ms for w in windows] == [3_600_000, 3_600_000]

    def test_last_segment_ends_at_parent_end(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        end = start + timedelta(milliseconds=9_000_500)
        windows = compute_segment_windows(start, end, 3_600_000, 3)

        assert windows[-1].end_time == end
        assert windows[-1].duration_ms == 1_800_500
        for previous, current in zip(windows, windows[1:]):
            assert previous.end_time == current.start_time
        assert sum(w.duration_ms for w in windows) == 9_000_500

    def test_last_segment_never_negative(self):
        """ffmpeg may emit a trailing chunk past the recorded duration."""
        start = datetime(2024, 1, 1)
        windows = compute_segment_windows(start, start + timedelta(seconds=90), 60_000, 3)

        assert windows[-1].duration_ms == 0
        assert windows[-1].end_time == windows[-1].start_time

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            compute_segment_windows(datetime(2024, 1, 1), datetime(2024, 1, 2), 0, 2)


class TestNaming:
    def test_storage_key_replaces_extension(self):
        assert segment_storage_key("u1/rec.mp3", 2, ".ogg", "ab12cd34") == "u1/rec_part002-ab12cd34.ogg"

    def test_storage_key_without_extension(self):
        assert segment_storage_key("u1/rec", 10, ".ogg", "t") == "u1/rec_part010-t.ogg"

    def test_storage_key_keeps_dotted_directories(self):
        assert segment_storage_key("v1.2/rec", 1, ".mp3", "t") == "v1.2/rec_part001-t.mp3"

    def test_filename(self):
        assert segment_filename("Team sync.ogg", 3) == "Team sync (Part 3)"
        assert segment_filename("no extension", 1) == "no extension (Part 1)"


class TestUploadLedger:
    @pytest.mark.asyncio
    async def test_rollback_deletes_recorded_keys(self, blob_store, test_settings):
        await blob_store.upload("a.ogg", b"a", "audio/ogg")
        await blob_store.upload("b.ogg", b"b", "audio/ogg")
        ledger = UploadLedger(store=blob_store, settings=test_settings)
        ledger.record("a.ogg")
        ledger.record("b.ogg")

        failures = await ledger.rollback(reason="storage_error")

        assert failures == 0
        assert blob_store.stored_keys() == set()

    @pytest.mark.asyncio
    async def test_rollback_continues_past_failed_delete(self, blob_store, test_settings):
        await blob_store.upload("a.ogg", b"a", "audio/ogg")
        await blob_store.upload("b.ogg", b"b", "audio/ogg")
        blob_store.fail_delete.add("a.ogg")
        ledger = UploadLedger(store=blob_store, settings=test_settings)
        ledger.record("a.ogg")
        ledger.record("b.ogg")

        failures = await ledger.rollback(reason="storage_error")

        assert failures == 1
        assert blob_store.stored_keys() == {"a.ogg"}
        # retried cleanup_retry_attempts times
        assert blob_store.delete_calls.count("a.ogg") == test_settings.cleanup_retry_attempts

    @pytest.mark.asyncio
    async def test_sealed_ledger_never_deletes(self, blob_store, test_settings):
        await blob_store.upload("a.ogg", b"a", "audio/ogg")
        ledger = UploadLedger(store=blob_store, settings=test_settings)
        ledger.record("a.ogg")
        ledger.seal()

        await ledger.rollback(reason="internal_error")

        assert blob_store.stored_keys() == {"a.ogg"}
        assert blob_store.delete_calls == []


class TestSplitSuccess:
    @pytest.mark.asyncio
    async def test_two_hour_recording_gives_two_segments(self, orchestrator, make_recording, metadata_store):
        parent = await make_recording(duration_ms=7_200_000)

        result = await orchestrator.split(parent.id, requested_by="user-1")

        assert isinstance(result, SplitResult)
        assert result.segment_count == 2
        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.id for s in segments] == result.recording_ids
        assert [s.provenance_id for s in segments] == ["split-PLAUD123-part001", "split-PLAUD123-part002"]
        assert [(_ms(s.start_time - parent.start_time), _ms(s.end_time - parent.start_time)) for s in segments] == [
            (0, 3_600_000),
            (3_600_000, 7_200_000),
        ]
        assert [s.duration for s in segments] == [3_600_000, 3_600_000]

    @pytest.mark.asyncio
    async def test_segments_partition_parent(self, orchestrator, make_recording, fake_segmenter, metadata_store):
        fake_segmenter.chunk_count = 3
        parent = await make_recording(duration_ms=9_000_000)

        await orchestrator.split(parent.id, requested_by="user-1")

        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert segments[0].start_time == parent.start_time
        assert segments[-1].end_time == parent.end_time
        for previous, current in zip(segments, segments[1:]):
            assert previous.end_time == current.start_time
        assert sum(s.duration for s in segments) == parent.duration
        for segment in segments:
            assert _ms(segment.end_time - segment.start_time) == segment.duration

    @pytest.mark.asyncio
    async def test_segment_rows_describe_stored_blobs(self, orchestrator, make_recording, blob_store, metadata_store):
        parent = await make_recording()

        await orchestrator.split(parent.id, requested_by="user-1")

        for part, segment in enumerate(
            await metadata_store.list_split_segments("user-1", parent.provenance_id), start=1
        ):
            data = await blob_store.download(segment.storage_path)
            assert segment.file_md5 == hashlib.md5(data).hexdigest()
            assert segment.filesize == len(data)
            assert segment.filename == f"Team sync (Part {part})"
            assert segment.storage_path.startswith(f"user-1/PLAUD123_part{part:03d}-")
            assert segment.storage_path.endswith(".ogg")
            assert segment.user_id == "user-1"
            assert segment.device_sn == parent.device_sn
            assert segment.source_version == parent.source_version
            assert (segment.timezone, segment.zonemins, segment.scene) == (1, 60, 7)
            assert segment.storage_type == "local"
            assert segment.downloaded_at is not None
            assert segment.is_trash is False
            assert segment.filename_modified is False

    @pytest.mark.asyncio
    async def test_segmenter_receives_source_and_length(self, orchestrator, make_recording, fake_segmenter, test_settings):
        parent = await make_recording()

        await orchestrator.split(parent.id, requested_by="user-1")

        call = fake_segmenter.calls[0]
        assert call["input_bytes"] == b"OggS-source-audio"
        assert call["segment_seconds"] == 3600
        assert call["timeout"] == test_settings.segment_timeout_seconds
        assert call["output_pattern"].name == "part_%03d.ogg"

    @pytest.mark.asyncio
    async def test_user_preference_is_used(self, orchestrator, make_recording, fake_segmenter, set_segment_minutes):
        await set_segment_minutes("user-1", 30)
        parent = await make_recording()

        await orchestrator.split(parent.id, requested_by="user-1")

        assert fake_segmenter.calls[0]["segment_seconds"] == 1800

    @pytest.mark.asyncio
    async def test_segment_length_clamped_to_minimum(self, orchestrator, make_recording, fake_segmenter, set_segment_minutes, metadata_store):
        await set_segment_minutes("user-1", 0)
        parent = await make_recording(duration_ms=120_000)

        await orchestrator.split(parent.id, requested_by="user-1")

        assert fake_segmenter.calls[0]["segment_seconds"] == 60
        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.duration for s in segments] == [60_000, 60_000]

    @pytest.mark.asyncio
    async def test_opus_in_mp3_name_is_cut_to_ogg(self, orchestrator, make_recording, fake_segmenter, metadata_store):
        fake_segmenter.codec = "opus"
        parent = await make_recording(storage_path="user-1/device.mp3")

        await orchestrator.split(parent.id, requested_by="user-1")

        assert fake_segmenter.calls[0]["output_pattern"].name == "part_%03d.ogg"
        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert all(s.storage_path.endswith(".ogg") for s in segments)

    @pytest.mark.asyncio
    async def test_mp3_stays_mp3(self, orchestrator, make_recording, fake_segmenter, blob_store):
        fake_segmenter.codec = "mp3"
        parent = await make_recording(storage_path="user-1/real.mp3")

        await orchestrator.split(parent.id, requested_by="user-1")

        assert fake_segmenter.calls[0]["output_pattern"].name == "part_%03d.mp3"
        assert all(key.endswith(".mp3") for key in blob_store.upload_calls)

    @pytest.mark.asyncio
    async def test_work_directory_removed(self, orchestrator, make_recording, test_settings):
        parent = await make_recording()

        await orchestrator.split(parent.id, requested_by="user-1")

        assert list(Path(test_settings.tmp_dir).iterdir()) == []

    @pytest.mark.asyncio
    async def test_work_directory_cleanup_failure_keeps_success(self, orchestrator, make_recording, metadata_store, blob_store):
        parent = await make_recording()

        with patch(RMTREE, side_effect=PermissionError("directory busy")) as rmtree:
            result = await orchestrator.split(parent.id, requested_by="user-1")

        rmtree.assert_called_once()
        assert isinstance(result, SplitResult)
        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.id for s in segments] == result.recording_ids
        assert blob_store.stored_keys() == {parent.storage_path} | {s.storage_path for s in segments}

    @pytest.mark.asyncio
    async def test_work_directory_cleanup_failure_keeps_original_error(self, orchestrator, make_recording, blob_store):
        parent = await make_recording()
        blob_store.fail_upload_at = 2

        with patch(RMTREE, side_effect=PermissionError("directory busy")):
            with pytest.raises(StorageError, match="Injected upload failure"):
                await orchestrator.split(parent.id, requested_by="user-1")

        assert blob_store.stored_keys() == {parent.storage_path}


class TestSplitConflict:
    @pytest.mark.asyncio
    async def test_conflict_is_idempotent(self, orchestrator, make_recording, metadata_store, blob_store, fake_segmenter):
        parent = await make_recording()
        first = await orchestrator.split(parent.id, requested_by="user-1")
        keys_before = blob_store.stored_keys()

        for _ in range(2):
            outcome = await orchestrator.split(parent.id, requested_by="user-1")
            assert isinstance(outcome, SplitConflict)
            assert outcome.existing_count == 2

        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.id for s in segments] == first.recording_ids
        assert blob_store.stored_keys() == keys_before
        assert len(fake_segmenter.calls) == 1

    @pytest.mark.asyncio
    async def test_forced_resplit_replaces_whole_set(self, orchestrator, make_recording, metadata_store, blob_store, fake_segmenter):
        fake_segmenter.chunk_count = 3
        parent = await make_recording(duration_ms=9_000_000)
        first = await orchestrator.split(parent.id, requested_by="user-1")
        old_keys = {s.storage_path for s in await metadata_store.list_split_segments("user-1", parent.provenance_id)}

        fake_segmenter.chunk_count = 2
        second = await orchestrator.split(parent.id, requested_by="user-1", force=True)

        assert isinstance(second, SplitResult)
        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.id for s in segments] == second.recording_ids
        assert not set(second.recording_ids) & set(first.recording_ids)
        assert [s.provenance_id for s in segments] == ["split-PLAUD123-part001", "split-PLAUD123-part002"]
        assert blob_store.stored_keys() == {parent.storage_path} | {s.storage_path for s in segments}
        assert not old_keys & blob_store.stored_keys()

    @pytest.mark.asyncio
    async def test_old_blob_cleanup_failure_does_not_fail_request(self, orchestrator, make_recording, metadata_store, blob_store):
        parent = await make_recording()
        await orchestrator.split(parent.id, requested_by="user-1")
        stuck = (await metadata_store.list_split_segments("user-1", parent.provenance_id))[0].storage_path
        blob_store.fail_delete.add(stuck)

        result = await orchestrator.split(parent.id, requested_by="user-1", force=True)

        assert result.segment_count == 2
        assert stuck in blob_store.stored_keys()

    @pytest.mark.asyncio
    async def test_concurrent_forced_resplits_later_commit_loses(self, orchestrator, make_recording, metadata_store, blob_store, monkeypatch):
        parent = await make_recording()
        await orchestrator.split(parent.id, requested_by="user-1")

        # The first split to reach its transaction (B) waits there until A has committed
        run_in_transaction = metadata_store.run_in_transaction
        b_uploaded = asyncio.Event()
        a_committed = asyncio.Event()

        async def held_transaction(callback):
            if not b_uploaded.is_set():
                b_uploaded.set()
                await a_committed.wait()
            return await run_in_transaction(callback)

        monkeypatch.setattr(metadata_store, "run_in_transaction", held_transaction)

        split_b = asyncio.create_task(orchestrator.split(parent.id, requested_by="user-1", force=True))
        await b_uploaded.wait()
        result_a = await orchestrator.split(parent.id, requested_by="user-1", force=True)
        a_committed.set()

        with pytest.raises(TransactionError):
            await split_b

        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.id for s in segments] == result_a.recording_ids
        assert blob_store.stored_keys() == {parent.storage_path} | {s.storage_path for s in segments}
        for segment in segments:
            data = await blob_store.download(segment.storage_path)
            assert hashlib.md5(data).hexdigest() == segment.file_md5


class TestSplitFailures:
    @pytest.mark.asyncio
    async def test_not_found_for_other_owner(self, orchestrator, make_recording):
        parent = await make_recording(user_id="someone-else")

        with pytest.raises(NotFoundError):
            await orchestrator.split(parent.id, requested_by="user-1")

    @pytest.mark.asyncio
    async def test_not_found_for_unknown_id(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.split("does-not-exist", requested_by="user-1")

    @pytest.mark.asyncio
    async def test_too_short_writes_nothing(self, orchestrator, make_recording, fake_segmenter, metadata_store, blob_store, test_settings):
        fake_segmenter.chunk_count = 1
        parent = await make_recording(duration_ms=100_000)

        with pytest.raises(ValidationError, match="too short"):
            await orchestrator.split(parent.id, requested_by="user-1")

        assert await metadata_store.list_split_segments("user-1", parent.provenance_id) == []
        assert blob_store.upload_calls == []
        assert blob_store.stored_keys() == {parent.storage_path}
        assert list(Path(test_settings.tmp_dir).iterdir()) == []

    @pytest.mark.asyncio
    async def test_upload_failure_rolls_back_blobs(self, orchestrator, make_recording, fake_segmenter, metadata_store, blob_store, test_settings):
        fake_segmenter.chunk_count = 3
        parent = await make_recording(duration_ms=9_000_000)
        blob_store.fail_upload_at = 3

        with pytest.raises(StorageError, match="Injected upload failure"):
            await orchestrator.split(parent.id, requested_by="user-1")

        assert await metadata_store.list_split_segments("user-1", parent.provenance_id) == []
        assert blob_store.stored_keys() == {parent.storage_path}
        assert set(blob_store.upload_calls) <= set(blob_store.delete_calls)
        assert list(Path(test_settings.tmp_dir).iterdir()) == []

    @pytest.mark.asyncio
    async def test_upload_failure_reraises_original_even_if_cleanup_fails(self, orchestrator, make_recording, blob_store):
        parent = await make_recording()
        blob_store.fail_upload_at = 2
        blob_store.fail_every_delete = True
        original = blob_store.upload_error

        with pytest.raises(StorageError) as exc_info:
            await orchestrator.split(parent.id, requested_by="user-1")

        assert exc_info.value is original
        assert len(blob_store.stored_keys()) == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped_and_compensated(self, orchestrator, make_recording, metadata_store, blob_store):
        parent = await make_recording()
        blob_store.fail_upload_at = 2
        blob_store.upload_error = RuntimeError("disk on fire")

        with pytest.raises(SplitFailedError) as exc_info:
            await orchestrator.split(parent.id, requested_by="user-1")

        assert exc_info.value.message == "Failed to split recording"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert blob_store.stored_keys() == {parent.storage_path}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [ProcessTimeoutError(timeout_seconds=60), ProcessFailureError(returncode=1)],
    )
    async def test_segmenter_failure_propagates(self, orchestrator, make_recording, fake_segmenter, metadata_store, blob_store, test_settings, error):
        fake_segmenter.error = error
        parent = await make_recording()

        with pytest.raises(type(error)):
            await orchestrator.split(parent.id, requested_by="user-1")

        assert await metadata_store.list_split_segments("user-1", parent.provenance_id) == []
        assert blob_store.upload_calls == []
        assert list(Path(test_settings.tmp_dir).iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_source_blob(self, orchestrator, make_recording, blob_store, metadata_store):
        parent = await make_recording()
        await blob_store.delete(parent.storage_path)

        with pytest.raises(StorageError):
            await orchestrator.split(parent.id, requested_by="user-1")

        assert await metadata_store.list_split_segments("user-1", parent.provenance_id) == []

    @pytest.mark.asyncio
    async def test_transaction_failure_rolls_back_new_blobs(self, orchestrator, make_recording, metadata_store, blob_store):
        parent = await make_recording()
        # Another user's row already holds a provenance id the split will try to insert
        squatter = await make_recording(
            user_id="user-2",
            provenance_id="split-PLAUD123-part002",
            storage_path="user-2/squatter.ogg",
        )

        with pytest.raises(TransactionError):
            await orchestrator.split(parent.id, requested_by="user-1")

        assert await metadata_store.list_split_segments("user-1", parent.provenance_id) == []
        assert blob_store.stored_keys() == {parent.storage_path, squatter.storage_path}
        assert await metadata_store.get_owned_recording(squatter.id, "user-2") is not None

    @pytest.mark.asyncio
    async def test_failed_forced_resplit_keeps_old_set(self, orchestrator, make_recording, fake_segmenter, metadata_store, blob_store):
        parent = await make_recording()
        first = await orchestrator.split(parent.id, requested_by="user-1")
        keys_before = blob_store.stored_keys()
        await make_recording(
            user_id="user-2",
            provenance_id="split-PLAUD123-part003",
            storage_path="user-2/squatter.ogg",
        )
        fake_segmenter.chunk_count = 3

        with pytest.raises(TransactionError):
            await orchestrator.split(parent.id, requested_by="user-1", force=True)

        segments = await metadata_store.list_split_segments("user-1", parent.provenance_id)
        assert [s.id for s in segments] == first.recording_ids
        assert blob_store.stored_keys() == keys_before | {"user-2/squatter.ogg"}
        for segment in segments:
            data = await blob_store.download(segment.storage_path)
            assert hashlib.md5(data).hexdigest() == segment.file_md5
