"""
RecSplit Backend — Metadata Store
===================================

What:  Thin adapter over the relational store for recording rows and the
       read-only per-user settings the pipeline consults.
Why:   The split orchestrator receives this object instead of reaching for a
       module-level session, so tests can point it at an in-memory database.
How:   Each read opens a short-lived session. Writes go through
       run_in_transaction(), which hands a RecordingWriter to a callback and
       commits if the callback returns normally, rolls back if it raises.

Error translation:
    SQLAlchemy errors on reads   → DatabaseError
    SQLAlchemy errors on writes  → TransactionError (after rollback)
    Anything else raised by the callback propagates unchanged (after rollback).
"""

import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recsplit.exceptions import DatabaseError, TransactionError
from recsplit.models.recording import Recording
from recsplit.models.settings import StorageConfig, UserSettings
from recsplit.provenance import split_part_number, split_prefix

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordingWriter:
    """Transaction-scoped handle passed to run_in_transaction() callbacks."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def insert_recordings(self, rows: Sequence[Recording]) -> List[str]:
        """Insert all rows and return their generated ids, in input order."""
        self._session.add_all(rows)
        await self._session.flush()
        return [row.id for row in rows]

    async def delete_recordings(self, recording_ids: Sequence[str]) -> int:
        if not recording_ids:
            return 0
        result = await self._session.execute(
            delete(Recording).where(Recording.id.in_(list(recording_ids)))
        )
        return result.rowcount or 0


class MetadataStore:
    """Recording rows plus the user settings the split pipeline reads."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_owned_recording(self, recording_id: str, user_id: str) -> Optional[Recording]:
        """
        Fetch a recording only if it belongs to `user_id`.

        Existence and ownership are checked in the same WHERE clause so a
        caller can never learn that someone else's recording exists.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Recording).where(
                        Recording.id == recording_id,
                        Recording.user_id == user_id,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching recording %s: %s", recording_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the recording. Please try again.",
                context={"recording_id": recording_id},
            ) from e

    async def list_split_segments(self, user_id: str, parent_provenance_id: str) -> List[Recording]:
        """
        The existing-split set of a parent, ordered by part number.

        LIKE narrows the scan; split_part_number() then rejects rows that
        merely share the prefix.
        """
        prefix = split_prefix(parent_provenance_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Recording).where(
                        Recording.user_id == user_id,
                        Recording.provenance_id.startswith(prefix, autoescape=True),
                    )
                )
                candidates = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing segments of %s: %s", parent_provenance_id, str(e))
            raise DatabaseError(
                message="Could not retrieve existing segments. Please try again.",
                context={"parent_provenance_id": parent_provenance_id},
            ) from e

        numbered = []
        for row in candidates:
            part = split_part_number(parent_provenance_id, row.provenance_id)
            if part is not None:
                numbered.append((part, row))
        numbered.sort(key=lambda pair: pair[0])
        return [row for _, row in numbered]

    async def get_split_segment_minutes(self, user_id: str) -> Optional[int]:
        """User's preferred segment length, or None when the user has no settings row."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserSettings.split_segment_minutes).where(UserSettings.user_id == user_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(
                message="Could not load user settings. Please try again.",
                context={"user_id": user_id},
            ) from e

    async def get_storage_config(self, user_id: str) -> Optional[StorageConfig]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StorageConfig).where(StorageConfig.user_id == user_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(
                message="Could not load storage configuration. Please try again.",
                context={"user_id": user_id},
            ) from e

    # ── Writes ────────────────────────────────────────────────────────────

    async def run_in_transaction(self, work: Callable[[RecordingWriter], Awaitable[T]]) -> T:
        """
        Run `work` inside one transaction.

        Commit happens when `work` returns; a raise from `work` or from the
        commit itself rolls everything back.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await work(RecordingWriter(session))
        except SQLAlchemyError as e:
            logger.error("Transaction rolled back: %s", str(e))
            raise TransactionError(
                context={"error_type": type(e).__name__, "error": str(e)},
            ) from e

    async def ping(self) -> None:
        """Round-trip a trivial query; raises on failure."""
        async with self._session_factory() as session:
            await session.execute(select(1))
