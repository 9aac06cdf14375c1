"""
RecSplit Backend — Recording SQLAlchemy Model
===============================================

What:  ORM model representing the `recordings` table.
Why:   The central entity; the split pipeline batch-inserts segment rows and
       batch-deletes prior segment sets, never patching an existing row.
Who:   Used by MetadataStore and by Alembic for schema management.

Table Design Rationale:
    - provenance_id UNIQUE: external correlation key; derived recordings embed
      the parent's provenance id (`split-<parent>-part001`). Uniqueness also
      makes a second concurrent re-split of the same parent fail at commit.
    - storage_path UNIQUE: exactly one row may reference a given blob key.
    - duration/start_time/end_time: end_time - start_time == duration (ms).
    - file_md5: hex digest of the stored blob bytes at upload time.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from recsplit.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Recording(Base):
    """
    A stored audio recording owned by one user.

    Lifecycle:
        1. Created by device sync or direct upload (outside this service), or
           batch-created by the split pipeline.
        2. Deleted by explicit user action, or (prior split segments) by a
           forced re-split, always as a whole set.
    """

    __tablename__ = "recordings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    device_sn: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # ── Provenance ────────────────────────────────────────────────────────
    provenance_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Origin identifier; split segments use split-<parent>-part<NNN>",
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Timing (milliseconds) ─────────────────────────────────────────────
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # ── Content ───────────────────────────────────────────────────────────
    filesize: Mapped[int] = mapped_column(Integer, nullable=False)
    file_md5: Mapped[str] = mapped_column(String(32), nullable=False)

    # ── Storage binding ───────────────────────────────────────────────────
    storage_type: Mapped[str] = mapped_column(String(10), nullable=False)
    storage_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        unique=True,
        comment="Opaque BlobStore key",
    )
    downloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Device metadata (copied onto segments) ────────────────────────────
    source_version: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    timezone: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    zonemins: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    scene: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # ── Flags ─────────────────────────────────────────────────────────────
    is_trash: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    filename_modified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("recordings_user_id_idx", "user_id"),
        Index("recordings_user_id_start_time_idx", "user_id", "start_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Recording(id={self.id}, provenance_id='{self.provenance_id}', "
            f"duration={self.duration})>"
        )
