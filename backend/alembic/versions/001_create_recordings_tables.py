"""Create recordings, user_settings and storage_config tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Initial schema for recordings and the per-user settings the split
       pipeline reads.
How:   Portable column types only (string ids generated by the application),
       so the same migration runs on PostgreSQL and SQLite.

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "recordings",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("device_sn", sa.String(255), nullable=False),
        sa.Column(
            "provenance_id",
            sa.String(255),
            nullable=False,
            comment="Origin identifier; split segments use split-<parent>-part<NNN>",
        ),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, comment="Milliseconds"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("filesize", sa.Integer(), nullable=False),
        sa.Column("file_md5", sa.String(32), nullable=False),
        sa.Column("storage_type", sa.String(10), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False, comment="Opaque BlobStore key"),
        sa.Column("downloaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_version", sa.String(50), nullable=False),
        sa.Column("timezone", sa.Integer(), nullable=True),
        sa.Column("zonemins", sa.Integer(), nullable=True),
        sa.Column("scene", sa.Integer(), nullable=True),
        sa.Column("is_trash", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("filename_modified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provenance_id"),
        sa.UniqueConstraint("storage_path"),
    )
    op.create_index("recordings_user_id_idx", "recordings", ["user_id"])
    op.create_index("recordings_user_id_start_time_idx", "recordings", ["user_id", "start_time"])

    op.create_table(
        "user_settings",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("split_segment_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "storage_config",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("storage_type", sa.String(10), nullable=False),
        sa.Column("local_path", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )


def downgrade() -> None:
    op.drop_table("storage_config")
    op.drop_table("user_settings")
    op.drop_index("recordings_user_id_start_time_idx", table_name="recordings")
    op.drop_index("recordings_user_id_idx", table_name="recordings")
    op.drop_table("recordings")
