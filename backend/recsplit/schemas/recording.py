"""
RecSplit Backend — Pydantic Request/Response Schemas
======================================================

What:  The API contract for the recordings and health endpoints.
Why:   Strict serialization and OpenAPI docs generated from one place.
How:   Response bodies use camelCase on the wire (the web client's
       convention) via field aliases; Python code uses snake_case.

Schemas are kept apart from the SQLAlchemy models so the API never exposes
storage keys or internal columns by accident.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# ══════════════════════════════════════════════════════════════════════════
# Split
# ══════════════════════════════════════════════════════════════════════════


class SplitResponse(_CamelModel):
    """
    Returned by POST /api/recordings/{id}/split on success.

    Example:
        {"success": true, "segmentCount": 3, "recordingIds": ["…", "…", "…"]}
    """
    success: bool = Field(default=True)
    segment_count: int = Field(alias="segmentCount", description="Number of segments created")
    recording_ids: List[str] = Field(
        alias="recordingIds",
        description="Ids of the new segment recordings, in part order",
    )


class SplitConflictResponse(_CamelModel):
    """
    409 body: the recording was split before and the request did not say
    `force=true`. Nothing was changed.
    """
    error: str = Field(default="existing_splits")
    existing_count: int = Field(alias="existingCount", description="Segments currently stored")
    message: str = Field(
        default="This recording has already been split. Retry with force=true to replace the existing segments.",
    )


# ══════════════════════════════════════════════════════════════════════════
# Segments / recordings
# ══════════════════════════════════════════════════════════════════════════


class SegmentItem(_CamelModel):
    id: str
    provenance_id: str = Field(alias="provenanceId")
    filename: str
    duration: int = Field(description="Duration in milliseconds")
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    filesize: int = Field(description="Blob size in bytes")
    file_md5: str = Field(alias="fileMd5")


class SegmentListResponse(_CamelModel):
    recording_id: str = Field(alias="recordingId")
    segments: List[SegmentItem]
    count: int


class DeleteRecordingResponse(_CamelModel):
    success: bool = Field(default=True)
    blob_deleted: bool = Field(
        alias="blobDeleted",
        description="False when the row was removed but the blob could not be",
    )


# ══════════════════════════════════════════════════════════════════════════
# Errors / health
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Error body shared by every endpoint.

    Fields:
        error:      Human-readable description (safe to show)
        code:       ErrorKind value, machine-readable
        details:    Optional extra context (validation errors only)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "Recording is too short to split into multiple segments",
            "code": "validation_error",
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Machine-readable error kind")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    checks: Dict[str, str] = Field(description="Per-dependency status (database, ffmpeg, storage)")
    uptime_seconds: float = Field(description="Seconds since service started")
