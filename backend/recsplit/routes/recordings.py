"""
RecSplit Backend — Recording Route Handlers
=============================================

What:  POST /api/recordings/{id}/split, GET /api/recordings/{id}/segments,
       DELETE /api/recordings/{id}.
Why:   The web client's entry points for splitting long recordings and
       managing the resulting segments.
How:   Resolve the caller, delegate to the service, shape the response.
       Failures are raised as RecSplitError subclasses and formatted by the
       global handlers in main.py.
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from recsplit.dependencies import (
    get_current_user_id,
    get_recording_service,
    get_split_orchestrator,
)
from recsplit.schemas.recording import (
    DeleteRecordingResponse,
    ErrorResponse,
    SegmentItem,
    SegmentListResponse,
    SplitConflictResponse,
    SplitResponse,
)
from recsplit.services.recording_service import RecordingService
from recsplit.services.split_service import SplitConflict, SplitOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Recordings"])


@router.post(
    "/recordings/{recording_id}/split",
    response_model=SplitResponse,
    responses={
        200: {"description": "Recording split into segments", "model": SplitResponse},
        400: {"description": "Recording too short to split", "model": ErrorResponse},
        401: {"description": "No caller identity", "model": ErrorResponse},
        404: {"description": "Recording not found", "model": ErrorResponse},
        409: {"description": "Segments already exist", "model": SplitConflictResponse},
        500: {"description": "Split failed; no partial state kept", "model": ErrorResponse},
    },
    summary="Split a recording into fixed-length segments",
    description=(
        "Cuts the recording into segments of the user's configured length and stores "
        "each as a new recording. If the recording was split before, the request is "
        "rejected with 409 unless `force=true`, in which case the previous segments "
        "are replaced atomically."
    ),
)
async def split_recording(
    recording_id: str,
    force: bool = Query(default=False, description="Replace existing segments"),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SplitOrchestrator = Depends(get_split_orchestrator),
):
    outcome = await orchestrator.split(recording_id, requested_by=user_id, force=force)

    if isinstance(outcome, SplitConflict):
        body = SplitConflictResponse(existing_count=outcome.existing_count)
        return JSONResponse(status_code=409, content=body.model_dump(by_alias=True))

    return SplitResponse(
        segment_count=outcome.segment_count,
        recording_ids=outcome.recording_ids,
    )


@router.get(
    "/recordings/{recording_id}/segments",
    response_model=SegmentListResponse,
    responses={
        401: {"description": "No caller identity", "model": ErrorResponse},
        404: {"description": "Recording not found", "model": ErrorResponse},
    },
    summary="List the segments produced by splitting a recording",
)
async def list_segments(
    recording_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RecordingService = Depends(get_recording_service),
) -> SegmentListResponse:
    segments = await service.list_segments(recording_id, user_id)
    return SegmentListResponse(
        recording_id=recording_id,
        segments=[SegmentItem.model_validate(row) for row in segments],
        count=len(segments),
    )


@router.delete(
    "/recordings/{recording_id}",
    response_model=DeleteRecordingResponse,
    responses={
        401: {"description": "No caller identity", "model": ErrorResponse},
        403: {"description": "Recording was synced from a device", "model": ErrorResponse},
        404: {"description": "Recording not found", "model": ErrorResponse},
    },
    summary="Delete a locally created recording",
    description=(
        "Only recordings created by this service (split segments, silence-removed "
        "copies, uploads) can be deleted. The metadata row is removed first, then the "
        "audio blob."
    ),
)
async def delete_recording(
    recording_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RecordingService = Depends(get_recording_service),
) -> DeleteRecordingResponse:
    blob_deleted = await service.delete_recording(recording_id, user_id)
    return DeleteRecordingResponse(blob_deleted=blob_deleted)
