"""
RecSplit Backend — Health Check Route
=======================================

What:  GET /health for container probes and load balancers.
How:   Lightweight checks of each dependency a split needs.

    database  SELECT 1 through the metadata store
    ffmpeg    binary resolvable on PATH
    storage   default storage root accepts a write

Status levels:
    healthy    all checks pass (200)
    degraded   ffmpeg or storage down; reads still work (200)
    unhealthy  database down (503)
"""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from recsplit import __version__
from recsplit.dependencies import get_blob_store_factory, get_metadata_store, get_segmenter
from recsplit.schemas.recording import HealthResponse
from recsplit.services.metadata_store import MetadataStore
from recsplit.services.segmenter import Segmenter
from recsplit.storage.factory import BlobStoreFactory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(
    metadata_store: MetadataStore = Depends(get_metadata_store),
    segmenter: Segmenter = Depends(get_segmenter),
    blob_stores: BlobStoreFactory = Depends(get_blob_store_factory),
):
    checks = {"database": "connected", "ffmpeg": "available", "storage": "writable"}
    overall = "healthy"

    try:
        await metadata_store.ping()
    except Exception as e:
        checks["database"] = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if not segmenter.is_available():
        checks["ffmpeg"] = "missing"
        overall = "degraded" if overall == "healthy" else overall

    if not await blob_stores.default_store().health_check():
        checks["storage"] = "unwritable"
        overall = "degraded" if overall == "healthy" else overall

    body = HealthResponse(
        status=overall,
        version=__version__,
        checks=checks,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
