"""
Store sync API routes.

Runs are serialized per store here; the engine itself does no cross-run
locking.
"""

import asyncio
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, File, Query, UploadFile
from fastapi.responses import JSONResponse
import structlog

from exceptions import AppError, DatabaseError, SyncInProgressError
from models.sync import SyncRequest, SyncSummary
from parsers.export_parser import parse_store_export
from services.sync_service import get_sync_service
from services.sync_stats_service import get_sync_stats_service

logger = structlog.get_logger(__name__)

router = APIRouter()

_store_locks: dict[str, asyncio.Lock] = {}


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


async def _run_sync(store_id: str, request: SyncRequest) -> SyncSummary:
    """One run per store at a time; statistics are best-effort."""
    lock = _store_locks.setdefault(store_id, asyncio.Lock())
    if lock.locked():
        raise SyncInProgressError(store_id)

    async with lock:
        summary = await get_sync_service().sync_store(
            store_id=store_id,
            store_name=request.store_name,
            items=request.items,
            hints=request.hints,
        )

    try:
        await asyncio.to_thread(get_sync_stats_service().record, summary)
    except DatabaseError as e:
        logger.error("sync_stats_not_recorded", store_id=store_id, error=e.message)

    return summary


# ===================
# ROUTES
# ===================

@router.post("/stores/{store_id}", response_model=SyncSummary)
async def sync_store(store_id: str, request: SyncRequest):
    """
    Push a store's inventory snapshot to its Shopify location.

    Precondition failures (no items, unknown location) come back as a
    summary with state FAILED, not as an HTTP error.

    Raises:
        409: A sync for this store is already running
    """
    logger.info("sync_requested", store_id=store_id, items=len(request.items), hints=len(request.hints))

    try:
        return await _run_sync(store_id, request)
    except Exception as e:
        return handle_error(e)


@router.post("/stores/{store_id}/upload", response_model=SyncSummary)
async def sync_store_from_export(
    store_id: str,
    store_name: str = Query(..., min_length=1, description="Shopify location name"),
    allow_blank_barcode: bool = Query(False, description="Trust hinted records without a barcode"),
    file: UploadFile = File(...),
):
    """
    Sync a store from a POS export file (CSV or Excel).

    Rows with bad quantities are rejected before anything is synced.

    Raises:
        422: File unreadable, missing columns, or bad rows
        409: A sync for this store is already running
    """
    logger.info("sync_upload_started", store_id=store_id, filename=file.filename)

    try:
        content = await file.read()
        parsed = parse_store_export(
            BytesIO(content),
            store_id=store_id,
            filename=file.filename,
            allow_blank_barcode=allow_blank_barcode,
        )

        if not parsed.success:
            logger.warning("sync_upload_validation_failed", store_id=store_id, errors=len(parsed.errors))
            return JSONResponse(
                status_code=422,
                content={
                    "error": {
                        "code": "IMPORT_FILE_INVALID_ROWS",
                        "message": f"{len(parsed.errors)} rows could not be parsed",
                        "details": parsed.to_dict(),
                    }
                }
            )

        request = SyncRequest(store_name=store_name, items=parsed.items, hints=parsed.hints)
        return await _run_sync(store_id, request)

    except Exception as e:
        return handle_error(e)


@router.get("/stores/{store_id}/stats")
async def get_sync_stats(
    store_id: str,
    limit: Optional[int] = Query(30, ge=1, le=365),
):
    """Daily sync statistics for a store, newest first."""
    try:
        rows = get_sync_stats_service().get_history(store_id, limit=limit)
        return {"store_id": store_id, "data": rows}
    except Exception as e:
        return handle_error(e)
