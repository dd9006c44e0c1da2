"""
Mapping API routes: inspect, look up and invalidate barcode mappings.
"""

from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from exceptions import AppError, MappingNotFoundError
from models.mapping import ImportHint, ResolutionResult
from services.mapping_cache import get_mapping_cache
from services.mapping_store import get_mapping_store
from services.resolver_service import get_resolver

logger = structlog.get_logger(__name__)

router = APIRouter()


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


# ===================
# ROUTES
# ===================

@router.get("/stats")
async def get_mapping_stats():
    """Persisted mappings per discovery method, plus cache counters."""
    try:
        stats = get_mapping_store().stats()
        cache = get_mapping_cache().stats()
        return {
            "store": stats.model_dump(),
            "cache": {**cache.model_dump(), "hit_rate": cache.hit_rate},
        }
    except Exception as e:
        return handle_error(e)


@router.get("/{barcode}", response_model=ResolutionResult)
async def lookup_mapping(
    barcode: str,
    product_id: Optional[str] = Query(None, description="Shopify product id hint"),
    variant_id: Optional[str] = Query(None, description="Shopify variant id hint"),
):
    """
    Resolve a single barcode.

    Goes through every enabled tier, including the exhaustive catalog scan,
    so a cold lookup can take a while.

    Raises:
        404: No Shopify product carries this barcode
    """
    try:
        hint = None
        if product_id or variant_id:
            hint = ImportHint(barcode=barcode, remote_product_id=product_id, remote_variant_id=variant_id)

        result = await get_resolver().resolve(barcode, hint=hint)
        if not result.found:
            if result.error:
                logger.warning("mapping_lookup_failed", barcode=barcode, error=result.error)
            raise MappingNotFoundError(barcode)
        return result
    except Exception as e:
        return handle_error(e)


@router.delete("/{barcode}")
async def invalidate_mapping(barcode: str):
    """
    Forget a mapping so the next sync re-discovers it.

    Raises:
        404: No mapping stored for this barcode
    """
    try:
        removed = await get_resolver().invalidate(barcode)
        if not removed:
            raise MappingNotFoundError(barcode)
        return {"barcode": barcode, "invalidated": True}
    except Exception as e:
        return handle_error(e)
