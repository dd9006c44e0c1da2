"""
Custom exception classes for the sync engine.

Every error carries a stable code, an HTTP-ish status and a details dict so
the same object can be logged, returned from the API, or folded into a
per-item sync outcome.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "LOCATION_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None,
        code: Optional[str] = None,
        status_code: int = 503
    ):
        super().__init__(
            code=code or f"{service.upper()}_ERROR",
            message=message,
            status_code=status_code,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# SHOPIFY ERRORS
# ===================

class ShopifyNotConfiguredError(AppError):
    """Shopify credentials are missing."""

    def __init__(self):
        super().__init__(
            code="SHOPIFY_NOT_CONFIGURED",
            message="Set SHOPIFY_SHOP_DOMAIN and SHOPIFY_ACCESS_TOKEN",
            status_code=500
        )


class ShopifyRequestError(ExternalServiceError):
    """
    Shopify rejected the request (400/401/403/422 ...).

    Terminal: the same request would be rejected again, so it is never retried.
    """

    def __init__(
        self,
        http_status: int,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            service="shopify",
            code="SHOPIFY_REQUEST_REJECTED",
            message=message,
            status_code=502,
            details={"http_status": http_status, **(details or {})}
        )
        self.http_status = http_status


class ShopifyRecordNotFoundError(ShopifyRequestError):
    """A specific Shopify record (product, variant, inventory item) is gone."""

    def __init__(self, path: str):
        super().__init__(
            http_status=404,
            message=f"Shopify record not found: {path}",
            details={"path": path}
        )
        self.code = "SHOPIFY_RECORD_NOT_FOUND"


class ShopifyRetriesExhaustedError(ExternalServiceError):
    """Throttling or network failures outlasted the retry budget."""

    def __init__(self, kind: str, attempts: int, last_error: str):
        super().__init__(
            service="shopify",
            code="SHOPIFY_RETRIES_EXHAUSTED",
            message=f"Shopify call failed after {attempts} attempts ({kind}): {last_error}",
            details={"kind": kind, "attempts": attempts, "last_error": last_error}
        )
        self.kind = kind
        self.attempts = attempts


class ShopifySearchIncompleteError(ExternalServiceError):
    """A batched barcode search had more result pages than we follow."""

    def __init__(self, barcodes: int, pages: int):
        super().__init__(
            service="shopify",
            code="SHOPIFY_SEARCH_INCOMPLETE",
            message=f"Barcode search for {barcodes} barcodes still had results after {pages} pages",
            details={"barcodes": barcodes, "pages": pages}
        )


# ===================
# SYNC ERRORS
# ===================

class LocationNotFoundError(NotFoundError):
    """No Shopify location matches the store name."""

    def __init__(self, store_name: str):
        super().__init__(
            resource="Location",
            identifier=store_name,
            code="LOCATION_NOT_FOUND"
        )
        self.message = f'No Shopify location found with name "{store_name}"'


class EmptyInventoryError(ValidationError):
    """Sync requested for a snapshot with no items."""

    def __init__(self, store_id: str):
        super().__init__(
            code="EMPTY_INVENTORY",
            message="Inventory snapshot has no items",
            details={"store_id": store_id}
        )


class SyncInProgressError(AppError):
    """Another sync for the same store is still running."""

    def __init__(self, store_id: str):
        super().__init__(
            code="SYNC_IN_PROGRESS",
            message=f"A sync for store {store_id} is already running",
            status_code=409,
            details={"store_id": store_id}
        )


# ===================
# MAPPING ERRORS
# ===================

class MappingNotFoundError(NotFoundError):
    """No persisted mapping for a barcode."""

    def __init__(self, barcode: str):
        super().__init__(
            resource="Mapping",
            identifier=barcode,
            code="MAPPING_NOT_FOUND"
        )


class InvalidDiscoveryTierError(ValidationError):
    """Unknown tier name in the configured tier list."""

    def __init__(self, tier: str, valid: list[str]):
        super().__init__(
            code="INVALID_DISCOVERY_TIER",
            message=f"Unknown discovery tier: {tier}",
            details={"provided": tier, "valid": valid}
        )


# ===================
# PARSER ERRORS
# ===================

class ImportFileParseError(ValidationError):
    """Store export file could not be parsed."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="IMPORT_FILE_PARSE_ERROR",
            message=message,
            details=details
        )


class ImportFileMissingColumnsError(ImportFileParseError):
    """Required columns are missing from the export file."""

    def __init__(self, missing: list[str], found: list[str]):
        super().__init__(
            message=f"Missing required columns: {', '.join(missing)}",
            details={"missing": missing, "found": found}
        )
