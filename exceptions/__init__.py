"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ExternalServiceError,
    DatabaseError,

    # Shopify
    ShopifyNotConfiguredError,
    ShopifyRequestError,
    ShopifyRecordNotFoundError,
    ShopifyRetriesExhaustedError,
    ShopifySearchIncompleteError,

    # Sync
    LocationNotFoundError,
    EmptyInventoryError,
    SyncInProgressError,

    # Mappings
    MappingNotFoundError,
    InvalidDiscoveryTierError,

    # Export parser
    ImportFileParseError,
    ImportFileMissingColumnsError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ExternalServiceError",
    "DatabaseError",

    # Shopify
    "ShopifyNotConfiguredError",
    "ShopifyRequestError",
    "ShopifyRecordNotFoundError",
    "ShopifyRetriesExhaustedError",
    "ShopifySearchIncompleteError",

    # Sync
    "LocationNotFoundError",
    "EmptyInventoryError",
    "SyncInProgressError",

    # Mappings
    "MappingNotFoundError",
    "InvalidDiscoveryTierError",

    # Export parser
    "ImportFileParseError",
    "ImportFileMissingColumnsError",
]
