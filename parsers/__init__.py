"""
Import file parsers.
"""

from parsers.export_parser import (
    parse_store_export,
    StoreExportParseResult,
)

__all__ = [
    "parse_store_export",
    "StoreExportParseResult",
]
