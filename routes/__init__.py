"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.sync import router as sync_router
from routes.mappings import router as mappings_router

__all__ = [
    "sync_router",
    "mappings_router",
]
