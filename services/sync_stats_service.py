"""
Per-store daily sync statistics.

One row per (store_id, sync_date) in `shopify_sync_stats`; a later run on
the same day overwrites the earlier one.
"""

from datetime import date
from typing import Optional
import structlog

from config import get_supabase_client, settings
from exceptions import DatabaseError
from models.sync import SyncSummary

logger = structlog.get_logger(__name__)


class SyncStatsService:
    """Audit trail of sync runs. Written by the caller, not the orchestrator."""

    def __init__(self, db=None, table: Optional[str] = None):
        self.db = db if db is not None else get_supabase_client()
        self.table = table or settings.sync_stats_table

    def record(self, summary: SyncSummary) -> dict:
        """
        Upsert the run's counters.

        Returns:
            The row written

        Raises:
            DatabaseError: If the upsert fails
        """
        sync_date = (summary.finished_at or summary.started_at)
        row = {
            "store_id": summary.store_id,
            "sync_date": (sync_date.date() if sync_date else date.today()).isoformat(),
            "total_products": summary.total,
            "successful_updates": summary.successful,
            "failed_updates": summary.failed,
            "new_mappings_discovered": summary.new_mappings,
            "avg_search_time_ms": summary.avg_search_time_ms,
            "sync_duration_ms": summary.duration_ms,
            "discovery_methods_used": summary.tier_counts,
        }

        try:
            (
                self.db.table(self.table)
                .upsert(row, on_conflict="store_id,sync_date")
                .execute()
            )
        except Exception as e:
            logger.error("record_sync_stats_failed", store_id=summary.store_id, error=str(e))
            raise DatabaseError("upsert", str(e))

        logger.info(
            "sync_stats_recorded",
            store_id=summary.store_id,
            sync_date=row["sync_date"],
            successful=summary.successful,
            failed=summary.failed
        )
        return row

    def get_history(self, store_id: str, limit: int = 30) -> list[dict]:
        """Most recent daily rows for a store, newest first."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("store_id", store_id)
                .order("sync_date", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("get_sync_stats_failed", store_id=store_id, error=str(e))
            raise DatabaseError("select", str(e))

        return result.data or []


# Singleton instance for convenience
_sync_stats_service: Optional[SyncStatsService] = None


def get_sync_stats_service() -> SyncStatsService:
    """Get or create SyncStatsService instance."""
    global _sync_stats_service
    if _sync_stats_service is None:
        _sync_stats_service = SyncStatsService()
    return _sync_stats_service
