"""
Deal watchlist persistence.

Hub views depend on the WatchlistStore interface only; the production
implementation keeps one row per (user_id, deal_id) in Supabase, and adds
are upserts so repeating or racing an add leaves a single row.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Protocol

from hub_engine.lib.logger import setup_logger
from hub_engine.lib.supabase_client import delete_rows, query_table, upsert_row

logger = setup_logger(__name__)

WATCHLIST_TABLE = "deal_watchlist"
MAX_WATCHLIST = 500


class WatchlistStore(Protocol):
    def get(self, user_id: str) -> List[str]:
        ...

    def add(self, user_id: str, deal_id: str) -> List[str]:
        ...

    def remove(self, user_id: str, deal_id: str) -> List[str]:
        ...


class SupabaseWatchlistStore:
    """Watchlist rows in the deal_watchlist table."""

    def __init__(self, table: str = WATCHLIST_TABLE):
        self.table = table

    def get(self, user_id: str) -> List[str]:
        rows = query_table(
            self.table,
            select="deal_id",
            filters={"user_id": user_id},
            order_by="created_at",
            desc=False,
            limit=MAX_WATCHLIST,
        )
        return [row["deal_id"] for row in rows if row.get("deal_id")]

    def add(self, user_id: str, deal_id: str) -> List[str]:
        upsert_row(
            self.table,
            {
                "user_id": user_id,
                "deal_id": deal_id,
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="user_id,deal_id",
            ignore_duplicates=True,
        )
        logger.info("Watchlist add: user=%s deal=%s", user_id, deal_id)
        return self.get(user_id)

    def remove(self, user_id: str, deal_id: str) -> List[str]:
        delete_rows(self.table, {"user_id": user_id, "deal_id": deal_id})
        logger.info("Watchlist remove: user=%s deal=%s", user_id, deal_id)
        return self.get(user_id)
