"""
Supabase access for Revenue Signal Hub.

One shared client, plus the three table operations the hub needs: the
watchlist store, the admin settings store and the stored call-intelligence
signals all go through these helpers.

Usage:
    from hub_engine.lib.supabase_client import query_table, upsert_row

    rows = query_table("buying_signals", filters={"opportunity_id": "006..."})
    upsert_row("deal_watchlist", {"user_id": "005...", "deal_id": "006..."},
               on_conflict="user_id,deal_id")
"""
import os
from typing import Any, Dict, List

from hub_engine.lib import config  # noqa: F401  (loads .env)
from hub_engine.lib.errors import ConfigError
from hub_engine.lib.logger import setup_logger

logger = setup_logger(__name__)

_client = None


def get_client():
    """The process-wide Supabase client, created on first call."""
    global _client
    if _client is None:
        url = os.getenv("SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "") or os.getenv("SUPABASE_KEY", "")
        if not (url and key):
            raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")

        from supabase import create_client
        _client = create_client(url, key)
        logger.info("Connected to Supabase at %s", url)
    return _client


def _where(query, filters: Dict[str, Any]):
    for column, value in filters.items():
        query = query.eq(column, value)
    return query


def query_table(
    table: str,
    select: str = "*",
    filters: Dict[str, Any] = None,
    in_filters: Dict[str, List[Any]] = None,
    order_by: str = None,
    desc: bool = True,
    limit: int = 100,
) -> List[Dict]:
    """
    Rows matching every equality filter and every membership filter.

    Errors propagate; callers decide which default applies.
    """
    query = _where(get_client().table(table).select(select), filters or {})
    for column, values in (in_filters or {}).items():
        query = query.in_(column, list(values))
    if order_by:
        query = query.order(order_by, desc=desc)
    return query.limit(limit).execute().data or []


def upsert_row(table: str, row: Dict, on_conflict: str = None, ignore_duplicates: bool = False) -> None:
    """
    Insert a row, or upsert it on the given conflict columns.

    With ignore_duplicates an existing row on the conflict columns is kept
    as it is instead of being overwritten.
    """
    target = get_client().table(table)
    if on_conflict:
        target.upsert(row, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates).execute()
    else:
        target.insert(row).execute()


def delete_rows(table: str, filters: Dict[str, Any]) -> None:
    _where(get_client().table(table).delete(), filters).execute()
