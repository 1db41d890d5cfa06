"""
Revenue Signal Hub: Watchlist Router
=======================================
Per-user deal watchlist backed by the configured WatchlistStore.

Endpoints:
  GET    /api/hub/ae/watchlist            - Watched deals, assessed
  POST   /api/hub/ae/watchlist            - Add a deal
  DELETE /api/hub/ae/watchlist/{deal_id}  - Remove a deal
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from hub_engine.hub_data import get_watchlist_deals
from hub_engine.lib.logger import setup_logger
from models.hub_models import HubSettings, WatchlistRequest

logger = setup_logger("watchlist_router")

router = APIRouter(prefix="/api/hub/ae/watchlist", tags=["watchlist"])


def _store(request: Request):
    store = getattr(request.app.state, "watchlist", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Watchlist store not available")
    return store


@router.get("")
async def list_watchlist(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    """Watched deals with current qualification and risk."""
    store = _store(request)
    admin = getattr(request.app.state, "admin_config", None)
    try:
        deals = await get_watchlist_deals(
            getattr(request.app.state, "salesforce", None), store, user_id,
            admin.load() if admin is not None else HubSettings(),
        )
        return {"deals": deals, "count": len(deals)}
    except Exception as e:
        logger.error("Watchlist fetch failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load watchlist")


@router.post("")
async def add_to_watchlist(
    req: WatchlistRequest,
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    store = _store(request)
    try:
        deal_ids = store.add(user_id, req.deal_id)
        return {"deal_ids": deal_ids, "count": len(deal_ids)}
    except Exception as e:
        logger.error("Watchlist add failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to update watchlist")


@router.delete("/{deal_id}")
async def remove_from_watchlist(
    deal_id: str,
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    store = _store(request)
    try:
        deal_ids = store.remove(user_id, deal_id)
        return {"deal_ids": deal_ids, "count": len(deal_ids)}
    except Exception as e:
        logger.error("Watchlist remove failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to update watchlist")
