"""
Revenue Signal Hub: Hub Router
=================================
Role hub endpoints. Each handler loads admin settings and delegates to a
hub view; no scoring happens here.

Endpoints:
  GET /api/hub/ae/priority-accounts    - Scored, grouped accounts
  GET /api/hub/ae/at-risk-deals        - Deals with risk reasons
  GET /api/hub/ae/metrics              - Attainment / coverage
  GET /api/hub/ae/forecast             - This + next quarter forecast
  GET /api/hub/ae/priorities           - Today's action items
  GET /api/hub/leader/dashboard        - Sales leader dashboard
  GET /api/hub/leader/forecast         - Team forecast
  GET /api/hub/leader/priorities       - Action items across direct reports
  GET /api/hub/am/metrics              - Renewals at risk / expansion pipeline
  GET /api/hub/am/renewals             - Renewal accounts
  GET /api/hub/csm/at-risk             - At-risk customers
  GET /api/hub/csm/metrics             - Book health summary
  GET /api/hub/period-name             - Label for a date-range token
  PUT /api/hub/admin/tier-overrides/{account_id} - Set / clear tier override
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from hub_engine.hub_data import (
    get_ae_metrics,
    get_am_metrics,
    get_at_risk_deals,
    get_csm_at_risk_accounts,
    get_csm_metrics,
    get_pipeline_forecast,
    get_priority_accounts,
    get_renewal_accounts,
    get_todays_priorities,
)
from hub_engine.leader_dashboard import get_sales_leader_dashboard, get_team_priorities, resolve_team
from hub_engine.lib.errors import ConfigError
from hub_engine.lib.logger import setup_logger
from hub_engine.periods import get_period_name
from models.hub_models import DashboardFilters, HubSettings, TierName

logger = setup_logger("hubs_router")

router = APIRouter(prefix="/api/hub", tags=["hubs"])


class TierOverrideRequest(BaseModel):
    tier: Optional[TierName] = None
    reason: Optional[str] = None
    actor: Optional[str] = None


def _settings(request: Request) -> HubSettings:
    store = getattr(request.app.state, "admin_config", None)
    return store.load() if store is not None else HubSettings()


def _state(request: Request, name: str):
    return getattr(request.app.state, name, None)


# ─── AE Hub ─────────────────────────────────────────────────

@router.get("/ae/priority-accounts")
async def priority_accounts(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
    limit: int = Query(10, ge=1, le=50),
):
    """Highest-priority accounts, near-duplicates grouped by domain."""
    try:
        accounts = await get_priority_accounts(
            _state(request, "salesforce"), user_id, _settings(request),
            generator=_state(request, "recommender"), limit=limit,
        )
        return {"accounts": accounts, "count": len(accounts)}
    except Exception as e:
        logger.error("Priority accounts failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load priority accounts")


@router.get("/ae/at-risk-deals")
async def at_risk_deals(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
    limit: int = Query(10, ge=1, le=50),
):
    """Open deals with at least one risk reason."""
    try:
        deals = await get_at_risk_deals(
            _state(request, "salesforce"), user_id, _settings(request),
            generator=_state(request, "recommender"),
            call_signals=_state(request, "call_signals"),
            limit=limit,
        )
        return {"deals": deals, "count": len(deals)}
    except Exception as e:
        logger.error("At-risk deals failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load at-risk deals")


@router.get("/ae/metrics")
async def ae_metrics(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
    date_range: Optional[str] = Query(None, description="Period token, default thisYear"),
):
    try:
        return await get_ae_metrics(
            _state(request, "salesforce"), user_id, _settings(request),
            quota_resolver=_state(request, "quota_resolver"), date_range=date_range,
        )
    except Exception as e:
        logger.error("AE metrics failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load AE metrics")


@router.get("/ae/forecast")
async def ae_forecast(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    try:
        periods = await get_pipeline_forecast(
            _state(request, "salesforce"), [user_id], _settings(request),
            quota_resolver=_state(request, "quota_resolver"),
        )
        return {"periods": periods}
    except Exception as e:
        logger.error("AE forecast failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load forecast")


@router.get("/ae/priorities")
async def todays_priorities(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    try:
        items = await get_todays_priorities(
            _state(request, "salesforce"), user_id, _settings(request),
            call_signals=_state(request, "call_signals"),
        )
        return {"priorities": items, "count": len(items)}
    except Exception as e:
        logger.error("Today's priorities failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load priorities")


# ─── Sales Leader Hub ───────────────────────────────────────

@router.get("/leader/dashboard")
async def leader_dashboard(
    request: Request,
    manager_id: str = Query(..., description="Manager's Salesforce user ID"),
    date_range: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    team_filter: str = Query("myTeam", description="myTeam, allUsers or a user ID"),
    reps: List[str] = Query([]),
    min_deal_size: Optional[float] = Query(None, ge=0),
    include_all: bool = Query(False),
):
    filters = DashboardFilters(
        date_range=date_range,
        start_date=start_date,
        end_date=end_date,
        team_filter=team_filter,
        reps=reps,
        min_deal_size=min_deal_size,
        include_all=include_all,
    )
    try:
        return await get_sales_leader_dashboard(
            _state(request, "salesforce"), manager_id, filters, _settings(request),
            quota_resolver=_state(request, "quota_resolver"),
        )
    except Exception as e:
        logger.error("Sales leader dashboard failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load sales leader dashboard")


@router.get("/leader/forecast")
async def leader_forecast(
    request: Request,
    manager_id: str = Query(..., description="Manager's Salesforce user ID"),
    team_filter: str = Query("myTeam"),
):
    try:
        fetcher = _state(request, "salesforce")
        team = await resolve_team(fetcher, manager_id, DashboardFilters(team_filter=team_filter))
        periods = await get_pipeline_forecast(
            fetcher, [u["Id"] for u in team], _settings(request),
            quota_resolver=_state(request, "quota_resolver"),
        )
        return {"periods": periods, "team_size": len(team)}
    except Exception as e:
        logger.error("Team forecast failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load team forecast")


@router.get("/leader/priorities")
async def team_priorities(
    request: Request,
    manager_id: str = Query(..., description="Manager's Salesforce user ID"),
):
    try:
        items = await get_team_priorities(
            _state(request, "salesforce"), manager_id, _settings(request),
            call_signals=_state(request, "call_signals"),
        )
        return {"priorities": items, "count": len(items)}
    except Exception as e:
        logger.error("Team priorities failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load team priorities")


# ─── AM / CSM Hubs ──────────────────────────────────────────

@router.get("/am/metrics")
async def am_metrics(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    try:
        return await get_am_metrics(_state(request, "salesforce"), user_id, _settings(request))
    except Exception as e:
        logger.error("AM metrics failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load AM metrics")


@router.get("/am/renewals")
async def renewals(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
    days_ahead: int = Query(180, ge=1, le=730),
):
    try:
        accounts = await get_renewal_accounts(
            _state(request, "salesforce"), user_id, _settings(request),
            generator=_state(request, "recommender"), days_ahead=days_ahead,
        )
        return {"accounts": accounts, "count": len(accounts)}
    except Exception as e:
        logger.error("Renewal accounts failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load renewals")


@router.get("/csm/at-risk")
async def csm_at_risk(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
    limit: int = Query(20, ge=1, le=100),
):
    try:
        accounts = await get_csm_at_risk_accounts(_state(request, "salesforce"), user_id, limit=limit)
        return {"accounts": accounts, "count": len(accounts)}
    except Exception as e:
        logger.error("CSM at-risk accounts failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load at-risk customers")


@router.get("/csm/metrics")
async def csm_metrics(
    request: Request,
    user_id: str = Query(..., description="Salesforce user ID"),
):
    try:
        return await get_csm_metrics(_state(request, "salesforce"), user_id)
    except Exception as e:
        logger.error("CSM metrics failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load CSM metrics")


# ─── Periods / Admin ────────────────────────────────────────

@router.get("/period-name")
async def period_name(date_range: Optional[str] = Query(None)):
    return {"date_range": date_range, "name": get_period_name(date_range)}


@router.put("/admin/tier-overrides/{account_id}")
async def set_tier_override(account_id: str, req: TierOverrideRequest, request: Request):
    """Set an account's tier; a null tier clears the override."""
    store = _state(request, "admin_config")
    if store is None:
        raise HTTPException(status_code=503, detail="Admin settings not available")
    try:
        overrides = store.set_tier_override(account_id, req.tier, reason=req.reason, actor=req.actor)
    except ConfigError as e:
        logger.error("Tier override failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    override = overrides.get(account_id)
    return {
        "account_id": account_id,
        "override": override.model_dump(mode="json") if override else None,
    }
