"""
Sales Leader Dashboard
=======================

Team-level view for a manager: quota attainment against resolved quota,
pipeline coverage, per-rep performance, coaching lists and recent
wins / losses.

Team selection (DashboardFilters.team_filter):
  myTeam    - the manager's active direct reports; with include_all, every
              active user when the manager has no reports
  allUsers  - every active user
  <user id> - that user plus their direct reports
`reps` narrows whichever team was selected.

Coverage status: ratio < 3 At Risk, < 4 Monitor, else Healthy.

Team priorities: the fused action items of every direct report, capped per
rep so the list stays spread across the team.
"""
from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from hub_engine.forecast import aggregate_forecast, coverage_ratio, quota_attainment
from hub_engine.hub_data import PRIORITY_LIMIT, fetch_open_deals, owner_condition, priority_items, with_mapped_fields
from hub_engine.lib.config import FISCAL_YEAR_START_MONTH
from hub_engine.lib.logger import setup_logger
from hub_engine.lib.utils import days_between, nested, safe_div, safe_float, today_utc
from hub_engine.periods import build_date_filter
from hub_engine.qualification import assess_deal, is_early_stage
from hub_engine.query_builder import MAX_LIMIT, Filter, QueryBuilder
from hub_engine.quota import QuotaResolver
from hub_engine.record_fetch import BASIC, EnrichedThenBasic, FetchResult, RecordFetcher, fetch_records, guarded
from models.hub_models import DashboardFilters, HubSettings

logger = setup_logger(__name__)

MY_TEAM = "myTeam"
ALL_USERS = "allUsers"
MAX_TEAM_SIZE = 200

COVERAGE_AT_RISK = 3
COVERAGE_MONITOR = 4

STUCK_DAYS = 30
LOW_QUALIFICATION_SCORE = 60
COLD_DAYS = 21
LARGE_DEAL_AMOUNT = 100_000
RECENT_RESULT_DAYS = 30
COACHING_LIST_SIZE = 10
TEAM_PRIORITIES_PER_REP = 2


def coverage_status(ratio: float) -> str:
    if ratio < COVERAGE_AT_RISK:
        return "At Risk"
    if ratio < COVERAGE_MONITOR:
        return "Monitor"
    return "Healthy"


def empty_dashboard(period_label: str = "") -> Dict[str, Any]:
    return {
        "period": period_label,
        "team_metrics": {
            "quota_attainment": {"current": 0.0, "target": 0.0, "percentage": 0.0, "source": "none"},
            "pipeline_coverage": {"pipeline": 0.0, "remaining_quota": 0.0, "ratio": 0.0, "status": "At Risk"},
            "at_risk_deals": {"count": 0, "value": 0.0},
        },
        "forecast": None,
        "rep_performance": [],
        "coaching_opportunities": {
            "stuck_deals": [],
            "low_qualification": [],
            "cold_deals": [],
            "large_deals": [],
        },
        "recent_wins": [],
        "recent_losses": [],
    }


# ─── Team selection ─────────────────────────────────────────

def _users_query(*conditions):
    return (
        QueryBuilder("User")
        .select("Id", "Name")
        .where(Filter("IsActive", "eq", True), *conditions)
        .order_by("Name")
        .limit(MAX_TEAM_SIZE)
        .build()
    )


async def resolve_team(
    fetcher: RecordFetcher,
    manager_id: str,
    filters: DashboardFilters,
) -> List[Dict[str, Any]]:
    """Active users on the selected team as [{"Id", "Name"}], reps filter applied."""
    team_filter = filters.team_filter or MY_TEAM

    if team_filter == ALL_USERS:
        team = await guarded(fetch_records(fetcher, _users_query()), [], "Team fetch (all users)")
    elif team_filter == MY_TEAM:
        team = await guarded(
            fetch_records(fetcher, _users_query(Filter("ManagerId", "eq", manager_id))),
            [], "Team fetch (direct reports)",
        )
        if not team and filters.include_all:
            logger.info("No direct reports for %s, falling back to all active users", manager_id)
            team = await guarded(fetch_records(fetcher, _users_query()), [], "Team fetch (all users)")
    else:
        lead, reports = await asyncio.gather(
            guarded(fetch_records(fetcher, _users_query(Filter("Id", "eq", team_filter))), [], "Team lead fetch"),
            guarded(fetch_records(fetcher, _users_query(Filter("ManagerId", "eq", team_filter))), [], "Team reports fetch"),
        )
        team = [*lead, *reports]

    if filters.reps:
        wanted = set(filters.reps)
        team = [u for u in team if u.get("Id") in wanted]

    seen = set()
    unique = []
    for user in team:
        if user.get("Id") and user["Id"] not in seen:
            seen.add(user["Id"])
            unique.append(user)
    return unique


# ─── Dashboard ──────────────────────────────────────────────

def _deal_row(record: Mapping[str, Any], amount_field: str, **extra) -> Dict[str, Any]:
    row = {
        "id": record.get("Id"),
        "opportunity_name": record.get("Name"),
        "account_name": nested(record, "Account.Name", "Unknown"),
        "owner": nested(record, "Owner.Name", "Unknown"),
        "amount": safe_float(record.get(amount_field)),
        "stage": record.get("StageName"),
    }
    row.update(extra)
    return row


def _rep_row(rep: Mapping[str, Any], deals: Sequence[Dict[str, Any]], won: float,
             quota: float, amount_field: str, today: date) -> Dict[str, Any]:
    pipeline = sum(safe_float(d["record"].get(amount_field)) for d in deals)
    last_update = [
        days_between(d["record"].get("LastModifiedDate"), today) for d in deals
    ]
    last_update = [d for d in last_update if d is not None]
    return {
        "rep_id": rep.get("Id"),
        "rep_name": rep.get("Name"),
        "closed_won": won,
        "quota": quota,
        "quota_attainment": quota_attainment(won, quota),
        "pipeline": pipeline,
        "pipeline_coverage": coverage_ratio(pipeline, quota, won),
        "active_deals": len(deals),
        "at_risk_deals": sum(1 for d in deals if d["assessment"].is_at_risk),
        "avg_deal_size": round(safe_div(pipeline, len(deals))),
        "last_activity_days": min(last_update) if last_update else None,
    }


async def get_sales_leader_dashboard(
    fetcher: RecordFetcher,
    manager_id: str,
    filters: Optional[DashboardFilters] = None,
    settings: Optional[HubSettings] = None,
    quota_resolver: Optional[QuotaResolver] = None,
    fiscal_start_month: int = FISCAL_YEAR_START_MONTH,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    filters = filters or DashboardFilters()
    settings = settings or HubSettings()
    quota_resolver = quota_resolver or QuotaResolver()
    today = today or today_utc()
    amount_field = settings.fields.amount_field

    date_filter = build_date_filter(
        filters.date_range, filters.start_date, filters.end_date,
        field="CloseDate", fiscal_start_month=fiscal_start_month, today=today,
    )
    period = date_filter.period

    team = await resolve_team(fetcher, manager_id, filters)
    if not team:
        logger.info("Sales leader dashboard for %s: empty team", manager_id)
        return empty_dashboard(period.label)
    team_ids = [u["Id"] for u in team]

    min_amount = (
        Filter(amount_field, "gte", filters.min_deal_size)
        if filters.min_deal_size else None
    )
    recent_start = today - timedelta(days=RECENT_RESULT_DAYS)
    recent = (Filter("CloseDate", "gte", recent_start), Filter("CloseDate", "lte", today))
    result_fields = with_mapped_fields(
        ("Id", "Name", "OwnerId", "Owner.Name", "AccountId", "Account.Name", "CloseDate"), settings,
    )

    won_descriptor = (
        QueryBuilder("Opportunity").select("Id", "OwnerId", amount_field)
        .where(owner_condition(team_ids), Filter("IsWon", "eq", True), date_filter.condition, min_amount)
        .limit(MAX_LIMIT).build()
    )
    wins_descriptor = (
        QueryBuilder("Opportunity").select(*result_fields)
        .where(owner_condition(team_ids), Filter("IsWon", "eq", True), *recent)
        .order_by("CloseDate", desc=True).limit(COACHING_LIST_SIZE).build()
    )
    losses_descriptor = (
        QueryBuilder("Opportunity").select(*result_fields, "Loss_Reason__c")
        .where(
            owner_condition(team_ids), Filter("IsClosed", "eq", True),
            Filter("IsWon", "eq", False), *recent,
        )
        .order_by("CloseDate", desc=True).limit(COACHING_LIST_SIZE).build()
    )

    won, pipeline, wins, losses, quota = await asyncio.gather(
        guarded(fetch_records(fetcher, won_descriptor), [], "Team closed-won fetch"),
        fetch_open_deals(fetcher, team_ids, settings, min_amount, limit=MAX_LIMIT),
        guarded(fetch_records(fetcher, wins_descriptor), [], "Recent wins fetch"),
        guarded(
            EnrichedThenBasic(fetcher).fetch(
                losses_descriptor, (*result_fields, "Loss_Reason__c"), result_fields,
            ),
            FetchResult(kind=BASIC),
            "Recent losses fetch",
        ),
        quota_resolver.resolve(settings.quota, team_ids, period),
    )

    deals = [
        {"record": r, "assessment": assess_deal(r, pipeline.enriched, today)}
        for r in pipeline.records
    ]

    won_by_rep: Dict[str, float] = {}
    for record in won:
        owner = record.get("OwnerId")
        won_by_rep[owner] = won_by_rep.get(owner, 0.0) + safe_float(record.get(amount_field))
    total_won = sum(won_by_rep.values())
    total_pipeline = sum(safe_float(d["record"].get(amount_field)) for d in deals)
    remaining = max(0.0, quota.total - total_won)
    ratio = coverage_ratio(total_pipeline, quota.total, total_won)
    at_risk = [d for d in deals if d["assessment"].is_at_risk]

    stuck, low_qualification, cold, large = [], [], [], []
    for d in deals:
        record, assessment = d["record"], d["assessment"]
        if assessment.days_in_stage > STUCK_DAYS:
            stuck.append(_deal_row(record, amount_field, days_in_stage=assessment.days_in_stage))
        if assessment.score < LOW_QUALIFICATION_SCORE and not is_early_stage(record.get("StageName")):
            low_qualification.append(_deal_row(record, amount_field, qualification_score=assessment.score))
        idle = days_between(record.get("LastModifiedDate"), today)
        if idle is not None and idle > COLD_DAYS:
            cold.append(_deal_row(record, amount_field, days_since_update=idle))
        if safe_float(record.get(amount_field)) >= LARGE_DEAL_AMOUNT:
            large.append(_deal_row(record, amount_field, days_in_stage=assessment.days_in_stage))
    large.sort(key=lambda row: -row["amount"])

    forecast = aggregate_forecast(
        [d["record"] for d in deals],
        settings.forecast,
        amount_field=amount_field,
        category_field=settings.fields.forecast_category_field,
        closed_won=total_won,
        quota_target=quota.total,
        label=period.label,
    )

    logger.info(
        "Sales leader dashboard for %s: %d reps, %d open deals (%s), coverage %.2f",
        manager_id, len(team), len(deals), pipeline.kind, ratio,
    )
    return {
        "period": period.label,
        "team_metrics": {
            "quota_attainment": {
                "current": total_won,
                "target": quota.total,
                "percentage": quota_attainment(total_won, quota.total),
                "source": quota.source,
            },
            "pipeline_coverage": {
                "pipeline": total_pipeline,
                "remaining_quota": remaining,
                "ratio": ratio,
                "status": coverage_status(ratio),
            },
            "at_risk_deals": {
                "count": len(at_risk),
                "value": sum(safe_float(d["record"].get(amount_field)) for d in at_risk),
            },
        },
        "forecast": {
            "commit": forecast.commit,
            "best_case": forecast.best_case,
            "pipeline": forecast.pipeline,
            "method_used": forecast.method_used,
        },
        "rep_performance": [
            _rep_row(
                rep,
                [d for d in deals if d["record"].get("OwnerId") == rep["Id"]],
                won_by_rep.get(rep["Id"], 0.0),
                quota.for_subject(rep["Id"]),
                amount_field,
                today,
            )
            for rep in team
        ],
        "coaching_opportunities": {
            "stuck_deals": stuck[:COACHING_LIST_SIZE],
            "low_qualification": low_qualification[:COACHING_LIST_SIZE],
            "cold_deals": cold[:COACHING_LIST_SIZE],
            "large_deals": large[:COACHING_LIST_SIZE],
        },
        "recent_wins": [
            {
                "id": r.get("Id"),
                "account_name": nested(r, "Account.Name", "Unknown"),
                "amount": safe_float(r.get(amount_field)),
                "owner": nested(r, "Owner.Name", "Unknown"),
                "close_date": r.get("CloseDate"),
            }
            for r in wins
        ],
        "recent_losses": [
            {
                "id": r.get("Id"),
                "account_name": nested(r, "Account.Name", "Unknown"),
                "amount": safe_float(r.get(amount_field)),
                "owner": nested(r, "Owner.Name", "Unknown"),
                "loss_reason": r.get("Loss_Reason__c") or "Unknown",
            }
            for r in losses.records
        ],
    }


# ─── Team priorities ────────────────────────────────────────

async def get_team_priorities(
    fetcher: RecordFetcher,
    manager_id: str,
    settings: Optional[HubSettings] = None,
    call_signals=None,
    limit: int = PRIORITY_LIMIT,
    per_rep: int = TEAM_PRIORITIES_PER_REP,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """
    Today's priorities across a manager's direct reports.

    Items come from the same fused deal signals as a rep's own list, most
    urgent first, with at most `per_rep` items per rep so one rep's book
    cannot crowd out the rest of the team.
    """
    settings = settings or HubSettings()
    team = await resolve_team(fetcher, manager_id, DashboardFilters(team_filter=MY_TEAM))
    if not team:
        return []

    items = await priority_items(fetcher, [u["Id"] for u in team], settings, call_signals, today or today_utc())

    taken: Dict[str, int] = {}
    selected = []
    for item in items:
        owner = item["owner_id"] or ""
        if taken.get(owner, 0) >= per_rep:
            continue
        taken[owner] = taken.get(owner, 0) + 1
        selected.append({**item, "title": f"{item['owner_name']}: {item['title']}"})
        if len(selected) >= limit:
            break
    return selected
