"""
Hub Data Views
===============

Request-scoped view builders for the AE, AM and CSM hubs. Each view fetches
records through a RecordFetcher, runs the pure scorers and returns plain
dicts ready for JSON.

Views:
  get_priority_accounts()    - scored, domain-grouped accounts with recommendations
  get_at_risk_deals()        - open deals with risk reasons (CRM + call intelligence)
  get_pipeline_forecast()    - this / next quarter forecast against quota
  get_ae_metrics()           - attainment, coverage, average deal size
  get_todays_priorities()    - urgency-sorted action items from fused deal signals
  get_am_metrics()           - renewals at risk, expansion pipeline, contract value
  get_renewal_accounts()     - AM renewals with classification and signals
  get_csm_at_risk_accounts() - customers with health risk factors
  get_csm_metrics()          - at-risk count, average health, upcoming renewals
  get_watchlist_deals()      - a user's watched deals, assessed

Every external call is wrapped in guarded(): a failed fetch contributes its
default (usually an empty list) and the rest of the view is still built.
"""
from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from hub_engine.domain_grouper import group_by_domain
from hub_engine.entities import SEVERITY_RANK, ScoredEntity, Severity, Signal
from hub_engine.forecast import ForecastSummary, aggregate_forecast
from hub_engine.lib.circuit_breaker import call_with_breaker
from hub_engine.lib.config import FISCAL_YEAR_START_MONTH, MAX_CONCURRENT_LOOKUPS
from hub_engine.lib.errors import UnknownFieldError
from hub_engine.lib.logger import setup_logger
from hub_engine.lib.utils import days_between, nested, safe_div, safe_float, today_utc
from hub_engine.periods import Period, build_date_filter, period_condition, resolve_period
from hub_engine.priority_scorer import (
    ACCOUNT_BASIC_FIELDS,
    ACCOUNT_ENRICHED_FIELDS,
    score_account,
)
from hub_engine.qualification import (
    OPPORTUNITY_BASIC_FIELDS,
    OPPORTUNITY_ENRICHED_FIELDS,
    QualificationResult,
    assess_deal,
    risk_score,
)
from hub_engine.query_builder import MAX_LIMIT, AnyOf, Filter, QueryBuilder, QueryDescriptor
from hub_engine.quota import QuotaResolution, QuotaResolver
from hub_engine.recommendations import (
    AT_RISK_DEAL,
    EXPANSION_PLAY,
    PRIORITY_ACCOUNT,
    RENEWAL_RISK,
    Recommendation,
    RecommendationContext,
    RecommendationGenerator,
    account_fallback,
    deal_fallback,
    recommend,
    renewal_fallback,
)
from hub_engine.record_fetch import (
    BASIC,
    ENRICHED,
    EnrichedThenBasic,
    FetchResult,
    RecordFetcher,
    fetch_records,
    guarded,
)
from hub_engine.renewals import (
    ARR_FIELD,
    CSM_FIELD,
    CUSTOMER_BASIC_FIELDS,
    CUSTOMER_ENRICHED_FIELDS,
    EXPANSION,
    HEALTH_FIELD,
    RENEWAL_DATE_FIELD,
    RENEWAL_FIELDS,
    RISK_FIELD,
    assess_customer_health,
    assess_renewal,
    renewal_signals,
)
from hub_engine.signal_fusion import FusionConfig, fuse_entity, fuse_signals, merge_risk_reasons, normalize_confidence
from hub_engine.watchlist import WatchlistStore
from models.hub_models import HubSettings

logger = setup_logger(__name__)

CALL_SIGNALS_SERVICE = "call_intelligence"

OPEN_DEAL_LIMIT = 200
PRIORITY_LIMIT = 15
RECENT_ACCOUNT_DAYS = 30
CUSTOMER_TYPE = "Customer"
FORECAST_TOKENS = ("thisQuarter", "nextQuarter")
RENEWAL_STAGE = "Renewal"
EXPANSION_DEAL_TYPE = "Upsell"
AM_AT_RISK_HEALTH = 50
CSM_AT_RISK_HEALTH = 60
CSM_RENEWAL_WINDOW_DAYS = 90


# ─── Shared helpers ─────────────────────────────────────────

def _today(today: Optional[date]) -> date:
    return today or today_utc()


def _since(day: date) -> datetime:
    """Midnight UTC of a day, for comparisons against datetime fields."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def fusion_config(settings: HubSettings) -> FusionConfig:
    return FusionConfig(
        corroboration_bonus=settings.fusion.corroboration_bonus,
        corroboration_cap=settings.fusion.corroboration_cap,
    )


def with_mapped_fields(fields: Sequence[str], settings: HubSettings) -> Tuple[str, ...]:
    """Field set plus the org's configured amount and forecast-category fields."""
    extra = (settings.fields.amount_field, settings.fields.forecast_category_field)
    return tuple(dict.fromkeys((*fields, *extra)))


def owner_condition(owner_ids: Sequence[str]) -> Filter:
    if len(owner_ids) == 1:
        return Filter("OwnerId", "eq", owner_ids[0])
    return Filter("OwnerId", "in", list(owner_ids))


def signal_view(signal: Signal) -> Dict[str, Any]:
    return {
        "category": signal.category.value,
        "label": signal.label,
        "evidence": signal.evidence,
        "severity": signal.severity.value,
        "source": signal.source_system.value,
        "confidence": normalize_confidence(signal),
    }


def deal_view(
    record: Mapping[str, Any],
    assessment: QualificationResult,
    reasons: Sequence[Signal],
    amount_field: str,
) -> Dict[str, Any]:
    return {
        "id": record.get("Id"),
        "name": record.get("Name"),
        "account_id": record.get("AccountId"),
        "account_name": nested(record, "Account.Name", "Unknown"),
        "owner_id": record.get("OwnerId"),
        "owner_name": nested(record, "Owner.Name", "Unknown"),
        "amount": safe_float(record.get(amount_field)),
        "stage": record.get("StageName"),
        "close_date": record.get("CloseDate"),
        "probability": record.get("Probability"),
        "days_in_stage": assessment.days_in_stage,
        "qualification_score": assessment.score,
        "qualification_source": "meddpicc" if assessment.enriched else "basic",
        "risk_score": risk_score(reasons),
        "risk_reasons": [signal_view(r) for r in reasons],
    }


def forecast_view(summary: ForecastSummary, quota: QuotaResolution, period: Period) -> Dict[str, Any]:
    return {
        "label": summary.label,
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
        "stages": [
            {"stage": b.stage_name, "count": b.count, "value": b.value}
            for b in summary.stages
        ],
        "commit": summary.commit,
        "best_case": summary.best_case,
        "pipeline": summary.pipeline,
        "total_pipeline": summary.total_pipeline,
        "closed_won": summary.closed_won,
        "quota_target": summary.quota_target,
        "quota_attainment": summary.quota_attainment,
        "coverage_ratio": summary.coverage_ratio,
        "deal_count": summary.deal_count,
        "quota_source": quota.source,
        "method_configured": summary.method_configured,
        "method_used": summary.method_used,
    }


async def recommend_all(
    generator: Optional[RecommendationGenerator],
    requests: Sequence[Tuple[RecommendationContext, str]],
    max_concurrency: int = MAX_CONCURRENT_LOOKUPS,
) -> List[Recommendation]:
    """One recommendation per (context, fallback) pair, bounded fan-out."""
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _one(context: RecommendationContext, fallback: str) -> Recommendation:
        async with semaphore:
            return await recommend(generator, context, fallback)

    return list(await asyncio.gather(*(_one(c, f) for c, f in requests)))


async def call_intelligence_for(call_signals, deal_ids: Iterable[str]) -> Dict[str, Any]:
    """Stored call signals per deal id; empty when no source is wired."""
    ids = [d for d in deal_ids if d]
    if call_signals is None or not ids:
        return {}
    return await guarded(
        call_with_breaker(CALL_SIGNALS_SERVICE, call_signals.get_signals_for_subjects, ids),
        {},
        "Call intelligence lookup",
    )


def open_deals_descriptor(owner_ids: Sequence[str], settings: HubSettings,
                          *conditions, limit: int = OPEN_DEAL_LIMIT) -> QueryDescriptor:
    return (
        QueryBuilder("Opportunity")
        .select(*with_mapped_fields(OPPORTUNITY_BASIC_FIELDS, settings))
        .where(owner_condition(owner_ids), Filter("IsClosed", "eq", False), *conditions)
        .order_by("CloseDate")
        .limit(limit)
        .build()
    )


async def fetch_open_deals(fetcher: RecordFetcher, owner_ids: Sequence[str],
                           settings: HubSettings, *conditions,
                           limit: int = OPEN_DEAL_LIMIT) -> FetchResult:
    descriptor = open_deals_descriptor(owner_ids, settings, *conditions, limit=limit)
    return await guarded(
        EnrichedThenBasic(fetcher).fetch(
            descriptor,
            with_mapped_fields(OPPORTUNITY_ENRICHED_FIELDS, settings),
            with_mapped_fields(OPPORTUNITY_BASIC_FIELDS, settings),
        ),
        FetchResult(kind=BASIC),
        "Open deals fetch",
    )


# ─── AE hub ─────────────────────────────────────────────────

def _account_view(entity: ScoredEntity, signal_score: float, recommendation: Recommendation) -> Dict[str, Any]:
    view = {
        "id": entity.id,
        "name": entity.display_name,
        "domain_key": entity.domain_key,
        "priority_score": entity.score,
        "tier": entity.tier.value,
        "is_overridden": entity.is_overridden,
        "signal_score": signal_score,
        "signals": [signal_view(s) for s in entity.signals],
        "recommendation": recommendation.text,
        "recommendation_source": recommendation.source,
    }
    view.update(entity.base_attributes)
    view["group_count"] = len(entity.attr("group_member_ids") or [entity.id])
    return view


async def get_priority_accounts(
    fetcher: RecordFetcher,
    user_id: str,
    settings: Optional[HubSettings] = None,
    generator: Optional[RecommendationGenerator] = None,
    limit: int = 10,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Highest-priority accounts owned by the user, one row per domain group."""
    settings = settings or HubSettings()
    today = _today(today)

    descriptor = (
        QueryBuilder("Account")
        .select(*ACCOUNT_BASIC_FIELDS)
        .where(Filter("OwnerId", "eq", user_id))
        .order_by("LastModifiedDate", desc=True)
        .limit(min(MAX_LIMIT, limit * 5))
        .build()
    )
    result = await guarded(
        EnrichedThenBasic(fetcher).fetch(descriptor, ACCOUNT_ENRICHED_FIELDS, ACCOUNT_BASIC_FIELDS),
        FetchResult(kind=BASIC),
        "Priority accounts fetch",
    )

    scored = [score_account(r, result.enriched, today, settings.tier_overrides) for r in result.records]
    groups = group_by_domain(scored)

    config = fusion_config(settings)
    fused = {
        g.key: fuse_entity(g.key, [m.signals for m in g.members], config)
        for g in groups
    }
    ranked = sorted(
        groups,
        key=lambda g: (-g.representative.score, -fused[g.key].composite_score),
    )[:limit]

    accounts = []
    for group in ranked:
        merged = fused[group.key]
        accounts.append(ScoredEntity(
            id=group.representative.id,
            display_name=group.representative.display_name,
            base_attributes=group.representative.base_attributes,
            score=group.representative.score,
            tier=group.representative.tier,
            signals=merged.signals,
            is_overridden=group.representative.is_overridden,
            domain_key=group.key,
        ))

    recommendations = await recommend_all(generator, [
        (
            RecommendationContext(PRIORITY_ACCOUNT, a.id, {
                "account": a.display_name,
                "industry": a.attr("industry"),
                "employees": a.attr("employee_count"),
                "revenue": a.attr("revenue"),
                "buying_stage": a.attr("buying_stage"),
                "intent_score": a.attr("intent_score"),
                "priority_score": a.score,
            }),
            account_fallback(a.attr("rating"), a.attr("employee_count", 0), a.attr("revenue", 0)),
        )
        for a in accounts
    ])

    logger.info(
        "Priority accounts for %s: %d records (%s) -> %d groups",
        user_id, len(result.records), result.kind, len(groups),
    )
    return [
        _account_view(a, fused[a.domain_key].composite_score, rec)
        for a, rec in zip(accounts, recommendations)
    ]


async def get_at_risk_deals(
    fetcher: RecordFetcher,
    user_id: str,
    settings: Optional[HubSettings] = None,
    generator: Optional[RecommendationGenerator] = None,
    call_signals=None,
    limit: int = 10,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Open deals with at least one risk reason, highest risk first."""
    settings = settings or HubSettings()
    today = _today(today)
    amount_field = settings.fields.amount_field

    result = await fetch_open_deals(fetcher, [user_id], settings)
    intel = await call_intelligence_for(call_signals, (r.get("Id") for r in result.records))

    at_risk = []
    for record in result.records:
        assessment = assess_deal(record, result.enriched, today)
        extra = intel.get(record.get("Id"))
        reasons = merge_risk_reasons(assessment.reasons, extra.signals if extra else ())
        if reasons:
            at_risk.append((record, assessment, reasons))

    at_risk.sort(key=lambda item: -risk_score(item[2]))
    at_risk = at_risk[:limit]

    recommendations = await recommend_all(generator, [
        (
            RecommendationContext(AT_RISK_DEAL, record.get("Id") or "", {
                "deal": record.get("Name"),
                "stage": record.get("StageName"),
                "amount": safe_float(record.get(amount_field)),
                "days_in_stage": assessment.days_in_stage,
                "risks": [r.label for r in reasons],
            }),
            deal_fallback(
                days_between(record.get("LastModifiedDate"), today) or 0,
                bool(record.get("NextStep")),
            ),
        )
        for record, assessment, reasons in at_risk
    ])

    deals = []
    for (record, assessment, reasons), rec in zip(at_risk, recommendations):
        view = deal_view(record, assessment, reasons, amount_field)
        view["recommendation"] = rec.text
        view["recommendation_source"] = rec.source
        deals.append(view)

    logger.info("At-risk deals for %s: %d of %d open", user_id, len(deals), len(result.records))
    return deals


async def forecast_for_period(
    fetcher: RecordFetcher,
    owner_ids: Sequence[str],
    period: Period,
    settings: HubSettings,
    quota_resolver: QuotaResolver,
) -> Dict[str, Any]:
    """Forecast view for one period: open pipeline and closed-won closing in it."""
    amount_field = settings.fields.amount_field
    date_condition = period_condition(period, "CloseDate")
    fields = with_mapped_fields(
        ("Id", "Name", "StageName", "Probability", "CloseDate", "OwnerId", "Type"), settings,
    )

    open_descriptor = (
        QueryBuilder("Opportunity").select(*fields)
        .where(owner_condition(owner_ids), Filter("IsClosed", "eq", False), date_condition)
        .limit(MAX_LIMIT).build()
    )
    won_descriptor = (
        QueryBuilder("Opportunity").select("Id", "OwnerId", amount_field)
        .where(owner_condition(owner_ids), Filter("IsWon", "eq", True), date_condition)
        .limit(MAX_LIMIT).build()
    )

    deals, won, quota = await asyncio.gather(
        guarded(fetch_records(fetcher, open_descriptor), [], f"Forecast pipeline fetch ({period.label})"),
        guarded(fetch_records(fetcher, won_descriptor), [], f"Forecast closed-won fetch ({period.label})"),
        quota_resolver.resolve(settings.quota, owner_ids, period),
    )

    summary = aggregate_forecast(
        deals,
        settings.forecast,
        amount_field=amount_field,
        category_field=settings.fields.forecast_category_field,
        closed_won=sum(safe_float(r.get(amount_field)) for r in won),
        quota_target=quota.total,
        label=period.label,
    )
    if summary.fell_back:
        logger.info(
            "Forecast %s: %s produced no committed amount, used %s",
            period.label, summary.method_configured, summary.method_used,
        )
    return forecast_view(summary, quota, period)


async def get_pipeline_forecast(
    fetcher: RecordFetcher,
    owner_ids: Sequence[str],
    settings: Optional[HubSettings] = None,
    quota_resolver: Optional[QuotaResolver] = None,
    tokens: Sequence[str] = FORECAST_TOKENS,
    fiscal_start_month: int = FISCAL_YEAR_START_MONTH,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Forecast views for each period token (this and next quarter by default)."""
    settings = settings or HubSettings()
    quota_resolver = quota_resolver or QuotaResolver()
    owner_ids = list(dict.fromkeys(o for o in owner_ids if o))
    if not owner_ids:
        return []
    today = _today(today)

    periods = [resolve_period(t, fiscal_start_month=fiscal_start_month, today=today) for t in tokens]
    return list(await asyncio.gather(*(
        forecast_for_period(fetcher, owner_ids, p, settings, quota_resolver) for p in periods
    )))


async def get_ae_metrics(
    fetcher: RecordFetcher,
    user_id: str,
    settings: Optional[HubSettings] = None,
    quota_resolver: Optional[QuotaResolver] = None,
    date_range: Optional[str] = None,
    fiscal_start_month: int = FISCAL_YEAR_START_MONTH,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Quota attainment, pipeline coverage and deal size for one rep."""
    settings = settings or HubSettings()
    quota_resolver = quota_resolver or QuotaResolver()
    today = _today(today)
    amount_field = settings.fields.amount_field

    date_filter = build_date_filter(
        date_range, field="CloseDate", fiscal_start_month=fiscal_start_month, today=today,
    )
    recent = _since(today - timedelta(days=RECENT_ACCOUNT_DAYS))

    won_descriptor = (
        QueryBuilder("Opportunity").select("Id", amount_field)
        .where(Filter("OwnerId", "eq", user_id), Filter("IsWon", "eq", True), date_filter.condition)
        .limit(MAX_LIMIT).build()
    )
    pipeline_descriptor = (
        QueryBuilder("Opportunity").select("Id", amount_field)
        .where(Filter("OwnerId", "eq", user_id), Filter("IsClosed", "eq", False))
        .limit(MAX_LIMIT).build()
    )
    accounts_descriptor = (
        QueryBuilder("Account").select("Id")
        .where(
            Filter("OwnerId", "eq", user_id),
            AnyOf(Filter("CreatedDate", "gte", recent), Filter("LastModifiedDate", "gte", recent)),
        )
        .limit(MAX_LIMIT).build()
    )

    won, pipeline, accounts, quota = await asyncio.gather(
        guarded(fetch_records(fetcher, won_descriptor), [], "AE closed-won fetch"),
        guarded(fetch_records(fetcher, pipeline_descriptor), [], "AE pipeline fetch"),
        guarded(fetch_records(fetcher, accounts_descriptor), [], "AE recent accounts fetch"),
        quota_resolver.resolve(settings.quota, [user_id], date_filter.period),
    )

    closed_won = sum(safe_float(r.get(amount_field)) for r in won)
    pipeline_total = sum(safe_float(r.get(amount_field)) for r in pipeline)
    remaining = max(0.0, quota.total - closed_won)
    return {
        "period": date_filter.period.label,
        "closed_won": closed_won,
        "quota": quota.total,
        "quota_source": quota.source,
        "quota_attainment": safe_div(closed_won, quota.total) * 100,
        "pipeline": pipeline_total,
        "pipeline_coverage": safe_div(pipeline_total, remaining),
        "open_deals": len(pipeline),
        "avg_deal_size": round(safe_div(pipeline_total, len(pipeline))),
        "hot_prospects": len(accounts),
    }


def _priority_item(record: Mapping[str, Any], signal: Signal, composite: float) -> Dict[str, Any]:
    deal_name = record.get("Name") or "Unknown deal"
    return {
        "id": f"{signal.category.value}-{record.get('Id')}",
        "type": signal.category.value,
        "title": f"{signal.label}: {deal_name}",
        "description": signal.evidence,
        "urgency": signal.severity.value,
        "score": composite,
        "opportunity_id": record.get("Id"),
        "opportunity_name": deal_name,
        "account_id": record.get("AccountId"),
        "account_name": nested(record, "Account.Name", "Unknown"),
        "due_date": record.get("CloseDate"),
        "owner_id": record.get("OwnerId"),
        "owner_name": nested(record, "Owner.Name", "Unknown"),
    }


async def priority_items(
    fetcher: RecordFetcher,
    owner_ids: Sequence[str],
    settings: HubSettings,
    call_signals,
    today: date,
) -> List[Dict[str, Any]]:
    """Every fused signal on the owners' open deals as an action item, most urgent first."""
    result = await fetch_open_deals(fetcher, owner_ids, settings)
    records = {r.get("Id"): r for r in result.records if r.get("Id")}
    intel = await call_intelligence_for(call_signals, records)

    sources = {}
    for deal_id, record in records.items():
        extra = intel.get(deal_id)
        sources[deal_id] = [
            assess_deal(record, result.enriched, today).reasons,
            extra.signals if extra else (),
        ]

    items = []
    for fused in fuse_signals(sources, fusion_config(settings)):
        for signal in fused.signals:
            items.append(_priority_item(records[fused.entity_id], signal, fused.composite_score))

    # Sort is stable: within one urgency, fused rank order is kept
    items.sort(key=lambda i: SEVERITY_RANK[Severity(i["urgency"])])
    return items


async def get_todays_priorities(
    fetcher: RecordFetcher,
    user_id: str,
    settings: Optional[HubSettings] = None,
    call_signals=None,
    limit: int = PRIORITY_LIMIT,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Action items from every open deal's fused signals, most urgent first."""
    settings = settings or HubSettings()
    items = await priority_items(fetcher, [user_id], settings, call_signals, _today(today))
    return items[:limit]


# ─── AM / CSM hubs ──────────────────────────────────────────

def _customer_descriptor(user_id: str, fields: Sequence[str], *conditions,
                         order_field: str = "Name") -> QueryDescriptor:
    return (
        QueryBuilder("Account")
        .select(*fields)
        .where(Filter("OwnerId", "eq", user_id), Filter("Type", "contains", CUSTOMER_TYPE), *conditions)
        .order_by(order_field)
        .limit(OPEN_DEAL_LIMIT)
        .build()
    )


def renewal_descriptor(user_id: str, days_ahead: int, today: date) -> QueryDescriptor:
    """Customer accounts with an expiry date inside [today, today + days_ahead], soonest first."""
    return _customer_descriptor(
        user_id,
        RENEWAL_FIELDS,
        Filter(RENEWAL_DATE_FIELD, "not_null"),
        Filter(RENEWAL_DATE_FIELD, "gte", today),
        Filter(RENEWAL_DATE_FIELD, "lte", today + timedelta(days=days_ahead)),
        order_field=RENEWAL_DATE_FIELD,
    )


async def _renewal_records(fetcher: RecordFetcher, descriptor: QueryDescriptor) -> List[Dict[str, Any]]:
    # Without the expiry field there is nothing to report; no basic retry
    try:
        return await fetch_records(fetcher, descriptor)
    except UnknownFieldError as e:
        logger.warning("Renewal fields unavailable (%s), returning no renewals", e.field or e)
        return []


async def get_renewal_accounts(
    fetcher: RecordFetcher,
    user_id: str,
    settings: Optional[HubSettings] = None,
    generator: Optional[RecommendationGenerator] = None,
    days_ahead: int = 180,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Customer accounts renewing within `days_ahead`, soonest first."""
    settings = settings or HubSettings()
    today = _today(today)

    records = await guarded(
        _renewal_records(fetcher, renewal_descriptor(user_id, days_ahead, today)),
        [],
        "Renewal accounts fetch",
    )

    config = fusion_config(settings)
    renewals = []
    for record in records:
        assessment = assess_renewal(record, today)
        if assessment is not None and 0 <= assessment.days_to_renewal <= days_ahead:
            fused = fuse_entity(record.get("Id") or "", [renewal_signals(assessment)], config)
            renewals.append((record, assessment, fused))
    renewals.sort(key=lambda item: item[1].days_to_renewal)

    recommendations = await recommend_all(generator, [
        (
            RecommendationContext(
                EXPANSION_PLAY if assessment.classification == EXPANSION else RENEWAL_RISK,
                record.get("Id") or "",
                {
                    "account": record.get("Name"),
                    "classification": assessment.classification,
                    "days_to_renewal": assessment.days_to_renewal,
                    "health_score": assessment.health_score,
                    "contract_value": assessment.contract_value,
                    "signals": list(assessment.key_signals),
                },
            ),
            renewal_fallback(assessment),
        )
        for record, assessment, _ in renewals
    ])

    return [
        {
            "id": record.get("Id"),
            "name": record.get("Name"),
            "industry": record.get("Industry") or "Unknown",
            "classification": assessment.classification,
            "days_to_renewal": assessment.days_to_renewal,
            "health_score": assessment.health_score,
            "contract_value": assessment.contract_value,
            "key_signals": list(assessment.key_signals),
            "risk_factors": list(assessment.risk_factors),
            "signals": [signal_view(s) for s in fused.signals],
            "signal_score": fused.composite_score,
            "data_source": ENRICHED,
            "recommendation": rec.text,
            "recommendation_source": rec.source,
        }
        for (record, assessment, fused), rec in zip(renewals, recommendations)
    ]


async def get_csm_at_risk_accounts(
    fetcher: RecordFetcher,
    user_id: str,
    limit: int = 20,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Customers with at least one health risk factor, least healthy first."""
    today = _today(today)
    result = await guarded(
        EnrichedThenBasic(fetcher).fetch(
            _customer_descriptor(user_id, CUSTOMER_BASIC_FIELDS),
            CUSTOMER_ENRICHED_FIELDS,
            CUSTOMER_BASIC_FIELDS,
        ),
        FetchResult(kind=BASIC),
        "CSM accounts fetch",
    )

    at_risk = []
    for record in result.records:
        health = assess_customer_health(record, result.enriched, today)
        if health.at_risk:
            at_risk.append({
                "id": record.get("Id"),
                "name": record.get("Name"),
                "industry": record.get("Industry") or "Unknown",
                "health_score": health.health_score,
                "risk_factors": list(health.risk_factors),
                "days_since_activity": health.days_since_activity,
                "data_source": result.kind,
            })

    at_risk.sort(key=lambda a: (a["health_score"], -len(a["risk_factors"])))
    return at_risk[:limit]


def _average(values: Sequence[float]) -> float:
    return round(safe_div(sum(values), len(values)), 1)


async def get_am_metrics(
    fetcher: RecordFetcher,
    user_id: str,
    settings: Optional[HubSettings] = None,
) -> Dict[str, Any]:
    """Renewals at risk, open expansion pipeline and average contract value for one AM."""
    settings = settings or HubSettings()
    amount_field = settings.fields.amount_field

    at_risk_descriptor = (
        QueryBuilder("Account").select("Id")
        .where(
            Filter("OwnerId", "eq", user_id),
            Filter("Customer_Stage__c", "eq", RENEWAL_STAGE),
            AnyOf(Filter(RISK_FIELD, "eq", "Red"), Filter(HEALTH_FIELD, "lt", AM_AT_RISK_HEALTH)),
        )
        .limit(MAX_LIMIT).build()
    )
    expansion_descriptor = (
        QueryBuilder("Opportunity").select("Id", amount_field)
        .where(
            Filter("OwnerId", "eq", user_id),
            Filter("IsClosed", "eq", False),
            Filter("Type", "eq", EXPANSION_DEAL_TYPE),
        )
        .limit(MAX_LIMIT).build()
    )
    contracts_descriptor = (
        QueryBuilder("Account").select("Id", ARR_FIELD)
        .where(Filter("OwnerId", "eq", user_id), Filter(ARR_FIELD, "gt", 0))
        .limit(MAX_LIMIT).build()
    )

    at_risk, expansion, contracts = await asyncio.gather(
        guarded(fetch_records(fetcher, at_risk_descriptor), [], "AM renewals-at-risk fetch"),
        guarded(fetch_records(fetcher, expansion_descriptor), [], "AM expansion pipeline fetch"),
        guarded(fetch_records(fetcher, contracts_descriptor), [], "AM contract value fetch"),
    )

    return {
        "renewals_at_risk": len(at_risk),
        "expansion_pipeline": sum(safe_float(r.get(amount_field)) for r in expansion),
        "expansion_deals": len(expansion),
        "avg_contract_value": _average([safe_float(r.get(ARR_FIELD)) for r in contracts]),
    }


async def get_csm_metrics(
    fetcher: RecordFetcher,
    user_id: str,
    renewal_window_days: int = CSM_RENEWAL_WINDOW_DAYS,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """At-risk count, average health and upcoming renewals for one CSM's book."""
    today = _today(today)
    book = Filter(CSM_FIELD, "eq", user_id)

    at_risk_descriptor = (
        QueryBuilder("Account").select("Id")
        .where(book, AnyOf(Filter(RISK_FIELD, "eq", "Red"), Filter(HEALTH_FIELD, "lt", CSM_AT_RISK_HEALTH)))
        .limit(MAX_LIMIT).build()
    )
    health_descriptor = (
        QueryBuilder("Account").select("Id", HEALTH_FIELD)
        .where(book, Filter(HEALTH_FIELD, "not_null"))
        .limit(MAX_LIMIT).build()
    )
    renewals_descriptor = (
        QueryBuilder("Account").select("Id")
        .where(
            book,
            Filter(RENEWAL_DATE_FIELD, "not_null"),
            Filter(RENEWAL_DATE_FIELD, "gte", today),
            Filter(RENEWAL_DATE_FIELD, "lte", today + timedelta(days=renewal_window_days)),
        )
        .limit(MAX_LIMIT).build()
    )

    at_risk, scored, renewing = await asyncio.gather(
        guarded(fetch_records(fetcher, at_risk_descriptor), [], "CSM at-risk count fetch"),
        guarded(fetch_records(fetcher, health_descriptor), [], "CSM health fetch"),
        guarded(fetch_records(fetcher, renewals_descriptor), [], "CSM upcoming renewals fetch"),
    )

    return {
        "accounts_at_risk": len(at_risk),
        "avg_health_score": _average([safe_float(r.get(HEALTH_FIELD)) for r in scored]),
        "upcoming_renewals": len(renewing),
        "renewal_window_days": renewal_window_days,
    }


# ─── Watchlist ──────────────────────────────────────────────

async def get_watchlist_deals(
    fetcher: RecordFetcher,
    store: WatchlistStore,
    user_id: str,
    settings: Optional[HubSettings] = None,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """The user's watched deals in watchlist order; deals no longer found are skipped."""
    settings = settings or HubSettings()
    today = _today(today)

    try:
        deal_ids = store.get(user_id)
    except Exception as e:
        logger.error("Watchlist read failed for %s: %s", user_id, e)
        return []
    if not deal_ids:
        return []

    descriptor = (
        QueryBuilder("Opportunity")
        .select(*with_mapped_fields(OPPORTUNITY_BASIC_FIELDS, settings))
        .where(Filter("Id", "in", deal_ids))
        .limit(len(deal_ids))
        .build()
    )
    result = await guarded(
        EnrichedThenBasic(fetcher).fetch(
            descriptor,
            with_mapped_fields(OPPORTUNITY_ENRICHED_FIELDS, settings),
            with_mapped_fields(OPPORTUNITY_BASIC_FIELDS, settings),
        ),
        FetchResult(kind=BASIC),
        "Watchlist deals fetch",
    )

    by_id = {r.get("Id"): r for r in result.records}
    deals = []
    for deal_id in deal_ids:
        record = by_id.get(deal_id)
        if record is None:
            continue
        assessment = assess_deal(record, result.enriched, today)
        deals.append(deal_view(record, assessment, assessment.reasons, settings.fields.amount_field))
    return deals
