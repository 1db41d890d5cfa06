"""
Priority Scorer
================

Account priority score (0-100):
  Base                      50
  Employees   >1000 / >500 / >100      +20 / +15 / +10
  Revenue     >10M / >1M / >100K       +15 / +10 / +5
  Enrichment (only when the enriched field set was fetched):
    Intent score   >=80 / >=60         +25 / +15
    Profile fit    Strong / Moderate   +15 / +10
    Growth         >20%                +10
    Funding signal present             +10

Tier: >=75 Hot, >=60 Warm, else Cool. Cold is reachable only through an
admin tier override; an override replaces the tier and flags the entity but
leaves the score untouched.

Functions:
  score_priority()   - pure score from firmographic + enrichment inputs
  tier_for_score()   - score -> Tier
  apply_override()   - admin tier override on a scored entity
  score_account()    - raw Account record -> ScoredEntity
"""
from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from hub_engine.entities import ScoredEntity, Severity, Signal, SignalCategory, SourceSystem, Tier
from hub_engine.lib.utils import days_between, safe_float, safe_int
from models.hub_models import TierOverride

BASE_SCORE = 50
HOT_THRESHOLD = 75
WARM_THRESHOLD = 60

EMPLOYEE_BANDS = ((1000, 20), (500, 15), (100, 10))
REVENUE_BANDS = ((10_000_000, 15), (1_000_000, 10), (100_000, 5))
INTENT_BANDS = ((80, 25), (60, 15))
PROFILE_FIT_BONUS = {"strong": 15, "moderate": 10}
GROWTH_THRESHOLD = 20
GROWTH_BONUS = 10
FUNDING_BONUS = 10

NEVER_UPDATED_DAYS = 999
RECENT_ACTIVITY_DAYS = 7

ACCOUNT_BASIC_FIELDS = (
    "Id", "Name", "Industry", "OwnerId", "NumberOfEmployees",
    "Type", "Rating", "AnnualRevenue", "CreatedDate", "LastModifiedDate",
)

ENRICHMENT_FIELD_MAP = {
    "intent_score": "accountIntentScore6sense__c",
    "buying_stage": "accountBuyingStage6sense__c",
    "profile_fit": "accountProfileFit6sense__c",
    "growth_pct": "Employee_Growth_Rate__c",
    "funding_signal": "Recent_Funding_Event__c",
}

ACCOUNT_ENRICHED_FIELDS = ACCOUNT_BASIC_FIELDS + tuple(ENRICHMENT_FIELD_MAP.values())


def _band_bonus(value: float, bands) -> int:
    for threshold, bonus in bands:
        if value > threshold:
            return bonus
    return 0


def score_priority(
    employee_count: Any = 0,
    revenue: Any = 0,
    intent_score: Any = None,
    profile_fit: Optional[str] = None,
    growth_pct: Any = None,
    funding_signal: Any = None,
) -> int:
    """Priority score in [0, 100]. Missing enrichment inputs add nothing."""
    score = BASE_SCORE
    score += _band_bonus(safe_float(employee_count), EMPLOYEE_BANDS)
    score += _band_bonus(safe_float(revenue), REVENUE_BANDS)

    if intent_score is not None:
        intent = safe_float(intent_score)
        for threshold, bonus in INTENT_BANDS:
            if intent >= threshold:
                score += bonus
                break

    if isinstance(profile_fit, str):
        score += PROFILE_FIT_BONUS.get(profile_fit.strip().lower(), 0)

    if growth_pct is not None and safe_float(growth_pct) > GROWTH_THRESHOLD:
        score += GROWTH_BONUS

    if funding_signal:
        score += FUNDING_BONUS

    return max(0, min(100, score))


def tier_for_score(score: float) -> Tier:
    if score >= HOT_THRESHOLD:
        return Tier.HOT
    if score >= WARM_THRESHOLD:
        return Tier.WARM
    return Tier.COOL


def apply_override(entity: ScoredEntity, override: Optional[TierOverride]) -> ScoredEntity:
    """Displayed tier follows the override; score is kept for sort order."""
    if override is None:
        return entity
    return replace(entity, tier=Tier(override.tier), is_overridden=True)


def intent_signals(intent_score: Any, buying_stage: Optional[str] = None) -> List[Signal]:
    """New-business signal derived from the intent score, if any."""
    if intent_score is None:
        return []
    intent = safe_float(intent_score)
    if intent >= 80:
        confidence, severity = "high", Severity.HIGH
    elif intent >= 60:
        confidence, severity = "medium", Severity.MEDIUM
    else:
        confidence, severity = "low", Severity.MEDIUM
    evidence = f"Intent score {intent:.0f}"
    if buying_stage:
        evidence += f" ({buying_stage})"
    return [Signal(
        category=SignalCategory.NEW_BUSINESS,
        label="Buying intent",
        evidence=evidence,
        severity=severity,
        source_system=SourceSystem.INTENT,
        confidence=intent,
    )]


def top_signal_text(buying_stage: Optional[str], days_since_update: int) -> str:
    """Staleness only shapes this summary line, never the score."""
    prefix = f"{buying_stage} • " if buying_stage and buying_stage != "Active" else ""
    if days_since_update < RECENT_ACTIVITY_DAYS:
        return f"{prefix}Recently active"
    return f"{prefix}Last updated {days_since_update} days ago"


def score_account(
    record: Mapping[str, Any],
    enriched: bool,
    today: date,
    overrides: Optional[Mapping[str, TierOverride]] = None,
) -> ScoredEntity:
    """Score one Account record from either the enriched or basic field set."""
    enrichment: Dict[str, Any] = {}
    if enriched:
        enrichment = {name: record.get(field) for name, field in ENRICHMENT_FIELD_MAP.items()}

    employee_count = safe_int(record.get("NumberOfEmployees"))
    revenue = safe_float(record.get("AnnualRevenue"))
    score = score_priority(
        employee_count=employee_count,
        revenue=revenue,
        intent_score=enrichment.get("intent_score"),
        profile_fit=enrichment.get("profile_fit"),
        growth_pct=enrichment.get("growth_pct"),
        funding_signal=enrichment.get("funding_signal"),
    )

    days = days_between(record.get("LastModifiedDate"), today)
    days_since_update = NEVER_UPDATED_DAYS if days is None else max(0, days)
    rating = record.get("Rating") or ""
    buying_stage = enrichment.get("buying_stage") or rating or record.get("Type") or "Active"

    entity = ScoredEntity(
        id=record.get("Id") or "",
        display_name=record.get("Name") or "Unknown Account",
        base_attributes={
            "employee_count": employee_count,
            "revenue": revenue,
            "industry": record.get("Industry") or "Unknown",
            "rating": rating,
            "owner_id": record.get("OwnerId"),
            "buying_stage": buying_stage,
            "intent_score": enrichment.get("intent_score"),
            "days_since_update": days_since_update,
            "top_signal": top_signal_text(buying_stage, days_since_update),
        },
        score=score,
        tier=tier_for_score(score),
        signals=tuple(intent_signals(enrichment.get("intent_score"), enrichment.get("buying_stage"))),
    )
    return apply_override(entity, (overrides or {}).get(entity.id))
