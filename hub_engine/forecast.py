"""
Forecast Aggregator
====================

Buckets open pipeline by stage and by confidence tier, then measures it
against quota.

Confidence tiers are exclusive:
  forecast-category - Commit/Closed -> commit, Best Case -> best case, rest -> pipeline
  probability       - >= commit threshold -> commit, >= best-case threshold
                      -> best case, rest -> pipeline

When the configured method puts nothing into commit or best case while the
pipeline is non-empty, the other method is tried; `method_used` records which
one produced the figures.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from hub_engine.lib.utils import safe_div, safe_float
from models.hub_models import ForecastConfig

FORECAST_CATEGORY = "forecast-category"
PROBABILITY = "probability"

UNKNOWN_STAGE = "Unknown"


@dataclass(frozen=True)
class ForecastBucket:
    stage_name: str
    count: int
    value: float


@dataclass(frozen=True)
class ConfidenceBuckets:
    commit: float = 0.0
    best_case: float = 0.0
    pipeline: float = 0.0

    @property
    def committed(self) -> float:
        return self.commit + self.best_case


@dataclass(frozen=True)
class ForecastSummary:
    label: str
    stages: Tuple[ForecastBucket, ...]
    commit: float
    best_case: float
    pipeline: float
    total_pipeline: float
    closed_won: float
    quota_target: float
    quota_attainment: float
    coverage_ratio: float
    deal_count: int
    method_configured: str
    method_used: str

    @property
    def fell_back(self) -> bool:
        return self.method_used != self.method_configured


def order_stages(stage_names: Sequence[str], stage_order: Sequence[str]) -> List[str]:
    """Configured stages first in configured order, the rest alphabetically."""
    position = {name: i for i, name in enumerate(stage_order)}
    known = sorted((s for s in stage_names if s in position), key=position.__getitem__)
    unknown = sorted(s for s in stage_names if s not in position)
    return known + unknown


def group_by_stage(
    deals: Sequence[Mapping[str, Any]],
    amount_field: str,
    stage_order: Sequence[str] = (),
) -> Tuple[ForecastBucket, ...]:
    totals: Dict[str, List[float]] = {}
    for deal in deals:
        stage = deal.get("StageName") or UNKNOWN_STAGE
        entry = totals.setdefault(stage, [0, 0.0])
        entry[0] += 1
        entry[1] += safe_float(deal.get(amount_field))
    return tuple(
        ForecastBucket(stage_name=name, count=int(totals[name][0]), value=totals[name][1])
        for name in order_stages(list(totals), stage_order)
    )


def bucket_by_category(
    deals: Sequence[Mapping[str, Any]],
    amount_field: str,
    category_field: str,
    config: ForecastConfig,
) -> ConfidenceBuckets:
    commit = best_case = pipeline = 0.0
    commit_labels = {c.lower() for c in config.commit_categories}
    best_labels = {c.lower() for c in config.best_case_categories}
    for deal in deals:
        amount = safe_float(deal.get(amount_field))
        category = str(deal.get(category_field) or "").strip().lower()
        if category in commit_labels:
            commit += amount
        elif category in best_labels:
            best_case += amount
        else:
            pipeline += amount
    return ConfidenceBuckets(commit, best_case, pipeline)


def bucket_by_probability(
    deals: Sequence[Mapping[str, Any]],
    amount_field: str,
    config: ForecastConfig,
) -> ConfidenceBuckets:
    commit = best_case = pipeline = 0.0
    for deal in deals:
        amount = safe_float(deal.get(amount_field))
        probability = safe_float(deal.get("Probability"))
        if probability >= config.commit_threshold:
            commit += amount
        elif probability >= config.best_case_threshold:
            best_case += amount
        else:
            pipeline += amount
    return ConfidenceBuckets(commit, best_case, pipeline)


def _bucket(method: str, deals, amount_field, category_field, config) -> ConfidenceBuckets:
    if method == PROBABILITY:
        return bucket_by_probability(deals, amount_field, config)
    return bucket_by_category(deals, amount_field, category_field, config)


def quota_attainment(closed_won: float, quota_target: float) -> float:
    return safe_div(closed_won, quota_target) * 100


def coverage_ratio(pipeline: float, quota_target: float, closed_won: float) -> float:
    """Open pipeline over the quota still to close; 0 when nothing remains."""
    remaining = max(0.0, quota_target - closed_won)
    return safe_div(pipeline, remaining)


def aggregate_forecast(
    deals: Sequence[Mapping[str, Any]],
    config: ForecastConfig,
    *,
    amount_field: str = "Amount",
    category_field: str = "ForecastCategory",
    closed_won: float = 0.0,
    quota_target: float = 0.0,
    label: str = "",
) -> ForecastSummary:
    """Stage buckets, confidence buckets and attainment for one period's pipeline."""
    total = sum(safe_float(d.get(amount_field)) for d in deals)

    method_used = config.method
    buckets = _bucket(config.method, deals, amount_field, category_field, config)
    if config.fallback_enabled and buckets.committed == 0 and total > 0:
        other = PROBABILITY if config.method == FORECAST_CATEGORY else FORECAST_CATEGORY
        alternative = _bucket(other, deals, amount_field, category_field, config)
        if alternative.committed > 0:
            buckets, method_used = alternative, other

    return ForecastSummary(
        label=label,
        stages=group_by_stage(deals, amount_field, config.stage_order),
        commit=buckets.commit,
        best_case=buckets.best_case,
        pipeline=buckets.pipeline,
        total_pipeline=total,
        closed_won=closed_won,
        quota_target=quota_target,
        quota_attainment=quota_attainment(closed_won, quota_target),
        coverage_ratio=coverage_ratio(total, quota_target, closed_won),
        deal_count=len(deals),
        method_configured=config.method,
        method_used=method_used,
    )
