"""
Quota Resolver
===============

Resolves quota per subject (rep) from the configured source, then lets a
positive manual amount override the primary value for that subject.

Sources:
  native-field     - numeric field on the User record (e.g. Quarterly_Quota__c)
  external-object  - quota records summed over the period (ForecastingQuota)
  manual           - the admin-entered map, default_amount for anyone missing
  none             - no quota; every subject resolves to 0

Lookups for different subjects run concurrently. A failed lookup counts as 0
for that subject and is logged; the resolver itself never raises.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol, Tuple

from hub_engine.lib.config import MAX_CONCURRENT_LOOKUPS
from hub_engine.lib.logger import setup_logger
from hub_engine.lib.utils import safe_float
from hub_engine.periods import Period
from models.hub_models import QuotaConfig

logger = setup_logger(__name__)


class QuotaSource(Protocol):
    """Both lookups return 0 when the subject has no quota."""

    async def get_native_quota(self, subject_id: str, field_name: str) -> float:
        ...

    async def get_external_quota(self, subject_id: str, period: Period) -> float:
        ...


@dataclass(frozen=True)
class QuotaResolution:
    total: float
    per_subject: Dict[str, float]
    source: str
    overridden: Tuple[str, ...] = ()

    def for_subject(self, subject_id: str) -> float:
        return self.per_subject.get(subject_id, 0.0)


def manual_override(config: QuotaConfig, subject_id: str) -> Optional[float]:
    """The subject's manual amount if present and positive, else None."""
    amount = safe_float(config.manual_amounts.get(subject_id))
    return amount if amount > 0 else None


def manual_amount(config: QuotaConfig, subject_id: str) -> float:
    """Primary value for the manual source."""
    if subject_id in config.manual_amounts:
        return max(0.0, safe_float(config.manual_amounts[subject_id]))
    return max(0.0, safe_float(config.default_amount))


def apply_manual_overrides(
    config: QuotaConfig, primary: Dict[str, float],
) -> Tuple[Dict[str, float], Tuple[str, ...]]:
    """
    Replace primary values with positive manual amounts.

    Only applies to native-field and external-object sources; for manual the
    map already is the primary value and none means no quota at all.
    """
    if config.source in ("manual", "none"):
        return dict(primary), ()
    resolved = dict(primary)
    overridden = []
    for subject_id in primary:
        amount = manual_override(config, subject_id)
        if amount is not None:
            resolved[subject_id] = amount
            overridden.append(subject_id)
    return resolved, tuple(overridden)


class QuotaResolver:
    """Resolves per-subject quota against a QuotaSource."""

    def __init__(self, source: Optional[QuotaSource] = None,
                 max_concurrency: int = MAX_CONCURRENT_LOOKUPS):
        self.source = source
        self.max_concurrency = max(1, max_concurrency)

    async def resolve(
        self,
        config: QuotaConfig,
        subject_ids: Iterable[str],
        period: Period,
    ) -> QuotaResolution:
        subject_ids = list(dict.fromkeys(subject_ids))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(subject_id: str) -> float:
            async with semaphore:
                return await self._primary(config, subject_id, period)

        amounts = await asyncio.gather(*(_bounded(s) for s in subject_ids))
        primary = dict(zip(subject_ids, amounts))
        per_subject, overridden = apply_manual_overrides(config, primary)

        total = sum(per_subject.values())
        logger.debug(
            "Quota [%s] %d subjects, total=%.2f, %d overridden",
            config.source, len(subject_ids), total, len(overridden),
        )
        return QuotaResolution(
            total=total,
            per_subject=per_subject,
            source=config.source,
            overridden=overridden,
        )

    async def _primary(self, config: QuotaConfig, subject_id: str, period: Period) -> float:
        if config.source == "none":
            return 0.0
        if config.source == "manual":
            return manual_amount(config, subject_id)
        if self.source is None:
            logger.warning("Quota source '%s' configured but no lookup available", config.source)
            return 0.0

        try:
            if config.source == "native-field":
                amount = await self.source.get_native_quota(subject_id, config.native_field_name)
            else:
                amount = await self.source.get_external_quota(subject_id, period)
        except Exception as e:
            logger.warning(
                "Quota lookup failed for %s (%s): %s; using 0",
                subject_id, config.source, e,
            )
            return 0.0
        return max(0.0, safe_float(amount))
