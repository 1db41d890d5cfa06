"""
Call Intelligence Signal Source
================================

Reads call-analysis results stored by the nightly transcript job
(buying_signals table, source = "gong") and maps them onto hub signals.

Risk-relevant call signal types:
  competitive-threat  -> strong-competition
  objection-surfaced  -> objection
  momentum "stalling" -> stalling

Positive buying signals (budget-confirmed, champion-identified, ...) are
counted but do not become risk signals.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from hub_engine.entities import Severity, Signal, SignalCategory, SourceSystem
from hub_engine.lib.errors import SignalSourceError
from hub_engine.lib.logger import setup_logger
from hub_engine.lib.supabase_client import query_table
from hub_engine.lib.utils import safe_int

logger = setup_logger(__name__)

SIGNALS_TABLE = "buying_signals"
CALL_SOURCE = "gong"

STALLING = "stalling"
ACTIVE = "active"

# call signal type -> (category, severity, label)
RISK_SIGNAL_TYPES = {
    "competitive-threat": (SignalCategory.STRONG_COMPETITION, Severity.HIGH, "Competitor raised on calls"),
    "objection-surfaced": (SignalCategory.OBJECTION, Severity.MEDIUM, "Objection raised on calls"),
}


@dataclass(frozen=True)
class CallIntelligence:
    signals: Tuple[Signal, ...] = ()
    momentum: str = ACTIVE
    call_count: int = 0


def parse_call_signals(data: Mapping[str, Any]) -> CallIntelligence:
    """Stored analysis payload -> CallIntelligence."""
    signals: List[Signal] = []
    for raw in data.get("signals") or []:
        if not isinstance(raw, dict):
            continue
        mapped = RISK_SIGNAL_TYPES.get(str(raw.get("type") or "").lower())
        if mapped is None:
            continue
        category, severity, label = mapped
        evidence = str(raw.get("evidence") or "").strip()
        if raw.get("callTitle"):
            evidence = f"{evidence} ({raw['callTitle']})" if evidence else str(raw["callTitle"])
        signals.append(Signal(
            category=category,
            label=label,
            evidence=evidence,
            severity=severity,
            source_system=SourceSystem.CALL_INTELLIGENCE,
            confidence=str(raw.get("confidence") or "medium").lower(),
        ))

    momentum = STALLING if data.get("momentum") == STALLING else ACTIVE
    call_count = safe_int(data.get("callCount"))
    if momentum == STALLING:
        signals.append(Signal(
            category=SignalCategory.STALLING,
            label="Call momentum stalling",
            evidence=data.get("summary") or f"Momentum stalling across {call_count} calls",
            severity=Severity.HIGH,
            source_system=SourceSystem.CALL_INTELLIGENCE,
            confidence="medium",
        ))

    return CallIntelligence(signals=tuple(signals), momentum=momentum, call_count=call_count)


def _is_expired(row: Mapping[str, Any], now: datetime) -> bool:
    expires_at = row.get("expires_at")
    if not expires_at:
        return False
    try:
        expires = datetime.fromisoformat(str(expires_at).replace("Z", "+00:00"))
    except ValueError:
        return False
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires < now


class StoredCallSignalSource:
    """Call-intelligence signals read from Supabase."""

    def __init__(self, table: str = SIGNALS_TABLE):
        self.table = table

    async def get_signals_for_subject(self, subject_id: str) -> CallIntelligence:
        results = await self.get_signals_for_subjects([subject_id])
        return results.get(subject_id, CallIntelligence())

    async def get_signals_for_subjects(self, subject_ids: Iterable[str]) -> Dict[str, CallIntelligence]:
        """Latest unexpired analysis per opportunity; missing ids are omitted."""
        ids = [s for s in dict.fromkeys(subject_ids) if s]
        if not ids:
            return {}
        try:
            rows = query_table(
                self.table,
                select="opportunity_id, signal_data, expires_at, updated_at",
                filters={"source": CALL_SOURCE},
                in_filters={"opportunity_id": ids},
                order_by="updated_at",
                desc=True,
                limit=len(ids) * 5,
            )
        except Exception as e:
            raise SignalSourceError(f"Could not read stored call signals: {e}") from e

        now = datetime.now(timezone.utc)
        results: Dict[str, CallIntelligence] = {}
        for row in rows:
            subject_id = row.get("opportunity_id")
            if subject_id in results or _is_expired(row, now):
                continue
            data = row.get("signal_data")
            if isinstance(data, dict):
                results[subject_id] = parse_call_signals(data)
        logger.debug("Call signals found for %d of %d deals", len(results), len(ids))
        return results
