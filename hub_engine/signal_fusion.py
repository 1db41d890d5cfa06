"""
Signal Fusion Engine
=====================

Merges signals produced independently per source (CRM qualification rules,
staleness, call intelligence, intent, usage) into one ranked list.

  1. Every source's confidence vocabulary is mapped onto a 0-100 scale.
  2. Within an entity each category appears once: a second signal of the same
     category is folded into the first (stronger severity, evidence appended).
  3. Composite score = strongest normalised confidence
                       + corroboration bonus per extra raw signal (capped).
  4. Entities are ranked by composite score, descending; ties keep input order.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from hub_engine.entities import SEVERITY_RANK, Severity, Signal, SourceSystem

DEFAULT_CORROBORATION_BONUS = 3
DEFAULT_CORROBORATION_CAP = 9
EVIDENCE_SEPARATOR = " | "

_HIGH_MEDIUM_LOW = {"high": 85, "medium": 65, "low": 45}

CONFIDENCE_SCALES: Dict[SourceSystem, Dict[str, float]] = {
    SourceSystem.CALL_INTELLIGENCE: _HIGH_MEDIUM_LOW,
    SourceSystem.INTENT: _HIGH_MEDIUM_LOW,
    SourceSystem.USAGE: {"strong": 85, "moderate": 65, "weak": 45, **_HIGH_MEDIUM_LOW},
}

# Rule-based sources carry no confidence of their own
SEVERITY_CONFIDENCE = {
    Severity.CRITICAL: 90,
    Severity.HIGH: 75,
    Severity.MEDIUM: 60,
}


@dataclass(frozen=True)
class FusionConfig:
    corroboration_bonus: int = DEFAULT_CORROBORATION_BONUS
    corroboration_cap: int = DEFAULT_CORROBORATION_CAP


@dataclass(frozen=True)
class FusedEntity:
    entity_id: str
    signals: Tuple[Signal, ...]
    composite_score: float
    raw_signal_count: int

    @property
    def top_signal(self) -> Optional[Signal]:
        return self.signals[0] if self.signals else None


def normalize_confidence(signal: Signal) -> float:
    """Map a signal's source-native confidence onto 0-100."""
    confidence = signal.confidence
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        return float(max(0, min(100, confidence)))
    if isinstance(confidence, str):
        scale = CONFIDENCE_SCALES.get(signal.source_system, _HIGH_MEDIUM_LOW)
        value = scale.get(confidence.strip().lower())
        if value is not None:
            return float(value)
    return float(SEVERITY_CONFIDENCE[signal.severity])


def _stronger(a: Severity, b: Severity) -> Severity:
    return a if SEVERITY_RANK[a] <= SEVERITY_RANK[b] else b


def _fold(existing: Signal, incoming: Signal) -> Signal:
    evidence = existing.evidence
    if incoming.evidence and incoming.evidence not in evidence.split(EVIDENCE_SEPARATOR):
        evidence = f"{evidence}{EVIDENCE_SEPARATOR}{incoming.evidence}" if evidence else incoming.evidence
    return replace(
        existing,
        evidence=evidence,
        severity=_stronger(existing.severity, incoming.severity),
        confidence=max(normalize_confidence(existing), normalize_confidence(incoming)),
    )


def merge_signals(existing: Sequence[Signal], incoming: Sequence[Signal]) -> Tuple[Signal, ...]:
    """
    Merge incoming signals into an entity's list, one entry per category.

    Order is first appearance; a repeated category is folded into the
    entry already present.
    """
    merged: List[Signal] = []
    index: Dict[str, int] = {}
    for signal in (*existing, *incoming):
        key = signal.category.value
        if key in index:
            merged[index[key]] = _fold(merged[index[key]], signal)
        else:
            index[key] = len(merged)
            merged.append(signal)
    return tuple(merged)


def merge_risk_reasons(reasons: Sequence[Signal], extra: Sequence[Signal]) -> Tuple[Signal, ...]:
    """Fold call-intelligence (or other) signals into qualification reasons."""
    return merge_signals(reasons, extra)


def composite_score(signals: Sequence[Signal], raw_count: int, config: FusionConfig) -> float:
    if not signals:
        return 0.0
    strongest = max(normalize_confidence(s) for s in signals)
    bonus = min(config.corroboration_cap, config.corroboration_bonus * max(0, raw_count - 1))
    return min(100.0, strongest + bonus)


def fuse_entity(
    entity_id: str,
    sources: Sequence[Sequence[Signal]],
    config: FusionConfig = FusionConfig(),
) -> FusedEntity:
    merged: Tuple[Signal, ...] = ()
    raw_count = 0
    for signals in sources:
        raw_count += len(signals)
        merged = merge_signals(merged, signals)

    ranked = sorted(merged, key=lambda s: -normalize_confidence(s))
    return FusedEntity(
        entity_id=entity_id,
        signals=tuple(ranked),
        composite_score=composite_score(merged, raw_count, config),
        raw_signal_count=raw_count,
    )


def fuse_signals(
    per_entity: Mapping[str, Sequence[Sequence[Signal]]],
    config: FusionConfig = FusionConfig(),
) -> List[FusedEntity]:
    """
    Fuse every entity's per-source signal lists and rank the entities.

    Args:
        per_entity: entity id -> one signal list per source, in source order.
        config: Corroboration bonus settings.
    """
    fused = [fuse_entity(entity_id, sources, config) for entity_id, sources in per_entity.items()]
    return sorted(fused, key=lambda f: -f.composite_score)
