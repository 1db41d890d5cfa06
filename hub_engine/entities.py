"""
Request-scoped value objects shared by the scorers, the signal fusion
engine and the hub views. All of them are immutable; scoring produces
new instances instead of mutating records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 30,
    Severity.HIGH: 20,
    Severity.MEDIUM: 10,
}

SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
}


class SourceSystem(str, Enum):
    CRM = "crm"
    STALENESS = "staleness"
    CALL_INTELLIGENCE = "call_intelligence"
    INTENT = "intent"
    USAGE = "usage"


class SignalCategory(str, Enum):
    # Qualification gaps
    NO_EXEC_SPONSOR = "no-exec-sponsor"
    FEW_STAKEHOLDERS = "few-stakeholders"
    MISSING_SUCCESS_CRITERIA = "missing-success-criteria"
    MISSING_BUSINESS_IMPACT = "missing-business-impact"
    STRONG_COMPETITION = "strong-competition"
    # Activity
    STALLING = "stalling"
    OBJECTION = "objection"
    # Opportunity
    NEW_BUSINESS = "new-business"
    EXPANSION = "expansion"
    RENEWAL_RISK = "renewal-risk"


class Tier(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COOL = "cool"
    COLD = "cold"  # manual override only


@dataclass(frozen=True)
class Signal:
    """One piece of risk or opportunity evidence attached to an entity."""
    category: SignalCategory
    label: str
    evidence: str
    severity: Severity
    source_system: SourceSystem
    # Source-native confidence: "high"/"medium"/"low" or a 0-100 number
    confidence: Optional[Union[str, float]] = None

    @property
    def weight(self) -> int:
        return SEVERITY_WEIGHTS[self.severity]


@dataclass(frozen=True)
class ScoredEntity:
    """An account or deal with its priority score, tier and signals."""
    id: str
    display_name: str
    base_attributes: Dict[str, Any] = field(default_factory=dict)
    score: int = 0
    tier: Tier = Tier.COOL
    signals: Tuple[Signal, ...] = ()
    is_overridden: bool = False
    domain_key: Optional[str] = None

    def attr(self, name: str, default: Any = None) -> Any:
        return self.base_attributes.get(name, default)
