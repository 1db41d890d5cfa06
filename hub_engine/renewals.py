"""
Renewal and customer-health assessment for the AM and CSM hubs.

Renewal classification:
  At Risk                risk flag Red, health < 50, or renewal < 30 days out
  Expansion Opportunity  health > 80 and more than 500 active users
  On Track               everything else

Customer health factors (CSM at-risk list):
  enriched  Critical health score (< 40) / Low health score (< 60),
            Flagged as at-risk, Renewal in <30 days, No activity recorded
  basic     health unknown (treated as 50), No activity in 90+ days /
            Low engagement (> 60 days)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, List, Mapping, Optional, Tuple

from hub_engine.entities import Severity, Signal, SignalCategory, SourceSystem
from hub_engine.lib.utils import days_between, parse_date, safe_float, safe_int

AT_RISK = "At Risk"
EXPANSION = "Expansion Opportunity"
ON_TRACK = "On Track"

DEFAULT_HEALTH = 70
UNKNOWN_HEALTH = 50
QBR_OVERDUE_DAYS = 90

HEALTH_FIELD = "Current_Gainsight_Score__c"
RISK_FIELD = "Risk__c"
RENEWAL_DATE_FIELD = "Agreement_Expiry_Date__c"
ARR_FIELD = "Total_ARR__c"
USER_COUNT_FIELD = "Active_Users__c"
CSM_FIELD = "Customer_Success_Manager__c"

RENEWAL_FIELDS = (
    "Id", "Name", "Industry", "OwnerId",
    RENEWAL_DATE_FIELD, ARR_FIELD, HEALTH_FIELD, RISK_FIELD,
    "Customer_Stage__c", USER_COUNT_FIELD, "Last_QBR__c", "Risk_Notes__c",
    "CreatedDate", "LastModifiedDate",
)

CUSTOMER_BASIC_FIELDS = (
    "Id", "Name", "Industry", "OwnerId", "Type", "AnnualRevenue",
    "LastActivityDate", "LastModifiedDate",
)
CUSTOMER_ENRICHED_FIELDS = CUSTOMER_BASIC_FIELDS + (
    HEALTH_FIELD, RISK_FIELD, RENEWAL_DATE_FIELD, ARR_FIELD,
)


@dataclass(frozen=True)
class RenewalAssessment:
    classification: str
    days_to_renewal: int
    health_score: float
    contract_value: float
    key_signals: Tuple[str, ...]
    risk_factors: Tuple[str, ...]


@dataclass(frozen=True)
class HealthAssessment:
    health_score: float
    risk_factors: Tuple[str, ...]
    days_since_activity: Optional[int]
    enriched: bool

    @property
    def at_risk(self) -> bool:
        return bool(self.risk_factors)


def classify_renewal(
    days_to_renewal: int,
    health_score: float,
    risk_flag: Optional[str],
    user_count: int,
) -> str:
    if risk_flag == "Red" or health_score < 50 or days_to_renewal < 30:
        return AT_RISK
    if health_score > 80 and user_count > 500:
        return EXPANSION
    return ON_TRACK


def assess_renewal(record: Mapping[str, Any], today: date) -> Optional[RenewalAssessment]:
    """Renewal view of a customer account; None when it has no expiry date."""
    renewal_date = parse_date(record.get(RENEWAL_DATE_FIELD))
    if renewal_date is None:
        return None
    days_to_renewal = (renewal_date - today).days
    health = safe_float(record.get(HEALTH_FIELD)) or DEFAULT_HEALTH
    risk_flag = record.get(RISK_FIELD) or "Green"

    classification = classify_renewal(
        days_to_renewal, health, risk_flag, safe_int(record.get(USER_COUNT_FIELD)),
    )

    key_signals: List[str] = []
    risk_factors: List[str] = []
    if health < 60:
        key_signals.append(f"Low health score: {health:g}")
        risk_factors.append("Low health score")
    if days_to_renewal < 60:
        key_signals.append(f"Renewal in {days_to_renewal} days")
    qbr_age = days_between(record.get("Last_QBR__c"), today)
    if qbr_age is None or qbr_age > QBR_OVERDUE_DAYS:
        key_signals.append("QBR overdue")
        risk_factors.append("QBR overdue")
    if record.get("Risk_Notes__c"):
        key_signals.append("Has risk notes")
        risk_factors.append("Has active risk notes")

    return RenewalAssessment(
        classification=classification,
        days_to_renewal=days_to_renewal,
        health_score=health,
        contract_value=safe_float(record.get(ARR_FIELD)),
        key_signals=tuple(key_signals),
        risk_factors=tuple(risk_factors),
    )


def renewal_signals(assessment: RenewalAssessment) -> List[Signal]:
    """Usage-derived signals for fusion: expansion upside or renewal risk."""
    if assessment.classification == EXPANSION:
        return [Signal(
            category=SignalCategory.EXPANSION,
            label="Expansion opportunity",
            evidence=f"Health {assessment.health_score:g}, renewal in {assessment.days_to_renewal} days",
            severity=Severity.MEDIUM,
            source_system=SourceSystem.USAGE,
            confidence="strong" if assessment.health_score >= 90 else "moderate",
        )]
    if assessment.classification == AT_RISK:
        severity = Severity.CRITICAL if assessment.days_to_renewal < 30 else Severity.HIGH
        return [Signal(
            category=SignalCategory.RENEWAL_RISK,
            label="Renewal at risk",
            evidence=", ".join(assessment.key_signals) or "Renewal risk flagged",
            severity=severity,
            source_system=SourceSystem.USAGE,
        )]
    return []


def assess_customer_health(record: Mapping[str, Any], enriched: bool, today: date) -> HealthAssessment:
    factors: List[str] = []
    days_since_activity = days_between(
        record.get("LastActivityDate") or record.get("LastModifiedDate"), today,
    )

    if enriched:
        health = safe_float(record.get(HEALTH_FIELD), UNKNOWN_HEALTH)
        if health < 40:
            factors.append("Critical health score")
        elif health < 60:
            factors.append("Low health score")
        if record.get(RISK_FIELD) == "Red":
            factors.append("Flagged as at-risk")
        renewal_in = days_between(today, record.get(RENEWAL_DATE_FIELD))
        if renewal_in is not None and 0 <= renewal_in < 30:
            factors.append("Renewal in <30 days")
        if not record.get("LastActivityDate"):
            factors.append("No activity recorded")
    else:
        health = UNKNOWN_HEALTH
        if days_since_activity is None or days_since_activity > 90:
            factors.append("No activity in 90+ days")
        elif days_since_activity > 60:
            factors.append("Low engagement")

    return HealthAssessment(
        health_score=health,
        risk_factors=tuple(factors),
        days_since_activity=days_since_activity,
        enriched=enriched,
    )
