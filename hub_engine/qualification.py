"""
Risk / Qualification Scorer
============================

Scores deal qualification (0-100) and emits categorized risk reasons.

Enriched records (MEDDPICC fields fetched):
  Economic buyer missing      -> no-exec-sponsor           (high)
  Champion missing            -> few-stakeholders          (medium)
  Decision criteria missing   -> missing-success-criteria  (medium)
  Implicated pain missing     -> missing-business-impact   (medium)
  Strong competitive language -> strong-competition        (high)
  Score = overall score field, else filled MEDDPICC fields / 8 * 100

Basic records (standard fields only):
  No next step                       -> missing-success-criteria (medium)
  Probability < 30 past early stages -> no-exec-sponsor          (high)
  Score = 30 + 20 next step + 15 description + 15 stage + 20 probability

Always: more than 30 days in the current stage -> stalling (high, critical > 60).

Risk score is the sum of severity weights (30/20/10) capped at 100. A deal is
at risk only when it has at least one reason.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from hub_engine.entities import Severity, Signal, SignalCategory, SourceSystem
from hub_engine.lib.utils import days_between, safe_float, text_length

MIN_FIELD_LENGTH = 10
EARLY_STAGES = ("Prospecting", "Qualification")

STALLING_DAYS = 30
CRITICAL_STALLING_DAYS = 60
LOW_PROBABILITY = 30

QUALIFICATION_FIELDS = {
    "metrics": "COM_Metrics__c",
    "economic_buyer": "MEDDPICCR_Economic_Buyer__c",
    "decision_criteria": "MEDDPICCR_Decision_Criteria__c",
    "decision_process": "MEDDPICCR_Decision_Process__c",
    "paper_process": "MEDDPICCR_Paper_Process__c",
    "pain": "MEDDPICCR_Implicate_Pain__c",
    "champion": "MEDDPICCR_Champion__c",
    "competition": "MEDDPICCR_Competition__c",
}
OVERALL_SCORE_FIELD = "MEDDPICC_Overall_Score__c"

OPPORTUNITY_BASIC_FIELDS = (
    "Id", "Name", "AccountId", "Account.Name", "OwnerId", "Owner.Name",
    "StageName", "CloseDate", "Probability", "NextStep", "Description",
    "Type", "CreatedDate", "LastModifiedDate",
)
OPPORTUNITY_ENRICHED_FIELDS = OPPORTUNITY_BASIC_FIELDS + (
    "LastStageChangeDate",
    *QUALIFICATION_FIELDS.values(),
    OVERALL_SCORE_FIELD,
)

STRONG_COMPETITION = re.compile(
    r"\b(incumbent|preferred vendor|strong(ly)? (competitor|competition|preference)|"
    r"favou?red|losing to|head[- ]to[- ]head|short[- ]?list(ed)? .*competitor)\b",
    re.IGNORECASE,
)

# (field key, category, severity, label)
_ENRICHED_RULES = (
    ("economic_buyer", SignalCategory.NO_EXEC_SPONSOR, Severity.HIGH, "No economic buyer identified"),
    ("champion", SignalCategory.FEW_STAKEHOLDERS, Severity.MEDIUM, "No champion identified"),
    ("decision_criteria", SignalCategory.MISSING_SUCCESS_CRITERIA, Severity.MEDIUM, "Decision criteria not captured"),
    ("pain", SignalCategory.MISSING_BUSINESS_IMPACT, Severity.MEDIUM, "Business pain not articulated"),
)


@dataclass(frozen=True)
class QualificationResult:
    score: int
    reasons: Tuple[Signal, ...]
    enriched: bool
    days_in_stage: int

    @property
    def risk_score(self) -> int:
        return risk_score(self.reasons)

    @property
    def is_at_risk(self) -> bool:
        return bool(self.reasons)


def risk_score(reasons: Iterable[Signal]) -> int:
    return min(100, sum(r.weight for r in reasons))


def is_early_stage(stage: Optional[str]) -> bool:
    return (stage or "") in EARLY_STAGES


def _field_filled(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value > 0
    return text_length(value) >= MIN_FIELD_LENGTH


def _crm_reason(category: SignalCategory, severity: Severity, label: str, evidence: str) -> Signal:
    return Signal(
        category=category,
        label=label,
        evidence=evidence,
        severity=severity,
        source_system=SourceSystem.CRM,
    )


def days_in_stage(record: Mapping[str, Any], today: date) -> int:
    """Days since the last stage change, falling back to last update / creation."""
    for name in ("LastStageChangeDate", "LastModifiedDate", "CreatedDate"):
        days = days_between(record.get(name), today)
        if days is not None:
            return max(0, days)
    return 0


def stalling_reason(days: int) -> Optional[Signal]:
    if days <= STALLING_DAYS:
        return None
    severity = Severity.CRITICAL if days > CRITICAL_STALLING_DAYS else Severity.HIGH
    return Signal(
        category=SignalCategory.STALLING,
        label="Deal stalling",
        evidence=f"{days} days in current stage",
        severity=severity,
        source_system=SourceSystem.STALENESS,
    )


def meddpicc_score(record: Mapping[str, Any]) -> int:
    overall = record.get(OVERALL_SCORE_FIELD)
    if overall is not None and safe_float(overall, -1) >= 0:
        return int(round(min(100.0, safe_float(overall))))
    filled = sum(1 for f in QUALIFICATION_FIELDS.values() if _field_filled(record.get(f)))
    return int(round(filled / len(QUALIFICATION_FIELDS) * 100))


def basic_score(record: Mapping[str, Any]) -> int:
    score = 30
    if text_length(record.get("NextStep")) > 0:
        score += 20
    if text_length(record.get("Description")) > 50:
        score += 15
    if record.get("StageName") and not is_early_stage(record.get("StageName")):
        score += 15
    if safe_float(record.get("Probability")) > 50:
        score += 20
    return min(100, score)


def _enriched_reasons(record: Mapping[str, Any]) -> List[Signal]:
    reasons = []
    for key, category, severity, label in _ENRICHED_RULES:
        value = record.get(QUALIFICATION_FIELDS[key])
        if not _field_filled(value):
            evidence = "Field empty" if text_length(value) == 0 else "Field too brief to qualify"
            reasons.append(_crm_reason(category, severity, label, evidence))

    competition = record.get(QUALIFICATION_FIELDS["competition"])
    if isinstance(competition, str):
        match = STRONG_COMPETITION.search(competition)
        if match:
            reasons.append(_crm_reason(
                SignalCategory.STRONG_COMPETITION, Severity.HIGH,
                "Strong competition", f"Competition notes mention '{match.group(0)}'",
            ))
    return reasons


def _basic_reasons(record: Mapping[str, Any]) -> List[Signal]:
    reasons = []
    if text_length(record.get("NextStep")) == 0:
        reasons.append(_crm_reason(
            SignalCategory.MISSING_SUCCESS_CRITERIA, Severity.MEDIUM,
            "No next step defined", "NextStep is empty",
        ))
    probability = record.get("Probability")
    stage = record.get("StageName")
    if probability is not None and safe_float(probability) < LOW_PROBABILITY and not is_early_stage(stage):
        reasons.append(_crm_reason(
            SignalCategory.NO_EXEC_SPONSOR, Severity.HIGH,
            "Low win probability",
            f"{safe_float(probability):.0f}% probability in {stage or 'unknown stage'}",
        ))
    return reasons


def assess_deal(record: Mapping[str, Any], enriched: bool, today: date) -> QualificationResult:
    """Qualification score and risk reasons for one Opportunity record."""
    if enriched:
        score = meddpicc_score(record)
        reasons = _enriched_reasons(record)
    else:
        score = basic_score(record)
        reasons = _basic_reasons(record)

    days = days_in_stage(record, today)
    stalling = stalling_reason(days)
    if stalling is not None:
        reasons.append(stalling)

    return QualificationResult(
        score=score,
        reasons=tuple(reasons),
        enriched=enriched,
        days_in_stage=days,
    )
