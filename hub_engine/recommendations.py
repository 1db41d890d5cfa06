"""
Recommendations
================

Next-best-action text for priority accounts, at-risk deals and renewals.
The generator is an external collaborator (LLM via ai_provider); every call
site also has a rule-based string, used when the generator is disabled,
fails, returns nothing, or its circuit is open.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from hub_engine.lib.ai_provider import ai_complete
from hub_engine.lib.circuit_breaker import call_with_breaker
from hub_engine.lib.config import recommendations_enabled
from hub_engine.lib.errors import CircuitOpenError, RecommendationError
from hub_engine.lib.logger import setup_logger
from hub_engine.renewals import AT_RISK, EXPANSION, RenewalAssessment

logger = setup_logger(__name__)

SERVICE = "recommendations"

PRIORITY_ACCOUNT = "ae_priority_account"
AT_RISK_DEAL = "ae_at_risk_deal"
RENEWAL_RISK = "am_renewal_risk"
EXPANSION_PLAY = "am_expansion"


@dataclass(frozen=True)
class RecommendationContext:
    prompt_type: str
    subject_id: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Recommendation:
    text: str
    source: str = "ai"  # "ai" | "rules"


class RecommendationGenerator(Protocol):
    async def generate(self, context: RecommendationContext) -> Recommendation:
        ...


# ─── Rule-based fallbacks ───────────────────────────────────

def account_fallback(rating: str, employee_count: float, revenue: float) -> str:
    if rating == "Hot" or employee_count > 1000 or revenue > 10_000_000:
        return "High-value prospect. Schedule discovery call this week to understand needs."
    if rating == "Warm" or employee_count > 500:
        return "Promising prospect. Send relevant case studies and request intro meeting."
    return "Continue nurturing. Share educational content and monitor engagement."


def deal_fallback(days_since_activity: int, has_next_step: bool) -> str:
    if days_since_activity > 30:
        return (
            f"Critical: No activity in {days_since_activity} days. "
            "Schedule urgent check-in call and confirm budget/timeline."
        )
    if days_since_activity > 21:
        return (
            f"High priority: {days_since_activity} days stale. "
            "Reach out to champion and schedule next steps meeting."
        )
    if not has_next_step:
        return "Define clear next steps with buyer. Schedule follow-up meeting to move deal forward."
    return "Update close date and confirm decision timeline to maintain momentum."


def renewal_fallback(assessment: RenewalAssessment) -> str:
    if assessment.classification == AT_RISK:
        return (
            f"Schedule QBR immediately - {assessment.days_to_renewal} days to renewal "
            f"with {assessment.health_score:g} health score"
        )
    if assessment.classification == EXPANSION:
        return "Strong renewal candidate. Prepare expansion proposal for additional users/features"
    return "Renewal tracking well. Schedule check-in 60 days before renewal"


# ─── AI-backed generator ────────────────────────────────────

SYSTEM_PROMPTS = {
    PRIORITY_ACCOUNT: (
        "You are a B2B sales coach. Given an account's firmographics and intent data, "
        "recommend the single most valuable next action for the account executive this week."
    ),
    AT_RISK_DEAL: (
        "You are a B2B sales coach. Given an at-risk opportunity's activity gap, qualification "
        "gaps and risk signals, recommend the single action most likely to get the deal moving."
    ),
    RENEWAL_RISK: (
        "You are a customer success advisor. Given a renewal at risk, recommend the single "
        "action most likely to secure the renewal."
    ),
    EXPANSION_PLAY: (
        "You are an account management advisor. Given a healthy, well-adopted customer near "
        "renewal, recommend how to position an expansion."
    ),
}

RESPONSE_RULES = "Answer in at most two sentences of plain text. No preamble, no lists."


class AIRecommendationGenerator:
    """Recommendation generator backed by the configured LLM provider."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider

    async def generate(self, context: RecommendationContext) -> Recommendation:
        system_prompt = SYSTEM_PROMPTS.get(context.prompt_type)
        if system_prompt is None:
            raise RecommendationError(
                f"Unknown prompt type '{context.prompt_type}'", prompt_type=context.prompt_type,
            )

        response = await ai_complete(
            task=context.prompt_type,
            system_prompt=f"{system_prompt}\n{RESPONSE_RULES}",
            user_prompt=json.dumps(context.data, default=str, indent=2),
            provider=self.provider,
            subject_id=context.subject_id,
        )
        text = response.content.strip()
        if not text:
            raise RecommendationError("Empty recommendation", prompt_type=context.prompt_type)
        return Recommendation(text=text, source="ai")


async def recommend(
    generator: Optional[RecommendationGenerator],
    context: RecommendationContext,
    fallback_text: str,
) -> Recommendation:
    """Generator output, or the rule-based text on any failure."""
    if generator is None or not recommendations_enabled():
        return Recommendation(text=fallback_text, source="rules")

    try:
        result = await call_with_breaker(SERVICE, generator.generate, context)
        if result is not None and result.text.strip():
            return result
        logger.warning("Empty %s recommendation for %s", context.prompt_type, context.subject_id)
    except CircuitOpenError as e:
        logger.debug("Skipping %s recommendation: %s", context.prompt_type, e)
    except Exception as e:
        logger.warning(
            "Recommendation %s failed for %s: %s; using rule-based text",
            context.prompt_type, context.subject_id, e,
        )
    return Recommendation(text=fallback_text, source="rules")
