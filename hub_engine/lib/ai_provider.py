"""
Revenue Signal Hub: AI Provider
=================================

Completion backends for the recommendation generator. AI_PROVIDER picks the
default backend ("groq" or "claude"); every completion is written to the
recommendation_logs table for cost tracking.

Usage:
    from hub_engine.lib.ai_provider import ai_complete
    response = await ai_complete(
        task="ae_deal_risk",
        system_prompt="You are a sales coach...",
        user_prompt="Deal: Acme renewal, 34 days without activity...",
        subject_id="006XXXXXXXXXXXX",
    )
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass

from hub_engine.lib.errors import RecommendationError
from hub_engine.lib.logger import setup_logger

logger = setup_logger("ai_provider")

LOG_TABLE = "recommendation_logs"

# provider -> (default model, API key env var)
PROVIDERS = {
    "groq": ("llama-3.3-70b-versatile", "GROQ_API_KEY"),
    "claude": ("claude-sonnet-4-5-20250929", "ANTHROPIC_API_KEY"),
}

DEFAULT_MAX_TOKENS = 300
DEFAULT_TEMPERATURE = 0.4


@dataclass
class AIResponse:
    content: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int


def resolve_provider(provider: str | None = None) -> str:
    """Explicit provider, else AI_PROVIDER, else groq. Unknown names fall back to groq."""
    name = (provider or os.getenv("AI_PROVIDER") or "groq").strip().lower()
    return name if name in PROVIDERS else "groq"


def _api_key(provider: str) -> str:
    env_var = PROVIDERS[provider][1]
    key = os.getenv(env_var)
    if not key:
        raise RecommendationError(f"{env_var} not set for {provider}")
    return key


async def ai_complete(
    task: str,
    system_prompt: str,
    user_prompt: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
    subject_id: str | None = None,
) -> AIResponse:
    """
    Run one completion on the chosen backend and record it.

    Args:
        task: Prompt type (ae_priority_account, ae_deal_risk, am_renewal).
        subject_id: CRM record the recommendation is about, for the audit row.

    Raises:
        RecommendationError: the provider's API key is missing.
    """
    name = resolve_provider(provider)
    backend = _complete_claude if name == "claude" else _complete_groq
    chosen_model = model or PROVIDERS[name][0]

    started = time.perf_counter()
    content, input_tokens, output_tokens = await backend(
        system_prompt, user_prompt, chosen_model, max_tokens, temperature,
    )
    response = AIResponse(
        content=content,
        provider=name,
        model=chosen_model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        latency_ms=int((time.perf_counter() - started) * 1000),
    )

    _record(task, response, subject_id)
    logger.info(
        "AI %s/%s task=%s tokens=%d+%d %dms",
        name, chosen_model, task, input_tokens, output_tokens, response.latency_ms,
    )
    return response


async def _complete_groq(system_prompt, user_prompt, model, max_tokens, temperature):
    from groq import AsyncGroq

    client = AsyncGroq(api_key=_api_key("groq"))
    result = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
    )
    usage = result.usage
    return (
        result.choices[0].message.content or "",
        usage.prompt_tokens if usage else 0,
        usage.completion_tokens if usage else 0,
    )


async def _complete_claude(system_prompt, user_prompt, model, max_tokens, temperature):
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=_api_key("claude"))
    result = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system_prompt,
        messages=[{"role": "user", "content": user_prompt}],
    )
    text = "".join(block.text for block in result.content if getattr(block, "type", "") == "text")
    return text, result.usage.input_tokens, result.usage.output_tokens


def _record(task: str, response: AIResponse, subject_id: str | None) -> None:
    """Audit row; a failed write never fails the completion."""
    row = {
        "task": task,
        "provider": response.provider,
        "model": response.model,
        "input_tokens": response.input_tokens,
        "output_tokens": response.output_tokens,
        "latency_ms": response.latency_ms,
        "subject_id": subject_id,
    }
    try:
        from hub_engine.lib.supabase_client import get_client
        get_client().table(LOG_TABLE).insert(row).execute()
    except Exception as e:
        logger.warning("Could not record AI call for %s: %s", task, e)
