"""Tests for the AI provider dispatch and audit logging."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hub_engine.lib.ai_provider import PROVIDERS, ai_complete, resolve_provider
from hub_engine.lib.errors import RecommendationError


class TestResolveProvider:
    def test_explicit_wins(self):
        with patch.dict("os.environ", {"AI_PROVIDER": "groq"}, clear=False):
            assert resolve_provider("Claude") == "claude"

    def test_env_default(self):
        with patch.dict("os.environ", {"AI_PROVIDER": "claude"}, clear=False):
            assert resolve_provider() == "claude"

    def test_unknown_falls_back_to_groq(self):
        assert resolve_provider("gpt") == "groq"


class TestAIComplete:
    @pytest.mark.asyncio
    async def test_dispatch_and_record(self):
        client = MagicMock()
        with patch("hub_engine.lib.ai_provider._complete_claude", new=AsyncMock(return_value=("Call the CFO.", 120, 8))) as backend, \
             patch("hub_engine.lib.supabase_client.get_client", return_value=client):
            response = await ai_complete("ae_deal_risk", "sys", "user", provider="claude", subject_id="006a")

        assert response.content == "Call the CFO."
        assert (response.provider, response.model) == ("claude", PROVIDERS["claude"][0])
        assert (response.input_tokens, response.output_tokens) == (120, 8)
        assert backend.call_args.args[2] == PROVIDERS["claude"][0]
        row = client.table.return_value.insert.call_args.args[0]
        assert row["task"] == "ae_deal_risk"
        assert row["subject_id"] == "006a"

    @pytest.mark.asyncio
    async def test_audit_failure_is_not_fatal(self):
        with patch("hub_engine.lib.ai_provider._complete_groq", new=AsyncMock(return_value=("ok", 1, 1))), \
             patch("hub_engine.lib.supabase_client.get_client", side_effect=ValueError("no supabase")):
            response = await ai_complete("am_renewal", "sys", "user", provider="groq")
        assert response.content == "ok"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with patch.dict("os.environ", {"GROQ_API_KEY": ""}, clear=False):
            with pytest.raises(RecommendationError):
                await ai_complete("ae_deal_risk", "sys", "user", provider="groq")
