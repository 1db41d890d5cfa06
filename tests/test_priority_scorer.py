"""Tests for account priority scoring and tiers."""

from datetime import date

import pytest

from hub_engine.entities import SignalCategory, Tier
from hub_engine.priority_scorer import (
    NEVER_UPDATED_DAYS,
    apply_override,
    score_account,
    score_priority,
    tier_for_score,
)
from models.hub_models import TierOverride

TODAY = date(2026, 10, 19)


class TestScorePriority:
    def test_base_score(self):
        assert score_priority() == 50

    def test_large_firmographics(self):
        assert score_priority(employee_count=1500, revenue=20_000_000) == 85

    @pytest.mark.parametrize("employees, bonus", [(1001, 20), (1000, 15), (501, 15), (500, 10), (101, 10), (100, 0)])
    def test_employee_bands(self, employees, bonus):
        assert score_priority(employee_count=employees) == 50 + bonus

    @pytest.mark.parametrize("revenue, bonus", [(10_000_001, 15), (10_000_000, 10), (1_000_001, 10), (100_001, 5), (100_000, 0)])
    def test_revenue_bands(self, revenue, bonus):
        assert score_priority(revenue=revenue) == 50 + bonus

    def test_enrichment_bonuses(self):
        assert score_priority(intent_score=80) == 75
        assert score_priority(intent_score=60) == 65
        assert score_priority(intent_score=59) == 50
        assert score_priority(profile_fit="Strong") == 65
        assert score_priority(profile_fit="moderate") == 60
        assert score_priority(growth_pct=21) == 60
        assert score_priority(growth_pct=20) == 50
        assert score_priority(funding_signal="Series B") == 60

    def test_clamped_to_100(self):
        score = score_priority(
            employee_count=5000, revenue=50_000_000, intent_score=95,
            profile_fit="Strong", growth_pct=40, funding_signal=True,
        )
        assert score == 100

    def test_junk_inputs_score_as_missing(self):
        assert score_priority(employee_count="n/a", revenue=None, intent_score="x") == 50

    def test_monotonic_in_each_input(self):
        for employees in range(0, 3000, 50):
            assert score_priority(employee_count=employees + 50) >= score_priority(employee_count=employees)
        for revenue in range(0, 30_000_000, 500_000):
            assert score_priority(revenue=revenue + 500_000) >= score_priority(revenue=revenue)


class TestTiers:
    @pytest.mark.parametrize("score, tier", [(100, Tier.HOT), (75, Tier.HOT), (74, Tier.WARM), (60, Tier.WARM), (59, Tier.COOL), (0, Tier.COOL)])
    def test_thresholds(self, score, tier):
        assert tier_for_score(score) == tier

    def test_score_never_yields_cold(self):
        assert all(tier_for_score(s) != Tier.COLD for s in range(0, 101))


class TestScoreAccount:
    def test_basic_mode_ignores_enrichment_fields(self):
        record = {
            "Id": "001a", "Name": "Acme", "NumberOfEmployees": 1500, "AnnualRevenue": 20_000_000,
            "accountIntentScore6sense__c": 90, "LastModifiedDate": "2026-10-17T10:00:00.000+0000",
        }
        entity = score_account(record, enriched=False, today=TODAY)
        assert entity.score == 85
        assert entity.tier == Tier.HOT
        assert entity.signals == ()
        assert entity.attr("days_since_update") == 2
        assert entity.attr("top_signal") == "Recently active"

    def test_enriched_intent_adds_signal(self):
        record = {
            "Id": "001a", "Name": "Acme", "accountIntentScore6sense__c": 85,
            "accountBuyingStage6sense__c": "Decision",
        }
        entity = score_account(record, enriched=True, today=TODAY)
        assert entity.score == 75
        assert len(entity.signals) == 1
        signal = entity.signals[0]
        assert signal.category == SignalCategory.NEW_BUSINESS
        assert signal.evidence == "Intent score 85 (Decision)"
        assert entity.attr("buying_stage") == "Decision"

    def test_missing_last_modified(self):
        entity = score_account({"Id": "001a"}, enriched=False, today=TODAY)
        assert entity.attr("days_since_update") == NEVER_UPDATED_DAYS
        assert entity.display_name == "Unknown Account"
        assert entity.attr("top_signal") == f"Last updated {NEVER_UPDATED_DAYS} days ago"

    def test_override_applied(self):
        overrides = {"001a": TierOverride(account_id="001a", tier="Cold", reason="churned parent")}
        entity = score_account(
            {"Id": "001a", "NumberOfEmployees": 1500, "AnnualRevenue": 20_000_000},
            enriched=False, today=TODAY, overrides=overrides,
        )
        assert entity.tier == Tier.COLD
        assert entity.is_overridden
        assert entity.score == 85


class TestApplyOverride:
    def test_no_override_is_identity(self):
        entity = score_account({"Id": "001a"}, enriched=False, today=TODAY)
        assert apply_override(entity, None) is entity

    def test_override_keeps_score(self):
        entity = score_account({"Id": "001a"}, enriched=False, today=TODAY)
        promoted = apply_override(entity, TierOverride(account_id="001a", tier="hot"))
        assert promoted.tier == Tier.HOT
        assert promoted.score == entity.score == 50
        assert not entity.is_overridden
