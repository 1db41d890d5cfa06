"""Tests for the AE / AM / CSM hub views."""

from datetime import date
from unittest.mock import patch

import pytest

from hub_engine.entities import Severity, Signal, SignalCategory, SourceSystem
from hub_engine.hub_data import (
    get_ae_metrics,
    get_am_metrics,
    get_at_risk_deals,
    get_csm_at_risk_accounts,
    get_csm_metrics,
    get_pipeline_forecast,
    get_priority_accounts,
    get_renewal_accounts,
    get_todays_priorities,
    get_watchlist_deals,
    owner_condition,
    with_mapped_fields,
)
from hub_engine.quota import QuotaResolver
from hub_engine.recommendations import EXPANSION_PLAY, RENEWAL_RISK, Recommendation
from integrations.call_intelligence import CallIntelligence
from models.hub_models import FieldMappings, HubSettings, QuotaConfig, TierOverride

from tests.fakes import FakeFetcher

TODAY = date(2026, 10, 19)

# Forces the basic (standard field) path for Opportunity queries
NO_MEDDPICC = {"MEDDPICCR_Champion__c"}


class RecordingGenerator:
    def __init__(self):
        self.prompt_types = []

    async def generate(self, context):
        self.prompt_types.append(context.prompt_type)
        return Recommendation(text=f"AI: {context.subject_id}", source="ai")


class FakeCallSignals:
    def __init__(self, results):
        self.results = results

    async def get_signals_for_subjects(self, ids):
        return {i: self.results[i] for i in ids if i in self.results}


class FakeWatchlist:
    def __init__(self, deal_ids=None, error=None):
        self.deal_ids = deal_ids or []
        self.error = error

    def get(self, user_id):
        if self.error:
            raise self.error
        return list(self.deal_ids)


def objection(evidence="Security review concerns"):
    return Signal(
        category=SignalCategory.OBJECTION, label="Objection raised on calls", evidence=evidence,
        severity=Severity.MEDIUM, source_system=SourceSystem.CALL_INTELLIGENCE, confidence="medium",
    )


class TestHelpers:
    def test_mapped_fields_appended_once(self):
        settings = HubSettings(fields=FieldMappings(amount_field="ARR__c"))
        assert with_mapped_fields(("Id", "Amount"), settings) == ("Id", "Amount", "ARR__c", "ForecastCategory")
        assert with_mapped_fields(("Id", "ARR__c"), settings) == ("Id", "ARR__c", "ForecastCategory")

    def test_owner_condition(self):
        assert owner_condition(["005a"]).op == "eq"
        assert owner_condition(["005a", "005b"]).value == ("005a", "005b")


class TestPriorityAccounts:
    ACCOUNTS = [
        {"Id": "001a", "Name": "Acme Inc", "AnnualRevenue": 2_000_000},
        {"Id": "001b", "Name": "Acme Corp", "AnnualRevenue": 20_000_000},
        {"Id": "001c", "Name": "Beta LLC", "NumberOfEmployees": 1500, "AnnualRevenue": 20_000_000},
    ]

    @pytest.mark.asyncio
    async def test_grouped_and_ranked(self):
        fetcher = FakeFetcher({"Account": self.ACCOUNTS})
        accounts = await get_priority_accounts(fetcher, "005u", today=TODAY)
        assert [a["id"] for a in accounts] == ["001c", "001b"]
        assert accounts[0]["priority_score"] == 85
        assert accounts[0]["tier"] == "hot"
        assert accounts[1]["group_count"] == 2
        assert accounts[1]["domain_key"] == "acme"
        assert accounts[0]["recommendation_source"] == "rules"
        assert accounts[0]["recommendation"].startswith("High-value prospect")
        assert "accountIntentScore6sense__c" in fetcher.calls[0].fields

    @pytest.mark.asyncio
    async def test_enriched_intent_signals_fused_across_group(self):
        records = [
            {"Id": "001a", "Name": "Acme Inc", "accountIntentScore6sense__c": 85},
            {"Id": "001b", "Name": "Acme Corp", "accountIntentScore6sense__c": 65},
        ]
        accounts = await get_priority_accounts(FakeFetcher({"Account": records}), "005u", today=TODAY)
        assert len(accounts) == 1
        assert accounts[0]["id"] == "001a"
        assert len(accounts[0]["signals"]) == 1
        assert accounts[0]["signal_score"] == 88

    @pytest.mark.asyncio
    async def test_basic_fallback_when_enrichment_missing(self):
        records = [{"Id": "001a", "Name": "Acme", "accountIntentScore6sense__c": 99}]
        fetcher = FakeFetcher({"Account": records}, missing_fields={"accountIntentScore6sense__c"})
        accounts = await get_priority_accounts(fetcher, "005u", today=TODAY)
        assert accounts[0]["priority_score"] == 50
        assert accounts[0]["signals"] == []
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_tier_override(self):
        settings = HubSettings(tier_overrides={"001c": TierOverride(account_id="001c", tier="cold")})
        accounts = await get_priority_accounts(FakeFetcher({"Account": self.ACCOUNTS}), "005u", settings, today=TODAY)
        assert accounts[0]["id"] == "001c"
        assert accounts[0]["tier"] == "cold"
        assert accounts[0]["is_overridden"] is True

    @pytest.mark.asyncio
    async def test_ai_recommendations(self):
        generator = RecordingGenerator()
        with patch.dict("os.environ", {"RECOMMENDATIONS_ENABLED": "true"}, clear=False):
            accounts = await get_priority_accounts(
                FakeFetcher({"Account": self.ACCOUNTS}), "005u", generator=generator, limit=1, today=TODAY,
            )
        assert accounts[0]["recommendation"] == "AI: 001c"
        assert generator.prompt_types == ["ae_priority_account"]

    @pytest.mark.asyncio
    async def test_fetch_failure_is_empty(self):
        fetcher = FakeFetcher(fail_objects={"Account"})
        assert await get_priority_accounts(fetcher, "005u", today=TODAY) == []


class TestAtRiskDeals:
    DEALS = [
        {"Id": "006a", "Name": "Acme", "StageName": "Negotiation", "Probability": 20,
         "LastModifiedDate": "2026-10-18", "Amount": 50_000, "Account": {"Name": "Acme"}},
        {"Id": "006b", "Name": "Beta", "StageName": "Proposal", "Probability": 80, "NextStep": "Send MSA",
         "LastModifiedDate": "2026-10-17", "Amount": 75_000},
        {"Id": "006c", "Name": "Gamma", "StageName": "Proposal", "Probability": 60, "NextStep": "Demo",
         "LastModifiedDate": "2026-08-30", "Amount": 10_000},
    ]

    @pytest.mark.asyncio
    async def test_only_deals_with_reasons_sorted_by_risk(self):
        fetcher = FakeFetcher({"Opportunity": self.DEALS}, missing_fields=NO_MEDDPICC)
        deals = await get_at_risk_deals(fetcher, "005u", today=TODAY)
        assert [d["id"] for d in deals] == ["006a", "006c"]
        assert deals[0]["risk_score"] == 30
        assert deals[0]["account_name"] == "Acme"
        assert deals[0]["qualification_source"] == "basic"
        assert deals[1]["risk_reasons"][0]["category"] == "stalling"
        assert deals[1]["recommendation"].startswith("Critical: No activity in 50 days")
        assert deals[0]["recommendation"].startswith("Define clear next steps")

    @pytest.mark.asyncio
    async def test_call_intelligence_adds_reasons(self):
        fetcher = FakeFetcher({"Opportunity": self.DEALS}, missing_fields=NO_MEDDPICC)
        calls = FakeCallSignals({"006b": CallIntelligence(signals=(objection(),), call_count=2)})
        deals = await get_at_risk_deals(fetcher, "005u", call_signals=calls, today=TODAY)
        beta = next(d for d in deals if d["id"] == "006b")
        assert [r["category"] for r in beta["risk_reasons"]] == ["objection"]
        assert beta["risk_reasons"][0]["source"] == "call_intelligence"

    @pytest.mark.asyncio
    async def test_failing_call_source_is_ignored(self):
        class Broken:
            async def get_signals_for_subjects(self, ids):
                raise RuntimeError("store down")

        fetcher = FakeFetcher({"Opportunity": self.DEALS}, missing_fields=NO_MEDDPICC)
        deals = await get_at_risk_deals(fetcher, "005u", call_signals=Broken(), today=TODAY)
        assert [d["id"] for d in deals] == ["006a", "006c"]

    @pytest.mark.asyncio
    async def test_custom_amount_field(self):
        settings = HubSettings(fields=FieldMappings(amount_field="ARR__c"))
        deals = [dict(self.DEALS[0], ARR__c=99_000)]
        fetcher = FakeFetcher({"Opportunity": deals}, missing_fields=NO_MEDDPICC)
        result = await get_at_risk_deals(fetcher, "005u", settings, today=TODAY)
        assert result[0]["amount"] == 99_000
        assert "ARR__c" in fetcher.calls[-1].fields


def forecast_routes(open_deals, won):
    def opportunities(descriptor):
        return won if "IsWon = true" in descriptor.to_soql() else open_deals
    return {"Opportunity": opportunities}


class TestPipelineForecast:
    OPEN = [
        {"Id": "1", "Amount": 200_000, "Probability": 80, "ForecastCategory": "Pipeline", "StageName": "Negotiation"},
        {"Id": "2", "Amount": 150_000, "Probability": 60, "ForecastCategory": "Pipeline", "StageName": "Proposal"},
        {"Id": "3", "Amount": 150_000, "Probability": 10, "ForecastCategory": "Pipeline", "StageName": "Prospecting"},
    ]
    WON = [{"Id": "4", "Amount": 100_000}]

    @pytest.mark.asyncio
    async def test_this_and_next_quarter(self):
        settings = HubSettings(quota=QuotaConfig(source="manual", default_amount=400_000))
        fetcher = FakeFetcher(forecast_routes(self.OPEN, self.WON))
        views = await get_pipeline_forecast(fetcher, ["005u"], settings, QuotaResolver(), today=TODAY)
        assert [v["label"] for v in views] == ["Q4 2026", "Q1 2027"]
        current = views[0]
        assert (current["commit"], current["best_case"], current["pipeline"]) == (200_000, 150_000, 150_000)
        assert current["method_used"] == "probability"
        assert current["method_configured"] == "forecast-category"
        assert current["quota_target"] == 400_000
        assert current["quota_attainment"] == 25
        assert current["coverage_ratio"] == pytest.approx(500_000 / 300_000)
        assert current["start"] == "2026-10-01"
        soql = [c.to_soql() for c in fetcher.calls]
        assert any("CloseDate >= 2026-10-01 AND CloseDate <= 2026-12-31" in s for s in soql)

    @pytest.mark.asyncio
    async def test_no_owners(self):
        assert await get_pipeline_forecast(FakeFetcher(), [], today=TODAY) == []

    @pytest.mark.asyncio
    async def test_fetch_failure_yields_zero_forecast(self):
        views = await get_pipeline_forecast(
            FakeFetcher(fail_objects={"Opportunity"}), ["005u"], tokens=("thisQuarter",), today=TODAY,
        )
        assert views[0]["total_pipeline"] == 0
        assert views[0]["closed_won"] == 0


class TestAEMetrics:
    @pytest.mark.asyncio
    async def test_metrics(self):
        routes = forecast_routes(
            open_deals=[{"Id": "p1", "Amount": 100_000}, {"Id": "p2", "Amount": 200_000}],
            won=[{"Id": "w1", "Amount": 50_000}, {"Id": "w2", "Amount": 50_000}],
        )
        routes["Account"] = [{"Id": "001a"}, {"Id": "001b"}, {"Id": "001c"}]
        settings = HubSettings(quota=QuotaConfig(source="manual", default_amount=400_000))
        fetcher = FakeFetcher(routes)
        metrics = await get_ae_metrics(fetcher, "005u", settings, QuotaResolver(), today=TODAY)
        assert metrics == {
            "period": "2026",
            "closed_won": 100_000,
            "quota": 400_000,
            "quota_source": "manual",
            "quota_attainment": 25,
            "pipeline": 300_000,
            "pipeline_coverage": 1.0,
            "open_deals": 2,
            "avg_deal_size": 150_000,
            "hot_prospects": 3,
        }
        account_soql = fetcher.calls_for("Account")[0].to_soql()
        assert "(CreatedDate >= 2026-09-19T00:00:00Z OR LastModifiedDate >= 2026-09-19T00:00:00Z)" in account_soql

    @pytest.mark.asyncio
    async def test_no_quota(self):
        metrics = await get_ae_metrics(FakeFetcher(), "005u", today=TODAY)
        assert metrics["quota_attainment"] == 0
        assert metrics["pipeline_coverage"] == 0
        assert metrics["avg_deal_size"] == 0


class TestTodaysPriorities:
    @pytest.mark.asyncio
    async def test_sorted_by_urgency(self):
        deals = [
            {"Id": "006a", "Name": "Acme", "StageName": "Proposal", "NextStep": "Demo",
             "LastModifiedDate": "2026-10-18", "CloseDate": "2026-11-30"},
            {"Id": "006b", "Name": "Beta", "StageName": "Negotiation", "Probability": 20,
             "LastModifiedDate": "2026-08-10", "AccountId": "001b", "Account": {"Name": "Beta Inc"}},
        ]
        fetcher = FakeFetcher({"Opportunity": deals}, missing_fields=NO_MEDDPICC)
        calls = FakeCallSignals({"006a": CallIntelligence(signals=(objection(),))})
        items = await get_todays_priorities(fetcher, "005u", call_signals=calls, today=TODAY)
        assert [i["urgency"] for i in items] == ["critical", "high", "medium", "medium"]
        assert items[0]["id"] == "stalling-006b"
        assert items[0]["title"] == "Deal stalling: Beta"
        assert items[0]["account_name"] == "Beta Inc"
        assert [i["opportunity_id"] for i in items[2:]] == ["006b", "006a"]

    @pytest.mark.asyncio
    async def test_limit(self):
        deals = [
            {"Id": f"006{i}", "StageName": "Negotiation", "Probability": 5, "LastModifiedDate": "2026-07-01"}
            for i in range(10)
        ]
        fetcher = FakeFetcher({"Opportunity": deals}, missing_fields=NO_MEDDPICC)
        assert len(await get_todays_priorities(fetcher, "005u", limit=5, today=TODAY)) == 5


class TestRenewalAccounts:
    RECORDS = [
        {"Id": "001far", "Name": "Far", "Agreement_Expiry_Date__c": "2027-11-30"},
        {"Id": "001exp", "Name": "Expand", "Agreement_Expiry_Date__c": "2027-01-27",
         "Current_Gainsight_Score__c": 92, "Active_Users__c": 800, "Last_QBR__c": "2026-09-15"},
        {"Id": "001soon", "Name": "Soon", "Agreement_Expiry_Date__c": "2026-11-08", "Total_ARR__c": 120_000},
        {"Id": "001past", "Name": "Lapsed", "Agreement_Expiry_Date__c": "2026-10-14"},
    ]

    @pytest.mark.asyncio
    async def test_window_and_order(self):
        fetcher = FakeFetcher({"Account": self.RECORDS})
        renewals = await get_renewal_accounts(fetcher, "005u", today=TODAY)
        assert [r["id"] for r in renewals] == ["001soon", "001exp"]
        soon, expand = renewals
        assert soon["classification"] == "At Risk"
        assert soon["signals"][0]["category"] == "renewal-risk"
        assert soon["recommendation"].startswith("Schedule QBR immediately - 20 days")
        assert expand["classification"] == "Expansion Opportunity"
        assert expand["signal_score"] == 85
        assert "Type LIKE '%Customer%'" in fetcher.calls[0].to_soql()

    @pytest.mark.asyncio
    async def test_prompt_type_follows_classification(self):
        generator = RecordingGenerator()
        with patch.dict("os.environ", {"RECOMMENDATIONS_ENABLED": "true"}, clear=False):
            await get_renewal_accounts(FakeFetcher({"Account": self.RECORDS}), "005u", generator=generator, today=TODAY)
        assert generator.prompt_types == [RENEWAL_RISK, EXPANSION_PLAY]

    @pytest.mark.asyncio
    async def test_query_bounds_and_orders_by_expiry(self):
        fetcher = FakeFetcher({"Account": []})
        await get_renewal_accounts(fetcher, "005u", today=TODAY)
        soql = fetcher.calls[0].to_soql()
        assert "Agreement_Expiry_Date__c != null" in soql
        assert "Agreement_Expiry_Date__c >= 2026-10-19" in soql
        assert "Agreement_Expiry_Date__c <= 2027-04-17" in soql
        assert "ORDER BY Agreement_Expiry_Date__c ASC" in soql

    @pytest.mark.asyncio
    async def test_account_without_expiry_date_is_skipped(self):
        fetcher = FakeFetcher({"Account": [{"Id": "001none", "Name": "No contract", "Current_Gainsight_Score__c": 75}]})
        assert await get_renewal_accounts(fetcher, "005u", today=TODAY) == []

    @pytest.mark.asyncio
    async def test_missing_expiry_field_returns_nothing(self, caplog):
        accounts = [{"Id": "001a", "Name": "A"}, {"Id": "001b", "Name": "B"}]
        fetcher = FakeFetcher({"Account": accounts}, missing_fields={"Agreement_Expiry_Date__c"})
        with caplog.at_level("WARNING", logger="hub_engine.hub_data"):
            renewals = await get_renewal_accounts(fetcher, "005u", today=TODAY)
        assert renewals == []
        assert len(fetcher.calls) == 1
        assert "Renewal fields unavailable" in caplog.text


class TestCSMAtRisk:
    @pytest.mark.asyncio
    async def test_basic_mode(self):
        records = [
            {"Id": "a", "LastActivityDate": "2026-07-01"},
            {"Id": "b", "LastActivityDate": "2026-10-10"},
            {"Id": "c", "LastActivityDate": "2026-08-10"},
        ]
        fetcher = FakeFetcher({"Account": records}, missing_fields={"Current_Gainsight_Score__c"})
        accounts = await get_csm_at_risk_accounts(fetcher, "005u", today=TODAY)
        assert [a["id"] for a in accounts] == ["a", "c"]
        assert accounts[0]["risk_factors"] == ["No activity in 90+ days"]
        assert accounts[0]["data_source"] == "basic"

    @pytest.mark.asyncio
    async def test_enriched_sorted_by_health(self):
        records = [
            {"Id": "a", "Current_Gainsight_Score__c": 55, "LastActivityDate": "2026-10-01"},
            {"Id": "b", "Current_Gainsight_Score__c": 35, "LastActivityDate": "2026-10-01"},
            {"Id": "c", "Current_Gainsight_Score__c": 90, "LastActivityDate": "2026-10-01"},
        ]
        accounts = await get_csm_at_risk_accounts(FakeFetcher({"Account": records}), "005u", today=TODAY)
        assert [a["id"] for a in accounts] == ["b", "a"]
        assert accounts[0]["risk_factors"] == ["Critical health score"]


class TestAMMetrics:
    @staticmethod
    def accounts(descriptor):
        if "Customer_Stage__c" in descriptor.to_soql():
            return [{"Id": "001r1"}, {"Id": "001r2"}]
        return [{"Id": "001a", "Total_ARR__c": 100_000}, {"Id": "001b", "Total_ARR__c": 50_000}]

    UPSELLS = [{"Id": "006a", "Amount": 40_000}, {"Id": "006b", "Amount": 60_000}]

    @pytest.mark.asyncio
    async def test_metrics(self):
        fetcher = FakeFetcher({"Account": self.accounts, "Opportunity": self.UPSELLS})
        metrics = await get_am_metrics(fetcher, "005u")
        assert metrics == {
            "renewals_at_risk": 2,
            "expansion_pipeline": 100_000,
            "expansion_deals": 2,
            "avg_contract_value": 75_000,
        }
        at_risk_soql, contracts_soql = [c.to_soql() for c in fetcher.calls_for("Account")]
        assert "Customer_Stage__c = 'Renewal'" in at_risk_soql
        assert "(Risk__c = 'Red' OR Current_Gainsight_Score__c < 50)" in at_risk_soql
        assert "Total_ARR__c > 0" in contracts_soql
        upsell_soql = fetcher.calls_for("Opportunity")[0].to_soql()
        assert "IsClosed = false" in upsell_soql
        assert "Type = 'Upsell'" in upsell_soql

    @pytest.mark.asyncio
    async def test_configured_amount_field(self):
        upsells = [{"Id": "006a", "ARR__c": 25_000}]
        settings = HubSettings(fields=FieldMappings(amount_field="ARR__c"))
        fetcher = FakeFetcher({"Account": self.accounts, "Opportunity": upsells})
        metrics = await get_am_metrics(fetcher, "005u", settings)
        assert metrics["expansion_pipeline"] == 25_000
        assert "ARR__c" in fetcher.calls_for("Opportunity")[0].fields

    @pytest.mark.asyncio
    async def test_failed_query_contributes_zero(self):
        fetcher = FakeFetcher({"Account": self.accounts}, fail_objects={"Opportunity"})
        metrics = await get_am_metrics(fetcher, "005u")
        assert metrics["expansion_pipeline"] == 0
        assert metrics["expansion_deals"] == 0
        assert metrics["renewals_at_risk"] == 2

    @pytest.mark.asyncio
    async def test_all_failed(self):
        fetcher = FakeFetcher(fail_objects={"Account", "Opportunity"})
        metrics = await get_am_metrics(fetcher, "005u")
        assert metrics == {"renewals_at_risk": 0, "expansion_pipeline": 0, "expansion_deals": 0, "avg_contract_value": 0}


class TestCSMMetrics:
    @staticmethod
    def accounts(descriptor):
        soql = descriptor.to_soql()
        if "Risk__c = 'Red'" in soql:
            return [{"Id": "001a"}, {"Id": "001b"}, {"Id": "001c"}]
        if "Current_Gainsight_Score__c != null" in soql:
            return [{"Id": "001a", "Current_Gainsight_Score__c": 80},
                    {"Id": "001b", "Current_Gainsight_Score__c": 65},
                    {"Id": "001c", "Current_Gainsight_Score__c": 51}]
        return [{"Id": "001d"}]

    @pytest.mark.asyncio
    async def test_metrics(self):
        fetcher = FakeFetcher({"Account": self.accounts})
        metrics = await get_csm_metrics(fetcher, "005c", today=TODAY)
        assert metrics == {
            "accounts_at_risk": 3,
            "avg_health_score": 65.3,
            "upcoming_renewals": 1,
            "renewal_window_days": 90,
        }
        at_risk_soql, _, renewals_soql = [c.to_soql() for c in fetcher.calls]
        assert "Customer_Success_Manager__c = '005c'" in at_risk_soql
        assert "(Risk__c = 'Red' OR Current_Gainsight_Score__c < 60)" in at_risk_soql
        assert "Agreement_Expiry_Date__c != null" in renewals_soql
        assert "Agreement_Expiry_Date__c <= 2027-01-17" in renewals_soql

    @pytest.mark.asyncio
    async def test_store_down(self):
        metrics = await get_csm_metrics(FakeFetcher(fail_objects={"Account"}), "005c", today=TODAY)
        assert metrics["accounts_at_risk"] == 0
        assert metrics["avg_health_score"] == 0
        assert metrics["upcoming_renewals"] == 0


class TestWatchlistDeals:
    @pytest.mark.asyncio
    async def test_watchlist_order_and_missing_deals(self):
        records = [{"Id": "006a", "Name": "A"}, {"Id": "006b", "Name": "B", "NextStep": "Call"}]
        fetcher = FakeFetcher({"Opportunity": records}, missing_fields=NO_MEDDPICC)
        deals = await get_watchlist_deals(fetcher, FakeWatchlist(["006b", "006gone", "006a"]), "005u", today=TODAY)
        assert [d["id"] for d in deals] == ["006b", "006a"]
        assert "Id IN ('006b', '006gone', '006a')" in fetcher.calls[-1].to_soql()

    @pytest.mark.asyncio
    async def test_empty_watchlist_skips_fetch(self):
        fetcher = FakeFetcher()
        assert await get_watchlist_deals(fetcher, FakeWatchlist([]), "005u", today=TODAY) == []
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_store_failure(self):
        fetcher = FakeFetcher()
        store = FakeWatchlist(error=RuntimeError("supabase down"))
        assert await get_watchlist_deals(fetcher, store, "005u", today=TODAY) == []
