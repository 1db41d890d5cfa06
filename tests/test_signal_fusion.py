"""Tests for multi-source signal fusion."""

import pytest

from hub_engine.entities import Severity, Signal, SignalCategory, SourceSystem
from hub_engine.signal_fusion import (
    FusionConfig,
    composite_score,
    fuse_entity,
    fuse_signals,
    merge_risk_reasons,
    normalize_confidence,
)


def signal(category, severity=Severity.MEDIUM, source=SourceSystem.CRM, confidence=None, evidence="e"):
    return Signal(
        category=category,
        label=category.value,
        evidence=evidence,
        severity=severity,
        source_system=source,
        confidence=confidence,
    )


class TestNormalizeConfidence:
    @pytest.mark.parametrize("confidence, expected", [("high", 85), ("Medium", 65), ("low", 45)])
    def test_call_intelligence_vocabulary(self, confidence, expected):
        s = signal(SignalCategory.OBJECTION, source=SourceSystem.CALL_INTELLIGENCE, confidence=confidence)
        assert normalize_confidence(s) == expected

    def test_usage_vocabulary(self):
        s = signal(SignalCategory.EXPANSION, source=SourceSystem.USAGE, confidence="strong")
        assert normalize_confidence(s) == 85

    def test_numeric_is_clamped(self):
        assert normalize_confidence(signal(SignalCategory.NEW_BUSINESS, confidence=91)) == 91
        assert normalize_confidence(signal(SignalCategory.NEW_BUSINESS, confidence=140)) == 100

    @pytest.mark.parametrize("severity, expected", [(Severity.CRITICAL, 90), (Severity.HIGH, 75), (Severity.MEDIUM, 60)])
    def test_rule_signals_use_severity(self, severity, expected):
        assert normalize_confidence(signal(SignalCategory.STALLING, severity)) == expected

    def test_unknown_word_falls_back_to_severity(self):
        s = signal(SignalCategory.OBJECTION, Severity.HIGH, SourceSystem.CALL_INTELLIGENCE, confidence="sure")
        assert normalize_confidence(s) == 75


class TestMerge:
    def test_same_category_folds(self):
        crm = signal(SignalCategory.STALLING, Severity.MEDIUM, evidence="40 days in current stage")
        call = signal(
            SignalCategory.STALLING, Severity.HIGH, SourceSystem.CALL_INTELLIGENCE,
            confidence="high", evidence="Call momentum stalling",
        )
        merged = merge_risk_reasons([crm], [call])
        assert len(merged) == 1
        assert merged[0].severity == Severity.HIGH
        assert merged[0].evidence == "40 days in current stage | Call momentum stalling"
        assert merged[0].source_system == SourceSystem.CRM
        assert merged[0].confidence == 85

    def test_duplicate_evidence_not_repeated(self):
        a = signal(SignalCategory.OBJECTION, evidence="Pricing pushback")
        merged = merge_risk_reasons([a], [a])
        assert merged[0].evidence == "Pricing pushback"

    def test_distinct_categories_kept_in_order(self):
        merged = merge_risk_reasons(
            [signal(SignalCategory.NO_EXEC_SPONSOR)],
            [signal(SignalCategory.OBJECTION), signal(SignalCategory.STALLING)],
        )
        assert [s.category for s in merged] == [
            SignalCategory.NO_EXEC_SPONSOR, SignalCategory.OBJECTION, SignalCategory.STALLING,
        ]

    def test_categories_unique_after_fusion(self):
        sources = [
            [signal(SignalCategory.STALLING), signal(SignalCategory.OBJECTION)],
            [signal(SignalCategory.OBJECTION, Severity.HIGH), signal(SignalCategory.STALLING)],
        ]
        fused = fuse_entity("006a", sources)
        assert len({s.category for s in fused.signals}) == len(fused.signals) == 2
        assert fused.raw_signal_count == 4


class TestCompositeScore:
    def test_single_signal(self):
        s = signal(SignalCategory.OBJECTION, source=SourceSystem.CALL_INTELLIGENCE, confidence="high")
        assert fuse_entity("a", [[s]]).composite_score == 85

    def test_corroboration_bonus(self):
        strongest = signal(SignalCategory.OBJECTION, source=SourceSystem.CALL_INTELLIGENCE, confidence="high")
        others = [signal(SignalCategory.STALLING), signal(SignalCategory.NO_EXEC_SPONSOR)]
        assert fuse_entity("a", [[strongest], others]).composite_score == 91

    def test_bonus_is_capped(self):
        strongest = signal(SignalCategory.OBJECTION, source=SourceSystem.CALL_INTELLIGENCE, confidence="high")
        others = [signal(c) for c in (
            SignalCategory.STALLING, SignalCategory.NO_EXEC_SPONSOR,
            SignalCategory.FEW_STAKEHOLDERS, SignalCategory.MISSING_BUSINESS_IMPACT,
        )]
        assert fuse_entity("a", [[strongest], others]).composite_score == 94

    def test_score_capped_at_100(self):
        signals = [signal(SignalCategory.NEW_BUSINESS, confidence=99), signal(SignalCategory.EXPANSION)]
        assert composite_score(signals, 5, FusionConfig()) == 100

    def test_custom_config(self):
        signals = [signal(SignalCategory.STALLING), signal(SignalCategory.OBJECTION)]
        config = FusionConfig(corroboration_bonus=5, corroboration_cap=20)
        assert composite_score(signals, 2, config) == 65

    def test_no_signals(self):
        fused = fuse_entity("a", [[], []])
        assert fused.composite_score == 0
        assert fused.top_signal is None

    def test_signals_ranked_by_confidence(self):
        fused = fuse_entity("a", [[
            signal(SignalCategory.FEW_STAKEHOLDERS, Severity.MEDIUM),
            signal(SignalCategory.STALLING, Severity.CRITICAL),
        ]])
        assert fused.top_signal.category == SignalCategory.STALLING


class TestFuseSignals:
    def test_entities_ranked_descending(self):
        ranked = fuse_signals({
            "low": [[signal(SignalCategory.OBJECTION)]],
            "high": [[signal(SignalCategory.STALLING, Severity.CRITICAL)]],
            "mid": [[signal(SignalCategory.NO_EXEC_SPONSOR, Severity.HIGH)]],
        })
        assert [f.entity_id for f in ranked] == ["high", "mid", "low"]

    def test_ties_keep_input_order(self):
        ranked = fuse_signals({
            "first": [[signal(SignalCategory.OBJECTION)]],
            "second": [[signal(SignalCategory.STALLING)]],
        })
        assert [f.entity_id for f in ranked] == ["first", "second"]

    def test_empty(self):
        assert fuse_signals({}) == []
