"""Tests for the insight engine and the sanitized summary prompt"""

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from unittest.mock import patch

import pytest

from src.constants import INSIGHT_SEVERITY_RANK, TrendDirection
from src.ml.benchmarks import BenchmarkCatalogue
from src.ml.coa_mapper import COAMapper
from src.models.insight import (
    AnalysisResults,
    ForecastAnalysis,
    ProprietaryAnalysisResult,
    RunwayInterval,
)
from src.orchestrator.insight_engine import InsightEngine, run_settled
from src.orchestrator.prompt_builder import build_llm_summary_prompt, generic_risk, runway_status
from src.utils.config_loader import get_section, load_config
from src.utils.errors import UnsanitizedPromptError

TRAIN_END = date(2025, 5, 31)
AS_OF = date(2025, 6, 30)


@pytest.fixture
def engine(ledger, registry):
    benchmarks = BenchmarkCatalogue(get_section(load_config(), "benchmarks"))
    return InsightEngine(ledger, registry, COAMapper(ledger, registry), benchmarks)


@pytest.fixture
def trained_org(registry, aws_spike_ledger, org_id):
    """AWS spike organization with anomaly and forecast models trained"""
    assert registry.anomaly(org_id).train(as_of=TRAIN_END).success
    assert registry.forecast(org_id).train(months_back=6, as_of=AS_OF).success
    return org_id


def test_run_settled_isolates_failures():
    def boom():
        raise ValueError("nope")

    with ThreadPoolExecutor(max_workers=2) as executor:
        successes, failures = run_settled(executor, {"ok": lambda: 1, "bad": boom, "also_ok": lambda: 2})

    assert successes == {"ok": 1, "also_ok": 2}
    assert list(failures) == ["bad"]
    assert isinstance(failures["bad"], ValueError)


def test_untrained_forecast_is_dropped(engine, registry, aws_spike_ledger, org_id):
    """One failing sub-analysis never sinks the others"""
    registry.anomaly(org_id).train(as_of=TRAIN_END)

    analysis = engine.run_full_analysis(org_id, current_cash=250000, as_of=AS_OF)

    assert list(analysis.failed_subtasks) == ["forecast"]
    assert "not trained" in analysis.failed_subtasks["forecast"]
    assert analysis.results.forecast is None
    assert analysis.results.anomalies.anomalies_detected > 0
    assert analysis.results.classification is not None
    assert analysis.results.vendor_analysis is not None
    assert analysis.results.benchmarks is not None
    assert len(analysis.models_used) == 4

    mean = sum(m.confidence for m in analysis.models_used) / 4
    assert analysis.overall_confidence == pytest.approx(mean)


def test_full_analysis(engine, trained_org, ledger):
    analysis = engine.run_full_analysis(trained_org, current_cash=250000, as_of=AS_OF)

    assert analysis.failed_subtasks == {}
    assert {m.model_name for m in analysis.models_used} == {
        "AccountClassifier", "VendorMatcher", "AnomalyModel", "ForecastModel", "BenchmarkCatalogue",
    }
    versions = {m.model_name: m.version for m in analysis.models_used}
    assert versions["AccountClassifier"] == "untrained"
    assert versions["BenchmarkCatalogue"] == "config"

    anomalies = analysis.results.anomalies
    assert sum(anomalies.by_severity.values()) == anomalies.anomalies_detected
    assert any(a.type == "category_spike" for a in anomalies.top_anomalies)

    forecast = analysis.results.forecast
    assert len(forecast.monthly_forecasts) == 12
    assert forecast.runway_confidence_interval.p10 <= forecast.runway_confidence_interval.p90

    classification = analysis.results.classification
    assert classification.account_distribution["COGS-HOST"] >= 1
    assert classification.transactions_classified == sum(classification.account_distribution.values())

    assert analysis.results.benchmarks.business_type == "saas"


def test_vendor_analysis_flags_recurring(engine, trained_org, ledger):
    """Vendors billing in three or more months are recurring and get annotated"""
    analysis = engine.run_full_analysis(trained_org, current_cash=250000, as_of=AS_OF)

    vendors = analysis.results.vendor_analysis
    assert vendors.recurring_vendors == 2
    assert vendors.top_vendors_by_spend[0].normalized_name == "AWS"
    assert vendors.top_vendors_by_spend[0].category == "COGS-HOST"
    assert vendors.matches_to_known == 0
    assert vendors.new_vendors == 2

    aws = [t for t in ledger.transactions.values() if t.vendor == "AWS" and t.date >= date(2025, 1, 1)]
    assert aws and all(t.is_recurring for t in aws)
    revenue = [t for t in ledger.transactions.values() if t.vendor == "STRIPE PAYOUT"]
    assert not any(t.is_recurring for t in revenue)


def test_insights_are_ranked(engine, trained_org):
    report = engine.get_proprietary_insights(trained_org, current_cash=250000, as_of=AS_OF)

    assert 0 < len(report.insights) <= 10
    keys = [(INSIGHT_SEVERITY_RANK[i.severity], i.confidence) for i in report.insights]
    assert keys == sorted(keys, reverse=True)
    assert any(i.source == "AnomalyModel" for i in report.insights)


def test_low_runway_produces_warning(engine, trained_org):
    report = engine.get_proprietary_insights(trained_org, current_cash=0, as_of=AS_OF)

    warnings = [i for i in report.insights if i.type == "warning"]
    assert len(warnings) == 1
    assert warnings[0].severity == "high"
    assert warnings[0].source == "ForecastModel"


def test_summary_prompt_has_no_numbers(engine, trained_org):
    analysis = engine.summarize(trained_org, audience="investor", current_cash=0, as_of=AS_OF)
    prompt = analysis.natural_language_summary

    assert re.search(r"[0-9$€£¥%]", prompt) is None
    assert "Target audience: investor" in prompt
    assert "RUNWAY STATUS: CRITICAL" in prompt
    assert "SPENDING PATTERNS" in prompt
    assert "category spike" in prompt


def test_summary_translation_uses_llm(engine, trained_org):
    with patch("src.orchestrator.insight_engine.translate_summary", return_value="Spending is up.") as translate:
        analysis = engine.summarize(trained_org, translate=True, as_of=AS_OF)

    assert analysis.natural_language_summary == "Spending is up."
    sent = translate.call_args[0][0]
    assert re.search(r"[0-9]", sent) is None


def test_unknown_audience(engine, trained_org):
    with pytest.raises(ValueError):
        engine.summarize(trained_org, audience="regulator", as_of=AS_OF)


def test_prompt_builder_generalizes_risks():
    analysis = ProprietaryAnalysisResult(
        organization_id="org_acme",
        results=AnalysisResults(forecast=ForecastAnalysis(
            runway_months=9,
            runway_confidence_interval=RunwayInterval(p10=7.5, p50=9.1, p90=11.0),
            monthly_forecasts=[],
            burn_rate_trend=TrendDirection.INCREASING,
            key_risks=[
                "Less than 90% probability of 6-month survival",
                "Burn rate trend is increasing",
            ],
        )),
        overall_confidence=0.7,
        models_used=[],
    )

    prompt = build_llm_summary_prompt(analysis)

    assert "RUNWAY STATUS: CONCERNING" in prompt
    assert "Burn rate trend: increasing" in prompt
    assert "survival probability below target; burn rate trending upward" in prompt
    assert "SPENDING PATTERNS" not in prompt


def test_prompt_helpers():
    assert runway_status(3) == "critical"
    assert runway_status(8) == "concerning"
    assert runway_status(18) == "healthy"
    assert generic_risk("Critical runway: less than 6 months at median forecast") == "runway concerns identified"
    assert generic_risk("Something odd") == "risk identified"


def test_prompt_guard_rejects_numbers():
    from src.tools.llm_client import assert_sanitized

    assert_sanitized("Runway is healthy")
    with pytest.raises(UnsanitizedPromptError):
        assert_sanitized("Runway is 9 months")
    with pytest.raises(UnsanitizedPromptError):
        assert_sanitized("Burn is $ high")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
