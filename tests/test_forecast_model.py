"""Tests for the cash-flow forecaster and runway simulation"""

import pytest
from datetime import date

from src.constants import TrendDirection
from src.ml.forecast_model import burn_trend, fit_holt_winters, linear_regression
from src.ml.registry import ModelRegistry
from src.models.forecast import MonthlyForecast
from src.utils.errors import ModelNotTrainedError

AS_OF = date(2025, 12, 1)


def _month_starts():
    """First of every month, January 2024 through December 2025"""
    return [date(2024 + (i // 12), i % 12 + 1, 1) for i in range(24)]


@pytest.fixture
def steady_burn(ledger, add_txn):
    """$20K in, $30K out every month for two years"""
    for day in _month_starts():
        add_txn(day, 20000.0, vendor="STRIPE PAYOUT", category_id="REV-ARR")
        add_txn(day, -30000.0, vendor="Gusto", category_id="OPEX-PAYROLL")
    return ledger


@pytest.fixture
def trained(registry, steady_burn, org_id):
    model = registry.forecast(org_id)
    outcome = model.train(months_back=23, as_of=AS_OF)
    assert outcome.success, outcome.message
    return model


def test_linear_regression():
    trend = linear_regression([1, 3, 5, 7])
    assert trend.slope == pytest.approx(2.0)
    assert trend.intercept == pytest.approx(1.0)
    assert trend.r2 == pytest.approx(1.0)

    flat = linear_regression([4, 4, 4])
    assert flat.r2 == 0.0
    assert linear_regression([9]).intercept == 9


def test_holt_winters_on_flat_series():
    state = fit_holt_winters([-10000.0] * 24)
    assert state.level == pytest.approx(-10000.0)
    assert state.trend == pytest.approx(0.0)
    assert all(s == pytest.approx(1.0) for s in state.seasonals)


def test_untrained_forecast_raises(registry, org_id):
    model = registry.forecast(org_id)
    with pytest.raises(ModelNotTrainedError):
        model.forecast(3)
    with pytest.raises(ModelNotTrainedError):
        model.runway_probabilities(50000)


def test_not_enough_transactions(registry, add_txn, org_id):
    for day in _month_starts()[:10]:
        add_txn(day, -1000.0)
    outcome = registry.forecast(org_id).train(months_back=23, as_of=AS_OF)
    assert outcome.success is False
    assert outcome.example_count == 10


def test_zero_month_window(registry, steady_burn, org_id):
    """months_back=0 trains on the as_of day alone, not the 24 month default"""
    outcome = registry.forecast(org_id).train(months_back=0, as_of=AS_OF)
    assert outcome.success is False
    assert outcome.example_count == 2


def test_steady_burn_forecast(trained):
    result = trained.forecast(12)

    assert len(result.forecasts) == 12
    assert result.forecasts[0].month == "2026-01"
    assert result.forecasts[-1].month == "2026-12"
    for point in result.forecasts:
        assert point.predicted == pytest.approx(-10000.0, abs=0.01)
        assert point.lower <= point.predicted <= point.upper
        assert point.method == "holt_winters"
    # 24 months, flat series: 0.3 + 0 + 0.2 + 0.2
    assert result.model_confidence == pytest.approx(0.7)
    assert result.forecasts[1].confidence == pytest.approx(0.7 * 0.97)
    assert result.trend_direction == TrendDirection.STABLE


def test_runway_crosses_zero_mid_month(trained):
    """$55K at -$10K a month runs out halfway through month six"""
    runway = trained.runway_probabilities(55000)

    assert runway.horizon_months == 18
    assert runway.simulations == 1000
    assert runway.p10_months == pytest.approx(5.5)
    assert runway.p50_months == pytest.approx(5.5)
    assert runway.p90_months == pytest.approx(5.5)
    assert runway.survival_probabilities == {
        "3_months": 1.0, "6_months": 0.0, "12_months": 0.0, "18_months": 0.0,
    }


def test_runway_edges(trained):
    broke = trained.runway_probabilities(0)
    assert broke.p50_months == 0
    assert all(p == 0.0 for p in broke.survival_probabilities.values())

    rich = trained.runway_probabilities(1_000_000_000)
    assert rich.p50_months == 18
    assert all(p == 1.0 for p in rich.survival_probabilities.values())

    short = trained.runway_probabilities(55000, horizon_months=6)
    assert set(short.survival_probabilities) == {"3_months", "6_months"}


def test_runway_is_seeded(ledger, store, steady_burn, org_id):
    """Same seed, same distribution"""
    config = {"forecast_model": {"runway_seed": 7, "runway_simulations": 200}}
    model = ModelRegistry(ledger, store, config).forecast(org_id)
    model.train(months_back=23, as_of=AS_OF)

    first = model.runway_probabilities(55000)
    second = model.runway_probabilities(55000)
    assert first == second
    assert first.simulations == 200


def test_forecasted_metrics_and_deviation(trained):
    metrics = trained.get_forecasted_metrics(12)
    assert metrics.projected_burn_rate == 10000
    # cumulative burn passes three months of inflows in month seven
    assert metrics.projected_runway == 7

    assert trained.detect_forecast_deviation(20000, 30000).deviation_type == "on_track"
    off = trained.detect_forecast_deviation(20000, 40000)
    assert off.deviation_type == "significant_deviation"
    assert off.net_deviation == -10000
    assert off.percentage_deviation == -100


def test_growing_inflows_trend_up(registry, add_txn, org_id):
    for i, day in enumerate(_month_starts()):
        add_txn(day, 10000.0 + 2000.0 * i, vendor="STRIPE PAYOUT")
        add_txn(day, -30000.0, vendor="Gusto")
    model = registry.forecast(org_id)
    model.train(months_back=23, as_of=AS_OF)

    assert model.forecast(6).trend_direction == TrendDirection.INCREASING
    assert model.get_stats()["trend_slope"] == pytest.approx(2000.0)


def test_burn_trend():
    def points(values):
        return [MonthlyForecast(month=f"2026-{i + 1:02d}", predicted=v, lower=v, upper=v, confidence=0.5)
                for i, v in enumerate(values)]

    assert burn_trend(points([100, 100, 200, 200])) == TrendDirection.INCREASING
    assert burn_trend(points([200, 200, 100, 100])) == TrendDirection.DECREASING
    assert burn_trend(points([100, 100, 100, 100])) == TrendDirection.STABLE
    assert burn_trend(points([100, 900])) == TrendDirection.STABLE


def test_reloaded_forecast_matches(ledger, store, steady_burn, org_id):
    model = ModelRegistry(ledger, store).forecast(org_id)
    model.train(months_back=23, as_of=AS_OF)

    reloaded = ModelRegistry(ledger, store).forecast(org_id)
    assert reloaded.version == model.version
    assert reloaded.forecast(6) == model.forecast(6)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
