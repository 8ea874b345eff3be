"""Per-organization cash-flow forecaster.

Monthly inflow/outflow series, combined from three estimators (Holt-Winters,
linear trend with seasonal indices, damped moving average) weighted by how
much history backs each one. Runway probabilities come from a seeded Monte
Carlo over the forecast intervals.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from src.constants import (
    ModelName,
    TrendDirection,
    DEFAULT_FORECAST_TRAIN_MONTHS,
    DEFAULT_FORECAST_HORIZON,
    MIN_FORECAST_TRANSACTIONS,
    MIN_FORECAST_MONTHS,
    RUNWAY_SIMULATIONS,
    RUNWAY_SIMULATION_SEED,
    SURVIVAL_HORIZONS,
)
from src.ml.base import OrganizationModel
from src.ml.versioning import next_version
from src.models.forecast import (
    ForecastDeviation,
    ForecastedMetrics,
    ForecastResult,
    HoltWintersState,
    MonthlyCashFlow,
    MonthlyForecast,
    RunwayProbabilities,
    SeasonalIndex,
    TrainedForecastModel,
    TrendComponent,
)
from src.models.training import TrainOutcome
from src.utils.errors import ModelNotTrainedError
from src.utils.logging import get_logger

logger = get_logger(__name__)

SEASON_LENGTH = 12
SEASONAL_BOUNDS = (0.1, 10.0)
TREND_SLOPE_THRESHOLD = 1000
DEFAULT_HW_PARAMS = (0.3, 0.1, 0.1)

ALPHA_GRID = (0.1, 0.3, 0.5, 0.7, 0.9)
BETA_GRID = (0.05, 0.15, 0.25)
GAMMA_GRID = (0.05, 0.15, 0.25)


def _mean(values) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def _std(values) -> float:
    return float(np.std(values)) if len(values) >= 2 else 0.0


def linear_regression(values: List[float]) -> TrendComponent:
    """OLS over the index with r² clamped to [0, 1]."""
    n = len(values)
    if n < 2:
        return TrendComponent(slope=0.0, intercept=values[0] if values else 0.0, r2=0.0)

    y = np.asarray(values, dtype=float)
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    predicted = intercept + slope * x
    ss_total = float(((y - y.mean()) ** 2).sum())
    ss_residual = float(((y - predicted) ** 2).sum())
    r2 = 1 - ss_residual / ss_total if ss_total > 0 else 0.0
    return TrendComponent(slope=float(slope), intercept=float(intercept), r2=min(1.0, max(0.0, r2)))


def _bound(value: float) -> float:
    return max(SEASONAL_BOUNDS[0], min(SEASONAL_BOUNDS[1], value))


def _normalize(seasonals: List[float]) -> None:
    average = sum(seasonals) / len(seasonals)
    if average > 0:
        for i in range(len(seasonals)):
            seasonals[i] /= average


def _holt_winters_step(observed: float, index: int, level: float, trend: float, seasonals: List[float],
                       alpha: float, beta: float, gamma: float) -> Tuple[float, float]:
    old_level = level
    level = alpha * (observed / (seasonals[index] or 1)) + (1 - alpha) * (level + trend)
    trend = beta * (level - old_level) + (1 - beta) * trend
    seasonals[index] = _bound(gamma * (observed / (level or 1)) + (1 - gamma) * seasonals[index])
    return level, trend


def evaluate_holt_winters(data: List[float], alpha: float, beta: float, gamma: float, period: int) -> float:
    """Mean absolute one-step-ahead error; inf when the series is too short."""
    if len(data) < period + 2:
        return float("inf")

    level = _mean(data[:period])
    trend = (_mean(data[period:period * 2]) - level) / period
    seasonals = [_bound(data[i] / (level or 1)) for i in range(period)]
    _normalize(seasonals)

    errors = []
    for i in range(period, len(data)):
        index = i % period
        errors.append(abs(data[i] - (level + trend) * seasonals[index]))
        level, trend = _holt_winters_step(data[i], index, level, trend, seasonals, alpha, beta, gamma)
        if i % period == 0:
            _normalize(seasonals)
    return sum(errors) / len(errors) if errors else float("inf")


def optimize_holt_winters(data: List[float], period: int = SEASON_LENGTH) -> Tuple[float, float, float]:
    """Grid search for (alpha, beta, gamma) minimizing one-step error."""
    best, best_error = DEFAULT_HW_PARAMS, float("inf")
    for alpha in ALPHA_GRID:
        for beta in BETA_GRID:
            for gamma in GAMMA_GRID:
                error = evaluate_holt_winters(data, alpha, beta, gamma, period)
                if error < best_error:
                    best, best_error = (alpha, beta, gamma), error
    return best


def fit_holt_winters(series: List[float]) -> HoltWintersState:
    """Optimize parameters, then run the smoother over the whole series."""
    period = min(SEASON_LENGTH, len(series))
    alpha, beta, gamma = optimize_holt_winters(series, period)

    level = _mean(series[:period])
    trend = (_mean(series[period:period * 2]) - level) / period if len(series) > period else 0.0
    seasonals = [1.0] * SEASON_LENGTH
    for i in range(min(SEASON_LENGTH, len(series))):
        seasonals[i] = _bound(series[i] / level) if level != 0 else 1.0
    _normalize(seasonals)

    for i in range(period, len(series)):
        level, trend = _holt_winters_step(
            series[i], i % SEASON_LENGTH, level, trend, seasonals, alpha, beta, gamma
        )
        if i % SEASON_LENGTH == 0:
            _normalize(seasonals)

    return HoltWintersState(alpha=alpha, beta=beta, gamma=gamma, level=level, trend=trend, seasonals=seasonals)


def _trend_direction(slope: float) -> TrendDirection:
    if slope > TREND_SLOPE_THRESHOLD:
        return TrendDirection.INCREASING
    if slope < -TREND_SLOPE_THRESHOLD:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def burn_trend(forecasts: List[MonthlyForecast]) -> TrendDirection:
    """
    Compare the mean forecast of the second half of the window with the
    first half: >10% higher is increasing, >10% lower is decreasing.
    """
    if len(forecasts) < 3:
        return TrendDirection.STABLE
    half = len(forecasts) // 2
    first = _mean([f.predicted for f in forecasts[:half]])
    second = _mean([f.predicted for f in forecasts[half:]])
    if second > first * 1.1:
        return TrendDirection.INCREASING
    if second < first * 0.9:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


class ForecastModel(OrganizationModel):
    """Monthly cash-flow forecaster for one organization"""

    model_name = ModelName.FORECAST_MODEL
    payload_type = TrainedForecastModel

    model: Optional[TrainedForecastModel]

    def train(self, months_back: Optional[int] = None, as_of: Optional[date] = None) -> TrainOutcome:
        """
        Fit every estimator on the last months_back months.

        Args:
            months_back: Training window in months (default 24)
            as_of: Window end date (default today)

        Returns:
            TrainOutcome; too few transactions or months leaves the model untouched
        """
        if months_back is None:
            months_back = self.config.get("train_months", DEFAULT_FORECAST_TRAIN_MONTHS)
        as_of = as_of or date.today()
        cutoff = (pd.Timestamp(as_of) - pd.DateOffset(months=months_back)).date()
        min_transactions = self.config.get("min_training_transactions", MIN_FORECAST_TRANSACTIONS)

        frame = self.ledger.get_transactions(self.organization_id, since=cutoff, until=as_of)
        if len(frame) < min_transactions:
            logger.warning(
                "Not enough transactions to train forecast model",
                organization_id=self.organization_id,
                transaction_count=len(frame),
                required=min_transactions,
            )
            return TrainOutcome(
                success=False,
                example_count=len(frame),
                message=f"Not enough transactions ({len(frame)}, need {min_transactions}+)",
            )

        months = pd.period_range(pd.Timestamp(cutoff), pd.Timestamp(as_of), freq='M')
        period_key = frame['date'].dt.to_period('M')
        inflows = frame['amount'].clip(lower=0).groupby(period_key).sum().reindex(months, fill_value=0.0)
        outflows = (-frame['amount']).clip(lower=0).groupby(period_key).sum().reindex(months, fill_value=0.0)

        if len(months) < MIN_FORECAST_MONTHS:
            return TrainOutcome(
                success=False,
                example_count=len(frame),
                message=f"Not enough months of data ({len(months)}, need {MIN_FORECAST_MONTHS}+)",
            )

        inflow_series = inflows.astype(float).tolist()
        outflow_series = outflows.astype(float).tolist()
        net_series = [i - o for i, o in zip(inflow_series, outflow_series)]
        avg_inflows, avg_outflows = _mean(inflow_series), _mean(outflow_series)

        seasonal_indices = []
        for month_number in range(1, 13):
            positions = [i for i, p in enumerate(months) if p.month == month_number]
            count = len(positions) or 1
            month_inflow = sum(inflow_series[i] for i in positions) / count
            month_outflow = sum(outflow_series[i] for i in positions) / count
            seasonal_indices.append(SeasonalIndex(
                month=month_number,
                inflow_index=month_inflow / avg_inflows if avg_inflows > 0 else 1.0,
                outflow_index=month_outflow / avg_outflows if avg_outflows > 0 else 1.0,
            ))

        history = [
            MonthlyCashFlow(month=p.strftime('%Y-%m'), inflows=i, outflows=o, net_cash_flow=i - o)
            for p, i, o in zip(months, inflow_series, outflow_series)
        ]

        self.model = TrainedForecastModel(
            version=next_version(),
            trained_at=datetime.now(),
            organization_id=self.organization_id,
            data_months=len(months),
            last_month=months[-1].strftime('%Y-%m'),
            avg_inflows=avg_inflows,
            avg_outflows=avg_outflows,
            avg_net_cash_flow=_mean(net_series),
            inflow_std_dev=_std(inflow_series),
            outflow_std_dev=_std(outflow_series),
            net_cash_flow_std_dev=_std(net_series),
            inflow_trend=linear_regression(inflow_series),
            outflow_trend=linear_regression(outflow_series),
            net_cash_flow_trend=linear_regression(net_series),
            seasonal_indices=seasonal_indices,
            holt_winters=fit_holt_winters(net_series),
            moving_averages={
                "ma3": _mean(net_series[-3:]),
                "ma6": _mean(net_series[-6:]),
                "ma12": _mean(net_series[-12:]),
            },
            recent_months=history[-12:],
        )
        self._persist()

        direction = _trend_direction(self.model.net_cash_flow_trend.slope)
        logger.info(
            "Trained forecast model",
            organization_id=self.organization_id,
            data_months=len(months),
            trend=direction.value,
            avg_net_cash_flow=round(self.model.avg_net_cash_flow),
        )
        return TrainOutcome(
            success=True,
            example_count=len(frame),
            message="Forecast model trained",
            details={"data_months": len(months), "trend_direction": direction.value},
        )

    def _require_model(self) -> TrainedForecastModel:
        if self.model is None:
            raise ModelNotTrainedError(f"Forecast model not trained for {self.organization_id}")
        return self.model

    def forecast(self, horizon_months: int = DEFAULT_FORECAST_HORIZON) -> ForecastResult:
        """
        Project monthly net cash flow for the months after the training window.

        Args:
            horizon_months: Number of months to project

        Returns:
            ForecastResult with 95% intervals widening 10% per month

        Raises:
            ModelNotTrainedError: If no model has been trained
        """
        m = self._require_model()
        hw = m.holt_winters
        has_seasonal_data = m.data_months >= SEASON_LENGTH
        has_stable_data = m.net_cash_flow_std_dev < abs(m.avg_net_cash_flow) * 2
        use_components = m.inflow_trend.r2 > 0.5 and m.outflow_trend.r2 > 0.5

        model_confidence = min(1.0, (
            0.3 * min(1.0, m.data_months / 24)
            + 0.3 * m.net_cash_flow_trend.r2
            + 0.2 * (1 if has_stable_data else 0.5)
            + 0.2 * (1 if has_seasonal_data else 0.5)
        ))

        start = pd.Period(m.last_month, freq='M')
        forecasts = []
        for i in range(horizon_months):
            month = start + (i + 1)
            seasonal = m.seasonal_indices[month.month - 1]
            step = m.data_months + i

            hw_value = (hw.level + hw.trend * (i + 1)) * hw.seasonals[month.month - 1]
            trend_value = (m.net_cash_flow_trend.intercept + m.net_cash_flow_trend.slope * step) \
                * (seasonal.inflow_index + seasonal.outflow_index) / 2
            damp = 0.95 ** i
            ma_value = m.moving_averages["ma3"] * damp + m.avg_net_cash_flow * (1 - damp)

            if has_seasonal_data and hw.alpha > 0:
                net = hw_value * 0.5 + trend_value * 0.3 + ma_value * 0.2
                method = "holt_winters"
            elif m.net_cash_flow_trend.r2 > 0.5:
                net = trend_value * 0.6 + ma_value * 0.4
                method = "trend_seasonal"
            else:
                net = ma_value * 0.7 + m.avg_net_cash_flow * 0.3
                method = "moving_average"

            inflows = max(0.0, (m.inflow_trend.intercept + m.inflow_trend.slope * step) * seasonal.inflow_index)
            outflows = max(0.0, (m.outflow_trend.intercept + m.outflow_trend.slope * step) * seasonal.outflow_index)
            if use_components:
                net = inflows - outflows

            uncertainty = m.net_cash_flow_std_dev * (1 + i * 0.1) * 1.96
            forecasts.append(MonthlyForecast(
                month=month.strftime('%Y-%m'),
                predicted=round(net, 2),
                lower=round(net - uncertainty, 2),
                upper=round(net + uncertainty, 2),
                confidence=max(0.0, model_confidence * (1 - 0.03 * i)),
                inflows=round(inflows, 2),
                outflows=round(outflows, 2),
                method=method,
            ))

        return ForecastResult(
            forecasts=forecasts,
            model_confidence=model_confidence,
            historical_accuracy=0.7 + 0.2 * m.net_cash_flow_trend.r2,
            trend_direction=_trend_direction(m.net_cash_flow_trend.slope),
            seasonal_strength=min(1.0, _std([s.inflow_index for s in m.seasonal_indices])),
        )

    def runway_probabilities(self, current_cash: float,
                             horizon_months: Optional[int] = None) -> RunwayProbabilities:
        """
        Distribution of months until cash runs out.

        Each simulation draws every month's net cash flow from a normal with
        the forecast's mean and a sigma recovered from its 95% interval, then
        walks the cash balance forward. Months-to-zero interpolate within the
        month the balance crosses zero and are capped at the horizon.

        Args:
            current_cash: Cash on hand today
            horizon_months: Simulation horizon (default: longest survival horizon)

        Returns:
            RunwayProbabilities

        Raises:
            ModelNotTrainedError: If no model has been trained
        """
        horizon = horizon_months or max(max(SURVIVAL_HORIZONS), DEFAULT_FORECAST_HORIZON)
        simulations = self.config.get("runway_simulations", RUNWAY_SIMULATIONS)
        result = self.forecast(horizon)

        if current_cash <= 0:
            months = np.zeros(simulations)
            ever_depleted = np.ones(simulations, dtype=bool)
        else:
            predicted = np.array([f.predicted for f in result.forecasts])
            sigma = np.array([max(0.0, (f.upper - f.predicted) / 1.96) for f in result.forecasts])
            rng = np.random.default_rng(self.config.get("runway_seed", RUNWAY_SIMULATION_SEED))
            draws = rng.normal(predicted, sigma, size=(simulations, horizon))
            cash = current_cash + np.cumsum(draws, axis=1)

            depleted = cash <= 0
            ever_depleted = depleted.any(axis=1)
            rows = np.arange(simulations)
            index = np.where(ever_depleted, depleted.argmax(axis=1), horizon - 1)
            at_zero = cash[rows, index]
            before = np.where(index > 0, cash[rows, np.maximum(index - 1, 0)], current_cash)
            drop = before - at_zero
            fraction = np.where(drop > 0, before / np.where(drop > 0, drop, 1), 1.0)
            months = np.where(ever_depleted, index + fraction, float(horizon))

        p10, p50, p90 = np.percentile(months, [10, 50, 90])
        survival = {
            f"{h}_months": float(np.mean(~ever_depleted | (months > h)))
            for h in SURVIVAL_HORIZONS if h <= horizon
        }
        return RunwayProbabilities(
            p10_months=float(p10),
            p50_months=float(p50),
            p90_months=float(p90),
            survival_probabilities=survival,
            horizon_months=horizon,
            simulations=simulations,
        )

    def get_forecasted_metrics(self, months: int = DEFAULT_FORECAST_HORIZON) -> ForecastedMetrics:
        """Burn rate, rough runway, direction and seasonal extremes from a forecast."""
        m = self._require_model()
        result = self.forecast(months)

        burns = [abs(f.predicted) for f in result.forecasts if f.predicted < 0]
        runway = months
        cumulative = 0.0
        for i, f in enumerate(result.forecasts):
            cumulative += f.predicted
            if cumulative < -m.avg_inflows * 3:
                runway = i + 1
                break

        half = months // 2
        first = _mean([f.predicted for f in result.forecasts[:half]])
        second = _mean([f.predicted for f in result.forecasts[half:]])
        if second > first * 1.1:
            cash_flow_trend = "improving"
        elif second < first * 0.9:
            cash_flow_trend = "declining"
        else:
            cash_flow_trend = "stable"

        net_indices = [(s.inflow_index - s.outflow_index, s.month) for s in m.seasonal_indices]
        peak = max(net_indices, key=lambda pair: pair[0])
        trough = min(net_indices, key=lambda pair: pair[0])
        return ForecastedMetrics(
            projected_burn_rate=round(_mean(burns)),
            projected_runway=runway,
            cash_flow_trend=cash_flow_trend,
            seasonal_peak_month=peak[1] if peak[0] > 0 else 1,
            seasonal_trough_month=trough[1],
        )

    def detect_forecast_deviation(self, actual_inflows: float, actual_outflows: float) -> ForecastDeviation:
        """Compare one month of actuals with the next-month forecast."""
        expected = self.forecast(1).forecasts[0]
        actual_net = actual_inflows - actual_outflows
        net_deviation = actual_net - expected.predicted
        percentage = net_deviation / abs(expected.predicted or 1) * 100

        if abs(percentage) < 10:
            deviation_type = "on_track"
        elif abs(percentage) > 50:
            deviation_type = "significant_deviation"
        elif net_deviation > 0:
            deviation_type = "above_forecast"
        else:
            deviation_type = "below_forecast"

        return ForecastDeviation(
            deviation_type=deviation_type,
            inflow_deviation=round(actual_inflows - expected.inflows),
            outflow_deviation=round(actual_outflows - expected.outflows),
            net_deviation=round(net_deviation),
            percentage_deviation=round(percentage),
        )

    def get_stats(self) -> Dict[str, Any]:
        if self.model is None:
            return {"is_trained": False, "version": None, "trained_at": None, "data_months": 0}
        m = self.model
        return {
            "is_trained": True,
            "version": m.version,
            "trained_at": m.trained_at.isoformat(),
            "data_months": m.data_months,
            "avg_net_cash_flow": m.avg_net_cash_flow,
            "trend_slope": m.net_cash_flow_trend.slope,
            "seasonal_strength": _std([s.inflow_index for s in m.seasonal_indices]),
            "holt_winters": {"alpha": m.holt_winters.alpha, "beta": m.holt_winters.beta,
                             "gamma": m.holt_winters.gamma},
        }
