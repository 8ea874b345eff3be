"""Cash-flow forecast data models"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Dict, List
from src.constants import TrendDirection, MODEL_SCHEMA_VERSION


class TrendComponent(BaseModel):
    slope: float = 0.0
    intercept: float = 0.0
    r2: float = 0.0


class SeasonalIndex(BaseModel):
    month: int = Field(..., ge=1, le=12)
    inflow_index: float = 1.0
    outflow_index: float = 1.0


class HoltWintersState(BaseModel):
    alpha: float
    beta: float
    gamma: float
    level: float
    trend: float
    seasonals: List[float]


class MonthlyCashFlow(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    inflows: float
    outflows: float
    net_cash_flow: float


class TrainedForecastModel(BaseModel):
    """Persisted per-organization cash-flow model"""

    schema_version: int = MODEL_SCHEMA_VERSION
    version: str
    trained_at: datetime
    organization_id: str
    data_months: int
    last_month: str = Field(..., description="Last month of the training series (YYYY-MM)")

    avg_inflows: float
    avg_outflows: float
    avg_net_cash_flow: float
    inflow_std_dev: float
    outflow_std_dev: float
    net_cash_flow_std_dev: float

    inflow_trend: TrendComponent
    outflow_trend: TrendComponent
    net_cash_flow_trend: TrendComponent

    seasonal_indices: List[SeasonalIndex]
    holt_winters: HoltWintersState
    moving_averages: Dict[str, float]
    recent_months: List[MonthlyCashFlow]


class MonthlyForecast(BaseModel):
    month: str
    predicted: float = Field(..., description="Projected net cash flow")
    lower: float
    upper: float
    confidence: float = Field(..., ge=0, le=1)
    inflows: float = 0.0
    outflows: float = 0.0
    method: str = "moving_average"


class ForecastResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    forecasts: List[MonthlyForecast]
    model_confidence: float = Field(..., ge=0, le=1)
    historical_accuracy: float = 0.0
    trend_direction: TrendDirection = TrendDirection.STABLE
    seasonal_strength: float = 0.0


class RunwayProbabilities(BaseModel):
    """Distribution of months until cash reaches zero"""

    p10_months: float
    p50_months: float
    p90_months: float
    survival_probabilities: Dict[str, float] = Field(
        ..., description="Keyed '<n>_months' -> P(cash > 0 after n months)"
    )
    horizon_months: int
    simulations: int


class ForecastedMetrics(BaseModel):
    projected_burn_rate: float
    projected_runway: int
    cash_flow_trend: str = Field(..., description="improving, declining, stable")
    seasonal_peak_month: int
    seasonal_trough_month: int


class ForecastDeviation(BaseModel):
    deviation_type: str = Field(
        ..., description="on_track, above_forecast, below_forecast, significant_deviation"
    )
    inflow_deviation: float
    outflow_deviation: float
    net_deviation: float
    percentage_deviation: float
