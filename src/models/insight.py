"""Orchestrator result and insight data models"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Dict, List, Optional
from src.constants import InsightType, InsightSeverity, TrendDirection, BenchmarkStatus


class ModelAttribution(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    version: str
    confidence: float = Field(..., ge=0, le=1)
    execution_time_ms: float


class LowConfidenceTransaction(BaseModel):
    transaction_id: str
    vendor_name: str
    suggested_account: Optional[str]
    confidence: float


class ClassificationAnalysis(BaseModel):
    transactions_classified: int
    account_distribution: Dict[str, int]
    high_confidence_rate: float
    low_confidence_transactions: List[LowConfidenceTransaction]


class VendorSpend(BaseModel):
    name: str
    normalized_name: str
    total_spend: float
    category: Optional[str] = None


class VendorAnalysis(BaseModel):
    vendors_normalized: int
    matches_to_known: int
    new_vendors: int
    recurring_vendors: int = 0
    top_vendors_by_spend: List[VendorSpend]


class AnomalySummaryItem(BaseModel):
    type: str
    description: str
    severity: str
    value: float
    expected_min: float
    expected_max: float
    confidence: float


class AnomalyAnalysis(BaseModel):
    anomalies_detected: int
    by_severity: Dict[str, int]
    top_anomalies: List[AnomalySummaryItem]


class RunwayInterval(BaseModel):
    p10: float
    p50: float
    p90: float


class ForecastPoint(BaseModel):
    month: str
    predicted_cash_flow: float
    lower: float
    upper: float
    confidence: float


class ForecastAnalysis(BaseModel):
    runway_months: float
    runway_confidence_interval: RunwayInterval
    survival_probabilities: Dict[str, float] = Field(default_factory=dict)
    monthly_forecasts: List[ForecastPoint]
    burn_rate_trend: TrendDirection
    key_risks: List[str] = Field(default_factory=list)


class BenchmarkComparison(BaseModel):
    metric: str
    value: float
    percentile: int
    industry_median: float
    status: BenchmarkStatus


class BenchmarkAnalysis(BaseModel):
    business_type: str
    comparisons: List[BenchmarkComparison]
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class AnalysisResults(BaseModel):
    """Sections that succeeded; a failed sub-analysis leaves its field None"""

    classification: Optional[ClassificationAnalysis] = None
    vendor_analysis: Optional[VendorAnalysis] = None
    anomalies: Optional[AnomalyAnalysis] = None
    forecast: Optional[ForecastAnalysis] = None
    benchmarks: Optional[BenchmarkAnalysis] = None


class ProprietaryAnalysisResult(BaseModel):
    organization_id: str
    analysis_type: str = "full_analysis"
    timestamp: datetime = Field(default_factory=datetime.now)
    results: AnalysisResults
    overall_confidence: float
    models_used: List[ModelAttribution]
    failed_subtasks: Dict[str, str] = Field(
        default_factory=dict, description="Sub-analysis name -> error message"
    )
    natural_language_summary: Optional[str] = None


class ProprietaryInsight(BaseModel):
    """Stable insight shape handed to UI or translation layers"""

    type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    confidence: float = Field(..., ge=0, le=1)
    data_points: Dict[str, float] = Field(default_factory=dict)
    source: str

    class Config:
        json_schema_extra = {
            "example": {
                "type": "warning",
                "severity": "high",
                "title": "Runway: 5 months",
                "description": "Based on current burn rate trends, runway is 5 months (p50 estimate)",
                "confidence": 0.72,
                "data_points": {"p10": 3.8, "p50": 5.1, "p90": 6.9},
                "source": "CashFlowForecastModel",
            }
        }


class InsightReport(BaseModel):
    insights: List[ProprietaryInsight]
    confidence: float
