"""Spending baseline and anomaly data models"""

from pydantic import BaseModel, Field
import datetime as dt
from datetime import datetime
from typing import Dict, List, Optional
from src.constants import AnomalyType, Severity, MODEL_SCHEMA_VERSION, DEFAULT_THRESHOLDS


class StatisticalBaseline(BaseModel):
    """Summary statistics of one historical aggregate"""

    mean: float = 0.0
    std_dev: float = 0.0
    median: float = 0.0
    q1: float = 0.0
    q3: float = 0.0
    iqr: float = 0.0
    sample_size: int = 0


class CategoryPattern(BaseModel):
    """Zero-filled monthly/weekly baselines for one spending category"""

    category_id: str
    monthly: StatisticalBaseline
    weekly: StatisticalBaseline
    trend: float = Field(0.0, description="Relative OLS slope of the monthly series")


class VendorPattern(BaseModel):
    """Per-transaction amount profile of one vendor"""

    vendor_key: str
    avg_transaction: float
    std_dev: float
    frequency: float = Field(..., description="Transactions per month over the training window")
    last_seen: dt.date
    transaction_count: int


class AnomalyThresholds(BaseModel):
    """Learned |z| thresholds per aggregate type"""

    daily_z_score: float = DEFAULT_THRESHOLDS["daily_z_score"]
    category_z_score: float = DEFAULT_THRESHOLDS["category_z_score"]
    vendor_z_score: float = DEFAULT_THRESHOLDS["vendor_z_score"]
    frequency_deviation: float = DEFAULT_THRESHOLDS["frequency_deviation"]


class TrainedAnomalyModel(BaseModel):
    """Persisted per-organization spending model"""

    schema_version: int = MODEL_SCHEMA_VERSION
    version: str
    trained_at: datetime
    organization_id: str
    training_days: int
    transaction_count: int

    daily: StatisticalBaseline
    weekly: StatisticalBaseline
    monthly: StatisticalBaseline
    day_of_week: Dict[int, StatisticalBaseline] = Field(
        default_factory=dict, description="0 = Sunday ... 6 = Saturday"
    )
    category_patterns: Dict[str, CategoryPattern] = Field(default_factory=dict)
    vendor_patterns: Dict[str, VendorPattern] = Field(default_factory=dict)
    seasonal_indices: List[float] = Field(default_factory=lambda: [1.0] * 12)
    thresholds: AnomalyThresholds = Field(default_factory=AnomalyThresholds)


class ExpectedRange(BaseModel):
    min: float
    max: float


class SpendingAnomaly(BaseModel):
    """One detected deviation from a learned baseline"""

    anomaly_type: AnomalyType
    severity: Severity
    score: float = Field(..., description="Signed z-score against the baseline")
    value: float = Field(..., description="Observed amount")
    expected_range: ExpectedRange
    confidence: float = Field(..., ge=0, le=1)
    description: str
    date: Optional[dt.date] = None
    category_id: Optional[str] = None
    vendor_key: Optional[str] = None
    transaction_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "anomaly_type": "category_spike",
                "severity": "high",
                "score": 3.4,
                "value": 10260.0,
                "expected_range": {"min": 7900.0, "max": 8800.0},
                "confidence": 0.84,
                "description": "COGS-HOST spending of $10.3K is above the usual $8.3K per month",
                "category_id": "COGS-HOST",
            }
        }
