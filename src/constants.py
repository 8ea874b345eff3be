"""Constants and enums for the intelligence layer"""

from enum import Enum


class Severity(str, Enum):
    """Anomaly severity buckets, derived from |z|"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class AnomalyType(str, Enum):
    """Kinds of spending anomaly"""
    DAILY_SPIKE = "daily_spike"
    SEASONAL_DEVIATION = "seasonal_deviation"
    CATEGORY_SPIKE = "category_spike"
    VENDOR_ANOMALY = "vendor_anomaly"


class ModelName(str, Enum):
    """Per-organization trainable models"""
    ACCOUNT_CLASSIFIER = "accountClassifier"
    VENDOR_MATCHER = "vendorMatcher"
    ANOMALY_MODEL = "anomalyModel"
    FORECAST_MODEL = "forecastModel"


class MappingStatus(str, Enum):
    """Imported account mapping status"""
    PENDING = "pending"
    AUTO_MAPPED = "auto_mapped"
    NEEDS_REVIEW = "needs_review"
    MANUAL = "manual"


class FeedbackStatus(str, Enum):
    """Mapping feedback review status"""
    PENDING = "pending"
    APPROVED = "approved"
    CORRECTED = "corrected"


class MappingSource(str, Enum):
    """Where an account mapping came from"""
    RULE = "rule"
    USER = "user"
    ML = "ml"


class BusinessType(str, Enum):
    """Business verticals with their own account rules"""
    SAAS = "saas"
    AGENCY = "agency"
    ECOMMERCE = "ecommerce"
    MARKETPLACE = "marketplace"
    HARDWARE = "hardware"
    HEALTHCARE = "healthcare"
    FINTECH = "fintech"
    OTHER = "other"


class InsightType(str, Enum):
    """Insight categories handed to UI / translation consumers"""
    ANOMALY = "anomaly"
    WARNING = "warning"
    RISK = "risk"
    OPPORTUNITY = "opportunity"
    INFO = "info"


class InsightSeverity(str, Enum):
    """Insight severity levels"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


INSIGHT_SEVERITY_RANK = {
    InsightSeverity.HIGH: 3,
    InsightSeverity.MEDIUM: 2,
    InsightSeverity.LOW: 1,
}


class TrendDirection(str, Enum):
    """Direction of a series over a window"""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class BenchmarkStatus(str, Enum):
    """Position of a metric relative to its industry distribution"""
    BELOW_AVERAGE = "below_average"
    AVERAGE = "average"
    ABOVE_AVERAGE = "above_average"
    TOP_PERFORMER = "top_performer"


# Stored model payload layout version
MODEL_SCHEMA_VERSION = 2

# Anomaly model defaults
DEFAULT_ANOMALY_TRAIN_DAYS = 180
DEFAULT_ANOMALY_DETECT_DAYS = 30
MIN_ANOMALY_TRAINING_TRANSACTIONS = 30
MIN_DAILY_SAMPLES = 7
MIN_DAY_OF_WEEK_SAMPLES = 4
MIN_CATEGORY_SAMPLES = 3
MIN_VENDOR_TRANSACTIONS = 3
MIN_CATEGORY_NONZERO_MONTHS = 3
DAY_OF_WEEK_Z_THRESHOLD = 2.0
CATEGORY_TREND_NOTE_THRESHOLD = 0.05

DEFAULT_THRESHOLDS = {
    "daily_z_score": 2.5,
    "category_z_score": 2.0,
    "vendor_z_score": 3.0,
    "frequency_deviation": 2.0,
}

THRESHOLD_BOUNDS = {
    "daily_z_score": (2.0, 3.5),
    "category_z_score": (1.5, 3.0),
    "vendor_z_score": (2.0, 4.0),
    "frequency_deviation": (1.0, 4.0),
}

# |z| cut-offs for severity buckets
SEVERITY_Z_CUTOFFS = {
    Severity.CRITICAL: 4.0,
    Severity.HIGH: 3.0,
    Severity.MEDIUM: 2.5,
}

# Vendor matcher defaults
MIN_VENDOR_TRAINING_EXAMPLES = 10
MAX_VENDOR_TRAINING_EXAMPLES = 5000
MAX_CLUSTER_VARIANTS = 20
EDIT_VARIANTS_COMPARED = 5
VENDOR_COSINE_WEIGHT = 0.7
VENDOR_EDIT_WEIGHT = 0.3
MIN_VENDOR_COMBINED_SCORE = 0.3
MIN_VENDOR_CONFIDENCE = 0.65
MIN_SIMILAR_VENDOR_SCORE = 0.1
UNKNOWN_TOKEN_IDF_BASE = 1000

# Account classifier / COA mapping defaults
MIN_CLASSIFIER_EXAMPLES = 5
MIN_CLASSIFIER_SIMILARITY = 0.1
CLASSIFIER_CONFIDENCE_THRESHOLD = 0.7
AUTO_MAP_CONFIDENCE_THRESHOLD = 0.85
TYPE_MAP_CONFIDENCE = 0.6
HIGH_CONFIDENCE_MAPPING = 0.9

# Forecast defaults
DEFAULT_FORECAST_TRAIN_MONTHS = 24
DEFAULT_FORECAST_HORIZON = 12
MIN_FORECAST_TRANSACTIONS = 30
MIN_FORECAST_MONTHS = 6
DEFAULT_CURRENT_CASH = 100000.0
RUNWAY_SIMULATIONS = 1000
RUNWAY_SIMULATION_SEED = 42
SURVIVAL_HORIZONS = (3, 6, 12, 18)

# Training pipeline defaults
DEFAULT_PIPELINE_CONFIG = {
    "min_corrections_for_retrain": 10,
    "min_vendor_examples_for_retrain": 50,
    "min_feedback_for_anomaly_retrain": 20,
    "cooldown_hours": 24,
    "max_concurrent_training": 3,
    "never_trained_lookback_days": 365,
    "max_organizations": 100,
    "history_limit": 50,
}

# Insight engine defaults
MAX_INSIGHTS = 10
HIGH_CONFIDENCE_CLASSIFICATION = 0.7
ANALYSIS_MAX_WORKERS = 5
