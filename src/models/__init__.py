"""Data models for the intelligence layer"""

from .transaction import Transaction, Organization, ANNOTATION_FIELDS
from .anomaly import (
    StatisticalBaseline,
    CategoryPattern,
    VendorPattern,
    AnomalyThresholds,
    TrainedAnomalyModel,
    SpendingAnomaly,
    ExpectedRange,
)
from .vendor import VendorCluster, TrainedVendorModel, VendorMatch, SimilarVendor
from .account import (
    CanonicalAccount,
    ImportedAccount,
    AccountMapping,
    MappingFeedback,
    TrainedClassifierModel,
    AccountClassification,
)
from .forecast import TrainedForecastModel, ForecastResult, RunwayProbabilities
from .training import TrainOutcome, ModelTrainingRecord, TrainingResult
from .insight import ProprietaryAnalysisResult, ProprietaryInsight, ModelAttribution

__all__ = [
    "Transaction",
    "Organization",
    "ANNOTATION_FIELDS",
    "StatisticalBaseline",
    "CategoryPattern",
    "VendorPattern",
    "AnomalyThresholds",
    "TrainedAnomalyModel",
    "SpendingAnomaly",
    "ExpectedRange",
    "VendorCluster",
    "TrainedVendorModel",
    "VendorMatch",
    "SimilarVendor",
    "CanonicalAccount",
    "ImportedAccount",
    "AccountMapping",
    "MappingFeedback",
    "TrainedClassifierModel",
    "AccountClassification",
    "TrainedForecastModel",
    "ForecastResult",
    "RunwayProbabilities",
    "TrainOutcome",
    "ModelTrainingRecord",
    "TrainingResult",
    "ProprietaryAnalysisResult",
    "ProprietaryInsight",
    "ModelAttribution",
]
