"""Per-organization statistical models"""

from .anomaly_model import AnomalyModel
from .vendor_matcher import VendorMatcher
from .account_classifier import AccountClassifier
from .coa_mapper import COAMapper
from .forecast_model import ForecastModel
from .benchmarks import BenchmarkCatalogue
from .registry import ModelRegistry

__all__ = [
    "AnomalyModel",
    "VendorMatcher",
    "AccountClassifier",
    "COAMapper",
    "ForecastModel",
    "BenchmarkCatalogue",
    "ModelRegistry",
]
