"""Bounded LRU of loaded per-organization models"""

import threading
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from src.constants import ModelName
from src.ml.account_classifier import AccountClassifier
from src.ml.anomaly_model import AnomalyModel
from src.ml.base import OrganizationModel
from src.ml.forecast_model import ForecastModel
from src.ml.vendor_matcher import VendorMatcher
from src.storage.model_store import ModelStore
from src.tools.ledger_client import LedgerClient
from src.utils.config_loader import get_section
from src.utils.logging import get_logger
from src.utils.metrics import model_cache_lookups

logger = get_logger(__name__)

DEFAULT_CACHE_SIZE = 256

MODEL_CLASSES = {
    ModelName.ANOMALY_MODEL: (AnomalyModel, "anomaly_model"),
    ModelName.VENDOR_MATCHER: (VendorMatcher, "vendor_matcher"),
    ModelName.ACCOUNT_CLASSIFIER: (AccountClassifier, "account_classifier"),
    ModelName.FORECAST_MODEL: (ForecastModel, "forecast_model"),
}


class ModelRegistry:
    """
    Hands out model objects keyed by (organization_id, model_name).

    Misses construct the model and load it from the store; the least
    recently used entry is evicted once max_size is reached. Objects are
    shared, so a model trained through the registry is immediately what
    every caller sees.
    """

    def __init__(self, ledger: LedgerClient, store: ModelStore,
                 config: Optional[Dict[str, Any]] = None, max_size: int = DEFAULT_CACHE_SIZE):
        self.ledger = ledger
        self.store = store
        self.config = config or {}
        self.max_size = max_size
        self._cache: "OrderedDict[Tuple[str, ModelName], OrganizationModel]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, organization_id: str, model_name: ModelName) -> OrganizationModel:
        model_name = ModelName(model_name)
        key = (organization_id, model_name)
        with self._lock:
            model = self._cache.get(key)
            if model is not None:
                self._cache.move_to_end(key)
                model_cache_lookups.labels(result="hit").inc()
                return model

        model_cache_lookups.labels(result="miss").inc()
        model_class, section = MODEL_CLASSES[model_name]
        model = model_class(organization_id, self.ledger, self.store, get_section(self.config, section))
        model.load()

        with self._lock:
            # another thread may have loaded the same key meanwhile; keep the first
            existing = self._cache.get(key)
            if existing is not None:
                self._cache.move_to_end(key)
                return existing
            self._cache[key] = model
            while len(self._cache) > self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("Evicted model from cache", organization_id=evicted[0], model_name=evicted[1].value)
        return model

    def anomaly(self, organization_id: str) -> AnomalyModel:
        return self.get(organization_id, ModelName.ANOMALY_MODEL)

    def vendor(self, organization_id: str) -> VendorMatcher:
        return self.get(organization_id, ModelName.VENDOR_MATCHER)

    def classifier(self, organization_id: str) -> AccountClassifier:
        return self.get(organization_id, ModelName.ACCOUNT_CLASSIFIER)

    def forecast(self, organization_id: str) -> ForecastModel:
        return self.get(organization_id, ModelName.FORECAST_MODEL)

    def invalidate(self, organization_id: str, model_name: Optional[ModelName] = None) -> None:
        """Drop cached entries so the next get() reloads from the store."""
        with self._lock:
            for key in list(self._cache):
                if key[0] == organization_id and (model_name is None or key[1] == model_name):
                    del self._cache[key]

    def __len__(self) -> int:
        return len(self._cache)
