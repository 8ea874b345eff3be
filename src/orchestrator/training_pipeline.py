"""Model training pipeline - retraining triggers, cooldowns and version history"""

import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from src.constants import ModelName, DEFAULT_PIPELINE_CONFIG
from src.ml.registry import ModelRegistry
from src.models.training import (
    ModelTrainingRecord,
    ModelTrainingStatus,
    RetrainingCheck,
    RetrainingDetail,
    TrainingResult,
)
from src.storage.model_store import TrainingHistory
from src.tools.ledger_client import LedgerClient
from src.utils.errors import ModelStoreError
from src.utils.logging import get_logger
from src.utils.metrics import active_trainings, model_training_duration, model_training_runs

logger = get_logger(__name__)

INITIAL_VERSION = "1.0.0"
ALREADY_TRAINING = "Training already in progress"
CAPACITY_REACHED = "Max concurrent training reached"

# Models with a data-accumulation trigger, and the config key of their threshold
RETRAIN_THRESHOLDS = (
    (ModelName.ACCOUNT_CLASSIFIER, "min_corrections_for_retrain"),
    (ModelName.VENDOR_MATCHER, "min_vendor_examples_for_retrain"),
    (ModelName.ANOMALY_MODEL, "min_feedback_for_anomaly_retrain"),
)


class TrainingPipeline:
    """
    Retrains per-organization models once enough new corrections pile up.

    A (organization, model) pair trains at most once at a time and not again
    within the cooldown; the number of pairs training at once is capped
    globally. Refusals come back as TrainingResult.error, never as raises.
    """

    def __init__(self, ledger: LedgerClient, registry: ModelRegistry, history: TrainingHistory,
                 config: Optional[Dict[str, Any]] = None):
        self.ledger = ledger
        self.registry = registry
        self.history = history
        self.config = {**DEFAULT_PIPELINE_CONFIG, **(config or {})}
        self._active: Set[Tuple[str, ModelName]] = set()
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._interval_hours: Optional[float] = None

    # -- history ---------------------------------------------------------------

    def _last_success(self, organization_id: str,
                      model_name: Optional[ModelName] = None) -> Optional[ModelTrainingRecord]:
        for record in self.history.list(organization_id, model_name):
            if record.success:
                return record
        return None

    def _current_version(self, organization_id: str, model_name: ModelName) -> str:
        record = self._last_success(organization_id, model_name)
        return record.version if record else INITIAL_VERSION

    def _record(self, record: ModelTrainingRecord) -> None:
        try:
            self.history.append(record)
        except ModelStoreError as e:
            logger.error(f"Failed to record training: {e}", organization_id=record.organization_id)

    def get_training_history(self, organization_id: str,
                             limit: Optional[int] = None) -> List[ModelTrainingRecord]:
        """Training records for an organization, newest first."""
        return self.history.list(organization_id, limit=limit or self.config["history_limit"])

    # -- triggers --------------------------------------------------------------

    def check_retraining_needed(self, organization_id: str) -> RetrainingCheck:
        """
        Count corrections accumulated since the organization's last training.

        The window starts at the last successful training of any model, or
        never_trained_lookback_days ago for an organization never trained.

        Args:
            organization_id: Organization ID

        Returns:
            RetrainingCheck with one ready flag per model plus details
        """
        last = self._last_success(organization_id)
        since = last.trained_at if last else datetime.now() - timedelta(
            days=self.config["never_trained_lookback_days"]
        )

        counts = {
            ModelName.ACCOUNT_CLASSIFIER: self.ledger.count_mapping_feedback(organization_id, since),
            ModelName.VENDOR_MATCHER: self.ledger.count_vendor_normalizations(organization_id, since),
            ModelName.ANOMALY_MODEL: self.ledger.count_context_notes(organization_id, since),
        }

        details = {}
        for model_name, threshold_key in RETRAIN_THRESHOLDS:
            threshold = self.config[threshold_key]
            details[model_name.value] = RetrainingDetail(
                count=counts[model_name],
                threshold=threshold,
                ready=counts[model_name] >= threshold,
            )

        return RetrainingCheck(
            account_classifier=details[ModelName.ACCOUNT_CLASSIFIER.value].ready,
            vendor_matcher=details[ModelName.VENDOR_MATCHER.value].ready,
            anomaly_model=details[ModelName.ANOMALY_MODEL.value].ready,
            details=details,
        )

    # -- training --------------------------------------------------------------

    def _refusal(self, organization_id: str, model_name: ModelName, error: str) -> TrainingResult:
        model_training_runs.labels(model_name=model_name.value, status="rejected").inc()
        logger.info(f"Training refused: {error}", organization_id=organization_id, model_name=model_name.value)
        return TrainingResult(model_name=model_name, organization_id=organization_id, success=False, error=error)

    def train_model(self, organization_id: str, model_name: ModelName) -> TrainingResult:
        """
        Train one model for one organization.

        Args:
            organization_id: Organization ID
            model_name: Model to train

        Returns:
            TrainingResult; in-flight, cooldown and capacity refusals set error
        """
        model_name = ModelName(model_name)
        key = (organization_id, model_name)

        with self._lock:
            if key in self._active:
                return self._refusal(organization_id, model_name, ALREADY_TRAINING)

            last = self._last_success(organization_id, model_name)
            if last is not None:
                hours_since = (datetime.now() - last.trained_at).total_seconds() / 3600
                if hours_since < self.config["cooldown_hours"]:
                    remaining = self.config["cooldown_hours"] - hours_since
                    return self._refusal(
                        organization_id, model_name, f"Cooldown active. {remaining:.1f} hours remaining"
                    )

            if len(self._active) >= self.config["max_concurrent_training"]:
                return self._refusal(organization_id, model_name, CAPACITY_REACHED)

            self._active.add(key)
            active_trainings.set(len(self._active))

        start_time = time.time()
        previous_version = last.version if last else INITIAL_VERSION
        try:
            model = self.registry.get(organization_id, model_name)
            outcome = model.train()
            duration = time.time() - start_time
            new_version = model.version if outcome.success else ""

            self._record(ModelTrainingRecord(
                organization_id=organization_id,
                model_name=model_name,
                version=new_version or previous_version,
                trained_at=datetime.now(),
                example_count=outcome.example_count,
                success=outcome.success,
            ))
            model_training_runs.labels(
                model_name=model_name.value,
                status="success" if outcome.success else "insufficient_data",
            ).inc()
            model_training_duration.labels(model_name=model_name.value).observe(duration)

            logger.info(
                f"{model_name.value} trained for org {organization_id}: "
                f"{outcome.example_count} examples in {duration * 1000:.0f}ms",
                success=outcome.success,
                new_version=new_version,
            )
            return TrainingResult(
                model_name=model_name,
                organization_id=organization_id,
                success=outcome.success,
                example_count=outcome.example_count,
                duration_ms=duration * 1000,
                previous_version=previous_version,
                new_version=new_version,
                error=None if outcome.success else outcome.message,
            )

        except Exception as e:
            model_training_runs.labels(model_name=model_name.value, status="error").inc()
            logger.error(f"Error training {model_name.value}: {e}", organization_id=organization_id)
            return TrainingResult(
                model_name=model_name,
                organization_id=organization_id,
                success=False,
                duration_ms=(time.time() - start_time) * 1000,
                previous_version=previous_version,
                error=str(e),
            )

        finally:
            with self._lock:
                self._active.discard(key)
                active_trainings.set(len(self._active))

    def run_auto_training(self) -> List[TrainingResult]:
        """
        Train every model whose trigger fired, across organizations.

        Stops the whole batch, without queuing, once the concurrency cap is hit.

        Returns:
            One TrainingResult per attempted training
        """
        logger.info("Running automatic training check...")
        results: List[TrainingResult] = []

        for org in self.ledger.list_organizations(limit=self.config["max_organizations"]):
            if len(self._active) >= self.config["max_concurrent_training"]:
                logger.warning("Max concurrent training reached, stopping")
                break

            needed = self.check_retraining_needed(org.id)
            ready = [name for name, _ in RETRAIN_THRESHOLDS if needed.details[name.value].ready]
            for model_name in ready:
                result = self.train_model(org.id, model_name)
                results.append(result)
                if result.error == CAPACITY_REACHED:
                    break
            if results and results[-1].error == CAPACITY_REACHED:
                logger.warning("Max concurrent training reached, stopping")
                break

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Auto-training complete. {succeeded}/{len(results)} models trained successfully")
        return results

    def get_training_status(self, organization_id: str) -> List[ModelTrainingStatus]:
        """Per-model last training, accumulated corrections and readiness."""
        needed = self.check_retraining_needed(organization_id)
        statuses = []
        for model_name, _ in RETRAIN_THRESHOLDS:
            last = self._last_success(organization_id, model_name)
            detail = needed.details[model_name.value]
            statuses.append(ModelTrainingStatus(
                model_name=model_name,
                organization_id=organization_id,
                last_trained_at=last.trained_at if last else None,
                corrections_since_last_train=detail.count,
                ready_for_retrain=detail.ready,
                current_version=last.version if last else INITIAL_VERSION,
            ))
        return statuses

    # -- scheduling ------------------------------------------------------------

    def _schedule_next(self) -> None:
        self._timer = threading.Timer(self._interval_hours * 3600, self._run_scheduled)
        self._timer.daemon = True
        self._timer.start()

    def _run_scheduled(self) -> None:
        try:
            self.run_auto_training()
        except Exception as e:
            logger.error(f"Scheduled training error: {e}")
        with self._lock:
            if self._interval_hours is not None:
                self._schedule_next()

    def start_scheduled_training(self, interval_hours: float = 24) -> None:
        """Run run_auto_training() every interval_hours on a background timer."""
        self.stop_scheduled_training()
        with self._lock:
            self._interval_hours = interval_hours
            self._schedule_next()
        logger.info(f"Scheduled training every {interval_hours} hours")

    def stop_scheduled_training(self) -> None:
        with self._lock:
            was_running = self._timer is not None
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._interval_hours = None
        if was_running:
            logger.info("Scheduled training stopped")

    @property
    def scheduled(self) -> bool:
        return self._timer is not None
