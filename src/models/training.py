"""Training pipeline data models"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, Optional
from src.constants import ModelName


class TrainOutcome(BaseModel):
    """What a single model.train() call reports back"""

    success: bool
    example_count: int = 0
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class ModelTrainingRecord(BaseModel):
    """Append-only training history entry"""

    model_config = ConfigDict(protected_namespaces=())

    organization_id: str
    model_name: ModelName
    version: str
    trained_at: datetime
    example_count: int
    success: bool


class TrainingResult(BaseModel):
    """Pipeline-level result of a train request (never raised)"""

    model_config = ConfigDict(protected_namespaces=())

    model_name: ModelName
    organization_id: str
    success: bool
    trained_at: datetime = Field(default_factory=datetime.now)
    example_count: int = 0
    duration_ms: float = 0.0
    previous_version: str = ""
    new_version: str = ""
    error: Optional[str] = None


class RetrainingDetail(BaseModel):
    count: int
    threshold: int
    ready: bool


class RetrainingCheck(BaseModel):
    account_classifier: bool
    vendor_matcher: bool
    anomaly_model: bool
    details: Dict[str, RetrainingDetail]


class ModelTrainingStatus(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_name: ModelName
    organization_id: str
    last_trained_at: Optional[datetime] = None
    corrections_since_last_train: int = 0
    ready_for_retrain: bool = False
    current_version: str = "1.0.0"
