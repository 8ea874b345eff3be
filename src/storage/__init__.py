"""Model persistence"""

from .model_store import (
    ModelStore,
    InMemoryModelStore,
    RedisModelStore,
    StoredModel,
    TrainingHistory,
    create_model_store,
    migrate_payload,
)

__all__ = [
    "ModelStore",
    "InMemoryModelStore",
    "RedisModelStore",
    "StoredModel",
    "TrainingHistory",
    "create_model_store",
    "migrate_payload",
]
