"""Keyed model store: (organization_id, model_name) -> versioned JSON blob.

Redis-backed when STATE_BACKEND=redis and the server answers, otherwise an
in-process dict. Each key holds a whole model; writes replace it. Every write
bumps an integer revision, and callers may pass the revision they loaded so a
concurrent writer in another process is detected instead of silently lost.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import redis

from src.constants import MODEL_SCHEMA_VERSION, ModelName
from src.models.training import ModelTrainingRecord
from src.utils.errors import ModelStoreError, ModelStoreConflictError
from src.utils.logging import get_logger
from src.utils.metrics import model_store_operations, redis_connection_healthy

logger = get_logger(__name__)

KEY_PREFIX = "ledger-intel"


def model_key(organization_id: str, model_name: str) -> str:
    return f"{KEY_PREFIX}:model:{organization_id}:{model_name}"


def history_key(organization_id: str) -> str:
    return f"{KEY_PREFIX}:training_history:{organization_id}"


class StoredModel:
    """Payload plus the store revision it was read at"""

    __slots__ = ("payload", "revision")

    def __init__(self, payload: Dict[str, Any], revision: int):
        self.payload = payload
        self.revision = revision


class ModelStore(ABC):
    """Keyed blob store for trained models"""

    backend_name = "abstract"

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _compare_and_set(self, key: str, value_fn, expected_revision: Optional[int]) -> int:
        """Atomically write value_fn(new_revision); return new revision."""

    @abstractmethod
    def _delete(self, key: str) -> None:
        ...

    @abstractmethod
    def health_check(self) -> bool:
        ...

    def get(self, organization_id: str, model_name: str) -> Optional[StoredModel]:
        """
        Load a model payload.

        Args:
            organization_id: Organization ID
            model_name: Model name

        Returns:
            StoredModel (payload migrated to the current schema), or None if
            the key is absent or the backend is unreachable
        """
        key = model_key(organization_id, model_name)
        try:
            raw = self._read(key)
        except Exception as e:
            model_store_operations.labels(operation="get", status="failure").inc()
            logger.error(f"Failed to read model: {e}", key=key, backend=self.backend_name)
            return None

        if raw is None:
            model_store_operations.labels(operation="get", status="miss").inc()
            return None

        try:
            envelope = json.loads(raw)
            payload = migrate_payload(model_name, envelope["payload"])
        except (ValueError, KeyError, TypeError) as e:
            model_store_operations.labels(operation="get", status="failure").inc()
            logger.error(f"Stored model is unreadable: {e}", key=key)
            return None

        model_store_operations.labels(operation="get", status="success").inc()
        return StoredModel(payload, int(envelope.get("revision", 0)))

    def put(self, organization_id: str, model_name: str, payload: Dict[str, Any],
            expected_revision: Optional[int] = None) -> int:
        """
        Replace a model payload.

        Args:
            organization_id: Organization ID
            model_name: Model name
            payload: JSON-serializable model payload
            expected_revision: Revision the caller loaded (0 = key must not
                exist); None skips the check

        Returns:
            New revision number

        Raises:
            ModelStoreConflictError: If the stored revision moved
            ModelStoreError: If the write fails
        """
        key = model_key(organization_id, model_name)

        def build(revision: int) -> str:
            return json.dumps({
                "revision": revision,
                "saved_at": datetime.now().isoformat(),
                "payload": payload,
            }, default=str)

        try:
            revision = self._compare_and_set(key, build, expected_revision)
        except ModelStoreConflictError:
            model_store_operations.labels(operation="put", status="conflict").inc()
            raise
        except Exception as e:
            model_store_operations.labels(operation="put", status="failure").inc()
            raise ModelStoreError(f"Failed to save model {key}: {e}")

        model_store_operations.labels(operation="put", status="success").inc()
        logger.info("Saved model", key=key, revision=revision, backend=self.backend_name)
        return revision

    def delete(self, organization_id: str, model_name: str) -> None:
        key = model_key(organization_id, model_name)
        try:
            self._delete(key)
            model_store_operations.labels(operation="delete", status="success").inc()
        except Exception as e:
            model_store_operations.labels(operation="delete", status="failure").inc()
            raise ModelStoreError(f"Failed to delete model {key}: {e}")


class InMemoryModelStore(ModelStore):
    """Process-local store; shares state between all users of one instance"""

    backend_name = "memory"

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def _compare_and_set(self, key: str, value_fn, expected_revision: Optional[int]) -> int:
        with self._lock:
            current = _revision_of(self._data.get(key))
            if expected_revision is not None and current != expected_revision:
                raise ModelStoreConflictError(key, expected_revision, current)
            new_revision = current + 1
            self._data[key] = value_fn(new_revision)
            return new_revision

    def _delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def health_check(self) -> bool:
        return True


class RedisModelStore(ModelStore):
    """Redis store; compare-and-set via WATCH/MULTI on the model key"""

    backend_name = "redis"

    def __init__(self, client: "redis.Redis"):
        self.client = client

    def _read(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def _compare_and_set(self, key: str, value_fn, expected_revision: Optional[int]) -> int:
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = _revision_of(pipe.get(key))
                if expected_revision is not None and current != expected_revision:
                    raise ModelStoreConflictError(key, expected_revision, current)
                new_revision = current + 1
                pipe.multi()
                pipe.set(key, value_fn(new_revision))
                pipe.execute()
                return new_revision
            except redis.WatchError:
                raise ModelStoreConflictError(key, expected_revision, "changed during write")

    def _delete(self, key: str) -> None:
        self.client.delete(key)

    def health_check(self) -> bool:
        try:
            self.client.ping()
            redis_connection_healthy.set(1)
            return True
        except redis.RedisError:
            redis_connection_healthy.set(0)
            return False


def _revision_of(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        return int(json.loads(raw).get("revision", 0))
    except (ValueError, AttributeError):
        return 0


class TrainingHistory:
    """Append-only ModelTrainingRecord log per organization"""

    def __init__(self, client: Optional["redis.Redis"] = None):
        self.client = client
        self._records: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def append(self, record: ModelTrainingRecord) -> None:
        """
        Append a record. Never rewrites earlier entries.

        Raises:
            ModelStoreError: If the backend write fails
        """
        key = history_key(record.organization_id)
        value = record.model_dump_json()
        if self.client is None:
            with self._lock:
                self._records.setdefault(key, []).append(value)
            return
        try:
            self.client.rpush(key, value)
        except redis.RedisError as e:
            raise ModelStoreError(f"Failed to append training record: {e}")

    def list(self, organization_id: str, model_name: Optional[ModelName] = None,
             limit: Optional[int] = None) -> List[ModelTrainingRecord]:
        """Records for an organization, newest first."""
        key = history_key(organization_id)
        if self.client is None:
            with self._lock:
                raw = list(self._records.get(key, []))
        else:
            try:
                raw = self.client.lrange(key, 0, -1)
            except redis.RedisError as e:
                logger.error(f"Failed to read training history: {e}", organization_id=organization_id)
                return []

        records = [ModelTrainingRecord.model_validate_json(item) for item in raw]
        if model_name is not None:
            records = [r for r in records if r.model_name == model_name]
        # stable sort keeps append order among equal timestamps
        records = sorted(enumerate(records), key=lambda pair: (pair[1].trained_at, pair[0]), reverse=True)
        ordered = [record for _, record in records]
        return ordered[:limit] if limit else ordered

    def latest(self, organization_id: str, model_name: Optional[ModelName] = None) -> Optional[ModelTrainingRecord]:
        records = self.list(organization_id, model_name, limit=1)
        return records[0] if records else None


# Payload migrations, keyed by (model_name, from_schema_version)
def _vectors_to_ids(payload: Dict[str, Any], collection: str) -> Dict[str, Any]:
    """v1 payloads keyed sparse vectors and IDF by token string."""
    vocabulary: List[str] = []
    ids: Dict[str, int] = {}

    def intern(token: str) -> int:
        if token not in ids:
            ids[token] = len(vocabulary)
            vocabulary.append(token)
        return ids[token]

    idf = {intern(token): value for token, value in payload.get("idf", {}).items()}
    for item in payload.get(collection, []):
        item["centroid"] = {intern(token): w for token, w in item.get("centroid", {}).items()}
    payload["vocabulary"] = vocabulary
    payload["idf"] = idf
    return payload


def _no_shape_change(payload: Dict[str, Any]) -> Dict[str, Any]:
    return payload


MIGRATIONS = {
    (ModelName.VENDOR_MATCHER.value, 1): lambda p: _vectors_to_ids(p, "clusters"),
    (ModelName.ACCOUNT_CLASSIFIER.value, 1): lambda p: _vectors_to_ids(p, "classes"),
    (ModelName.ANOMALY_MODEL.value, 1): _no_shape_change,
    (ModelName.FORECAST_MODEL.value, 1): _no_shape_change,
}


def migrate_payload(model_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upgrade a stored payload to MODEL_SCHEMA_VERSION.

    Payloads without a schema_version are treated as version 1.

    Raises:
        ValueError: If no migration path exists
    """
    version = int(payload.get("schema_version", 1))
    while version < MODEL_SCHEMA_VERSION:
        step = MIGRATIONS.get((model_name, version))
        if step is None:
            raise ValueError(f"No migration for {model_name} from schema v{version}")
        payload = step(dict(payload))
        version += 1
        payload["schema_version"] = version
    return payload


def _connect_redis() -> Optional["redis.Redis"]:
    redis_host, _, redis_port = os.getenv("REDIS_HOST", "localhost:6379").partition(':')
    try:
        client = redis.Redis(
            host=redis_host,
            port=int(redis_port or 6379),
            db=int(os.getenv("REDIS_DB", 0)),
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=5
        )
        client.ping()
        redis_connection_healthy.set(1)
        logger.info("Connected to Redis", host=redis_host, port=redis_port)
        return client
    except (redis.RedisError, ValueError) as e:
        redis_connection_healthy.set(0)
        logger.warning(f"Redis connection failed, falling back to in-memory: {e}")
        return None


def create_model_store(backend: Optional[str] = None) -> Tuple[ModelStore, TrainingHistory]:
    """
    Build the model store and training history for the configured backend.

    Args:
        backend: "redis" or "memory"; defaults to $STATE_BACKEND, then "redis"

    Returns:
        (ModelStore, TrainingHistory) sharing one backend
    """
    backend = backend or os.getenv("STATE_BACKEND", "redis")
    if backend == "redis":
        client = _connect_redis()
        if client is not None:
            return RedisModelStore(client), TrainingHistory(client)
    else:
        logger.info(f"Using in-memory model store ({backend} mode)")
    return InMemoryModelStore(), TrainingHistory()
