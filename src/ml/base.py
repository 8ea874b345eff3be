"""Shared load/persist plumbing for per-organization models"""

from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ValidationError

from src.constants import ModelName
from src.storage.model_store import ModelStore
from src.tools.ledger_client import LedgerClient
from src.utils.errors import ModelStoreConflictError, ModelStoreError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class OrganizationModel:
    """
    One trained model for one organization, backed by the model store.

    Subclasses set model_name and payload_type and assign self.model in
    train(). The store is a best-effort cache: read failures leave the model
    untrained, write failures keep the freshly trained model in memory.
    """

    model_name: ModelName
    payload_type: Type[BaseModel]

    def __init__(self, organization_id: str, ledger: LedgerClient, store: ModelStore,
                 config: Optional[Dict[str, Any]] = None):
        self.organization_id = organization_id
        self.ledger = ledger
        self.store = store
        self.config = config or {}
        self.model = None
        self.revision: Optional[int] = None

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    @property
    def version(self) -> Optional[str]:
        return self.model.version if self.model is not None else None

    def load(self) -> bool:
        """
        Load the persisted model, if any.

        Returns:
            True if a model was loaded
        """
        stored = self.store.get(self.organization_id, self.model_name.value)
        if stored is None:
            return False
        try:
            self.model = self.payload_type.model_validate(stored.payload)
        except ValidationError as e:
            logger.error(
                f"Stored {self.model_name.value} payload failed validation: {e}",
                organization_id=self.organization_id,
            )
            return False
        self.revision = stored.revision
        return True

    def _persist(self) -> None:
        expected = self.revision if self.revision is not None else 0
        try:
            self.revision = self.store.put(
                self.organization_id,
                self.model_name.value,
                self.model.model_dump(mode="json"),
                expected_revision=expected,
            )
        except ModelStoreConflictError as e:
            # Another process trained the same key; ours stays live in memory only
            logger.warning(
                f"Model not persisted: {e}",
                organization_id=self.organization_id,
                model_name=self.model_name.value,
            )
        except ModelStoreError as e:
            logger.error(
                f"Model not persisted: {e}",
                organization_id=self.organization_id,
                model_name=self.model_name.value,
            )
