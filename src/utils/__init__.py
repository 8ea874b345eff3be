"""Utility modules"""

from .config_loader import load_config, save_config, get_section
from .errors import (
    IntelligenceError,
    ConfigurationError,
    ModelStoreError,
    ModelStoreConflictError,
    LedgerError,
    ModelNotTrainedError,
    LLMError,
    UnsanitizedPromptError
)

__all__ = [
    "load_config",
    "save_config",
    "get_section",
    "IntelligenceError",
    "ConfigurationError",
    "ModelStoreError",
    "ModelStoreConflictError",
    "LedgerError",
    "ModelNotTrainedError",
    "LLMError",
    "UnsanitizedPromptError"
]
