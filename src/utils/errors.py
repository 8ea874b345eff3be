"""Custom exceptions for the intelligence layer"""


class IntelligenceError(Exception):
    """Base exception for intelligence layer errors"""
    pass


class ConfigurationError(IntelligenceError):
    """Configuration loading errors"""
    pass


class ModelStoreError(IntelligenceError):
    """Model store read/write errors"""
    pass


class ModelStoreConflictError(ModelStoreError):
    """Stored model version changed between load and save"""

    def __init__(self, key: str, expected_version, actual_version):
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {key}: expected {expected_version}, found {actual_version}"
        )


class LedgerError(IntelligenceError):
    """Transaction feed / ledger operation errors"""
    pass


class ModelNotTrainedError(IntelligenceError):
    """Model has not been trained for this organization"""
    pass


class LLMError(IntelligenceError):
    """LLM API errors"""
    pass


class UnsanitizedPromptError(LLMError):
    """Prompt contains raw numeric or currency data"""
    pass
