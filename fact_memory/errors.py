"""
Error taxonomy for the fact memory engine.

Every error carries a ``retryable`` flag so callers can tell
"nothing to retry" failures (bad input, missing memory, missing
collaborator) apart from "safe to retry" ones (provider or index lag).
"""


class FactMemoryError(Exception):
    """Base exception for all fact memory errors."""

    retryable: bool = False


class ConfigurationError(FactMemoryError):
    """Raised when a required collaborator is missing or misconfigured."""

    pass


class ValidationError(FactMemoryError):
    """Raised when a public method receives malformed input."""

    pass


class NotFoundError(FactMemoryError):
    """Raised when an operation targets a memory id that does not exist."""

    def __init__(self, memory_id: str, message: str | None = None):
        self.memory_id = memory_id
        super().__init__(message or f"Memory not found: {memory_id}")


class ProviderError(FactMemoryError):
    """Raised when the LLM, embedding, index or SQL backend fails."""

    retryable = True


class ConsistencyTimeoutError(FactMemoryError):
    """Raised when polling an index task exceeds its timeout."""

    retryable = True

    def __init__(self, task_uid: int, timeout: float):
        self.task_uid = task_uid
        self.timeout = timeout
        super().__init__(
            f"Index task {task_uid} did not finish within {timeout:.1f}s"
        )
