"""
Exception hierarchy for the vector store engine.

Every error raised by alloyvec derives from VectorStoreError so callers can
catch the whole family at once. The engine never retries on its own:
ConnectivityError is the only category that is safe for a caller to retry,
and only for reads or idempotent writes.
"""


class VectorStoreError(Exception):
    """Base exception for all vector store errors."""


class ConfigurationError(VectorStoreError, ValueError):
    """Raised for malformed credentials, dimension mismatches and bad table settings."""


class SchemaConflictError(VectorStoreError):
    """Raised when a table already exists and overwriting is disabled."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table


class FilterCompilationError(VectorStoreError, ValueError):
    """Raised when a filter expression references an unknown field or operator."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConnectivityError(VectorStoreError):
    """Raised on network, authentication or pool failures."""


class PoolExhaustedError(ConnectivityError):
    """Raised when no pooled connection frees up within the acquire timeout."""


class IdentityResolutionError(ConnectivityError):
    """Raised when the database principal cannot be resolved from the identity provider."""


class ConstraintViolationError(VectorStoreError):
    """
    Raised when a record violates a table constraint.

    Attributes:
        record_id: Id of the offending record, when known
        index: Position of the offending record within the submitted batch
    """

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        index: int | None = None,
    ):
        super().__init__(message)
        self.record_id = record_id
        self.index = index
