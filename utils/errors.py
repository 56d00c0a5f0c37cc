"""
Error types shared by the memory services.

Callers branch on the concrete class: validation and not-found errors are
never retried, storage and vector errors may be.
"""

from enum import Enum
from typing import Optional


class MemoryServiceError(Exception):
    """Base error for the conversation memory system"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        # Set by the message processor retry wrapper when the error escapes it
        self.operation = operation


class ValidationError(MemoryServiceError):
    """Malformed input (vector size, batch bounds, message shape)"""
    pass


class NotFoundError(MemoryServiceError):
    """Referenced conversation or topic does not exist"""
    pass


class CorruptedDataError(MemoryServiceError):
    """Record exists but could not be read back"""
    pass


class StorageError(MemoryServiceError):
    """Transient failure reading or writing the persistent store"""
    pass


class ParseError(MemoryServiceError):
    """Language model returned output that could not be parsed"""
    pass


class VectorStoreErrorType(str, Enum):
    CONNECTION_ERROR = "CONNECTION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    OPERATION_ERROR = "OPERATION_ERROR"
    INDEX_ERROR = "INDEX_ERROR"
    BATCH_ERROR = "BATCH_ERROR"


class VectorStoreError(MemoryServiceError):
    """Vector index failure surfaced after retries"""

    def __init__(
        self,
        error_type: VectorStoreErrorType,
        message: str,
        retryable: bool = False,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.retryable = retryable
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error is not None:
            return f"{self.message}: {self.original_error}"
        return self.message
