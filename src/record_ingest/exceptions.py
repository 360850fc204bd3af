# src/record_ingest/exceptions.py

"""
Shared custom exceptions for the Record Ingest service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- RecordIngestError (base)
  - RetryableError (can be retried)
    - S3ThrottlingError
    - S3TimeoutError
    - TransientStoreError
    - DispatchError
  - NonRetryableError (should not be retried)
    - S3AccessDeniedError
    - S3ObjectNotFoundError
    - RecordStoreError
    - EffectError
    - ParseError
    - ConfigurationError

Expected outcomes of the claim protocol (a rejected claim, a lost optimistic
lock) are NOT exceptions; they are returned as values by `claims.py`.
"""

from typing import Any, Dict, Optional


class RecordIngestError(Exception):
    """Base exception for all Record Ingest service errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(RecordIngestError):
    """Base class for errors that can be retried."""

    pass


class NonRetryableError(RecordIngestError):
    """Base class for errors that should not be retried."""

    pass


# === S3-Related Errors ===


class S3Error(RecordIngestError):
    """Base class for S3-related errors."""

    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs)


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations timeout."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation timed out: {operation}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


# === Record Store Errors ===


class RecordStoreError(NonRetryableError):
    """Raised when the record store fails for a reason other than a condition check."""

    def __init__(self, operation: str, record_id: str, **kwargs):
        message = f"Record store failure during {operation} for record {record_id}"
        context = {"operation": operation, "record_id": record_id}
        context.update(kwargs.pop("context", None) or {})
        kwargs.setdefault("error_code", "RECORD_STORE_ERROR")
        super().__init__(message, context=context, **kwargs)


class TransientStoreError(RecordStoreError, RetryableError):
    """Raised for throttling, timeouts and connection problems talking to the store."""

    def __init__(self, operation: str, record_id: str, **kwargs):
        kwargs.setdefault("error_code", "TRANSIENT_STORE_ERROR")
        super().__init__(operation, record_id, **kwargs)


# === Processing Errors ===


class EffectError(NonRetryableError):
    """
    Raised by a work executor when the external effect fails.

    The claim for the row is intentionally left IN_PROGRESS; the record stays
    stuck until an operator repairs it.
    """

    def __init__(self, reason: str, record_id: Optional[str] = None, **kwargs):
        message = f"Work effect failed: {reason}"
        context = {"reason": reason, "record_id": record_id}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="EFFECT_FAILED", context=context, **kwargs)


class DispatchError(RetryableError):
    """Raised when a batch could not be published to the notification topic."""

    def __init__(self, reason: str, routing_key: str = "", **kwargs):
        message = f"Batch dispatch failed: {reason}"
        context = {"reason": reason, "routing_key": routing_key}
        context.update(kwargs.pop("context", None) or {})
        kwargs.setdefault("error_code", "DISPATCH_FAILED")
        super().__init__(message, context=context, **kwargs)


class ParseError(NonRetryableError):
    """Raised when an input row cannot be parsed; the row source stops at this point."""

    def __init__(self, reason: str, line_number: Optional[int] = None, **kwargs):
        message = f"Malformed input row: {reason}"
        context = {"reason": reason, "line_number": line_number}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="PARSE_ERROR", context=context, **kwargs)


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, RecordIngestError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
