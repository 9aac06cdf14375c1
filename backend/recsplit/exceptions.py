"""
RecSplit Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions, each tagged with a closed ErrorKind.
Why:   The split pipeline decides which compensating rollback to run from the
       kind of failure, and the HTTP layer maps kinds to status codes.
How:   Each exception carries a message (safe for the client) and a context
       dict (logged only). Global handlers in main.py format the responses.

Exception Hierarchy:
    RecSplitError (base)                       kind
    ├── UnauthorizedError      → 401           unauthorized
    ├── ForbiddenError         → 403           forbidden
    ├── NotFoundError          → 404           not_found
    ├── ValidationError        → 400           validation_error
    ├── SegmenterError         → 500
    │   ├── ProcessTimeoutError                process_timeout
    │   └── ProcessFailureError                process_failure
    ├── StorageError           → 500           storage_error
    ├── DatabaseError          → 500           database_error
    │   └── TransactionError                   transaction_error
    └── SplitFailedError       → 500           internal_error

Conflict (unconfirmed re-split) is not an exception: the orchestrator returns
a SplitConflict result and the route turns it into a 409.
"""

import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    """Closed set of failure kinds surfaced by the pipeline."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation_error"
    PROCESS_TIMEOUT = "process_timeout"
    PROCESS_FAILURE = "process_failure"
    STORAGE = "storage_error"
    DATABASE = "database_error"
    TRANSACTION = "transaction_error"
    INTERNAL = "internal_error"


class RecSplitError(Exception):
    """
    Base exception for all RecSplit application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
        kind:     ErrorKind of this failure (class-level)
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class UnauthorizedError(RecSplitError):
    """No caller identity could be resolved for the request."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized", context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class ForbiddenError(RecSplitError):
    """
    The caller owns the resource but the operation is not allowed on it.

    Example: deleting a recording that was synced from a device rather than
    derived locally.
    """

    kind = ErrorKind.FORBIDDEN

    def __init__(self, message: str = "Operation not permitted", context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class NotFoundError(RecSplitError):
    """
    Raised when a requested resource does not exist or is not owned by the caller.

    The message is identical in both cases so existence is never revealed
    without ownership.
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ValidationError(RecSplitError):
    """
    Raised when the request cannot be fulfilled as asked and the client can fix it.

    HTTP: 400 Bad Request. The "recording too short to split" outcome is one.
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class SegmenterError(RecSplitError):
    """Base class for failures of the external audio segmentation process."""

    kind = ErrorKind.PROCESS_FAILURE


class ProcessTimeoutError(SegmenterError):
    """
    The segmentation process exceeded its wall-clock budget and was killed.

    Kept distinct from ProcessFailureError so callers can choose a retry
    policy; the orchestrator itself never retries.
    """

    kind = ErrorKind.PROCESS_TIMEOUT

    def __init__(self, timeout_seconds: float, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=f"Audio segmentation timed out after {timeout_seconds:g} seconds",
            context=ctx,
        )
        self.timeout_seconds = timeout_seconds


class ProcessFailureError(SegmenterError):
    """The segmentation process could not be started or exited non-zero."""

    kind = ErrorKind.PROCESS_FAILURE

    def __init__(
        self,
        message: str = "Audio segmentation failed",
        returncode: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if returncode is not None:
            ctx["returncode"] = returncode
        super().__init__(message=message, context=ctx)
        self.returncode = returncode


class StorageError(RecSplitError):
    """
    Raised when a blob store download, upload or delete fails.

    The message stays generic; keys and OS errors go to context.
    """

    kind = ErrorKind.STORAGE

    def __init__(
        self,
        message: str = "Storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(RecSplitError):
    """A metadata store read failed unexpectedly."""

    kind = ErrorKind.DATABASE

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TransactionError(DatabaseError):
    """A metadata store write transaction failed and was rolled back."""

    kind = ErrorKind.TRANSACTION

    def __init__(
        self,
        message: str = "Failed to save recording changes",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SplitFailedError(RecSplitError):
    """Wraps an unexpected (non-application) exception raised inside the pipeline."""

    kind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str = "Failed to split recording",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
