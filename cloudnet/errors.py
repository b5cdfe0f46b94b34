"""
Error taxonomy shared by every layer of the service.

Provider modules translate native SDK exceptions (``ClientError``,
``HttpError``, ``HttpResponseError``) into one of these classes; the
FastAPI exception handler in ``cloudnet.main`` turns them into JSON
responses using ``status_code``.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class NetworkError(Exception):
    """Base class for every error surfaced by the network service."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.kind.value, "message": self.message, "details": self.details}


class ValidationFailedError(NetworkError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 400


class NotSupportedError(NetworkError):
    """The provider is unknown to the service."""

    kind = ErrorKind.NOT_SUPPORTED
    status_code = 400


class FeatureNotImplementedError(NetworkError):
    """The provider is known but the requested verb is not built for it."""

    kind = ErrorKind.NOT_IMPLEMENTED
    status_code = 501


class NotFoundError(NetworkError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(NetworkError):
    kind = ErrorKind.CONFLICT
    status_code = 409


class OperationTimeoutError(NetworkError):
    kind = ErrorKind.TIMEOUT
    status_code = 408


class OperationCancelledError(NetworkError):
    kind = ErrorKind.CANCELLED
    status_code = 499


class ProviderError(NetworkError):
    """Opaque upstream failure, tagged with the provider and the failing call."""

    kind = ErrorKind.PROVIDER_ERROR
    status_code = 502

    def __init__(
        self,
        message: str,
        provider: str = "",
        operation: str = "",
        details: Optional[dict] = None,
    ) -> None:
        details = dict(details or {})
        if provider:
            details.setdefault("provider", provider)
        if operation:
            details.setdefault("operation", operation)
        super().__init__(message, details)
        self.provider = provider
        self.operation = operation


class InternalError(NetworkError):
    kind = ErrorKind.INTERNAL_ERROR
    status_code = 500
