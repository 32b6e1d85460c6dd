"""
Error taxonomy for usage-sync.

    UsageSyncException (500)
    ├── InvalidInputError (400)         missing or malformed identifier
    ├── AuthenticationError (401)       route needs a resolved caller
    ├── ResourceNotFoundError (404)
    │   └── UserNotFoundError
    ├── QuotaExceeded (429)
    ├── AuthorityUnavailableError (502) one payment authority failed
    └── StoreUnavailableError (503)     durable store unreachable

Only InvalidInputError and StoreUnavailableError escape the core services.
AuthorityUnavailableError is raised per authority and always absorbed by
the reconciler.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable codes carried in error responses."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    AUTHORITY_UNAVAILABLE = "AUTHORITY_UNAVAILABLE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class UsageSyncException(Exception):
    """
    Base class for every error this service raises on purpose.

    `message` and `details` may be shown to clients. `internal_message` is
    only logged. Keyword arguments beyond the named ones become details;
    None values are dropped.
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[ErrorCode] = None,
        internal_message: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **details: Any,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.original_error = original_error
        if internal_message is None and original_error is not None:
            internal_message = f"{type(original_error).__name__}: {original_error}"
        self.internal_message = internal_message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code.value!r})"


class InvalidInputError(UsageSyncException):
    status_code = 400
    default_error_code = ErrorCode.INVALID_INPUT
    default_message = "Invalid request data"


class AuthenticationError(UsageSyncException):
    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class ResourceNotFoundError(UsageSyncException):
    status_code = 404
    default_error_code = ErrorCode.RESOURCE_NOT_FOUND
    default_message = "Resource not found"

    def __init__(
        self,
        message: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            resource_type=resource_type,
            resource_id=str(resource_id)[:36] if resource_id else None,
            **kwargs,
        )


class UserNotFoundError(ResourceNotFoundError):
    default_error_code = ErrorCode.USER_NOT_FOUND
    default_message = "User not found"

    def __init__(self, user_ref: Optional[str] = None, **kwargs: Any):
        super().__init__(resource_type="user", resource_id=user_ref, **kwargs)


class QuotaExceeded(UsageSyncException):
    """The identity has used up its allowance for the current window."""

    status_code = 429
    default_error_code = ErrorCode.QUOTA_EXCEEDED
    default_message = "Usage quota exceeded"

    def __init__(
        self,
        message: Optional[str] = None,
        key: Optional[str] = None,
        current_usage: Optional[int] = None,
        limit: Optional[int] = None,
        reset_date: Optional[datetime] = None,
    ):
        self.key = key
        self.current_usage = current_usage
        self.limit = limit
        self.reset_date = reset_date
        super().__init__(
            message,
            limit=limit,
            current_usage=current_usage,
            reset_time=reset_date.isoformat() if reset_date else None,
        )


class AuthorityUnavailableError(UsageSyncException):
    """
    One payment authority gave no usable answer: transport error, timeout,
    non-2xx status, malformed body or anything else raised while asking.
    """

    status_code = 502
    default_error_code = ErrorCode.AUTHORITY_UNAVAILABLE
    default_message = "Payment authority unavailable"

    def __init__(self, message: Optional[str] = None, authority: Optional[str] = None, **kwargs: Any):
        self.authority = authority
        super().__init__(message, service=authority, **kwargs)


class StoreUnavailableError(UsageSyncException):
    status_code = 503
    default_error_code = ErrorCode.STORE_UNAVAILABLE
    default_message = "Storage temporarily unavailable"

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None, **kwargs: Any):
        self.operation = operation
        super().__init__(message, **kwargs)


# Short names used when talking about the error taxonomy
InvalidInput = InvalidInputError
StoreUnavailable = StoreUnavailableError
AuthorityUnavailable = AuthorityUnavailableError
NotFound = ResourceNotFoundError
