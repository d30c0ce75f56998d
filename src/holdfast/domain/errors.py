"""Classification of raw store failures into retryable and permanent errors.

Precedence, most specific first:

1. exception type (timeouts and connection errors raised by a transport)
2. exact error code reported by the store
3. HTTP status
4. message keywords
5. anything left is ``UNCLASSIFIED`` and never retried
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from holdfast.domain.model import (
    ErrorCode,
    ErrorDetails,
    ExceptionDetails,
    OperationError,
    RemoteErrorDetails,
)
from holdfast.domain.ports import StoreFailure

type RawFailure = StoreFailure | BaseException | None

_NETWORK_CODES = frozenset({"ETIMEDOUT", "ECONNRESET", "ECONNREFUSED", "ENOTFOUND", "EAI_AGAIN"})
# postgres connection exceptions, admin shutdown, too many connections
_CONNECTION_CODES = frozenset({"08000", "08001", "08003", "08006", "57P01", "53300"})
_PERMISSION_CODES = frozenset({"42501", "PGRST301", "PGRST302"})
_NO_ROWS_CODES = frozenset({"PGRST116"})
_VALIDATION_CODES = frozenset({"23502", "23503", "23505", "23514", "22001", "22P02", "PGRST204"})

_NETWORK_STATUSES = frozenset({408})
_CONNECTION_STATUSES = frozenset({429, 500, 502, 503, 504})
_PERMISSION_STATUSES = frozenset({401, 403})
_NO_ROWS_STATUSES = frozenset({404})
_VALIDATION_STATUSES = frozenset({400, 409, 422})

_NETWORK_MARKERS = (
    "fetch failed",
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "connection reset",
)
_CONNECTION_MARKERS = ("connection", "pool", "502", "503", "504")
_PERMISSION_MARKERS = (
    "permission",
    "policy",
    "row-level security",
    "unauthorized",
    "not authorized",
    "forbidden",
    "jwt",
)
_NO_ROWS_MARKERS = ("no rows", "not found", "0 rows")
_VALIDATION_MARKERS = ("validation", "invalid", "violates", "duplicate key")

_RETRYABLE = frozenset({ErrorCode.NETWORK_ERROR, ErrorCode.CONNECTION_ERROR})


@dataclass(frozen=True, slots=True)
class Classification:
    code: ErrorCode
    retryable: bool
    message: str
    details: ErrorDetails | None = None

    def to_error(self, *, attempts: int) -> OperationError:
        return OperationError(
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            attempts=attempts,
            details=self.details,
        )


type Classifier = Callable[[RawFailure], Classification]


def classify(raw: RawFailure) -> Classification:
    """Map a raw failure to a stable error code and retryability."""

    if raw is None:
        return _make(ErrorCode.UNCLASSIFIED, "Unknown error", None)

    if isinstance(raw, BaseException):
        details: ErrorDetails = ExceptionDetails(exception_type=type(raw).__name__)
        message = str(raw) or type(raw).__name__
        if isinstance(raw, (TimeoutError, ConnectionError)):
            return _make(ErrorCode.NETWORK_ERROR, message, details)
        code = _code_from_message(message)
        return _make(code or ErrorCode.UNCLASSIFIED, message, details)

    details = RemoteErrorDetails(
        raw_code=raw.code,
        status=raw.status,
        detail=raw.detail,
        hint=raw.hint,
    )
    code = (
        _code_from_raw_code(raw.code)
        or _code_from_status(raw.status)
        or _code_from_message(raw.message)
        or ErrorCode.UNCLASSIFIED
    )
    return _make(code, raw.message or str(code), details)


def _make(code: ErrorCode, message: str, details: ErrorDetails | None) -> Classification:
    return Classification(
        code=code,
        retryable=code in _RETRYABLE,
        message=message,
        details=details,
    )


def _code_from_raw_code(raw_code: str | None) -> ErrorCode | None:
    if not raw_code:
        return None
    normalized = raw_code.strip().upper()
    if normalized in _NETWORK_CODES:
        return ErrorCode.NETWORK_ERROR
    if normalized in _CONNECTION_CODES:
        return ErrorCode.CONNECTION_ERROR
    if normalized in _PERMISSION_CODES:
        return ErrorCode.PERMISSION_DENIED
    if normalized in _NO_ROWS_CODES:
        return ErrorCode.NO_ROWS
    if normalized in _VALIDATION_CODES:
        return ErrorCode.VALIDATION_ERROR
    return None


def _code_from_status(status: int | None) -> ErrorCode | None:
    if status is None:
        return None
    if status in _NETWORK_STATUSES:
        return ErrorCode.NETWORK_ERROR
    if status in _CONNECTION_STATUSES:
        return ErrorCode.CONNECTION_ERROR
    if status in _PERMISSION_STATUSES:
        return ErrorCode.PERMISSION_DENIED
    if status in _NO_ROWS_STATUSES:
        return ErrorCode.NO_ROWS
    if status in _VALIDATION_STATUSES:
        return ErrorCode.VALIDATION_ERROR
    return None


def _code_from_message(message: str | None) -> ErrorCode | None:
    if not message:
        return None
    text = message.casefold()
    if any(marker in text for marker in _NETWORK_MARKERS):
        return ErrorCode.NETWORK_ERROR
    if any(marker in text for marker in _CONNECTION_MARKERS):
        return ErrorCode.CONNECTION_ERROR
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return ErrorCode.PERMISSION_DENIED
    if any(marker in text for marker in _NO_ROWS_MARKERS):
        return ErrorCode.NO_ROWS
    if any(marker in text for marker in _VALIDATION_MARKERS):
        return ErrorCode.VALIDATION_ERROR
    return None
