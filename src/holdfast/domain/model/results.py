"""Outcome types for calls against the remote store."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal


class ErrorCode(StrEnum):
    NETWORK_ERROR = "NETWORK_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NO_ROWS = "NO_ROWS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNCLASSIFIED = "UNCLASSIFIED"

    # raised by the deletion orchestrator, never by the classifier
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    IDENTITY_DELETION_FAILED = "IDENTITY_DELETION_FAILED"


@dataclass(frozen=True, slots=True)
class RemoteErrorDetails:
    """Diagnostics reported by the store alongside an error."""

    kind: Literal["remote"] = "remote"
    raw_code: str | None = None
    status: int | None = None
    detail: str | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class ExceptionDetails:
    """Diagnostics for a failure that surfaced as a Python exception."""

    exception_type: str
    kind: Literal["exception"] = "exception"


@dataclass(frozen=True, slots=True)
class OpaqueDetails:
    """Anything else, kept as an explicit string-keyed mapping."""

    values: Mapping[str, object] = field(default_factory=dict)
    kind: Literal["opaque"] = "opaque"


type ErrorDetails = RemoteErrorDetails | ExceptionDetails | OpaqueDetails


@dataclass(frozen=True, slots=True)
class OperationError:
    code: str
    message: str
    retryable: bool
    attempts: int = 0
    details: ErrorDetails | None = None

    @property
    def is_no_rows(self) -> bool:
        return self.code == ErrorCode.NO_ROWS


@dataclass(frozen=True, slots=True)
class OperationResult[T]:
    """Outcome of one logical store call; ``error`` is ``None`` on success."""

    data: T | None = None
    error: OperationError | None = None
    count: int | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls, data: T | None, *, count: int | None = None, attempts: int = 1
    ) -> OperationResult[T]:
        return cls(data=data, error=None, count=count, attempts=attempts)

    @classmethod
    def failure(cls, error: OperationError) -> OperationResult[T]:
        return cls(data=None, error=error, count=None, attempts=error.attempts)
