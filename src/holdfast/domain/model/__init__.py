"""Domain model for the data-consistency layer."""

from __future__ import annotations

from .deletion import (
    DeletionFailure,
    DeletionPlan,
    DeletionResult,
    DeletionStage,
    OwnedEntityPolicy,
    StepOutcome,
)
from .records import (
    AttributeKind,
    ExternalRecord,
    assign_attribute,
    compute_fingerprint,
    normalize_title,
)
from .results import (
    ErrorCode,
    ErrorDetails,
    ExceptionDetails,
    OpaqueDetails,
    OperationError,
    OperationResult,
    RemoteErrorDetails,
)

__all__ = [
    "AttributeKind",
    "DeletionFailure",
    "DeletionPlan",
    "DeletionResult",
    "DeletionStage",
    "ErrorCode",
    "ErrorDetails",
    "ExceptionDetails",
    "ExternalRecord",
    "OpaqueDetails",
    "OperationError",
    "OperationResult",
    "OwnedEntityPolicy",
    "RemoteErrorDetails",
    "StepOutcome",
    "assign_attribute",
    "compute_fingerprint",
    "normalize_title",
]
