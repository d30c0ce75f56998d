"""Request and result types for account deletion."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .results import OperationError, OperationResult


class OwnedEntityPolicy(StrEnum):
    HARD_DELETE = "hard_delete"
    SOFT_DELETE = "soft_delete"


class DeletionStage(StrEnum):
    START = "start"
    DELETE_DEPENDENTS = "delete_dependents"
    HANDLE_OWNED_ENTITIES = "handle_owned_entities"
    DELETE_CORE_RECORD = "delete_core_record"
    DELETE_IDENTITY = "delete_identity"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True, kw_only=True)
class DeletionPlan:
    user_id: str
    user_email: str | None = None
    owned_entity_policy: OwnedEntityPolicy = OwnedEntityPolicy.SOFT_DELETE
    specific_entity_ids: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.user_id or not self.user_id.strip():
            raise ValueError("DeletionPlan.user_id must not be blank")


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one best-effort step, kept instead of swallowing errors."""

    entity: str
    result: OperationResult[int]
    skipped: bool = False


@dataclass(frozen=True, slots=True)
class DeletionFailure:
    entity: str
    id: str | None
    error: OperationError
    compensated: bool = False
    note: str | None = None


@dataclass(slots=True)
class DeletionResult:
    user_id: str
    success: bool = False
    stage: DeletionStage = DeletionStage.START
    per_entity_counts: dict[str, int] = field(default_factory=dict)
    failures: list[DeletionFailure] = field(default_factory=list)
    outcomes: list[StepOutcome] = field(default_factory=list)
    hard_deleted_ids: list[str] = field(default_factory=list)
    soft_deleted_ids: list[str] = field(default_factory=list)
    identity_error: OperationError | None = None
    # owned businesses may still point at the user
    requires_owned_reconciliation: bool = False

    @property
    def requires_reconciliation(self) -> bool:
        """The identity still exists although dependent data is gone."""

        return self.stage is DeletionStage.FAILED

    @property
    def compensated_ids(self) -> list[str]:
        return [f.id for f in self.failures if f.compensated and f.id is not None]

    def record(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.skipped:
            self.per_entity_counts[outcome.entity] = 0
            return
        if outcome.result.error is not None:
            self.failures.append(
                DeletionFailure(entity=outcome.entity, id=None, error=outcome.result.error)
            )
            return
        self.per_entity_counts[outcome.entity] = outcome.result.count or 0

    def summary(self) -> dict[str, object]:
        """Plain mapping for audit logs and the confirmation notification."""

        return {
            "user_id": self.user_id,
            "success": self.success,
            "stage": str(self.stage),
            "counts": dict(self.per_entity_counts),
            "businesses_deleted": len(self.hard_deleted_ids),
            "businesses_kept": len(self.soft_deleted_ids),
            "requires_owned_reconciliation": self.requires_owned_reconciliation,
            "failures": [
                {
                    "entity": failure.entity,
                    "id": failure.id,
                    "code": failure.error.code,
                    "compensated": failure.compensated,
                }
                for failure in self.failures
            ],
        }
