"""Cascading account deletion.

A run walks ``START -> DELETE_DEPENDENTS -> HANDLE_OWNED_ENTITIES ->
DELETE_CORE_RECORD -> DELETE_IDENTITY -> DONE`` strictly in order. Only a
failed identity deletion ends in ``FAILED``; every earlier failure is recorded
in the result and the run carries on. Steps are safe to repeat: rows that are
already gone produce zero counts, not errors.

Callers must not run two deletions for the same user concurrently.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from holdfast.config.deletion import DeletionConfig, DependentKey
from holdfast.domain.model import (
    DeletionFailure,
    DeletionResult,
    DeletionStage,
    ErrorCode,
    OperationError,
    OperationResult,
    OwnedEntityPolicy,
    StepOutcome,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from holdfast.config.deletion import DependentEntity
    from holdfast.domain.execution import RetryingExecutor
    from holdfast.domain.model import DeletionPlan
    from holdfast.domain.ports import IdentityAdmin, RemoteStore, Row

log = getLogger(__name__)

IDENTITY_ENTITY = "identity"
PROFILE_ENTITY = "profile"


class DeletionOrchestrator:
    def __init__(
        self,
        *,
        store: RemoteStore,
        identity: IdentityAdmin,
        executor: RetryingExecutor,
        config: DeletionConfig | None = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.executor = executor
        self.config = config or DeletionConfig()

    async def run(self, plan: DeletionPlan) -> DeletionResult:
        result = DeletionResult(user_id=plan.user_id)
        log.info(
            "Deleting user %s (policy=%s, specific_entities=%s)",
            plan.user_id,
            plan.owned_entity_policy,
            sorted(plan.specific_entity_ids),
        )

        email = plan.user_email or await self._lookup_email(plan.user_id)

        result.stage = DeletionStage.DELETE_DEPENDENTS
        for dependent in self.config.dependents:
            await self._delete_dependent(dependent, plan.user_id, email, result)

        result.stage = DeletionStage.HANDLE_OWNED_ENTITIES
        await self._handle_owned_entities(plan, result)

        result.stage = DeletionStage.DELETE_CORE_RECORD
        await self._delete_core_record(plan.user_id, result)

        result.stage = DeletionStage.DELETE_IDENTITY
        await self._delete_identity(plan.user_id, result)

        log.info(
            "Deletion of user %s finished: stage=%s, success=%s, counts=%s, failures=%s",
            plan.user_id,
            result.stage,
            result.success,
            result.per_entity_counts,
            len(result.failures),
        )
        return result

    # -- helpers -------------------------------------------------------------

    async def _lookup_email(self, user_id: str) -> str | None:
        config = self.config
        fetched = await self.executor.execute(
            lambda: self.store.select_one(
                config.profile_table,
                filters={config.profile_id_column: user_id},
                columns=(config.profile_email_column,),
            ),
            tag="lookup:profile-email",
        )
        if fetched.error is not None:
            if not fetched.error.is_no_rows:
                log.warning("Could not look up email of user %s: %s", user_id, fetched.error.message)
            return None
        email = (fetched.data or {}).get(config.profile_email_column)
        return str(email) if email else None

    async def _delete_dependent(
        self,
        dependent: DependentEntity,
        user_id: str,
        email: str | None,
        result: DeletionResult,
    ) -> None:
        key_value = user_id if dependent.key is DependentKey.USER_ID else email
        if key_value is None:
            log.info("Skipping %s: no %s known", dependent.name, dependent.key)
            result.record(
                StepOutcome(dependent.name, OperationResult.success(0, count=0), skipped=True)
            )
            return

        filters = {dependent.column: key_value}
        existing: int | None = None
        if dependent.precount:
            counted = await self.executor.execute(
                lambda: self.store.count(dependent.table, filters=filters),
                tag=f"count:{dependent.name}",
            )
            if counted.error is None:
                existing = counted.data
                if existing:
                    log.info("Found %s %s row(s) to delete", existing, dependent.name)

        deleted = await self.executor.execute(
            lambda: self.store.delete(dependent.table, filters=filters),
            tag=f"delete:{dependent.name}",
        )
        outcome = StepOutcome(dependent.name, _as_count(deleted))
        result.record(outcome)

        if outcome.result.error is not None:
            log.warning(
                "Could not delete %s for user %s: %s",
                dependent.name,
                user_id,
                outcome.result.error.message,
            )
            return
        count = outcome.result.data or 0
        log.info(
            "Deleted %s %s row(s)",
            count,
            dependent.name,
            extra={"entity": dependent.name, "count": count},
        )
        if existing and count == 0:
            log.warning(
                "Found %s %s row(s) but deleted 0, possible permission policy issue",
                existing,
                dependent.name,
            )

    async def _handle_owned_entities(self, plan: DeletionPlan, result: DeletionResult) -> None:
        spec = self.config.owned
        owned = await self.executor.execute(
            lambda: self.store.select(
                spec.table,
                filters={spec.owner_column: plan.user_id},
                columns=(spec.id_column, spec.badges_column, spec.label_column),
            ),
            tag=f"select:{spec.name}",
        )
        if owned.error is not None:
            log.critical(
                "Could not list %s owned by %s, they stay linked to the user: %s",
                spec.name,
                plan.user_id,
                owned.error.message,
            )
            result.requires_owned_reconciliation = True
            result.failures.append(
                DeletionFailure(
                    entity=spec.name,
                    id=None,
                    error=owned.error,
                    note=f"{spec.name} not handled, reconcile manually",
                )
            )
            return

        rows = owned.data or []
        log.info("Found %s %s owned by user %s", len(rows), spec.name, plan.user_id)

        if plan.owned_entity_policy is OwnedEntityPolicy.HARD_DELETE:
            targets, remainder = self._split_targets(rows, plan.specific_entity_ids)
            for row in targets:
                await self._hard_delete(row, result)
            # anything not explicitly selected for hard deletion is detached
            for row in remainder:
                await self._soft_delete(row, result)
        else:
            for row in rows:
                await self._soft_delete(row, result)

        result.per_entity_counts[f"{spec.name}_deleted"] = len(result.hard_deleted_ids)
        result.per_entity_counts[f"{spec.name}_kept"] = len(result.soft_deleted_ids)
        log.info(
            "Owned %s: hard deleted=%s, soft deleted=%s, compensated=%s",
            spec.name,
            len(result.hard_deleted_ids),
            len(result.soft_deleted_ids),
            len(result.compensated_ids),
            extra={"entity": spec.name, "count": len(rows)},
        )

    def _split_targets(
        self,
        rows: Sequence[Row],
        requested: frozenset[str],
    ) -> tuple[list[Row], list[Row]]:
        if not requested:
            return list(rows), []
        id_column = self.config.owned.id_column
        owned_ids = {str(row[id_column]) for row in rows}
        unknown = requested - owned_ids
        if unknown:
            log.warning("Ignoring requested ids not owned by the user: %s", sorted(unknown))
        targets = [row for row in rows if str(row[id_column]) in requested]
        remainder = [row for row in rows if str(row[id_column]) not in requested]
        return targets, remainder

    async def _hard_delete(self, row: Row, result: DeletionResult) -> None:
        spec = self.config.owned
        entity_id = str(row[spec.id_column])
        label = row.get(spec.label_column) or "unnamed"

        deleted = await self.executor.execute(
            lambda: self.store.delete(spec.table, filters={spec.id_column: entity_id}),
            tag=f"hard-delete:{spec.name}",
        )
        failure: OperationError
        if deleted.error is not None:
            failure = deleted.error
        else:
            verified = await self.executor.execute(
                lambda: self.store.select_one(
                    spec.table,
                    filters={spec.id_column: entity_id},
                    columns=(spec.id_column,),
                ),
                tag=f"verify:{spec.name}",
            )
            if verified.error is not None and verified.error.is_no_rows:
                log.info("Verified %s %s (%s) is deleted", spec.name, entity_id, label)
                result.hard_deleted_ids.append(entity_id)
                return
            if verified.error is None:
                failure = OperationError(
                    code=ErrorCode.VERIFICATION_FAILED,
                    message=f"{spec.name} {entity_id} still exists after deletion",
                    retryable=False,
                    attempts=verified.attempts,
                )
            else:
                failure = verified.error

        log.error(
            "Hard delete of %s %s (%s) failed (%s), falling back to soft delete",
            spec.name,
            entity_id,
            label,
            failure.code,
        )
        compensation = await self._soft_delete(row, result, record_failure=False)
        if compensation.error is None:
            result.failures.append(
                DeletionFailure(
                    entity=spec.name,
                    id=entity_id,
                    error=failure,
                    compensated=True,
                    note="soft-deleted after failed hard delete",
                )
            )
        else:
            log.critical(
                "Compensating soft delete of %s %s failed: %s",
                spec.name,
                entity_id,
                compensation.error.message,
            )
            result.requires_owned_reconciliation = True
            result.failures.append(
                DeletionFailure(
                    entity=spec.name,
                    id=entity_id,
                    error=failure,
                    compensated=False,
                    note=f"compensating soft delete failed: {compensation.error.message}",
                )
            )

    async def _soft_delete(
        self,
        row: Row,
        result: DeletionResult,
        *,
        record_failure: bool = True,
    ) -> OperationResult[list[Row]]:
        """Tombstone and detach one owned entity."""

        spec = self.config.owned
        entity_id = str(row[spec.id_column])
        values: Row = {
            spec.badges_column: _with_marker(row.get(spec.badges_column), self.config.tombstone_marker),
            spec.owner_column: None,
        }
        updated = await self.executor.execute(
            lambda: self.store.update(spec.table, values=values, filters={spec.id_column: entity_id}),
            tag=f"soft-delete:{spec.name}",
        )
        if updated.error is None:
            result.soft_deleted_ids.append(entity_id)
            log.info("Soft deleted %s %s", spec.name, entity_id)
        elif record_failure:
            log.error("Soft delete of %s %s failed: %s", spec.name, entity_id, updated.error.message)
            result.requires_owned_reconciliation = True
            result.failures.append(
                DeletionFailure(entity=spec.name, id=entity_id, error=updated.error, note="soft delete failed")
            )
        return updated

    async def _delete_core_record(self, user_id: str, result: DeletionResult) -> None:
        config = self.config
        deleted = await self.executor.execute(
            lambda: self.store.delete(config.profile_table, filters={config.profile_id_column: user_id}),
            tag="delete:profile",
        )
        outcome = StepOutcome(PROFILE_ENTITY, _as_count(deleted))
        result.record(outcome)
        if outcome.result.error is None:
            log.info(
                "Deleted %s profile row(s)",
                outcome.result.data,
                extra={"entity": PROFILE_ENTITY, "count": outcome.result.data},
            )
        else:
            log.warning("Could not delete profile of %s: %s", user_id, outcome.result.error.message)

    async def _delete_identity(self, user_id: str, result: DeletionResult) -> None:
        deleted = await self.executor.execute(
            lambda: self.identity.delete_user(user_id),
            tag="delete:identity",
        )
        error = deleted.error
        if error is None or error.is_no_rows:
            if error is not None:
                log.info("Identity %s already absent", user_id)
            result.success = True
            result.stage = DeletionStage.DONE
            return

        log.error(
            "Deleting identity %s failed (code=%s, retryable=%s, attempts=%s): %s",
            user_id,
            error.code,
            error.retryable,
            error.attempts,
            error.message,
        )
        result.success = False
        result.stage = DeletionStage.FAILED
        result.identity_error = error
        result.failures.append(
            DeletionFailure(
                entity=IDENTITY_ENTITY,
                id=user_id,
                error=OperationError(
                    code=ErrorCode.IDENTITY_DELETION_FAILED,
                    message=error.message,
                    retryable=error.retryable,
                    attempts=error.attempts,
                    details=error.details,
                ),
                note="identity still exists, reconcile manually",
            )
        )


def _as_count(result: OperationResult[list[Row]]) -> OperationResult[int]:
    if result.error is not None:
        return OperationResult.failure(result.error)
    count = result.count if result.count is not None else len(result.data or [])
    return OperationResult.success(count, count=count, attempts=result.attempts)


def _with_marker(badges: object, marker: str) -> list[str]:
    current = [str(badge) for badge in badges] if isinstance(badges, (list, tuple)) else []
    if marker not in current:
        current.append(marker)
    return current
