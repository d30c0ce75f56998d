"""Application entry points wiring the domain services to configured adapters."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from logging import getLogger
from typing import TYPE_CHECKING

from holdfast.adapters.rest import RestIdentityAdmin, RestStore
from holdfast.adapters.sqlalchemy import (
    SqlAlchemyIdentityAdmin,
    SqlAlchemyStore,
    is_started,
    startup,
)
from holdfast.config import get_deletion_config, get_ingest_config, get_retry_config, get_store_config
from holdfast.domain.deletion import DeletionOrchestrator
from holdfast.domain.execution import RetryingExecutor
from holdfast.domain.ingestion import IngestionService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from holdfast.config import DeletionConfig, IngestConfig, RetryConfig
    from holdfast.domain.ingestion import IngestionSummary
    from holdfast.domain.model import DeletionPlan, DeletionResult, ExternalRecord
    from holdfast.domain.ports import IdentityAdmin, RemoteStore

log = getLogger(__name__)


@asynccontextmanager
async def _adapters(
    store: RemoteStore | None,
    identity: IdentityAdmin | None,
    *,
    local: bool,
) -> AsyncIterator[tuple[RemoteStore, IdentityAdmin]]:
    """Yield the given adapters, building any missing ones from configuration."""

    built: list[RestStore | RestIdentityAdmin] = []
    if local:
        if (store is None or identity is None) and not is_started():
            startup()
        store = store or SqlAlchemyStore()
        identity = identity or SqlAlchemyIdentityAdmin()
    elif store is None or identity is None:
        store_config = get_store_config()
        if store is None:
            rest_store = RestStore(store_config)
            built.append(rest_store)
            store = rest_store
        if identity is None:
            rest_identity = RestIdentityAdmin(store_config)
            built.append(rest_identity)
            identity = rest_identity

    try:
        yield store, identity
    finally:
        for adapter in built:
            await adapter.aclose()


async def _delete_user_account(
    plan: DeletionPlan,
    *,
    store: RemoteStore | None,
    identity: IdentityAdmin | None,
    executor: RetryingExecutor,
    config: DeletionConfig,
    local: bool,
) -> DeletionResult:
    async with _adapters(store, identity, local=local) as (effective_store, effective_identity):
        orchestrator = DeletionOrchestrator(
            store=effective_store,
            identity=effective_identity,
            executor=executor,
            config=config,
        )
        return await orchestrator.run(plan)


def delete_user_account(
    plan: DeletionPlan,
    *,
    store: RemoteStore | None = None,
    identity: IdentityAdmin | None = None,
    retry: RetryConfig | None = None,
    config: DeletionConfig | None = None,
    local: bool = False,
) -> DeletionResult:
    """Delete a user account and everything hanging off it."""

    executor = RetryingExecutor(retry or get_retry_config())
    log.info("Starting account deletion for %s (local=%s)", plan.user_id, local)
    result = asyncio.run(
        _delete_user_account(
            plan,
            store=store,
            identity=identity,
            executor=executor,
            config=config or get_deletion_config(),
            local=local,
        )
    )
    log.info("Finished account deletion: %s", result.summary())
    return result


async def _ingest_feed(
    records: Sequence[ExternalRecord],
    *,
    store: RemoteStore | None,
    executor: RetryingExecutor,
    config: IngestConfig,
    local: bool,
) -> IngestionSummary:
    async with _adapters(store, None, local=local) as (effective_store, _identity):
        service = IngestionService(store=effective_store, executor=executor, config=config)
        return await service.ingest(records)


def ingest_feed(
    records: Sequence[ExternalRecord],
    *,
    store: RemoteStore | None = None,
    retry: RetryConfig | None = None,
    config: IngestConfig | None = None,
    local: bool = False,
) -> IngestionSummary:
    """Merge externally sourced records into the store without losing assigned attributes."""

    executor = RetryingExecutor(retry or get_retry_config())
    log.info("Starting ingestion of %s records (local=%s)", len(records), local)
    return asyncio.run(
        _ingest_feed(
            records,
            store=store,
            executor=executor,
            config=config or get_ingest_config(),
            local=local,
        )
    )
