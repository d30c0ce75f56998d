"""Ports for the remote relational store and the identity provider."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

type Row = dict[str, object]
type Filters = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class StoreFailure:
    """Raw failure as reported by a store adapter, before classification."""

    message: str
    code: str | None = None
    status: int | None = None
    detail: str | None = None
    hint: str | None = None


@dataclass(slots=True)
class StoreResponse[T]:
    data: T | None = None
    error: StoreFailure | None = None
    count: int | None = None


@runtime_checkable
class RemoteStore(Protocol):
    """Table-oriented access to the remote store.

    Filters are column equality matches combined with AND; ``None`` matches SQL NULL.
    Write operations report the number of affected rows in ``count``.
    """

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        columns: Sequence[str] | None = None,
    ) -> StoreResponse[list[Row]]: ...

    async def select_one(
        self,
        table: str,
        *,
        filters: Filters,
        columns: Sequence[str] | None = None,
    ) -> StoreResponse[Row]:
        """Fetch exactly one row; zero matches is reported as a no-rows failure."""
        ...

    async def count(self, table: str, *, filters: Filters) -> StoreResponse[int]: ...

    async def insert(self, table: str, rows: Sequence[Row]) -> StoreResponse[list[Row]]: ...

    async def update(
        self,
        table: str,
        *,
        values: Row,
        filters: Filters,
    ) -> StoreResponse[list[Row]]: ...

    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        *,
        on_conflict: Sequence[str],
        ignore_duplicates: bool = False,
    ) -> StoreResponse[list[Row]]:
        """Insert or update keyed by ``on_conflict`` columns.

        With ``ignore_duplicates`` conflicting rows are left untouched.
        """
        ...

    async def delete(self, table: str, *, filters: Filters) -> StoreResponse[list[Row]]: ...


@runtime_checkable
class IdentityAdmin(Protocol):
    """Administrative access to authentication identities."""

    async def delete_user(self, user_id: str) -> StoreResponse[None]: ...
