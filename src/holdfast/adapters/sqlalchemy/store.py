"""``RemoteStore`` and ``IdentityAdmin`` backed by a local SQLAlchemy database."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from holdfast.domain.ports import StoreFailure, StoreResponse

from .engine import session_factory as managed_session_factory
from .tables import auth_users_table, metadata

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy import ColumnElement, Table
    from sqlalchemy.orm import Session

    from holdfast.domain.ports import Filters, IdentityAdmin, RemoteStore, Row

log = getLogger(__name__)

_NO_ROWS_CODE = "PGRST116"
_UNDEFINED_TABLE_CODE = "42P01"
_UNDEFINED_COLUMN_CODE = "42703"


class _StoreError(Exception):
    """Internal carrier for a failure detected before hitting the database."""

    def __init__(self, failure: StoreFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class _SqlAdapter:
    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or managed_session_factory()

    async def _run[T](self, work: Callable[[Session], tuple[T, int | None]]) -> StoreResponse[T]:
        """Run blocking database work in a worker thread so the event loop keeps going."""

        return await asyncio.to_thread(self._run_sync, work)

    def _run_sync[T](self, work: Callable[[Session], tuple[T, int | None]]) -> StoreResponse[T]:
        try:
            with self._session_factory() as session, session.begin():
                data, count = work(session)
        except _StoreError as exc:
            return StoreResponse(error=exc.failure)
        except SQLAlchemyError as exc:
            failure = failure_from_exception(exc)
            log.debug("SQL store operation failed: code=%s %s", failure.code, failure.message)
            return StoreResponse(error=failure)
        return StoreResponse(data=data, count=count)


def failure_from_exception(exc: SQLAlchemyError) -> StoreFailure:
    """Translate a SQLAlchemy error into the store's raw failure shape."""

    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    message = str(orig) if orig is not None else str(exc)
    if sqlstate:
        return StoreFailure(message=message, code=str(sqlstate))
    if isinstance(exc, IntegrityError):
        return StoreFailure(message=message, code=_integrity_code(message))
    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        # sqlite reports lost files and locks as operational errors without a SQLSTATE
        if exc.connection_invalidated or "locked" in message.casefold():
            return StoreFailure(message=message, code="08006")
        return StoreFailure(message=message)
    return StoreFailure(message=message)


def _integrity_code(message: str) -> str:
    text = message.casefold()
    if "not null" in text:
        return "23502"
    if "foreign key" in text:
        return "23503"
    if "unique" in text:
        return "23505"
    return "23514"


def _table(name: str) -> Table:
    table = metadata.tables.get(name)
    if table is None:
        raise _StoreError(
            StoreFailure(message=f'relation "{name}" does not exist', code=_UNDEFINED_TABLE_CODE)
        )
    return table


def _where(table: Table, filters: Filters | None) -> list[ColumnElement[bool]]:
    clauses: list[ColumnElement[bool]] = []
    for column_name, value in (filters or {}).items():
        if column_name not in table.c:
            raise _StoreError(
                StoreFailure(
                    message=f'column "{column_name}" of "{table.name}" does not exist',
                    code=_UNDEFINED_COLUMN_CODE,
                )
            )
        column = table.c[column_name]
        clauses.append(column.is_(None) if value is None else column == value)
    return clauses


def _known_columns(table: Table, row: Row) -> Row:
    known = {key: value for key, value in row.items() if key in table.c}
    dropped = set(row) - set(known)
    if dropped:
        log.debug("Dropping unknown columns for %s: %s", table.name, sorted(dropped))
    return known


def _selected(table: Table, columns: Sequence[str] | None) -> list[ColumnElement[object]]:
    if not columns:
        return list(table.c)
    missing = [name for name in columns if name not in table.c]
    if missing:
        raise _StoreError(
            StoreFailure(
                message=f"columns {missing} of {table.name} do not exist",
                code=_UNDEFINED_COLUMN_CODE,
            )
        )
    return [table.c[name] for name in columns]


class SqlAlchemyStore(_SqlAdapter):
    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        columns: Sequence[str] | None = None,
    ) -> StoreResponse[list[Row]]:
        def work(session: Session) -> tuple[list[Row], int | None]:
            target = _table(table)
            stmt = select(*_selected(target, columns)).where(and_(True, *_where(target, filters)))
            rows = [dict(row._mapping) for row in session.execute(stmt)]  # noqa: SLF001
            return rows, len(rows)

        return await self._run(work)

    async def select_one(
        self,
        table: str,
        *,
        filters: Filters,
        columns: Sequence[str] | None = None,
    ) -> StoreResponse[Row]:
        def work(session: Session) -> tuple[Row, int | None]:
            target = _table(table)
            stmt = (
                select(*_selected(target, columns))
                .where(and_(True, *_where(target, filters)))
                .limit(2)
            )
            rows = [dict(row._mapping) for row in session.execute(stmt)]  # noqa: SLF001
            if len(rows) != 1:
                raise _StoreError(
                    StoreFailure(
                        message=f"JSON object requested, {len(rows)} rows returned from {table}",
                        code=_NO_ROWS_CODE,
                        status=406,
                    )
                )
            return rows[0], 1

        return await self._run(work)

    async def count(self, table: str, *, filters: Filters) -> StoreResponse[int]:
        def work(session: Session) -> tuple[int, int | None]:
            target = _table(table)
            stmt = select(func.count()).select_from(target).where(and_(True, *_where(target, filters)))
            total = int(session.execute(stmt).scalar_one())
            return total, total

        return await self._run(work)

    async def insert(self, table: str, rows: Sequence[Row]) -> StoreResponse[list[Row]]:
        def work(session: Session) -> tuple[list[Row], int | None]:
            target = _table(table)
            inserted: list[Row] = []
            for row in rows:
                stmt = insert(target).values(**_known_columns(target, row)).returning(*target.c)
                inserted.extend(dict(item._mapping) for item in session.execute(stmt))  # noqa: SLF001
            return inserted, len(inserted)

        return await self._run(work)

    async def update(
        self,
        table: str,
        *,
        values: Row,
        filters: Filters,
    ) -> StoreResponse[list[Row]]:
        def work(session: Session) -> tuple[list[Row], int | None]:
            target = _table(table)
            clauses = _where(target, filters)
            if not clauses:
                raise ValueError(f"Refusing to update every row of {table}: no filters given")
            stmt = (
                update(target)
                .where(and_(*clauses))
                .values(**_known_columns(target, values))
                .returning(*target.c)
            )
            updated = [dict(item._mapping) for item in session.execute(stmt)]  # noqa: SLF001
            return updated, len(updated)

        return await self._run(work)

    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        *,
        on_conflict: Sequence[str],
        ignore_duplicates: bool = False,
    ) -> StoreResponse[list[Row]]:
        def work(session: Session) -> tuple[list[Row], int | None]:
            target = _table(table)
            dialect_insert = _dialect_insert(session)
            primary_keys = {column.name for column in target.primary_key.columns}
            written: list[Row] = []
            for row in rows:
                values = _known_columns(target, row)
                stmt = dialect_insert(target).values(**values)
                if ignore_duplicates:
                    stmt = stmt.on_conflict_do_nothing(index_elements=list(on_conflict))
                else:
                    assignments = {
                        key: stmt.excluded[key]
                        for key in values
                        if key not in on_conflict and key not in primary_keys
                    }
                    stmt = (
                        stmt.on_conflict_do_update(index_elements=list(on_conflict), set_=assignments)
                        if assignments
                        else stmt.on_conflict_do_nothing(index_elements=list(on_conflict))
                    )
                result = session.execute(stmt.returning(*target.c))
                written.extend(dict(item._mapping) for item in result)  # noqa: SLF001
            return written, len(written)

        return await self._run(work)

    async def delete(self, table: str, *, filters: Filters) -> StoreResponse[list[Row]]:
        def work(session: Session) -> tuple[list[Row], int | None]:
            target = _table(table)
            clauses = _where(target, filters)
            if not clauses:
                raise ValueError(f"Refusing to delete every row of {table}: no filters given")
            stmt = delete(target).where(and_(*clauses)).returning(*target.c)
            deleted = [dict(item._mapping) for item in session.execute(stmt)]  # noqa: SLF001
            return deleted, len(deleted)

        return await self._run(work)


def _dialect_insert(session: Session) -> Callable[[Table], sqlite.Insert | postgresql.Insert]:
    name = session.get_bind().dialect.name
    if name == "sqlite":
        return sqlite.insert
    if name == "postgresql":
        return postgresql.insert
    raise _StoreError(StoreFailure(message=f"Upsert is not supported on dialect {name!r}"))


class SqlAlchemyIdentityAdmin(_SqlAdapter):
    """Identities kept in a local ``auth_users`` table."""

    async def delete_user(self, user_id: str) -> StoreResponse[None]:
        def work(session: Session) -> tuple[None, int | None]:
            stmt = delete(auth_users_table).where(auth_users_table.c.id == user_id)
            deleted = session.execute(stmt).rowcount
            if not deleted:
                raise _StoreError(StoreFailure(message="User not found", status=404))
            return None, deleted

        return await self._run(work)


if TYPE_CHECKING:

    def _check_ports(
        store: SqlAlchemyStore, identity: SqlAlchemyIdentityAdmin
    ) -> tuple[RemoteStore, IdentityAdmin]:
        return store, identity
