"""Table metadata for the local SQL store."""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
)

from holdfast.config.deletion import DEFAULT_DEPENDENTS
from holdfast.config.ingest import EventTableSpec

if TYPE_CHECKING:
    from sqlalchemy import Dialect

metadata = MetaData()


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


_EVENTS = EventTableSpec()

calendar_events_table = Table(
    _EVENTS.table,
    metadata,
    Column(_EVENTS.id_column, String(36), primary_key=True, default=_new_id),
    Column(_EVENTS.title_column, String(500), nullable=False),
    Column(_EVENTS.title_key_column, String(500), nullable=False),
    Column(_EVENTS.source_column, String(100), nullable=False),
    Column(_EVENTS.occurs_at_column, UTCDateTime(), nullable=False),
    Column(_EVENTS.attribute_column, Text, nullable=True),
    Column(_EVENTS.kind_column, String(32), nullable=True),
    Column(_EVENTS.fingerprint_column, String(64), nullable=True),
    Column("description", Text, nullable=True),
    Column("location", String(500), nullable=True),
    Column("url", Text, nullable=True),
    Column("created_by_user_id", String(36), nullable=True, index=True),
    UniqueConstraint(*_EVENTS.natural_key, name="uq_calendar_events_natural_key"),
)

providers_table = Table(
    "providers",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("name", String(255), nullable=True),
    Column("owner_user_id", String(36), nullable=True, index=True),
    Column("badges", JSON, nullable=True),
)

profiles_table = Table(
    "profiles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=True),
)

auth_users_table = Table(
    "auth_users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=True),
)


def _dependent_tables() -> dict[str, Table]:
    columns: defaultdict[str, set[str]] = defaultdict(set)
    for dependent in DEFAULT_DEPENDENTS:
        if dependent.table not in metadata.tables:
            columns[dependent.table].add(dependent.column)
    return {
        name: Table(
            name,
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            *(Column(column, String(320), nullable=True, index=True) for column in sorted(cols)),
        )
        for name, cols in columns.items()
    }


dependent_tables = _dependent_tables()
