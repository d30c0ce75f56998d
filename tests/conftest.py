from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.engine import Engine  # noqa: TC002

from holdfast.adapters.sqlalchemy import (
    SqlAlchemyIdentityAdmin,
    SqlAlchemyStore,
    create_database_engine,
    shutdown,
    startup,
)

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_database_engine("sqlite+pysqlite:///:memory:")
    startup(engine=engine, force=True)
    try:
        yield engine
    finally:
        shutdown()


@pytest.fixture
def sql_store(sqlite_engine: Engine) -> SqlAlchemyStore:
    return SqlAlchemyStore()


@pytest.fixture
def sql_identity(sqlite_engine: Engine) -> SqlAlchemyIdentityAdmin:
    return SqlAlchemyIdentityAdmin()
