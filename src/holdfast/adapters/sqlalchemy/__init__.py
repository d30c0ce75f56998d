"""Local SQL implementation of the store ports."""

from __future__ import annotations

from .engine import (
    StartupError,
    configured_engine,
    create_database_engine,
    is_started,
    shutdown,
    startup,
)
from .store import SqlAlchemyIdentityAdmin, SqlAlchemyStore, failure_from_exception
from .tables import UTCDateTime, metadata

__all__ = [
    "SqlAlchemyIdentityAdmin",
    "SqlAlchemyStore",
    "StartupError",
    "UTCDateTime",
    "configured_engine",
    "create_database_engine",
    "failure_from_exception",
    "is_started",
    "metadata",
    "shutdown",
    "startup",
]
