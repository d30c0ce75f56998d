"""Domain port definitions for adapters."""

from __future__ import annotations

from .store import Filters, IdentityAdmin, RemoteStore, Row, StoreFailure, StoreResponse

__all__ = [
    "Filters",
    "IdentityAdmin",
    "RemoteStore",
    "Row",
    "StoreFailure",
    "StoreResponse",
]
