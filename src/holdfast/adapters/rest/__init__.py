"""Public interface for the REST store adapter."""

from __future__ import annotations

from .client import RestIdentityAdmin, RestStore, encode_filters, parse_content_range
from .schema import ErrorPayload

__all__ = [
    "ErrorPayload",
    "RestIdentityAdmin",
    "RestStore",
    "encode_filters",
    "parse_content_range",
]
