"""Public interface for the external feed adapter."""

from __future__ import annotations

from .loader import FeedError, load_feed, parse_feed_record
from .schema import FeedRecordPayload

__all__ = ["FeedError", "FeedRecordPayload", "load_feed", "parse_feed_record"]
