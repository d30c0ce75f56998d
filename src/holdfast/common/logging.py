"""Shared logging helpers for holdfast."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s%(context)s"
# keys passed through ``extra=`` by the executor and the deletion orchestrator
CONTEXT_KEYS = ("tag", "attempt", "code", "retryable", "entity", "count")


class ContextFilter(logging.Filter):
    """Render structured ``extra`` fields as a trailing ``key=value`` suffix."""

    def filter(self, record: logging.LogRecord) -> bool:
        pairs = [
            f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if hasattr(record, key)
        ]
        record.context = f" ({', '.join(pairs)})" if pairs else ""
        return True


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once with a terse CLI format.

    Pass ``force=True`` to reconfigure during tests or specialised entry points.
    """

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        force=force,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(existing, ContextFilter) for existing in handler.filters):
            handler.addFilter(ContextFilter())
