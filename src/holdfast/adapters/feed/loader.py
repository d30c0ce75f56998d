"""Read external feed files into domain records."""

from __future__ import annotations

import json
from datetime import UTC
from logging import getLogger
from typing import TYPE_CHECKING

from holdfast.domain.model import AttributeKind, ExternalRecord

from .schema import FeedRecordPayload

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

log = getLogger(__name__)


class FeedError(ValueError):
    """Raised when a feed line cannot be turned into a record."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        super().__init__(f"line {line}: {message}" if line is not None else message)
        self.line = line


def parse_feed_record(payload: FeedRecordPayload, *, source: str | None = None) -> ExternalRecord:
    resolved_source = payload.source or source
    if not resolved_source:
        raise ValueError("Feed record has no source and no default source was given")
    occurs_at = payload.occurs_at
    if occurs_at.tzinfo is None:
        occurs_at = occurs_at.replace(tzinfo=UTC)
    kind = AttributeKind(payload.image_type) if payload.image_type else None
    return ExternalRecord(
        title=payload.title,
        source=resolved_source,
        occurs_at=occurs_at.astimezone(UTC),
        protected_attribute=payload.image_url,
        attribute_kind=kind if payload.image_url else None,
        fields=payload.extra_fields,
    )


def _iter_lines(path: Path) -> Iterator[tuple[int, object]]:
    with path.open(encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                yield number, json.loads(line)
            except json.JSONDecodeError as exc:
                raise FeedError(f"invalid JSON ({exc.msg})", line=number) from exc


def load_feed(path: Path, source: str | None = None) -> list[ExternalRecord]:
    """Load a JSON-lines feed; ``source`` fills in entries that carry none."""

    records: list[ExternalRecord] = []
    for number, raw in _iter_lines(path):
        try:
            payload = FeedRecordPayload.model_validate(raw)
            records.append(parse_feed_record(payload, source=source))
        except ValueError as exc:
            raise FeedError(str(exc), line=number) from exc
    log.info("Loaded %s records from %s", len(records), path)
    return records
