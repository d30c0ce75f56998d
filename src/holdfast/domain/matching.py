"""Decide whether two externally sourced records describe the same event."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from holdfast.config.ingest import DEFAULT_DUPLICATE_WINDOW
from holdfast.domain.model import normalize_title

if TYPE_CHECKING:
    from collections.abc import Iterable

    from holdfast.domain.model import ExternalRecord

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MatchOptions:
    allow_cross_source: bool = False
    time_window: timedelta = DEFAULT_DUPLICATE_WINDOW


DEFAULT_MATCH_OPTIONS = MatchOptions()


def titles_match(left: str, right: str) -> bool:
    """Normalized titles are equal, or one contains the other.

    An empty normalized title only matches another empty title; containment
    would otherwise make it match everything.
    """

    a = normalize_title(left)
    b = normalize_title(right)
    if a == b:
        return True
    if not a or not b:
        return False
    return a in b or b in a


def is_duplicate(
    a: ExternalRecord,
    b: ExternalRecord,
    options: MatchOptions = DEFAULT_MATCH_OPTIONS,
) -> bool:
    """Return True when ``a`` and ``b`` describe the same real-world entity.

    Symmetric in its arguments and free of side effects.
    """

    if a.title == b.title and a.source == b.source and a.occurs_at == b.occurs_at:
        return True

    if a.source != b.source and not options.allow_cross_source:
        return False
    if abs(a.occurs_at - b.occurs_at) >= options.time_window:
        return False
    return titles_match(a.title, b.title)


def find_match(
    record: ExternalRecord,
    candidates: Iterable[ExternalRecord],
    options: MatchOptions = DEFAULT_MATCH_OPTIONS,
) -> ExternalRecord | None:
    for candidate in candidates:
        if is_duplicate(candidate, record, options):
            return candidate
    return None


def remove_duplicates(
    records: Iterable[ExternalRecord],
    options: MatchOptions = DEFAULT_MATCH_OPTIONS,
) -> tuple[list[ExternalRecord], list[ExternalRecord]]:
    """Keep the first occurrence of every entity; return ``(unique, removed)``."""

    unique: list[ExternalRecord] = []
    removed: list[ExternalRecord] = []
    for record in records:
        if find_match(record, unique, options) is None:
            unique.append(record)
        else:
            removed.append(record)

    log.info(
        "Found %s records, %s unique (removed %s duplicates)",
        len(unique) + len(removed),
        len(unique),
        len(removed),
    )
    return unique, removed
