"""Settings for ingesting externally sourced records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

DEFAULT_DUPLICATE_WINDOW = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class EventTableSpec:
    """Column layout of the table holding ingested records."""

    table: str = "calendar_events"
    id_column: str = "id"
    title_column: str = "title"
    title_key_column: str = "title_key"
    source_column: str = "source"
    occurs_at_column: str = "occurs_at"
    attribute_column: str = "image_url"
    kind_column: str = "image_type"
    fingerprint_column: str = "image_fingerprint"

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.title_key_column, self.occurs_at_column, self.source_column)

    @property
    def reserved_columns(self) -> frozenset[str]:
        return frozenset(
            {
                self.id_column,
                self.title_column,
                self.title_key_column,
                self.source_column,
                self.occurs_at_column,
                self.attribute_column,
                self.kind_column,
                self.fingerprint_column,
            }
        )


@dataclass(frozen=True, slots=True)
class IngestConfig:
    table: EventTableSpec = EventTableSpec()
    allow_cross_source: bool = False
    time_window: timedelta = DEFAULT_DUPLICATE_WINDOW


def get_ingest_config(*, allow_cross_source: bool = False) -> IngestConfig:
    return IngestConfig(allow_cross_source=allow_cross_source)
