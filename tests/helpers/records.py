"""Builders for ingestion-related tests."""

from __future__ import annotations

from datetime import UTC, datetime

from holdfast.domain.model import AttributeKind, ExternalRecord, compute_fingerprint

BASE_TIME = datetime(2025, 6, 7, 9, 0, tzinfo=UTC)


def make_record(
    title: str = "Farmers Market",
    *,
    source: str = "city-feed",
    occurs_at: datetime = BASE_TIME,
    attribute: str | None = None,
    kind: AttributeKind | None = None,
    record_id: str | None = None,
    fingerprint: str | None = None,
    **fields: object,
) -> ExternalRecord:
    resolved_kind = kind or (AttributeKind.IMAGE if attribute else None)
    return ExternalRecord(
        title=title,
        source=source,
        occurs_at=occurs_at,
        protected_attribute=attribute,
        attribute_kind=resolved_kind,
        protected_attribute_fingerprint=(
            fingerprint
            if fingerprint is not None or attribute is None
            else compute_fingerprint(attribute, resolved_kind)
        ),
        id=record_id,
        fields=fields,
    )
