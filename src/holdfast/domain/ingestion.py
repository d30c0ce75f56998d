"""Plan and persist ingestion batches without clobbering protected attributes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from holdfast.config.ingest import EventTableSpec, IngestConfig
from holdfast.domain.matching import DEFAULT_MATCH_OPTIONS, MatchOptions, is_duplicate, remove_duplicates
from holdfast.domain.model import (
    AttributeKind,
    ExternalRecord,
    OperationError,
    OperationResult,
    assign_attribute,
    compute_fingerprint,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from holdfast.domain.execution import RetryingExecutor
    from holdfast.domain.ports import RemoteStore, Row

log = getLogger(__name__)

DEFAULT_WRITE_BATCH_SIZE = 200


@dataclass(frozen=True, slots=True)
class AttributeFill:
    """An attribute for a stored record that had none when the batch was planned.

    It is written only while the stored fingerprint still equals
    ``expected_fingerprint``, so a value assigned in the meantime wins.
    """

    record: ExternalRecord
    expected_fingerprint: str | None


@dataclass(slots=True)
class IngestionPlan:
    to_insert: list[ExternalRecord] = field(default_factory=list)
    to_update: list[ExternalRecord] = field(default_factory=list)
    skipped_duplicates: list[ExternalRecord] = field(default_factory=list)
    attribute_fills: list[AttributeFill] = field(default_factory=list)


def prepare_insert(record: ExternalRecord) -> ExternalRecord:
    """Fingerprint the attribute a brand-new record arrives with."""

    if not record.protected_attribute or not record.protected_attribute.strip():
        return record
    return assign_attribute(
        record,
        record.protected_attribute,
        record.attribute_kind or AttributeKind.IMAGE,
    )


def merge_for_update(existing: ExternalRecord, incoming: ExternalRecord) -> ExternalRecord:
    """Refresh ``existing`` from ``incoming`` while keeping its identity.

    Natural-key columns (title, occurrence, source) and the id stay those of
    ``existing`` so the upsert lands on the stored row. An assigned attribute
    on ``existing`` is carried over verbatim, fingerprint included, whatever
    the incoming record says.
    """

    merged = replace(existing, fields={**existing.fields, **incoming.fields})
    if existing.has_protected_attribute:
        return merged

    value = incoming.protected_attribute
    if not value or not value.strip():
        return merged

    kind = incoming.attribute_kind or AttributeKind.IMAGE
    return replace(
        merged,
        protected_attribute=value,
        attribute_kind=kind,
        protected_attribute_fingerprint=compute_fingerprint(value, kind),
    )


def plan_ingestion(
    incoming: Iterable[ExternalRecord],
    existing: Sequence[ExternalRecord],
    options: MatchOptions = DEFAULT_MATCH_OPTIONS,
) -> IngestionPlan:
    """Split a fetched batch into inserts, updates and skipped duplicates.

    Intra-batch duplicates are dropped first (first occurrence wins). Each
    existing record absorbs at most one incoming record; further incoming
    records matching an already claimed row are skipped.
    """

    unique, removed = remove_duplicates(incoming, options)
    plan = IngestionPlan(skipped_duplicates=list(removed))
    claimed: set[int] = set()

    for record in unique:
        index = _match_index(record, existing, options)
        if index is None:
            plan.to_insert.append(prepare_insert(record))
            continue
        if index in claimed:
            log.info(
                "Skipping %r: matches stored record %r already updated in this batch",
                record.title,
                existing[index].title,
            )
            plan.skipped_duplicates.append(record)
            continue
        claimed.add(index)
        stored = existing[index]
        merged = merge_for_update(stored, record)
        plan.to_update.append(merged)
        if not stored.has_protected_attribute and merged.has_protected_attribute:
            plan.attribute_fills.append(
                AttributeFill(merged, stored.protected_attribute_fingerprint)
            )

    log.info(
        "Ingestion plan: insert=%s, update=%s, skipped=%s",
        len(plan.to_insert),
        len(plan.to_update),
        len(plan.skipped_duplicates),
    )
    return plan


def _match_index(
    record: ExternalRecord,
    existing: Sequence[ExternalRecord],
    options: MatchOptions,
) -> int | None:
    for index, candidate in enumerate(existing):
        if is_duplicate(candidate, record, options):
            return index
    return None


def parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    else:
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class RecordRowMapper:
    """Translate between records and store rows for one table layout."""

    spec: EventTableSpec = EventTableSpec()

    def to_row(self, record: ExternalRecord, *, include_attribute: bool = True) -> Row:
        """Build a store row; ``include_attribute=False`` leaves the attribute columns out."""

        spec = self.spec
        row: Row = {
            key: value for key, value in record.fields.items() if key not in spec.reserved_columns
        }
        row[spec.title_column] = record.title
        row[spec.title_key_column] = record.title_key
        row[spec.source_column] = record.source
        row[spec.occurs_at_column] = record.occurs_at
        if record.id is not None:
            row[spec.id_column] = record.id
        # rows without an attribute leave the stored columns alone
        if include_attribute and record.protected_attribute is not None:
            row.update(self.attribute_values(record))
        return row

    def attribute_values(self, record: ExternalRecord) -> Row:
        spec = self.spec
        return {
            spec.attribute_column: record.protected_attribute,
            spec.kind_column: (
                str(record.attribute_kind) if record.attribute_kind is not None else None
            ),
            spec.fingerprint_column: record.protected_attribute_fingerprint,
        }

    def from_row(self, row: Row) -> ExternalRecord:
        spec = self.spec
        kind_value = row.get(spec.kind_column)
        attribute = row.get(spec.attribute_column)
        fingerprint = row.get(spec.fingerprint_column)
        record_id = row.get(spec.id_column)
        return ExternalRecord(
            id=str(record_id) if record_id is not None else None,
            title=str(row[spec.title_column]),
            source=str(row[spec.source_column]),
            occurs_at=parse_timestamp(row[spec.occurs_at_column]),
            protected_attribute=str(attribute) if attribute is not None else None,
            attribute_kind=_parse_kind(kind_value),
            protected_attribute_fingerprint=str(fingerprint) if fingerprint is not None else None,
            fields={
                key: value for key, value in row.items() if key not in spec.reserved_columns
            },
        )


def _parse_kind(value: object) -> AttributeKind | None:
    if value is None or value == "":
        return None
    try:
        return AttributeKind(str(value))
    except ValueError:
        log.warning("Unknown attribute kind %r, treating as image", value)
        return AttributeKind.IMAGE


@dataclass(slots=True)
class IngestionSummary:
    received: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    attributes_filled: int = 0
    failures: list[OperationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class IngestionService:
    """Load existing rows, plan a batch and persist it through the executor."""

    def __init__(
        self,
        *,
        store: RemoteStore,
        executor: RetryingExecutor,
        config: IngestConfig | None = None,
        batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
    ) -> None:
        self.store = store
        self.executor = executor
        self.config = config or IngestConfig()
        self.mapper = RecordRowMapper(self.config.table)
        self.options = MatchOptions(
            allow_cross_source=self.config.allow_cross_source,
            time_window=self.config.time_window,
        )
        self.batch_size = batch_size

    async def ingest(self, records: Sequence[ExternalRecord]) -> IngestionSummary:
        summary = IngestionSummary(received=len(records))
        if not records:
            return summary

        loaded = await self.load_existing({record.source for record in records})
        if loaded.error is not None:
            log.error(
                "Could not load existing records, nothing persisted: %s", loaded.error.message
            )
            summary.failures.append(loaded.error)
            return summary

        plan = plan_ingestion(records, loaded.data or [], self.options)
        summary.skipped = len(plan.skipped_duplicates)
        await self.persist(plan, summary)
        log.info(
            "Ingestion finished: received=%s, inserted=%s, updated=%s, skipped=%s, "
            "attributes_filled=%s, failures=%s",
            summary.received,
            summary.inserted,
            summary.updated,
            summary.skipped,
            summary.attributes_filled,
            len(summary.failures),
        )
        return summary

    async def load_existing(
        self, sources: Iterable[str]
    ) -> OperationResult[list[ExternalRecord]]:
        spec = self.config.table
        filters_list: list[dict[str, object]] = (
            [{}]
            if self.options.allow_cross_source
            else [{spec.source_column: source} for source in sorted(set(sources))]
        )

        existing: list[ExternalRecord] = []
        attempts = 0
        for filters in filters_list:
            result = await self.executor.execute(
                lambda filters=filters: self.store.select(spec.table, filters=filters or None),
                tag=f"ingest:load:{spec.table}",
            )
            attempts += result.attempts
            if result.error is not None:
                return OperationResult.failure(result.error)
            existing.extend(self.mapper.from_row(row) for row in result.data or [])
        return OperationResult.success(existing, count=len(existing), attempts=attempts)

    async def persist(self, plan: IngestionPlan, summary: IngestionSummary) -> None:
        """Write the plan as natural-key upserts, never delete-then-insert.

        Inserts use insert-if-absent so a row created concurrently by another
        importer (possibly with an attribute) is left untouched. Updates never
        carry the attribute columns; attributes for rows that had none are
        written afterwards by :meth:`fill_attribute`.
        """

        spec = self.config.table
        for chunk in _chunks(plan.to_insert, self.batch_size):
            rows = [self.mapper.to_row(record) for record in chunk]
            summary.inserted += await self._upsert(
                rows, summary, ignore_duplicates=True, tag=f"ingest:insert:{spec.table}"
            )

        for chunk in _chunks(plan.to_update, self.batch_size):
            rows = [self.mapper.to_row(record, include_attribute=False) for record in chunk]
            summary.updated += await self._upsert(
                rows, summary, ignore_duplicates=False, tag=f"ingest:update:{spec.table}"
            )

        for fill in plan.attribute_fills:
            result = await self.fill_attribute(fill)
            if result.error is not None:
                summary.failures.append(result.error)
            elif result.data:
                summary.attributes_filled += 1

    async def _upsert(
        self,
        rows: Sequence[Row],
        summary: IngestionSummary,
        *,
        ignore_duplicates: bool,
        tag: str,
    ) -> int:
        spec = self.config.table
        written = 0
        # bulk writes require every object in one request to share its keys
        for group in _uniform_groups(rows):
            result = await self.executor.execute(
                lambda group=group: self.store.upsert(
                    spec.table,
                    group,
                    on_conflict=spec.natural_key,
                    ignore_duplicates=ignore_duplicates,
                ),
                tag=tag,
            )
            if result.error is not None:
                summary.failures.append(result.error)
                continue
            written += _affected(result)
        return written

    async def fill_attribute(self, fill: AttributeFill) -> OperationResult[bool]:
        """Set an attribute on a stored row unless its fingerprint changed since planning.

        Returns ``True`` when the row was written and ``False`` when a newer
        value was found and left alone.
        """

        spec = self.config.table
        record = fill.record
        filters: dict[str, object] = (
            {spec.id_column: record.id}
            if record.id is not None
            else dict(zip(spec.natural_key, record.natural_key, strict=True))
        )
        filters[spec.fingerprint_column] = fill.expected_fingerprint
        values = self.mapper.attribute_values(record)
        result = await self.executor.execute(
            lambda: self.store.update(spec.table, values=values, filters=filters),
            tag=f"ingest:fill:{spec.table}",
        )
        if result.error is not None:
            return OperationResult.failure(result.error)
        written = _affected(result) > 0
        if not written:
            log.info(
                "Attribute of %r changed since it was loaded, keeping the stored value",
                record.title,
            )
        return OperationResult.success(written, count=_affected(result), attempts=result.attempts)

    async def assign_attribute(
        self,
        record: ExternalRecord,
        value: str | None,
        kind: AttributeKind | None = AttributeKind.IMAGE,
    ) -> OperationResult[ExternalRecord]:
        """Deliberately set or clear the protected attribute of a stored record."""

        if record.id is None:
            raise ValueError("Only stored records (with an id) can have attributes assigned")
        spec = self.config.table
        updated = assign_attribute(record, value, kind)
        values = self.mapper.attribute_values(updated)
        result = await self.executor.execute(
            lambda: self.store.update(spec.table, values=values, filters={spec.id_column: record.id}),
            tag=f"ingest:assign:{spec.table}",
        )
        if result.error is not None:
            return OperationResult.failure(result.error)
        return OperationResult.success(updated, count=result.count, attempts=result.attempts)


def _uniform_groups(rows: Sequence[Row]) -> list[list[Row]]:
    groups: dict[frozenset[str], list[Row]] = {}
    for row in rows:
        groups.setdefault(frozenset(row), []).append(row)
    return list(groups.values())


def _affected(result: OperationResult[list[Row]]) -> int:
    if result.data is not None:
        return len(result.data)
    return result.count or 0


def _chunks[T](items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]
