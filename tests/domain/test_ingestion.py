from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from holdfast.config import NO_DELAY, IngestConfig
from holdfast.domain.execution import RetryingExecutor
from holdfast.domain.ingestion import (
    AttributeFill,
    IngestionService,
    IngestionSummary,
    RecordRowMapper,
    merge_for_update,
    plan_ingestion,
)
from holdfast.domain.model import AttributeKind, ErrorCode, compute_fingerprint
from holdfast.domain.ports import StoreFailure
from tests.helpers.records import BASE_TIME, make_record
from tests.helpers.store import FakeStore, RecordingSleeper

if TYPE_CHECKING:
    from holdfast.adapters.sqlalchemy import SqlAlchemyStore
    from holdfast.domain.model import ExternalRecord

TABLE = "calendar_events"
IMAGE_X = "https://cdn.example.org/x.jpg"
IMAGE_Y = "https://cdn.example.org/y.jpg"


def _service(
    store: FakeStore | SqlAlchemyStore, *, config: IngestConfig | None = None
) -> IngestionService:
    executor = RetryingExecutor(NO_DELAY, sleep=RecordingSleeper())
    return IngestionService(store=store, executor=executor, config=config)


def _seed(store: FakeStore, *records: ExternalRecord) -> None:
    mapper = RecordRowMapper()
    for record in records:
        store.seed(TABLE, mapper.to_row(record))


def test_existing_attribute_survives_incoming_value() -> None:
    existing = make_record(attribute=IMAGE_X, record_id="evt-1", fingerprint="legacy-fp")
    incoming = make_record("farmers market", attribute=IMAGE_Y)

    plan = plan_ingestion([incoming], [existing])

    assert plan.to_insert == []
    [updated] = plan.to_update
    assert updated.id == "evt-1"
    assert updated.protected_attribute == IMAGE_X
    assert updated.protected_attribute_fingerprint == "legacy-fp"


def test_existing_attribute_survives_empty_incoming_value() -> None:
    existing = make_record(attribute=IMAGE_X, record_id="evt-1")

    updated = merge_for_update(existing, make_record(attribute=""))

    assert updated.protected_attribute == IMAGE_X
    assert updated.protected_attribute_fingerprint == existing.protected_attribute_fingerprint


def test_unset_attribute_is_filled_from_incoming() -> None:
    existing = make_record(record_id="evt-1")

    updated = merge_for_update(existing, make_record(attribute=IMAGE_Y))

    assert updated.protected_attribute == IMAGE_Y
    assert updated.attribute_kind is AttributeKind.IMAGE
    assert updated.protected_attribute_fingerprint == compute_fingerprint(
        IMAGE_Y, AttributeKind.IMAGE
    )


def test_placeholder_attribute_is_replaced() -> None:
    existing = make_record(
        attribute="linear-gradient(#fff, #000)", kind=AttributeKind.PLACEHOLDER, record_id="evt-1"
    )

    updated = merge_for_update(existing, make_record(attribute=IMAGE_Y))

    assert updated.protected_attribute == IMAGE_Y
    assert updated.attribute_kind is AttributeKind.IMAGE


def test_merge_keeps_identity_and_merges_fields() -> None:
    existing = make_record("Farmers Market", record_id="evt-1", location="Old Square")
    incoming = make_record(
        "farmers market!",
        occurs_at=BASE_TIME + timedelta(minutes=20),
        location="Main Square",
        url="https://example.org",
    )

    updated = merge_for_update(existing, incoming)

    assert updated.id == "evt-1"
    assert updated.title == "Farmers Market"
    assert updated.occurs_at == BASE_TIME
    assert updated.fields == {"location": "Main Square", "url": "https://example.org"}


def test_intra_batch_duplicates_are_skipped() -> None:
    first = make_record("Farmers Market")
    second = make_record("Farmers Market!!", occurs_at=BASE_TIME + timedelta(minutes=15))

    plan = plan_ingestion([first, second], [])

    assert [record.title for record in plan.to_insert] == ["Farmers Market"]
    assert plan.skipped_duplicates == [second]


def test_existing_row_is_claimed_once_per_batch() -> None:
    existing = make_record("Jazz Night", record_id="evt-1")
    first = make_record("Jazz Night at the Riverside")
    second = make_record("Jazz Night Live", occurs_at=BASE_TIME + timedelta(minutes=5))

    plan = plan_ingestion([first, second], [existing])

    assert [record.id for record in plan.to_update] == ["evt-1"]
    assert plan.skipped_duplicates == [second]
    assert plan.to_insert == []


def test_new_records_are_fingerprinted() -> None:
    plan = plan_ingestion([make_record("Pottery Class", attribute=IMAGE_Y)], [])

    [inserted] = plan.to_insert
    assert inserted.protected_attribute_fingerprint == compute_fingerprint(
        IMAGE_Y, AttributeKind.IMAGE
    )


def test_row_mapper_omits_unset_attribute_columns() -> None:
    row = RecordRowMapper().to_row(make_record("Pottery Class", location="Studio 4"))

    assert row["title_key"] == "pottery class"
    assert row["location"] == "Studio 4"
    assert "image_url" not in row
    assert "image_fingerprint" not in row
    assert "id" not in row


def test_row_mapper_round_trips_stored_rows() -> None:
    mapper = RecordRowMapper()
    row = {
        "id": "evt-9",
        "title": "Book Fair",
        "title_key": "book fair",
        "source": "library",
        "occurs_at": "2025-06-07T09:00:00Z",
        "image_url": IMAGE_X,
        "image_type": "image",
        "image_fingerprint": "fp",
        "location": "Hall",
    }

    record = mapper.from_row(row)

    assert record.id == "evt-9"
    assert record.occurs_at == BASE_TIME
    assert record.attribute_kind is AttributeKind.IMAGE
    assert record.protected_attribute_fingerprint == "fp"
    assert record.fields == {"location": "Hall"}


def test_ingest_preserves_stored_attribute_and_inserts_new_records() -> None:
    store = FakeStore()
    _seed(store, make_record(attribute=IMAGE_X, record_id="evt-1", fingerprint="stored-fp"))
    service = _service(store)

    summary = asyncio.run(
        service.ingest(
            [
                make_record("FARMERS MARKET", attribute=IMAGE_Y, location="Main Square"),
                make_record("Pottery Class", occurs_at=BASE_TIME + timedelta(days=1)),
            ]
        )
    )

    assert summary.ok
    assert (summary.received, summary.inserted, summary.updated, summary.skipped) == (2, 1, 1, 0)
    rows = {row["title"]: row for row in store.tables[TABLE]}
    assert rows["Farmers Market"]["image_url"] == IMAGE_X
    assert rows["Farmers Market"]["image_fingerprint"] == "stored-fp"
    assert rows["Farmers Market"]["location"] == "Main Square"
    assert rows["Pottery Class"].get("image_url") is None
    assert len(store.calls_to("delete")) == 0


def test_ingest_loads_existing_rows_per_source() -> None:
    store = FakeStore()
    service = _service(store)

    asyncio.run(
        service.ingest([make_record(source="b"), make_record("Yoga", source="a")])
    )

    assert [call.filters for call in store.calls_to("select", TABLE)] == [
        {"source": "a"},
        {"source": "b"},
    ]


def test_cross_source_ingest_loads_all_rows() -> None:
    store = FakeStore()
    _seed(store, make_record("Book Fair", source="library", record_id="evt-1", attribute=IMAGE_X))
    service = _service(store, config=IngestConfig(allow_cross_source=True))

    summary = asyncio.run(service.ingest([make_record("Book Fair", source="events-api")]))

    assert [call.filters for call in store.calls_to("select", TABLE)] == [None]
    assert (summary.inserted, summary.updated) == (0, 1)
    assert len(store.tables[TABLE]) == 1


def test_rerunning_the_same_feed_inserts_nothing_new() -> None:
    store = FakeStore()
    service = _service(store)
    feed = [make_record("Farmers Market", attribute=IMAGE_Y)]

    first = asyncio.run(service.ingest(feed))
    second = asyncio.run(service.ingest(feed))

    assert (first.inserted, first.updated) == (1, 0)
    assert (second.inserted, second.updated) == (0, 1)
    assert len(store.tables[TABLE]) == 1


def test_load_failure_persists_nothing() -> None:
    store = FakeStore()
    store.fail("select", TABLE, StoreFailure(message="permission denied", code="42501"))
    service = _service(store)

    summary = asyncio.run(service.ingest([make_record()]))

    assert not summary.ok
    assert summary.failures[0].code == ErrorCode.PERMISSION_DENIED
    assert store.calls_to("upsert") == []


def test_transient_write_failure_is_retried() -> None:
    store = FakeStore()
    store.fail("upsert", TABLE, StoreFailure(message="bad gateway", status=502))
    service = _service(store)

    summary = asyncio.run(service.ingest([make_record()]))

    assert summary.ok
    assert summary.inserted == 1
    assert len(store.calls_to("upsert", TABLE)) == 2


def test_assign_attribute_is_the_explicit_overwrite_path() -> None:
    store = FakeStore()
    stored = make_record(attribute=IMAGE_X, record_id="evt-1")
    _seed(store, stored)
    service = _service(store)

    result = asyncio.run(service.assign_attribute(stored, IMAGE_Y))

    assert result.ok
    assert result.data is not None
    assert result.data.protected_attribute == IMAGE_Y
    [row] = store.tables[TABLE]
    assert row["image_url"] == IMAGE_Y
    assert row["image_fingerprint"] == compute_fingerprint(IMAGE_Y, AttributeKind.IMAGE)


def test_assign_attribute_none_clears_all_fields() -> None:
    store = FakeStore()
    stored = make_record(attribute=IMAGE_X, record_id="evt-1")
    _seed(store, stored)

    result = asyncio.run(_service(store).assign_attribute(stored, None))

    assert result.ok
    [row] = store.tables[TABLE]
    assert (row["image_url"], row["image_type"], row["image_fingerprint"]) == (None, None, None)


def test_assign_attribute_requires_stored_record() -> None:
    with pytest.raises(ValueError, match="id"):
        asyncio.run(_service(FakeStore()).assign_attribute(make_record(), IMAGE_Y))


def test_plan_fills_attribute_only_for_rows_without_one() -> None:
    empty = make_record("Farmers Market", record_id="evt-1")
    filled = make_record("Book Fair", record_id="evt-2", attribute=IMAGE_X, fingerprint="fp-x")

    plan = plan_ingestion(
        [make_record("Farmers Market", attribute=IMAGE_Y), make_record("Book Fair", attribute=IMAGE_Y)],
        [empty, filled],
    )

    [fill] = plan.attribute_fills
    assert fill == AttributeFill(plan.to_update[0], None)
    assert fill.record.protected_attribute == IMAGE_Y


def test_placeholder_fill_expects_the_placeholder_fingerprint() -> None:
    placeholder = make_record(
        attribute="linear-gradient(#fff, #000)", kind=AttributeKind.PLACEHOLDER, record_id="evt-1"
    )

    plan = plan_ingestion([make_record(attribute=IMAGE_Y)], [placeholder])

    [fill] = plan.attribute_fills
    assert fill.expected_fingerprint == placeholder.protected_attribute_fingerprint


def test_update_rows_leave_attribute_columns_out() -> None:
    store = FakeStore()
    _seed(store, make_record(attribute=IMAGE_X, record_id="evt-1", fingerprint="stored-fp"))

    asyncio.run(_service(store).ingest([make_record(attribute=IMAGE_Y, location="Hall")]))

    [call] = store.calls_to("upsert", TABLE)
    assert isinstance(call.payload, list)
    for row in call.payload:
        assert {"image_url", "image_type", "image_fingerprint"}.isdisjoint(row)


def test_empty_attribute_is_filled_after_update() -> None:
    store = FakeStore()
    _seed(store, make_record(record_id="evt-1"))

    summary = asyncio.run(_service(store).ingest([make_record(attribute=IMAGE_Y)]))

    assert summary.ok
    assert (summary.updated, summary.attributes_filled) == (1, 1)
    [row] = store.tables[TABLE]
    assert row["image_url"] == IMAGE_Y
    assert row["image_fingerprint"] == compute_fingerprint(IMAGE_Y, AttributeKind.IMAGE)
    [fill] = store.calls_to("update", TABLE)
    assert fill.filters == {"id": "evt-1", "image_fingerprint": None}


def test_mixed_batches_are_written_in_uniform_groups() -> None:
    store = FakeStore()

    summary = asyncio.run(
        _service(store).ingest(
            [
                make_record("Yoga", attribute=IMAGE_X),
                make_record("Pottery Class", location="Studio 4"),
                make_record("Book Fair"),
            ]
        )
    )

    assert summary.inserted == 3
    calls = store.calls_to("upsert", TABLE)
    assert len(calls) == 3
    for call in calls:
        assert isinstance(call.payload, list)
        assert len({frozenset(row) for row in call.payload}) == 1


def test_assigned_attribute_survives_concurrent_update(sql_store: SqlAlchemyStore) -> None:
    service = _service(sql_store)
    image_z = "https://cdn.example.org/z.jpg"

    async def scenario() -> None:
        await service.ingest([make_record(attribute=IMAGE_X)])
        loaded = await service.load_existing({"city-feed"})
        assert loaded.data is not None
        plan = plan_ingestion([make_record(attribute=IMAGE_Y, location="Hall")], loaded.data)

        assigned = await service.assign_attribute(loaded.data[0], image_z)
        assert assigned.ok
        summary = IngestionSummary()
        await service.persist(plan, summary)
        assert summary.ok
        assert summary.updated == 1

    asyncio.run(scenario())

    stored = asyncio.run(sql_store.select_one(TABLE, filters={"title_key": "farmers market"}))
    assert stored.data is not None
    assert stored.data["image_url"] == image_z
    assert stored.data["image_fingerprint"] == compute_fingerprint(image_z, AttributeKind.IMAGE)
    assert stored.data["location"] == "Hall"


def test_assigned_attribute_wins_over_planned_fill(sql_store: SqlAlchemyStore) -> None:
    service = _service(sql_store)
    image_z = "https://cdn.example.org/z.jpg"

    async def scenario() -> IngestionSummary:
        await service.ingest([make_record()])
        loaded = await service.load_existing({"city-feed"})
        assert loaded.data is not None
        plan = plan_ingestion([make_record(attribute=IMAGE_Y)], loaded.data)
        assert len(plan.attribute_fills) == 1

        await service.assign_attribute(loaded.data[0], image_z)
        summary = IngestionSummary()
        await service.persist(plan, summary)
        return summary

    summary = asyncio.run(scenario())

    assert summary.ok
    assert summary.attributes_filled == 0
    stored = asyncio.run(sql_store.select_one(TABLE, filters={"title_key": "farmers market"}))
    assert stored.data is not None
    assert stored.data["image_url"] == image_z


def test_planned_fill_is_written_without_interference(sql_store: SqlAlchemyStore) -> None:
    service = _service(sql_store)

    asyncio.run(service.ingest([make_record()]))
    summary = asyncio.run(service.ingest([make_record(attribute=IMAGE_Y)]))

    assert summary.attributes_filled == 1
    stored = asyncio.run(sql_store.select_one(TABLE, filters={"title_key": "farmers market"}))
    assert stored.data is not None
    assert stored.data["image_url"] == IMAGE_Y
    assert stored.data["image_type"] == "image"
