from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from holdfast.config import IngestConfig
from holdfast.domain.ingestion import IngestionSummary
from holdfast.domain.model import (
    DeletionPlan,
    DeletionResult,
    DeletionStage,
    ErrorCode,
    OperationError,
    OwnedEntityPolicy,
)
from holdfast.ui import cli

if TYPE_CHECKING:
    from pathlib import Path

    from holdfast.domain.model import ExternalRecord


def _fake_delete(
    captured: dict[str, object], *, success: bool = True
) -> object:
    def fake(plan: DeletionPlan, **kwargs: object) -> DeletionResult:
        captured["plan"] = plan
        captured.update(kwargs)
        stage = DeletionStage.DONE if success else DeletionStage.FAILED
        return DeletionResult(user_id=plan.user_id, success=success, stage=stage)

    return fake


def test_delete_user_defaults_to_soft_delete(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(cli, "delete_user_account", _fake_delete(captured))

    cli.main(["delete-user", "--user-id", "u1"])

    assert captured["plan"] == DeletionPlan(user_id="u1")
    assert captured["local"] is False


def test_delete_user_with_hard_delete_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(cli, "delete_user_account", _fake_delete(captured))

    cli.main(
        [
            "--local",
            "delete-user",
            "--user-id",
            "u1",
            "--email",
            "ada@example.com",
            "--hard",
            "--entity-id",
            "p1",
            "--entity-id",
            "p2",
        ]
    )

    assert captured["plan"] == DeletionPlan(
        user_id="u1",
        user_email="ada@example.com",
        owned_entity_policy=OwnedEntityPolicy.HARD_DELETE,
        specific_entity_ids=frozenset({"p1", "p2"}),
    )
    assert captured["local"] is True


def test_entity_ids_require_hard_delete(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "delete_user_account", _fake_delete({}))

    with pytest.raises(SystemExit) as exc:
        cli.main(["delete-user", "--user-id", "u1", "--entity-id", "p1"])

    assert exc.value.code == 2


def test_blank_user_id_is_a_validation_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "delete_user_account", _fake_delete({}))

    with pytest.raises(SystemExit) as exc:
        cli.main(["delete-user", "--user-id", "  "])

    assert exc.value.code == 2


def test_failed_identity_deletion_exits_non_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "delete_user_account", _fake_delete({}, success=False))

    with pytest.raises(SystemExit) as exc:
        cli.main(["delete-user", "--user-id", "u1"])

    assert exc.value.code == 1


def test_unexpected_errors_exit_non_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(plan: DeletionPlan, **_: object) -> DeletionResult:
        raise RuntimeError(f"boom for {plan.user_id}")

    monkeypatch.setattr(cli, "delete_user_account", broken)

    with pytest.raises(SystemExit) as exc:
        cli.main(["delete-user", "--user-id", "u1"])

    assert exc.value.code == 1


def test_ingest_loads_feed_and_passes_options(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    feed = tmp_path / "feed.jsonl"
    feed.write_text(
        json.dumps({"title": "Yoga", "start": "2025-06-08T09:00:00Z"}) + "\n", encoding="utf-8"
    )
    captured: dict[str, object] = {}

    def fake_ingest(records: list[ExternalRecord], **kwargs: object) -> IngestionSummary:
        captured["records"] = records
        captured.update(kwargs)
        return IngestionSummary(received=len(records), inserted=len(records))

    monkeypatch.setattr(cli, "ingest_feed", fake_ingest)

    cli.main(["ingest", "--file", str(feed), "--source", "city-feed", "--cross-source"])

    records = captured["records"]
    assert isinstance(records, list)
    assert [record.source for record in records] == ["city-feed"]
    config = captured["config"]
    assert isinstance(config, IngestConfig)
    assert config.allow_cross_source


def test_ingest_failures_exit_non_zero(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    feed = tmp_path / "feed.jsonl"
    feed.write_text(
        json.dumps({"title": "Yoga", "start": "2025-06-08T09:00:00Z"}) + "\n", encoding="utf-8"
    )

    def fake_ingest(records: list[ExternalRecord], **_: object) -> IngestionSummary:
        error = OperationError(
            code=ErrorCode.CONNECTION_ERROR, message="pool exhausted", retryable=True, attempts=4
        )
        return IngestionSummary(received=len(records), failures=[error])

    monkeypatch.setattr(cli, "ingest_feed", fake_ingest)

    with pytest.raises(SystemExit) as exc:
        cli.main(["ingest", "--file", str(feed), "--source", "city-feed"])

    assert exc.value.code == 1


def test_unreadable_feed_exits_non_zero(tmp_path: Path) -> None:
    feed = tmp_path / "feed.jsonl"
    feed.write_text("{broken\n", encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        cli.main(["ingest", "--file", str(feed), "--source", "city-feed"])

    assert exc.value.code == 1


def test_unresolved_owned_entities_exit_non_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    def partial(plan: DeletionPlan, **_: object) -> DeletionResult:
        return DeletionResult(
            user_id=plan.user_id,
            success=True,
            stage=DeletionStage.DONE,
            requires_owned_reconciliation=True,
        )

    monkeypatch.setattr(cli, "delete_user_account", partial)

    with pytest.raises(SystemExit) as exc:
        cli.main(["delete-user", "--user-id", "u1"])

    assert exc.value.code == 1
