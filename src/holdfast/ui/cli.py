from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from holdfast.adapters.feed import load_feed
from holdfast.app import delete_user_account, ingest_feed
from holdfast.common.logging import configure_logging
from holdfast.config import get_ingest_config
from holdfast.domain.model import DeletionPlan, OwnedEntityPolicy

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep the holdfast data store consistent")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Use the local SQL database instead of the remote store",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every store attempt",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    delete_user = subparsers.add_parser("delete-user", help="Delete a user account")
    delete_user.add_argument(
        "--user-id",
        type=str,
        required=True,
        help="Id of the user to delete",
    )
    delete_user.add_argument(
        "--email",
        type=str,
        help="Email of the user (looked up from the profile when omitted)",
    )
    delete_user.add_argument(
        "--hard",
        action="store_true",
        help="Hard delete owned businesses instead of detaching them",
    )
    delete_user.add_argument(
        "--entity-id",
        dest="entity_ids",
        action="append",
        default=[],
        help="Owned business to hard delete (repeatable, requires --hard)",
    )

    ingest = subparsers.add_parser("ingest", help="Ingest a JSON-lines event feed")
    ingest.add_argument(
        "--file",
        type=Path,
        required=True,
        help="Path to the JSON-lines feed",
    )
    ingest.add_argument(
        "--source",
        type=str,
        help="Source name for feed entries that do not carry one",
    )
    ingest.add_argument(
        "--cross-source",
        action="store_true",
        help="Match records across different sources",
    )

    return parser.parse_args(list(argv))


def _build_plan(args: argparse.Namespace) -> DeletionPlan:
    if args.entity_ids and not args.hard:
        raise ValueError("--entity-id requires --hard")
    return DeletionPlan(
        user_id=args.user_id,
        user_email=args.email,
        owned_entity_policy=(
            OwnedEntityPolicy.HARD_DELETE if args.hard else OwnedEntityPolicy.SOFT_DELETE
        ),
        specific_entity_ids=frozenset(args.entity_ids),
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    configure_logging()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    plan: DeletionPlan | None = None
    try:
        parsed_args = _parse_args(args_list)
        if parsed_args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        if parsed_args.command == "delete-user":
            plan = _build_plan(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "delete-user" and plan is not None:
            result = delete_user_account(plan, local=parsed_args.local)
            if not result.success:
                log.error(
                    "Deletion of %s did not complete (stage=%s), manual reconciliation needed",
                    plan.user_id,
                    result.stage,
                )
                sys.exit(1)
            if result.requires_owned_reconciliation:
                log.error("Owned businesses of %s need manual reconciliation", plan.user_id)
                sys.exit(1)
        elif parsed_args.command == "ingest":
            records = load_feed(parsed_args.file, source=parsed_args.source)
            summary = ingest_feed(
                records,
                config=get_ingest_config(allow_cross_source=parsed_args.cross_source),
                local=parsed_args.local,
            )
            if not summary.ok:
                log.error("Ingestion finished with %s failed writes", len(summary.failures))
                sys.exit(1)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()
