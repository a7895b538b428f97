"""Command-line driver for running an import without the HTTP layer."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from crm.common.db import SessionLocal
from crm.core.config import settings
from crm.core.errors import APIError
from crm.core.log_setup import setup_logging
from crm.imports.fields import MatchStrategy
from crm.imports.parsers import parse_file
from crm.imports.progress import ImportProgress, ImportResult
from crm.imports.service import ImportService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crm-import",
        description="Import students from a CSV/XLSX file into a call list or group.",
    )
    parser.add_argument("file", type=Path, help="CSV, XLSX or XLS file")
    parser.add_argument(
        "--destination-type", choices=["call_list", "group"], required=True
    )
    parser.add_argument("--destination-id", type=UUID, required=True)
    parser.add_argument("--user-id", type=UUID, required=True)
    parser.add_argument(
        "--batch-id",
        dest="batch_ids",
        type=UUID,
        action="append",
        default=[],
        help="Batch to attach students to (group destination; repeatable)",
    )
    parser.add_argument(
        "--map",
        dest="mappings",
        action="append",
        default=[],
        metavar="FIELD=COLUMN",
        help="Override a suggested mapping, e.g. --map phone.1=Mobile",
    )
    parser.add_argument(
        "--match-by",
        choices=[s.value for s in MatchStrategy],
        default=None,
        help="Defaults to the suggested strategy",
    )
    parser.add_argument("--no-create", action="store_true", help="Only match existing students")
    parser.add_argument(
        "--keep-duplicates",
        action="store_true",
        help="Update students already in the destination instead of skipping them",
    )
    parser.add_argument("--chunk-size", type=int, default=None)
    return parser


def parse_overrides(pairs: Sequence[str]) -> dict[str, str]:
    """`FIELD=COLUMN` pairs to a mapping dict."""
    overrides = {}
    for pair in pairs:
        field, sep, column = pair.partition("=")
        if not sep or not field.strip():
            raise ValueError(f"Expected FIELD=COLUMN, got {pair!r}")
        overrides[field.strip()] = column.strip()
    return overrides


def run_import(db: Session, args: argparse.Namespace, workspace_id: UUID) -> ImportResult:
    """Preview, commit and process chunks until the session finishes."""
    content = args.file.read_bytes()
    parsed = parse_file(content, args.file.name)

    preview = ImportService.create_preview(
        db,
        workspace_id,
        args.user_id,
        args.destination_type,
        args.destination_id,
        parsed,
        args.file.name,
        batch_ids=args.batch_ids if args.destination_type == "group" else None,
    )
    stats = preview["matching_stats"]
    print(
        f"Parsed {preview['total_rows']} rows: {stats['will_match']} to match, "
        f"{stats['will_create']} to create, {stats['will_skip']} to skip"
    )

    mapping = dict(preview["suggestions"])
    mapping.update(parse_overrides(args.mappings))
    match_by = MatchStrategy(args.match_by or preview["suggested_match_by"])

    session = ImportService.start_commit(
        db,
        preview["import_id"],
        workspace_id,
        column_mapping=mapping,
        match_by=match_by,
        create_new_students=not args.no_create,
        skip_duplicates=not args.keep_duplicates,
    )

    # The chunk-call cap ends the loop by failing the session
    while not session.is_finished:
        session = ImportService.process_chunk(
            db, session.id, workspace_id, args.chunk_size
        )
        progress = ImportProgress.from_session(session)
        print(f"{progress.processed_rows}/{progress.total_rows} rows ({progress.percent}%)")

    return ImportResult.from_session(session, error_limit=settings.import_response_error_limit)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(stream=sys.stderr)

    db = SessionLocal()
    try:
        result = run_import(db, args, UUID(settings.workspace_id))
    except (APIError, ValueError, OSError) as e:
        logger.error(f"Import failed: {getattr(e, 'message', e)}")
        return 1
    finally:
        db.close()

    print(result.message)
    for error in result.errors:
        print(f"  {error}")
    return 0 if result.outcome != "failed" else 2


if __name__ == "__main__":
    sys.exit(main())
