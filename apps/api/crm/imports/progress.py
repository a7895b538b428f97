"""Read-only snapshots of an import session's progress and outcome."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from crm.imports.models import FINISHED_PHASES, ImportPhase, ImportSession


class ImportOutcome:
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportProgress:
    phase: str
    total_rows: int
    processed_rows: int
    matched: int
    created: int
    added: int
    duplicates: int
    errors: int
    percent: float
    updated_at: Optional[datetime]

    @classmethod
    def from_session(cls, session: ImportSession) -> "ImportProgress":
        total = session.total_rows or 0
        processed = session.processed_rows or 0
        if total:
            percent = round(processed * 100.0 / total, 1)
        else:
            percent = 100.0 if session.phase in FINISHED_PHASES else 0.0
        return cls(
            phase=session.phase,
            total_rows=total,
            processed_rows=processed,
            matched=session.matched,
            created=session.created,
            added=session.added,
            duplicates=session.duplicates,
            errors=session.errors,
            percent=percent,
            updated_at=session.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImportResult:
    """Final summary, available once the session is COMPLETED or FAILED."""

    message: str
    outcome: str
    stats: dict[str, int]
    errors: list[str]
    error_count: int
    failure_reason: Optional[str] = None

    @staticmethod
    def classify(added: int, errors: int, phase: str) -> str:
        """`success` without errors, `partial` if anything was added, else `failed`."""
        if phase == ImportPhase.FAILED.value:
            return ImportOutcome.FAILED
        if errors == 0:
            return ImportOutcome.SUCCESS
        if added > 0:
            return ImportOutcome.PARTIAL
        return ImportOutcome.FAILED

    @classmethod
    def from_session(
        cls, session: ImportSession, error_limit: Optional[int] = None
    ) -> Optional["ImportResult"]:
        if session.phase not in FINISHED_PHASES:
            return None

        stats = {
            "matched": session.matched,
            "created": session.created,
            "added": session.added,
            "duplicates": session.duplicates,
            "errors": session.errors,
        }
        row_errors = session.row_errors or []
        if error_limit is not None:
            row_errors = row_errors[:error_limit]

        if session.phase == ImportPhase.FAILED.value:
            message = f"Import failed: {session.failure_reason or 'unknown error'}"
        else:
            message = (
                f"Import completed: {stats['matched']} matched, "
                f"{stats['created']} created, {stats['added']} added, "
                f"{stats['duplicates']} duplicates, {stats['errors']} errors"
            )

        return cls(
            message=message,
            outcome=cls.classify(session.added, session.errors, session.phase),
            stats=stats,
            errors=[f"Row {e['row']}: {e['message']}" for e in row_errors],
            error_count=session.errors,
            failure_reason=session.failure_reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
