"""Import service layer: preview, commit start and chunked processing."""

from __future__ import annotations

import io
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import pandas as pd
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.core.business_metrics import BusinessMetric
from crm.core.config import settings
from crm.core.errors import APIError, NotFoundError, ValidationAPIError
from crm.core.metrics_service import MetricsService
from crm.imports.errors import (
    EmptyImportError,
    ImportExpiredError,
    ImportStateError,
    OrchestratorFault,
    PreviewTimeoutError,
)
from crm.imports.fields import MatchStrategy
from crm.imports.mappers import suggest_column_mapping, suggest_mappings
from crm.imports.matching import MatchingStats, project_matching_stats
from crm.imports.models import ImportPhase, ImportSession
from crm.imports.parsers import ParsedTable
from crm.imports.processors import (
    RowOutcome,
    StudentRowProcessor,
    load_destination,
)
from crm.imports.validators import (
    allowed_match_strategies,
    parse_mapping,
    resolve_match_strategy,
    validate_mapping,
)

logger = logging.getLogger(__name__)

PREVIEW_MESSAGE = (
    "File parsed successfully. Review the preview and column mapping before committing."
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ImportService:
    """Service for managing import sessions."""

    @staticmethod
    def clamp_chunk_size(chunk_size: Optional[int]) -> int:
        """Default when unset, never above the configured maximum."""
        if not chunk_size:
            chunk_size = settings.import_default_chunk_size
        return max(1, min(chunk_size, settings.import_max_chunk_size))

    @staticmethod
    def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
        """
        Delete sessions whose retention window ended a full window ago.

        Sessions that are past `expires_at` but not yet purged still answer
        with ImportExpiredError instead of a plain not-found.
        """
        now = now or _utcnow()
        cutoff = now - timedelta(minutes=settings.import_retention_minutes)
        result = db.execute(
            delete(ImportSession)
            .where(ImportSession.expires_at < cutoff)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired import sessions")
        return result.rowcount or 0

    @staticmethod
    def get_session(
        db: Session,
        import_id: UUID,
        workspace_id: UUID,
        lock: bool = False,
    ) -> ImportSession:
        """
        Load a session of the workspace.

        Args:
            db: Database session
            import_id: Import session ID
            workspace_id: Workspace ID
            lock: Take a row lock (SELECT ... FOR UPDATE) for the transaction

        Raises:
            NotFoundError: No such session in the workspace
            ImportExpiredError: Session is past its expiry
        """
        query = select(ImportSession).where(
            ImportSession.id == import_id,
            ImportSession.workspace_id == workspace_id,
        )
        if lock:
            query = query.with_for_update()
            # Another transaction may have moved the cursor since this
            # session last read the row
            query = query.execution_options(populate_existing=True)

        session = db.execute(query).scalar_one_or_none()
        if session is None:
            raise NotFoundError("Import", str(import_id))

        if _as_aware(session.expires_at) < _utcnow():
            raise ImportExpiredError(import_id)

        return session

    @staticmethod
    def create_preview(
        db: Session,
        workspace_id: UUID,
        user_id: UUID,
        destination_type: str,
        destination_id: UUID,
        parsed: ParsedTable,
        source_name: str,
        batch_ids: Optional[list[UUID]] = None,
        deadline: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Create an import session and return its preview.

        Args:
            db: Database session
            workspace_id: Workspace ID
            user_id: User ID
            destination_type: "call_list" or "group"
            destination_id: Call list or group ID
            parsed: Parsed upload
            source_name: Original filename, or "pasted"
            batch_ids: Batches to attach (group destination only)
            deadline: `time.monotonic()` value after which no session is created

        Returns:
            Preview data with sample rows, suggestions and projected stats
        """
        if not parsed.headers or not parsed.rows:
            raise EmptyImportError()

        destination = load_destination(
            db, workspace_id, destination_type, destination_id, batch_ids
        )

        headers = parsed.distinct_headers
        suggestions = suggest_column_mapping(headers)
        mapping = parse_mapping(suggestions)
        match_by = resolve_match_strategy(mapping, MatchStrategy.EMAIL_OR_PHONE)

        stats = project_matching_stats(
            db,
            workspace_id,
            destination,
            parsed.rows,
            mapping,
            match_by,
            deadline=deadline,
        )

        if deadline is not None and time.monotonic() > deadline:
            raise PreviewTimeoutError(settings.import_preview_timeout_seconds)

        now = _utcnow()
        ImportService.purge_expired(db, now)

        session = ImportSession(
            id=uuid4(),
            workspace_id=workspace_id,
            user_id=user_id,
            destination_type=destination_type,
            destination_id=destination_id,
            batch_ids=[str(b) for b in (batch_ids or [])],
            source_name=source_name,
            source_format=parsed.format.value,
            headers=headers,
            source_rows=parsed.rows,
            phase=ImportPhase.READY.value,
            total_rows=parsed.total_rows,
            expires_at=now + timedelta(minutes=settings.import_session_ttl_minutes),
        )
        db.add(session)
        db.commit()

        logger.info(
            f"Import preview created: {session.id} ({session.total_rows} rows)",
            extra={"import_id": str(session.id), "destination_type": destination_type},
        )
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_PREVIEWED,
            workspace_id,
            user_id,
            destination_type=destination_type,
        )

        return {
            "import_id": session.id,
            "headers": headers,
            "preview_rows": parsed.rows[: settings.import_preview_rows],
            "total_rows": parsed.total_rows,
            "suggestions": suggestions,
            "suggested_match_by": match_by.value,
            "allowed_match_by": [s.value for s in allowed_match_strategies(mapping)],
            "mapping_candidates": suggest_mappings(headers),
            "matching_stats": stats.to_dict(),
            "message": PREVIEW_MESSAGE,
        }

    @staticmethod
    def matching_stats(
        db: Session,
        import_id: UUID,
        workspace_id: UUID,
        column_mapping: dict[str, Optional[str]],
        match_by: MatchStrategy,
        skip_duplicates: bool = True,
        create_new_students: bool = True,
    ) -> MatchingStats:
        """Re-project match stats for a user-selected mapping. Read-only."""
        session = ImportService.get_session(db, import_id, workspace_id)

        mapping = parse_mapping(column_mapping)
        validate_mapping(mapping, match_by, session.headers)

        destination = load_destination(
            db,
            workspace_id,
            session.destination_type,
            session.destination_id,
            session.batch_ids,
        )
        return project_matching_stats(
            db,
            workspace_id,
            destination,
            session.source_rows,
            mapping,
            match_by,
            skip_duplicates=skip_duplicates,
            create_new_students=create_new_students,
        )

    @staticmethod
    def start_commit(
        db: Session,
        import_id: UUID,
        workspace_id: UUID,
        column_mapping: dict[str, Optional[str]],
        match_by: MatchStrategy,
        create_new_students: bool = True,
        skip_duplicates: bool = True,
    ) -> ImportSession:
        """
        Validate the confirmed mapping and move the session to PROCESSING.

        Sessions without rows complete immediately.

        Raises:
            ImportStateError: Session is not READY
            ValidationAPIError: Mapping or match strategy is invalid
        """
        session = ImportService.get_session(db, import_id, workspace_id, lock=True)
        if session.phase != ImportPhase.READY.value:
            raise ImportStateError(import_id, session.phase, ImportPhase.READY.value)

        try:
            mapping = parse_mapping(column_mapping)
            validate_mapping(mapping, match_by, session.headers)
        except ValidationAPIError as e:
            MetricsService.emit_import_metric(
                BusinessMetric.IMPORT_VALIDATION_ERROR,
                workspace_id,
                session.user_id,
                destination_type=session.destination_type,
                error_code=e.error_code,
            )
            raise

        now = _utcnow()
        session.column_mapping = mapping.to_dict()
        session.match_by = match_by.value
        session.create_new_students = create_new_students
        session.skip_duplicates = skip_duplicates
        session.started_at = now
        session.expires_at = now + timedelta(minutes=settings.import_retention_minutes)

        if session.total_rows == 0:
            session.phase = ImportPhase.COMPLETED.value
            session.completed_at = now
        else:
            session.phase = ImportPhase.PROCESSING.value

        db.commit()

        logger.info(
            f"Import commit started: {session.id} match_by={match_by.value}",
            extra={"import_id": str(session.id)},
        )
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_STARTED,
            workspace_id,
            session.user_id,
            destination_type=session.destination_type,
        )
        return session

    @staticmethod
    def _mark_failed(db: Session, import_id: UUID, workspace_id: UUID, reason: str) -> None:
        """Record a fault in its own transaction."""
        try:
            session = db.execute(
                select(ImportSession)
                .where(
                    ImportSession.id == import_id,
                    ImportSession.workspace_id == workspace_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if session is None or session.is_finished:
                db.rollback()
                return
            now = _utcnow()
            session.phase = ImportPhase.FAILED.value
            session.failure_reason = reason
            session.completed_at = now
            session.expires_at = now + timedelta(minutes=settings.import_retention_minutes)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Could not mark import {import_id} as failed")
            return

        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_FAILED,
            workspace_id,
            session.user_id,
            destination_type=session.destination_type,
        )

    @staticmethod
    def process_chunk(
        db: Session,
        import_id: UUID,
        workspace_id: UUID,
        chunk_size: Optional[int] = None,
    ) -> ImportSession:
        """
        Process the next chunk of unprocessed rows.

        Rows `[processed_rows, processed_rows + chunk_size)` are processed in
        file order and committed with the counters in one transaction. A
        finished session is returned unchanged.

        Raises:
            ImportStateError: Commit was never started
            OrchestratorFault: Storage failed mid-chunk; the session is FAILED
        """
        size = ImportService.clamp_chunk_size(chunk_size)
        session = ImportService.get_session(db, import_id, workspace_id, lock=True)

        if session.is_finished:
            db.rollback()
            return session
        if session.phase != ImportPhase.PROCESSING.value:
            raise ImportStateError(import_id, session.phase, ImportPhase.PROCESSING.value)

        if session.chunk_calls >= settings.import_max_chunk_calls:
            db.rollback()
            logger.error(f"Import {import_id} exceeded {settings.import_max_chunk_calls} chunk calls")
            ImportService._mark_failed(
                db, import_id, workspace_id, "Exceeded the maximum number of chunk calls"
            )
            return ImportService.get_session(db, import_id, workspace_id)

        start = session.processed_rows
        end = min(start + size, session.total_rows)

        try:
            destination = load_destination(
                db,
                workspace_id,
                session.destination_type,
                session.destination_id,
                session.batch_ids,
            )
            processor = StudentRowProcessor(
                db,
                workspace_id,
                destination,
                mapping=parse_mapping(session.column_mapping or {}),
                match_by=MatchStrategy(session.match_by),
                create_new_students=session.create_new_students,
                skip_duplicates=session.skip_duplicates,
            )

            counts = {outcome: 0 for outcome in RowOutcome}
            added = 0
            new_errors = []
            for idx in range(start, end):
                result = processor.process_row(session.source_rows[idx])
                counts[result.outcome] += 1
                if result.attached and result.outcome in (RowOutcome.MATCHED, RowOutcome.CREATED):
                    added += 1
                if result.outcome == RowOutcome.ERROR:
                    # Header is line 1 of the file
                    new_errors.append({"row": idx + 2, "message": result.message})

            now = _utcnow()
            session.processed_rows = end
            session.matched += counts[RowOutcome.MATCHED]
            session.created += counts[RowOutcome.CREATED]
            session.duplicates += counts[RowOutcome.DUPLICATE]
            session.errors += counts[RowOutcome.ERROR]
            session.added += added
            if new_errors:
                room = settings.import_max_stored_errors - len(session.row_errors or [])
                if room > 0:
                    session.row_errors = list(session.row_errors or []) + new_errors[:room]
            session.chunk_calls += 1
            session.expires_at = now + timedelta(minutes=settings.import_retention_minutes)
            if end >= session.total_rows:
                session.phase = ImportPhase.COMPLETED.value
                session.completed_at = now

            db.commit()
        except (SQLAlchemyError, APIError) as e:
            db.rollback()
            reason = getattr(e, "message", None) or type(e).__name__
            logger.error(
                f"Import {import_id} failed while processing rows {start}-{end}: {e}",
                exc_info=True,
            )
            ImportService._mark_failed(db, import_id, workspace_id, reason)
            raise OrchestratorFault(import_id, reason) from e

        logger.info(
            f"Import {import_id} processed rows {start + 2}-{end + 1}",
            extra={"import_id": str(import_id), "chunk_size": size},
        )
        MetricsService.emit_import_metric(
            BusinessMetric.IMPORT_ROWS_PROCESSED,
            workspace_id,
            session.user_id,
            destination_type=session.destination_type,
            rows_processed=end - start,
        )
        MetricsService.emit_data_quality_metric(
            BusinessMetric.DUPLICATE_DETECTED,
            workspace_id,
            count=counts[RowOutcome.DUPLICATE],
        )
        if session.phase == ImportPhase.COMPLETED.value:
            MetricsService.emit_import_metric(
                BusinessMetric.IMPORT_COMPLETED,
                workspace_id,
                session.user_id,
                destination_type=session.destination_type,
                errors=session.errors,
            )
        return session

    @staticmethod
    def list_sessions(
        db: Session, workspace_id: UUID, user_id: UUID, limit: int = 50
    ) -> list[ImportSession]:
        """Most recent sessions of the user, newest first."""
        return list(
            db.execute(
                select(ImportSession)
                .where(
                    ImportSession.workspace_id == workspace_id,
                    ImportSession.user_id == user_id,
                )
                .order_by(ImportSession.created_at.desc())
                .limit(limit)
            ).scalars()
        )

    @staticmethod
    def error_report_csv(session: ImportSession) -> bytes:
        """Per-row errors as a `row,message` CSV."""
        frame = pd.DataFrame(session.row_errors or [], columns=["row", "message"])
        buffer = io.BytesIO()
        frame.to_csv(buffer, index=False, encoding="utf-8")
        return buffer.getvalue()
