"""Import API routes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from sqlalchemy.orm import Session

from crm.auth.dependencies import get_current_user_id, get_workspace_id
from crm.common.db import get_db
from crm.core.config import settings
from crm.core.errors import ValidationAPIError
from crm.imports import schemas
from crm.imports.errors import PreviewTimeoutError, UploadTooLargeError
from crm.imports.fields import FIELD_LABELS, REQUIRED_FIELDS, MatchStrategy, StudentField
from crm.imports.models import DestinationType, ImportSession
from crm.imports.parsers import ParsedTable, parse_file, parse_text
from crm.imports.progress import ImportProgress, ImportResult
from crm.imports.service import ImportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["imports"])

STRATEGY_REQUIREMENTS = {
    MatchStrategy.NAME: ["name"],
    MatchStrategy.EMAIL: ["email"],
    MatchStrategy.PHONE: ["phone"],
    MatchStrategy.EMAIL_OR_PHONE: ["email", "phone"],
}


def _status_response(session: ImportSession) -> schemas.ImportStatusResponse:
    progress = ImportProgress.from_session(session)
    result = ImportResult.from_session(
        session, error_limit=settings.import_response_error_limit
    )
    return schemas.ImportStatusResponse(
        import_id=session.id,
        status=session.phase,
        progress=schemas.ImportProgressResponse(**progress.to_dict()),
        result=schemas.ImportResultResponse(**result.to_dict()) if result else None,
    )


async def _build_preview(
    db: Session,
    workspace_id: UUID,
    user_id: UUID,
    destination_type: DestinationType,
    destination_id: UUID,
    batch_ids: list[UUID],
    parse: Callable[[], ParsedTable],
    source_name: str,
    max_rows: int | None = None,
) -> dict:
    """Parse within the preview timeout, then create the session."""
    timeout = settings.import_preview_timeout_seconds
    deadline = time.monotonic() + timeout

    try:
        parsed = await asyncio.wait_for(run_in_threadpool(parse), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Preview parsing of {source_name} exceeded {timeout}s")
        raise PreviewTimeoutError(timeout)

    if max_rows is not None and parsed.total_rows > max_rows:
        raise ValidationAPIError(
            message=f"Pasted data has {parsed.total_rows} rows; the limit is {max_rows}",
            errors=[{"field": "text", "message": f"At most {max_rows} rows"}],
            error_code="too_many_rows",
        )

    if destination_type != DestinationType.GROUP:
        batch_ids = []

    return await run_in_threadpool(
        ImportService.create_preview,
        db,
        workspace_id,
        user_id,
        destination_type.value,
        destination_id,
        parsed,
        source_name,
        batch_ids=batch_ids,
        deadline=deadline,
    )


@router.post("/preview", response_model=schemas.ImportPreviewResponse)
async def preview_upload(
    file: UploadFile = File(...),
    destination_type: DestinationType = Query(..., description="call_list or group"),
    destination_id: UUID = Query(...),
    batch_ids: list[UUID] = Query(default=[]),
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Upload a CSV/XLSX file and get headers, sample rows and suggestions."""
    file_content = await file.read()
    if len(file_content) > settings.import_max_upload_bytes:
        raise UploadTooLargeError(len(file_content), settings.import_max_upload_bytes)

    filename = file.filename or "upload"
    return await _build_preview(
        db,
        workspace_id,
        user_id,
        destination_type,
        destination_id,
        batch_ids,
        parse=lambda: parse_file(file_content, filename),
        source_name=filename,
    )


@router.post("/preview/paste", response_model=schemas.ImportPreviewResponse)
async def preview_paste(
    request: schemas.PasteImportRequest,
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Same as the upload preview, for pasted comma or tab separated text."""
    size = len(request.text.encode("utf-8"))
    if size > settings.import_max_upload_bytes:
        raise UploadTooLargeError(size, settings.import_max_upload_bytes)

    return await _build_preview(
        db,
        workspace_id,
        user_id,
        request.destination_type,
        request.destination_id,
        request.batch_ids,
        parse=lambda: parse_text(request.text),
        source_name="pasted",
        max_rows=settings.import_max_paste_rows,
    )


@router.get("/fields", response_model=schemas.ImportFieldsResponse)
async def list_fields(
    user_id: UUID = Depends(get_current_user_id),
):
    """Logical fields a column can be mapped to, and what each strategy needs."""
    fields = [
        schemas.ImportFieldInfo(
            key=field.value,
            label=FIELD_LABELS[field],
            required=field in REQUIRED_FIELDS,
        )
        for field in StudentField
    ]
    fields.insert(
        2,
        schemas.ImportFieldInfo(key="phone", label="Phone", repeatable=True),
    )
    return schemas.ImportFieldsResponse(
        fields=fields,
        match_strategies=[
            schemas.MatchStrategyInfo(value=strategy, requires=requires)
            for strategy, requires in STRATEGY_REQUIREMENTS.items()
        ],
    )


@router.get("", response_model=list[schemas.ImportSessionSummary])
async def list_imports(
    limit: int = Query(50, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Recent import sessions of the current user."""
    sessions = ImportService.list_sessions(db, workspace_id, user_id, limit=limit)
    return [
        schemas.ImportSessionSummary(
            import_id=s.id,
            destination_type=s.destination_type,
            destination_id=s.destination_id,
            source_name=s.source_name,
            source_format=s.source_format,
            status=s.phase,
            total_rows=s.total_rows,
            processed_rows=s.processed_rows,
            created_at=s.created_at,
            completed_at=s.completed_at,
        )
        for s in sessions
    ]


@router.post("/commit", response_model=schemas.ImportStatusResponse)
async def start_commit(
    request: schemas.CommitImportRequest,
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Confirm the mapping and start the chunked commit."""
    session = ImportService.start_commit(
        db,
        request.import_id,
        workspace_id,
        column_mapping=request.column_mapping,
        match_by=request.match_by,
        create_new_students=request.create_new_students,
        skip_duplicates=request.skip_duplicates,
    )
    return _status_response(session)


@router.post("/commit/process", response_model=schemas.ImportStatusResponse)
async def process_chunk(
    request: schemas.ProcessChunkRequest,
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Process the next chunk; call repeatedly until status is COMPLETED or FAILED."""
    session = await run_in_threadpool(
        ImportService.process_chunk,
        db,
        request.import_id,
        workspace_id,
        request.chunk_size,
    )
    return _status_response(session)


@router.get("/{import_id}", response_model=schemas.ImportStatusResponse)
async def get_import(
    import_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Current progress, plus the result once finished."""
    session = ImportService.get_session(db, import_id, workspace_id)
    return _status_response(session)


@router.post("/{import_id}/matching-stats", response_model=schemas.MatchingStatsResponse)
async def matching_stats(
    import_id: UUID,
    request: schemas.MatchingStatsRequest,
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Re-project match/create/skip counts for a different mapping."""
    stats = await run_in_threadpool(
        ImportService.matching_stats,
        db,
        import_id,
        workspace_id,
        request.column_mapping,
        request.match_by,
        skip_duplicates=request.skip_duplicates,
        create_new_students=request.create_new_students,
    )
    return schemas.MatchingStatsResponse(**stats.to_dict())


@router.get("/{import_id}/errors")
async def download_errors(
    import_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    workspace_id: UUID = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Download the stored per-row errors as CSV."""
    session = ImportService.get_session(db, import_id, workspace_id)
    return Response(
        content=ImportService.error_report_csv(session),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="import-{import_id}-errors.csv"'
        },
    )
