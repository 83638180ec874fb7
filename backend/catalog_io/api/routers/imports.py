"""Endpoints for catalog upload, processing and tracking."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_io.api.dependencies.auth import get_current_user
from catalog_io.api.dependencies.db import get_session, get_storage
from catalog_io.api.dependencies.security import api_rate_limit, upload_rate_limit, verify_origin
from catalog_io.api.routers.job_helpers import serialize_import_job, serialize_row_error
from catalog_io.api.schemas.imports import (
    CancelRequest,
    DetectColumnsRequest,
    DetectColumnsResponse,
    ProcessRequest,
    ProcessResult,
    UploadList,
    UploadResponse,
)
from catalog_io.api.schemas.job import ImportJobOut, ImportStatusOut, RowErrorPage
from catalog_io.core.config import get_settings
from catalog_io.core.errors import (
    ConcurrentUpdateError,
    FileRejectedError,
    JobFatalError,
    JobNotFoundError,
    JobStateError,
    ParseError,
    StorageError,
    TemplateNotFoundError,
)
from catalog_io.db.models import ImportJob, JobStatus
from catalog_io.services import job_store
from catalog_io.services.column_mapper import suggest_mapping
from catalog_io.services.import_pipeline import IMPORTS_BUCKET, ImportOptions, run_import
from catalog_io.services.product_schema import FIELD_NAMES
from catalog_io.services.upload_validation import check_upload
from catalog_io.storage.object_store import ObjectStore
from catalog_io.utils.sanitize import normalize_header
from catalog_io.workers.tasks.process_import import process_import_task

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_origin), Depends(api_rate_limit)])


def _load_job(db: Session, upload_id: str, owner_id: str) -> ImportJob:
    try:
        return job_store.get_import_job(db, upload_id, owner_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload not found") from exc


def _options(payload: ProcessRequest) -> ImportOptions:
    opts = payload.options
    return ImportOptions(
        batch_size=opts.batch_size,
        max_rows=opts.max_rows,
        column_mapping=opts.column_mapping,
        template_id=opts.template_id,
        auto_detect=opts.auto_detect,
    )


@router.post(
    "/upload",
    summary="Upload a catalog file",
    response_model=UploadResponse,
    dependencies=[Depends(upload_rate_limit)],
)
async def upload_file(
    file: UploadFile = File(...),
    upload_type: str = Form("products", alias="uploadType"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
    storage: ObjectStore = Depends(get_storage),
) -> UploadResponse:
    """Store the file and create an ``uploaded`` job; parsing is deferred to processing."""
    settings = get_settings()
    data = await file.read(settings.max_upload_bytes + 1)
    try:
        accepted = check_upload(
            file.filename,
            file.content_type,
            data,
            upload_type=upload_type,
            max_bytes=settings.max_upload_bytes,
            xlsx_text_fallback=settings.xlsx_text_fallback,
        )
    except FileRejectedError as exc:
        logger.warning(f"Rejected upload {file.filename!r} from {owner_id}: {exc}")
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    storage_path = f"{owner_id}/{timestamp}_{accepted.safe_name}"
    try:
        storage.upload(IMPORTS_BUCKET, storage_path, data)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file to storage",
        ) from exc

    try:
        job = job_store.create_import_job(
            db,
            owner_id=owner_id,
            original_name=accepted.original_name,
            file_name=storage_path,
            storage_path=storage_path,
            file_type=accepted.file_type,
            mime_type=accepted.mime_type,
            file_size=accepted.size,
            upload_type=upload_type,
            status=JobStatus.UPLOADED.value,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database error creating import job: {exc}", exc_info=True)
        storage.remove(IMPORTS_BUCKET, storage_path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create file record",
        ) from exc

    logger.info(f"Created import job {job.id} for file {accepted.original_name}")
    return UploadResponse(upload=serialize_import_job(job))


@router.get("/uploads", summary="List recent uploads", response_model=UploadList)
def list_uploads(
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> UploadList:
    jobs = job_store.list_recent_imports(db, owner_id, limit=10)
    return UploadList(uploads=[serialize_import_job(job) for job in jobs])


@router.post("/process", summary="Parse, validate and import an upload", response_model=ProcessResult)
def process_upload(
    payload: ProcessRequest,
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
    storage: ObjectStore = Depends(get_storage),
) -> ProcessResult:
    """Run the import synchronously and return the summary."""
    job = _load_job(db, payload.upload_id, owner_id)
    try:
        summary = run_import(db, job, _options(payload), storage=storage)
    except ParseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Failed to parse file: {exc}") from exc
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (JobStateError, ConcurrentUpdateError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except JobFatalError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return ProcessResult(
        total_records=summary.total_records,
        processed_records=summary.processed_records,
        success_count=summary.success_count,
        error_count=summary.error_count,
        has_errors=summary.has_errors,
        cancelled=summary.cancelled,
        sample_errors=summary.sample_errors,
    )


@router.post(
    "/process/async",
    summary="Queue an upload for background processing",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobOut,
)
def enqueue_processing(
    payload: ProcessRequest,
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> ImportJobOut:
    job = _load_job(db, payload.upload_id, owner_id)
    if job.status != JobStatus.UPLOADED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Upload is already {job.status}",
        )
    try:
        process_import_task.apply_async(
            args=(job.id, _options(payload).as_dict()),
            queue="imports",
        )
    except Exception as exc:
        logger.error(f"Error enqueueing import task for {job.id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start import process",
        ) from exc

    logger.info(f"Queued import job {job.id}")
    return serialize_import_job(job)


@router.post("/cancel", summary="Cancel an upload or a running import", response_model=ImportJobOut)
def cancel_import(
    payload: CancelRequest,
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> ImportJobOut:
    job = _load_job(db, payload.upload_id, owner_id)
    try:
        job = job_store.request_cancel(db, job)
    except (JobStateError, ConcurrentUpdateError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return serialize_import_job(job)


@router.get("/status", summary="Import progress and first row errors", response_model=ImportStatusOut)
def import_status(
    upload_id: str = Query(..., alias="uploadId"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> ImportStatusOut:
    job = _load_job(db, upload_id, owner_id)
    errors = job_store.get_row_errors(db, job.id, limit=get_settings().sample_error_limit)
    return ImportStatusOut(
        job=serialize_import_job(job),
        errors=[serialize_row_error(error) for error in errors],
    )


@router.get("/errors", summary="Paginated row errors for an import", response_model=RowErrorPage)
def import_errors(
    upload_id: str = Query(..., alias="uploadId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500, alias="pageSize"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> RowErrorPage:
    job = _load_job(db, upload_id, owner_id)
    items, total = job_store.list_row_errors(db, job.id, page=page, page_size=page_size)
    return RowErrorPage(
        items=[serialize_row_error(error) for error in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/detect-columns",
    summary="Suggest a column mapping for source headers",
    response_model=DetectColumnsResponse,
)
def detect_columns(payload: DetectColumnsRequest) -> DetectColumnsResponse:
    normalized = {header: normalize_header(header) for header in payload.headers}
    suggestions = suggest_mapping([key for key in normalized.values() if key])
    mapping = {
        header: suggestions[key] for header, key in normalized.items() if key in suggestions
    }
    return DetectColumnsResponse(
        mapping=mapping,
        fields=list(FIELD_NAMES),
        unmapped=[header for header in payload.headers if header not in mapping],
    )
