"""Endpoints for generating and tracking exports."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_io.api.dependencies.auth import get_current_user
from catalog_io.api.dependencies.db import get_session, get_storage
from catalog_io.api.dependencies.security import api_rate_limit, export_rate_limit, verify_origin
from catalog_io.api.routers.job_helpers import serialize_export_job
from catalog_io.api.schemas.exports import ExportCreated, ExportList, ExportRequest, ExportResponse
from catalog_io.api.schemas.job import ExportJobOut
from catalog_io.core.errors import JobFatalError, JobNotFoundError
from catalog_io.db.models import JobStatus
from catalog_io.services import job_store
from catalog_io.services.export_generator import generate_export
from catalog_io.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_origin), Depends(api_rate_limit)])


@router.post(
    "",
    summary="Generate an export file",
    response_model=ExportResponse,
    dependencies=[Depends(export_rate_limit)],
)
def create_export(
    payload: ExportRequest,
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
    storage: ObjectStore = Depends(get_storage),
) -> ExportResponse:
    """Build the export synchronously and return a time-limited download link."""
    try:
        job = job_store.create_export_job(
            db,
            owner_id=owner_id,
            export_type=payload.export_type,
            file_format=payload.format,
            filters=payload.filters.model_dump(mode="json", by_alias=True, exclude_none=True),
            columns=payload.columns,
            status=JobStatus.PENDING.value,
            progress=0,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database error creating export job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create export job",
        ) from exc

    try:
        result = generate_export(db, job, storage)
    except JobFatalError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return ExportResponse(
        export=ExportCreated(
            id=result.job_id,
            file_name=result.file_name,
            format=result.file_format,
            record_count=result.record_count,
            download_url=result.download_url,
            expires_at=result.expires_at,
        )
    )


@router.get("", summary="List recent exports", response_model=ExportList)
def list_exports(
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> ExportList:
    jobs = job_store.list_recent_exports(db, owner_id, limit=20)
    return ExportList(exports=[serialize_export_job(job) for job in jobs])


@router.get("/status", summary="Export status with a fresh download link", response_model=ExportJobOut)
def export_status(
    export_id: str = Query(..., alias="exportId"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
    storage: ObjectStore = Depends(get_storage),
) -> ExportJobOut:
    try:
        job = job_store.get_export_job(db, export_id, owner_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export not found") from exc
    return serialize_export_job(job, storage)
