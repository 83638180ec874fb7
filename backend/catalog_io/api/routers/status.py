"""Combined status endpoint for imports, exports and the owner overview."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_io.api.dependencies.auth import get_current_user
from catalog_io.api.dependencies.db import get_session, get_storage
from catalog_io.api.dependencies.security import api_rate_limit, verify_origin
from catalog_io.api.routers.job_helpers import (
    serialize_export_job,
    serialize_import_job,
    serialize_row_error,
)
from catalog_io.api.schemas.job import ExportJobOut, ImportStatusOut, StatusOverview
from catalog_io.core.config import get_settings
from catalog_io.core.errors import JobNotFoundError
from catalog_io.services import job_store
from catalog_io.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_origin), Depends(api_rate_limit)])


@router.get(
    "",
    summary="Status of one job, or an overview of recent activity",
    response_model=ImportStatusOut | ExportJobOut | StatusOverview,
)
def get_status(
    upload_id: str | None = Query(None, alias="uploadId"),
    export_id: str | None = Query(None, alias="exportId"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
    storage: ObjectStore = Depends(get_storage),
) -> ImportStatusOut | ExportJobOut | StatusOverview:
    try:
        if upload_id:
            job = job_store.get_import_job(db, upload_id, owner_id)
            errors = job_store.get_row_errors(db, job.id, limit=get_settings().sample_error_limit)
            return ImportStatusOut(
                job=serialize_import_job(job),
                errors=[serialize_row_error(error) for error in errors],
            )
        if export_id:
            return serialize_export_job(job_store.get_export_job(db, export_id, owner_id), storage)

        overview = job_store.status_overview(db, owner_id)
        return StatusOverview(
            imports=[serialize_import_job(job) for job in overview["imports"]],
            exports=[serialize_export_job(job) for job in overview["exports"]],
            analytics=overview["analytics"],
        )
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error fetching status: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve status",
        ) from exc
