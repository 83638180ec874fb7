"""Shared helpers for shaping job responses."""
from __future__ import annotations

import logging

from catalog_io.api.schemas.job import ExportJobOut, ImportJobOut, RowErrorOut
from catalog_io.core.config import get_settings
from catalog_io.core.errors import StorageError
from catalog_io.db.models import ExportJob, ImportJob, ImportRowError, JobStatus
from catalog_io.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


def serialize_import_job(job: ImportJob) -> ImportJobOut:
    return ImportJobOut(
        id=job.id,
        file_name=job.original_name,
        file_size=job.file_size,
        file_type=job.file_type,
        upload_type=job.upload_type,
        status=job.status,
        progress=job.progress or 0,
        total_records=job.total_records or 0,
        processed_records=job.processed_records or 0,
        success_count=job.success_count or 0,
        error_count=job.error_count or 0,
        error_message=job.error_message,
        error_details=job.error_details,
        cancel_requested=bool(job.cancel_requested),
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        failed_at=job.failed_at,
    )


def serialize_row_error(error: ImportRowError) -> RowErrorOut:
    return RowErrorOut.model_validate(error)


def serialize_export_job(job: ExportJob, storage: ObjectStore | None = None) -> ExportJobOut:
    """Completed exports get a freshly signed download link when storage is given."""
    payload = ExportJobOut.model_validate(job)
    if storage is not None and job.status == JobStatus.COMPLETED.value and job.storage_path:
        try:
            signed = storage.create_signed_url(
                "exports", job.storage_path, get_settings().signed_url_ttl_seconds
            )
        except StorageError as exc:
            logger.warning(f"Could not sign download link for export {job.id}: {exc}")
        else:
            payload.download_url = signed.url
            payload.expires_at = signed.expires_at
    return payload
