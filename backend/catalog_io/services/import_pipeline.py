"""End-to-end import: download, parse, validate and persist one uploaded file."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from catalog_io.core.config import get_settings
from catalog_io.core.errors import JobFatalError, ParseError, StorageError
from catalog_io.db.models import ImportJob
from catalog_io.services import job_store, template_service
from catalog_io.services.batch_processor import (
    CancellationToken,
    DatabaseCancellationToken,
    ImportSummary,
    process_records,
)
from catalog_io.services.product_store import ProductStore
from catalog_io.services.secure_parser import ParseLimits, parse_buffer
from catalog_io.services.validator import validate_rows
from catalog_io.storage.object_store import ObjectStore, get_object_store

logger = logging.getLogger(__name__)

IMPORTS_BUCKET = "imports"


@dataclass
class ImportOptions:
    batch_size: int | None = None
    max_rows: int | None = None
    column_mapping: dict[str, str] | None = None
    template_id: str | None = None
    auto_detect: bool = False

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ImportOptions":
        payload = payload or {}
        return cls(**{key: payload.get(key) for key in cls.__dataclass_fields__ if key in payload})

    def as_dict(self) -> dict[str, Any]:
        return {
            "batch_size": self.batch_size,
            "max_rows": self.max_rows,
            "column_mapping": self.column_mapping,
            "template_id": self.template_id,
            "auto_detect": self.auto_detect,
        }


def resolve_column_mapping(session: Session, job: ImportJob, options: ImportOptions) -> dict[str, str] | None:
    """Explicit mapping wins, then the named template, then the owner's default template."""
    if options.column_mapping:
        return options.column_mapping
    if options.template_id:
        template = template_service.get_template(session, options.template_id, job.owner_id)
        return template.mapping_config
    default = template_service.get_default_template(session, job.owner_id, job.file_type)
    if default is not None:
        logger.info(f"Using default template {default.id} for job {job.id}")
        return default.mapping_config
    return None


def run_import(
    session: Session,
    job: ImportJob,
    options: ImportOptions | None = None,
    *,
    storage: ObjectStore | None = None,
    store: ProductStore | None = None,
    cancel_token: CancellationToken | None = None,
) -> ImportSummary:
    """Process an uploaded job synchronously.

    Raises ParseError when the file cannot be read (the job is failed first),
    JobFatalError for infrastructure failures, and JobStateError when the job
    is not in a startable state.
    """
    settings = get_settings()
    options = options or ImportOptions()
    storage = storage or get_object_store()

    column_mapping = resolve_column_mapping(session, job, options)
    job_store.claim_for_processing(session, job)
    logger.info(f"Import job {job.id} claimed for processing ({job.file_type})")

    try:
        data = storage.download(IMPORTS_BUCKET, job.storage_path)
    except StorageError as exc:
        logger.error(f"Failed to load upload for job {job.id}: {exc}", exc_info=True)
        job_store.mark_failed(session, job, f"Failed to download file: {exc}")
        raise JobFatalError(f"Failed to download file: {exc}", job_id=job.id) from exc

    try:
        limits = ParseLimits.from_settings(settings, max_rows=options.max_rows)
        parsed = parse_buffer(data, job.file_type, limits)
    except ParseError as exc:
        logger.warning(f"Parse failed for job {job.id}: {exc}")
        job_store.mark_failed(session, job, f"Failed to parse file: {exc}")
        raise

    report = validate_rows(
        parsed.rows,
        row_numbers=parsed.row_numbers,
        column_mapping=column_mapping,
        auto_detect=options.auto_detect,
    )

    return process_records(
        session,
        job,
        report,
        batch_size=options.batch_size,
        store=store,
        cancel_token=cancel_token or DatabaseCancellationToken(job.id),
    )
