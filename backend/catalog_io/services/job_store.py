"""Persistence and state machine for import/export jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from catalog_io.core.errors import ConcurrentUpdateError, JobNotFoundError, JobStateError
from catalog_io.db.models import ExportJob, ImportJob, ImportRowError, JobStatus
from catalog_io.db.models.import_job import TERMINAL_STATUSES
from catalog_io.db.session import get_fresh_session

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Import cancelled by user"

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    JobStatus.UPLOADED.value: frozenset({JobStatus.PROCESSING.value, JobStatus.FAILED.value}),
    JobStatus.PENDING.value: frozenset({JobStatus.PROCESSING.value, JobStatus.FAILED.value}),
    JobStatus.PROCESSING.value: frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value}),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transition(job: ImportJob | ExportJob, new_status: JobStatus | str) -> None:
    """Move a job forward in its lifecycle, stamping the matching timestamp."""
    target = JobStatus(new_status).value
    allowed = ALLOWED_TRANSITIONS.get(job.status, frozenset())
    if target not in allowed:
        raise JobStateError(f"Cannot move job {job.id} from {job.status} to {target}")

    job.status = target
    now = utcnow()
    if target == JobStatus.PROCESSING.value:
        job.started_at = now
    elif target == JobStatus.COMPLETED.value:
        job.completed_at = now
    elif target == JobStatus.FAILED.value and isinstance(job, ImportJob):
        job.failed_at = now


def commit(session: Session) -> None:
    """Commit, translating optimistic-lock conflicts."""
    try:
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        raise ConcurrentUpdateError("Job was modified by another request; reload and retry") from exc


def mark_failed(session: Session, job: ImportJob | ExportJob, message: str) -> None:
    """Record a terminal failure in its own commit."""
    if job.status in TERMINAL_STATUSES:
        logger.warning(f"Job {job.id} already {job.status}; not marking failed")
        return
    transition(job, JobStatus.FAILED)
    job.error_message = message
    commit(session)


# -- imports -----------------------------------------------------------------


def create_import_job(session: Session, **fields: Any) -> ImportJob:
    job = ImportJob(**fields)
    session.add(job)
    session.flush()
    return job


def get_import_job(session: Session, job_id: str, owner_id: str) -> ImportJob:
    job = session.get(ImportJob, job_id)
    if job is None or job.owner_id != owner_id:
        raise JobNotFoundError(f"Import job {job_id} not found")
    return job


def list_recent_imports(session: Session, owner_id: str, limit: int = 10) -> list[ImportJob]:
    stmt = (
        select(ImportJob)
        .where(ImportJob.owner_id == owner_id)
        .order_by(ImportJob.created_at.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


def claim_for_processing(session: Session, job: ImportJob) -> None:
    """Compare-and-swap the job into ``processing``.

    The UPDATE is guarded by the version column, so two concurrent callers
    cannot both start the same job.
    """
    if job.cancel_requested:
        raise JobStateError(CANCELLED_MESSAGE)
    transition(job, JobStatus.PROCESSING)
    job.progress = 0
    job.error_message = None
    commit(session)


def request_cancel(session: Session, job: ImportJob) -> ImportJob:
    """Flag a job for cancellation.

    The flag is written without bumping the version so a running processor is
    not tripped by an optimistic-lock conflict; it observes the flag between
    chunks instead. Jobs that have not started are failed immediately.
    """
    if job.status in TERMINAL_STATUSES:
        raise JobStateError(f"Job {job.id} is already {job.status}")

    session.execute(
        update(ImportJob)
        .where(ImportJob.id == job.id)
        .values(cancel_requested=True)
    )
    if job.status in (JobStatus.UPLOADED.value, JobStatus.PENDING.value):
        transition(job, JobStatus.FAILED)
        job.error_message = CANCELLED_MESSAGE
    commit(session)
    session.refresh(job)
    logger.info(f"Cancellation requested for import job {job.id}")
    return job


def is_cancel_requested(job_id: str) -> bool:
    """Read the cancel flag through a separate session so it sees committed writes."""
    session = get_fresh_session()
    try:
        flag = session.execute(
            select(ImportJob.cancel_requested).where(ImportJob.id == job_id)
        ).scalar_one_or_none()
        return bool(flag)
    finally:
        session.close()


def add_row_errors(session: Session, job_id: str, errors: list) -> None:
    session.add_all(
        ImportRowError(
            job_id=job_id,
            row_number=error.row_number,
            column_name=error.column_name,
            error_type=error.error_type,
            error_message=error.message,
            raw_data=error.raw_data,
        )
        for error in errors
    )


def get_row_errors(session: Session, job_id: str, limit: int = 10) -> list[ImportRowError]:
    stmt = (
        select(ImportRowError)
        .where(ImportRowError.job_id == job_id)
        .order_by(ImportRowError.row_number)
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


def list_row_errors(
    session: Session, job_id: str, page: int = 1, page_size: int = 50
) -> tuple[list[ImportRowError], int]:
    total = session.execute(
        select(func.count()).select_from(ImportRowError).where(ImportRowError.job_id == job_id)
    ).scalar_one()
    stmt = (
        select(ImportRowError)
        .where(ImportRowError.job_id == job_id)
        .order_by(ImportRowError.row_number)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(session.execute(stmt).scalars()), total


# -- exports -----------------------------------------------------------------


def create_export_job(session: Session, **fields: Any) -> ExportJob:
    job = ExportJob(**fields)
    session.add(job)
    commit(session)
    return job


def get_export_job(session: Session, export_id: str, owner_id: str) -> ExportJob:
    job = session.get(ExportJob, export_id)
    if job is None or job.owner_id != owner_id:
        raise JobNotFoundError(f"Export job {export_id} not found")
    return job


def list_recent_exports(session: Session, owner_id: str, limit: int = 20) -> list[ExportJob]:
    stmt = (
        select(ExportJob)
        .where(ExportJob.owner_id == owner_id)
        .order_by(ExportJob.created_at.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


# -- overview ----------------------------------------------------------------


def compute_analytics(session: Session, owner_id: str) -> dict[str, Any]:
    """Cumulative counters across every import and export of one owner."""
    imports = session.execute(
        select(
            func.count(ImportJob.id),
            func.coalesce(func.sum(ImportJob.total_records), 0),
            func.coalesce(func.sum(ImportJob.success_count), 0),
            func.coalesce(func.sum(ImportJob.error_count), 0),
        ).where(ImportJob.owner_id == owner_id)
    ).one()
    import_status_counts = dict(
        session.execute(
            select(ImportJob.status, func.count(ImportJob.id))
            .where(ImportJob.owner_id == owner_id)
            .group_by(ImportJob.status)
        ).all()
    )
    export_status_counts = dict(
        session.execute(
            select(ExportJob.status, func.count(ExportJob.id))
            .where(ExportJob.owner_id == owner_id)
            .group_by(ExportJob.status)
        ).all()
    )

    total_imports, total_records, success_total, error_total = imports
    processed = success_total + error_total
    success_rate = round(100 * success_total / processed, 2) if processed else 0.0
    return {
        "totalImports": total_imports,
        "completedImports": import_status_counts.get(JobStatus.COMPLETED.value, 0),
        "failedImports": import_status_counts.get(JobStatus.FAILED.value, 0),
        "totalRecordsImported": int(success_total),
        "totalRecords": int(total_records),
        "totalErrors": int(error_total),
        "successRate": success_rate,
        "totalExports": sum(export_status_counts.values()),
        "completedExports": export_status_counts.get(JobStatus.COMPLETED.value, 0),
        "failedExports": export_status_counts.get(JobStatus.FAILED.value, 0),
    }


def status_overview(session: Session, owner_id: str) -> dict[str, Any]:
    return {
        "imports": list_recent_imports(session, owner_id, limit=5),
        "exports": list_recent_exports(session, owner_id, limit=5),
        "analytics": compute_analytics(session, owner_id),
    }
