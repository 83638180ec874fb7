"""Chunked persistence of validated imports with incremental progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from catalog_io.core.config import get_settings
from catalog_io.core.errors import ConcurrentUpdateError, JobFatalError, JobStateError
from catalog_io.db.models import ImportJob, JobStatus
from catalog_io.services import job_store
from catalog_io.services.product_store import ProductStore
from catalog_io.services.validator import RowError, ValidatedRecord, ValidationReport
from catalog_io.utils.batching import chunked, clamp_batch_size

logger = logging.getLogger(__name__)


class CancellationToken(Protocol):
    def is_cancelled(self) -> bool: ...


class NeverCancelled:
    def is_cancelled(self) -> bool:
        return False


class DatabaseCancellationToken:
    """Polls the job's cancel flag written by the cancel endpoint."""

    def __init__(self, job_id: str):
        self.job_id = job_id

    def is_cancelled(self) -> bool:
        return job_store.is_cancel_requested(self.job_id)


@dataclass
class ImportSummary:
    total_records: int
    processed_records: int = 0
    success_count: int = 0
    error_count: int = 0
    sample_errors: list[dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "hasErrors": self.has_errors,
            "sampleErrors": self.sample_errors,
            "cancelled": self.cancelled,
        }


def _progress(processed: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, 100 * processed // total)


def process_records(
    session: Session,
    job: ImportJob,
    report: ValidationReport,
    *,
    batch_size: int | None = None,
    store: ProductStore | None = None,
    cancel_token: CancellationToken | None = None,
) -> ImportSummary:
    """Persist a validation report chunk by chunk in file order.

    Each chunk commits its inserts, its row errors and the job counters in one
    transaction. A failure rolls back only the current chunk; earlier chunks
    stay committed and the job is marked failed.
    """
    settings = get_settings()
    if job.status != JobStatus.PROCESSING.value:
        raise JobStateError(f"Job {job.id} must be processing, not {job.status}")

    size = clamp_batch_size(batch_size, settings.default_batch_size, settings.max_batch_size)
    store = store or ProductStore(settings.bulk_insert_timeout_seconds)
    cancel_token = cancel_token or NeverCancelled()
    sample_limit = settings.sample_error_limit

    outcomes = report.in_file_order()
    summary = ImportSummary(total_records=len(outcomes))

    job.total_records = summary.total_records
    job.processed_records = 0
    job.success_count = 0
    job.error_count = 0
    job.progress = 0
    job_store.commit(session)

    logger.info(f"Processing job {job.id}: {summary.total_records} records in chunks of {size}")

    for chunk_index, chunk in enumerate(chunked(outcomes, size)):
        if chunk_index and cancel_token.is_cancelled():
            summary.cancelled = True
            break

        valid = [outcome for outcome in chunk if isinstance(outcome, ValidatedRecord)]
        errors = [outcome for outcome in chunk if isinstance(outcome, RowError)]
        try:
            inserted, db_errors = store.bulk_insert(session, valid, job.owner_id, job.id)
            errors = sorted(errors + db_errors, key=lambda error: error.row_number)
            job_store.add_row_errors(session, job.id, errors)

            job.processed_records = summary.processed_records + len(chunk)
            job.success_count = summary.success_count + inserted
            job.error_count = summary.error_count + len(errors)
            job.progress = max(job.progress or 0, _progress(job.processed_records, summary.total_records))
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            raise ConcurrentUpdateError(f"Job {job.id} was modified during processing") from exc
        except Exception as exc:
            session.rollback()
            logger.error(f"Chunk {chunk_index + 1} of job {job.id} failed: {exc}", exc_info=True)
            try:
                job_store.mark_failed(session, job, f"Import failed: {exc}")
            except SQLAlchemyError as mark_exc:
                session.rollback()
                logger.error(f"Could not mark job {job.id} failed: {mark_exc}", exc_info=True)
            raise JobFatalError(f"Import failed: {exc}", job_id=job.id) from exc

        summary.processed_records = job.processed_records
        summary.success_count = job.success_count
        summary.error_count = job.error_count
        for error in errors:
            if len(summary.sample_errors) >= sample_limit:
                break
            summary.sample_errors.append(error.as_dict())

        logger.info(
            f"Job {job.id}: chunk {chunk_index + 1} committed "
            f"({summary.processed_records}/{summary.total_records}, {job.progress}%)"
        )

    job.error_details = summary.sample_errors
    if summary.cancelled:
        logger.warning(f"Job {job.id} cancelled after {summary.processed_records} records")
        job_store.transition(job, JobStatus.FAILED)
        job.error_message = job_store.CANCELLED_MESSAGE
    else:
        job_store.transition(job, JobStatus.COMPLETED)
        job.progress = 100
    job_store.commit(session)

    logger.info(
        f"Job {job.id} finished: {summary.success_count} imported, {summary.error_count} errors"
    )
    return summary
