"""Celery task running the import pipeline outside the request cycle."""

from __future__ import annotations

import logging
from typing import Any

from catalog_io.core.errors import CatalogIOError
from catalog_io.db.models import ImportJob
from catalog_io.db.session import get_fresh_session
from catalog_io.services.import_pipeline import ImportOptions, run_import
from catalog_io.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="catalog_io.workers.tasks.process_import")
def process_import_task(self, job_id: str, options: dict[str, Any] | None = None) -> dict[str, Any] | None:
    """Process one uploaded job; the job row records success or failure."""
    session = get_fresh_session()
    try:
        job: ImportJob | None = session.get(ImportJob, job_id)
        if job is None:
            logger.warning(f"Import job {job_id} no longer exists; skipping")
            return None

        summary = run_import(session, job, ImportOptions.from_dict(options))
        return summary.as_dict()
    except CatalogIOError as exc:
        # The pipeline has already recorded the failure on the job; no retries.
        logger.error(f"Import job {job_id} failed: {exc}", exc_info=True)
        return {"jobId": job_id, "error": str(exc)}
    finally:
        session.close()
