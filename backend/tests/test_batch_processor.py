import pytest
from sqlalchemy.orm import sessionmaker

from catalog_io.core.errors import ConcurrentUpdateError, JobFatalError, JobStateError
from catalog_io.db.models import ImportJob, ImportRowError, JobStatus, Product
from catalog_io.db.session import engine
from catalog_io.services import job_store
from catalog_io.services.batch_processor import NeverCancelled, _progress, process_records
from catalog_io.services.product_store import ProductStore
from catalog_io.services.validator import validate_rows

from conftest import USER_ID, count_rows, fetch


def _rows(count, **overrides):
    return [
        {"name": f"Item {i}", "price": str(i + 1), "category": "Tools", **overrides}
        for i in range(count)
    ]


class RecordingStore(ProductStore):
    """Captures the job's committed progress each time a chunk starts."""

    def __init__(self, job):
        super().__init__()
        self.job = job
        self.progress_seen = []

    def bulk_insert(self, session, records, owner_id, batch_id=None):
        self.progress_seen.append(self.job.progress)
        return super().bulk_insert(session, records, owner_id, batch_id)


class FailingStore(ProductStore):
    def __init__(self, fail_on_call):
        super().__init__()
        self.fail_on_call = fail_on_call
        self.calls = 0

    def bulk_insert(self, session, records, owner_id, batch_id=None):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise RuntimeError("disk full")
        return super().bulk_insert(session, records, owner_id, batch_id)


class CancelAfter:
    def __init__(self, checks_before_cancel):
        self.remaining = checks_before_cancel

    def is_cancelled(self):
        self.remaining -= 1
        return self.remaining < 0


@pytest.fixture
def processing_job(make_job):
    return make_job(b"unused", status=JobStatus.PROCESSING.value)


def test_counts_add_up_and_progress_never_decreases(db, processing_job):
    rows = _rows(5)
    rows.insert(1, {"name": "Broken", "price": "abc", "category": "Tools"})
    rows.append({"price": "1"})
    report = validate_rows(rows)
    store = RecordingStore(processing_job)

    summary = process_records(db, processing_job, report, batch_size=3, store=store, cancel_token=NeverCancelled())

    assert summary.total_records == 7
    assert summary.processed_records == 7
    assert summary.success_count == 5
    assert summary.error_count == 2
    assert summary.success_count + summary.error_count == summary.processed_records
    assert store.progress_seen == sorted(store.progress_seen)

    job = fetch(ImportJob, processing_job.id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.progress == 100
    assert job.completed_at is not None
    assert [error["rowNumber"] for error in job.error_details] == [3, 8]
    assert count_rows(Product, brand_id=USER_ID) == 5
    assert count_rows(ImportRowError, job_id=processing_job.id) == 2


def test_sample_errors_are_capped(db, processing_job, settings):
    report = validate_rows([{"name": "x", "price": "bad", "category": "c"}] * 25)

    summary = process_records(db, processing_job, report, batch_size=10)

    assert summary.error_count == 25
    assert len(summary.sample_errors) == settings.sample_error_limit
    assert count_rows(ImportRowError, job_id=processing_job.id) == 25


def test_duplicate_sku_becomes_database_row_error(db, processing_job):
    db.add(Product(brand_id=USER_ID, name="Existing", price=1, category="Tools", sku="SKU-1"))
    db.commit()
    report = validate_rows(
        [
            {"name": "First", "price": "1", "category": "Tools", "sku": "SKU-1"},
            {"name": "Second", "price": "2", "category": "Tools", "sku": "SKU-2"},
        ]
    )

    summary = process_records(db, processing_job, report, batch_size=10)

    assert summary.success_count == 1
    assert summary.error_count == 1
    error = summary.sample_errors[0]
    assert error["rowNumber"] == 2
    assert error["errorType"] == "database"
    assert error["columnName"] == "sku"
    assert error["errorMessage"] == "sku: Duplicate SKU 'SKU-1'"
    assert count_rows(Product, brand_id=USER_ID) == 2


def test_fatal_chunk_failure_keeps_committed_chunks(db, processing_job):
    report = validate_rows(_rows(7))

    with pytest.raises(JobFatalError, match="disk full"):
        process_records(db, processing_job, report, batch_size=3, store=FailingStore(fail_on_call=2))

    job = fetch(ImportJob, processing_job.id)
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == "Import failed: disk full"
    assert job.processed_records == 3
    assert job.success_count == 3
    assert job.progress == 42
    assert job.failed_at is not None
    assert count_rows(Product, brand_id=USER_ID) == 3


def test_cancellation_stops_between_chunks(db, processing_job):
    report = validate_rows(_rows(5))

    summary = process_records(db, processing_job, report, batch_size=2, cancel_token=CancelAfter(1))

    assert summary.cancelled is True
    assert summary.processed_records == 4
    job = fetch(ImportJob, processing_job.id)
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == job_store.CANCELLED_MESSAGE
    assert job.progress == 80
    assert count_rows(Product, brand_id=USER_ID) == 4


def test_progress_reaches_100_only_when_every_row_is_processed(db, processing_job):
    assert _progress(199, 200) == 99
    assert _progress(200, 200) == 100

    summary = process_records(db, processing_job, validate_rows(_rows(3)), batch_size=2, cancel_token=CancelAfter(0))

    assert summary.processed_records == 2
    assert fetch(ImportJob, processing_job.id).progress == 66


def test_job_must_be_processing(db, make_job):
    job = make_job(b"unused")

    with pytest.raises(JobStateError):
        process_records(db, job, validate_rows(_rows(1)))


def test_empty_report_completes_immediately(db, processing_job):
    summary = process_records(db, processing_job, validate_rows([]))

    assert summary.total_records == 0
    job = fetch(ImportJob, processing_job.id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.progress == 100


def test_concurrent_claim_is_rejected(make_job):
    job_id = make_job(b"unused").id
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    with Session() as first, Session() as second:
        stale = first.get(ImportJob, job_id)
        first.commit()

        fresh = second.get(ImportJob, job_id)
        job_store.claim_for_processing(second, fresh)

        with pytest.raises(ConcurrentUpdateError):
            job_store.claim_for_processing(first, stale)

    assert fetch(ImportJob, job_id).status == JobStatus.PROCESSING.value


def test_cancel_flag_does_not_conflict_with_running_job(db, processing_job):
    other = sessionmaker(bind=engine)()
    try:
        job_store.request_cancel(other, other.get(ImportJob, processing_job.id))
    finally:
        other.close()

    # The processor still holds the original version and can keep committing
    processing_job.progress = 10
    job_store.commit(db)
    assert job_store.is_cancel_requested(processing_job.id) is True


def test_cancel_of_terminal_job_is_rejected(db, make_job):
    job = make_job(b"unused", status=JobStatus.COMPLETED.value)

    with pytest.raises(JobStateError):
        job_store.request_cancel(db, job)
