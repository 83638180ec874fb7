import itertools
import json
from types import SimpleNamespace

import pytest

from catalog_io.core.errors import JobStateError, ParseError, ParseTimeoutError, TemplateNotFoundError
from catalog_io.db.models import ImportJob, JobStatus, Product
from catalog_io.services import secure_parser, template_service
from catalog_io.services.batch_processor import NeverCancelled
from catalog_io.services.import_pipeline import ImportOptions, resolve_column_mapping, run_import
from catalog_io.workers.tasks.process_import import process_import_task

from conftest import USER_ID, count_rows, csv_bytes, fetch


def test_run_import_persists_valid_rows(db, make_job, storage):
    job = make_job(csv_bytes("name,price,category", "A,10,X", "B,abc,Y", "C,5,Z"))

    summary = run_import(db, job, storage=storage, cancel_token=NeverCancelled())

    assert (summary.total_records, summary.success_count, summary.error_count) == (3, 2, 1)
    stored = fetch(ImportJob, job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.started_at is not None
    assert count_rows(Product, brand_id=USER_ID, import_batch_id=job.id) == 2


def test_parse_failure_marks_job_failed(db, make_job, storage):
    job = make_job(b'{"products": []}', file_type="json")

    with pytest.raises(ParseError):
        run_import(db, job, storage=storage)

    stored = fetch(ImportJob, job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error_message == "Failed to parse file: JSON file must contain an array of records"


def test_parse_timeout_marks_job_failed(db, make_job, storage, monkeypatch):
    job = make_job(csv_bytes("name,price,category", *[f"Item {i},{i},Tools" for i in range(10)]))
    clock = itertools.count(0, 10)
    monkeypatch.setattr(secure_parser, "time", SimpleNamespace(monotonic=lambda: next(clock)))

    with pytest.raises(ParseTimeoutError):
        run_import(db, job, storage=storage)

    stored = fetch(ImportJob, job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error_message.startswith("Failed to parse file: Parse timeout exceeded")
    assert count_rows(Product, import_batch_id=job.id) == 0


def test_max_rows_option_caps_parsed_rows(db, make_job, storage):
    rows = [{"name": f"n{i}", "price": i + 1, "category": "c"} for i in range(30)]
    job = make_job(json.dumps(rows).encode(), file_type="json")

    summary = run_import(db, job, ImportOptions(max_rows=20, batch_size=7), storage=storage)

    assert summary.total_records == 20
    assert summary.success_count == 20


def test_already_processed_job_cannot_be_claimed(db, make_job, storage):
    job = make_job(csv_bytes("name,price,category", "A,1,X"), status=JobStatus.COMPLETED.value)

    with pytest.raises(JobStateError):
        run_import(db, job, storage=storage)


def test_mapping_precedence(db, make_job):
    job = make_job(b"unused")
    default = template_service.create_template(
        db, USER_ID, name="Default", file_type="csv", mapping_config={"Title": "name"}, is_default=True
    )
    named = template_service.create_template(
        db, USER_ID, name="Named", file_type="csv", mapping_config={"Label": "name"}
    )
    db.commit()

    assert resolve_column_mapping(db, job, ImportOptions(column_mapping={"X": "name"})) == {"X": "name"}
    assert resolve_column_mapping(db, job, ImportOptions(template_id=named.id)) == {"Label": "name"}
    assert resolve_column_mapping(db, job, ImportOptions()) == default.mapping_config
    with pytest.raises(TemplateNotFoundError):
        resolve_column_mapping(db, job, ImportOptions(template_id="missing"))


def test_default_template_mapping_is_applied(db, make_job, storage):
    template_service.create_template(
        db,
        USER_ID,
        name="Supplier feed",
        file_type="csv",
        mapping_config={"Item Title": "name", "Retail": "price", "Dept": "category"},
        is_default=True,
    )
    db.commit()
    job = make_job(csv_bytes("Item Title,Retail,Dept", "Lamp,12.50,Home"))

    summary = run_import(db, job, storage=storage)

    assert summary.success_count == 1


def test_worker_task_runs_import_and_reports_summary(make_job):
    job = make_job(csv_bytes("name,price,category", "A,10,X", "B,abc,Y"))

    result = process_import_task(job.id, {"batch_size": 1})

    assert result["totalRecords"] == 2
    assert result["successCount"] == 1
    assert result["errorCount"] == 1
    assert fetch(ImportJob, job.id).status == JobStatus.COMPLETED.value


def test_worker_task_records_failure_without_raising(make_job):
    job = make_job(b"not json at all [", file_type="json")

    result = process_import_task(job.id, None)

    assert result["jobId"] == job.id
    assert "Invalid JSON" in result["error"]
    assert fetch(ImportJob, job.id).status == JobStatus.FAILED.value


def test_worker_task_skips_missing_job():
    assert process_import_task("does-not-exist", {}) is None


def test_options_round_trip_through_task_payload():
    options = ImportOptions(batch_size=50, column_mapping={"a": "name"}, auto_detect=True)

    assert ImportOptions.from_dict(options.as_dict()) == options
    assert ImportOptions.from_dict(None) == ImportOptions()
