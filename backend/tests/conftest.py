import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="catalog-io-tests-"))

# Settings are cached on first import, so the environment must be ready first
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'catalog_io.db'}"
os.environ["STORAGE_ROOT"] = str(_TMP / "storage")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["CORS_ORIGINS"] = "http://localhost:3000"
os.environ["AUTO_CREATE_TABLES"] = "true"

import pytest
from fastapi.testclient import TestClient

import catalog_io.db.models  # noqa: E402,F401
from catalog_io.core.config import get_settings  # noqa: E402
from catalog_io.db.base import Base  # noqa: E402
from catalog_io.db.models import ImportJob, JobStatus  # noqa: E402
from catalog_io.db.session import SessionLocal, engine  # noqa: E402
from catalog_io.main import app  # noqa: E402
from catalog_io.services.rate_limiter import get_rate_limiter  # noqa: E402
from catalog_io.storage.object_store import get_object_store  # noqa: E402

ORIGIN = "http://localhost:3000"
USER_ID = "brand-1"


@pytest.fixture(autouse=True)
def reset_state():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    get_rate_limiter.cache_clear()
    yield
    get_rate_limiter.cache_clear()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def client():
    with TestClient(app, headers={"Origin": ORIGIN, "X-User-Id": USER_ID}) as test_client:
        yield test_client


@pytest.fixture
def db():
    # Loaded state must survive commits without re-reading; SQLite holds a read lock
    # for as long as a transaction stays open
    session = SessionLocal(expire_on_commit=False)
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def storage():
    return get_object_store()


@pytest.fixture
def make_job(db, storage):
    """Store ``content`` in the imports bucket and create an uploaded job for it."""

    def factory(content: bytes, file_type: str = "csv", owner_id: str = USER_ID, **fields) -> ImportJob:
        path = f"{owner_id}/{len(content)}_{os.urandom(4).hex()}.{file_type}"
        storage.upload("imports", path, content)
        job = ImportJob(
            owner_id=owner_id,
            original_name=f"catalog.{file_type}",
            file_name=path,
            storage_path=path,
            file_type=file_type,
            file_size=len(content),
            status=fields.pop("status", JobStatus.UPLOADED.value),
            **fields,
        )
        db.add(job)
        db.commit()
        return job

    return factory


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def upload(client: TestClient, content: bytes, filename: str = "catalog.csv", mime: str = "text/csv", **kwargs):
    return client.post(
        "/import/upload",
        files={"file": (filename, content, mime)},
        data={"uploadType": "products"},
        **kwargs,
    )


def fetch(model, ident):
    """Load a row through a short-lived session so no read lock outlives the call."""
    with SessionLocal() as session:
        return session.get(model, ident)


def count_rows(model, **filters) -> int:
    with SessionLocal() as session:
        return session.query(model).filter_by(**filters).count()
