"""Database and storage dependencies."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from catalog_io.db.session import get_db
from catalog_io.storage.object_store import ObjectStore, get_object_store


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_storage() -> ObjectStore:
    return get_object_store()
