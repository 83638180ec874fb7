"""Track catalog import metadata, progress and outcome."""

import enum
import uuid

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_io.db.base import Base, JSONType


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    original_name = Column(String(255), nullable=False)
    file_name = Column(Text, nullable=False)
    storage_path = Column(Text, nullable=False)
    file_type = Column(String(16), nullable=False)
    mime_type = Column(String(128))
    file_size = Column(Integer, nullable=False, default=0)
    upload_type = Column(String(32), nullable=False, default="products")
    status = Column(String(32), nullable=False, default=JobStatus.UPLOADED.value, index=True)
    progress = Column(Integer, nullable=False, default=0)
    total_records = Column(Integer, nullable=False, default=0)
    processed_records = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    error_details = Column(JSONType)
    error_message = Column(Text)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Every ORM UPDATE is "... WHERE version = :loaded"; a concurrent writer raises StaleDataError
    __mapper_args__ = {"version_id_col": version}
