"""Track export requests and the generated file."""

import uuid

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_io.db.base import Base, JSONType
from catalog_io.db.models.import_job import JobStatus


class ExportJob(Base):
    __tablename__ = "export_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    export_type = Column(String(32), nullable=False)
    file_format = Column(String(16), nullable=False)
    filters = Column(JSONType)
    columns = Column(JSONType)
    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value, index=True)
    progress = Column(Integer, nullable=False, default=0)
    total_records = Column(Integer, nullable=False, default=0)
    file_name = Column(String(255))
    storage_path = Column(Text)
    mime_type = Column(String(128))
    file_size = Column(Integer)
    error_message = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}
