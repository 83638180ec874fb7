"""Row-level failures captured while processing an import."""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_io.db.base import Base, JSONType


class ImportRowError(Base):
    __tablename__ = "import_row_errors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_number = Column(Integer, nullable=False, index=True)
    column_name = Column(String(64))
    error_type = Column(String(16), nullable=False, default="validation")
    error_message = Column(Text, nullable=False)
    raw_data = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
