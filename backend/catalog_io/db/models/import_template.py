"""Saved column-mapping templates for repeat imports."""

import uuid

from sqlalchemy import Boolean, Column, Index, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_io.db.base import Base, JSONType


class ImportTemplate(Base):
    __tablename__ = "import_templates"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    file_type = Column(String(16), nullable=False)
    mapping_config = Column(JSONType, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index(
            "uq_import_templates_default",
            "owner_id",
            "file_type",
            unique=True,
            postgresql_where=is_default.is_(True),
            sqlite_where=is_default.is_(True),
        ),
    )
