"""Brand campaigns; managed elsewhere, read here only for exports."""

from sqlalchemy import Column, Integer, Numeric, String, Text, func
from sqlalchemy.types import DateTime

from catalog_io.db.base import Base, JSONType


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True)
    brand_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    budget = Column(Numeric(12, 2))
    status = Column(String(32), nullable=False, default="draft", index=True)
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))
    application_deadline = Column(DateTime(timezone=True))
    tags = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
