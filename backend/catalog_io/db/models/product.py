"""SQLAlchemy model for catalog product records."""

from sqlalchemy import Column, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.types import DateTime

from catalog_io.db.base import Base, JSONType


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    brand_id = Column(String(64), nullable=False, index=True)
    import_batch_id = Column(String(36), index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(100), nullable=False, index=True)
    brand = Column(String(100))
    sku = Column(String(50))
    image_url = Column(Text)
    tags = Column(JSONType)
    availability = Column(String(32), nullable=False, default="in_stock")
    commission_rate = Column(Numeric(5, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (UniqueConstraint("brand_id", "sku", name="uq_products_brand_sku"),)
