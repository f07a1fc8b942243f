from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..db import Base


class Product(Base):
    __tablename__ = "product"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    size = Column(String(100), default="")
    brand = Column(String(100))
    category = Column(String(100))
    quality = Column(String(100), default="")
    rate = Column(Numeric(10, 2), default=0)
    status = Column(String(50), default="active")
    description = Column(Text)
    image = Column(String(255))  # referencia al archivo subido
    avail_qty = Column(Numeric(12, 3), nullable=False, default=0)  # boxes
    created_at = Column(DateTime, default=datetime.utcnow)

    batches = relationship(
        "ProductBatch",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductBatch.batch_no",
    )


class ProductBatch(Base):
    __tablename__ = "product_batch"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    batch_no = Column(String(100), nullable=False)
    qty = Column(Numeric(12, 3), nullable=False, default=0)  # pieces / area units
    location = Column(String(100))  # godown
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("product_id", "batch_no", name="uq_product_batch"),)

    product = relationship("Product", back_populates="batches")
