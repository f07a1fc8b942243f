from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from ..db import Base


class Purchase(Base):
    __tablename__ = "purchase"
    id = Column(Integer, primary_key=True)
    bill_no = Column(String(50), unique=True, index=True, nullable=False)
    purchase_date = Column(Date)
    client_name = Column(String(255))  # proveedor
    client_contact = Column(String(50))
    subtotal = Column(Numeric(12, 2), default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "PurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItem.id",
    )


class PurchaseItem(Base):
    __tablename__ = "purchase_item"
    id = Column(Integer, primary_key=True)
    purchase_id = Column(Integer, ForeignKey("purchase.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("product.id"), nullable=False)
    batch_no = Column(String(100), nullable=False)
    qty = Column(Numeric(12, 3), nullable=False)
    rate = Column(Numeric(10, 2), default=0)
    cov = Column(Numeric(10, 3), default=1)
    total = Column(Numeric(12, 2), default=0)
    godown = Column(String(100))

    purchase = relationship("Purchase", back_populates="items")
