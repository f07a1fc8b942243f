from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..db import Base


class DeliveryChallan(Base):
    __tablename__ = "delivery_challan"
    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey("quotation.id"), nullable=False, index=True)
    client = Column(String(255))
    contact = Column(String(50))
    address = Column(Text)
    delivery_boy = Column(String(255))
    driver_contact = Column(String(50))
    tempo = Column(String(50))  # vehicle
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "DeliveryChallanItem",
        back_populates="challan",
        cascade="all, delete-orphan",
        order_by="DeliveryChallanItem.id",
    )


class DeliveryChallanItem(Base):
    __tablename__ = "delivery_challan_item"
    id = Column(Integer, primary_key=True)
    challan_id = Column(
        Integer, ForeignKey("delivery_challan.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(Integer, ForeignKey("product.id"), nullable=False)
    product_name = Column(String(255))
    dispatch_boxes = Column(Integer, nullable=False, default=0)
    dispatch_qty = Column(Numeric(12, 3), nullable=False, default=0)
    remaining_stock = Column(Numeric(12, 3))  # as sent by the client

    challan = relationship("DeliveryChallan", back_populates="items")
    deductions = relationship(
        "DispatchDeduction",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="DispatchDeduction.id",
    )


class DispatchDeduction(Base):
    """Per-batch breakdown of one FIFO debit, replayed on challan deletion."""

    __tablename__ = "dispatch_deduction"
    id = Column(Integer, primary_key=True)
    challan_item_id = Column(
        Integer, ForeignKey("delivery_challan_item.id", ondelete="CASCADE"), nullable=False
    )
    batch_id = Column(Integer, ForeignKey("product_batch.id"), nullable=False)
    qty = Column(Numeric(12, 3), nullable=False)

    item = relationship("DeliveryChallanItem", back_populates="deductions")
