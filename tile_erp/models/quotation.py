from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..db import Base


class Quotation(Base):
    __tablename__ = "quotation"
    id = Column(Integer, primary_key=True)
    client_name = Column(String(255))
    contact_no = Column(String(50))
    alt_contact_no = Column(String(50))
    gst_no = Column(String(50), default="")
    email = Column(String(255))
    address = Column(Text)
    attended_by = Column(String(255), default="System")
    architect = Column(String(255), index=True)
    additional_discount = Column(String(50))
    header_section = Column(Text)
    bottom_section = Column(Text)
    grand_total = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_amount = Column(Numeric(12, 2), nullable=False, default=0)  # grand_total - paid_amount
    is_settled = Column(Boolean, nullable=False, default=False)
    commission_amount = Column(Numeric(12, 2), default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "QuotationItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationItem.id",
    )


class QuotationItem(Base):
    __tablename__ = "quotation_item"
    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey("quotation.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("product.id"), nullable=False)
    size = Column(String(50), default="")
    quality = Column(String(50), default="")
    rate = Column(Numeric(10, 2), default=0)
    cov = Column(Numeric(10, 3))  # box -> qty conversion
    box = Column(Integer, nullable=False, default=0)  # reserved at save time
    weight = Column(Numeric(12, 3), nullable=False, default=0)  # qty dispatched so far
    discount = Column(Numeric(10, 2), default=0)
    total = Column(Numeric(12, 2), default=0)
    area = Column(Numeric(12, 3), default=0)  # ordered qty

    quotation = relationship("Quotation", back_populates="items")


class ArchitectLedger(Base):
    __tablename__ = "architect_ledger"
    id = Column(Integer, primary_key=True)
    architect_id = Column(String(255), index=True, nullable=False)
    quotation_id = Column(Integer, ForeignKey("quotation.id", ondelete="CASCADE"), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    settled_at = Column(DateTime, default=datetime.utcnow)


class ArchitectSettlement(Base):
    __tablename__ = "architect_settlement"
    id = Column(Integer, primary_key=True)
    architect_id = Column(String(255), index=True, nullable=False)
    quotation_id = Column(Integer, ForeignKey("quotation.id", ondelete="CASCADE"), nullable=False)
    total_project_amount = Column(Numeric(12, 2))
    settled_amount = Column(Numeric(12, 2))
    settlement_date = Column(DateTime, default=datetime.utcnow)
