from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from ..db import Base

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


class PaymentRequest(Base):
    __tablename__ = "payment_request"
    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey("quotation.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_type = Column(String(50))
    remark = Column(Text)
    status = Column(String(20), nullable=False, default=PENDING)  # pending | approved | rejected
    created_at = Column(DateTime, default=datetime.utcnow)
    decided_at = Column(DateTime)
