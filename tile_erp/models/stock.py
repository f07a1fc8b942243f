from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from ..db import Base


class StockMove(Base):
    """Append-only signed delta against one batch. sum(delta) == batch.qty."""

    __tablename__ = "stock_move"
    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    batch_id = Column(Integer, ForeignKey("product_batch.id", ondelete="CASCADE"), nullable=False)
    delta = Column(Numeric(12, 3), nullable=False)
    reason = Column(String(40), nullable=False)  # purchase | dispatch | adjustment | *_reversal
    ref_type = Column(String(40))  # purchase | delivery_challan | product
    ref_id = Column(String(40))
    at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_stock_move_batch", "batch_id"),)
