from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from ..db import Base


class AuditLog(Base):
    __tablename__ = "audit_log"
    id = Column(Integer, primary_key=True)
    at = Column(DateTime, default=datetime.utcnow)
    entity = Column(String(40))
    entity_id = Column(String(40))
    action = Column(String(40))
    payload_json = Column(Text)
