"""
Doxologos Payments - Audit Log Model
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from sqlalchemy.dialects.sqlite import JSON

from app.database import Base


class AuditLog(Base):
    """Registro de auditoria (somente inserção)"""
    __tablename__ = "logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), index=True)
    action = Column(String(50), nullable=False, index=True)
    performed_by = Column(String(100))
    payload = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
