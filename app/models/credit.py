"""
Doxologos Payments - Financial Credit Model
Créditos do paciente (ex.: cancelamento com antecedência)
"""
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Text, Float
from sqlalchemy.dialects.sqlite import JSON

from app.database import Base


class CreditStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    CONSUMED = "consumed"


class FinancialCredit(Base):
    """Crédito financeiro: available -> reserved -> consumed (ou de volta a available)"""
    __tablename__ = "financial_credits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="BRL")
    status = Column(String(20), default=CreditStatus.AVAILABLE.value, index=True)

    # Origem
    source_type = Column(String(30), nullable=False)
    source_reason = Column(Text)
    original_booking_id = Column(String(36))
    original_payment_id = Column(String(36))

    # Reserva
    reservation_token = Column(String(64))
    reserved_at = Column(DateTime)

    # Uso
    used_booking_id = Column(String(36))
    used_payment_id = Column(String(36))
    used_at = Column(DateTime)

    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "source_type": self.source_type,
            "source_reason": self.source_reason,
            "original_booking_id": self.original_booking_id,
            "original_payment_id": self.original_payment_id,
            "reserved_at": self.reserved_at.isoformat() if self.reserved_at else None,
            "used_booking_id": self.used_booking_id,
            "used_payment_id": self.used_payment_id,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "metadata": self.metadata_ or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
