"""
Doxologos Payments - Refund Model
Reembolsos (manuais com comprovante ou via Mercado Pago)
"""
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Text, Float, Integer, ForeignKey
from sqlalchemy.dialects.sqlite import JSON

from app.database import Base


class RefundKind(str, Enum):
    MANUAL = "manual"
    PROVIDER = "provider"


class NotificationStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


class PaymentRefund(Base):
    __tablename__ = "payment_refunds"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    kind = Column(String(20), default=RefundKind.MANUAL.value)

    amount = Column(Float)
    currency = Column(String(3), default="BRL")
    reason = Column(Text)

    # Comprovante
    proof_path = Column(String(500))
    proof_checksum = Column(String(64))
    proof_content_type = Column(String(100))
    processed_by = Column(String(36))

    # Aviso ao pagador
    notification_recipient = Column(String(255))
    notification_cc = Column(JSON, default=list)
    notification_subject = Column(String(255))
    notification_message = Column(Text)
    notification_status = Column(String(20), default=NotificationStatus.NONE.value, index=True)
    notification_attempts = Column(Integer, default=0)
    notification_last_error = Column(String(500))
    notification_sent_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "kind": self.kind,
            "amount": self.amount,
            "currency": self.currency,
            "reason": self.reason,
            "proof_path": self.proof_path,
            "proof_checksum": self.proof_checksum,
            "proof_content_type": self.proof_content_type,
            "processed_by": self.processed_by,
            "notification_recipient": self.notification_recipient,
            "notification_status": self.notification_status,
            "notification_attempts": self.notification_attempts,
            "notification_last_error": self.notification_last_error,
            "notification_sent_at": self.notification_sent_at.isoformat() if self.notification_sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
