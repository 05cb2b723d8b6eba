"""
Doxologos Payments - Payment Model
Um registro por pagamento do Mercado Pago
"""
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Text, Float, ForeignKey
from sqlalchemy.dialects.sqlite import JSON

from app.database import Base


class PaymentStatus(str, Enum):
    """Status do pagamento"""
    PENDING = "pending"           # Aguardando pagamento
    APPROVED = "approved"         # Pagamento aprovado
    AUTHORIZED = "authorized"     # Autorizado (cartão)
    IN_PROCESS = "in_process"     # Em processamento
    REJECTED = "rejected"         # Rejeitado
    CANCELLED = "cancelled"       # Cancelado
    REFUNDED = "refunded"         # Reembolsado


# Status do provedor que confirmam o agendamento
APPROVED_STATUSES = {"approved", "paid"}

# Status finais para o polling do checkout
TERMINAL_STATUSES = {"approved", "rejected", "cancelled"}


class Payment(Base):
    """Pagamento vinculado a um agendamento (ou pendente de revisão)"""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    booking_id = Column(String(36), ForeignKey("bookings.id"), index=True)

    # Dados do Mercado Pago
    mp_payment_id = Column(String(50), unique=True, index=True)
    mp_preference_id = Column(String(100))
    external_reference = Column(String(100), index=True)

    status = Column(String(30), default=PaymentStatus.PENDING.value, index=True)
    status_detail = Column(String(100))
    payment_method = Column(String(30))
    payment_type = Column(String(30))
    amount = Column(Float)
    currency = Column(String(3), default="BRL")

    payer_email = Column(String(255))
    payer_name = Column(String(200))

    # PIX / checkout
    qr_code = Column(Text)
    qr_code_base64 = Column(Text)
    ticket_url = Column(String(500))
    payment_url = Column(String(500))

    raw_payload = Column(JSON)

    # "pending_review" quando não foi possível vincular ao agendamento
    review_status = Column(String(30))

    # Reembolso
    refund_id = Column(String(50))
    refund_amount = Column(Float)
    refund_status = Column(String(30))
    refund_date = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "mp_payment_id": self.mp_payment_id,
            "mp_preference_id": self.mp_preference_id,
            "external_reference": self.external_reference,
            "status": self.status,
            "status_detail": self.status_detail,
            "payment_method": self.payment_method,
            "amount": self.amount,
            "currency": self.currency,
            "review_status": self.review_status,
            "refund_id": self.refund_id,
            "refund_amount": self.refund_amount,
            "refund_status": self.refund_status,
            "refund_date": self.refund_date.isoformat() if self.refund_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
