"""
Doxologos Payments - Booking Models
Agendamentos, serviços e profissionais (tabelas já existentes no Supabase)
"""
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Integer, Float, ForeignKey

from app.database import Base


class BookingStatus(str, Enum):
    """Status do agendamento"""
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED_BY_PATIENT = "cancelled_by_patient"
    CANCELLED_BY_PROFESSIONAL = "cancelled_by_professional"
    CANCELLED_BY_ADMIN = "cancelled_by_admin"

    @classmethod
    def cancelled(cls):
        return {cls.CANCELLED_BY_PATIENT.value, cls.CANCELLED_BY_PROFESSIONAL.value, cls.CANCELLED_BY_ADMIN.value}


class Service(Base):
    """Serviço oferecido (define o preço cobrado)"""
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)
    duration_minutes = Column(Integer, default=50)


class Professional(Base):
    """Profissional que atende a sessão"""
    __tablename__ = "professionals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    email = Column(String(255))
    phone = Column(String(30))
    default_session_minutes = Column(Integer, default=50)
    meeting_platform = Column(String(20), default="zoom")


class Booking(Base):
    """Agendamento de sessão"""
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), index=True)
    professional_id = Column(String(36), ForeignKey("professionals.id"))
    service_id = Column(String(36), ForeignKey("services.id"))

    # Data (YYYY-MM-DD) e hora (HH:MM) no fuso da clínica
    booking_date = Column(String(10), nullable=False)
    booking_time = Column(String(8), nullable=False)

    status = Column(String(30), default=BookingStatus.PENDING_PAYMENT.value, index=True)

    # Paciente
    patient_name = Column(String(200))
    patient_email = Column(String(255))
    patient_phone = Column(String(30))

    # Valores informativos (o preço cobrado vem sempre de services.price)
    valor_consulta = Column(Float)
    valor_repasse_profissional = Column(Float)

    # Sala de atendimento
    meeting_link = Column(String(500))
    meeting_password = Column(String(50))
    meeting_id = Column(String(50))
    meeting_platform = Column(String(20))

    # Mercado Pago
    marketplace_preference_id = Column(String(100), index=True)
    marketplace_payment_id = Column(String(50))
    payment_status = Column(String(30))

    # Último lembrete de pagamento pendente (no máximo um por dia)
    last_payment_reminder_sent_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def starts_at(self) -> datetime:
        return datetime.strptime(f"{self.booking_date} {self.booking_time[:5]}", "%Y-%m-%d %H:%M")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "professional_id": self.professional_id,
            "service_id": self.service_id,
            "booking_date": self.booking_date,
            "booking_time": self.booking_time,
            "status": self.status,
            "patient_name": self.patient_name,
            "patient_email": self.patient_email,
            "meeting_link": self.meeting_link,
            "marketplace_preference_id": self.marketplace_preference_id,
            "marketplace_payment_id": self.marketplace_payment_id,
            "payment_status": self.payment_status,
        }
