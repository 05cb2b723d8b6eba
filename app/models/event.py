"""
Doxologos Payments - Event Models
Eventos (grupos, palestras) e inscrições pagas
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Float, ForeignKey

from app.database import Base

EVENT_REFERENCE_PREFIX = "EVENTO_"


class Evento(Base):
    __tablename__ = "eventos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    titulo = Column(String(200), nullable=False)
    data_inicio = Column(DateTime)
    valor = Column(Float, default=0)
    meeting_link = Column(String(500))
    meeting_password = Column(String(50))


class EventRegistration(Base):
    """Inscrição em evento; referência externa EVENTO_<id>"""
    __tablename__ = "inscricoes_eventos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    evento_id = Column(String(36), ForeignKey("eventos.id"), nullable=False, index=True)
    patient_name = Column(String(200))
    patient_email = Column(String(255))
    status = Column(String(30), default="pending")
    payment_status = Column(String(30), default="pending")
    payment_date = Column(DateTime)
    zoom_link_sent = Column(Boolean, default=False)
    zoom_link_sent_at = Column(DateTime)
    marketplace_preference_id = Column(String(100))

    @property
    def external_reference(self) -> str:
        return f"{EVENT_REFERENCE_PREFIX}{self.id}"
