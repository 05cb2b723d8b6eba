"""
Fixtures compartilhadas: banco aiosqlite descartável por teste, app FastAPI
com provedores falsos (Mercado Pago, Zoom, notificações) e tokens de acesso.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ERROR_NOTIFICATION_ENABLED"] = "false"

import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.email import DeliveryResult
from app.core.exceptions import ProviderError
from app.core.security import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import Booking, Service, Professional, Payment, FinancialCredit
from app.services.mercadopago_client import get_mercadopago_client
from app.services.notifications import get_notification_service
from app.services.zoom_client import Meeting, get_zoom_client


class FakeMercadoPago:
    """Guarda pagamentos em memória e registra cada chamada"""

    def __init__(self):
        self.payments = {}
        self.preferences = []
        self.pix_requests = []
        self.card_requests = []
        self.card_status = ("approved", "accredited")
        self.refunds = []
        self.get_calls = 0
        self.fail_with: Optional[ProviderError] = None

    def add_payment(self, payment_id: str, **fields) -> dict:
        payment = {
            "id": int(payment_id) if str(payment_id).isdigit() else payment_id,
            "status": "pending",
            "status_detail": "pending_waiting_payment",
            "payment_method_id": "visa",
            "payment_type_id": "credit_card",
            "transaction_amount": 150.0,
            "currency_id": "BRL",
            "payer": {"email": "paciente@example.com", "first_name": "Maria", "last_name": "Silva"},
        }
        payment.update(fields)
        self.payments[str(payment_id)] = payment
        return payment

    async def create_preference(self, preference_data: dict) -> dict:
        if self.fail_with:
            raise self.fail_with
        self.preferences.append(preference_data)
        pref_id = f"pref-{len(self.preferences)}"
        return {
            "id": pref_id,
            "init_point": f"https://www.mercadopago.com.br/checkout?pref_id={pref_id}",
            "sandbox_init_point": f"https://sandbox.mercadopago.com.br/checkout?pref_id={pref_id}",
        }

    async def create_pix_payment(self, payment_data: dict, idempotency_key: str) -> dict:
        if self.fail_with:
            raise self.fail_with
        self.pix_requests.append((payment_data, idempotency_key))
        return {
            "id": 900001,
            "status": "pending",
            "status_detail": "pending_waiting_transfer",
            "point_of_interaction": {
                "transaction_data": {
                    "qr_code": "00020126580014br.gov.bcb.pix",
                    "qr_code_base64": "iVBORw0KGgo=",
                    "ticket_url": "https://www.mercadopago.com.br/payments/900001/ticket",
                }
            },
        }

    async def create_card_payment(self, payment_data: dict, idempotency_key: str) -> dict:
        if self.fail_with:
            raise self.fail_with
        self.card_requests.append((payment_data, idempotency_key))
        status, detail = self.card_status
        return self.add_payment(
            str(910000 + len(self.card_requests)),
            status=status,
            status_detail=detail,
            payment_method_id="master",
            transaction_amount=payment_data["transaction_amount"],
            external_reference=payment_data["external_reference"],
        )

    async def get_payment(self, payment_id: str) -> dict:
        self.get_calls += 1
        if self.fail_with:
            raise self.fail_with
        if str(payment_id) not in self.payments:
            raise ProviderError("mercadopago", 404, {"message": "Payment not found"})
        return self.payments[str(payment_id)]

    async def create_refund(self, payment_id: str, amount: Optional[float] = None) -> dict:
        if self.fail_with:
            raise self.fail_with
        self.refunds.append((payment_id, amount))
        payment = self.payments.get(str(payment_id), {})
        return {
            "id": 7000 + len(self.refunds),
            "status": "approved",
            "amount": amount if amount is not None else payment.get("transaction_amount", 150.0),
        }


class FakeZoom:
    def __init__(self):
        self.meetings = []
        self.fail = False

    async def create_meeting(self, topic, start_time, duration_minutes=50, timezone=None):
        if self.fail:
            raise ProviderError("zoom", 500, "boom")
        self.meetings.append((topic, start_time, duration_minutes))
        return Meeting(id="8123", join_url="https://zoom.us/j/8123", password="abc123")


class FakeNotifier:
    def __init__(self):
        self.booking_confirmations = []
        self.event_confirmations = []
        self.refund_notifications = []
        self.payment_reminders = []
        self.reminder_result = DeliveryResult(ok=True)
        self.refund_result = DeliveryResult(ok=True, message_id="msg-1")

    async def notify_booking_confirmed(self, booking, professional):
        self.booking_confirmations.append(booking.id)
        return {
            "patient_email": DeliveryResult(ok=True),
            "professional_email": DeliveryResult(ok=True),
            "patient_whatsapp": DeliveryResult(ok=False, error="whatsapp not configured"),
            "professional_whatsapp": DeliveryResult(ok=False, error="whatsapp not configured"),
        }

    async def notify_event_confirmed(self, registration, evento, amount):
        self.event_confirmations.append(registration.id)
        return DeliveryResult(ok=True)

    async def send_refund_notification(self, refund, payer_name=None):
        self.refund_notifications.append(refund.id)
        return self.refund_result

    async def send_payment_reminder(self, booking, service, professional):
        self.payment_reminders.append(booking.id)
        return self.reminder_result


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        SUPABASE_JWT_SECRET="test-jwt-secret",
        MP_ACCESS_TOKEN="TEST-token",
        MP_WEBHOOK_SECRET=None,
        FRONTEND_URL="https://doxologos.test",
        NOTIFICATION_URL="https://api.doxologos.test/api/mp-webhook",
        FINANCIAL_CREDITS_FUNCTION_KEY="credits-key",
        MANUAL_REFUND_NOTIFY_KEY=None,
        PAYMENT_REMINDER_FUNCTION_KEY="reminder-key",
        PROOF_STORAGE_DIR=str(tmp_path / "proofs"),
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
async def engine(test_settings):
    eng = create_async_engine(test_settings.DATABASE_URL)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    """Sessão usada pelos testes para preparar e conferir dados"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_mp():
    return FakeMercadoPago()


@pytest.fixture
def fake_zoom():
    return FakeZoom()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
async def client(session_factory, test_settings, fake_mp, fake_zoom, fake_notifier):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_mercadopago_client] = lambda: fake_mp
    app.dependency_overrides[get_zoom_client] = lambda: fake_zoom
    app.dependency_overrides[get_notification_service] = lambda: fake_notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(user_id: str, role: str = "user", email: Optional[str] = None) -> dict:
    token = create_access_token(user_id, email=email or f"{user_id}@example.com", role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def patient_headers(patient_id):
    return auth_headers(patient_id)


@pytest.fixture
def staff_headers():
    return auth_headers(str(uuid.uuid4()), role="finance_team", email="financeiro@doxologos.com.br")


@pytest.fixture
def admin_headers():
    return auth_headers(str(uuid.uuid4()), role="admin", email="admin@doxologos.com.br")


@pytest.fixture
async def booking(db, patient_id) -> Booking:
    """Agendamento pendente daqui a 3 dias, serviço de R$ 150,00"""
    service = Service(name="Psicoterapia Individual", price=150.0, duration_minutes=50)
    professional = Professional(
        name="Dra. Ana Souza",
        email="ana@doxologos.com.br",
        phone="(11) 98888-7777",
        meeting_platform="zoom",
    )
    db.add_all([service, professional])
    await db.flush()

    starts = datetime.utcnow() + timedelta(days=3)
    booking = Booking(
        user_id=patient_id,
        professional_id=professional.id,
        service_id=service.id,
        booking_date=starts.strftime("%Y-%m-%d"),
        booking_time="14:00",
        status="pending_payment",
        patient_name="Maria Silva",
        patient_email="maria@example.com",
        patient_phone="+55 11 97777-6666",
        valor_consulta=150.0,
    )
    db.add(booking)
    await db.commit()
    return booking


async def add_approved_payment(db, booking: Booking, mp_payment_id: str = "555", amount: float = 150.0) -> Payment:
    payment = Payment(
        booking_id=booking.id,
        mp_payment_id=mp_payment_id,
        external_reference=booking.id,
        status="approved",
        amount=amount,
        currency="BRL",
        payer_email="maria@example.com",
        payer_name="Maria Silva",
    )
    db.add(payment)
    await db.commit()
    return payment


async def add_credit(db, user_id: str, amount: float = 150.0, status: str = "available") -> FinancialCredit:
    credit = FinancialCredit(user_id=user_id, amount=amount, status=status, source_type="cancellation")
    db.add(credit)
    await db.commit()
    return credit
