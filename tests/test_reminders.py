"""
Lembretes diários de pagamento pendente: no máximo um por agendamento por dia.
"""
from datetime import datetime, timedelta

import pytest

from app.core.email import DeliveryResult
from app.models import Booking
from app.services.reminder_service import send_pending_payment_reminders

from .conftest import FakeNotifier

REMINDER_KEY = {"x-function-key": "reminder-key"}


@pytest.mark.asyncio
async def test_reminder_sent_once_per_day(client, db, booking, fake_notifier):
    first = await client.post("/api/send-pending-payment-reminders", headers=REMINDER_KEY)
    second = await client.post("/api/send-pending-payment-reminders", headers=REMINDER_KEY)

    assert first.status_code == 200
    assert first.json()["reminders_sent"] == 1
    assert second.json()["reminders_sent"] == 0
    assert second.json()["reminders_skipped"] == 1
    assert fake_notifier.payment_reminders == [booking.id]

    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.last_payment_reminder_sent_at is not None


@pytest.mark.asyncio
async def test_reminder_sent_again_next_day(db, booking):
    notifier = FakeNotifier()
    today = datetime.utcnow()

    await send_pending_payment_reminders(db, notifier, now=today)
    summary = await send_pending_payment_reminders(db, notifier, now=today + timedelta(days=1))

    assert summary["reminders_sent"] == 1
    assert notifier.payment_reminders == [booking.id, booking.id]


@pytest.mark.asyncio
async def test_confirmed_and_past_bookings_are_not_reminded(db, booking, fake_notifier):
    past = Booking(
        user_id=booking.user_id,
        booking_date=(datetime.utcnow() - timedelta(days=2)).strftime("%Y-%m-%d"),
        booking_time="10:00",
        status="pending_payment",
        patient_email="maria@example.com",
    )
    db.add(past)
    booking.status = "confirmed"
    await db.commit()

    summary = await send_pending_payment_reminders(db, fake_notifier)

    assert summary["reminders_sent"] == 0
    assert fake_notifier.payment_reminders == []


@pytest.mark.asyncio
async def test_failed_reminder_can_be_retried_same_day(db, booking):
    notifier = FakeNotifier()
    notifier.reminder_result = DeliveryResult(ok=False, error="sendgrid 500")
    now = datetime.utcnow()

    failed = await send_pending_payment_reminders(db, notifier, now=now)

    assert failed["reminders_sent"] == 0
    assert failed["errors"] == [f"{booking.id}: sendgrid 500"]
    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.last_payment_reminder_sent_at is None

    notifier.reminder_result = DeliveryResult(ok=True)
    retried = await send_pending_payment_reminders(db, notifier, now=now + timedelta(hours=1))
    assert retried["reminders_sent"] == 1


@pytest.mark.asyncio
async def test_reminders_require_key_or_staff(client, booking, patient_headers, staff_headers):
    anonymous = await client.post("/api/send-pending-payment-reminders")
    wrong_key = await client.post("/api/send-pending-payment-reminders", headers={"x-function-key": "nope"})
    patient = await client.post("/api/send-pending-payment-reminders", headers=patient_headers)
    staff = await client.post("/api/send-pending-payment-reminders", headers=staff_headers)

    assert anonymous.status_code == 401
    assert wrong_key.status_code == 401
    assert patient.status_code == 403
    assert staff.status_code == 200
