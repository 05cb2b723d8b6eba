"""
Pagamento direto com token de cartão: preço armazenado, confirmação
pela mesma reconciliação do webhook e 502 quando o Mercado Pago falha.
"""
import pytest
from sqlalchemy import select

from app.core.exceptions import ProviderError
from app.models import Booking, Payment, Evento, EventRegistration


@pytest.mark.asyncio
async def test_approved_card_payment_confirms_booking(client, db, booking, fake_mp, fake_notifier):
    response = await client.post(
        "/api/mp-process-card-payment",
        json={
            "token": "card-token-1",
            "amount": 1.0,
            "installments": 2,
            "booking_id": booking.id,
            "payer": {"email": "maria@example.com", "identification": {"type": "CPF", "number": "12345678909"}},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["payment_id"] == "910001"
    assert data["status"] == "approved"
    assert data["transaction_amount"] == 150.0
    assert data["message"] == "Pagamento aprovado"

    sent, idempotency_key = fake_mp.card_requests[0]
    assert sent["token"] == "card-token-1"
    assert sent["transaction_amount"] == 150.0
    assert sent["installments"] == 2
    assert sent["external_reference"] == booking.id
    assert sent["payer"]["identification"]["number"] == "12345678909"
    assert idempotency_key.startswith(f"{booking.id}-")

    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.status == "confirmed"
    assert fake_notifier.booking_confirmations == [booking.id]

    result = await db.execute(select(Payment).where(Payment.booking_id == booking.id))
    payment = result.scalar_one()
    assert payment.mp_payment_id == "910001"
    assert payment.status == "approved"


@pytest.mark.asyncio
async def test_card_payment_then_webhook_confirms_once(client, booking, fake_mp, fake_notifier):
    await client.post(
        "/api/mp-process-card-payment",
        json={"token": "card-token-1", "booking_id": booking.id},
    )
    webhook = await client.post("/api/mp-webhook", json={"type": "payment", "data": {"id": "910001"}})

    assert webhook.status_code == 200
    assert fake_notifier.booking_confirmations == [booking.id]


@pytest.mark.asyncio
async def test_rejected_card_keeps_booking_pending(client, db, booking, fake_mp):
    fake_mp.card_status = ("rejected", "cc_rejected_insufficient_amount")

    response = await client.post(
        "/api/mp-process-card-payment",
        json={"token": "card-token-1", "booking_id": booking.id},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Saldo insuficiente no cartão"
    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.status == "pending_payment"
    assert current.payment_status == "rejected"


@pytest.mark.asyncio
async def test_card_provider_failure_is_502(client, db, booking, fake_mp):
    fake_mp.fail_with = ProviderError("mercadopago", 400, {"message": "invalid card token"})

    response = await client.post(
        "/api/mp-process-card-payment",
        json={"token": "card-token-1", "booking_id": booking.id},
    )

    assert response.status_code == 502
    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.status == "pending_payment"

    result = await db.execute(select(Payment).where(Payment.booking_id == booking.id))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_card_payment_requires_token_and_target(client, booking):
    no_token = await client.post("/api/mp-process-card-payment", json={"booking_id": booking.id})
    no_target = await client.post("/api/mp-process-card-payment", json={"token": "card-token-1"})

    assert no_token.status_code == 400
    assert no_target.status_code == 400


@pytest.mark.asyncio
async def test_card_payment_for_event_registration(client, db, fake_mp, fake_notifier):
    evento = Evento(titulo="Grupo de Ansiedade", valor=80.0)
    db.add(evento)
    await db.flush()
    registration = EventRegistration(evento_id=evento.id, patient_name="João", patient_email="joao@example.com")
    db.add(registration)
    await db.commit()

    response = await client.post(
        "/api/mp-process-card-payment",
        json={"token": "card-token-1", "inscricao_id": registration.id},
    )

    assert response.status_code == 200
    sent, _ = fake_mp.card_requests[0]
    assert sent["transaction_amount"] == 80.0
    assert sent["external_reference"] == f"EVENTO_{registration.id}"

    current = await db.get(EventRegistration, registration.id, populate_existing=True)
    assert current.payment_status == "approved"
    assert fake_notifier.event_confirmations == [registration.id]

    again = await client.post(
        "/api/mp-process-card-payment",
        json={"token": "card-token-2", "inscricao_id": registration.id},
    )
    assert again.status_code == 409
    assert len(fake_mp.card_requests) == 1
