"""
Reembolsos: estorno no Mercado Pago, reembolso manual com comprovante
e fila de avisos ao pagador.
"""
import base64
import hashlib
from pathlib import Path

import pytest
from sqlalchemy import select

from app.core.email import DeliveryResult
from app.models import Booking, Payment, PaymentRefund

from .conftest import add_approved_payment

PROOF = b"%PDF-1.4 comprovante de transferencia PIX"


def manual_refund_payload(payment_id: str, **overrides) -> dict:
    payload = {
        "payment_id": payment_id,
        "reason": "Paciente desistiu antes da sessão",
        "proof_base64": "data:application/pdf;base64," + base64.b64encode(PROOF).decode(),
        "proof_filename": "Comprovante PIX.pdf",
        "proof_checksum": hashlib.sha256(PROOF).hexdigest(),
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Estorno via Mercado Pago
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_refund_requires_staff(client, db, booking, patient_headers, fake_mp):
    payment = await add_approved_payment(db, booking)

    response = await client.post("/api/mp-refund", json={"payment_id": payment.id}, headers=patient_headers)

    assert response.status_code == 403
    assert fake_mp.refunds == []


@pytest.mark.asyncio
async def test_refund_of_pending_payment_never_reaches_provider(client, db, booking, staff_headers, fake_mp):
    payment = Payment(booking_id=booking.id, mp_payment_id="600", status="pending", amount=150.0)
    db.add(payment)
    await db.commit()

    response = await client.post("/api/mp-refund", json={"payment_id": "600"}, headers=staff_headers)

    assert response.status_code == 400
    assert fake_mp.refunds == []


@pytest.mark.asyncio
async def test_refund_approved_payment(client, db, booking, staff_headers, fake_mp):
    payment = await add_approved_payment(db, booking, mp_payment_id="555")
    fake_mp.add_payment("555", status="approved", external_reference=booking.id)

    response = await client.post("/api/mp-refund", json={"payment_id": 555}, headers=staff_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["refund_id"] == "7001"
    assert data["amount"] == 150.0
    assert fake_mp.refunds == [("555", None)]

    refunded = await db.get(Payment, payment.id, populate_existing=True)
    assert refunded.status == "refunded"
    assert refunded.refund_id == "7001"

    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.status == "cancelled_by_admin"

    result = await db.execute(select(PaymentRefund).where(PaymentRefund.payment_id == payment.id))
    row = result.scalar_one()
    assert row.kind == "provider"

    again = await client.post("/api/mp-refund", json={"payment_id": "555"}, headers=staff_headers)
    assert again.status_code == 400
    assert len(fake_mp.refunds) == 1


@pytest.mark.asyncio
async def test_partial_refund_amount_must_be_positive(client, db, booking, staff_headers, fake_mp):
    payment = await add_approved_payment(db, booking)

    response = await client.post(
        "/api/mp-refund", json={"payment_id": payment.id, "amount": -10}, headers=staff_headers
    )

    assert response.status_code == 422
    assert fake_mp.refunds == []


# ---------------------------------------------------------------------------
# Reembolso manual
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_manual_refund_stores_proof(client, db, booking, staff_headers, test_settings):
    payment = await add_approved_payment(db, booking)

    response = await client.post("/api/manual-refund", json=manual_refund_payload(payment.id), headers=staff_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["proof"]["checksum"] == hashlib.sha256(PROOF).hexdigest()
    assert data["proof"]["content_type"] == "application/pdf"
    assert data["proof"]["path"].startswith(f"{payment.id}/")
    assert data["proof"]["path"].endswith("-comprovante-pix.pdf")
    assert data["refund"]["notification_status"] == "pending"
    assert data["processed_by"]["role"] == "finance_team"

    stored = Path(test_settings.PROOF_STORAGE_DIR) / data["proof"]["path"]
    assert stored.read_bytes() == PROOF

    refunded = await db.get(Payment, payment.id, populate_existing=True)
    assert refunded.status == "refunded"
    assert refunded.refund_id == f"manual-{data['refund']['id']}"

    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.status == "cancelled_by_admin"

    overview = await client.post("/api/manual-refund/overview", json={"payment_id": payment.id}, headers=staff_headers)
    assert overview.status_code == 200
    assert [r["id"] for r in overview.json()["refunds"]] == [data["refund"]["id"]]

    proof = await client.get(f"/api/manual-refund/{data['refund']['id']}/proof", headers=staff_headers)
    assert proof.status_code == 200
    assert proof.content == PROOF
    assert proof.headers["Cache-Control"].startswith("no-store")


@pytest.mark.asyncio
async def test_manual_refund_checksum_mismatch(client, db, booking, staff_headers, test_settings):
    payment = await add_approved_payment(db, booking)

    response = await client.post(
        "/api/manual-refund",
        json=manual_refund_payload(payment.id, proof_checksum="0" * 64),
        headers=staff_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "proof_checksum mismatch"
    assert not Path(test_settings.PROOF_STORAGE_DIR).exists()

    current = await db.get(Payment, payment.id, populate_existing=True)
    assert current.status == "approved"


@pytest.mark.asyncio
async def test_manual_refund_proof_too_large(client, db, booking, staff_headers, test_settings):
    test_settings.MANUAL_REFUND_PROOF_MAX_BYTES = 16
    payment = await add_approved_payment(db, booking)

    response = await client.post("/api/manual-refund", json=manual_refund_payload(payment.id), headers=staff_headers)

    assert response.status_code == 413


@pytest.mark.asyncio
async def test_manual_refund_invalid_base64(client, db, booking, staff_headers):
    payment = await add_approved_payment(db, booking)

    response = await client.post(
        "/api/manual-refund",
        json=manual_refund_payload(payment.id, proof_base64="not base64!!", proof_checksum=None),
        headers=staff_headers,
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_manual_refund_requires_reason(client, db, booking, staff_headers):
    payment = await add_approved_payment(db, booking)

    response = await client.post(
        "/api/manual-refund", json=manual_refund_payload(payment.id, reason="   "), headers=staff_headers
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_manual_refund_forbidden_for_patients(client, db, booking, patient_headers):
    payment = await add_approved_payment(db, booking)

    response = await client.post("/api/manual-refund", json=manual_refund_payload(payment.id), headers=patient_headers)

    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Avisos de reembolso
# ---------------------------------------------------------------------------

async def create_manual_refund(client, db, booking, staff_headers) -> str:
    payment = await add_approved_payment(db, booking)
    response = await client.post(
        "/api/manual-refund",
        json=manual_refund_payload(
            payment.id,
            notification={"recipient_email": "maria@example.com", "cc_emails": ["financeiro@doxologos.com.br"]},
        ),
        headers=staff_headers,
    )
    assert response.status_code == 201
    return response.json()["refund"]["id"]


@pytest.mark.asyncio
async def test_notify_sends_pending_notification(client, db, booking, staff_headers, fake_notifier):
    refund_id = await create_manual_refund(client, db, booking, staff_headers)

    response = await client.post("/api/manual-refund/notify", json={})

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 1
    assert data["results"][0]["status"] == "sent"
    assert fake_notifier.refund_notifications == [refund_id]

    refund = await db.get(PaymentRefund, refund_id, populate_existing=True)
    assert refund.notification_status == "sent"
    assert refund.notification_attempts == 1
    assert refund.notification_sent_at is not None

    # Já enviado: não entra de novo na fila
    again = await client.post("/api/manual-refund/notify", json={})
    assert again.json()["results"] == []


@pytest.mark.asyncio
async def test_notify_gives_up_after_max_attempts(client, db, booking, staff_headers, fake_notifier):
    refund_id = await create_manual_refund(client, db, booking, staff_headers)
    fake_notifier.refund_result = DeliveryResult(ok=False, error="smtp down")

    for attempt in range(1, 6):
        response = await client.post("/api/manual-refund/notify", json={"limit": 5})
        assert response.json()["results"][0]["status"] == "failed"
        refund = await db.get(PaymentRefund, refund_id, populate_existing=True)
        assert refund.notification_attempts == attempt

    assert refund.notification_status == "error"
    assert refund.notification_last_error == "smtp down"

    after = await client.post("/api/manual-refund/notify", json={})
    assert after.json()["results"] == []
    assert len(fake_notifier.refund_notifications) == 5


@pytest.mark.asyncio
async def test_notify_dry_run(client, db, booking, staff_headers, fake_notifier):
    refund_id = await create_manual_refund(client, db, booking, staff_headers)

    response = await client.post("/api/manual-refund/notify", json={"dry_run": True})

    assert response.json() == {"processed": 0, "dry_run": True, "results": [{"id": refund_id, "status": "dry_run"}]}
    assert fake_notifier.refund_notifications == []


@pytest.mark.asyncio
async def test_notify_requires_function_key_when_configured(client, test_settings):
    test_settings.MANUAL_REFUND_NOTIFY_KEY = "notify-key"

    denied = await client.post("/api/manual-refund/notify", json={})
    allowed = await client.post("/api/manual-refund/notify", json={}, headers={"x-function-key": "notify-key"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
