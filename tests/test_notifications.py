"""
Canais de notificação e Zoom com transporte HTTP simulado.
Falhas de entrega viram DeliveryResult(ok=False), nunca exceção.
"""
import json
from datetime import datetime

import httpx
import pytest

from app.core.config import Settings
from app.core.email import EmailService
from app.core.exceptions import ProviderError
from app.models import Booking, Service, Professional, PaymentRefund
from app.services.notifications import NotificationService, format_phone_e164
from app.services.zoom_client import ZoomClient


def make_settings(**overrides) -> Settings:
    base = {
        "SENDGRID_API_KEY": "SG.test",
        "SENDGRID_FROM_EMAIL": "contato@doxologos.com.br",
        "TWILIO_ACCOUNT_SID": "AC123",
        "TWILIO_AUTH_TOKEN": "twilio-token",
        "TWILIO_WHATSAPP_FROM": "whatsapp:+14155238886",
    }
    base.update(overrides)
    return Settings(**base)


def make_booking() -> Booking:
    return Booking(
        id="b-1",
        booking_date="2026-11-03",
        booking_time="14:00",
        patient_name="Maria Silva",
        patient_email="maria@example.com",
        patient_phone="+55 (11) 97777-6666",
        meeting_link="https://zoom.us/j/8123",
    )


def test_format_phone_e164():
    assert format_phone_e164("+55 (11) 97777-6666") == "+5511977776666"
    assert format_phone_e164("---") is None
    assert format_phone_e164(None) is None


@pytest.mark.asyncio
async def test_booking_confirmation_uses_every_channel():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "sendgrid" in request.url.host:
            return httpx.Response(202, headers={"x-message-id": "sg-1"})
        return httpx.Response(201, json={"sid": "SM1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        service = NotificationService(make_settings(), http_client=http)
        professional = Professional(name="Dra. Ana", email="ana@doxologos.com.br", phone="11 98888-7777")
        results = await service.notify_booking_confirmed(make_booking(), professional)

    assert all(r.ok for r in results.values())
    assert results["patient_email"].message_id == "sg-1"

    sendgrid = [json.loads(r.content) for r in requests if "sendgrid" in r.url.host]
    assert {p["personalizations"][0]["to"][0]["email"] for p in sendgrid} == {
        "maria@example.com",
        "ana@doxologos.com.br",
    }

    twilio = [r for r in requests if "twilio" in r.url.host]
    assert len(twilio) == 2
    assert b"To=whatsapp%3A%2B5511977776666" in twilio[0].content
    assert twilio[0].headers["Authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_channel_failures_are_reported_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        if "sendgrid" in request.url.host:
            return httpx.Response(500, text="sendgrid down")
        raise httpx.ConnectError("twilio unreachable")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        service = NotificationService(make_settings(), http_client=http)
        results = await service.notify_booking_confirmed(make_booking(), None)

    assert results["patient_email"].ok is False
    assert "sendgrid 500" in results["patient_email"].error
    assert results["professional_email"].error == "no email address"
    assert results["patient_whatsapp"].ok is False
    assert "twilio unreachable" in results["patient_whatsapp"].error
    assert results["professional_whatsapp"].error == "no phone number"


@pytest.mark.asyncio
async def test_twilio_reply_without_json_still_counts_as_sent():
    twilio_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        if "sendgrid" in request.url.host:
            return httpx.Response(202)
        twilio_calls.append(request)
        return httpx.Response(201, text="<xml/>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        service = NotificationService(make_settings(), http_client=http)
        professional = Professional(name="Dra. Ana", email="ana@doxologos.com.br", phone="11 98888-7777")
        results = await service.notify_booking_confirmed(make_booking(), professional)

    assert len(twilio_calls) == 2
    assert results["patient_whatsapp"].ok is True
    assert results["patient_whatsapp"].message_id is None
    assert results["professional_whatsapp"].ok is True


@pytest.mark.asyncio
async def test_payment_reminder_email():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        service = NotificationService(make_settings(FRONTEND_URL="https://doxologos.test"), http_client=http)
        result = await service.send_payment_reminder(
            make_booking(),
            Service(name="Psicoterapia Individual", price=150.0),
            Professional(name="Dra. Ana"),
        )

    assert result.ok is True
    assert captured["subject"] == "Lembrete: finalize o pagamento - Consulta em 03/11/2026"
    html = captured["content"][0]["value"]
    assert "R$ 150,00" in html
    assert "https://doxologos.test/paciente" in html

@pytest.mark.asyncio
async def test_unconfigured_channels_are_skipped():
    config = make_settings(SENDGRID_API_KEY=None, TWILIO_ACCOUNT_SID=None)
    service = NotificationService(config)

    results = await service.notify_booking_confirmed(make_booking(), None)

    assert results["patient_email"].error == "email not configured"
    assert results["patient_whatsapp"].error == "whatsapp not configured"


@pytest.mark.asyncio
async def test_refund_notification_copies_cc():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(202)

    refund = PaymentRefund(
        id="r-1",
        amount=150.0,
        currency="BRL",
        notification_recipient="maria@example.com",
        notification_cc=["financeiro@doxologos.com.br"],
        notification_subject="Seu reembolso",
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        service = NotificationService(make_settings(), http_client=http)
        result = await service.send_refund_notification(refund, "Maria")

    assert result.ok is True
    assert captured["subject"] == "Seu reembolso"
    assert captured["personalizations"][0]["cc"] == [{"email": "financeiro@doxologos.com.br"}]
    assert "BRL 150.00" in captured["content"][0]["value"]


@pytest.mark.asyncio
async def test_email_service_without_credentials():
    service = EmailService(Settings(SENDGRID_API_KEY=None, SMTP_USER=None, SMTP_PASSWORD=None))
    result = await service.send_email("maria@example.com", "Teste", "<p>oi</p>")
    assert result.ok is False


# ---------------------------------------------------------------------------
# Zoom
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_zoom_meeting_with_server_to_server_oauth():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "zoom.us":
            return httpx.Response(200, json={"access_token": "zoom-access"})
        return httpx.Response(201, json={"id": 8123, "join_url": "https://zoom.us/j/8123", "password": "abc"})

    config = Settings(ZOOM_ACCOUNT_ID="acc", ZOOM_CLIENT_ID="cid", ZOOM_CLIENT_SECRET="secret")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        zoom = ZoomClient(config, http_client=http)
        meeting = await zoom.create_meeting("Sessão - Dra. Ana", datetime(2026, 11, 3, 14, 0), 50)

    assert meeting.id == "8123"
    assert meeting.join_url == "https://zoom.us/j/8123"

    oauth, create = requests
    assert oauth.url.params["grant_type"] == "account_credentials"
    assert create.headers["Authorization"] == "Bearer zoom-access"
    body = json.loads(create.content)
    assert body["type"] == 2
    assert body["start_time"] == "2026-11-03T14:00:00"
    assert body["duration"] == 50
    assert body["settings"]["waiting_room"] is True


@pytest.mark.asyncio
async def test_zoom_not_configured_returns_none():
    zoom = ZoomClient(Settings(ZOOM_BEARER_TOKEN=None, ZOOM_ACCOUNT_ID=None))
    assert await zoom.create_meeting("Sessão", None) is None


@pytest.mark.asyncio
async def test_zoom_error_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Invalid start_time"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        zoom = ZoomClient(Settings(ZOOM_BEARER_TOKEN="static"), http_client=http)
        with pytest.raises(ProviderError):
            await zoom.create_meeting("Sessão", None)


@pytest.mark.asyncio
async def test_meeting_failure_does_not_block_confirmation(client, db, booking, fake_mp, fake_zoom, fake_notifier):
    fake_zoom.fail = True
    fake_mp.add_payment("123", status="approved", external_reference=booking.id)

    response = await client.post("/api/mp-webhook", json={"type": "payment", "data": {"id": "123"}})

    assert response.status_code == 200
    current = await db.get(Booking, booking.id, populate_existing=True)
    assert current.status == "confirmed"
    assert current.meeting_link is None
    assert fake_notifier.booking_confirmations == [booking.id]
