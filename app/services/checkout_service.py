"""
Doxologos Payments - Checkout Service

FLUXO DE PAGAMENTO:
1. Paciente cria o agendamento (status pending_payment)
2. Frontend chama POST /api/mp-create-preference (ou mp-create-payment para PIX)
   ou envia o token do cartão para POST /api/mp-process-card-payment
3. Backend cria a preferência no Mercado Pago com o preço do serviço
4. Paciente paga; o Mercado Pago chama POST /api/mp-webhook
5. Enquanto isso o checkout consulta POST /api/mp-check-payment a cada 3s
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import ValidationError, NotFoundError, ConflictError
from app.models import (
    Booking,
    BookingStatus,
    Service,
    Professional,
    Payment,
    PaymentStatus,
    TERMINAL_STATUSES,
    Evento,
    EventRegistration,
)
from app.services.booking_workflow import reconcile_provider_payment

logger = logging.getLogger(__name__)

# Valor mínimo aceito pelo Mercado Pago para cartão
MIN_CARD_AMOUNT = 0.50

# Mensagens exibidas ao paciente para status_detail de cartão recusado
STATUS_DETAIL_MESSAGES = {
    "cc_rejected_insufficient_amount": "Saldo insuficiente no cartão",
    "cc_rejected_bad_filled_card_number": "Número do cartão inválido",
    "cc_rejected_bad_filled_date": "Data de validade inválida",
    "cc_rejected_bad_filled_security_code": "Código de segurança inválido",
    "cc_rejected_call_for_authorize": "Pagamento rejeitado, entre em contato com o banco",
    "cc_rejected_card_disabled": "Cartão desabilitado",
    "cc_rejected_duplicated_payment": "Pagamento duplicado",
    "cc_rejected_max_attempts": "Número máximo de tentativas excedido",
    "cc_rejected_other_reason": "Pagamento rejeitado pelo banco",
}


def status_message(status: Optional[str], status_detail: Optional[str]) -> Optional[str]:
    """Mensagem em português para o resultado do pagamento"""
    if status == PaymentStatus.APPROVED.value:
        return "Pagamento aprovado"
    if status == PaymentStatus.CANCELLED.value:
        return "Pagamento cancelado"
    if status == PaymentStatus.REJECTED.value:
        return STATUS_DETAIL_MESSAGES.get(status_detail or "", "Pagamento rejeitado")
    if status in (PaymentStatus.PENDING.value, PaymentStatus.IN_PROCESS.value):
        return "Pagamento em processamento"
    return None


async def _load_pending_booking(db: AsyncSession, booking_id: str):
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    if booking.status != BookingStatus.PENDING_PAYMENT.value:
        raise ConflictError("Booking is not pending payment", details={"status": booking.status})

    service = await db.get(Service, booking.service_id) if booking.service_id else None
    if not service or service.price is None:
        raise NotFoundError("Service not found for booking")

    professional = await db.get(Professional, booking.professional_id) if booking.professional_id else None
    return booking, service, professional


async def _load_unpaid_registration(db: AsyncSession, inscricao_id: str):
    registration = await db.get(EventRegistration, inscricao_id)
    if not registration:
        raise NotFoundError("Registration not found")
    if registration.payment_status == PaymentStatus.APPROVED.value:
        raise ConflictError("Registration already paid")
    evento = await db.get(Evento, registration.evento_id)
    if not evento:
        raise NotFoundError("Event not found")
    return registration, evento


def _payment_methods(payment_methods: Optional[dict]) -> dict:
    final = {"excluded_payment_methods": [], "excluded_payment_types": []}
    if not payment_methods:
        return final
    if payment_methods.get("installments"):
        final["installments"] = payment_methods["installments"]
    for key in ("excluded_payment_methods", "excluded_payment_types"):
        value = payment_methods.get(key)
        if value:
            final[key] = value if isinstance(value, list) else [value]
    return final


def _back_urls(config: Settings, reference: str) -> dict:
    return {
        "success": f"{config.FRONTEND_URL}/checkout/success?external_reference={reference}",
        "failure": f"{config.FRONTEND_URL}/checkout/failure?external_reference={reference}",
        "pending": f"{config.FRONTEND_URL}/checkout/pending?external_reference={reference}",
    }


async def create_preference(
    db: AsyncSession,
    mp,
    config: Settings,
    booking_id: Optional[str] = None,
    inscricao_id: Optional[str] = None,
    payer: Optional[dict] = None,
    description: Optional[str] = None,
    payment_methods: Optional[dict] = None,
) -> dict:
    """
    Cria uma preferência de pagamento no Mercado Pago.

    O valor cobrado é sempre o preço armazenado (services.price ou eventos.valor).
    """
    if not booking_id and not inscricao_id:
        raise ValidationError("booking_id or inscricao_id is required")

    payer = payer or {}
    now = datetime.utcnow()

    if booking_id:
        booking, service, professional = await _load_pending_booking(db, booking_id)
        amount = float(service.price)
        reference = booking.id
        item = {
            "id": service.id,
            "title": description or f"Consulta - {service.name or 'Atendimento'}",
            "description": f"Sessão com {professional.name}" if professional else service.name,
            "quantity": 1,
            "currency_id": "BRL",
            "unit_price": amount,
        }
        payer_data = {
            "email": payer.get("email") or booking.patient_email,
            "name": payer.get("name") or booking.patient_name,
        }
        metadata = {"booking_id": booking.id}
    else:
        registration, evento = await _load_unpaid_registration(db, inscricao_id)
        amount = float(evento.valor or 0)
        if amount <= 0:
            raise ValidationError("Event has no price")
        reference = registration.external_reference
        item = {
            "id": evento.id,
            "title": description or evento.titulo,
            "quantity": 1,
            "currency_id": "BRL",
            "unit_price": amount,
        }
        payer_data = {
            "email": payer.get("email") or registration.patient_email,
            "name": payer.get("name") or registration.patient_name,
        }
        metadata = {"inscricao_id": registration.id}

    preference_data = {
        "items": [item],
        "payer": {k: v for k, v in payer_data.items() if v},
        "external_reference": reference,
        "notification_url": config.webhook_url,
        "back_urls": _back_urls(config, reference),
        "auto_return": "approved",
        "statement_descriptor": config.MP_STATEMENT_DESCRIPTOR,
        "metadata": metadata,
        "expires": True,
        "expiration_date_from": now.isoformat() + "Z",
        "expiration_date_to": (now + timedelta(hours=config.MP_PREFERENCE_EXPIRATION_HOURS)).isoformat() + "Z",
    }
    if payment_methods:
        preference_data["payment_methods"] = _payment_methods(payment_methods)

    # ProviderError propaga sem alterar o agendamento
    preference = await mp.create_preference(preference_data)
    preference_id = preference["id"]

    if booking_id:
        booking.marketplace_preference_id = preference_id
        db.add(Payment(
            booking_id=booking.id,
            mp_preference_id=preference_id,
            external_reference=reference,
            status=PaymentStatus.PENDING.value,
            amount=amount,
            currency="BRL",
            payer_email=payer_data.get("email"),
            payer_name=payer_data.get("name"),
            payment_url=preference.get("init_point"),
        ))
    else:
        registration.marketplace_preference_id = preference_id
    await db.commit()

    logger.info(f"Preferência criada: {preference_id} para {reference} (R$ {amount:.2f})")

    return {
        "success": True,
        "init_point": preference.get("init_point"),
        "sandbox_init_point": preference.get("sandbox_init_point", preference.get("init_point")),
        "preference_id": preference_id,
        "mp": preference,
    }


async def create_pix_payment(
    db: AsyncSession,
    mp,
    config: Settings,
    booking_id: Optional[str],
    payer: Optional[dict] = None,
    payment_method_id: Optional[str] = None,
    description: Optional[str] = None,
) -> dict:
    """Cria um pagamento PIX e devolve os dados do QR code"""
    if not booking_id:
        raise ValidationError("booking_id is required")

    booking, service, _ = await _load_pending_booking(db, booking_id)
    amount = float(service.price)

    payer = payer or {}
    email = payer.get("email") or booking.patient_email
    if not email:
        raise ValidationError("payer email is required")
    name = (payer.get("name") or booking.patient_name or "").strip()
    first_name, _, last_name = name.partition(" ")

    payment_data = {
        "transaction_amount": amount,
        "description": description or f"Consulta {service.name} - Agendamento {booking.id}",
        "payment_method_id": payment_method_id or "pix",
        "payer": {
            "email": email,
            "first_name": first_name or "Cliente",
            "last_name": last_name,
        },
        "external_reference": booking.id,
        "notification_url": config.webhook_url,
        "metadata": {"booking_id": booking.id},
    }
    idempotency_key = f"{booking.id}-{int(time.time() * 1000)}"

    mp_payment = await mp.create_pix_payment(payment_data, idempotency_key)
    transaction_data = (mp_payment.get("point_of_interaction") or {}).get("transaction_data") or {}
    mp_payment_id = str(mp_payment.get("id"))
    status = mp_payment.get("status") or PaymentStatus.PENDING.value

    booking.marketplace_payment_id = mp_payment_id
    booking.payment_status = PaymentStatus.PENDING.value
    db.add(Payment(
        booking_id=booking.id,
        mp_payment_id=mp_payment_id,
        external_reference=booking.id,
        status=status,
        status_detail=mp_payment.get("status_detail"),
        payment_method=payment_data["payment_method_id"],
        payment_type="bank_transfer",
        amount=amount,
        currency="BRL",
        payer_email=email,
        payer_name=name or None,
        qr_code=transaction_data.get("qr_code"),
        qr_code_base64=transaction_data.get("qr_code_base64"),
        ticket_url=transaction_data.get("ticket_url"),
        raw_payload=mp_payment,
    ))
    await db.commit()

    logger.info(f"Pagamento PIX {mp_payment_id} criado para booking {booking.id}")

    return {
        "success": True,
        "payment_id": mp_payment_id,
        "status": status,
        "qr_code": transaction_data.get("qr_code"),
        "qr_code_base64": transaction_data.get("qr_code_base64"),
        "ticket_url": transaction_data.get("ticket_url"),
    }


async def check_payment(db: AsyncSession, mp, zoom, notifier, payment_id: Optional[str]) -> dict:
    """
    Uma rodada de polling do checkout.
    Pagamento aprovado passa pela mesma reconciliação do webhook.
    """
    if not payment_id:
        raise ValidationError("payment_id is required")

    mp_payment = await mp.get_payment(str(payment_id))
    status = mp_payment.get("status")
    status_detail = mp_payment.get("status_detail")

    if status == PaymentStatus.APPROVED.value:
        result = await reconcile_provider_payment(db, mp_payment, zoom, notifier)
        logger.info(f"Polling: pagamento {payment_id} aprovado ({result.kind}, transição={result.transitioned})")

    return {
        "success": True,
        "status": status,
        "status_detail": status_detail,
        "payment_method": mp_payment.get("payment_method_id"),
        "amount": mp_payment.get("transaction_amount"),
        "terminal": status in TERMINAL_STATUSES,
        "message": status_message(status, status_detail),
    }


async def process_card_payment(
    db: AsyncSession,
    mp,
    zoom,
    notifier,
    config: Settings,
    token: Optional[str],
    booking_id: Optional[str] = None,
    inscricao_id: Optional[str] = None,
    installments: Optional[int] = None,
    payer: Optional[dict] = None,
    description: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> dict:
    """
    Pagamento direto com o token do cartão.

    Cobra o preço armazenado; o resultado passa pela mesma reconciliação
    do webhook, então um pagamento aprovado já confirma o agendamento
    (ou a inscrição) e o webhook seguinte vira no-op.
    """
    if not token:
        raise ValidationError("token is required")
    if not booking_id and not inscricao_id:
        raise ValidationError("booking_id or inscricao_id is required")

    payer = payer or {}
    if booking_id:
        booking, service, _ = await _load_pending_booking(db, booking_id)
        amount = float(service.price)
        reference = booking.id
        email = payer.get("email") or booking.patient_email
        default_description = f"Consulta {service.name or 'Doxologos'}"
    else:
        registration, evento = await _load_unpaid_registration(db, inscricao_id)
        amount = float(evento.valor or 0)
        reference = registration.external_reference
        email = payer.get("email") or registration.patient_email
        default_description = evento.titulo

    amount = round(amount, 2)
    if amount < MIN_CARD_AMOUNT:
        raise ValidationError(
            "Invalid amount for card payment",
            details={"amount": amount, "minimum": MIN_CARD_AMOUNT},
        )

    payment_data = {
        "token": token,
        "transaction_amount": amount,
        "installments": installments or 1,
        "description": description or default_description,
        "payer": {
            "email": email or config.MP_DEFAULT_PAYER_EMAIL,
            "identification": payer.get("identification") or {},
        },
        "external_reference": reference,
        "statement_descriptor": config.MP_STATEMENT_DESCRIPTOR,
        "notification_url": config.webhook_url,
    }
    idempotency_key = idempotency_key or f"{reference}-{int(time.time() * 1000)}"

    # ProviderError (502) propaga sem alterar agendamento ou inscrição
    mp_payment = await mp.create_card_payment(payment_data, idempotency_key)
    status = mp_payment.get("status")
    logger.info(f"Pagamento com cartão {mp_payment.get('id')} para {reference}: {status}")

    result = await reconcile_provider_payment(db, mp_payment, zoom, notifier)
    logger.info(f"Cartão {mp_payment.get('id')} reconciliado: {result.kind} (transição={result.transitioned})")

    return {
        "success": True,
        "payment_id": str(mp_payment.get("id")),
        "status": status,
        "status_detail": mp_payment.get("status_detail"),
        "transaction_amount": mp_payment.get("transaction_amount", amount),
        "message": status_message(status, mp_payment.get("status_detail")),
    }
