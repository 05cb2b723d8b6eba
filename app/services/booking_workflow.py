"""
Doxologos Payments - Booking Reconciliation Workflow

Núcleo compartilhado entre webhook, polling e aplicação de crédito:
1. Localiza o agendamento (preference_id, depois external_reference)
2. Registra/atualiza a linha em payments (uma por pagamento do MP)
3. Confirma o agendamento com UPDATE condicional (só uma chamada vence)
4. Quem venceu cria a reunião e envia as notificações
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    Booking,
    BookingStatus,
    Service,
    Professional,
    Payment,
    PaymentStatus,
    APPROVED_STATUSES,
    Evento,
    EventRegistration,
    EVENT_REFERENCE_PREFIX,
)
from app.services.audit import record_audit

logger = logging.getLogger(__name__)

BOOKING_PREFIX = re.compile(r"^BOOKING[_-]?", re.IGNORECASE)


@dataclass
class ReconcileResult:
    kind: str                      # "booking", "event" ou "unmatched"
    status: Optional[str]
    booking_id: Optional[str] = None
    registration_id: Optional[str] = None
    payment_row_id: Optional[str] = None
    transitioned: bool = False


def _payer_name(mp_payment: dict) -> Optional[str]:
    payer = mp_payment.get("payer") or {}
    name = " ".join(p for p in (payer.get("first_name"), payer.get("last_name")) if p)
    return name or None


async def resolve_booking(
    db: AsyncSession,
    preference_id: Optional[str],
    external_reference: Optional[str],
) -> Optional[Booking]:
    """Busca por marketplace_preference_id e depois pelo id na referência externa"""
    if preference_id:
        result = await db.execute(
            select(Booking).where(Booking.marketplace_preference_id == preference_id)
        )
        booking = result.scalars().first()
        if booking:
            return booking

    if external_reference:
        reference = BOOKING_PREFIX.sub("", external_reference).strip() or external_reference
        return await db.get(Booking, reference)

    return None


async def upsert_payment(
    db: AsyncSession,
    mp_payment: dict,
    booking: Optional[Booking],
) -> Payment:
    """
    Grava o pagamento do MP: atualiza a linha com o mesmo mp_payment_id,
    senão adota a linha pendente mais recente do agendamento, senão insere.
    """
    mp_payment_id = str(mp_payment.get("id"))
    status = mp_payment.get("status") or "unknown"

    result = await db.execute(select(Payment).where(Payment.mp_payment_id == mp_payment_id))
    payment = result.scalar_one_or_none()

    if payment and payment.status == PaymentStatus.REFUNDED.value:
        # Reembolsado: só o payload bruto é atualizado
        payment.raw_payload = mp_payment
        await db.commit()
        return payment

    if payment is None and booking is not None:
        result = await db.execute(
            select(Payment)
            .where(
                Payment.booking_id == booking.id,
                Payment.mp_payment_id.is_(None),
                Payment.status == PaymentStatus.PENDING.value,
            )
            .order_by(Payment.created_at.desc())
        )
        payment = result.scalars().first()

    if payment is None:
        payment = Payment(booking_id=booking.id if booking else None)
        db.add(payment)

    payment.mp_payment_id = mp_payment_id
    payment.mp_preference_id = mp_payment.get("preference_id") or payment.mp_preference_id
    payment.external_reference = mp_payment.get("external_reference") or payment.external_reference
    payment.status = status
    payment.status_detail = mp_payment.get("status_detail")
    payment.payment_method = mp_payment.get("payment_method_id") or payment.payment_method
    payment.payment_type = mp_payment.get("payment_type_id") or payment.payment_type
    if mp_payment.get("transaction_amount") is not None:
        payment.amount = float(mp_payment["transaction_amount"])
    payment.currency = mp_payment.get("currency_id") or payment.currency or "BRL"
    payment.payer_email = (mp_payment.get("payer") or {}).get("email") or payment.payer_email
    payment.payer_name = _payer_name(mp_payment) or payment.payer_name
    payment.raw_payload = mp_payment
    if booking is None:
        payment.review_status = "pending_review"

    await db.commit()
    return payment


async def _create_meeting(db: AsyncSession, booking: Booking, professional: Optional[Professional], zoom) -> None:
    platform = (professional.meeting_platform if professional else None) or "zoom"
    if platform != "zoom":
        logger.warning(f"Plataforma de reunião não suportada: {platform} (booking {booking.id})")
        return

    service = await db.get(Service, booking.service_id) if booking.service_id else None
    if service and service.duration_minutes:
        duration = service.duration_minutes
    elif professional and professional.default_session_minutes:
        duration = professional.default_session_minutes
    else:
        duration = 50

    try:
        start_time = booking.starts_at
    except (TypeError, ValueError):
        start_time = None

    topic = f"Sessão - {professional.name}" if professional else "Sessão Doxologos"
    meeting = await zoom.create_meeting(topic, start_time, duration)
    if meeting is None:
        return

    booking.meeting_link = meeting.join_url
    booking.meeting_password = meeting.password
    booking.meeting_id = meeting.id
    booking.meeting_platform = meeting.platform
    await db.commit()


async def confirm_booking(
    db: AsyncSession,
    booking_id: str,
    payment_id: Optional[str],
    zoom,
    notifier,
) -> bool:
    """
    Confirma o agendamento se ainda estiver pending_payment.

    Returns:
        True apenas para a chamada que fez a transição; as demais são no-op.
    """
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING_PAYMENT.value)
        .values(
            status=BookingStatus.CONFIRMED.value,
            payment_status=PaymentStatus.APPROVED.value,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        logger.info(f"Booking {booking_id} já processado - confirmação ignorada")
        return False

    logger.info(f"Booking {booking_id} confirmado (payment {payment_id})")

    booking = await db.get(Booking, booking_id, populate_existing=True)
    professional = await db.get(Professional, booking.professional_id) if booking.professional_id else None

    try:
        await _create_meeting(db, booking, professional, zoom)
    except Exception as e:
        await db.rollback()
        logger.warning(f"Falha ao criar reunião para booking {booking_id}: {e}")
        booking = await db.get(Booking, booking_id, populate_existing=True)
        if booking.professional_id:
            professional = await db.get(Professional, booking.professional_id, populate_existing=True)

    outcome = {}
    try:
        results = await notifier.notify_booking_confirmed(booking, professional)
        outcome = {channel: {"ok": r.ok, "error": r.error} for channel, r in results.items()}
    except Exception as e:
        logger.warning(f"Falha ao enviar notificações do booking {booking_id}: {e}")
        outcome = {"error": str(e)}

    try:
        await record_audit(
            db,
            entity_type="notification",
            entity_id=booking_id,
            action="send_notifications",
            payload={
                "payment_id": payment_id,
                "meeting_link": booking.meeting_link,
                "patient_email": booking.patient_email,
                "professional_email": professional.email if professional else None,
                "results": outcome,
            },
        )
    except Exception as e:
        await db.rollback()
        logger.warning(f"Falha ao registrar log de notificações do booking {booking_id}: {e}")

    return True


async def confirm_event_registration(
    db: AsyncSession,
    registration_id: str,
    mp_payment: dict,
    notifier,
) -> bool:
    """Confirma inscrição EVENTO_<id> e envia o link da sala ao participante"""
    result = await db.execute(
        update(EventRegistration)
        .where(
            EventRegistration.id == registration_id,
            or_(
                EventRegistration.payment_status.is_(None),
                EventRegistration.payment_status != PaymentStatus.APPROVED.value,
            ),
        )
        .values(status="confirmed", payment_status=PaymentStatus.APPROVED.value, payment_date=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        logger.info(f"Inscrição {registration_id} ausente ou já confirmada")
        return False

    registration = await db.get(EventRegistration, registration_id, populate_existing=True)
    evento = await db.get(Evento, registration.evento_id)
    logger.info(f"Inscrição {registration_id} confirmada - enviando email com link da sala")

    if evento is None:
        logger.warning(f"Evento {registration.evento_id} não encontrado para inscrição {registration_id}")
        return True

    try:
        delivery = await notifier.notify_event_confirmed(
            registration, evento, mp_payment.get("transaction_amount")
        )
    except Exception as e:
        logger.warning(f"Falha ao enviar email da inscrição {registration_id}: {e}")
        return True

    if delivery.ok:
        registration.zoom_link_sent = True
        registration.zoom_link_sent_at = datetime.utcnow()
        await db.commit()
    return True


async def reconcile_provider_payment(
    db: AsyncSession,
    mp_payment: dict,
    zoom,
    notifier,
) -> ReconcileResult:
    """Aplica o estado de um pagamento do MP sobre inscrições, agendamentos e payments"""
    status = mp_payment.get("status")
    external_reference = mp_payment.get("external_reference") or None
    approved = status in APPROVED_STATUSES

    if external_reference and external_reference.startswith(EVENT_REFERENCE_PREFIX):
        registration_id = external_reference[len(EVENT_REFERENCE_PREFIX):]
        logger.info(f"Processando pagamento de evento - inscrição {registration_id}")
        transitioned = False
        if approved:
            transitioned = await confirm_event_registration(db, registration_id, mp_payment, notifier)
        return ReconcileResult(
            kind="event", status=status, registration_id=registration_id, transitioned=transitioned
        )

    booking = await resolve_booking(db, mp_payment.get("preference_id"), external_reference)
    payment = await upsert_payment(db, mp_payment, booking)

    if booking is None:
        logger.warning(
            f"Pagamento {payment.mp_payment_id} sem agendamento correspondente (ref={external_reference})"
        )
        await record_audit(
            db,
            entity_type="payment",
            entity_id=payment.mp_payment_id,
            action="unmatched_payment",
            payload={"external_reference": external_reference, "preference_id": mp_payment.get("preference_id")},
        )
        return ReconcileResult(kind="unmatched", status=status, payment_row_id=payment.id)

    transitioned = False
    if approved and payment.status != PaymentStatus.REFUNDED.value:
        transitioned = await confirm_booking(db, booking.id, payment.id, zoom, notifier)
    elif booking.status == BookingStatus.PENDING_PAYMENT.value:
        booking.payment_status = status
        booking.marketplace_payment_id = payment.mp_payment_id
        await db.commit()

    return ReconcileResult(
        kind="booking",
        status=status,
        booking_id=booking.id,
        payment_row_id=payment.id,
        transitioned=transitioned,
    )
