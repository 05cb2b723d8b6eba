"""
Doxologos Payments - Pending Payment Reminders

Rodado uma vez por dia (cron ou admin_cli): avisa o paciente de cada
agendamento futuro ainda em pending_payment. O dia do lembrete é reservado
com UPDATE condicional antes do envio, então duas execuções simultâneas
nunca mandam dois emails no mesmo dia para o mesmo agendamento.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Booking, BookingStatus, Service, Professional

logger = logging.getLogger(__name__)


async def _claim_reminder_day(db: AsyncSession, booking_id: str, now: datetime, day_start: datetime) -> bool:
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
            or_(
                Booking.last_payment_reminder_sent_at.is_(None),
                Booking.last_payment_reminder_sent_at < day_start,
            ),
        )
        .values(last_payment_reminder_sent_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def _undo_claim(db: AsyncSession, booking_id: str, now: datetime, previous: Optional[datetime]) -> None:
    await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.last_payment_reminder_sent_at == now)
        .values(last_payment_reminder_sent_at=previous)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def send_pending_payment_reminders(
    db: AsyncSession,
    notifier,
    now: Optional[datetime] = None,
) -> dict:
    """
    Envia os lembretes do dia.

    Returns:
        {"success", "reminders_sent", "reminders_skipped", "errors", "timestamp"}
    """
    now = now or datetime.utcnow()
    day_start = datetime(now.year, now.month, now.day)
    today = now.strftime("%Y-%m-%d")

    result = await db.execute(
        select(Booking)
        .where(
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
            Booking.booking_date >= today,
        )
        .order_by(Booking.booking_date, Booking.booking_time)
    )
    bookings = result.scalars().all()
    logger.info(f"{len(bookings)} agendamentos com pagamento pendente")

    sent = 0
    skipped = 0
    errors = []

    for booking in bookings:
        booking_id = booking.id
        previous = booking.last_payment_reminder_sent_at

        if not booking.patient_email:
            errors.append(f"{booking_id}: no patient email")
            continue

        if not await _claim_reminder_day(db, booking_id, now, day_start):
            logger.debug(f"Booking {booking_id} já recebeu lembrete hoje")
            skipped += 1
            continue

        booking = await db.get(Booking, booking_id, populate_existing=True)
        service = await db.get(Service, booking.service_id) if booking.service_id else None
        professional = await db.get(Professional, booking.professional_id) if booking.professional_id else None

        try:
            delivery = await notifier.send_payment_reminder(booking, service, professional)
        except Exception as e:
            logger.error(f"Erro ao enviar lembrete do booking {booking_id}: {e}")
            delivery = None
            error = str(e)
        else:
            error = delivery.error

        if delivery is None or not delivery.ok:
            # Devolve o dia para a próxima execução tentar de novo
            await _undo_claim(db, booking_id, now, previous)
            errors.append(f"{booking_id}: {error or 'email failed'}")
            continue

        logger.info(f"Lembrete de pagamento enviado para {booking.patient_email} (booking {booking_id})")
        sent += 1

    summary = {
        "success": True,
        "reminders_sent": sent,
        "reminders_skipped": skipped,
        "errors": errors,
        "timestamp": now.isoformat() + "Z",
    }
    logger.info(f"Lembretes de pagamento: {summary}")
    return summary
