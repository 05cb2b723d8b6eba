"""
Doxologos Payments - Patient Cancellation
Cancelamento pelo paciente; com antecedência mínima gera crédito do valor pago
"""
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import ValidationError, NotFoundError, ForbiddenError, ConflictError
from app.core.security import CurrentUser
from app.models import Booking, BookingStatus, Payment
from app.services.audit import record_audit
from app.services.credit_service import create_credit

logger = logging.getLogger(__name__)

SUCCESS_PAYMENT_STATUSES = {"approved", "authorized", "settled", "paid"}


def _clinic_now(config: Settings) -> datetime:
    return datetime.now(ZoneInfo(config.CLINIC_TIMEZONE)).replace(tzinfo=None)


async def cancel_booking_by_patient(
    db: AsyncSession,
    config: Settings,
    user: CurrentUser,
    booking_id: Optional[str],
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    if not booking_id:
        raise ValidationError("booking_id is required")

    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    if booking.user_id != user.id:
        raise ForbiddenError("You can only cancel your own bookings")
    if booking.status in BookingStatus.cancelled():
        raise ConflictError("Booking already cancelled", details={"booking_id": booking.id})

    now = now or _clinic_now(config)
    min_hours = config.CREDIT_MIN_HOURS_NOTICE
    try:
        hours_until_booking = (booking.starts_at - now).total_seconds() / 3600
    except (TypeError, ValueError):
        hours_until_booking = None
    eligible = hours_until_booking is not None and hours_until_booking >= min_hours

    result = await db.execute(
        select(Payment).where(Payment.booking_id == booking.id).order_by(Payment.created_at.desc())
    )
    payment = next(
        (p for p in result.scalars().all() if (p.status or "").lower() in SUCCESS_PAYMENT_STATUSES),
        None,
    )

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.user_id == user.id,
            Booking.status.notin_(BookingStatus.cancelled()),
        )
        .values(status=BookingStatus.CANCELLED_BY_PATIENT.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError("Booking cancellation conflict")

    await record_audit(
        db,
        entity_type="booking",
        entity_id=booking.id,
        action="cancelled_by_patient",
        performed_by=user.id,
        payload={"reason": reason, "hours_until_booking": hours_until_booking},
        commit=False,
    )
    await db.commit()
    logger.info(f"Booking {booking.id} cancelado pelo paciente ({hours_until_booking} h de antecedência)")

    credit = None
    if eligible and payment and float(payment.amount or 0) > 0:
        credit = await create_credit(
            db,
            user_id=user.id,
            amount=payment.amount,
            source_type="cancellation",
            source_reason=reason,
            currency=payment.currency or "BRL",
            original_booking_id=booking.id,
            original_payment_id=payment.id,
            metadata={
                "triggered_by": "patient_portal",
                "cancellation_reason": reason,
                "hours_until_booking": hours_until_booking,
                "payment_method": payment.payment_method,
                "mp_payment_id": payment.mp_payment_id,
                "policy": f"cancelled_with_{min_hours}h_notice",
            },
            performed_by=user.id,
        )
    elif eligible and payment:
        logger.warning(f"Crédito não gerado para booking {booking.id}: valor inválido")

    return {
        "booking_id": booking.id,
        "booking_status": BookingStatus.CANCELLED_BY_PATIENT.value,
        "credit_created": credit is not None,
        "credit": credit.to_dict() if credit else None,
        "credit_eligibility": {
            "eligible": eligible,
            "has_successful_payment": payment is not None,
            "policy_applied": f"{min_hours}h_notice" if eligible and payment else None,
            "hours_until_booking": hours_until_booking,
        },
    }
