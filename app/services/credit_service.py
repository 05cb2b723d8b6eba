"""
Doxologos Payments - Financial Credit Ledger

Estados: available -> reserved -> consumed, com release reserved -> available.
Reserva, consumo e liberação são UPDATEs condicionais de uma linha:
rowcount 0 significa que outra requisição chegou antes (409).
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError, NotFoundError, ConflictError, ForbiddenError
from app.core.security import CurrentUser
from app.models import (
    FinancialCredit,
    CreditStatus,
    Booking,
    BookingStatus,
    Service,
    Payment,
    PaymentStatus,
)
from app.services.audit import record_audit
from app.services.booking_workflow import confirm_booking

logger = logging.getLogger(__name__)


async def _get_credit(db: AsyncSession, credit_id: Optional[str], user: Optional[CurrentUser] = None) -> FinancialCredit:
    if not credit_id:
        raise ValidationError("credit_id is required")
    credit = await db.get(FinancialCredit, credit_id)
    if not credit:
        raise NotFoundError("Credit not found")
    if user is not None and not user.is_staff and credit.user_id != user.id:
        raise ForbiddenError("Credit belongs to another user")
    return credit


async def list_credits(db: AsyncSession, user_id: str, status: Optional[str] = None) -> dict:
    query = select(FinancialCredit).where(FinancialCredit.user_id == user_id)
    if status:
        query = query.where(FinancialCredit.status == status)
    result = await db.execute(query.order_by(FinancialCredit.created_at.desc()))
    credits = result.scalars().all()

    # Saldo sempre calculado sobre todos os créditos do usuário
    if status:
        result = await db.execute(select(FinancialCredit).where(FinancialCredit.user_id == user_id))
        all_credits = result.scalars().all()
    else:
        all_credits = credits

    balance = {s.value: 0.0 for s in CreditStatus}
    for credit in all_credits:
        balance[credit.status] = round(balance.get(credit.status, 0.0) + float(credit.amount or 0), 2)

    return {"credits": [c.to_dict() for c in credits], "balance": balance}


async def create_credit(
    db: AsyncSession,
    user_id: Optional[str],
    amount: Optional[float],
    source_type: Optional[str],
    source_reason: Optional[str] = None,
    currency: str = "BRL",
    original_booking_id: Optional[str] = None,
    original_payment_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    performed_by: Optional[str] = None,
) -> FinancialCredit:
    if not user_id:
        raise ValidationError("user_id is required")
    if amount is None or float(amount) <= 0:
        raise ValidationError("amount must be greater than zero")
    if not source_type:
        raise ValidationError("source_type is required")

    credit = FinancialCredit(
        user_id=user_id,
        amount=round(float(amount), 2),
        currency=currency or "BRL",
        status=CreditStatus.AVAILABLE.value,
        source_type=source_type,
        source_reason=source_reason,
        original_booking_id=original_booking_id,
        original_payment_id=original_payment_id,
        metadata_={**(metadata or {}), "created_by": performed_by},
    )
    db.add(credit)
    await db.flush()
    await record_audit(
        db,
        entity_type="financial_credit",
        entity_id=credit.id,
        action="create",
        performed_by=performed_by,
        payload={"amount": credit.amount, "source_type": source_type},
        commit=False,
    )
    await db.commit()

    logger.info(f"Crédito {credit.id} criado para {user_id}: {credit.currency} {credit.amount:.2f}")
    return credit


async def reserve_credit(
    db: AsyncSession,
    credit_id: Optional[str],
    reservation_token: Optional[str],
    user: Optional[CurrentUser] = None,
) -> FinancialCredit:
    if not reservation_token:
        raise ValidationError("reservation_token is required")
    credit = await _get_credit(db, credit_id, user)

    result = await db.execute(
        update(FinancialCredit)
        .where(FinancialCredit.id == credit.id, FinancialCredit.status == CreditStatus.AVAILABLE.value)
        .values(
            status=CreditStatus.RESERVED.value,
            reservation_token=reservation_token,
            reserved_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        current = await db.get(FinancialCredit, credit.id, populate_existing=True)
        raise ConflictError("Credit is not available", details={"status": current.status if current else None})

    logger.info(f"Crédito {credit.id} reservado")
    return await db.get(FinancialCredit, credit.id, populate_existing=True)


async def consume_credit(
    db: AsyncSession,
    credit_id: Optional[str],
    reservation_token: Optional[str],
    used_booking_id: Optional[str],
    used_payment_id: Optional[str] = None,
    user: Optional[CurrentUser] = None,
) -> FinancialCredit:
    if not used_booking_id:
        raise ValidationError("used_booking_id is required")
    if not reservation_token:
        raise ValidationError("reservation_token is required")
    credit = await _get_credit(db, credit_id, user)

    # O crédito só paga agendamento do próprio dono
    booking = await db.get(Booking, used_booking_id)
    if not booking:
        raise ValidationError("used_booking_id does not reference a booking")
    if booking.user_id != credit.user_id:
        raise ForbiddenError("Booking belongs to another user")

    result = await db.execute(
        update(FinancialCredit)
        .where(
            FinancialCredit.id == credit.id,
            FinancialCredit.status == CreditStatus.RESERVED.value,
            FinancialCredit.reservation_token == reservation_token,
        )
        .values(
            status=CreditStatus.CONSUMED.value,
            used_booking_id=used_booking_id,
            used_payment_id=used_payment_id,
            used_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        raise ConflictError("Credit is not reserved with this token")

    logger.info(f"Crédito {credit.id} consumido no booking {used_booking_id}")
    return await db.get(FinancialCredit, credit.id, populate_existing=True)


async def release_credit(
    db: AsyncSession,
    credit_id: Optional[str],
    reservation_token: Optional[str],
    user: Optional[CurrentUser] = None,
) -> FinancialCredit:
    if not reservation_token:
        raise ValidationError("reservation_token is required")
    credit = await _get_credit(db, credit_id, user)

    result = await db.execute(
        update(FinancialCredit)
        .where(
            FinancialCredit.id == credit.id,
            FinancialCredit.status == CreditStatus.RESERVED.value,
            FinancialCredit.reservation_token == reservation_token,
        )
        .values(status=CreditStatus.AVAILABLE.value, reservation_token=None, reserved_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        raise ConflictError("Credit is not reserved with this token")

    logger.info(f"Crédito {credit.id} liberado")
    return await db.get(FinancialCredit, credit.id, populate_existing=True)


async def _restore_consumed_credit(db: AsyncSession, credit_id: str, booking_id: str) -> None:
    """Desfaz o consumo de um crédito cujo agendamento não chegou a ser confirmado"""
    result = await db.execute(
        update(FinancialCredit)
        .where(
            FinancialCredit.id == credit_id,
            FinancialCredit.status == CreditStatus.CONSUMED.value,
            FinancialCredit.used_booking_id == booking_id,
        )
        .values(
            status=CreditStatus.AVAILABLE.value,
            reservation_token=None,
            reserved_at=None,
            used_booking_id=None,
            used_payment_id=None,
            used_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount != 1:
        logger.error(f"Crédito {credit_id} não pôde ser devolvido após falha no booking {booking_id}")


async def apply_credit_to_booking(
    db: AsyncSession,
    zoom,
    notifier,
    booking_id: Optional[str],
    credit_id: Optional[str],
    user: CurrentUser,
) -> dict:
    """
    Paga um agendamento inteiro com um crédito.

    Ordem: reserva -> conferência do valor -> pagamento -> consumo -> confirmação.
    A confirmação é o último passo: qualquer falha antes dela devolve o
    crédito enquanto o agendamento ainda está pending_payment.
    """
    if not booking_id:
        raise ValidationError("booking_id is required")
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    if not user.is_staff and booking.user_id != user.id:
        raise ForbiddenError("Booking belongs to another user")
    if booking.status != BookingStatus.PENDING_PAYMENT.value:
        raise ConflictError("Booking is not pending payment", details={"status": booking.status})

    credit = await _get_credit(db, credit_id)
    if credit.user_id != booking.user_id:
        raise ForbiddenError("Credit belongs to another user")

    token = uuid.uuid4().hex
    credit = await reserve_credit(db, credit.id, token)

    payment_row_id = None
    consumed = False
    try:
        service = await db.get(Service, booking.service_id) if booking.service_id else None
        if not service or service.price is None:
            raise NotFoundError("Service not found for booking")
        price = float(service.price)
        if float(credit.amount) < price:
            raise ValidationError(
                "Insufficient credit for this booking",
                details={"credit_amount": credit.amount, "price": price},
            )

        payment = Payment(
            booking_id=booking.id,
            external_reference=booking.id,
            status=PaymentStatus.APPROVED.value,
            payment_method="credit",
            payment_type="credit",
            amount=price,
            currency=credit.currency or "BRL",
            raw_payload={"credit_id": credit.id},
        )
        db.add(payment)
        await db.commit()
        payment_row_id = payment.id

        credit = await consume_credit(db, credit.id, token, booking.id, payment.id)
        consumed = True

        if not await confirm_booking(db, booking.id, payment.id, zoom, notifier):
            raise ConflictError("Booking is not pending payment")
    except Exception as e:
        await db.rollback()
        logger.warning(f"Falha ao aplicar crédito {credit_id} no booking {booking_id}: {e} - liberando reserva")
        if payment_row_id:
            stale = await db.get(Payment, payment_row_id, populate_existing=True)
            if stale and stale.status == PaymentStatus.APPROVED.value:
                stale.status = PaymentStatus.CANCELLED.value
                await db.commit()
        if consumed:
            await _restore_consumed_credit(db, credit_id, booking_id)
        else:
            try:
                await release_credit(db, credit_id, token)
            except ConflictError:
                logger.error(f"Crédito {credit_id} não pôde ser liberado após falha")
        raise

    # confirm_booking pode ter feito rollback (falha na reunião)
    credit = await db.get(FinancialCredit, credit_id, populate_existing=True)
    await record_audit(
        db,
        entity_type="financial_credit",
        entity_id=credit_id,
        action="apply",
        performed_by=user.id,
        payload={"booking_id": booking_id, "payment_id": payment_row_id, "amount": price},
    )

    return {
        "success": True,
        "booking_id": booking_id,
        "payment_id": payment_row_id,
        "credit": credit.to_dict(),
    }
