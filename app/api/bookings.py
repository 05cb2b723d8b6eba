"""
Doxologos Payments - Bookings API
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.config import Settings, get_settings
from app.core.exceptions import AuthError, ForbiddenError
from app.core.security import (
    CurrentUser,
    get_current_user,
    get_optional_user,
    get_function_key,
    function_key_matches,
)
from app.schemas import CancelBookingRequest
from app.services.cancellation_service import cancel_booking_by_patient
from app.services.notifications import NotificationService, get_notification_service
from app.services.reminder_service import send_pending_payment_reminders

router = APIRouter(tags=["Bookings"])


@router.post("/patient-cancel-booking")
async def patient_cancel_booking(
    data: CancelBookingRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    config: Settings = Depends(get_settings),
):
    """
    Cancelamento pelo paciente.
    Com pagamento aprovado e antecedência mínima, gera crédito do valor pago.
    """
    return await cancel_booking_by_patient(db, config, user, data.booking_id, data.reason)


@router.post("/send-pending-payment-reminders")
async def pending_payment_reminders(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    function_key: Optional[str] = Depends(get_function_key),
    config: Settings = Depends(get_settings),
):
    """Lembrete diário de pagamento pendente (cron com x-function-key ou equipe)"""
    if not function_key_matches(function_key, config.PAYMENT_REMINDER_FUNCTION_KEY):
        if user is None:
            raise AuthError("Authentication required")
        if not user.is_staff:
            raise ForbiddenError("Access denied for this role")

    return await send_pending_payment_reminders(db, notifier)
