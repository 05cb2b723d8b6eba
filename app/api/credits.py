"""
Doxologos Payments - Financial Credits API
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
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
from app.schemas import (
    CreditListRequest,
    CreditCreateRequest,
    CreditReserveRequest,
    CreditConsumeRequest,
    CreditApplyRequest,
)
from app.services import credit_service
from app.services.zoom_client import ZoomClient, get_zoom_client
from app.services.notifications import NotificationService, get_notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["Financial Credits"])


@router.post("/list")
async def list_credits(
    data: CreditListRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Créditos do usuário com saldo por status"""
    user_id = user.id
    if data.user_id and data.user_id != user.id:
        if not user.is_staff:
            raise ForbiddenError("Access denied for this role")
        user_id = data.user_id
    return await credit_service.list_credits(db, user_id, data.status)


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_credit(
    data: CreditCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    function_key: Optional[str] = Depends(get_function_key),
    config: Settings = Depends(get_settings),
):
    """Cria crédito manualmente (admin ou chamada servidor-a-servidor com x-function-key)"""
    by_key = function_key_matches(function_key, config.FINANCIAL_CREDITS_FUNCTION_KEY)
    if not by_key:
        if user is None:
            raise AuthError("Authentication required")
        if not user.is_admin:
            raise ForbiddenError("Only admins can create credits")

    credit = await credit_service.create_credit(
        db,
        user_id=data.user_id,
        amount=data.amount,
        source_type=data.source_type,
        source_reason=data.source_reason,
        currency=data.currency,
        original_booking_id=data.original_booking_id,
        original_payment_id=data.original_payment_id,
        metadata=data.metadata,
        performed_by=user.id if user else "function-key",
    )
    return {"credit": credit.to_dict()}


@router.post("/reserve")
async def reserve_credit(
    data: CreditReserveRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    credit = await credit_service.reserve_credit(db, data.credit_id, data.reservation_token, user)
    return {"credit": credit.to_dict()}


@router.post("/consume")
async def consume_credit(
    data: CreditConsumeRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    credit = await credit_service.consume_credit(
        db,
        data.credit_id,
        data.reservation_token,
        data.used_booking_id,
        data.used_payment_id,
        user,
    )
    return {"credit": credit.to_dict()}


@router.post("/release")
async def release_credit(
    data: CreditReserveRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    credit = await credit_service.release_credit(db, data.credit_id, data.reservation_token, user)
    return {"credit": credit.to_dict()}


@router.post("/apply")
async def apply_credit(
    data: CreditApplyRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    zoom: ZoomClient = Depends(get_zoom_client),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Paga o agendamento inteiro com um crédito disponível"""
    return await credit_service.apply_credit_to_booking(db, zoom, notifier, data.booking_id, data.credit_id, user)
