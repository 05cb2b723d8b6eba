"""
Doxologos Payments - Manual Refunds API
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.config import Settings, get_settings
from app.core.exceptions import AuthError
from app.core.security import CurrentUser, require_staff, get_function_key, function_key_matches
from app.schemas import ManualRefundRequest, RefundOverviewRequest, RefundNotifyRequest
from app.services import refund_service
from app.services.notifications import NotificationService, get_notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/manual-refund", tags=["Refunds"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_manual_refund(
    data: ManualRefundRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_staff),
    config: Settings = Depends(get_settings),
):
    """Registra reembolso manual com comprovante (admin e equipe financeira)"""
    return await refund_service.create_manual_refund(
        db,
        config,
        user,
        payment_id=data.payment_id,
        reason=data.reason,
        proof_base64=data.proof_base64,
        proof_filename=data.proof_filename,
        proof_checksum=data.proof_checksum,
        amount=data.amount,
        currency=data.currency,
        notification=data.notification.model_dump() if data.notification else None,
    )


@router.post("/overview")
async def refund_overview(
    data: RefundOverviewRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_staff),
):
    return await refund_service.list_refunds(db, data.payment_id)


@router.get("/{refund_id}/proof")
async def download_proof(
    refund_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_staff),
    config: Settings = Depends(get_settings),
):
    path, content_type, filename = await refund_service.get_refund_proof(db, config, refund_id)
    return FileResponse(path, media_type=content_type, filename=filename)


@router.post("/notify")
async def notify_refunds(
    data: RefundNotifyRequest,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
    config: Settings = Depends(get_settings),
    function_key: Optional[str] = Depends(get_function_key),
):
    """Processa a fila de avisos de reembolso (agendador/cron)"""
    if config.MANUAL_REFUND_NOTIFY_KEY and not function_key_matches(function_key, config.MANUAL_REFUND_NOTIFY_KEY):
        raise AuthError("Unauthorized")

    return await refund_service.notify_pending_refunds(
        db,
        notifier,
        config,
        limit=data.limit,
        dry_run=data.dry_run,
        notification_id=data.notification_id,
    )
