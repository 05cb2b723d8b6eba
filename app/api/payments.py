"""
Doxologos Payments - Payments API
Endpoints de integração com o Mercado Pago

FLUXO DE PAGAMENTO:
1. Paciente cria o agendamento (pending_payment)
2. Frontend chama POST /api/mp-create-preference ou /api/mp-create-payment (PIX)
   ou /api/mp-process-card-payment (token do cartão)
3. Paciente paga no checkout do MP
4. Mercado Pago envia webhook para POST /api/mp-webhook
5. Checkout consulta POST /api/mp-check-payment a cada 3 segundos
6. O primeiro a ver "approved" confirma o agendamento; o outro vira no-op
"""
import json
import logging

from fastapi import APIRouter, Depends, Request, Header
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.database import get_db
from app.core.config import Settings, get_settings
from app.core.rate_limit import limiter
from app.core.security import CurrentUser, require_staff
from app.schemas import (
    CreatePreferenceRequest,
    CreatePreferenceResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    CardPaymentRequest,
    CardPaymentResponse,
    CheckPaymentRequest,
    CheckPaymentResponse,
    RefundRequest,
    RefundResponse,
)
from app.services.mercadopago_client import MercadoPagoClient, get_mercadopago_client
from app.services.zoom_client import ZoomClient, get_zoom_client
from app.services.notifications import NotificationService, get_notification_service
from app.services import checkout_service, refund_service
from app.services.webhook_service import process_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


@router.post("/mp-create-preference", response_model=CreatePreferenceResponse)
@limiter.limit(get_settings().CHECKOUT_RATE_LIMIT)
async def create_preference(
    request: Request,
    data: CreatePreferenceRequest,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    config: Settings = Depends(get_settings),
):
    """
    Cria uma preferência de pagamento no Mercado Pago.

    O valor é o preço do serviço (ou do evento); "amount" enviado pelo cliente é ignorado.
    """
    if data.amount is not None:
        logger.debug(f"amount do cliente ignorado para {data.booking_id or data.inscricao_id}")

    return await checkout_service.create_preference(
        db,
        mp,
        config,
        booking_id=data.booking_id,
        inscricao_id=data.inscricao_id,
        payer=data.payer.model_dump() if data.payer else None,
        description=data.description,
        payment_methods=data.payment_methods,
    )


@router.post("/mp-create-payment", response_model=CreatePaymentResponse)
@limiter.limit(get_settings().CHECKOUT_RATE_LIMIT)
async def create_payment(
    request: Request,
    data: CreatePaymentRequest,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    config: Settings = Depends(get_settings),
):
    """Cria pagamento PIX e retorna o QR code"""
    return await checkout_service.create_pix_payment(
        db,
        mp,
        config,
        booking_id=data.booking_id,
        payer=data.payer.model_dump() if data.payer else None,
        payment_method_id=data.payment_method_id,
        description=data.description,
    )


@router.post("/mp-process-card-payment", response_model=CardPaymentResponse)
@limiter.limit(get_settings().CHECKOUT_RATE_LIMIT)
async def process_card_payment(
    request: Request,
    data: CardPaymentRequest,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    zoom: ZoomClient = Depends(get_zoom_client),
    notifier: NotificationService = Depends(get_notification_service),
    config: Settings = Depends(get_settings),
    x_idempotency_key: Optional[str] = Header(default=None),
):
    """
    Pagamento com cartão tokenizado no navegador.

    Cobra o preço do serviço (ou do evento); falha do Mercado Pago responde 502.
    """
    if data.amount is not None:
        logger.debug(f"amount do cliente ignorado para {data.booking_id or data.inscricao_id}")

    return await checkout_service.process_card_payment(
        db,
        mp,
        zoom,
        notifier,
        config,
        token=data.token,
        booking_id=data.booking_id,
        inscricao_id=data.inscricao_id,
        installments=data.installments,
        payer=data.payer.model_dump() if data.payer else None,
        description=data.description,
        idempotency_key=x_idempotency_key,
    )


@router.post("/mp-check-payment", response_model=CheckPaymentResponse)
@limiter.limit(get_settings().CHECKOUT_RATE_LIMIT)
async def check_payment(
    request: Request,
    data: CheckPaymentRequest,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    zoom: ZoomClient = Depends(get_zoom_client),
    notifier: NotificationService = Depends(get_notification_service),
):
    """
    Verifica o status de um pagamento no Mercado Pago.
    Usado pelo polling do checkout.
    """
    return await checkout_service.check_payment(db, mp, zoom, notifier, data.payment_id)


@router.post("/mp-webhook", response_class=PlainTextResponse)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    zoom: ZoomClient = Depends(get_zoom_client),
    notifier: NotificationService = Depends(get_notification_service),
    config: Settings = Depends(get_settings),
    x_signature: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
):
    """
    Webhook para receber notificações do Mercado Pago.

    Respostas em texto: "ok", "no payment id" (400), "invalid signature" (401),
    "provider error" / "internal error" (500, o MP reenvia).
    """
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        logger.warning("Webhook com corpo inválido")
        body = {}
    if not isinstance(body, dict):
        body = {"payload": body}

    logger.info(f"Webhook recebido: {body}")

    status_code, text = await process_webhook(
        db,
        mp,
        zoom,
        notifier,
        config,
        body,
        request.query_params,
        signature=x_signature,
        request_id=x_request_id,
    )
    return PlainTextResponse(text, status_code=status_code)


@router.post("/mp-refund", response_model=RefundResponse)
async def refund_payment(
    data: RefundRequest,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    user: CurrentUser = Depends(require_staff),
):
    """Estorna um pagamento aprovado (equipe financeira/admin)"""
    return await refund_service.refund_payment(db, mp, data.payment_id, data.amount, user)
