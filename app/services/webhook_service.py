"""
Doxologos Payments - Mercado Pago Webhook
Toda chamada gera exatamente uma linha mp_webhook em logs, qualquer que seja o resultado.
"""
import logging
import traceback
from typing import Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.error_notifier import notify_error_sync
from app.core.exceptions import ProviderError, ServiceError, WebhookSignatureError
from app.core.webhook_security import verify_mercadopago_signature
from app.services.audit import record_audit
from app.services.booking_workflow import reconcile_provider_payment

logger = logging.getLogger(__name__)


def extract_payment_id(body: dict, query_params: Mapping[str, str]) -> Optional[str]:
    """data.id, resource (formato antigo), id ou query string"""
    payment_id = None
    data = body.get("data")
    if isinstance(data, dict) and data.get("id"):
        payment_id = data["id"]
    elif body.get("resource"):
        # Formato antigo: resource = ".../v1/payments/<id>"
        payment_id = str(body["resource"]).rstrip("/").split("/")[-1]
    elif body.get("id"):
        payment_id = body["id"]
    if not payment_id:
        payment_id = query_params.get("data.id") or query_params.get("id")
    return str(payment_id) if payment_id else None


def notification_topic(body: dict, query_params: Mapping[str, str]) -> Optional[str]:
    return body.get("type") or body.get("topic") or query_params.get("type") or query_params.get("topic")


async def process_webhook(
    db: AsyncSession,
    mp,
    zoom,
    notifier,
    config: Settings,
    body: dict,
    query_params: Mapping[str, str],
    signature: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Tuple[int, str]:
    """
    Processa a notificação e devolve (status HTTP, texto da resposta).
    """
    payment_id = extract_payment_id(body, query_params)
    topic = notification_topic(body, query_params)
    status_code, text = 200, "ok"

    try:
        if config.MP_WEBHOOK_SECRET:
            data_id = query_params.get("data.id") or payment_id
            verify_mercadopago_signature(config.MP_WEBHOOK_SECRET, signature, request_id, data_id)

        if topic and topic != "payment":
            logger.info(f"Ignorando notificação do tipo: {topic}")
        elif not payment_id:
            logger.warning("Webhook sem payment_id")
            status_code, text = 400, "no payment id"
        else:
            # Sempre consulta o MP: o corpo do webhook não é confiável
            mp_payment = await mp.get_payment(payment_id)
            logger.info(
                f"Webhook pagamento {payment_id}: status={mp_payment.get('status')}, "
                f"ref={mp_payment.get('external_reference')}"
            )
            try:
                result = await reconcile_provider_payment(db, mp_payment, zoom, notifier)
                logger.info(f"Webhook {payment_id} reconciliado: {result.kind} (transição={result.transitioned})")
            except Exception as e:
                await db.rollback()
                logger.error(f"Erro ao reconciliar pagamento {payment_id}: {e}")
                notify_error_sync(
                    "WEBHOOK_ERROR",
                    str(e),
                    traceback.format_exc(),
                    entity_id=payment_id,
                    endpoint="/api/mp-webhook",
                )
    except WebhookSignatureError as e:
        logger.warning(f"Webhook rejeitado: {e}")
        status_code, text = 401, "invalid signature"
    except ProviderError as e:
        # 500 para o Mercado Pago reenviar a notificação
        logger.error(f"Falha ao buscar pagamento {payment_id} no MP: {e.provider_status} {e.details}")
        status_code, text = 500, "provider error"
    except ServiceError as e:
        # Cliente do MP sem token: mesmo tratamento de falha do provedor
        logger.error(f"Mercado Pago indisponível para o pagamento {payment_id}: {e.message}")
        status_code, text = 500, "provider error"

    try:
        await record_audit(db, entity_type="payment", entity_id=payment_id, action="mp_webhook", payload=body)
    except Exception as e:
        await db.rollback()
        logger.error(f"Falha ao gravar log do webhook {payment_id}: {e}")
        return 500, "internal error"

    return status_code, text
