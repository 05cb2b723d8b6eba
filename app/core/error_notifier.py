"""
Doxologos Payments - Error Notification System
Avisa o suporte por email quando o fluxo de pagamento falha
(webhook, reconciliação, erros não tratados da API)
"""
import asyncio
import html
import logging
import threading
from datetime import datetime
from typing import Optional

from app.core.config import settings
from app.core.email import EmailService

logger = logging.getLogger(__name__)

# Mesmo erro só gera novo email depois de 5 minutos
_error_cache = {}
_CACHE_TTL_SECONDS = 300

SENSITIVE_KEYS = ("password", "token", "secret", "proof_base64", "authorization")


def _get_error_key(error_type: str, error_msg: str) -> str:
    return f"{error_type}:{error_msg[:100]}"


def _should_send_notification(error_key: str) -> bool:
    now = datetime.utcnow()
    last_sent = _error_cache.get(error_key)
    if last_sent and (now - last_sent).total_seconds() < _CACHE_TTL_SECONDS:
        return False
    _error_cache[error_key] = now
    return True


def _sanitize(request_data: dict) -> dict:
    return {
        k: "***" if any(s in str(k).lower() for s in SENSITIVE_KEYS) else v
        for k, v in request_data.items()
    }


def _render(rows: list) -> str:
    lines = "".join(
        f'<tr><td style="padding:6px;font-weight:bold;vertical-align:top">{label}</td>'
        f'<td style="padding:6px;font-family:monospace;white-space:pre-wrap">{html.escape(str(value))}</td></tr>'
        for label, value in rows
    )
    return f"""
<h2 style="color:#991b1b">Erro no {settings.APP_NAME} ({settings.ENVIRONMENT})</h2>
<table style="border-collapse:collapse;font-size:13px">{lines}</table>
"""


def send_error_notification(
    error_type: str,
    error_message: str,
    error_details: Optional[str] = None,
    entity_id: Optional[str] = None,
    endpoint: Optional[str] = None,
    request_data: Optional[dict] = None
) -> bool:
    """
    Envia o email de erro para ERROR_NOTIFICATION_EMAIL.

    Args:
        error_type: "WEBHOOK_ERROR", "API_ERROR", ...
        error_message: Mensagem resumida
        error_details: Stack trace (cortado em 2000 caracteres)
        entity_id: Pagamento/agendamento afetado
        endpoint: Endpoint que gerou o erro
        request_data: Corpo da requisição (campos sensíveis mascarados)

    Returns:
        True se o email foi enviado
    """
    if not settings.ERROR_NOTIFICATION_ENABLED:
        return False

    mailer = EmailService(settings)
    if not mailer.is_configured():
        logger.warning("Email não configurado - notificação de erro não enviada")
        return False

    error_key = _get_error_key(error_type, error_message)
    if not _should_send_notification(error_key):
        logger.debug(f"Notificação de erro suprimida (repetida): {error_key}")
        return False

    rows = [
        ("Tipo", error_type),
        ("Mensagem", error_message),
        ("Data/Hora", datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")),
    ]
    if entity_id:
        rows.append(("Entidade", entity_id))
    if endpoint:
        rows.append(("Endpoint", endpoint))
    if request_data:
        rows.append(("Requisição", str(_sanitize(request_data))[:500]))
    if error_details:
        rows.append(("Detalhes", error_details[:2000]))

    # Roda fora do event loop da API (thread própria)
    result = asyncio.run(mailer.send_email(
        settings.ERROR_NOTIFICATION_EMAIL,
        f"[DOXOLOGOS ERRO] {error_type}: {error_message[:50]}",
        _render(rows),
    ))
    if result.ok:
        logger.info(f"Notificação de erro enviada: {error_type}")
    return result.ok


def notify_error_sync(
    error_type: str,
    error_message: str,
    error_details: Optional[str] = None,
    **kwargs
):
    """Dispara a notificação em thread daemon para não bloquear a requisição"""
    if not settings.ERROR_NOTIFICATION_ENABLED:
        return

    def _send():
        try:
            send_error_notification(
                error_type=error_type,
                error_message=error_message,
                error_details=error_details,
                **kwargs
            )
        except Exception as e:
            logger.error(f"Falha ao enviar notificação de erro: {e}")

    threading.Thread(target=_send, daemon=True).start()
