"""
Doxologos Payments - Webhook Security
Verificação da assinatura x-signature enviada pelo Mercado Pago

Formato do header: "ts=1704908010,v1=618c85345248dd820d5fd456117c2ab2ef8eda45a0282ff693eac24131a5e839"
Manifest assinado: "id:<data.id>;request-id:<x-request-id>;ts:<ts>;"
"""
import hashlib
import hmac
import logging
from typing import Dict, Optional

from .exceptions import WebhookSignatureError

logger = logging.getLogger(__name__)


def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    """Converte "ts=...,v1=..." em dicionário"""
    parts: Dict[str, str] = {}
    if not header:
        return parts
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_manifest(data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    manifest = ""
    if data_id:
        # IDs alfanuméricos devem ser assinados em minúsculas
        manifest += f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


def compute_signature(secret: str, manifest: str) -> str:
    """Compute HMAC-SHA256 signature of the manifest"""
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_mercadopago_signature(
    secret: str,
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: Optional[str],
) -> None:
    """
    Valida a assinatura do webhook.

    Raises:
        WebhookSignatureError: header ausente, malformado ou assinatura divergente
    """
    parts = parse_signature_header(signature_header)
    ts = parts.get("ts")
    received = parts.get("v1")

    if not ts or not received:
        logger.warning("Webhook sem x-signature válido")
        raise WebhookSignatureError("missing signature")

    expected = compute_signature(secret, build_manifest(data_id, request_id, ts))
    if not hmac.compare_digest(expected, received.lower()):
        logger.warning(f"Assinatura do webhook divergente (data.id={data_id}, request-id={request_id})")
        raise WebhookSignatureError("invalid signature")
