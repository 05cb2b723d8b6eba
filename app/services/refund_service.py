"""
Doxologos Payments - Refund Service
Reembolso via Mercado Pago e reembolso manual com comprovante
"""
import base64
import binascii
import hashlib
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import ValidationError, NotFoundError, PayloadTooLargeError
from app.core.security import CurrentUser
from app.models import (
    Payment,
    PaymentStatus,
    Booking,
    BookingStatus,
    PaymentRefund,
    RefundKind,
    NotificationStatus,
)
from app.services.audit import record_audit

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
}


def sanitize_filename(value: str) -> str:
    safe = re.sub(r"[^a-z0-9._-]+", "-", (value or "").lower())
    safe = re.sub(r"-+", "-", safe).strip("-")
    return safe or "comprovante"


def infer_content_type(proof_base64: Optional[str], filename: Optional[str]) -> str:
    if proof_base64 and proof_base64.startswith("data:"):
        match = re.match(r"^data:([^;]+);", proof_base64)
        if match:
            return match.group(1)
    if filename and "." in filename:
        extension = filename.rsplit(".", 1)[-1].lower()
        if extension in CONTENT_TYPES:
            return CONTENT_TYPES[extension]
    return "application/octet-stream"


def decode_proof(proof_base64: str, max_bytes: int) -> bytes:
    """Decodifica o comprovante (aceita data URL) respeitando o limite de tamanho"""
    encoded = proof_base64.split(",")[-1] if "," in proof_base64 else proof_base64
    encoded = re.sub(r"\s", "", encoded)

    # Estimativa antes de decodificar para não alocar payloads gigantes
    if len(encoded) * 3 // 4 > max_bytes + 3:
        raise PayloadTooLargeError("proof file too large", details={"max_bytes": max_bytes})

    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid proof_base64 payload")

    if not content:
        raise ValidationError("Invalid proof_base64 payload")
    if len(content) > max_bytes:
        raise PayloadTooLargeError("proof file too large", details={"max_bytes": max_bytes})
    return content


async def _find_payment(db: AsyncSession, payment_id: Optional[str]) -> Payment:
    if not payment_id:
        raise ValidationError("payment_id is required")
    payment = await db.get(Payment, payment_id)
    if payment is None:
        result = await db.execute(select(Payment).where(Payment.mp_payment_id == str(payment_id)))
        payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def _ensure_refundable(payment: Payment) -> None:
    if payment.status != PaymentStatus.APPROVED.value:
        raise ValidationError("Only approved payments can be refunded", details={"status": payment.status})
    if payment.refund_id:
        raise ValidationError("Payment already refunded", details={"refund_id": payment.refund_id})


async def _cancel_booking(db: AsyncSession, booking_id: Optional[str]) -> None:
    if not booking_id:
        return
    booking = await db.get(Booking, booking_id)
    if booking and booking.status not in BookingStatus.cancelled():
        booking.status = BookingStatus.CANCELLED_BY_ADMIN.value
        booking.payment_status = PaymentStatus.REFUNDED.value


async def refund_payment(
    db: AsyncSession,
    mp,
    payment_id: Optional[str],
    amount: Optional[float],
    user: CurrentUser,
) -> dict:
    """Estorna um pagamento aprovado no Mercado Pago"""
    payment = await _find_payment(db, payment_id)
    _ensure_refundable(payment)
    if amount is not None and float(amount) <= 0:
        raise ValidationError("amount must be a positive number")
    if not payment.mp_payment_id:
        raise ValidationError("Payment has no Mercado Pago id")

    refund = await mp.create_refund(payment.mp_payment_id, amount)
    refund_amount = refund.get("amount") or amount or payment.amount

    payment.status = PaymentStatus.REFUNDED.value
    payment.refund_id = str(refund.get("id"))
    payment.refund_amount = float(refund_amount) if refund_amount is not None else None
    payment.refund_status = refund.get("status") or "approved"
    payment.refund_date = datetime.utcnow()
    await _cancel_booking(db, payment.booking_id)

    db.add(PaymentRefund(
        payment_id=payment.id,
        kind=RefundKind.PROVIDER.value,
        amount=payment.refund_amount,
        currency=payment.currency or "BRL",
        processed_by=user.id,
        notification_status=NotificationStatus.NONE.value,
    ))
    await record_audit(
        db,
        entity_type="payment",
        entity_id=payment.id,
        action="mp_refund",
        performed_by=user.id,
        payload={"refund": refund, "amount": payment.refund_amount},
        commit=False,
    )
    await db.commit()

    logger.info(f"Pagamento {payment.mp_payment_id} estornado (refund {payment.refund_id})")

    return {
        "success": True,
        "refund_id": payment.refund_id,
        "status": payment.refund_status,
        "amount": payment.refund_amount,
        "payment_id": payment.mp_payment_id,
    }


async def create_manual_refund(
    db: AsyncSession,
    config: Settings,
    user: CurrentUser,
    payment_id: Optional[str],
    reason: Optional[str],
    proof_base64: Optional[str],
    proof_filename: Optional[str],
    proof_checksum: Optional[str] = None,
    amount: Optional[float] = None,
    currency: Optional[str] = None,
    notification: Optional[dict] = None,
) -> dict:
    """
    Registra um reembolso feito fora do Mercado Pago (ex.: PIX manual).

    O comprovante é gravado em PROOF_STORAGE_DIR/<payment_id>/<timestamp>-<nome>
    e removido se a gravação no banco falhar.
    """
    if not payment_id:
        raise ValidationError("payment_id is required")
    if amount is not None and float(amount) <= 0:
        raise ValidationError("amount must be a positive number")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    if not proof_base64 or not proof_filename:
        raise ValidationError("proof_base64 and proof_filename are required")

    content = decode_proof(proof_base64, config.MANUAL_REFUND_PROOF_MAX_BYTES)
    checksum = hashlib.sha256(content).hexdigest()
    if proof_checksum and proof_checksum.strip().lower() != checksum:
        raise ValidationError("proof_checksum mismatch", details={"expected": checksum})

    payment = await _find_payment(db, payment_id)
    _ensure_refundable(payment)

    filename = sanitize_filename(proof_filename)
    content_type = infer_content_type(proof_base64, proof_filename)
    timestamp = datetime.utcnow().strftime("%Y-%m-%dT%H-%M-%S-%f")
    relative_path = f"{payment.id}/{timestamp}-{filename}"
    proof_file = Path(config.PROOF_STORAGE_DIR) / relative_path
    proof_file.parent.mkdir(parents=True, exist_ok=True)
    proof_file.write_bytes(content)

    notification = notification or {}
    recipient = notification.get("recipient_email") or payment.payer_email
    cc = [e for e in (notification.get("cc_emails") or []) if isinstance(e, str) and e]

    try:
        refund = PaymentRefund(
            payment_id=payment.id,
            kind=RefundKind.MANUAL.value,
            amount=float(amount) if amount is not None else payment.amount,
            currency=(currency or "").strip() or payment.currency or "BRL",
            reason=reason,
            proof_path=relative_path,
            proof_checksum=checksum,
            proof_content_type=content_type,
            processed_by=user.id,
            notification_recipient=recipient,
            notification_cc=cc,
            notification_subject=notification.get("subject"),
            notification_message=notification.get("message"),
            notification_status=(
                NotificationStatus.PENDING.value if recipient else NotificationStatus.NONE.value
            ),
            notification_attempts=0,
        )
        db.add(refund)
        await db.flush()

        payment.status = PaymentStatus.REFUNDED.value
        payment.refund_id = f"manual-{refund.id}"
        payment.refund_amount = refund.amount
        payment.refund_status = "completed"
        payment.refund_date = datetime.utcnow()
        await _cancel_booking(db, payment.booking_id)

        await record_audit(
            db,
            entity_type="payment",
            entity_id=payment.id,
            action="manual_refund",
            performed_by=user.id,
            payload={"refund_id": refund.id, "amount": refund.amount, "proof_path": relative_path},
            commit=False,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        proof_file.unlink(missing_ok=True)
        logger.error(f"Falha ao registrar reembolso manual do pagamento {payment_id} - comprovante removido")
        raise

    logger.info(f"Reembolso manual {refund.id} registrado por {user.email} ({user.role})")

    return {
        "refund": refund.to_dict(),
        "proof": {"path": relative_path, "checksum": checksum, "content_type": content_type},
        "processed_by": {"id": user.id, "email": user.email, "role": user.role},
    }


async def list_refunds(db: AsyncSession, payment_id: Optional[str]) -> dict:
    payment = await _find_payment(db, payment_id)
    result = await db.execute(
        select(PaymentRefund)
        .where(PaymentRefund.payment_id == payment.id)
        .order_by(PaymentRefund.created_at.desc())
    )
    return {
        "payment": payment.to_dict(),
        "refunds": [r.to_dict() for r in result.scalars().all()],
    }


async def get_refund_proof(db: AsyncSession, config: Settings, refund_id: str):
    """Caminho do comprovante, content type e nome de download"""
    refund = await db.get(PaymentRefund, refund_id)
    if not refund or not refund.proof_path:
        raise NotFoundError("Proof not found")

    base_dir = Path(config.PROOF_STORAGE_DIR).resolve()
    proof_file = (base_dir / refund.proof_path).resolve()
    if base_dir not in proof_file.parents or not proof_file.exists():
        raise NotFoundError("Proof not found")
    return proof_file, refund.proof_content_type or "application/octet-stream", proof_file.name


async def notify_pending_refunds(
    db: AsyncSession,
    notifier,
    config: Settings,
    limit: Optional[int] = None,
    dry_run: bool = False,
    notification_id: Optional[str] = None,
) -> dict:
    """Envia os avisos de reembolso pendentes (status pending, tentativas < máximo)"""
    max_attempts = config.MANUAL_REFUND_NOTIFY_MAX_ATTEMPTS
    try:
        limit = int(limit) if limit is not None else 10
    except (TypeError, ValueError):
        limit = 10
    limit = max(1, min(50, limit or 10))

    query = select(PaymentRefund).order_by(PaymentRefund.created_at.asc())
    if notification_id:
        query = query.where(
            PaymentRefund.id == notification_id,
            PaymentRefund.notification_status != NotificationStatus.SENT.value,
        )
    else:
        query = query.where(
            PaymentRefund.notification_status == NotificationStatus.PENDING.value,
            PaymentRefund.notification_attempts < max_attempts,
        ).limit(limit)

    result = await db.execute(query)
    refunds = result.scalars().all()

    results = []
    for refund in refunds:
        if dry_run:
            results.append({"id": refund.id, "status": "dry_run"})
            continue

        payment = await db.get(Payment, refund.payment_id)
        delivery = await notifier.send_refund_notification(refund, payment.payer_name if payment else None)
        refund.notification_attempts = (refund.notification_attempts or 0) + 1

        if delivery.ok:
            refund.notification_status = NotificationStatus.SENT.value
            refund.notification_sent_at = datetime.utcnow()
            refund.notification_last_error = None
            results.append({"id": refund.id, "status": "sent", "message_id": delivery.message_id})
        else:
            error = (delivery.error or "unknown error")[:500]
            refund.notification_last_error = error
            refund.notification_status = (
                NotificationStatus.ERROR.value
                if refund.notification_attempts >= max_attempts
                else NotificationStatus.PENDING.value
            )
            results.append({"id": refund.id, "status": "failed", "error": error})
        await db.commit()

    sent = len([r for r in results if r["status"] == "sent"])
    logger.info(f"Avisos de reembolso processados: {sent}/{len(results)} enviados (dry_run={dry_run})")

    return {"processed": sent, "dry_run": dry_run, "results": results}
