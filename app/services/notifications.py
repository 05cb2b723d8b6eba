"""
Doxologos Payments - Notification Dispatch
Email e WhatsApp (Twilio) para confirmações e reembolsos.
Cada canal é independente e nunca propaga exceção para o fluxo de pagamento.
"""
import logging
import re
from typing import Optional

import httpx
from fastapi import Depends

from app.core.config import Settings, get_settings
from app.core.email import EmailService, DeliveryResult
from app.models import Booking, Service, Professional, Evento, EventRegistration, PaymentRefund

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def format_phone_e164(phone: Optional[str]) -> Optional[str]:
    """Mantém só os dígitos e prefixa com +"""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    return f"+{digits}"


class NotificationService:
    def __init__(
        self,
        config: Settings,
        email_service: Optional[EmailService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.email = email_service or EmailService(config, http_client=http_client)
        self.twilio_sid = config.TWILIO_ACCOUNT_SID
        self.twilio_token = config.TWILIO_AUTH_TOKEN
        self.twilio_from = config.TWILIO_WHATSAPP_FROM
        self._http_client = http_client

    def whatsapp_configured(self) -> bool:
        return bool(self.twilio_sid and self.twilio_token and self.twilio_from)

    async def send_whatsapp(self, to_phone: Optional[str], body: str) -> DeliveryResult:
        formatted = format_phone_e164(to_phone)
        if not formatted:
            return DeliveryResult(ok=False, error="no phone number")
        if not self.whatsapp_configured():
            logger.debug("Twilio não configurado - WhatsApp ignorado")
            return DeliveryResult(ok=False, error="whatsapp not configured")

        data = {"From": self.twilio_from, "To": f"whatsapp:{formatted}", "Body": body}
        url = TWILIO_API_URL.format(sid=self.twilio_sid)
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, auth=(self.twilio_sid, self.twilio_token), data=data)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(url, auth=(self.twilio_sid, self.twilio_token), data=data)
        except httpx.HTTPError as e:
            logger.warning(f"Falha ao enviar WhatsApp para {formatted}: {e}")
            return DeliveryResult(ok=False, error=str(e))

        if response.status_code in (200, 201):
            try:
                sid = response.json().get("sid")
            except ValueError:
                # Aceito, mas sem corpo JSON
                sid = None
            logger.info(f"WhatsApp enviado para {formatted} (SID: {sid})")
            return DeliveryResult(ok=True, message_id=sid)

        logger.warning(f"Twilio retornou {response.status_code} para {formatted}")
        return DeliveryResult(ok=False, error=f"twilio {response.status_code}: {response.text[:300]}")

    async def _email(self, to_email: Optional[str], send) -> DeliveryResult:
        if not to_email:
            return DeliveryResult(ok=False, error="no email address")
        return await send()

    async def notify_booking_confirmed(
        self,
        booking: Booking,
        professional: Optional[Professional],
    ) -> dict:
        """
        Avisa paciente e profissional sobre o agendamento confirmado.

        Returns:
            Resultado por canal: {"patient_email": DeliveryResult, ...}
        """
        link = booking.meeting_link
        professional_name = professional.name if professional else None
        professional_email = professional.email if professional else None
        professional_phone = professional.phone if professional else None

        results = {
            "patient_email": await self._email(
                booking.patient_email,
                lambda: self.email.send_booking_confirmed_email(
                    booking.patient_email,
                    booking.patient_name,
                    professional_name,
                    booking.booking_date,
                    booking.booking_time,
                    link,
                ),
            ),
            "professional_email": await self._email(
                professional_email,
                lambda: self.email.send_professional_booking_email(
                    professional_email,
                    professional_name,
                    booking.booking_date,
                    booking.booking_time,
                    link,
                ),
            ),
        }

        text = f"Agendamento confirmado - {booking.booking_date} {booking.booking_time}. Link: {link or 'será enviado em breve'}"
        results["patient_whatsapp"] = await self.send_whatsapp(booking.patient_phone, text)
        results["professional_whatsapp"] = await self.send_whatsapp(professional_phone, text)
        return results

    async def notify_event_confirmed(
        self,
        registration: EventRegistration,
        evento: Evento,
        amount: Optional[float],
    ) -> DeliveryResult:
        starts = evento.data_inicio
        return await self._email(
            registration.patient_email,
            lambda: self.email.send_event_confirmed_email(
                registration.patient_email,
                registration.patient_name,
                evento.titulo,
                starts.strftime("%d/%m/%Y") if starts else "-",
                starts.strftime("%H:%M") if starts else "-",
                amount,
                evento.meeting_link,
                evento.meeting_password,
            ),
        )

    async def send_refund_notification(self, refund: PaymentRefund, payer_name: Optional[str] = None) -> DeliveryResult:
        return await self._email(
            refund.notification_recipient,
            lambda: self.email.send_refund_email(
                refund.notification_recipient,
                refund.notification_subject,
                refund.notification_message,
                payer_name,
                refund.amount,
                refund.currency,
                cc=list(refund.notification_cc or []),
            ),
        )

    async def send_payment_reminder(
        self,
        booking: Booking,
        service: Optional[Service],
        professional: Optional[Professional],
    ) -> DeliveryResult:
        amount = service.price if service and service.price is not None else booking.valor_consulta
        return await self._email(
            booking.patient_email,
            lambda: self.email.send_payment_reminder_email(
                booking.patient_email,
                booking.patient_name,
                booking.booking_date,
                booking.booking_time,
                service.name if service else None,
                professional.name if professional else None,
                amount,
            ),
        )


def get_notification_service(config: Settings = Depends(get_settings)) -> NotificationService:
    return NotificationService(config)
