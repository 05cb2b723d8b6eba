"""
Doxologos Payments - Email Service
Envio de emails transacionais (SendGrid ou SMTP)
"""
import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional
import logging

import httpx

from .config import settings, Settings

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass
class DeliveryResult:
    """Resultado de um envio (email ou WhatsApp)"""
    ok: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class EmailService:
    """Serviço de envio de emails via SendGrid (preferencial) ou SMTP"""

    def __init__(self, config: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        config = config or settings
        self.sendgrid_key = config.SENDGRID_API_KEY
        self.sendgrid_from = config.SENDGRID_FROM_EMAIL
        self.host = config.SMTP_HOST
        self.port = config.SMTP_PORT
        self.user = config.SMTP_USER
        self.password = config.SMTP_PASSWORD
        self.from_email = config.SMTP_FROM_EMAIL
        self.from_name = config.SMTP_FROM_NAME
        self.use_tls = config.SMTP_TLS
        self.use_ssl = config.SMTP_SSL
        self.app_url = config.FRONTEND_URL
        self._http_client = http_client

    def uses_sendgrid(self) -> bool:
        return bool(self.sendgrid_key and self.sendgrid_from)

    def is_configured(self) -> bool:
        """Verifica se o serviço de email está configurado"""
        return self.uses_sendgrid() or bool(self.user and self.password)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        cc: Optional[List[str]] = None,
    ) -> DeliveryResult:
        """
        Envia um email

        Args:
            to_email: Email do destinatário
            subject: Assunto do email
            html_content: Conteúdo HTML do email
            text_content: Conteúdo texto puro (opcional)
            cc: Cópias (opcional)

        Returns:
            DeliveryResult com ok=False e o erro quando o envio falha
        """
        if not self.is_configured():
            logger.warning("Email service not configured. Skipping email send.")
            return DeliveryResult(ok=False, error="email not configured")

        try:
            if self.uses_sendgrid():
                result = await self._send_sendgrid(to_email, subject, html_content, cc)
            else:
                result = await asyncio.to_thread(
                    self._send_smtp, to_email, subject, html_content, text_content, cc
                )
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {str(e)}")
            return DeliveryResult(ok=False, error=str(e))

        if result.ok:
            logger.info(f"Email sent successfully to {to_email}")
        else:
            logger.error(f"Failed to send email to {to_email}: {result.error}")
        return result

    async def _send_sendgrid(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        cc: Optional[List[str]],
    ) -> DeliveryResult:
        personalization = {"to": [{"email": to_email}]}
        if cc:
            personalization["cc"] = [{"email": email} for email in cc]

        payload = {
            "personalizations": [personalization],
            "from": {"email": self.sendgrid_from},
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
        }
        headers = {"Authorization": f"Bearer {self.sendgrid_key}"}

        if self._http_client is not None:
            response = await self._http_client.post(SENDGRID_URL, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(SENDGRID_URL, json=payload, headers=headers)

        if response.status_code >= 300:
            return DeliveryResult(ok=False, error=f"sendgrid {response.status_code}: {response.text[:300]}")
        return DeliveryResult(ok=True, message_id=response.headers.get("x-message-id"))

    def _send_smtp(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str],
        cc: Optional[List[str]],
    ) -> DeliveryResult:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to_email
        if cc:
            message["Cc"] = ", ".join(cc)

        if text_content:
            message.attach(MIMEText(text_content, "plain", "utf-8"))
        message.attach(MIMEText(html_content, "html", "utf-8"))

        recipients = [to_email] + list(cc or [])
        if self.use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(self.host, self.port, context=context) as server:
                server.login(self.user, self.password)
                server.sendmail(self.from_email, recipients, message.as_string())
        else:
            with smtplib.SMTP(self.host, self.port) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.from_email, recipients, message.as_string())

        return DeliveryResult(ok=True)

    async def send_booking_confirmed_email(
        self,
        to_email: str,
        patient_name: Optional[str],
        professional_name: Optional[str],
        booking_date: str,
        booking_time: str,
        meeting_link: Optional[str],
    ) -> DeliveryResult:
        """Confirmação de agendamento para o paciente"""
        subject = "Seu agendamento foi confirmado - Doxologos"
        link_html = (
            f'<p><strong>Link da sessão:</strong> <a href="{meeting_link}">{meeting_link}</a></p>'
            if meeting_link
            else "<p>O link da sessão será enviado em breve.</p>"
        )

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #2d8659;">Olá, {patient_name or 'Paciente'}!</h2>

        <p>Seu agendamento com <strong>{professional_name or 'profissional'}</strong>
        em {booking_date} às {booking_time} foi confirmado.</p>

        {link_html}

        <p>Atenciosamente,<br>Doxologos</p>
    </div>
</body>
</html>
"""

        text_content = f"""
Olá, {patient_name or 'Paciente'}!

Seu agendamento com {professional_name or 'profissional'} em {booking_date} às {booking_time} foi confirmado.
Link da sessão: {meeting_link or 'será enviado em breve'}

Doxologos
"""

        return await self.send_email(to_email, subject, html_content, text_content)

    async def send_professional_booking_email(
        self,
        to_email: str,
        professional_name: Optional[str],
        booking_date: str,
        booking_time: str,
        meeting_link: Optional[str],
    ) -> DeliveryResult:
        """Aviso de novo agendamento confirmado para o profissional"""
        subject = "Novo agendamento confirmado"
        html_content = f"""
<p>Olá {professional_name or ''},</p>
<p>Você tem um novo agendamento em {booking_date} às {booking_time}.</p>
<p>Link: <a href="{meeting_link or '#'}">{meeting_link or 'pendente'}</a></p>
"""
        return await self.send_email(to_email, subject, html_content)

    async def send_event_confirmed_email(
        self,
        to_email: str,
        patient_name: Optional[str],
        event_title: str,
        event_date: str,
        event_time: str,
        amount: Optional[float],
        meeting_link: Optional[str],
        meeting_password: Optional[str],
    ) -> DeliveryResult:
        """Confirmação de inscrição em evento com o link da sala"""
        subject = f"Pagamento Confirmado - {event_title}"
        amount_text = f"R$ {amount:.2f}".replace(".", ",") if amount is not None else "-"
        password_html = (
            f"<p><strong>Senha:</strong> <code>{meeting_password}</code></p>" if meeting_password else ""
        )

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: linear-gradient(135deg, #2d8659 0%, #236b47 100%); color: white; padding: 30px; text-align: center; border-radius: 8px 8px 0 0; }}
        .event-box {{ background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0; }}
        .zoom-box {{ background: #e8f5ee; border: 2px solid #2d8659; padding: 20px; border-radius: 8px; margin: 20px 0; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Pagamento Confirmado!</h1>
            <p>Sua vaga está garantida</p>
        </div>

        <p>Olá <strong>{patient_name or 'participante'}</strong>,</p>
        <p>Sua inscrição no evento está <strong>CONFIRMADA</strong>.</p>

        <div class="event-box">
            <h2 style="color: #2d8659; margin-top: 0;">{event_title}</h2>
            <p><strong>Data:</strong> {event_date}</p>
            <p><strong>Horário:</strong> {event_time}</p>
            <p><strong>Valor pago:</strong> {amount_text}</p>
        </div>

        <div class="zoom-box">
            <h3 style="color: #2d8659; margin-top: 0;">Link da Sala</h3>
            <p><a href="{meeting_link or '#'}">{meeting_link or 'O link será enviado em breve'}</a></p>
            {password_html}
        </div>

        <p>Acompanhe suas inscrições em <a href="{self.app_url}/minhas-inscricoes">{self.app_url}/minhas-inscricoes</a></p>
        <p style="color: #666; font-size: 12px;">Doxologos - Atendimento Psicológico Cristão</p>
    </div>
</body>
</html>
"""
        return await self.send_email(to_email, subject, html_content)

    async def send_refund_email(
        self,
        to_email: str,
        subject: Optional[str],
        message: Optional[str],
        payer_name: Optional[str],
        amount: Optional[float],
        currency: Optional[str],
        cc: Optional[List[str]] = None,
    ) -> DeliveryResult:
        """Aviso de reembolso concluído"""
        if message and "<" in message:
            html_content = message
        else:
            amount_text = f"{currency or 'BRL'} {amount:.2f}" if amount is not None else ""
            body = message or f"Seu reembolso {amount_text} foi concluído."
            html_content = f"""
<p>Olá {payer_name or ''},</p>
<p>{body}</p>
<p>Atenciosamente,<br>Equipe Financeira Doxologos</p>
"""
        return await self.send_email(to_email, subject or "Reembolso concluído", html_content, cc=cc)

    async def send_payment_reminder_email(
        self,
        to_email: str,
        patient_name: Optional[str],
        booking_date: str,
        booking_time: str,
        service_name: Optional[str],
        professional_name: Optional[str],
        amount: Optional[float],
    ) -> DeliveryResult:
        """Lembrete diário de consulta aguardando pagamento"""
        date_text = "/".join(reversed(booking_date.split("-")))
        subject = f"Lembrete: finalize o pagamento - Consulta em {date_text}"
        amount_text = f"R$ {amount:.2f}".replace(".", ",") if amount is not None else "-"

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #f59e0b;">Sua consulta está aguardando pagamento</h2>

        <p>Olá <strong>{patient_name or 'Paciente'}</strong>,</p>
        <p>Você tem uma consulta agendada, mas o pagamento ainda está pendente.</p>

        <div style="background: #fef3c7; padding: 16px; border-left: 4px solid #f59e0b; border-radius: 6px;">
            <p><strong>Data:</strong> {date_text}</p>
            <p><strong>Horário:</strong> {booking_time or '-'}</p>
            <p><strong>Serviço:</strong> {service_name or 'Consulta'}</p>
            <p><strong>Profissional:</strong> {professional_name or '-'}</p>
            <p><strong>Valor:</strong> {amount_text}</p>
        </div>

        <p style="text-align: center; margin: 30px 0;">
            <a href="{self.app_url}/paciente" style="padding: 14px 32px; background: #2d8659; color: white; text-decoration: none; border-radius: 6px;">Finalizar pagamento</a>
        </p>

        <p>Após o pagamento, o link da sala fica disponível na sua área.</p>
        <p>Atenciosamente,<br>Doxologos</p>
    </div>
</body>
</html>
"""

        text_content = f"""
Olá, {patient_name or 'Paciente'}!

Sua consulta de {date_text} às {booking_time} está aguardando pagamento ({amount_text}).
Finalize em {self.app_url}/paciente

Doxologos
"""

        return await self.send_email(to_email, subject, html_content, text_content)
