"""
Email Service using Resend

Email collaborator for the pre-registration flow. Services depend on the
``EmailSender`` protocol; ``ResendEmailSender`` is the production
implementation. Delivery failures are raised as ``EmailDeliveryError`` and
are never retried here.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Protocol

import resend

from iep_api.core.config import settings
from iep_api.core.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)

SCHOOL_NAME = "I.E.P Peruano Chino"


@dataclass(frozen=True)
class EmailMessage:
    """A single outgoing email."""

    to: str
    subject: str
    body: str


class EmailSender(Protocol):
    """Anything able to deliver an ``EmailMessage``."""

    async def send(self, message: EmailMessage) -> None: ...


class ResendEmailSender:
    """
    Deliver emails through the Resend API.

    Without an API key the message is logged instead of sent, which keeps
    local development working without credentials.
    """

    def __init__(self, api_key: str | None = None, sender: str | None = None):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.sender = sender or settings.email_from

    async def send(self, message: EmailMessage) -> None:
        if not self.api_key:
            logger.warning("RESEND_API_KEY not set - logging email instead of sending")
            logger.info(f"EMAIL TO: {message.to} | SUBJECT: {message.subject}")
            return

        params: resend.Emails.SendParams = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.body,
        }

        resend.api_key = self.api_key
        try:
            # The Resend SDK is synchronous
            email = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            logger.error(f"Failed to send email to {message.to}: {e}")
            raise EmailDeliveryError() from e

        logger.info(f"Email sent successfully to {message.to}, id: {email['id']}")


def get_email_sender() -> EmailSender:
    """FastAPI dependency returning the configured email sender."""
    return ResendEmailSender()


_STYLE = """
    body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .header { color: #7f1d1d; margin-bottom: 24px; }
    .code { font-size: 32px; letter-spacing: 8px; font-weight: bold; color: #7f1d1d; margin: 24px 0; }
    .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _wrap(title: str, content: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLE}</style></head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {content}
            <div class="footer">
                <p>{SCHOOL_NAME} - Sistema de Registros Académicos</p>
            </div>
        </div>
    </body>
    </html>
    """


def build_verification_code_email(
    to_email: str,
    student_name: str,
    code: str,
    ttl_minutes: int,
) -> EmailMessage:
    """Email carrying the 6-digit verification code."""
    safe_name = escape(student_name)
    content = f"""
            <p>Hola {safe_name},</p>
            <p>Usa el siguiente código para verificar tu correo y completar tu registro:</p>
            <p class="code">{code}</p>
            <p><strong>El código expira en {ttl_minutes} minutos.</strong></p>
            <p>Si no solicitaste este código, puedes ignorar este mensaje.</p>
    """
    return EmailMessage(
        to=to_email,
        subject=f"Verificación de Email - {SCHOOL_NAME}",
        body=_wrap("Verifica tu correo", content),
    )


def build_registration_completed_email(
    to_email: str,
    student_name: str,
    display_code: str,
) -> EmailMessage:
    """Notice sent once the account has been activated."""
    safe_name = escape(student_name)
    login_url = f"{settings.frontend_url}/login"
    content = f"""
            <p>Hola {safe_name},</p>
            <p>Tu registro se completó correctamente. Tu código de estudiante es
            <strong>{escape(display_code)}</strong>.</p>
            <p>Ya puedes ingresar a la plataforma: <a href="{login_url}">{login_url}</a></p>
    """
    return EmailMessage(
        to=to_email,
        subject=f"Registro completado - {SCHOOL_NAME}",
        body=_wrap("¡Bienvenido!", content),
    )


def build_status_change_email(
    to_email: str,
    student_name: str,
    status_label: str,
    fecha_vencimiento: datetime | None = None,
) -> EmailMessage:
    """Administrative notice about a change of registration status."""
    safe_name = escape(student_name)
    deadline = ""
    if fecha_vencimiento is not None:
        deadline = (
            f"<p>Tienes plazo hasta el <strong>{fecha_vencimiento:%d/%m/%Y}</strong> "
            "para completar tu registro.</p>"
        )
    content = f"""
            <p>Hola {safe_name},</p>
            <p>El estado de tu registro cambió a: <strong>{escape(status_label)}</strong>.</p>
            {deadline}
            <p>Si tienes dudas, comunícate con la administración del colegio.</p>
    """
    return EmailMessage(
        to=to_email,
        subject=f"Actualización de tu registro - {SCHOOL_NAME}",
        body=_wrap("Actualización de registro", content),
    )
