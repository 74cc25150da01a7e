from decimal import Decimal
from pathlib import Path

from fastapi import Request
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema
from loguru import logger

from config import Settings

TEMPLATE_FOLDER = Path(__file__).resolve().parent / "templates"


class Mailer:
    """Transactional e-mail. Delivery failures are logged, never raised."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.conf = ConnectionConfig(
            MAIL_USERNAME=settings.mail_username,
            MAIL_PASSWORD=settings.mail_password,
            MAIL_FROM=settings.mail_from,
            MAIL_PORT=settings.mail_port,
            MAIL_SERVER=settings.mail_server,
            MAIL_STARTTLS=settings.mail_tls,
            MAIL_SSL_TLS=settings.mail_ssl,
            SUPPRESS_SEND=1 if settings.mail_suppress_send else 0,
            TEMPLATE_FOLDER=TEMPLATE_FOLDER,
        )

    async def _send(self, subject: str, recipient: str, template_name: str, body: dict) -> None:
        message = MessageSchema(
            subject=subject,
            recipients=[recipient],
            template_body=body,
            subtype="html",
        )
        try:
            await FastMail(self.conf).send_message(message, template_name=template_name)
        except Exception:
            logger.exception("Failed to send '{}' to {}", template_name, recipient)
            return
        logger.info("Sent '{}' to {}", template_name, recipient)

    async def send_welcome_email(self, email_to: str, full_name: str) -> None:
        await self._send(
            "Добро пожаловать в SoftwarePar",
            email_to,
            "welcome.html",
            {"full_name": full_name, "login_url": f"http://{self.settings.host_domain}/login"},
        )

    async def send_contact_notification(self, contact: dict) -> None:
        await self._send(
            f"Новая заявка с сайта: {contact['full_name']}",
            self.settings.admin_email,
            "contact_notification.html",
            contact,
        )

    async def send_partner_commission_notification(self, email_to: str, full_name: str, amount: Decimal) -> None:
        await self._send(
            "Вам начислена комиссия",
            email_to,
            "partner_commission.html",
            {"full_name": full_name, "amount": str(amount)},
        )


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer
