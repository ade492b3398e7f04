"""
Notification Service

Sends login security notifications (OTP codes, high-risk login alerts)
through a narrow sender contract. The shipped sender delivers email over
SMTP with jinja2 templates.
"""
import aiosmtplib
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, Any
from jinja2 import Template

from app.core.exceptions import NotificationDeliveryError
from app.core.utils import logger


class NotificationChannel:
    EMAIL = "email"
    SMS = "sms"


LOGIN_OTP_TEMPLATE = "login_otp"
HIGH_RISK_LOGIN_TEMPLATE = "high_risk_login"


TEMPLATES: Dict[str, Dict[str, str]] = {
    LOGIN_OTP_TEMPLATE: {
        "subject": "Your verification code",
        "text": (
            "Hello,\n\n"
            "Your verification code is {{ code }}. It expires in "
            "{{ expiration_minutes }} minutes.\n\n"
            "If you did not try to sign in, change your password."
        ),
        "html": (
            "<p>Hello,</p>"
            "<p>Your verification code is <strong>{{ code }}</strong>. "
            "It expires in {{ expiration_minutes }} minutes.</p>"
            "<p>If you did not try to sign in, change your password.</p>"
        ),
    },
    HIGH_RISK_LOGIN_TEMPLATE: {
        "subject": "New sign-in attempt on your account",
        "text": (
            "We noticed a sign-in attempt from {{ ip_address }}"
            "{% if location %} near {{ location }}{% endif %}.\n"
            "Reasons: {{ reasons | join(', ') }}\n"
            "Time: {{ attempted_at }}\n\n"
            "If this was not you, contact support."
        ),
        "html": (
            "<p>We noticed a sign-in attempt from {{ ip_address }}"
            "{% if location %} near {{ location }}{% endif %}.</p>"
            "<ul>{% for reason in reasons %}<li>{{ reason }}</li>{% endfor %}</ul>"
            "<p>Time: {{ attempted_at }}</p>"
            "<p>If this was not you, contact support.</p>"
        ),
    },
}


class NotificationSender(ABC):
    @abstractmethod
    async def send(self, channel: str, template: str, payload: Dict[str, Any]) -> None:
        """
        Deliver ``template`` rendered with ``payload``.

        ``payload`` carries the recipient under ``to``. Raises
        NotificationDeliveryError when the message could not be delivered.
        """


class EmailNotificationSender(NotificationSender):
    """SMTP sender rendering the built-in templates."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "noreply@example.com",
        from_name: str = "Account Security",
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    @staticmethod
    def render(template: str, payload: Dict[str, Any]) -> Dict[str, str]:
        """Render subject, plain text and HTML bodies for a template."""
        try:
            source = TEMPLATES[template]
        except KeyError:
            raise NotificationDeliveryError(f"Unknown notification template: {template}")
        return {
            "subject": source["subject"],
            "text": Template(source["text"]).render(**payload),
            "html": Template(source["html"]).render(**payload),
        }

    def build_message(self, to: str, rendered: Dict[str, str]) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = rendered["subject"]
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to
        message.attach(MIMEText(rendered["text"], "plain"))
        message.attach(MIMEText(rendered["html"], "html"))
        return message

    async def send(self, channel: str, template: str, payload: Dict[str, Any]) -> None:
        if channel != NotificationChannel.EMAIL:
            raise NotificationDeliveryError(f"Unsupported channel: {channel}")

        to: Optional[str] = payload.get("to")
        if not to:
            raise NotificationDeliveryError("Notification has no recipient")

        message = self.build_message(to, self.render(template, payload))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user or None,
                password=self.smtp_password or None,
                start_tls=True,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.log_error(
                {
                    "event_type": "email_send_failed",
                    "template": template,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise NotificationDeliveryError(str(e) or type(e).__name__) from e

        logger.log_info(
            {
                "event_type": "email_sent",
                "template": template,
            }
        )
