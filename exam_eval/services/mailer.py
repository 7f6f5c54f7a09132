"""Mail transport for OTP delivery (SMTP via aiosmtplib)."""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from exam_eval.config import Settings
from exam_eval.exceptions import DependencyError

logger = logging.getLogger(__name__)

SENDER_NAME = "AI Exam Evaluator"


class Mailer:
    """Async SMTP mailer configured from ``GMAIL_USER`` / ``GMAIL_PASS``."""

    def __init__(
        self,
        user: Optional[str],
        password: Optional[str],
        host: str = "smtp.gmail.com",
        port: int = 465,
    ):
        self.user = user
        self.password = password
        self.host = host
        self.port = port

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(settings.gmail_user, settings.gmail_pass, settings.smtp_host, settings.smtp_port)

    @property
    def is_configured(self) -> bool:
        return bool(self.user and self.password)

    def _build_message(self, to_email: str, code: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = "Your OTP Code"
        message["From"] = f"{SENDER_NAME} <{self.user}>"
        message["To"] = to_email
        message.attach(MIMEText(f"Your OTP code is: {code}", "plain"))
        message.attach(MIMEText(f"<p>Your OTP code is: <b>{code}</b></p>", "html"))
        return message

    async def send_otp_email(self, to_email: str, code: str) -> None:
        """Deliver ``code`` to ``to_email``. Raises ``DependencyError`` on failure."""
        if not self.is_configured:
            raise DependencyError("Mail transport is not configured", service="mail")

        message = self._build_message(to_email, code)
        try:
            errors, _response = await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                use_tls=self.port == 465,
                start_tls=self.port == 587,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning("OTP mail to %s failed: %s", to_email, exc)
            raise DependencyError(f"Failed to send OTP: {exc}", service="mail") from exc

        if errors:
            logger.warning("OTP mail rejected for %s", ", ".join(errors))
            raise DependencyError(
                f"Failed to send OTP to: {', '.join(errors)}", service="mail"
            )
        logger.info("OTP mail sent to %s", to_email)
