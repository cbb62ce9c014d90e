"""Transactional email over SMTP.

Sending is best-effort: callers schedule these coroutines as background
tasks, and every failure is logged and swallowed here so that a mail
outage never fails the request that triggered it.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Annotated

from fastapi import Depends

from ..config import Settings, get_settings
from ..logging_config import get_logger

logger = get_logger("mento.email")


class EmailService:
    """SMTP sender configured from settings."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.is_mail_enabled

    def _build_message(self, to: str, subject: str, body: str, html_body: str | None) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.settings.mail_from
        message["To"] = to
        message.attach(MIMEText(body, "plain"))
        if html_body:
            message.attach(MIMEText(html_body, "html"))
        return message

    def _send_sync(self, message: MIMEMultipart) -> None:
        s = self.settings
        with smtplib.SMTP(s.mail_host, s.mail_port, timeout=s.mail_timeout_seconds) as server:
            if s.mail_use_tls:
                server.starttls()
            server.login(s.mail_username, s.mail_password)
            server.send_message(message)

    async def send(self, to: str, subject: str, body: str, html_body: str | None = None) -> bool:
        """Send one message. Returns False (and logs) on any failure."""
        if not self.enabled:
            logger.warning(f"SMTP not configured, skipping email '{subject}' to {to}")
            return False
        message = self._build_message(to, subject, body, html_body)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email '{subject}' to {to}: {e}")
            return False
        logger.info(f"Sent email '{subject}' to {to}")
        return True

    async def send_otp_email(self, to: str, otp: str) -> bool:
        minutes = self.settings.otp_expire_minutes
        body = (
            f"Your {self.settings.app_name} verification code is {otp}.\n\n"
            f"It expires in {minutes} minutes. Do not share it with anyone."
        )
        html = (
            f"<p>Your {self.settings.app_name} verification code is</p>"
            f"<h2 style=\"letter-spacing:4px\">{otp}</h2>"
            f"<p>It expires in {minutes} minutes. Do not share it with anyone.</p>"
        )
        return await self.send(to, "Your verification code", body, html)

    async def send_welcome_email(self, to: str, name: str | None = None) -> bool:
        greeting = f"Hi {name}," if name else "Hi,"
        body = (
            f"{greeting}\n\nWelcome to {self.settings.app_name}! "
            "Complete your KYC to start offering services or posting jobs."
        )
        return await self.send(to, f"Welcome to {self.settings.app_name}", body)


def get_email_service(settings: Annotated[Settings, Depends(get_settings)]) -> EmailService:
    """FastAPI dependency for the email sender."""
    return EmailService(settings)


Mailer = Annotated[EmailService, Depends(get_email_service)]
