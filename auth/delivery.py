"""
auth/delivery.py -- Outbound email collaborator for welcome and reset messages.

The auth core only knows the Mailer protocol: two awaitable methods that take
the recipient User and the link to embed. How the message is rendered and
transported is not the core's business.

SmtpMailer is the shipped implementation:
  - Configured (SMTP_HOST and EMAIL_FROM set): sends a multipart text/HTML
    message over SMTP, STARTTLS by default. smtplib is blocking, so the send
    runs on the Starlette thread pool.
  - Not configured (local dev, tests): logs the message instead of sending and
    reports success. Reset links are not logged in full -- only the recipient
    (redacted) and subject.

Any transport failure is raised as DeliveryFailure so the reset flow can run
its compensating clear.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from starlette.concurrency import run_in_threadpool

from auth.errors import DeliveryFailure
from auth.models import User
from core.config import Settings

logger = logging.getLogger("tourbook.mail")

WELCOME_SUBJECT = "Welcome to the Tourbook family!"
PASSWORD_RESET_SUBJECT = "Your password reset token (valid for only 10 minutes)"


class Mailer(Protocol):
    async def send_welcome(self, user: User, url: str) -> None: ...

    async def send_password_reset(self, user: User, url: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _first_name(user: User) -> str:
    return user.name.split(" ")[0] if user.name else "there"


class SmtpMailer:
    """Mailer backed by an SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_use_tls = settings.smtp_use_tls
        self.from_email = settings.email_from or settings.smtp_user
        self.from_name = settings.email_from_name

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    async def send_welcome(self, user: User, url: str) -> None:
        text = (
            f"Hi {_first_name(user)},\n\n"
            "Welcome to Tourbook, we're glad to have you!\n"
            f"Complete your profile here: {url}\n"
        )
        html = (
            f"<p>Hi {_first_name(user)},</p>"
            "<p>Welcome to Tourbook, we're glad to have you!</p>"
            f'<p><a href="{url}">Complete your profile</a></p>'
        )
        await self._send(user.email, WELCOME_SUBJECT, html, text)

    async def send_password_reset(self, user: User, url: str) -> None:
        text = (
            f"Hi {_first_name(user)},\n\n"
            "Forgot your password? Submit a PATCH request with your new password "
            f"and passwordConfirm to: {url}\n"
            "If you didn't forget your password, please ignore this email.\n"
        )
        html = (
            f"<p>Hi {_first_name(user)},</p>"
            "<p>Forgot your password? Use the link below to choose a new one. "
            "It is valid for 10 minutes.</p>"
            f'<p><a href="{url}">Reset your password</a></p>'
            "<p>If you didn't forget your password, please ignore this email.</p>"
        )
        await self._send(user.email, PASSWORD_RESET_SUBJECT, html, text)

    async def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        if not self.is_configured:
            logger.info("Email not sent (SMTP not configured): to=%s subject=%r", redact_email(to_email), subject)
            return
        try:
            await run_in_threadpool(self._deliver, to_email, subject, html_body, text_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email delivery failed: to=%s subject=%r error=%s", redact_email(to_email), subject, exc)
            raise DeliveryFailure() from exc
        logger.info("Email sent: to=%s subject=%r", redact_email(to_email), subject)

    def _deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            if self.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_email, [to_email], msg.as_string())
