"""
Verification-code delivery.

The account service never talks to a mail server directly; it hands the code
to a VerificationSender:

  - LogSender: writes the code to the application log. This is the demo-mode
    stand-in and the default DELIVERY_BACKEND.
  - SmtpSender: sends a real email through smtplib, in a worker thread so the
    event loop isn't blocked.

Any transport failure surfaces as DeliveryFailedError, a retryable error that
is deliberately distinct from CodeMismatchError. ``send_code`` retries
transient failures with backoff before giving up.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from hapo.config import settings
from hapo.exceptions import DeliveryFailedError
from hapo.retry import retry_async

logger = logging.getLogger(__name__)


class VerificationSender(Protocol):
    async def deliver(self, destination: str, code: str) -> None:
        """Deliver ``code`` to ``destination`` or raise DeliveryFailedError."""
        ...


class LogSender:
    """Demo-mode sender: the code goes to the log instead of an inbox."""

    async def deliver(self, destination: str, code: str) -> None:
        logger.info("Verification code for %s: %s", destination, code)


class SmtpSender:
    """Sends verification codes by email using smtplib."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def build_message(self, destination: str, code: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = "Your Hapo verification code"
        message["From"] = self.sender
        message["To"] = destination
        message.set_content(
            f"Your Hapo verification code is {code}.\n\n"
            "If you didn't request this code, you can ignore this email."
        )
        return message

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=5) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def deliver(self, destination: str, code: str) -> None:
        message = self.build_message(destination, code)
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", destination, exc)
            raise DeliveryFailedError(destination) from exc


def build_sender() -> VerificationSender:
    """Construct the sender selected by DELIVERY_BACKEND."""
    if settings.DELIVERY_BACKEND == "smtp":
        return SmtpSender(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            sender=settings.SMTP_SENDER,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
        )
    return LogSender()


_default_sender: VerificationSender | None = None


def get_sender() -> VerificationSender:
    """FastAPI dependency returning the configured sender (overridable in tests)."""
    global _default_sender
    if _default_sender is None:
        _default_sender = build_sender()
    return _default_sender


async def send_code(sender: VerificationSender, destination: str, code: str) -> None:
    """Deliver a code, retrying transient failures with exponential backoff."""
    await retry_async(
        lambda: sender.deliver(destination, code),
        retry_on=(DeliveryFailedError,),
        attempts=settings.DELIVERY_RETRY_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
    )
