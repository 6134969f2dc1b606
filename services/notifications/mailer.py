"""Mail transports for outgoing notifications.

Two transports share the Mailer interface:
- SMTPMailer: real delivery, retried with exponential backoff on transient errors
- MockMailer: logs and keeps recent messages in memory (development and tests)
"""

import asyncio
import logging
import smtplib
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from email.errors import MessageError
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from services.shared.config import Settings
from services.shared.errors import NotificationError

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    """Email message structure."""

    to: str
    subject: str
    html_body: str
    from_address: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Mailer(ABC):
    """Abstract mail transport."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> str:
        """Deliver a message.

        Args:
            message: Message to send

        Returns:
            Transport message id

        Raises:
            NotificationError: If the message could not be delivered
        """
        pass


class SMTPMailer(Mailer):
    """SMTP transport.

    smtplib is blocking, so each attempt runs in a worker thread. Connection
    and protocol errors are retried up to ``smtp_max_attempts`` times; any
    other failure is reported on the first attempt.
    """

    def __init__(self, settings: Settings, wait: wait_base | None = None) -> None:
        self.settings = settings
        self._wait = wait or wait_exponential_jitter(initial=1, max=30)

    def build_mime(self, message: EmailMessage) -> tuple[MIMEText, str]:
        """Build the MIME message and its Message-ID.

        Raises:
            NotificationError: If the recipient contains line breaks or a
                header cannot be encoded
        """
        if "\r" in message.to or "\n" in message.to:
            raise NotificationError(
                "Recipient address contains a line break", recipient=message.to
            )
        # Extracted invoice numbers end up in subjects; keep them on one line.
        subject = " ".join(message.subject.split())
        try:
            mime = MIMEText(message.html_body, "html", "utf-8")
            message_id = make_msgid(domain=message.from_address.rpartition("@")[2] or None)
            mime["Subject"] = subject
            mime["From"] = formataddr((self.settings.company_name, message.from_address))
            mime["To"] = message.to
            mime["Message-ID"] = message_id
        except (MessageError, ValueError) as e:
            raise NotificationError(
                f"Cannot build email to {message.to}", recipient=message.to, cause=str(e)
            ) from e
        return mime, message_id

    def _send_sync(self, mime: MIMEText) -> None:
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as smtp:
            if self.settings.smtp_use_tls:
                smtp.starttls()
            if self.settings.smtp_username:
                smtp.login(self.settings.smtp_username, self.settings.smtp_password)
            smtp.send_message(mime)

    async def send(self, message: EmailMessage) -> str:
        mime, message_id = self.build_mime(message)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
                wait=self._wait,
                stop=stop_after_attempt(self.settings.smtp_max_attempts),
            ):
                with attempt:
                    await asyncio.to_thread(self._send_sync, mime)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"SMTP delivery to {message.to} failed: {cause}")
            raise NotificationError(
                f"Failed to send email to {message.to}",
                recipient=message.to,
                cause=str(cause),
            ) from cause
        except Exception as e:
            logger.error(f"SMTP delivery to {message.to} failed without retry: {e}")
            raise NotificationError(
                f"Failed to send email to {message.to}",
                recipient=message.to,
                cause=str(e),
            ) from e

        logger.info(f"Email sent to {message.to}: {message.subject} ({message_id})")
        return message_id


class MockMailer(Mailer):
    """Mock transport for development and testing.

    Messages are logged and the most recent ``history`` of them kept in
    memory; nothing leaves the process.
    """

    def __init__(self, history: int = 100) -> None:
        self._sent: deque[EmailMessage] = deque(maxlen=history)

    async def send(self, message: EmailMessage) -> str:
        message_id = f"mock_{uuid.uuid4().hex[:12]}"
        logger.info(
            f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject} | ID: {message_id}"
        )
        self._sent.append(message)
        return message_id

    @property
    def sent(self) -> list[EmailMessage]:
        return list(self._sent)

    def clear(self) -> None:
        self._sent.clear()


def create_mailer(settings: Settings) -> Mailer:
    """Create the mail transport selected by ``settings.email_provider``."""
    if settings.email_provider == "smtp":
        logger.info(f"Using SMTP mailer ({settings.smtp_host}:{settings.smtp_port})")
        return SMTPMailer(settings)
    logger.info("Using mock mailer; notifications are logged, not delivered")
    return MockMailer()
