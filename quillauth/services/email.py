"""Outbound email for password reset links."""
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage as MimeMessage

import structlog
from pydantic import BaseModel

from ..logging import redact_email

log = structlog.get_logger()


class DeliveryError(Exception):
    """Raised when a message could not be handed to the mail transport"""
    pass


class EmailMessage(BaseModel):
    to: str
    subject: str
    body: str


class EmailSender(ABC):
    """Abstract interface for email delivery."""

    @abstractmethod
    def send(self, message: EmailMessage) -> None:
        """
        Deliver a message.

        Raises:
            DeliveryError: If delivery fails
        """
        pass


class LogEmailSender(EmailSender):
    """Development sender that logs messages instead of delivering them."""

    def __init__(self):
        self.sent: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
        log.info(
            "email.stub_sent",
            to=redact_email(message.to),
            subject=message.subject,
            body_length=len(message.body),
        )


class SmtpEmailSender(EmailSender):
    """SMTP sender supporting STARTTLS or implicit TLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        from_address: str = "no-reply@localhost",
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        if not host:
            raise ValueError("SMTP host is required")
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self._password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        mime["Subject"] = message.subject
        mime["From"] = self.from_address
        mime["To"] = message.to
        mime.set_content(message.body)
        return mime

    def send(self, message: EmailMessage) -> None:
        mime = self._build(message)
        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.username:
                        server.login(self.username, self._password)
                    server.send_message(mime)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    if self.username:
                        server.login(self.username, self._password)
                    server.send_message(mime)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery to {self.host}:{self.port} failed: {e}") from e

        log.info("email.sent", to=redact_email(message.to), subject=message.subject)
