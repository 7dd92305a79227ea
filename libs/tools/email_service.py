from __future__ import annotations

import asyncio
import smtplib
import ssl
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from typing import List, Optional

from pydantic import BaseModel

from libs.core import logging as core_logging
from libs.core.models import DeliveryReceipt, ProbeResult

LOGGER = core_logging.get_logger("email_service")


class DeliveryError(Exception):
    pass


class ChannelConfig(BaseModel):
    transport: str = "smtp"
    host: str = "smtp.gmail.com"
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    use_tls: bool = True
    timeout_s: float = 10.0


class NotificationChannel:
    transport = "none"

    @property
    def is_configured(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def verify_connection(self) -> ProbeResult:  # pragma: no cover - interface
        raise NotImplementedError

    async def send_email(
        self, recipient: str, subject: str, body: str
    ) -> DeliveryReceipt:  # pragma: no cover - interface
        raise NotImplementedError


class UnconfiguredChannel(NotificationChannel):
    transport = "disabled"

    def __init__(self, reason: str = "Email service is not configured") -> None:
        self.reason = reason

    @property
    def is_configured(self) -> bool:
        return False

    async def verify_connection(self) -> ProbeResult:
        return ProbeResult(success=False, error=self.reason)

    async def send_email(self, recipient: str, subject: str, body: str) -> DeliveryReceipt:
        raise DeliveryError(self.reason)


class MockChannel(NotificationChannel):
    """Accepts every message and keeps it in ``outbox``; for local runs and demos."""

    transport = "mock"

    def __init__(self) -> None:
        self.outbox: List[EmailMessage] = []

    @property
    def is_configured(self) -> bool:
        return True

    async def verify_connection(self) -> ProbeResult:
        return ProbeResult(success=True)

    async def send_email(self, recipient: str, subject: str, body: str) -> DeliveryReceipt:
        message = _build_message("cv-server@localhost", recipient, subject, body)
        self.outbox.append(message)
        return _receipt(message, recipient, subject, self.transport)


class SmtpChannel(NotificationChannel):
    transport = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: Optional[str] = None,
        use_tls: bool = True,
        timeout_s: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_tls = use_tls
        self.timeout_s = timeout_s
        # One SMTP session at a time per channel.
        self._lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    async def verify_connection(self) -> ProbeResult:
        if not self.is_configured:
            return ProbeResult(success=False, error="Email service is not configured")
        try:
            await asyncio.to_thread(self._probe)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.warning("email_probe_failed", host=self.host, port=self.port, error=str(exc))
            return ProbeResult(success=False, error=str(exc) or exc.__class__.__name__)
        LOGGER.info("email_probe_succeeded", host=self.host, port=self.port)
        return ProbeResult(success=True)

    async def send_email(self, recipient: str, subject: str, body: str) -> DeliveryReceipt:
        if not self.is_configured:
            raise DeliveryError("Email service is not configured")
        message = _build_message(self.sender, recipient, subject, body)
        try:
            async with self._lock:
                await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.warning("email_delivery_failed", recipient=recipient, error=str(exc))
            raise DeliveryError(str(exc) or exc.__class__.__name__) from exc
        LOGGER.info("email_delivered", recipient=recipient, message_id=message["Message-ID"])
        return _receipt(message, recipient, subject, self.transport)

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            return smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout_s, context=ssl.create_default_context()
            )
        return smtplib.SMTP(self.host, self.port, timeout=self.timeout_s)

    def _authenticate(self, smtp: smtplib.SMTP) -> None:
        smtp.ehlo()
        if self.use_tls and self.port != 465:
            smtp.starttls(context=ssl.create_default_context())
            smtp.ehlo()
        smtp.login(self.username, self.password)

    def _probe(self) -> None:
        with self._connect() as smtp:
            self._authenticate(smtp)
            smtp.noop()

    def _deliver(self, message: EmailMessage) -> None:
        with self._connect() as smtp:
            self._authenticate(smtp)
            smtp.send_message(message)


def resolve_channel(config: ChannelConfig) -> NotificationChannel:
    name = (config.transport or "smtp").strip().lower()
    if name == "smtp":
        if not config.username or not config.password:
            return UnconfiguredChannel(
                "Email credentials are not configured (EMAIL_USER/EMAIL_PASS)"
            )
        return SmtpChannel(
            host=config.host,
            port=config.port,
            username=config.username,
            password=config.password,
            sender=config.sender or None,
            use_tls=config.use_tls,
            timeout_s=config.timeout_s,
        )
    if name == "mock":
        return MockChannel()
    if name in {"disabled", "none", "off"}:
        return UnconfiguredChannel("Email transport is disabled")
    raise ValueError(f"Unsupported EMAIL_TRANSPORT: {config.transport}")


def _build_message(sender: str, recipient: str, subject: str, body: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = recipient
    message["Subject"] = subject
    message["Message-ID"] = make_msgid(domain=_sender_domain(sender))
    message.set_content(body)
    return message


def _sender_domain(sender: str) -> Optional[str]:
    if "@" in sender:
        return sender.rsplit("@", 1)[1].strip(">") or None
    return None


def _receipt(
    message: EmailMessage, recipient: str, subject: str, transport: str
) -> DeliveryReceipt:
    return DeliveryReceipt(
        message_id=str(message["Message-ID"] or uuid.uuid4()),
        recipient=recipient,
        subject=subject,
        transport=transport,
        accepted_at=datetime.now(timezone.utc),
    )
