from __future__ import annotations

import asyncio
import smtplib

import pytest

from libs.tools import email_service
from libs.tools.email_service import (
    ChannelConfig,
    DeliveryError,
    MockChannel,
    SmtpChannel,
    UnconfiguredChannel,
    resolve_channel,
)


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []
    fail_login = False

    def __init__(self, host: str, port: int, timeout: float | None = None) -> None:
        self.host = host
        self.port = port
        self.sent: list = []
        self.calls: list[str] = []
        _FakeSMTP.instances.append(self)

    def __enter__(self) -> "_FakeSMTP":
        return self

    def __exit__(self, *_exc) -> bool:
        self.calls.append("quit")
        return False

    def ehlo(self) -> None:
        self.calls.append("ehlo")

    def starttls(self, context=None) -> None:
        self.calls.append("starttls")

    def login(self, user: str, password: str) -> None:
        if _FakeSMTP.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")
        self.calls.append(f"login:{user}")

    def noop(self) -> None:
        self.calls.append("noop")

    def send_message(self, message) -> None:
        self.sent.append(message)


@pytest.fixture
def fake_smtp(monkeypatch: pytest.MonkeyPatch):
    _FakeSMTP.instances = []
    _FakeSMTP.fail_login = False
    monkeypatch.setattr(email_service.smtplib, "SMTP", _FakeSMTP)
    return _FakeSMTP


def _channel() -> SmtpChannel:
    return SmtpChannel(
        host="smtp.test", port=587, username="me@test.dev", password="secret"
    )


def test_resolve_channel_without_credentials_is_unconfigured() -> None:
    channel = resolve_channel(ChannelConfig(transport="smtp"))
    assert isinstance(channel, UnconfiguredChannel)
    assert channel.is_configured is False


def test_resolve_channel_variants() -> None:
    smtp = resolve_channel(ChannelConfig(username="me@test.dev", password="secret"))
    assert isinstance(smtp, SmtpChannel)
    assert smtp.sender == "me@test.dev"
    assert isinstance(resolve_channel(ChannelConfig(transport="mock")), MockChannel)
    assert isinstance(resolve_channel(ChannelConfig(transport="disabled")), UnconfiguredChannel)


def test_resolve_channel_rejects_unknown_transport() -> None:
    with pytest.raises(ValueError):
        resolve_channel(ChannelConfig(transport="pigeon"))


def test_probe_success(fake_smtp) -> None:
    result = asyncio.run(_channel().verify_connection())
    assert result.success is True
    assert fake_smtp.instances[0].calls == [
        "ehlo",
        "starttls",
        "ehlo",
        "login:me@test.dev",
        "noop",
        "quit",
    ]


def test_probe_failure_is_reported_not_raised(fake_smtp) -> None:
    fake_smtp.fail_login = True
    result = asyncio.run(_channel().verify_connection())
    assert result.success is False
    assert "bad credentials" in result.error


def test_send_email_delivers_message(fake_smtp) -> None:
    receipt = asyncio.run(_channel().send_email("a@b.com", "Hi", "Hello there"))
    message = fake_smtp.instances[0].sent[0]
    assert message["To"] == "a@b.com"
    assert message["From"] == "me@test.dev"
    assert message["Subject"] == "Hi"
    assert receipt.recipient == "a@b.com"
    assert receipt.message_id == message["Message-ID"]
    assert receipt.transport == "smtp"


def test_send_email_failure_raises_delivery_error(fake_smtp) -> None:
    fake_smtp.fail_login = True
    with pytest.raises(DeliveryError, match="bad credentials"):
        asyncio.run(_channel().send_email("a@b.com", "Hi", "Hello"))


def test_unconfigured_channel_probe_and_send() -> None:
    channel = UnconfiguredChannel("no creds")
    assert asyncio.run(channel.verify_connection()).error == "no creds"
    with pytest.raises(DeliveryError):
        asyncio.run(channel.send_email("a@b.com", "Hi", "x"))


def test_mock_channel_keeps_outbox() -> None:
    channel = MockChannel()
    receipt = asyncio.run(channel.send_email("a@b.com", "Hi", "x"))
    assert len(channel.outbox) == 1
    assert receipt.transport == "mock"
