import smtplib

import pytest

from docportal.core.config import get_settings
from docportal.services import notification_service
from docportal.services.notification_service import (
    LogNotificationSender,
    OutgoingNotification,
    SmtpNotificationSender,
    TemplateKind,
    build_notification_sender,
    deliver,
    render,
)


class RecordingSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def starttls(self, context=None):
        pass

    def login(self, username, password):
        pass

    def send_message(self, msg):
        RecordingSMTP.sent.append(msg)


class RefusingSMTP(RecordingSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"no such user")})


def _smtp_settings(**overrides):
    values = {"mail_from": "noreply@example.com", "notification_backend": "smtp"}
    values.update(overrides)
    return get_settings().model_copy(update=values)


def test_render_substitutes_and_blanks_unknown_placeholders():
    assert render("Hi {{ userName }}, {{missing}}!", {"userName": "Ann"}) == "Hi Ann, !"


def test_render_escapes_html_values():
    assert render("<b>{{name}}</b>", {"name": "<Ann>"}, escape=True) == "<b>&lt;Ann&gt;</b>"


def test_build_notification_sender_by_backend():
    assert isinstance(build_notification_sender(_smtp_settings()), SmtpNotificationSender)
    log_settings = _smtp_settings(notification_backend="log")
    assert isinstance(build_notification_sender(log_settings), LogNotificationSender)
    with pytest.raises(ValueError):
        build_notification_sender(_smtp_settings(notification_backend="pigeon"))


def test_smtp_sender_sends_multipart_message(monkeypatch):
    RecordingSMTP.sent = []
    monkeypatch.setattr(notification_service.smtplib, "SMTP", RecordingSMTP)
    sender = SmtpNotificationSender(_smtp_settings())

    result = sender.send(
        TemplateKind.PASSWORD_RESET,
        "ann@example.com",
        {"userName": "Ann", "resetLink": "https://portal.example.com/reset-password?token=t"},
    )

    assert result.success is True
    (message,) = RecordingSMTP.sent
    assert message["To"] == "ann@example.com"
    assert message["Subject"] == "Reset your password"
    plain = message.get_body(preferencelist=("plain",)).get_content()
    assert "https://portal.example.com/reset-password?token=t" in plain


def test_smtp_failure_becomes_unsuccessful_result(monkeypatch):
    monkeypatch.setattr(notification_service.smtplib, "SMTP", RefusingSMTP)
    sender = SmtpNotificationSender(_smtp_settings())

    result = sender.send(TemplateKind.WELCOME, "ann@example.com", {"userName": "Ann"})

    assert result.success is False
    assert result.error


def test_smtp_sender_without_from_address_fails_fast():
    sender = SmtpNotificationSender(_smtp_settings(mail_from=None))

    result = sender.send(TemplateKind.WELCOME, "ann@example.com", {"userName": "Ann"})

    assert result.success is False
    assert result.error == "Email sender is not configured"


def test_deliver_returns_sender_result(sender):
    sender.fail_with = "down"

    result = deliver(
        sender,
        OutgoingNotification(TemplateKind.WELCOME, "ann@example.com", {"userName": "Ann"}),
    )

    assert result.success is False
    assert len(sender.sent) == 1


def test_html_part_escapes_values_but_text_part_does_not(monkeypatch):
    RecordingSMTP.sent = []
    monkeypatch.setattr(notification_service.smtplib, "SMTP", RecordingSMTP)
    sender = SmtpNotificationSender(_smtp_settings())

    sender.send(
        TemplateKind.WELCOME,
        "ann@example.com",
        {"userName": "<Ann & Co>", "loginLink": "https://portal.example.com/login"},
    )

    (message,) = RecordingSMTP.sent
    plain = message.get_body(preferencelist=("plain",)).get_content()
    html_part = message.get_body(preferencelist=("html",)).get_content()
    assert "Hi <Ann & Co>," in plain
    assert "Hi &lt;Ann &amp; Co&gt;," in html_part
    assert plain.endswith("\n")
