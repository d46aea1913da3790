# backend/tests/test_email.py
from __future__ import annotations

import logging
import smtplib

from portal.core import email as email_mod
from portal.core.config import settings


class _FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        _FakeSMTP.sent.append(msg)


class _BrokenSMTP(_FakeSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPServerDisconnected("gone")


def _smtp_settings(monkeypatch):
    monkeypatch.setattr(settings, "email_provider", "smtp")
    monkeypatch.setattr(settings, "smtp_host", "mail.example.com")
    monkeypatch.setattr(settings, "smtp_user", "portal")
    monkeypatch.setattr(settings, "smtp_password", "pw")


def test_log_mode_writes_the_body(monkeypatch, caplog):
    monkeypatch.setattr(settings, "email_provider", "log")
    with caplog.at_level(logging.INFO, logger="portal.email"):
        email_mod.send_email(to_email="a@client.example.com", subject="Hi", text_body="link here")
    assert "link here" in caplog.text


def test_smtp_without_credentials_falls_back_to_log(monkeypatch, caplog):
    monkeypatch.setattr(settings, "email_provider", "smtp")
    monkeypatch.setattr(settings, "smtp_host", None)
    with caplog.at_level(logging.INFO, logger="portal.email"):
        email_mod.send_email(to_email="a@client.example.com", subject="Hi", text_body="link here")
    assert "logging instead" in caplog.text
    assert "link here" in caplog.text


def test_smtp_relays_message(monkeypatch):
    _smtp_settings(monkeypatch)
    _FakeSMTP.sent = []
    monkeypatch.setattr(email_mod.smtplib, "SMTP", _FakeSMTP)

    email_mod.send_email(to_email="a@client.example.com", subject="Hi", text_body="link here")

    assert len(_FakeSMTP.sent) == 1
    assert _FakeSMTP.sent[0]["To"] == "a@client.example.com"


def test_smtp_failure_is_swallowed(monkeypatch, caplog):
    _smtp_settings(monkeypatch)
    monkeypatch.setattr(email_mod.smtplib, "SMTP", _BrokenSMTP)

    with caplog.at_level(logging.ERROR, logger="portal.email"):
        email_mod.send_email(to_email="a@client.example.com", subject="Hi", text_body="x")
    assert "SMTP send failed" in caplog.text


def test_blank_recipient_is_ignored(monkeypatch):
    monkeypatch.setattr(settings, "email_provider", "smtp")
    monkeypatch.setattr(email_mod.smtplib, "SMTP", _BrokenSMTP)
    email_mod.send_email(to_email="  ", subject="Hi", text_body="x")
