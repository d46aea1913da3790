# backend/portal/core/email.py
"""
Outbound mail for sign-in links.

EMAIL_PROVIDER=log writes the message to the `portal.email` logger (default, and
what dev relies on to click through sign-in). EMAIL_PROVIDER=smtp relays through
SMTP_HOST with SMTP_USER/SMTP_PASSWORD.

Sending is best-effort: a relay failure is logged, never raised, so requesting a
sign-in link can't 500 on a mail outage.
"""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from portal.core.config import Settings, settings

logger = logging.getLogger("portal.email")


def _smtp_ready(cfg: Settings) -> bool:
    return bool(cfg.smtp_host and cfg.smtp_user and cfg.smtp_password)


def _build_message(cfg: Settings, to_email: str, subject: str, text_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = cfg.email_from
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text_body)
    return msg


def _relay(cfg: Settings, msg: EmailMessage) -> None:
    with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as server:
        if cfg.smtp_use_tls:
            server.starttls()
        server.login(cfg.smtp_user, cfg.smtp_password)
        server.send_message(msg)


def send_email(*, to_email: str, subject: str, text_body: str) -> None:
    to_email = (to_email or "").strip()
    if not to_email:
        return

    provider = (settings.email_provider or "log").strip().lower()

    if provider == "smtp" and not _smtp_ready(settings):
        logger.warning("EMAIL_PROVIDER=smtp without SMTP_HOST/SMTP_USER/SMTP_PASSWORD; logging instead")
        provider = "log"

    if provider != "smtp":
        logger.info("email (log mode) to=%s subject=%s\n%s", to_email, subject, text_body)
        return

    try:
        _relay(settings, _build_message(settings, to_email, subject, text_body))
    except (smtplib.SMTPException, OSError):
        logger.exception("SMTP send failed to=%s", to_email)
        return
    logger.info("email sent via smtp to=%s subject=%s", to_email, subject)
