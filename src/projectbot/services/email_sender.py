from __future__ import annotations

"""Summary e-mail delivery over SMTP.

Connection details come from ``SMTP_*`` environment variables when they are
complete, otherwise from the settings row when ``smtp_enabled`` is on.
Senders return a result dict instead of raising so one failed delivery never
aborts a summary run.
"""

from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict, List, Optional
import logging
import os
import smtplib
import ssl

from ..domain.models import Settings


logger = logging.getLogger("projectbot.services.email")

DEFAULT_SENDER = '"SPH ChatBot" <homebuilder@example.com>'
DEFAULT_PROJECT_SENDER = '"SPH Project Summary" <projects@example.com>'


@dataclass
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    sender: Optional[str] = None
    use_ssl: bool = False
    timeout: int = 10


def _port(raw: Optional[str]) -> int:
    try:
        return int(raw or "587")
    except ValueError:
        return 587


def resolve_smtp_config(settings: Optional[Settings]) -> Optional[SmtpConfig]:
    host, user, password = os.getenv("SMTP_HOST"), os.getenv("SMTP_USER"), os.getenv("SMTP_PASS")
    if host and user and password:
        return SmtpConfig(
            host=host,
            port=_port(os.getenv("SMTP_PORT")),
            user=user,
            password=password,
            sender=os.getenv("SMTP_FROM"),
            use_ssl=os.getenv("SMTP_SECURE", "false").lower() == "true",
            timeout=int(os.getenv("SMTP_TIMEOUT", "10")),
        )
    if settings and settings.smtp_enabled and settings.smtp_host and settings.smtp_user and settings.smtp_pass:
        return SmtpConfig(
            host=settings.smtp_host,
            port=_port(settings.smtp_port),
            user=settings.smtp_user,
            password=settings.smtp_pass,
            sender=settings.smtp_from,
        )
    return None


def _send(cfg: SmtpConfig, message: EmailMessage) -> None:
    context = ssl.create_default_context()
    if cfg.use_ssl:
        with smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout, context=context) as client:
            client.login(cfg.user, cfg.password)
            client.send_message(message)
        return
    with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as client:
        client.ehlo()
        client.starttls(context=context)
        client.ehlo()
        client.login(cfg.user, cfg.password)
        client.send_message(message)


def send_html_email(
    recipients: List[str],
    subject: str,
    html: str,
    settings: Optional[Settings],
    default_sender: str = DEFAULT_SENDER,
) -> Dict[str, Any]:
    if not recipients:
        return {"success": False, "message": "No recipients found"}
    cfg = resolve_smtp_config(settings)
    if cfg is None:
        logger.info("SMTP not configured; skipping summary email to %s recipient(s)", len(recipients))
        return {"success": False, "message": "SMTP not configured"}

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = cfg.sender or default_sender
    message["To"] = ", ".join(recipients)
    message.set_content("This summary is best viewed in an HTML-capable mail client.")
    message.add_alternative(html, subtype="html")

    try:
        _send(cfg, message)
    except (smtplib.SMTPException, OSError) as exc:
        logger.exception("Failed to send summary email via %s:%s", cfg.host, cfg.port)
        return {"success": False, "message": str(exc)}
    logger.info("Sent summary email to %s recipient(s) via %s:%s", len(recipients), cfg.host, cfg.port)
    return {"success": True, "message": f"Sent to {len(recipients)} recipient(s)"}
