"""
mailer/smtp.py -- Outbound HTML mail over SMTP.

Encryption modes (SMTP_ENCRYPTION):
  tls   plain connect, then STARTTLS before authenticating (port 587)
  ssl   implicit TLS from the first byte (port 465)
  none  no transport security; only for local relays and test servers

Every SMTP or socket failure is re-raised as UnavailableError("Mailer", ...)
so the boundary renders it as a 500 with a cause naming the subsystem. The
server's own error text is logged, never returned to the client.

Bodies are rendered with Jinja2 and autoescaping on, so values interpolated
into a template cannot inject markup.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Any, Optional, Protocol

from jinja2 import Environment, select_autoescape

from core.config import Settings
from core.errors import UnavailableError

logger = logging.getLogger("tenantiam.mailer")

_SUBSYSTEM = "Mailer"
_TIMEOUT_SECONDS = 15

_env = Environment(autoescape=select_autoescape(default_for_string=True))


def render(template: str, data: dict[str, Any]) -> str:
    return _env.from_string(template).render(**data)


class Mailer(Protocol):
    def send_raw(self, to: str, subject: str, html_body: str) -> None: ...

    def send_template(self, to: str, subject: str, template: str, data: dict[str, Any]) -> None: ...


class SMTPMailer:
    """Send HTML mail through one configured SMTP server.

    Usage:
        mailer = SMTPMailer("smtp.example.com", 587, "user", "pw", "tls", "noreply@example.com")
        mailer.send_raw("a@b.com", "Hello", "<p>hi</p>")
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        encryption: str,
        from_addr: str,
    ) -> None:
        if encryption not in ("tls", "ssl", "none"):
            raise ValueError(f"unsupported SMTP encryption mode: {encryption!r}")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.encryption = encryption
        self.from_addr = from_addr

    def send_raw(self, to: str, subject: str, html_body: str) -> None:
        msg = MIMEText(html_body, "html", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = to

        try:
            with self._connect() as server:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_addr, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send mail via %s:%s: %s", self.host, self.port, exc)
            raise UnavailableError(_SUBSYSTEM, "failed to send email") from exc

    def send_template(self, to: str, subject: str, template: str, data: dict[str, Any]) -> None:
        self.send_raw(to, subject, render(template, data))

    def _connect(self) -> smtplib.SMTP:
        if self.encryption == "ssl":
            return smtplib.SMTP_SSL(
                self.host, self.port, timeout=_TIMEOUT_SECONDS, context=ssl.create_default_context()
            )
        server = smtplib.SMTP(self.host, self.port, timeout=_TIMEOUT_SECONDS)
        if self.encryption == "tls":
            try:
                server.starttls(context=ssl.create_default_context())
            except (smtplib.SMTPException, OSError):
                server.close()
                raise
        return server


def build_mailer(settings: Settings) -> Optional[SMTPMailer]:
    """Return a configured SMTPMailer, or None when any SMTP setting is missing."""
    required = {
        "SMTP_HOST": settings.smtp_host,
        "SMTP_USERNAME": settings.smtp_username,
        "SMTP_PASSWORD": settings.smtp_password,
        "SMTP_ADDRESS": settings.smtp_address,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        logger.warning("Mailer disabled, missing SMTP configuration: %s", ", ".join(missing))
        return None
    return SMTPMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        encryption=settings.smtp_encryption,
        from_addr=settings.smtp_address,
    )
