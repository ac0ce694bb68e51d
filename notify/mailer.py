"""
notify/mailer.py -- Email delivery of one-time codes.

Notifier is the contract the service depends on: send(destination, code)
delivers the code or raises. Callers run it on the background dispatcher, so
a raise here is logged there and never reaches the HTTP client. There are no
retries; a user who never receives a code asks for a new one.

SmtpNotifier speaks plain SMTP with STARTTLS (port 587) or implicit TLS
(port 465, SMTP_USE_SSL=true). LogNotifier stands in when SMTP_HOST is empty
so local development works without a mail relay.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings
from core.redact import mask_email

logger = logging.getLogger("identitygate.notify")

SUBJECT = "OTP for Registration"


class Notifier(Protocol):
    def send(self, destination: str, code: str) -> None: ...


def build_message(sender: str, destination: str, code: str, ttl_seconds: int) -> EmailMessage:
    """Assemble the plain-text + HTML email carrying the code."""
    minutes = max(1, ttl_seconds // 60)
    msg = EmailMessage()
    msg["Subject"] = SUBJECT
    msg["From"] = sender
    msg["To"] = destination
    msg.set_content(f"Your OTP for registration is {code}\n\nThis code expires in {minutes} minutes.\n")
    msg.add_alternative(
        f"""
      <div style="font-family:system-ui,Segoe UI,Roboto,Arial">
        <p>Your OTP for registration is:</p>
        <div style="font-size:24px;font-weight:700;letter-spacing:3px">{code}</div>
        <p>This code expires in {minutes} minutes.</p>
      </div>
    """,
        subtype="html",
    )
    return msg


class SmtpNotifier:
    """Deliver codes through an SMTP relay.

    A new connection is opened per message. Volume is one email per
    registration or resend, and a long-lived connection would need its own
    keepalive and reconnect handling.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        use_ssl: bool = False,
        ttl_seconds: int = 600,
        timeout: float = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_ssl = use_ssl
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout

    def send(self, destination: str, code: str) -> None:
        msg = build_message(self.sender, destination, code, self.ttl_seconds)
        ctx = ssl.create_default_context()
        if self.use_ssl:
            with smtplib.SMTP_SSL(self.host, self.port, context=ctx, timeout=self.timeout) as s:
                self._deliver(s, msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
                s.starttls(context=ctx)
                self._deliver(s, msg)
        logger.info("Verification code sent to %s via %s:%d", mask_email(destination), self.host, self.port)

    def _deliver(self, s: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.username and self.password:
            s.login(self.username, self.password)
        s.send_message(msg)


class LogNotifier:
    """Development stand-in: records that a code was issued instead of mailing it.

    The code appears in the log only when reveal_codes is True (DEBUG=true).
    """

    def __init__(self, reveal_codes: bool = False) -> None:
        self.reveal_codes = reveal_codes

    def send(self, destination: str, code: str) -> None:
        if self.reveal_codes:
            logger.warning("SMTP not configured -- code for %s is %s", mask_email(destination), code)
        else:
            logger.warning("SMTP not configured -- code for %s was not delivered", mask_email(destination))


def build_notifier(settings: Settings) -> Notifier:
    """Return an SmtpNotifier when SMTP_HOST is set, otherwise a LogNotifier."""
    if settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.mail_from,
            use_ssl=settings.smtp_use_ssl,
            ttl_seconds=settings.otp_ttl_seconds,
        )
    logger.warning("SMTP_HOST is empty -- verification codes will not be emailed")
    return LogNotifier(reveal_codes=settings.debug)
