"""SMTP notifier for alert emails."""

from __future__ import annotations

from email.message import EmailMessage
import logging
import os
import re
import smtplib
import ssl

from btc_alert.alerts.notifier import DeliveryResult, Notifier
from btc_alert.exceptions import ConfigError, NotificationError

EMAIL_SUBJECT = "BTC Alert"

logger = logging.getLogger("emailer")

_TAG = re.compile(r"<[^>]+>")


class EmailNotifier(Notifier):
    """Sends the alert as a plain-text email over SMTP_SSL."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        to_addr: str,
        timeout_seconds: float = 10.0,
        subject: str = EMAIL_SUBJECT,
    ) -> None:
        if not all([host, port, username, password, to_addr]):
            raise ConfigError("Email credentials missing in environment variables.")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.to_addr = to_addr
        self.timeout_seconds = timeout_seconds
        self.subject = subject

    @classmethod
    def from_env(cls, timeout_seconds: float = 10.0) -> "EmailNotifier":
        return cls(
            host=os.environ.get("EMAIL_HOST", ""),
            port=int(os.environ.get("EMAIL_PORT", 465)),
            username=os.environ.get("EMAIL_USERNAME", ""),
            password=os.environ.get("EMAIL_PASSWORD", ""),
            to_addr=os.environ.get("EMAIL_TO", ""),
            timeout_seconds=timeout_seconds,
        )

    def send(self, text: str) -> DeliveryResult:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.username
        msg["To"] = self.to_addr
        msg.set_content(_TAG.sub("", text))
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout_seconds) as server:
                server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Failed to send alert email: {exc}") from exc
        logger.info("Alert email sent successfully.")
        return DeliveryResult(delivered=True, status_code=None)
