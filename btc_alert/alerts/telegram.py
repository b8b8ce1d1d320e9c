"""Telegram Bot API notifier."""

from __future__ import annotations

import logging
import os

import requests

from btc_alert.alerts.notifier import DeliveryResult, Notifier
from btc_alert.exceptions import ConfigError, NotificationError

logger = logging.getLogger("telegram")

API_URL = "https://api.telegram.org/bot{token}/sendMessage"


class TelegramNotifier(Notifier):
    """Posts HTML messages to one chat."""

    def __init__(
        self,
        token: str,
        chat_id: str,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not token or not chat_id:
            raise ConfigError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required")
        self.token = token
        self.chat_id = chat_id
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls, timeout_seconds: float = 10.0) -> "TelegramNotifier":
        return cls(
            token=os.environ.get("TELEGRAM_BOT_TOKEN", "").strip(),
            chat_id=os.environ.get("TELEGRAM_CHAT_ID", "").strip(),
            timeout_seconds=timeout_seconds,
        )

    def send(self, text: str) -> DeliveryResult:
        body = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            resp = self._session.post(
                API_URL.format(token=self.token), json=body, timeout=self.timeout_seconds
            )
        except requests.RequestException as exc:
            raise NotificationError(f"telegram request failed: {exc}") from exc
        if not resp.ok:
            logger.warning("telegram rejected message status=%s body=%s", resp.status_code, resp.text[:200])
        return DeliveryResult(delivered=resp.ok, status_code=resp.status_code)
