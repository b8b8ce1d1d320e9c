"""Notification channel contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

logger = logging.getLogger("notifier")


@dataclass(frozen=True)
class DeliveryResult:
    """What the channel reported back."""

    delivered: bool
    status_code: int | None = None


class Notifier(ABC):
    """Delivers rendered alert text; transport failures raise NotificationError."""

    @abstractmethod
    def send(self, text: str) -> DeliveryResult:
        """Send `text` and report whether it was accepted."""


class LogNotifier(Notifier):
    """Writes alerts to the log only; used when no channel is configured."""

    def send(self, text: str) -> DeliveryResult:
        logger.info("alert (log only):\n%s", text)
        return DeliveryResult(delivered=True, status_code=None)
