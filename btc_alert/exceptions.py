"""Error taxonomy for the alert bot."""

from __future__ import annotations


class AlertBotError(Exception):
    """Base class for errors raised by the alert bot."""

    code = "ALERT_BOT_ERROR"

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": str(self)}


class InsufficientData(AlertBotError):
    """Series too short for the indicators required."""

    code = "INSUFFICIENT_DATA"

    def __init__(self, message: str, required: int | None = None, available: int | None = None) -> None:
        super().__init__(message)
        self.required = required
        self.available = available


class InvalidSeries(AlertBotError):
    """Non-finite or non-positive values found in a price series."""

    code = "INVALID_SERIES"

    def __init__(self, message: str, dropped: int = 0) -> None:
        super().__init__(message)
        self.dropped = dropped


class UpstreamError(AlertBotError):
    """Price feed failed or timed out."""

    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotificationError(AlertBotError):
    """Notification could not be handed to the delivery channel."""

    code = "NOTIFICATION_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StateStoreError(AlertBotError):
    """Trade state could not be read, written or locked."""

    code = "STATE_STORE_ERROR"


class ConfigError(AlertBotError):
    """Missing or malformed configuration."""

    code = "CONFIG_ERROR"
