"""Signal models shared between the decision engine, cooldown and alerting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Action(str, Enum):
    """Recommendation carried by a signal."""

    BUY = "BUY"
    SELL = "SELL"
    NONE = "NONE"

    @classmethod
    def parse(cls, value: "str | Action | None") -> "Action":
        if value is None:
            return cls.NONE
        if isinstance(value, Action):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"unknown action: {value!r}") from None


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicators derived from the latest price window."""

    price: float
    ema_short: float
    ema_long: float
    rsi: float | None
    change_1h: float
    change_24h: float
    rebound: float


@dataclass(frozen=True)
class Signal:
    """Outcome of one engine evaluation."""

    at: datetime
    score: int
    verdict: bool
    action: Action
    price: float
    indicators: IndicatorSnapshot | None
    reason: tuple[str, ...]

    @property
    def degraded(self) -> bool:
        return self.indicators is None

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, keyed the way the dashboard consumes it."""
        ind = self.indicators
        return {
            "at": to_epoch_ms(self.at),
            "verdict": self.verdict,
            "action": self.action.value,
            "score": self.score,
            "price": self.price,
            "rsi14": ind.rsi if ind else None,
            "ema50": ind.ema_short if ind else None,
            "ema200": ind.ema_long if ind else None,
            "change1h": ind.change_1h if ind else None,
            "change24h": ind.change_24h if ind else None,
            "rebound2h": ind.rebound if ind else None,
            "reason": list(self.reason),
        }


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(round(ts.timestamp() * 1000))


def from_epoch_ms(value: float | int | None) -> datetime:
    if not value:
        return EPOCH
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
