"""BUY cooldown with emergency exit, to avoid alert spam."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from btc_alert.strategy.signal import EPOCH, Action, IndicatorSnapshot, from_epoch_ms, to_epoch_ms

IDLE = "IDLE"
COOLDOWN_BUY = "COOLDOWN_BUY"


@dataclass(frozen=True)
class TradeState:
    """The single persisted record: last real recommendation."""

    last_action: Action = Action.NONE
    last_at: datetime = EPOCH
    last_price: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastAction": self.last_action.value,
            "lastAt": to_epoch_ms(self.last_at),
            "lastPrice": self.last_price,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradeState":
        price = data.get("lastPrice")
        return cls(
            last_action=Action.parse(data.get("lastAction")),
            last_at=from_epoch_ms(data.get("lastAt")),
            last_price=float(price) if price is not None else None,
        )


@dataclass(frozen=True)
class CooldownDecision:
    """Final action plus the state to persist, if any."""

    action: Action
    status: str
    new_state: TradeState | None = None

    @property
    def emergency(self) -> bool:
        return self.status == "emergency_exit"


class CooldownStateMachine:
    """Suppresses repeat signals for a window after a real BUY."""

    def __init__(
        self,
        window: timedelta = timedelta(hours=6),
        emergency_change_1h_pct: float = -1.0,
        emergency_ema_ratio: float = 0.995,
    ) -> None:
        self.window = window
        self.emergency_change_1h_pct = emergency_change_1h_pct
        self.emergency_ema_ratio = emergency_ema_ratio

    def phase(self, state: TradeState, now: datetime) -> str:
        if state.last_action is Action.BUY and now - state.last_at < self.window:
            return COOLDOWN_BUY
        return IDLE

    def is_emergency(self, snap: IndicatorSnapshot) -> bool:
        return (
            snap.change_1h <= self.emergency_change_1h_pct
            or snap.price < snap.ema_short * self.emergency_ema_ratio
        )

    def apply(
        self,
        tentative: Action,
        state: TradeState,
        snap: IndicatorSnapshot,
        now: datetime,
        force: bool = False,
        override: Action | None = None,
    ) -> CooldownDecision:
        """Gate the tentative action against the persisted state."""
        in_cooldown = self.phase(state, now) == COOLDOWN_BUY

        if in_cooldown and self.is_emergency(snap):
            return CooldownDecision(action=Action.SELL, status="emergency_exit")
        if force:
            return CooldownDecision(action=override or tentative, status="forced")
        if in_cooldown:
            return CooldownDecision(action=Action.NONE, status="suppressed")
        if tentative is Action.BUY:
            return CooldownDecision(
                action=Action.BUY,
                status="entered_cooldown",
                new_state=TradeState(last_action=Action.BUY, last_at=now, last_price=snap.price),
            )
        # SELL leaves the record untouched.
        if tentative is Action.SELL:
            return CooldownDecision(action=Action.SELL, status="sell")
        return CooldownDecision(action=Action.NONE, status="idle")

    @staticmethod
    def reset() -> TradeState:
        return TradeState()
