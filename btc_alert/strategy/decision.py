"""Additive scoring decision engine over EMA/RSI/rebound indicators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from btc_alert.config import constants as c
from btc_alert.data.indicators import ema, pct, rebound_from_window, rsi
from btc_alert.exceptions import InsufficientData
from btc_alert.strategy.signal import Action, IndicatorSnapshot, Signal


@dataclass(frozen=True)
class SignalWindows:
    """Indicator windows, expressed in candles."""

    ema_short: int = 50
    ema_long: int = 200
    rsi_period: int = 14
    rebound_window: int = 24
    change_1h_offset: int = 12
    change_24h_offset: int = 288

    @property
    def required_length(self) -> int:
        return max(
            self.ema_short,
            self.ema_long,
            self.rsi_period,
            self.rebound_window,
            self.change_1h_offset,
            self.change_24h_offset,
        ) + 1


@dataclass(frozen=True)
class Decision:
    """Score, per-factor reasons and tentative action for one snapshot."""

    score: int
    reasons: tuple[str, ...]
    action: Action


class DecisionEngine:
    """Turns a close series into a scored, explained tentative action."""

    def __init__(
        self,
        windows: SignalWindows,
        buy_min_score: int = 80,
        sell_min_score: int = 55,
        rebound_threshold_pct: float = 0.30,
    ) -> None:
        self.windows = windows
        self.buy_min_score = buy_min_score
        self.sell_min_score = sell_min_score
        self.rebound_threshold_pct = rebound_threshold_pct
        self._short = f"EMA{windows.ema_short}"
        self._long = f"EMA{windows.ema_long}"

    def build_snapshot(self, closes: Sequence[float]) -> IndicatorSnapshot:
        """Compute indicators from a sanitized, oldest-first close series."""
        w = self.windows
        if len(closes) < w.required_length:
            raise InsufficientData(
                f"need {w.required_length} closes, got {len(closes)}",
                required=w.required_length,
                available=len(closes),
            )
        price = closes[-1]
        try:
            rsi_value: float | None = rsi(closes, w.rsi_period)
        except InsufficientData:
            rsi_value = None
        return IndicatorSnapshot(
            price=price,
            ema_short=ema(closes, w.ema_short),
            ema_long=ema(closes, w.ema_long),
            rsi=rsi_value,
            change_1h=pct(closes[-1 - w.change_1h_offset], price),
            change_24h=pct(closes[-1 - w.change_24h_offset], price),
            rebound=rebound_from_window(closes, w.rebound_window),
        )

    def evaluate(self, snap: IndicatorSnapshot) -> Decision:
        """Score every factor, then derive the tentative action from raw indicators."""
        reasons: list[str] = []
        score = 0

        if snap.price >= snap.ema_long:
            score += c.TREND_POINTS
            reasons.append(f"Trend: price {snap.price:.2f} >= {self._long} {snap.ema_long:.2f} (+{c.TREND_POINTS})")
        else:
            reasons.append(f"Trend: price {snap.price:.2f} < {self._long} {snap.ema_long:.2f} (+0)")

        if snap.ema_short >= snap.ema_long:
            score += c.MOMENTUM_POINTS
            reasons.append(f"Momentum: {self._short} >= {self._long} (+{c.MOMENTUM_POINTS})")
        else:
            reasons.append(f"Momentum: {self._short} < {self._long} (+0)")

        distance = abs(pct(snap.price, snap.ema_short))
        if distance <= c.DISTANCE_NEAR_PCT:
            points = c.DISTANCE_NEAR_POINTS
        elif distance <= c.DISTANCE_FAR_PCT:
            points = c.DISTANCE_FAR_POINTS
        else:
            points = 0
        score += points
        reasons.append(f"Entry distance: {distance:.2f}% from {self._short} (+{points})")

        if snap.rsi is None:
            reasons.append("Oscillator: RSI unavailable (+0)")
        else:
            lo, hi = c.RSI_CORE_BAND
            if lo <= snap.rsi <= hi:
                points = c.RSI_CORE_POINTS
            elif hi < snap.rsi <= c.RSI_UPPER_EDGE or c.RSI_LOWER_EDGE <= snap.rsi < lo:
                points = c.RSI_EDGE_POINTS
            else:
                points = 0
            score += points
            reasons.append(f"Oscillator: RSI {snap.rsi:.2f} (+{points})")

        if snap.rebound >= self.rebound_threshold_pct:
            score += c.REBOUND_POINTS
            reasons.append(
                f"Rebound: {snap.rebound:.2f}% >= {self.rebound_threshold_pct:.2f}% (+{c.REBOUND_POINTS})"
            )
        else:
            reasons.append(f"Rebound: {snap.rebound:.2f}% < {self.rebound_threshold_pct:.2f}% (+0)")

        score = max(c.SCORE_MIN, min(c.SCORE_MAX, score))
        return Decision(score=score, reasons=tuple(reasons), action=self._tentative_action(score, snap))

    def _tentative_action(self, score: int, snap: IndicatorSnapshot) -> Action:
        buy_lo, buy_hi = c.RSI_BUY_BAND
        rsi_buy_ok = snap.rsi is None or buy_lo <= snap.rsi <= buy_hi
        if (
            score >= self.buy_min_score
            and snap.price >= snap.ema_long
            and snap.ema_short >= snap.ema_long
            and snap.price >= snap.ema_short
            and rsi_buy_ok
            and snap.rebound >= self.rebound_threshold_pct
        ):
            return Action.BUY

        rsi_sell_ok = snap.rsi is None or snap.rsi >= c.RSI_SELL_MIN
        bearish = snap.price < snap.ema_short or snap.ema_short < snap.ema_long
        if score >= self.sell_min_score and bearish and rsi_sell_ok:
            return Action.SELL
        return Action.NONE

    def compute(self, closes: Sequence[float], at: datetime) -> Signal:
        """Return a signal for the series; short series yield a neutral degraded signal."""
        try:
            snap = self.build_snapshot(closes)
        except InsufficientData as exc:
            return Signal(
                at=at,
                score=0,
                verdict=False,
                action=Action.NONE,
                price=closes[-1] if closes else 0.0,
                indicators=None,
                reason=(f"Insufficient data: {exc}",),
            )
        decision = self.evaluate(snap)
        return Signal(
            at=at,
            score=decision.score,
            verdict=decision.action is not Action.NONE,
            action=decision.action,
            price=snap.price,
            indicators=snap,
            reason=decision.reasons,
        )
