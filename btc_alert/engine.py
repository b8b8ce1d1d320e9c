"""Main orchestration engine: fetch, score, gate through cooldown, alert."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import yaml

from btc_alert.alerts.emailer import EmailNotifier
from btc_alert.alerts.gate import AlertGate, AlertResult
from btc_alert.alerts.notifier import LogNotifier, Notifier
from btc_alert.alerts.telegram import TelegramNotifier
from btc_alert.config.constants import DEFAULT_INTERVAL_MINUTES, DEFAULT_PAIR, DEFAULT_SYMBOL, TRADE_STATE_KEY
from btc_alert.data.indicators import sanitize_closes
from btc_alert.data.price_feed import PriceFeed, build_price_feed
from btc_alert.exceptions import ConfigError, InvalidSeries, StateStoreError
from btc_alert.logging.loggers import get_signal_logger
from btc_alert.risk.cooldown import CooldownStateMachine, TradeState
from btc_alert.state.store import StateStore, build_state_store
from btc_alert.strategy.decision import DecisionEngine, SignalWindows
from btc_alert.strategy.signal import Action, Signal

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "settings.yaml"


@dataclass
class EngineConfig:
    raw: dict[str, Any]

    @classmethod
    def from_yaml(cls, path: str | Path = DEFAULT_CONFIG_PATH) -> "EngineConfig":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot load config {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a mapping")
        return cls(raw=data)

    def section(self, name: str) -> dict[str, Any]:
        value = self.raw.get(name)
        if not isinstance(value, dict):
            raise ConfigError(f"missing config section: {name}")
        return value


@dataclass(frozen=True)
class TickOutcome:
    """Everything one trigger produced; the caller owns caching and exposure."""

    signal: Signal
    tentative_action: Action
    cooldown_status: str
    alert: AlertResult
    state_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = self.signal.to_dict()
        out.update(
            {
                "tentativeAction": self.tentative_action.value,
                "cooldown": self.cooldown_status,
                "alert": {
                    "sent": self.alert.sent,
                    "delivered": self.alert.delivered,
                    "statusCode": self.alert.status_code,
                    "error": self.alert.error,
                },
                "stateError": self.state_error,
            }
        )
        return out


def build_notifier(cfg: dict[str, Any]) -> Notifier:
    """Create the channel named by the `alerts` config section."""
    channel = cfg.get("channel", "log")
    timeout = float(cfg.get("timeout_seconds", 10))
    if channel == "telegram":
        return TelegramNotifier.from_env(timeout_seconds=timeout)
    if channel == "email":
        return EmailNotifier.from_env(timeout_seconds=timeout)
    if channel == "log":
        return LogNotifier()
    raise ConfigError(f"unknown alert channel: {channel}")


class AlertEngine:
    """Coordinates feed, decision, cooldown state and alert modules."""

    def __init__(
        self,
        config: EngineConfig,
        feed: PriceFeed | None = None,
        store: StateStore | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        engine_cfg = config.section("engine")
        strategy_cfg = config.section("strategy")
        cooldown_cfg = config.section("cooldown")
        state_cfg = config.section("state")
        alerts_cfg = config.section("alerts")
        try:
            self.pair = engine_cfg.get("pair", DEFAULT_PAIR)
            self.symbol = engine_cfg.get("symbol", DEFAULT_SYMBOL)
            interval = int(engine_cfg.get("interval_minutes", DEFAULT_INTERVAL_MINUTES))
            self.decision = DecisionEngine(
                windows=SignalWindows(
                    ema_short=int(strategy_cfg["ema_short"]),
                    ema_long=int(strategy_cfg["ema_long"]),
                    rsi_period=int(strategy_cfg["rsi_period"]),
                    rebound_window=int(strategy_cfg["rebound_window"]),
                    change_1h_offset=int(strategy_cfg["change_1h_offset"]),
                    change_24h_offset=int(strategy_cfg["change_24h_offset"]),
                ),
                buy_min_score=int(strategy_cfg["buy_min_score"]),
                sell_min_score=int(strategy_cfg["sell_min_score"]),
                rebound_threshold_pct=float(strategy_cfg["rebound_threshold_pct"]),
            )
            self.cooldown = CooldownStateMachine(
                window=timedelta(hours=float(cooldown_cfg["window_hours"])),
                emergency_change_1h_pct=float(cooldown_cfg["emergency_change_1h_pct"]),
                emergency_ema_ratio=float(cooldown_cfg["emergency_ema_ratio"]),
            )
            self.state_key = state_cfg.get("key", TRADE_STATE_KEY)
            max_reasons = int(alerts_cfg.get("max_reasons", 4))
        except KeyError as exc:
            raise ConfigError(f"missing config key: {exc}") from exc

        self.feed = feed or build_price_feed(config.section("feed"), self.pair, interval)
        self.store = store or build_state_store(state_cfg)
        self.gate = AlertGate(notifier or build_notifier(alerts_cfg), symbol=self.symbol, max_reasons=max_reasons)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.signal_logger = get_signal_logger()

    def tick(self, force: bool = False, action: str | Action | None = None, now: datetime | None = None) -> TickOutcome:
        """Run one full pipeline pass. UpstreamError propagates before state is read."""
        now = now or self.clock()
        override = Action.parse(action) if action is not None else None
        points = self.feed.fetch()
        closes, dropped = sanitize_closes(p.close for p in points)
        if dropped:
            invalid = InvalidSeries(f"dropped {dropped} invalid closes", dropped=dropped)
            self.signal_logger.warning(
                "invalid_series code=%s dropped=%d kept=%d", invalid.code, invalid.dropped, len(closes)
            )
        signal = self.decision.compute(closes, now)
        return self.process(signal, force=force, override=override)

    def process(self, signal: Signal, force: bool = False, override: Action | None = None) -> TickOutcome:
        """Apply cooldown to a computed signal, persist state, and alert."""
        tentative = signal.action
        state_error = None

        if signal.indicators is None:
            final = (override or Action.NONE) if force else Action.NONE
            status = "forced" if force else "degraded"
        else:
            try:
                with self.store.lock(self.state_key):
                    state = self.store.get(self.state_key) or TradeState()
                    decision = self.cooldown.apply(
                        tentative, state, signal.indicators, signal.at, force=force, override=override
                    )
                    if decision.new_state is not None:
                        self.store.set(self.state_key, decision.new_state)
                final, status = decision.action, decision.status
            except StateStoreError as exc:
                state_error = str(exc)
                self.signal_logger.error("state_store_error key=%s error=%s", self.state_key, exc)
                if force:
                    final, status = override or tentative, "forced"
                else:
                    final, status = Action.NONE, "state_error"

        final_signal = replace(signal, action=final, verdict=final is not Action.NONE)
        alert = self.gate.dispatch(final_signal, force=force, emergency=status == "emergency_exit")
        self.signal_logger.info(
            "signal score=%d tentative=%s action=%s cooldown=%s price=%.2f alert_sent=%s",
            final_signal.score,
            tentative.value,
            final.value,
            status,
            final_signal.price,
            alert.sent,
        )
        return TickOutcome(
            signal=final_signal,
            tentative_action=tentative,
            cooldown_status=status,
            alert=alert,
            state_error=state_error,
        )

    def reset_state(self) -> TradeState:
        """Administrative reset of the cooldown record."""
        state = self.cooldown.reset()
        with self.store.lock(self.state_key):
            self.store.set(self.state_key, state)
        self.signal_logger.info("state_reset key=%s", self.state_key)
        return state

    def read_state(self) -> TradeState:
        return self.store.get(self.state_key) or TradeState()

    def send_test_message(self) -> AlertResult:
        """Check the alert channel without touching trade state."""
        now = self.clock()
        text = (
            f"<b>✅ TEST {self.symbol} alert channel</b>\n"
            f"Time: {now.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        )
        return self.gate.send_text(text, label="test_message")
