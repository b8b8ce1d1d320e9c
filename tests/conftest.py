"""Shared fixtures for alert bot tests."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest

from btc_alert.alerts.notifier import DeliveryResult, Notifier
from btc_alert.data.price_feed import PriceFeed, PricePoint
from btc_alert.engine import AlertEngine, EngineConfig
from btc_alert.exceptions import NotificationError
from btc_alert.state.store import InMemoryStateStore
from btc_alert.strategy.decision import DecisionEngine
from btc_alert.strategy.signal import IndicatorSnapshot, Signal

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# Hourly candles: 1h change is one candle back, 24h change 24 back.
BASE_CONFIG = {
    "engine": {"pair": "XBTUSD", "symbol": "BTC", "interval_minutes": 60, "loop_sleep_seconds": 1},
    "feed": {"provider": "synthetic", "seed": 7, "length": 300},
    "strategy": {
        "ema_short": 50,
        "ema_long": 200,
        "rsi_period": 14,
        "rebound_window": 3,
        "change_1h_offset": 1,
        "change_24h_offset": 24,
        "rebound_threshold_pct": 0.30,
        "buy_min_score": 80,
        "sell_min_score": 55,
    },
    "cooldown": {"window_hours": 6, "emergency_change_1h_pct": -1.0, "emergency_ema_ratio": 0.995},
    "state": {"backend": "memory", "key": "btcalert:lastTrade"},
    "alerts": {"channel": "log", "max_reasons": 4},
}


class StubFeed(PriceFeed):
    """Returns a fixed close series, or raises a preset error."""

    def __init__(self, closes=None, error: Exception | None = None) -> None:
        self.closes = list(closes or [])
        self.error = error
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        start = NOW - timedelta(hours=len(self.closes))
        return [PricePoint(ts=start + timedelta(hours=i), close=c) for i, c in enumerate(self.closes)]


class RecordingNotifier(Notifier):
    """Keeps every message; can be told to fail or reject."""

    def __init__(self, fail: bool = False, reject: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail
        self.reject = reject

    def send(self, text: str) -> DeliveryResult:
        if self.fail:
            raise NotificationError("connection reset", status_code=None)
        self.sent.append(text)
        if self.reject:
            return DeliveryResult(delivered=False, status_code=400)
        return DeliveryResult(delivered=True, status_code=200)


@pytest.fixture
def config_raw() -> dict:
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def engine_config(config_raw) -> EngineConfig:
    return EngineConfig(raw=config_raw)


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_engine(engine_config, store, notifier):
    """Build an engine around a stub feed; collaborators are overridable."""

    def _make(closes=None, feed=None, **overrides) -> AlertEngine:
        return AlertEngine(
            engine_config,
            feed=feed or StubFeed(closes if closes is not None else [50000.0] * 220),
            store=overrides.get("store", store),
            notifier=overrides.get("notifier", notifier),
            clock=lambda: NOW,
        )

    return _make


@pytest.fixture
def make_snapshot():
    """Defaults satisfy every BUY condition: score 100."""

    def _make(**overrides) -> IndicatorSnapshot:
        values = dict(
            price=50100.0,
            ema_short=50000.0,
            ema_long=49000.0,
            rsi=55.0,
            change_1h=0.2,
            change_24h=1.0,
            rebound=0.4,
        )
        values.update(overrides)
        return IndicatorSnapshot(**values)

    return _make


def signal_for(decision: DecisionEngine, snap: IndicatorSnapshot, at: datetime = NOW) -> Signal:
    """Build the signal the engine would emit for a hand-made snapshot."""
    result = decision.evaluate(snap)
    return Signal(
        at=at,
        score=result.score,
        verdict=result.action.value != "NONE",
        action=result.action,
        price=snap.price,
        indicators=snap,
        reason=result.reasons,
    )
