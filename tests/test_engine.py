"""End-to-end tick pipeline with stub collaborators."""

from datetime import timedelta
import math
import threading
import time

import pytest

from btc_alert.engine import AlertEngine, EngineConfig
from btc_alert.exceptions import ConfigError, StateStoreError, UpstreamError
from btc_alert.risk.cooldown import TradeState
from btc_alert.state.store import InMemoryStateStore, JsonFileStateStore
from btc_alert.strategy.signal import Action
from conftest import NOW, RecordingNotifier, StubFeed, signal_for

KEY = "btcalert:lastTrade"


class FailingStore(InMemoryStateStore):
    def __init__(self, fail_get: bool = False, fail_set: bool = False) -> None:
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set

    def get(self, key):
        if self.fail_get:
            raise StateStoreError("store unreachable")
        return super().get(key)

    def set(self, key, state):
        if self.fail_set:
            raise StateStoreError("write rejected")
        super().set(key, state)


class SlowStore(InMemoryStateStore):
    """Widens the read-then-write window to expose lost updates."""

    def get(self, key):
        value = super().get(key)
        time.sleep(0.05)
        return value


class SlowJsonStore(JsonFileStateStore):
    def get(self, key):
        value = super().get(key)
        time.sleep(0.05)
        return value


class BrokenNotifier(RecordingNotifier):
    """Fails with an error outside the project hierarchy."""

    def send(self, text):
        raise UnicodeEncodeError("ascii", "p\u00e4ss", 1, 2, "ordinal not in range(128)")


class TestConfig:
    def test_missing_section(self, config_raw):
        del config_raw["cooldown"]
        with pytest.raises(ConfigError):
            AlertEngine(EngineConfig(raw=config_raw), feed=StubFeed(), notifier=RecordingNotifier())

    def test_missing_key(self, config_raw):
        del config_raw["strategy"]["ema_long"]
        with pytest.raises(ConfigError):
            AlertEngine(EngineConfig(raw=config_raw), feed=StubFeed(), notifier=RecordingNotifier())

    def test_packaged_settings_load(self):
        config = EngineConfig.from_yaml()
        assert config.section("strategy")["buy_min_score"] == 80
        assert config.section("state")["key"] == KEY

    def test_packaged_windows_need_289_closes(self):
        def packaged(closes):
            return AlertEngine(
                EngineConfig.from_yaml(),
                feed=StubFeed(closes),
                store=InMemoryStateStore(),
                notifier=RecordingNotifier(),
                clock=lambda: NOW,
            )

        assert packaged([50000.0] * 220).tick().signal.degraded
        outcome = packaged([50000.0] * 289).tick()
        assert not outcome.signal.degraded
        assert outcome.signal.score == 75

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            EngineConfig.from_yaml(path)


class TestTick:
    def test_flat_series_scores_75_and_stays_quiet(self, make_engine, store, notifier):
        outcome = make_engine([50000.0] * 220).tick()

        assert outcome.signal.score == 75
        assert outcome.signal.action is Action.NONE
        assert outcome.signal.verdict is False
        assert len(outcome.signal.reason) == 5
        assert outcome.signal.indicators.rsi == 100.0
        assert outcome.cooldown_status == "idle"
        assert outcome.alert.sent is False
        assert notifier.sent == []
        assert store.get(KEY) is None

    def test_output_record_shape(self, make_engine):
        data = make_engine([50000.0] * 220).tick().to_dict()
        for field in (
            "at", "verdict", "action", "score", "price", "rsi14", "ema50", "ema200",
            "change1h", "change24h", "rebound2h", "reason",
        ):
            assert field in data
        assert data["at"] == int(NOW.timestamp() * 1000)
        assert data["cooldown"] == "idle"

    def test_short_series_degrades(self, make_engine, store):
        outcome = make_engine([50000.0] * 50).tick()
        assert outcome.signal.degraded
        assert outcome.signal.action is Action.NONE
        assert outcome.cooldown_status == "degraded"
        assert store.get(KEY) is None

    def test_invalid_values_are_filtered(self, make_engine):
        closes = [50000.0] * 220 + [math.nan, -1.0, 0.0, math.inf]
        outcome = make_engine(closes).tick()
        assert not outcome.signal.degraded
        assert outcome.signal.price == 50000.0

    def test_invalid_values_are_logged(self, make_engine, caplog):
        closes = [50000.0] * 220 + [math.nan, -1.0]
        with caplog.at_level("WARNING", logger="signal_log"):
            make_engine(closes).tick()
        messages = [r.getMessage() for r in caplog.records if r.name == "signal_log"]
        assert any("code=INVALID_SERIES dropped=2 kept=220" in m for m in messages)

    def test_filtering_below_minimum_degrades(self, make_engine):
        closes = [50000.0] * 150 + [math.nan] * 100
        assert make_engine(closes).tick().signal.degraded

    def test_upstream_error_propagates_without_touching_state(self, make_engine, store, notifier):
        store.set(KEY, TradeState(last_action=Action.BUY, last_at=NOW - timedelta(hours=1)))
        before = store.get(KEY)
        engine = make_engine(feed=StubFeed(error=UpstreamError("kraken timeout")))

        with pytest.raises(UpstreamError):
            engine.tick()
        assert store.get(KEY) == before
        assert notifier.sent == []

    def test_deterministic(self, engine_config):
        closes = [50000.0 + 40.0 * math.sin(i / 9.0) + i * 0.8 for i in range(260)]
        outcomes = []
        for _ in range(2):
            engine = AlertEngine(
                engine_config,
                feed=StubFeed(closes),
                store=InMemoryStateStore(),
                notifier=RecordingNotifier(),
                clock=lambda: NOW,
            )
            outcomes.append(engine.tick())
        assert outcomes[0].to_dict() == outcomes[1].to_dict()


class TestCooldownFlow:
    def test_buy_then_suppressed(self, make_engine, make_snapshot, store, notifier):
        engine = make_engine()
        first = engine.process(signal_for(engine.decision, make_snapshot()))

        assert first.signal.action is Action.BUY
        assert first.signal.score == 100
        assert first.cooldown_status == "entered_cooldown"
        assert first.alert.delivered
        assert store.get(KEY) == TradeState(last_action=Action.BUY, last_at=NOW, last_price=50100.0)

        later = signal_for(engine.decision, make_snapshot(), at=NOW + timedelta(hours=2))
        second = engine.process(later)
        assert second.tentative_action is Action.BUY
        assert second.signal.action is Action.NONE
        assert second.signal.verdict is False
        assert second.cooldown_status == "suppressed"
        assert second.alert.sent is False
        assert store.get(KEY).last_at == NOW
        assert len(notifier.sent) == 1

    def test_emergency_sell_during_cooldown(self, make_engine, make_snapshot, store, notifier):
        engine = make_engine()
        engine.process(signal_for(engine.decision, make_snapshot()))
        recorded = store.get(KEY)

        crash = signal_for(engine.decision, make_snapshot(change_1h=-1.5), at=NOW + timedelta(minutes=30))
        outcome = engine.process(crash)

        assert outcome.signal.action is Action.SELL
        assert outcome.cooldown_status == "emergency_exit"
        assert "emergency exit" in notifier.sent[-1]
        assert store.get(KEY) == recorded

    def test_buy_allowed_again_after_window(self, make_engine, make_snapshot, store):
        engine = make_engine()
        engine.process(signal_for(engine.decision, make_snapshot()))
        later = NOW + timedelta(hours=6)
        outcome = engine.process(signal_for(engine.decision, make_snapshot(), at=later))
        assert outcome.signal.action is Action.BUY
        assert store.get(KEY).last_at == later

    def test_sell_does_not_write_state(self, make_engine, make_snapshot, store):
        engine = make_engine()
        outcome = engine.process(signal_for(engine.decision, make_snapshot(price=49900.0)))
        assert outcome.signal.action is Action.SELL
        assert store.get(KEY) is None

    def test_concurrent_ticks_emit_one_buy(self, make_engine, make_snapshot, notifier):
        engine = make_engine(store=SlowStore())
        signal = signal_for(engine.decision, make_snapshot())
        results = []

        def run():
            results.append(engine.process(signal).signal.action)

        threads = [threading.Thread(target=run) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(Action.BUY) == 1
        assert results.count(Action.NONE) == 3
        assert len(notifier.sent) == 1

    def test_separate_json_stores_emit_one_buy(self, engine_config, make_snapshot, tmp_path):
        path = tmp_path / "trade_state.json"
        notifier = RecordingNotifier()
        engines = [
            AlertEngine(
                engine_config,
                feed=StubFeed(),
                store=SlowJsonStore(path),
                notifier=notifier,
                clock=lambda: NOW,
            )
            for _ in range(2)
        ]
        signal = signal_for(engines[0].decision, make_snapshot())
        results = []

        def run(engine):
            results.append(engine.process(signal).signal.action)

        threads = [threading.Thread(target=run, args=(e,)) for e in engines]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(a.value for a in results) == ["BUY", "NONE"]
        assert len(notifier.sent) == 1
        assert JsonFileStateStore(path).get(KEY).last_action is Action.BUY


class TestForce:
    def test_forced_override_never_writes(self, make_engine, store, notifier):
        outcome = make_engine([50000.0] * 220).tick(force=True, action="BUY")
        assert outcome.signal.action is Action.BUY
        assert outcome.cooldown_status == "forced"
        assert outcome.alert.sent
        assert "[manual]" in notifier.sent[0]
        assert store.get(KEY) is None

    def test_forced_without_action_notifies_none(self, make_engine, notifier):
        outcome = make_engine([50000.0] * 220).tick(force=True)
        assert outcome.signal.action is Action.NONE
        assert outcome.alert.sent
        assert "TEST" in notifier.sent[0]

    def test_forced_on_degraded_series(self, make_engine, store):
        outcome = make_engine([50000.0] * 10).tick(force=True, action="SELL")
        assert outcome.signal.action is Action.SELL
        assert outcome.alert.sent
        assert store.get(KEY) is None

    def test_forced_during_cooldown_keeps_record(self, make_engine, make_snapshot, store):
        engine = make_engine()
        engine.process(signal_for(engine.decision, make_snapshot()))
        recorded = store.get(KEY)
        later = signal_for(engine.decision, make_snapshot(), at=NOW + timedelta(hours=1))
        outcome = engine.process(later, force=True, override=Action.BUY)
        assert outcome.signal.action is Action.BUY
        assert store.get(KEY) == recorded

    def test_unknown_action_rejected(self, make_engine):
        with pytest.raises(ValueError):
            make_engine().tick(force=True, action="HOLD")


class TestFailureDomains:
    def test_state_read_failure_fails_closed(self, make_engine, make_snapshot, notifier):
        engine = make_engine(store=FailingStore(fail_get=True))
        outcome = engine.process(signal_for(engine.decision, make_snapshot()))
        assert outcome.tentative_action is Action.BUY
        assert outcome.signal.action is Action.NONE
        assert outcome.cooldown_status == "state_error"
        assert "unreachable" in outcome.state_error
        assert notifier.sent == []

    def test_state_write_failure_suppresses_buy(self, make_engine, make_snapshot, notifier):
        engine = make_engine(store=FailingStore(fail_set=True))
        outcome = engine.process(signal_for(engine.decision, make_snapshot()))
        assert outcome.signal.action is Action.NONE
        assert outcome.state_error
        assert notifier.sent == []

    def test_notification_failure_keeps_decision(self, make_engine, make_snapshot, store):
        engine = make_engine(notifier=RecordingNotifier(fail=True))
        outcome = engine.process(signal_for(engine.decision, make_snapshot()))
        assert outcome.signal.action is Action.BUY
        assert outcome.alert.sent and not outcome.alert.delivered
        assert outcome.alert.error
        assert store.get(KEY).last_action is Action.BUY

    def test_unexpected_notifier_error_still_returns_outcome(self, make_engine, make_snapshot, store):
        engine = make_engine(notifier=BrokenNotifier())
        outcome = engine.process(signal_for(engine.decision, make_snapshot()))
        assert outcome.signal.action is Action.BUY
        assert outcome.alert.sent and not outcome.alert.delivered
        assert "UnicodeEncodeError" in outcome.alert.error
        assert store.get(KEY).last_action is Action.BUY


class TestAdmin:
    def test_reset_clears_cooldown(self, make_engine, make_snapshot, store):
        engine = make_engine()
        engine.process(signal_for(engine.decision, make_snapshot()))
        assert engine.reset_state() == TradeState()
        assert store.get(KEY) == TradeState()
        assert engine.read_state() == TradeState()

    def test_test_message_leaves_state_alone(self, make_engine, store, notifier):
        result = make_engine().send_test_message()
        assert result.delivered
        assert "TEST BTC" in notifier.sent[0]
        assert store.get(KEY) is None
