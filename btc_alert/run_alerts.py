"""Entry point: one-shot trigger, scheduler loop, state reset and channel test."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import signal
import sys
import time

from btc_alert.engine import DEFAULT_CONFIG_PATH, AlertEngine, EngineConfig, TickOutcome
from btc_alert.exceptions import AlertBotError, UpstreamError
from btc_alert.logging.loggers import get_signal_logger
from btc_alert.logging.metrics import RunStats, summarize_metrics

running = True


def shutdown_handler(sig, frame):
    global running
    print("\nGraceful shutdown initiated...")
    running = False


def write_signal(outcome: TickOutcome, path: str | Path) -> None:
    """Publish the latest outcome for dashboards polling the file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(outcome.to_dict(), f, indent=2)
    tmp.replace(path)


def run_loop(engine: AlertEngine, sleep_seconds: float, output_path: str | None) -> RunStats:
    stats = RunStats()
    logger = get_signal_logger()
    while running:
        try:
            outcome = engine.tick()
        except UpstreamError as e:
            stats.record_upstream_error()
            logger.error("upstream_error error=%s", e)
        except AlertBotError as e:
            logger.error("tick_failed code=%s error=%s", e.code, e)
        except Exception as e:
            stats.record_runtime_error()
            logger.exception("runtime_error error=%s", e)
        else:
            stats.record(outcome)
            if output_path:
                write_signal(outcome, output_path)
        # Sleep in short slices so SIGINT stops the loop promptly.
        deadline = time.monotonic() + sleep_seconds
        while running and time.monotonic() < deadline:
            time.sleep(min(1.0, sleep_seconds))
    return stats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="btc-alert", description="BTC buy/sell alert bot")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="path to settings.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    tick = sub.add_parser("tick", help="run the pipeline once")
    tick.add_argument("--force", action="store_true", help="always notify; never touches trade state")
    tick.add_argument("--action", choices=["BUY", "SELL", "NONE"], help="explicit action for a forced run")

    sub.add_parser("loop", help="run the pipeline on a fixed schedule")
    sub.add_parser("reset", help="clear the cooldown record")
    sub.add_parser("state", help="print the cooldown record")
    sub.add_parser("test-notify", help="send a test message through the alert channel")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if getattr(args, "action", None) and not args.force:
        print("--action requires --force", file=sys.stderr)
        return 2

    try:
        return _dispatch(args)
    except AlertBotError as e:
        print(json.dumps({"ok": False, **e.to_dict()}), file=sys.stderr)
        return 1


def _dispatch(args: argparse.Namespace) -> int:
    config = EngineConfig.from_yaml(args.config)
    engine = AlertEngine(config)
    engine_cfg = config.section("engine")
    output_path = engine_cfg.get("signal_output_path")

    if args.command == "tick":
        outcome = engine.tick(force=args.force, action=args.action)
        if output_path:
            write_signal(outcome, output_path)
        print(json.dumps({"ok": True, **outcome.to_dict()}, indent=2))
        return 0

    if args.command == "reset":
        state = engine.reset_state()
        print(json.dumps({"ok": True, "state": state.to_dict()}))
        return 0

    if args.command == "state":
        print(json.dumps(engine.read_state().to_dict()))
        return 0

    if args.command == "test-notify":
        result = engine.send_test_message()
        print(json.dumps({"ok": result.delivered, "statusCode": result.status_code, "error": result.error}))
        return 0 if result.delivered else 1

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)
    print("Alert loop started. Press CTRL+C to stop.")
    stats = run_loop(engine, float(engine_cfg.get("loop_sleep_seconds", 300)), output_path)
    print("=== RUN SUMMARY ===")
    for k, v in summarize_metrics(stats).items():
        print(f"{k}: {v:.6f}" if isinstance(v, float) else f"{k}: {v}")
    print("Alert loop stopped cleanly.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
