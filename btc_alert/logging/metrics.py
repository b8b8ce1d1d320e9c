"""Run statistics and summary helpers."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from btc_alert.engine import TickOutcome


@dataclass
class RunStats:
    """Counters accumulated by the scheduler loop."""

    ticks: int = 0
    upstream_errors: int = 0
    runtime_errors: int = 0
    degraded: int = 0
    suppressed: int = 0
    emergency_exits: int = 0
    state_errors: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0
    actions: Counter = field(default_factory=Counter)

    def record(self, outcome: "TickOutcome") -> None:
        self.ticks += 1
        self.actions[outcome.signal.action.value] += 1
        if outcome.signal.degraded:
            self.degraded += 1
        if outcome.cooldown_status == "suppressed":
            self.suppressed += 1
        if outcome.cooldown_status == "emergency_exit":
            self.emergency_exits += 1
        if outcome.state_error:
            self.state_errors += 1
        if outcome.alert.sent:
            if outcome.alert.delivered:
                self.alerts_sent += 1
            else:
                self.alerts_failed += 1

    def record_upstream_error(self) -> None:
        self.ticks += 1
        self.upstream_errors += 1

    def record_runtime_error(self) -> None:
        self.ticks += 1
        self.runtime_errors += 1


def summarize_metrics(stats: RunStats) -> dict[str, float]:
    """Build a flat metrics snapshot for reporting."""
    base = {
        "ticks": stats.ticks,
        "upstream_errors": stats.upstream_errors,
        "runtime_errors": stats.runtime_errors,
        "degraded": stats.degraded,
        "suppressed": stats.suppressed,
        "emergency_exits": stats.emergency_exits,
        "state_errors": stats.state_errors,
        "alerts_sent": stats.alerts_sent,
        "alerts_failed": stats.alerts_failed,
        "alert_failure_ratio": (
            stats.alerts_failed / (stats.alerts_sent + stats.alerts_failed)
            if stats.alerts_sent + stats.alerts_failed
            else 0.0
        ),
    }
    base.update({f"action_{k.lower()}": v for k, v in sorted(stats.actions.items())})
    return base
