"""Decides whether a signal is worth a notification and hands it off."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape

from btc_alert.alerts.notifier import Notifier
from btc_alert.exceptions import NotificationError
from btc_alert.logging.loggers import get_alert_logger
from btc_alert.strategy.signal import Action, Signal

HEADLINES = {
    Action.BUY: "🚨 BUY: good moment to enter",
    Action.SELL: "⚠️ SELL: conditions deteriorating",
    Action.NONE: "🧪 TEST: no actionable signal",
}
EMERGENCY_HEADLINE = "🛑 SELL: emergency exit during cooldown"


@dataclass(frozen=True)
class AlertResult:
    """Delivery outcome; never affects the signal it reports on."""

    sent: bool
    delivered: bool = False
    status_code: int | None = None
    error: str | None = None
    text: str | None = None


def render_message(
    signal: Signal,
    symbol: str = "BTC",
    max_reasons: int = 4,
    forced: bool = False,
    emergency: bool = False,
) -> str:
    """Telegram-flavoured HTML body."""
    headline = EMERGENCY_HEADLINE if emergency else HEADLINES[signal.action]
    if forced:
        headline = f"{headline} [manual]"
    bullets = "\n".join(f"• {escape(r)}" for r in signal.reason[:max_reasons])
    return (
        f"<b>{escape(headline)}</b>\n\n"
        f"<b>{escape(symbol)} price:</b> ${signal.price:,.2f}\n"
        f"<b>Score:</b> {signal.score}/100\n\n"
        f"<b>Reasons:</b>\n{bullets}\n\n"
        f"<b>Time:</b> {signal.at.strftime('%Y-%m-%d %H:%M:%S %Z')}"
    )


class AlertGate:
    """Notify when forced or when the final action is not NONE."""

    def __init__(self, notifier: Notifier, symbol: str = "BTC", max_reasons: int = 4) -> None:
        self.notifier = notifier
        self.symbol = symbol
        self.max_reasons = max_reasons
        self.logger = get_alert_logger()

    @staticmethod
    def should_notify(action: Action, force: bool) -> bool:
        return force or action is not Action.NONE

    def dispatch(self, signal: Signal, force: bool = False, emergency: bool = False) -> AlertResult:
        if not self.should_notify(signal.action, force):
            return AlertResult(sent=False)

        text = render_message(
            signal,
            symbol=self.symbol,
            max_reasons=self.max_reasons,
            forced=force,
            emergency=emergency,
        )
        return self.send_text(text, label=f"action={signal.action.value} score={signal.score} forced={force}")

    def send_text(self, text: str, label: str = "") -> AlertResult:
        """Hand `text` to the notifier, capturing any delivery failure."""
        try:
            delivery = self.notifier.send(text)
        except NotificationError as exc:
            self.logger.error("alert_failed %s error=%s", label, exc)
            return AlertResult(sent=True, delivered=False, status_code=exc.status_code, error=str(exc), text=text)
        except Exception as exc:
            self.logger.exception("alert_failed %s error=%s", label, exc)
            return AlertResult(sent=True, delivered=False, error=f"{type(exc).__name__}: {exc}", text=text)

        self.logger.info("alert_sent %s delivered=%s status=%s", label, delivery.delivered, delivery.status_code)
        return AlertResult(
            sent=True,
            delivered=delivery.delivered,
            status_code=delivery.status_code,
            error=None if delivery.delivered else f"channel rejected message (status={delivery.status_code})",
            text=text,
        )
