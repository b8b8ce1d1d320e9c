"""Price feed collaborators: Kraken OHLC over REST and a synthetic feed for dry runs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import math
import random
from typing import Any, List

import requests

from btc_alert.exceptions import ConfigError, UpstreamError


@dataclass(frozen=True)
class PricePoint:
    """One close, timestamped at candle open (UTC)."""

    ts: datetime
    close: float


class PriceFeed(ABC):
    """Supplies an oldest-first close series covering the longest window."""

    @abstractmethod
    def fetch(self) -> List[PricePoint]:
        """Return the latest series; raise UpstreamError on failure."""


class KrakenPriceFeed(PriceFeed):
    """Kraken public OHLC endpoint, closes only."""

    BASE_URL = "https://api.kraken.com/0/public/OHLC"

    def __init__(
        self,
        pair: str = "XBTUSD",
        interval_minutes: int = 5,
        timeout_seconds: float = 10.0,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.pair = pair
        self.interval_minutes = interval_minutes
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url or self.BASE_URL
        self._session = session or requests.Session()

    def fetch(self) -> List[PricePoint]:
        params = {"pair": self.pair, "interval": self.interval_minutes}
        try:
            resp = self._session.get(
                self.base_url,
                params=params,
                timeout=self.timeout_seconds,
                headers={"accept": "application/json"},
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"kraken request failed: {exc}") from exc
        if not resp.ok:
            raise UpstreamError(f"kraken {resp.status_code}: {resp.text[:160]}", status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise UpstreamError("kraken returned non-JSON body", status_code=resp.status_code) from exc
        return self._parse(payload)

    @staticmethod
    def _parse(payload: Any) -> List[PricePoint]:
        if not isinstance(payload, dict):
            raise UpstreamError(f"kraken payload is {type(payload).__name__}, expected object")
        errors = payload.get("error") or []
        if errors:
            raise UpstreamError(f"kraken error: {', '.join(map(str, errors))}")
        result = payload.get("result") or {}
        if not isinstance(result, dict):
            raise UpstreamError(f"kraken result is {type(result).__name__}, expected object")
        keys = [k for k in result if k != "last"]
        if not keys or not isinstance(result[keys[0]], list):
            raise UpstreamError("kraken payload has no OHLC rows")

        points: List[PricePoint] = []
        for row in result[keys[0]]:
            try:
                ts = datetime.fromtimestamp(float(row[0]), tz=timezone.utc)
                close = float(row[4])
            except (TypeError, ValueError, IndexError):
                continue
            points.append(PricePoint(ts=ts, close=close))
        points.sort(key=lambda p: p.ts)
        return points


class SyntheticPriceFeed(PriceFeed):
    """Deterministic random walk around a mild sinusoid, for paper runs."""

    def __init__(
        self,
        seed: int = 42,
        start_price: float = 50000.0,
        length: int = 720,
        interval_minutes: int = 5,
        start: datetime | None = None,
    ) -> None:
        self._rng = random.Random(seed)
        self._price = start_price
        self.length = length
        self.interval = timedelta(minutes=interval_minutes)
        if start is None:
            start = datetime.now(timezone.utc).replace(second=0, microsecond=0) - self.interval * length
        self._ts = start
        self._history: List[PricePoint] = []

    def _next_point(self) -> PricePoint:
        wave = math.sin(self._ts.timestamp() / 2400.0) * 0.0008
        noise = self._rng.uniform(-0.0015, 0.0015)
        self._price = max(1.0, self._price * (1.0 + wave + noise))
        point = PricePoint(ts=self._ts, close=self._price)
        self._ts += self.interval
        return point

    def fetch(self) -> List[PricePoint]:
        """Return the rolling window, advancing one candle per call after warm-up."""
        if not self._history:
            self._history = [self._next_point() for _ in range(self.length)]
        else:
            self._history.append(self._next_point())
            self._history = self._history[-self.length :]
        return list(self._history)


def build_price_feed(cfg: dict[str, Any], pair: str, interval_minutes: int) -> PriceFeed:
    """Create the feed named by the `feed` config section."""
    provider = cfg.get("provider", "kraken")
    if provider == "kraken":
        return KrakenPriceFeed(
            pair=pair,
            interval_minutes=interval_minutes,
            timeout_seconds=float(cfg.get("timeout_seconds", 10)),
            base_url=cfg.get("base_url"),
        )
    if provider == "synthetic":
        return SyntheticPriceFeed(
            seed=int(cfg.get("seed", 42)),
            start_price=float(cfg.get("start_price", 50000.0)),
            length=int(cfg.get("length", 720)),
            interval_minutes=interval_minutes,
        )
    raise ConfigError(f"unknown feed provider: {provider}")
