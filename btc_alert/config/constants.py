"""Project-wide constants for the BTC alert bot."""

from __future__ import annotations

DEFAULT_PAIR = "XBTUSD"
DEFAULT_SYMBOL = "BTC"
DEFAULT_INTERVAL_MINUTES = 5

# Single tracked instrument, single persisted record.
TRADE_STATE_KEY = "btcalert:lastTrade"

# Scoring weights per factor.
TREND_POINTS = 30
MOMENTUM_POINTS = 25
DISTANCE_NEAR_POINTS = 20
DISTANCE_FAR_POINTS = 10
RSI_CORE_POINTS = 15
RSI_EDGE_POINTS = 6
REBOUND_POINTS = 10

# Entry distance bands, percent from the short EMA.
DISTANCE_NEAR_PCT = 0.35
DISTANCE_FAR_PCT = 0.8

# RSI bands.
RSI_CORE_BAND = (42.0, 62.0)
RSI_UPPER_EDGE = 72.0
RSI_LOWER_EDGE = 35.0
RSI_BUY_BAND = (38.0, 72.0)
RSI_SELL_MIN = 50.0

SCORE_MIN = 0
SCORE_MAX = 100
