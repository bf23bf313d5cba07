"""Market structure — swing points, break-of-structure events, and trend.

A candle is a swing high when no high in the inclusive window
``[i - lookback, i + lookback]`` exceeds it (ties still count), and
symmetrically for swing lows. Trend is the majority vote of the last three
break-of-structure events.
"""

from typing import Optional

from ictbot.models.candle import CandleSeries
from ictbot.models.enums import BosType, SwingType, Trend
from ictbot.strategy.models import BosEvent, DealingRange, LiquidityLevels, SwingPoint


class MarketStructure:
    """Stateful analyzer for a single series.

    Each :meth:`analyze` call discards the previous pass, so one instance can
    be reused tick after tick without results leaking between calls.

    Args:
        swing_lookback: Half-window used for swing detection (default 5).
    """

    def __init__(self, swing_lookback: int = 5) -> None:
        self.swing_lookback = swing_lookback
        self.swing_highs: list[SwingPoint] = []
        self.swing_lows: list[SwingPoint] = []
        self.bos_events: list[BosEvent] = []
        self.trend: Trend = Trend.NEUTRAL

    def analyze(self, candles: CandleSeries) -> Trend:
        """Run swing, BOS and trend detection over *candles* and return the trend."""
        self.swing_highs = []
        self.swing_lows = []
        self.bos_events = []

        self.find_swings(candles)
        self.detect_bos(candles)
        self.trend = self._determine_trend()
        return self.trend

    # ── Swings ───────────────────────────────────────────────────────────

    def find_swings(self, candles: CandleSeries) -> None:
        lb = self.swing_lookback
        n = len(candles)
        if n <= lb * 2:
            return

        for i in range(lb, n - lb):
            window = candles.slice(i - lb, i + lb + 1)
            current = candles[i]
            if not window.any_high_above(current.high):
                self.swing_highs.append(
                    SwingPoint(SwingType.HIGH, current.high, current.timestamp)
                )
            if not window.any_low_below(current.low):
                self.swing_lows.append(
                    SwingPoint(SwingType.LOW, current.low, current.timestamp)
                )

    # ── Break of structure ───────────────────────────────────────────────

    def detect_bos(self, candles: CandleSeries) -> None:
        """Scan candles in time order; each swing can be broken at most once."""
        for i in range(1, len(candles)):
            candle = candles[i]

            sh = _latest_unbroken(self.swing_highs, candle.timestamp)
            if sh is not None and candle.close > sh.price:
                sh.broken = True
                self.bos_events.append(
                    BosEvent(BosType.BULLISH_BOS, sh.price, candle.timestamp)
                )

            sl = _latest_unbroken(self.swing_lows, candle.timestamp)
            if sl is not None and candle.close < sl.price:
                sl.broken = True
                self.bos_events.append(
                    BosEvent(BosType.BEARISH_BOS, sl.price, candle.timestamp)
                )

    def _determine_trend(self) -> Trend:
        if not self.bos_events:
            return Trend.NEUTRAL
        recent = self.bos_events[-3:]
        bullish = sum(1 for e in recent if e.bos_type is BosType.BULLISH_BOS)
        bearish = len(recent) - bullish
        if bullish > bearish:
            return Trend.BULLISH
        if bearish > bullish:
            return Trend.BEARISH
        return Trend.NEUTRAL

    # ── Derived levels ───────────────────────────────────────────────────

    def get_dealing_range(self, candles: Optional[CandleSeries] = None) -> DealingRange:
        """Range between the highest swing high and lowest swing low.

        Falls back to the extremes of *candles* when no swings were found,
        and to an all-zero range when there is nothing to measure.
        """
        if self.swing_highs and self.swing_lows:
            high = max(s.price for s in self.swing_highs)
            low = min(s.price for s in self.swing_lows)
            return DealingRange.from_bounds(high, low)
        if candles:
            return DealingRange.from_bounds(candles.highs_max(), candles.lows_min())
        return DealingRange.empty()

    def get_liquidity_levels(self) -> LiquidityLevels:
        bsl = sorted((s.price for s in self.swing_highs if not s.broken), reverse=True)
        ssl = sorted(s.price for s in self.swing_lows if not s.broken)
        return LiquidityLevels(bsl=bsl, ssl=ssl)


def _latest_unbroken(swings: list[SwingPoint], before) -> Optional[SwingPoint]:
    latest: Optional[SwingPoint] = None
    for s in swings:
        if s.broken or s.timestamp >= before:
            continue
        if latest is None or s.timestamp >= latest.timestamp:
            latest = s
    return latest
