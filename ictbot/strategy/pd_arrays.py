"""Price-delivery array detection — order blocks, FVGs, breakers, rejection blocks.

Four independent scans over one series. Every array is zone-classified
against that same series' equilibrium (midpoint of its high/low). Detection
order is scan order, not price-time order.
"""

from typing import Optional

from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.enums import PdaType, Trend, Zone
from ictbot.models.timeframe import Timeframe
from ictbot.strategy.models import Pda

BREAKER_STRENGTH = 0.7
RB_WICK_RATIO = 0.6
RB_BODY_RATIO = 0.3


class PdArrayDetector:
    """Holds the arrays found by the most recent :meth:`detect_all` pass."""

    def __init__(self) -> None:
        self.detected: list[Pda] = []

    def detect_all(
        self,
        candles: CandleSeries,
        timeframe: Timeframe,
        fvg_min_gap_percent: float = 0.0005,
        ob_lookback: int = 20,
        breaker_lookback: int = 30,
    ) -> list[Pda]:
        """Replace :attr:`detected` with a fresh pass over *candles*.

        Args:
            candles: Series to scan, oldest first.
            timeframe: Tag stored on each array.
            fvg_min_gap_percent: Minimum gap as a fraction of the first candle's price.
            ob_lookback: How many recent candle pairs the order-block scan inspects.
            breaker_lookback: How many recent candles the breaker scan inspects.
        """
        self.detected = []
        if not candles:
            return self.detected

        eq = (candles.highs_max() + candles.lows_min()) / 2.0
        self._detect_order_blocks(candles, timeframe, eq, ob_lookback)
        self._detect_fvg(candles, timeframe, eq, fvg_min_gap_percent)
        self._detect_breaker_blocks(candles, timeframe, eq, breaker_lookback)
        self._detect_rejection_blocks(candles, timeframe, eq)
        return self.detected

    # ── Queries ──────────────────────────────────────────────────────────

    def get_premium(self) -> list[Pda]:
        return [p for p in self.detected if p.zone is Zone.PREMIUM]

    def get_discount(self) -> list[Pda]:
        return [p for p in self.detected if p.zone is Zone.DISCOUNT]

    def get_by_type(self, pda_type: PdaType) -> list[Pda]:
        return [p for p in self.detected if p.pda_type is pda_type]

    def get_nearest_pda(self, price: float, direction: Trend) -> Optional[Pda]:
        """Closest bullish array fully below *price*, or bearish array fully above it."""
        if direction is Trend.BULLISH:
            below = [p for p in self.detected if p.direction is direction and p.high <= price]
            return min(below, key=lambda p: price - p.high, default=None)
        if direction is Trend.BEARISH:
            above = [p for p in self.detected if p.direction is direction and p.low >= price]
            return min(above, key=lambda p: p.low - price, default=None)
        return None

    # ── Scans ────────────────────────────────────────────────────────────

    def _detect_order_blocks(
        self, candles: CandleSeries, tf: Timeframe, eq: float, ob_lookback: int,
    ) -> None:
        n = len(candles)
        lookback = min(ob_lookback, max(0, n - 2))

        for i in range(2, lookback + 2):
            idx = n - i
            if idx < 1:
                break
            if idx + 1 >= n:
                continue
            prev = candles[idx - 1]
            curr = candles[idx]

            # Last down candle before a displacement up
            if prev.is_bearish and curr.is_bullish and curr.close > prev.high:
                strength = min(abs((curr.close - prev.high) / prev.high), 1.0)
                self.detected.append(
                    _band(PdaType.OB, Trend.BULLISH, prev.high, prev.low, prev, tf, eq, strength)
                )

            if prev.is_bullish and curr.is_bearish and curr.close < prev.low:
                strength = min(abs((prev.low - curr.close) / prev.low), 1.0)
                self.detected.append(
                    _band(PdaType.OB, Trend.BEARISH, prev.high, prev.low, prev, tf, eq, strength)
                )

    def _detect_fvg(
        self, candles: CandleSeries, tf: Timeframe, eq: float, min_gap_pct: float,
    ) -> None:
        for i in range(2, len(candles)):
            c1 = candles[i - 2]
            middle = candles[i - 1]
            c3 = candles[i]

            gap_up = c3.low - c1.high
            if gap_up > 0:
                gap_pct = gap_up / c1.high
                if gap_pct >= min_gap_pct:
                    self.detected.append(
                        _band(PdaType.FVG, Trend.BULLISH, c3.low, c1.high, middle, tf, eq,
                              min(gap_pct * 100.0, 1.0))
                    )

            gap_down = c1.low - c3.high
            if gap_down > 0:
                gap_pct = gap_down / c1.low
                if gap_pct >= min_gap_pct:
                    self.detected.append(
                        _band(PdaType.FVG, Trend.BEARISH, c1.low, c3.high, middle, tf, eq,
                              min(gap_pct * 100.0, 1.0))
                    )

    def _detect_breaker_blocks(
        self, candles: CandleSeries, tf: Timeframe, eq: float, breaker_lookback: int,
    ) -> None:
        n = len(candles)
        lookback = min(breaker_lookback, max(0, n - 3))

        for i in range(3, lookback + 3):
            idx = n - i
            if idx < 1:
                break
            c = candles[idx]
            subsequent = candles.slice(idx + 1, n)

            # Failed bullish OB: swept below, then closed back above its high
            if c.is_bullish and subsequent.any_low_below(c.low) and subsequent.any_close_above(c.high):
                self.detected.append(
                    _band(PdaType.BRK, Trend.BULLISH, c.high, c.low, c, tf, eq, BREAKER_STRENGTH)
                )

            if c.is_bearish and subsequent.any_high_above(c.high) and subsequent.any_close_below(c.low):
                self.detected.append(
                    _band(PdaType.BRK, Trend.BEARISH, c.high, c.low, c, tf, eq, BREAKER_STRENGTH)
                )

    def _detect_rejection_blocks(self, candles: CandleSeries, tf: Timeframe, eq: float) -> None:
        for c in candles:
            rng = c.total_range
            if rng == 0:
                continue
            body_ratio = c.body / rng
            if body_ratio >= RB_BODY_RATIO:
                continue

            lower_ratio = c.lower_wick / rng
            if lower_ratio > RB_WICK_RATIO:
                self.detected.append(
                    _band(PdaType.RB, Trend.BULLISH, c.body_bottom, c.low, c, tf, eq, lower_ratio)
                )

            upper_ratio = c.upper_wick / rng
            if upper_ratio > RB_WICK_RATIO:
                self.detected.append(
                    _band(PdaType.RB, Trend.BEARISH, c.high, c.body_top, c, tf, eq, upper_ratio)
                )


def _band(
    pda_type: PdaType,
    direction: Trend,
    high: float,
    low: float,
    source: Candle,
    tf: Timeframe,
    eq: float,
    strength: float,
) -> Pda:
    mid = (high + low) / 2.0
    return Pda(
        pda_type=pda_type,
        direction=direction,
        zone=Zone.PREMIUM if mid > eq else Zone.DISCOUNT,
        high=high,
        low=low,
        midpoint=mid,
        timestamp=source.timestamp,
        timeframe=tf,
        strength=strength,
    )
