"""Liquidity pools — equal highs/lows clustered into sweepable levels."""

from datetime import datetime
from typing import Optional

from ictbot.models.candle import CandleSeries
from ictbot.models.enums import Direction, LiquidityType
from ictbot.strategy.models import LiquidityPool

EQUAL_LEVEL_TOLERANCE = 0.0005
MIN_TOUCHES = 2
SINGLE_TOUCH_STRENGTH = 0.3


class LiquidityDetector:
    """Finds buy-side pools above swing highs and sell-side pools below swing lows.

    Args:
        swing_lookback: Half-window for swing detection.
        tolerance: Relative distance under which two swings count as "equal".
    """

    def __init__(self, swing_lookback: int = 5, tolerance: float = EQUAL_LEVEL_TOLERANCE) -> None:
        self.swing_lookback = swing_lookback
        self.tolerance = tolerance

    def detect(self, candles: CandleSeries) -> list[LiquidityPool]:
        """Return every pool on *candles*, strongest first."""
        if len(candles) < self.swing_lookback * 2 + 1:
            return []

        highs = self._swings(candles, high=True)
        lows = self._swings(candles, high=False)

        pools: list[LiquidityPool] = []
        pools.extend(self._cluster(highs, LiquidityType.BSL, candles))
        pools.extend(self._cluster(lows, LiquidityType.SSL, candles))

        for pool_type, swings in ((LiquidityType.BSL, highs), (LiquidityType.SSL, lows)):
            for price, ts in swings:
                covered = any(
                    p.pool_type is pool_type
                    and abs(p.price - price) / price < self.tolerance * 2
                    for p in pools
                )
                if covered:
                    continue
                pools.append(
                    LiquidityPool(
                        pool_type=pool_type,
                        price=price,
                        touches=1,
                        first_touch=ts,
                        last_touch=ts,
                        swept=_is_swept(pool_type, price, ts, candles),
                        strength=SINGLE_TOUCH_STRENGTH,
                    )
                )

        pools.sort(key=lambda p: p.strength, reverse=True)
        return pools

    @staticmethod
    def nearest_erl_target(
        pools: list[LiquidityPool], current_price: float, direction: Direction,
    ) -> Optional[LiquidityPool]:
        """Nearest unswept pool on the profit side of *current_price*."""
        if direction is Direction.LONG:
            above = [
                p for p in pools
                if not p.swept and p.pool_type is LiquidityType.BSL and p.price > current_price
            ]
            return min(above, key=lambda p: p.price, default=None)
        below = [
            p for p in pools
            if not p.swept and p.pool_type is LiquidityType.SSL and p.price < current_price
        ]
        return max(below, key=lambda p: p.price, default=None)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _swings(self, candles: CandleSeries, high: bool) -> list[tuple[float, datetime]]:
        lb = self.swing_lookback
        n = len(candles)
        found: list[tuple[float, datetime]] = []
        for i in range(lb, n - lb):
            window = candles.slice(i - lb, i + lb + 1)
            c = candles[i]
            if high and not window.any_high_above(c.high):
                found.append((c.high, c.timestamp))
            elif not high and not window.any_low_below(c.low):
                found.append((c.low, c.timestamp))
        return found

    def _cluster(
        self,
        levels: list[tuple[float, datetime]],
        pool_type: LiquidityType,
        candles: CandleSeries,
    ) -> list[LiquidityPool]:
        """Greedy clustering against each cluster's running average."""
        if len(levels) < MIN_TOUCHES:
            return []

        pools: list[LiquidityPool] = []
        used = [False] * len(levels)
        for i, (price, ts) in enumerate(levels):
            if used[i]:
                continue
            used[i] = True
            prices = [price]
            times = [ts]
            for j in range(i + 1, len(levels)):
                if used[j]:
                    continue
                avg = sum(prices) / len(prices)
                if abs(levels[j][0] - avg) / avg < self.tolerance:
                    prices.append(levels[j][0])
                    times.append(levels[j][1])
                    used[j] = True

            if len(prices) < MIN_TOUCHES:
                continue
            avg = sum(prices) / len(prices)
            touches = len(prices)
            pools.append(
                LiquidityPool(
                    pool_type=pool_type,
                    price=round(avg, 2),
                    touches=touches,
                    first_touch=min(times),
                    last_touch=max(times),
                    swept=_is_swept(pool_type, avg, max(times), candles),
                    strength=min(0.5 + 0.15 * (touches - 1), 1.0),
                )
            )
        return pools


def _is_swept(pool_type: LiquidityType, level: float, after: datetime, candles: CandleSeries) -> bool:
    if pool_type is LiquidityType.BSL:
        return any(c.timestamp > after and c.high > level for c in candles)
    return any(c.timestamp > after and c.low < level for c in candles)
