"""Historical replay provider.

A simulated clock controls which candles are visible: only candles with a
timestamp at or before the clock are ever returned, so the backtest walks
forward without look-ahead.
"""

import bisect
from datetime import datetime, timezone
from typing import Iterable, Optional

from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.timeframe import Timeframe
from ictbot.strategy.sessions import to_eastern

MAX_H1_FOR_RESAMPLE = 340


class HistoricalExchange:
    """Replays pre-loaded candles up to :meth:`set_time`."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self._data: dict[Timeframe, list[Candle]] = {}
        self._stamps: dict[Timeframe, list[datetime]] = {}
        self._now = datetime.now(timezone.utc)

    def load(self, timeframe: Timeframe, candles: Iterable[Candle]) -> None:
        """Load candles for *timeframe*; they must be sorted oldest first."""
        rows = list(candles)
        self._data[timeframe] = rows
        self._stamps[timeframe] = [c.timestamp for c in rows]

    def set_time(self, now: datetime) -> None:
        self._now = now

    @property
    def current_time(self) -> datetime:
        return self._now

    def earliest_time(self) -> Optional[datetime]:
        firsts = [rows[0].timestamp for rows in self._data.values() if rows]
        return min(firsts) if firsts else None

    def latest_time(self) -> Optional[datetime]:
        lasts = [rows[-1].timestamp for rows in self._data.values() if rows]
        return max(lasts) if lasts else None

    def _visible(self, timeframe: Timeframe, limit: int) -> CandleSeries:
        rows = self._data.get(timeframe, [])
        end = bisect.bisect_right(self._stamps.get(timeframe, []), self._now)
        if end == 0:
            return CandleSeries()
        return CandleSeries(rows[max(0, end - limit):end])

    # ── Provider contract ────────────────────────────────────────────────

    async def fetch_ohlcv(self, timeframe: Timeframe, limit: int) -> CandleSeries:
        return self._visible(timeframe, limit)

    async def current_price(self) -> float:
        """Close of the latest visible 1m candle.

        Raises:
            LookupError: If no 1m candle is visible at the current clock.
        """
        last = self._visible(Timeframe.M1, 1).last()
        if last is None:
            raise LookupError(f"No price data at {self._now.isoformat()}")
        return last.close

    async def four_hour_series(self, limit: int) -> CandleSeries:
        hours = min(limit * 4, MAX_H1_FOR_RESAMPLE)
        return self._visible(Timeframe.H1, hours).resample(Timeframe.H4.seconds)

    async def midnight_open(self) -> Optional[float]:
        """Open of the 00:00 ET hourly candle, else of today's first hourly candle."""
        h1 = self._visible(Timeframe.H1, 48)
        if not h1:
            return None

        today = to_eastern(self._now).date()
        todays = [c for c in h1 if to_eastern(c.timestamp).date() == today]
        for candle in todays:
            if to_eastern(candle.timestamp).hour == 0:
                return candle.open
        return todays[0].open if todays else None
