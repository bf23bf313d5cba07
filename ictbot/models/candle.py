"""Candle and CandleSeries — the price-bar container every detector reads through."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Iterator, Optional, overload


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar. ``timestamp`` is a timezone-aware UTC datetime."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def total_range(self) -> float:
        return self.high - self.low

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.close, self.open)

    @property
    def lower_wick(self) -> float:
        return min(self.close, self.open) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def body_top(self) -> float:
        return max(self.close, self.open)

    @property
    def body_bottom(self) -> float:
        return min(self.close, self.open)

    def to_dict(self) -> dict:
        return {
            "timestamp": int(self.timestamp.timestamp()),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Candle":
        return cls(
            timestamp=datetime.fromtimestamp(int(data["timestamp"]), tz=timezone.utc),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0)),
        )


class CandleSeries:
    """Time-ascending sequence of candles with slicing and search helpers.

    Slicing helpers always return a new series; the only in-place mutation
    is :meth:`push`, which refuses out-of-order bars.
    """

    __slots__ = ("_candles",)

    def __init__(self, candles: Optional[Iterable[Candle]] = None) -> None:
        self._candles: list[Candle] = list(candles) if candles is not None else []

    # ── Container protocol ───────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __bool__(self) -> bool:
        return bool(self._candles)

    @overload
    def __getitem__(self, index: int) -> Candle: ...

    @overload
    def __getitem__(self, index: slice) -> "CandleSeries": ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return CandleSeries(self._candles[index])
        return self._candles[index]

    def __repr__(self) -> str:
        return f"CandleSeries(len={len(self._candles)})"

    @property
    def candles(self) -> list[Candle]:
        """A copy of the underlying list."""
        return list(self._candles)

    # ── Access ───────────────────────────────────────────────────────────

    def get(self, index: int) -> Optional[Candle]:
        if 0 <= index < len(self._candles):
            return self._candles[index]
        return None

    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def first(self) -> Optional[Candle]:
        return self._candles[0] if self._candles else None

    def tail(self, n: int) -> "CandleSeries":
        start = max(0, len(self._candles) - n)
        return CandleSeries(self._candles[start:])

    def head(self, n: int) -> "CandleSeries":
        return CandleSeries(self._candles[: max(0, n)])

    def slice(self, start: int, end: int) -> "CandleSeries":
        """Return candles ``[start, end)`` with both bounds clamped to the series."""
        n = len(self._candles)
        s = min(max(start, 0), n)
        e = min(max(end, 0), n)
        if e <= s:
            return CandleSeries()
        return CandleSeries(self._candles[s:e])

    # ── Columns / extremes ───────────────────────────────────────────────

    def highs(self) -> list[float]:
        return [c.high for c in self._candles]

    def lows(self) -> list[float]:
        return [c.low for c in self._candles]

    def closes(self) -> list[float]:
        return [c.close for c in self._candles]

    def highs_max(self) -> float:
        """Highest high, or ``-inf`` for an empty series."""
        return max((c.high for c in self._candles), default=float("-inf"))

    def lows_min(self) -> float:
        """Lowest low, or ``inf`` for an empty series."""
        return min((c.low for c in self._candles), default=float("inf"))

    def high_idx_max(self) -> Optional[int]:
        """Index of the highest high (last one on ties)."""
        if not self._candles:
            return None
        best = 0
        for i, c in enumerate(self._candles):
            if c.high >= self._candles[best].high:
                best = i
        return best

    def low_idx_min(self) -> Optional[int]:
        """Index of the lowest low (first one on ties)."""
        if not self._candles:
            return None
        best = 0
        for i, c in enumerate(self._candles):
            if c.low < self._candles[best].low:
                best = i
        return best

    def any_low_below(self, price: float) -> bool:
        return any(c.low < price for c in self._candles)

    def any_high_above(self, price: float) -> bool:
        return any(c.high > price for c in self._candles)

    def any_close_above(self, price: float) -> bool:
        return any(c.close > price for c in self._candles)

    def any_close_below(self, price: float) -> bool:
        return any(c.close < price for c in self._candles)

    # ── Filtering ────────────────────────────────────────────────────────

    def filter_by_date(self, day: date) -> "CandleSeries":
        """Candles whose UTC calendar date equals *day*."""
        return CandleSeries(c for c in self._candles if c.timestamp.date() == day)

    def since(self, ts: datetime) -> "CandleSeries":
        """Candles at or after *ts*."""
        return CandleSeries(c for c in self._candles if c.timestamp >= ts)

    def push(self, candle: Candle) -> None:
        """Append *candle*.

        Raises:
            ValueError: If *candle* is not strictly newer than the last bar.
        """
        if self._candles and candle.timestamp <= self._candles[-1].timestamp:
            raise ValueError(
                f"candle at {candle.timestamp.isoformat()} is not after "
                f"{self._candles[-1].timestamp.isoformat()}"
            )
        self._candles.append(candle)

    # ── Aggregation ──────────────────────────────────────────────────────

    def resample(self, bucket_seconds: int) -> "CandleSeries":
        """Aggregate into buckets aligned to multiples of *bucket_seconds*.

        open = first, high = max, low = min, close = last, volume = sum.
        """
        if not self._candles:
            return CandleSeries()
        if bucket_seconds <= 0:
            raise ValueError(f"bucket_seconds must be positive, got {bucket_seconds}")

        result: list[Candle] = []
        for candle in self._candles:
            ts = int(candle.timestamp.timestamp())
            bucket_ts = datetime.fromtimestamp(ts - ts % bucket_seconds, tz=timezone.utc)
            if result and result[-1].timestamp == bucket_ts:
                last = result[-1]
                result[-1] = Candle(
                    timestamp=bucket_ts,
                    open=last.open,
                    high=max(last.high, candle.high),
                    low=min(last.low, candle.low),
                    close=candle.close,
                    volume=last.volume + candle.volume,
                )
                continue
            result.append(
                Candle(
                    timestamp=bucket_ts,
                    open=candle.open,
                    high=candle.high,
                    low=candle.low,
                    close=candle.close,
                    volume=candle.volume,
                )
            )
        return CandleSeries(result)
