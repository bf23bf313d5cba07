"""Market-data provider contract shared by the live client and the replay source."""

from typing import Optional, Protocol

from ictbot.models.candle import CandleSeries
from ictbot.models.timeframe import Timeframe


class MarketDataProvider(Protocol):
    """The four reads the trading loop and backtest runner need."""

    async def fetch_ohlcv(self, timeframe: Timeframe, limit: int) -> CandleSeries:
        """Most recent *limit* candles, oldest first, without duplicate timestamps."""
        ...

    async def current_price(self) -> float:
        """Latest tradable price."""
        ...

    async def four_hour_series(self, limit: int) -> CandleSeries:
        """4h candles resampled from 1h data."""
        ...

    async def midnight_open(self) -> Optional[float]:
        """Today's 00:00 US/Eastern opening price, or ``None`` when unavailable."""
        ...
