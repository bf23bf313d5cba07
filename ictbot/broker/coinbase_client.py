"""Coinbase Advanced Trade market-data client.

Reads candles and the latest trade price from the public ``/market``
endpoints, so no request is signed. Responses are short-lived cached per
timeframe and limit, and transient failures are retried with exponential
backoff.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from ictbot.config import Config
from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.timeframe import Timeframe
from ictbot.strategy.sessions import to_eastern

logger = logging.getLogger("ictbot.coinbase")

BASE_URL = "https://api.coinbase.com"
MAX_CANDLES_PER_REQUEST = 300
MIN_REQUEST_INTERVAL = 0.1  # seconds
MAX_H1_FOR_RESAMPLE = 300

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


class CoinbaseClient:
    """Async market-data provider backed by Coinbase.

    Args:
        config: Supplies the product symbol.
        transport: Optional httpx transport, used by tests to stub the API.
        cache_ttl: Seconds a candle response is reused.
    """

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache_ttl: float = 5.0,
    ) -> None:
        self._symbol = config.symbol
        self._transport = transport
        self._cache_ttl = cache_ttl
        self._cache: dict[str, tuple[float, CandleSeries]] = {}
        self._last_request: Optional[float] = None
        self._headers = {"Accept": "application/json"}

    @property
    def symbol(self) -> str:
        return self._symbol

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(self, path: str, params: dict) -> httpx.Response:
        """GET *path* with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504), rate limits (429)
        and transport errors. Other HTTP errors are raised immediately.
        """
        url = f"{BASE_URL}{path}"
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            await self._throttle()
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    resp = await client.get(
                        url, params=params, headers=self._headers, timeout=30.0,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Coinbase GET %s returned %d, retry %d/%d in %.1fs",
                        path, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Coinbase GET %s transport error (%s), retry %d/%d in %.1fs",
                    path, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    async def _throttle(self) -> None:
        now = time.monotonic()
        if self._last_request is not None:
            wait = MIN_REQUEST_INTERVAL - (now - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
        self._last_request = time.monotonic()

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_range(self, timeframe: Timeframe, start: int, end: int) -> CandleSeries:
        """Candles between two unix timestamps, oldest first.

        At most :data:`MAX_CANDLES_PER_REQUEST` candles come back per call;
        callers page through longer ranges.
        """
        path = f"/api/v3/brokerage/market/products/{self._symbol}/candles"
        params = {
            "start": str(start),
            "end": str(end),
            "granularity": timeframe.granularity,
            "limit": str(MAX_CANDLES_PER_REQUEST),
        }
        resp = await self._request_with_retry(path, params)
        return _parse_candles(resp.json().get("candles", []))

    async def fetch_ohlcv(self, timeframe: Timeframe, limit: int) -> CandleSeries:
        if timeframe.needs_resample:
            return await self.four_hour_series(limit)

        key = f"{self._symbol}_{timeframe}_{limit}"
        cached = self._cache.get(key)
        if cached is not None and time.monotonic() - cached[0] < self._cache_ttl:
            return cached[1]

        end = int(datetime.now(timezone.utc).timestamp())
        start = end - timeframe.seconds * limit
        series = (await self.fetch_range(timeframe, start, end)).tail(limit)

        self._cache[key] = (time.monotonic(), series)
        return series

    async def current_price(self) -> float:
        """Price of the most recent trade.

        Raises:
            LookupError: If the ticker response holds no trade.
        """
        path = f"/api/v3/brokerage/market/products/{self._symbol}/ticker"
        resp = await self._request_with_retry(path, {"limit": "1"})
        trades = resp.json().get("trades", [])
        if not trades:
            raise LookupError(f"No trades in {self._symbol} ticker response")
        return float(trades[0]["price"])

    async def four_hour_series(self, limit: int) -> CandleSeries:
        h1 = await self.fetch_ohlcv(Timeframe.H1, min(limit * 4, MAX_H1_FOR_RESAMPLE))
        return h1.resample(Timeframe.H4.seconds)

    async def midnight_open(self) -> Optional[float]:
        h1 = await self.fetch_ohlcv(Timeframe.H1, 48)
        today = to_eastern(datetime.now(timezone.utc)).date()
        todays = [c for c in h1 if to_eastern(c.timestamp).date() == today]
        for candle in todays:
            if to_eastern(candle.timestamp).hour == 0:
                return candle.open
        return todays[0].open if todays else None


def _parse_candles(rows: list[dict]) -> CandleSeries:
    """Coinbase rows (string fields, newest first) to a sorted, de-duplicated series."""
    by_ts: dict[datetime, Candle] = {}
    for row in rows:
        try:
            candle = Candle(
                timestamp=datetime.fromtimestamp(int(row["start"]), tz=timezone.utc),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed candle row: %s", row)
            continue
        by_ts[candle.timestamp] = candle
    return CandleSeries(by_ts[ts] for ts in sorted(by_ts))
