"""Tests for ictbot.broker — replay source, Coinbase client with mocked HTTP, and data fetcher."""

from datetime import datetime, timedelta, timezone

import httpx
import pandas as pd
import pytest

import ictbot.broker.coinbase_client as coinbase_module
import ictbot.broker.data_fetcher as fetcher_module
from ictbot.broker.coinbase_client import CoinbaseClient
from ictbot.broker.data_fetcher import (
    cache_path,
    fetch_history,
    frame_to_series,
    load_all_timeframes,
)
from ictbot.broker.historical import HistoricalExchange
from ictbot.config import Config
from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.timeframe import Timeframe


T0 = datetime(2025, 1, 15, 0, 0, tzinfo=timezone.utc)


def _series(tf: Timeframe, n: int, start: datetime = T0) -> CandleSeries:
    step = timedelta(seconds=tf.seconds)
    return CandleSeries(
        Candle(start + step * i, 100 + i, 101 + i, 99 + i, 100.5 + i, 1.0) for i in range(n)
    )


# ── Mock Coinbase responses ──────────────────────────────────────────────


def _row(ts: int, price: float) -> dict:
    return {
        "start": str(ts),
        "low": str(price - 1),
        "high": str(price + 1),
        "open": str(price),
        "close": str(price + 0.5),
        "volume": "2.5",
    }


BASE_TS = int(T0.timestamp())

MOCK_CANDLES_RESPONSE = {
    "candles": [
        _row(BASE_TS + 120, 102.0),
        _row(BASE_TS + 60, 101.0),
        _row(BASE_TS + 60, 101.0),
        {"start": str(BASE_TS + 30), "open": "oops"},
        _row(BASE_TS, 100.0),
    ]
}

MOCK_TICKER_RESPONSE = {
    "trades": [{"trade_id": "1", "price": "97123.45", "size": "0.01", "side": "BUY"}],
    "best_bid": "97123.00",
    "best_ask": "97124.00",
}


def _make_client(handler, **kwargs) -> CoinbaseClient:
    return CoinbaseClient(Config(), transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def no_sleep(monkeypatch):
    """Record asyncio.sleep delays inside the client without waiting."""
    delays: list[float] = []

    async def _sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(coinbase_module.asyncio, "sleep", _sleep)
    return delays


# ── HistoricalExchange ───────────────────────────────────────────────────


class TestHistoricalExchange:
    @pytest.mark.asyncio
    async def test_only_past_candles_are_visible(self):
        ex = HistoricalExchange("BTC-USD")
        ex.load(Timeframe.M1, _series(Timeframe.M1, 10))
        ex.set_time(T0 + timedelta(minutes=4, seconds=30))

        visible = await ex.fetch_ohlcv(Timeframe.M1, 100)
        assert len(visible) == 5
        assert visible.last().timestamp == T0 + timedelta(minutes=4)

        limited = await ex.fetch_ohlcv(Timeframe.M1, 2)
        assert [c.open for c in limited] == [103, 104]

        assert await ex.current_price() == 104.5

    @pytest.mark.asyncio
    async def test_price_before_data_raises(self):
        ex = HistoricalExchange("BTC-USD")
        ex.load(Timeframe.M1, _series(Timeframe.M1, 5))
        ex.set_time(T0 - timedelta(minutes=1))

        with pytest.raises(LookupError):
            await ex.current_price()
        assert len(await ex.fetch_ohlcv(Timeframe.M1, 10)) == 0

    @pytest.mark.asyncio
    async def test_four_hour_resampled_from_hourly(self):
        ex = HistoricalExchange("BTC-USD")
        ex.load(Timeframe.H1, _series(Timeframe.H1, 8))
        ex.set_time(T0 + timedelta(hours=8))

        h4 = await ex.four_hour_series(2)
        assert len(h4) == 2
        assert h4[0].open == 100
        assert h4[0].close == 103.5

    @pytest.mark.asyncio
    async def test_midnight_open_uses_eastern_midnight(self):
        """05:00 UTC in January is 00:00 in New York."""
        ex = HistoricalExchange("BTC-USD")
        ex.load(Timeframe.H1, _series(Timeframe.H1, 12))
        ex.set_time(T0 + timedelta(hours=7))

        assert await ex.midnight_open() == 105

    @pytest.mark.asyncio
    async def test_midnight_open_without_data(self):
        assert await HistoricalExchange("BTC-USD").midnight_open() is None

    def test_time_bounds(self):
        ex = HistoricalExchange("BTC-USD")
        assert ex.earliest_time() is None
        ex.load(Timeframe.M1, _series(Timeframe.M1, 10))
        ex.load(Timeframe.H1, _series(Timeframe.H1, 3))
        assert ex.earliest_time() == T0
        assert ex.latest_time() == T0 + timedelta(hours=2)


# ── CoinbaseClient ───────────────────────────────────────────────────────


class TestCoinbaseClient:
    @pytest.mark.asyncio
    async def test_candles_sorted_and_deduplicated(self, no_sleep):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=MOCK_CANDLES_RESPONSE)

        series = await _make_client(handler).fetch_range(Timeframe.M1, BASE_TS, BASE_TS + 180)

        assert [c.open for c in series] == [100.0, 101.0, 102.0]
        assert series[0].timestamp == T0
        assert series[0].volume == 2.5
        assert seen[0].url.path == "/api/v3/brokerage/market/products/BTC-USD/candles"
        assert seen[0].url.params["granularity"] == "ONE_MINUTE"
        assert seen[0].url.params["start"] == str(BASE_TS)

    @pytest.mark.asyncio
    async def test_responses_are_cached(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=MOCK_CANDLES_RESPONSE)

        client = _make_client(handler, cache_ttl=60.0)
        first = await client.fetch_ohlcv(Timeframe.M1, 2)
        second = await client.fetch_ohlcv(Timeframe.M1, 2)

        assert len(calls) == 1
        assert first is second
        assert [c.open for c in first] == [101.0, 102.0]

    @pytest.mark.asyncio
    async def test_four_hour_requests_hourly_candles(self, no_sleep):
        granularities = []

        def handler(request: httpx.Request) -> httpx.Response:
            granularities.append(request.url.params["granularity"])
            return httpx.Response(200, json={"candles": []})

        series = await _make_client(handler).fetch_ohlcv(Timeframe.H4, 5)
        assert granularities == ["ONE_HOUR"]
        assert len(series) == 0

    @pytest.mark.asyncio
    async def test_current_price(self, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/ticker")
            return httpx.Response(200, json=MOCK_TICKER_RESPONSE)

        assert await _make_client(handler).current_price() == pytest.approx(97123.45)

    @pytest.mark.asyncio
    async def test_empty_ticker_raises(self, no_sleep):
        client = _make_client(lambda request: httpx.Response(200, json={"trades": []}))
        with pytest.raises(LookupError):
            await client.current_price()

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, no_sleep):
        responses = [
            httpx.Response(503, json={"error": "unavailable"}),
            httpx.Response(200, json=MOCK_TICKER_RESPONSE),
        ]
        client = _make_client(lambda request: responses.pop(0))

        assert await client.current_price() == pytest.approx(97123.45)
        assert 2.0 in no_sleep

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429, json={"error": "slow down"})

        with pytest.raises(httpx.HTTPStatusError):
            await _make_client(handler).current_price()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "bad product"})

        with pytest.raises(httpx.HTTPStatusError):
            await _make_client(handler).current_price()
        assert len(calls) == 1


# ── Data fetcher ─────────────────────────────────────────────────────────


class _FakeClient:
    """Serves candles for any range, inclusive of both ends."""

    symbol = "BTC-USD"

    def __init__(self, fail_pages: tuple[int, ...] = ()) -> None:
        self.calls = 0
        self._fail_pages = fail_pages

    async def fetch_range(self, tf: Timeframe, start: int, end: int) -> CandleSeries:
        self.calls += 1
        if self.calls in self._fail_pages:
            raise httpx.ConnectError("connection reset")
        first = datetime.fromtimestamp(start, tz=timezone.utc)
        count = (end - start) // tf.seconds + 1
        return _series(tf, count, start=first)


class _OfflineClient:
    symbol = "BTC-USD"

    async def fetch_range(self, tf, start, end):
        raise AssertionError("cache should have been used")


@pytest.fixture
def fast_pages(monkeypatch):
    monkeypatch.setattr(fetcher_module, "PAGE_SLEEP", 0)
    monkeypatch.setattr(fetcher_module, "ERROR_BACKOFF", 0)


class TestDataFetcher:
    @pytest.mark.asyncio
    async def test_pages_are_merged(self, fast_pages):
        client = _FakeClient()
        df = await fetch_history(client, Timeframe.M1, T0, T0 + timedelta(minutes=600))

        assert client.calls == 2
        assert len(df) == 601
        assert df["timestamp"].is_monotonic_increasing
        assert df["timestamp"].iloc[0] == pd.Timestamp(T0)

    @pytest.mark.asyncio
    async def test_failed_page_is_skipped(self, fast_pages):
        client = _FakeClient(fail_pages=(1,))
        df = await fetch_history(client, Timeframe.M1, T0, T0 + timedelta(minutes=600))

        assert client.calls == 2
        assert len(df) == 301

    @pytest.mark.asyncio
    async def test_cache_written_then_reused(self, fast_pages, tmp_path):
        end = T0 + timedelta(hours=8)
        data = await load_all_timeframes(
            _FakeClient(), T0, end, tmp_path, (Timeframe.H1, Timeframe.H4),
        )

        assert len(data[Timeframe.H1]) == 9
        assert len(data[Timeframe.H4]) == 3
        assert cache_path(tmp_path, "BTC-USD", Timeframe.H1, T0, end).exists()
        assert not cache_path(tmp_path, "BTC-USD", Timeframe.H4, T0, end).exists()

        again = await load_all_timeframes(
            _OfflineClient(), T0, end, tmp_path, (Timeframe.H1, Timeframe.H4),
        )
        assert again[Timeframe.H1].candles == data[Timeframe.H1].candles

    def test_cache_file_name(self, tmp_path):
        path = cache_path(tmp_path, "BTC-USD", Timeframe.M5, T0, T0 + timedelta(days=30))
        assert path.name == "BTC-USD_5m_20250115_to_20250214.json"

    def test_empty_frame(self):
        empty = pd.DataFrame(columns=["timestamp", "open", "high", "low", "close", "volume"])
        assert len(frame_to_series(empty)) == 0
