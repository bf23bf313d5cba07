"""Historical candle download and on-disk cache for backtests.

Downloads every timeframe for a date range from Coinbase, page by page,
and caches each one as a JSON list of candles so later runs over the same
range never touch the network. 4h candles are resampled from 1h.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import httpx
import pandas as pd

from ictbot.broker.coinbase_client import MAX_CANDLES_PER_REQUEST, CoinbaseClient
from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.timeframe import Timeframe
from ictbot.repos.json_store import read_json, write_json

logger = logging.getLogger("ictbot.data")

ALL_TIMEFRAMES: tuple[Timeframe, ...] = (
    Timeframe.M1, Timeframe.M5, Timeframe.M15, Timeframe.H1, Timeframe.H4, Timeframe.D1,
)
PAGE_SLEEP = 0.25  # seconds between pages
ERROR_BACKOFF = 2.0  # seconds after a failed page

_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def cache_path(data_dir: str | Path, symbol: str, tf: Timeframe, start: datetime, end: datetime) -> Path:
    """``{data_dir}/{symbol}_{tf}_{YYYYMMDD}_to_{YYYYMMDD}.json``"""
    name = f"{symbol}_{tf}_{start:%Y%m%d}_to_{end:%Y%m%d}.json"
    return Path(data_dir) / name


def frame_to_series(df: pd.DataFrame) -> CandleSeries:
    """Convert a ``[timestamp, open, high, low, close, volume]`` frame to candles."""
    if df.empty:
        return CandleSeries()
    return CandleSeries(
        Candle(
            timestamp=row.timestamp.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    )


async def fetch_history(
    client: CoinbaseClient,
    tf: Timeframe,
    start: datetime,
    end: datetime,
) -> pd.DataFrame:
    """Download *tf* candles between *start* and *end*, paginating as needed.

    A page that fails after the client's own retries is logged and skipped
    after a short back-off; the download carries on with the next page.

    Returns:
        DataFrame with columns ``[timestamp, open, high, low, close, volume]``,
        sorted by time with duplicate timestamps removed.
    """
    page_span = tf.seconds * MAX_CANDLES_PER_REQUEST
    start_ts = int(start.timestamp())
    end_ts = int(end.timestamp())
    total_pages = max(1, math.ceil((end_ts - start_ts) / page_span))

    rows: list[dict] = []
    cursor = start_ts
    page = 0
    while cursor < end_ts:
        page_end = min(cursor + page_span, end_ts)
        page += 1
        if page == 1 or page % 10 == 0:
            logger.debug("%s page %d/%d (%d candles so far)", tf, page, total_pages, len(rows))

        try:
            series = await client.fetch_range(tf, cursor, page_end)
            rows.extend(c.to_dict() for c in series)
        except httpx.HTTPError as exc:
            logger.warning("Error fetching %s page %d: %s", tf, page, exc)
            await asyncio.sleep(ERROR_BACKOFF)

        cursor = page_end
        await asyncio.sleep(PAGE_SLEEP)

    if not rows:
        return pd.DataFrame(columns=_COLUMNS)

    df = pd.DataFrame(rows, columns=_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], unit="s", utc=True)
    return df.drop_duplicates(subset=["timestamp"]).sort_values("timestamp").reset_index(drop=True)


async def load_all_timeframes(
    client: CoinbaseClient,
    start: datetime,
    end: datetime,
    data_dir: str | Path,
    timeframes: Iterable[Timeframe] = ALL_TIMEFRAMES,
) -> dict[Timeframe, CandleSeries]:
    """Load each timeframe from its cache file, downloading it when missing.

    4h is never downloaded; it is resampled from the 1h series when both
    are requested.
    """
    wanted = list(timeframes)
    result: dict[Timeframe, CandleSeries] = {}

    for tf in wanted:
        if tf.needs_resample:
            continue

        path = cache_path(data_dir, client.symbol, tf, start, end)
        cached: Optional[list] = read_json(path)
        if cached is not None:
            logger.info("Loading cached %s data from %s", tf, path)
            result[tf] = CandleSeries(Candle.from_dict(c) for c in cached)
            logger.info("  Loaded %d candles", len(result[tf]))
            continue

        logger.info("Fetching %s data from Coinbase (%s to %s)...", tf, f"{start:%Y-%m-%d}", f"{end:%Y-%m-%d}")
        series = frame_to_series(await fetch_history(client, tf, start, end))
        logger.info("  Fetched %d %s candles total", len(series), tf)
        write_json(path, [c.to_dict() for c in series])
        logger.info("  Cached to %s", path)
        result[tf] = series

    if Timeframe.H4 in wanted:
        result[Timeframe.H4] = result.get(Timeframe.H1, CandleSeries()).resample(Timeframe.H4.seconds)
        logger.info("Generated %d 4H candles from H1 data", len(result[Timeframe.H4]))

    return result
