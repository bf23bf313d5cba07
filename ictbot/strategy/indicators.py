"""Technical indicators. Pure functions, no I/O."""

from ictbot.models.candle import CandleSeries


def true_ranges(candles: CandleSeries) -> list[float]:
    """True Range per candle; the first one has no previous close and uses high - low."""
    if not candles:
        return []
    ranges = [candles[0].total_range]
    for prev, cur in zip(candles, candles[1:]):
        ranges.append(
            max(
                cur.high - cur.low,
                abs(cur.high - prev.close),
                abs(cur.low - prev.close),
            )
        )
    return ranges


def calculate_atr(candles: CandleSeries, period: int = 14) -> float:
    """Average True Range over the last *period* candles.

    With fewer than *period* candles the last candle's range is returned
    (0.0 for an empty series) so callers always get a usable distance.
    """
    if len(candles) < period:
        last = candles.last()
        return last.total_range if last is not None else 0.0

    recent = true_ranges(candles)[-period:]
    return sum(recent) / len(recent)
