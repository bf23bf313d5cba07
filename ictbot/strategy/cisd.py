"""Change in state of delivery — a later candle decisively breaking a breaker."""

from typing import Optional

from ictbot.models.candle import CandleSeries
from ictbot.models.enums import Trend
from ictbot.strategy.models import CisdConfirmation, Pda

CONFIRMATION_WINDOW = 5


class CisdDetector:
    """Confirms breakers against the most recent candles of a series.

    A bullish breaker is confirmed by a bullish-bodied candle closing above
    its high; bearish mirrors that below the low. Only the first matching
    candle counts for each breaker.
    """

    def __init__(self) -> None:
        self.confirmed: list[CisdConfirmation] = []

    def detect(self, candles: CandleSeries, breakers: list[Pda]) -> list[CisdConfirmation]:
        self.confirmed = []
        if not breakers or not candles:
            return self.confirmed

        latest = candles.tail(CONFIRMATION_WINDOW)
        for brk in breakers:
            band = brk.high - brk.low + 0.01
            for candle in latest:
                if brk.direction is Trend.BULLISH:
                    if candle.close > brk.high and candle.is_bullish:
                        strength = min((candle.close - brk.high) / band, 1.0)
                    else:
                        continue
                elif brk.direction is Trend.BEARISH:
                    if candle.close < brk.low and candle.is_bearish:
                        strength = min((brk.low - candle.close) / band, 1.0)
                    else:
                        continue
                else:
                    break
                self.confirmed.append(
                    CisdConfirmation(
                        direction=brk.direction,
                        breaker=brk,
                        confirmation_candle=candle.timestamp,
                        close_price=candle.close,
                        strength=strength,
                    )
                )
                break
        return self.confirmed

    def has_bullish_cisd(self) -> bool:
        return any(c.direction is Trend.BULLISH for c in self.confirmed)

    def has_bearish_cisd(self) -> bool:
        return any(c.direction is Trend.BEARISH for c in self.confirmed)

    def strongest(self) -> Optional[CisdConfirmation]:
        best: Optional[CisdConfirmation] = None
        for c in self.confirmed:
            if best is None or c.strength >= best.strength:
                best = c
        return best
