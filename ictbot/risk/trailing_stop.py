"""Trailing stop — protected-swing stop management for open positions.

Rules:
  - Longs only move the stop up to a newer protected low.
  - Shorts only move the stop down to a newer protected high.
  - The stop never crosses the current price.
  - The stop never loosens, whatever the swing engine proposes.
"""

from typing import Optional

from ictbot.models.candle import CandleSeries
from ictbot.models.enums import Direction
from ictbot.risk.stop_loss import StopLossEngine
from ictbot.strategy.models import Pda


class TrailingStop:
    """Tracks and updates SL for a single position.

    Args:
        initial_sl: Original stop-loss price.
        direction: Position direction.
        engine: Stop-loss engine used to find protected swings. A private
            engine is created when omitted.
    """

    def __init__(
        self,
        initial_sl: float,
        direction: Direction,
        engine: Optional[StopLossEngine] = None,
    ) -> None:
        self.initial_sl = initial_sl
        self.direction = direction
        self.current_sl = initial_sl
        self._engine = engine or StopLossEngine()

    def update(
        self,
        candles: CandleSeries,
        current_price: float,
        pdas: Optional[list[Pda]] = None,
    ) -> float | None:
        """Re-scan *candles* and return a new SL if it should move.

        The new stop always stays on the protective side of *current_price*.

        Returns:
            New SL price if the stop should be adjusted, ``None`` if no change.
        """
        level = self._engine.get_trailing_stop(
            self.direction, self.current_sl, current_price, candles, pdas,
        )
        if level is None:
            return None

        if self.direction is Direction.LONG and self.current_sl < level.price < current_price:
            self.current_sl = level.price
            return level.price
        if self.direction is Direction.SHORT and current_price < level.price < self.current_sl:
            self.current_sl = level.price
            return level.price
        return None
