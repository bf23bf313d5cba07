"""Protected-swing stop-loss engine.

A swing is "protected" once it has taken liquidity (swept the prior 20-bar
extreme or a matching PDA edge) or has been confirmed by a close back
through the sweep candles within five bars. Stops are placed beyond the
nearest protected swing using one of three modes (wick, body, continuation),
each gated by a minimum reward-to-risk ratio.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ictbot.models.candle import CandleSeries
from ictbot.models.enums import Direction, StopMode, SwingType, Trend
from ictbot.strategy.indicators import calculate_atr
from ictbot.strategy.models import Pda, ProtectedSwing, StopLossLevel

logger = logging.getLogger("ictbot.stop_loss")

MAX_WICK_RATIO_FOR_BODY = 0.4
MIN_BODY_RATIO_FOR_BODY = 0.5
MIN_RR_THRESHOLD = 1.5
SWEEP_LOOKBACK = 20
CONFIRM_BARS = 5
ATR_FALLBACK_MULTIPLIER = 1.5


@dataclass(frozen=True)
class _RawSwing:
    index: int
    timestamp: datetime
    price: float
    open: float
    close: float


class StopLossEngine:
    """Selects and trails stops from protected swings.

    Args:
        swing_lookback: Bars on each side of a candidate swing.
    """

    def __init__(self, swing_lookback: int = 3) -> None:
        self.swing_lookback = swing_lookback
        self.protected_swings: list[ProtectedSwing] = []

    # ── Protected swings ─────────────────────────────────────────────────

    def find_protected_swings(
        self, candles: CandleSeries, pdas: Optional[list[Pda]] = None,
    ) -> list[ProtectedSwing]:
        """Rebuild ``protected_swings`` from *candles*, newest first."""
        self.protected_swings = []
        if len(candles) < self.swing_lookback + 2:
            return self.protected_swings

        highs, lows = self._raw_swings(candles)
        for raw in highs:
            ps = self._validate(candles, raw, SwingType.HIGH, pdas)
            if ps is not None:
                self.protected_swings.append(ps)
        for raw in lows:
            ps = self._validate(candles, raw, SwingType.LOW, pdas)
            if ps is not None:
                self.protected_swings.append(ps)

        self.protected_swings.sort(key=lambda s: s.timestamp, reverse=True)
        return self.protected_swings

    def _raw_swings(self, candles: CandleSeries) -> tuple[list[_RawSwing], list[_RawSwing]]:
        lb = self.swing_lookback
        highs: list[_RawSwing] = []
        lows: list[_RawSwing] = []
        for i in range(lb, len(candles) - lb):
            window = candles.slice(i - lb, i + lb + 1)
            c = candles[i]
            if c.high >= window.highs_max():
                highs.append(_RawSwing(i, c.timestamp, c.high, c.open, c.close))
            if c.low <= window.lows_min():
                lows.append(_RawSwing(i, c.timestamp, c.low, c.open, c.close))
        return highs, lows

    def _validate(
        self,
        candles: CandleSeries,
        raw: _RawSwing,
        swing_type: SwingType,
        pdas: Optional[list[Pda]],
    ) -> Optional[ProtectedSwing]:
        idx = raw.index
        if idx + 2 >= len(candles):
            return None

        prior = candles.slice(idx - SWEEP_LOOKBACK, idx)
        sweep_series = candles.slice(idx - 2, idx + 1)
        after = candles.slice(idx + 1, idx + 1 + CONFIRM_BARS)

        if swing_type is SwingType.LOW:
            swept = bool(prior) and raw.price <= prior.lows_min()
            if not swept and pdas:
                swept = any(p.direction is Trend.BULLISH and raw.price <= p.high for p in pdas)
            confirmed = after.any_close_above(sweep_series.highs_max())
            body_level = max(raw.open, raw.close)
        else:
            swept = bool(prior) and raw.price >= prior.highs_max()
            if not swept and pdas:
                swept = any(p.direction is Trend.BEARISH and raw.price >= p.low for p in pdas)
            confirmed = after.any_close_below(sweep_series.lows_min())
            body_level = min(raw.open, raw.close)

        if not (swept or confirmed):
            return None

        return ProtectedSwing(
            swing_type=swing_type,
            extreme=raw.price,
            body_level=body_level,
            timestamp=raw.timestamp,
            sweep_confirmed=swept,
            close_confirmed=confirmed,
            strength=0.3 + (0.35 if swept else 0.0) + (0.35 if confirmed else 0.0),
            candle_count=min(3, idx + 1),
        )

    # ── Stop selection ───────────────────────────────────────────────────

    def get_stop_loss(
        self,
        entry_price: float,
        direction: Direction,
        take_profit: float,
        candles: CandleSeries,
        pdas: Optional[list[Pda]] = None,
    ) -> StopLossLevel:
        """Pick a stop for a new position.

        Tries wick, body, then continuation mode, taking the first that
        reaches ``MIN_RR_THRESHOLD``. Falls back to the wick stop when none
        does, and to an ATR stop when no protected swing sits behind entry.
        """
        if not self.protected_swings:
            self.find_protected_swings(candles, pdas)

        swing = self._nearest(entry_price, direction)
        if swing is None:
            return self._fallback_stop(entry_price, direction, candles)

        reward = abs(take_profit - entry_price)

        wick_rr = _rr(reward, entry_price, swing.extreme)
        if wick_rr >= MIN_RR_THRESHOLD:
            return _level(
                entry_price, swing.extreme, StopMode.WICK, swing,
                f"Protected swing {swing.swing_type} (wick) @ {swing.extreme:.2f} | R:R {wick_rr:.1f}",
            )

        body_rr = _rr(reward, entry_price, swing.body_level)
        if self._body_mode_safe(swing, candles) and body_rr >= MIN_RR_THRESHOLD:
            return _level(
                entry_price, swing.body_level, StopMode.BODY, swing,
                f"Protected swing {swing.swing_type} (body) @ {swing.body_level:.2f} | R:R {body_rr:.1f}",
            )

        continuation = self._continuation(entry_price, direction, swing)
        if continuation is not None:
            cont_rr = _rr(reward, entry_price, continuation.extreme)
            if cont_rr >= MIN_RR_THRESHOLD:
                return _level(
                    entry_price, continuation.extreme, StopMode.CONTINUATION, continuation,
                    f"Continuation swing {swing.swing_type} @ {continuation.extreme:.2f} "
                    f"| R:R {cont_rr:.1f} (tighter than original {swing.extreme:.2f})",
                )

        logger.debug("No stop mode reached R:R %.1f, using wick stop", MIN_RR_THRESHOLD)
        return _level(
            entry_price, swing.extreme, StopMode.WICK, swing,
            f"Protected swing {swing.swing_type} (wick, low R:R {wick_rr:.1f}) @ {swing.extreme:.2f}",
        )

    def get_trailing_stop(
        self,
        direction: Direction,
        current_stop: float,
        current_price: float,
        candles: CandleSeries,
        pdas: Optional[list[Pda]] = None,
    ) -> Optional[StopLossLevel]:
        """Nearest protected swing between *current_stop* and *current_price*.

        A long trails to the highest protected low strictly inside
        ``(current_stop, current_price)``; a short mirrors this with highs.
        Swings the market has already traded through are never used.
        """
        self.find_protected_swings(candles, pdas)

        if direction is Direction.LONG:
            candidates = [
                s for s in self.protected_swings
                if s.swing_type is SwingType.LOW and current_stop < s.extreme < current_price
            ]
            if not candidates:
                return None
            best = max(candidates, key=lambda s: s.extreme)
            reason = f"Trailing stop: new protected low @ {best.extreme:.2f}"
        else:
            candidates = [
                s for s in self.protected_swings
                if s.swing_type is SwingType.HIGH and current_price < s.extreme < current_stop
            ]
            if not candidates:
                return None
            best = min(candidates, key=lambda s: s.extreme)
            reason = f"Trailing stop: new protected high @ {best.extreme:.2f}"

        return StopLossLevel(
            price=round(best.extreme, 2),
            mode=StopMode.WICK,
            protected_swing=best,
            risk_distance=0.0,
            risk_percent=0.0,
            reason=reason,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _nearest(self, entry: float, direction: Direction) -> Optional[ProtectedSwing]:
        if direction is Direction.LONG:
            lows = [
                s for s in self.protected_swings
                if s.swing_type is SwingType.LOW and s.extreme < entry
            ]
            return max(lows, key=lambda s: s.extreme) if lows else None
        highs = [
            s for s in self.protected_swings
            if s.swing_type is SwingType.HIGH and s.extreme > entry
        ]
        return min(highs, key=lambda s: s.extreme) if highs else None

    def _continuation(
        self, entry: float, direction: Direction, original: ProtectedSwing,
    ) -> Optional[ProtectedSwing]:
        """A later protected swing between *original* and entry."""
        if direction is Direction.LONG:
            lows = [
                s for s in self.protected_swings
                if s.swing_type is SwingType.LOW
                and original.extreme < s.extreme < entry
                and s.timestamp > original.timestamp
            ]
            return max(lows, key=lambda s: s.extreme) if lows else None
        highs = [
            s for s in self.protected_swings
            if s.swing_type is SwingType.HIGH
            and entry < s.extreme < original.extreme
            and s.timestamp > original.timestamp
        ]
        return min(highs, key=lambda s: s.extreme) if highs else None

    @staticmethod
    def _body_mode_safe(swing: ProtectedSwing, candles: CandleSeries) -> bool:
        candle = next((c for c in candles if c.timestamp == swing.timestamp), None)
        if candle is None or candle.total_range == 0:
            return False
        wick = candle.lower_wick if swing.swing_type is SwingType.LOW else candle.upper_wick
        return (
            wick / candle.total_range <= MAX_WICK_RATIO_FOR_BODY
            and candle.body / candle.total_range >= MIN_BODY_RATIO_FOR_BODY
        )

    @staticmethod
    def _fallback_stop(entry: float, direction: Direction, candles: CandleSeries) -> StopLossLevel:
        atr = calculate_atr(candles, 14)
        if direction is Direction.LONG:
            stop, swing_type = entry - atr * ATR_FALLBACK_MULTIPLIER, SwingType.LOW
        else:
            stop, swing_type = entry + atr * ATR_FALLBACK_MULTIPLIER, SwingType.HIGH
        last = candles.last()
        swing = ProtectedSwing(
            swing_type=swing_type,
            extreme=stop,
            body_level=stop,
            timestamp=last.timestamp if last is not None else datetime.now(timezone.utc),
            sweep_confirmed=False,
            close_confirmed=False,
            strength=0.1,
            candle_count=0,
        )
        return _level(
            entry, stop, StopMode.WICK, swing,
            f"FALLBACK: ATR-based stop (no protected swing found) @ {stop:.2f}",
        )


def _rr(reward: float, entry: float, stop: float) -> float:
    distance = abs(entry - stop)
    return reward / distance if distance > 0 else 0.0


def _level(
    entry: float, stop: float, mode: StopMode, swing: ProtectedSwing, reason: str,
) -> StopLossLevel:
    distance = abs(entry - stop)
    return StopLossLevel(
        price=round(stop, 2),
        mode=mode,
        protected_swing=swing,
        risk_distance=round(distance, 2),
        risk_percent=round(distance / entry * 100.0, 3) if entry else 0.0,
        reason=reason,
    )
