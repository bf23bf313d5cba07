"""Standard-deviation projections of a manipulation leg.

The leg is the swept extreme plus the opposite extreme that preceded it.
Targets are projected at fixed negative multiples of the leg's range in the
trade direction, and flagged when a PDA midpoint sits close to one.
"""

from typing import Optional

from ictbot.models.candle import CandleSeries
from ictbot.models.enums import Trend
from ictbot.strategy.models import ConfluenceZone, DeviationLevel, Pda, SdProjection

DEVIATION_LEVELS: tuple[float, ...] = (-1.0, -2.0, -4.0, -4.5)
PDA_CONFLUENCE_TOLERANCE = 0.15
LEG_LOOKBACK = 80
PRE_SWEEP_BARS = 15

_LABELS: dict[float, str] = {
    -1.0: "TP1 (-1 SD) 50%",
    -2.0: "TP2 (-2 SD) 16.7%",
    -4.0: "TP3 (-4 SD) 16.7%",
    -4.5: "TP4 (-4.5 SD) 16.7%",
}


class StdDevProjector:
    """Projects deviation targets and keeps every projection it made.

    Args:
        confluence_tolerance: Fraction of the leg range within which a PDA
            midpoint counts as confluence with a level.
    """

    def __init__(self, confluence_tolerance: float = PDA_CONFLUENCE_TOLERANCE) -> None:
        self.confluence_tolerance = confluence_tolerance
        self.projections: list[SdProjection] = []

    def project(
        self,
        candles: CandleSeries,
        direction: Trend,
        pdas: Optional[list[Pda]] = None,
        anchor_high: Optional[float] = None,
        anchor_low: Optional[float] = None,
    ) -> SdProjection:
        """Project targets for *direction*.

        Uses the supplied anchors when both are given, otherwise detects the
        manipulation leg from *candles*. A degenerate leg or a neutral
        direction yields an empty projection.
        """
        if direction is Trend.NEUTRAL:
            return SdProjection.empty(direction)

        if anchor_high is not None and anchor_low is not None:
            high, low = anchor_high, anchor_low
        else:
            high, low = self._manipulation_leg(candles, direction)

        if not high > low:
            return SdProjection.empty(direction)

        range_size = high - low
        tolerance = range_size * self.confluence_tolerance
        levels: list[DeviationLevel] = []
        for dev in DEVIATION_LEVELS:
            if direction is Trend.BULLISH:
                price = round(high + abs(dev) * range_size, 2)
            else:
                price = round(low - abs(dev) * range_size, 2)
            match = next(
                (p for p in (pdas or []) if abs(p.midpoint - price) <= tolerance),
                None,
            )
            levels.append(
                DeviationLevel(
                    level=dev,
                    price=price,
                    label=_LABELS.get(dev, f"SD {dev}"),
                    has_pda_confluence=match is not None,
                    confluence_pda=match,
                )
            )

        recommended = _pick_recommended(levels)
        projection = SdProjection(
            direction=direction,
            anchor_high=high,
            anchor_low=low,
            range_size=round(range_size, 2),
            levels=levels,
            recommended_tp=recommended.price,
            recommended_label=recommended.label,
        )
        self.projections.append(projection)
        return projection

    def find_confluence_zones(self, projections: list[SdProjection]) -> list[ConfluenceZone]:
        """Adjacent projected levels (across projections) that nearly coincide."""
        points = sorted(
            ((lvl.price, lvl.level, proj.range_size) for proj in projections for lvl in proj.levels),
            key=lambda t: t[0],
        )
        zones: list[ConfluenceZone] = []
        for (price_a, level_a, range_a), (price_b, level_b, range_b) in zip(points, points[1:]):
            avg_range = (range_a + range_b) / 2.0
            if abs(price_a - price_b) > avg_range * self.confluence_tolerance:
                continue
            zones.append(
                ConfluenceZone(
                    price=round((price_a + price_b) / 2.0, 2),
                    levels=[level_a, level_b],
                    strength="high" if -4.0 in (level_a, level_b) else "moderate",
                )
            )
        return zones

    # ── Leg detection ────────────────────────────────────────────────────

    @staticmethod
    def _manipulation_leg(candles: CandleSeries, direction: Trend) -> tuple[float, float]:
        """Return ``(high, low)`` of the most recent manipulation leg."""
        if len(candles) < 10:
            return candles.highs_max(), candles.lows_min()

        recent = candles.tail(min(LEG_LOOKBACK, len(candles)))
        if direction is Trend.BULLISH:
            pos = recent.low_idx_min() or 0
            pre_sweep = recent.slice(pos - PRE_SWEEP_BARS, pos + 1)
            return pre_sweep.highs_max(), recent[pos].low

        pos = recent.high_idx_max() or 0
        pre_sweep = recent.slice(pos - PRE_SWEEP_BARS, pos + 1)
        return recent[pos].high, pre_sweep.lows_min()


def _pick_recommended(levels: list[DeviationLevel]) -> DeviationLevel:
    """Farthest standard level available, else the first projected one."""
    by_level = {lvl.level: lvl for lvl in levels}
    for key in (-4.5, -4.0, -2.0):
        if key in by_level:
            return by_level[key]
    return levels[0]
