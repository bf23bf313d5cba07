"""Kelly criterion risk sizing — pure math, no I/O.

Converts a rolling window of closed trades into the fraction of balance to
risk on the next trade.

Formula::

    p          = wins / trades
    b          = avg_win / |avg_loss|
    full_kelly = (b × p − (1 − p)) / b
    applied    = clamp(0.5 × full_kelly, 0.002, 0.06)

A non-positive full Kelly still risks the floor fraction, and fewer than
20 trades in the window uses a fixed default.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

MIN_SAMPLE_SIZE = 20
DEFAULT_FRACTION = 0.005
KELLY_MULTIPLIER = 0.5
MAX_KELLY_FRACTION = 0.06
MIN_KELLY_FRACTION = 0.002
ROLLING_WINDOW = 100


class ClosedTrade(Protocol):
    """Anything with a realised PnL and the scale it was opened on."""

    pnl: float
    scale: str


@dataclass(frozen=True)
class KellyResult:
    full_kelly: float
    applied_fraction: float
    win_rate: float
    loss_rate: float
    payoff_ratio: float
    sample_size: int
    using_default: bool
    edge: float


class KellyCriterion:
    """Half-Kelly sizer that remembers the last result per scale."""

    def __init__(self) -> None:
        self._scale_results: dict[str, KellyResult] = {}

    @property
    def results(self) -> dict[str, KellyResult]:
        """Last result computed for each scale tag."""
        return dict(self._scale_results)

    def calculate(
        self, trade_history: Sequence[ClosedTrade], scale: Optional[str] = None,
    ) -> KellyResult:
        """Compute the Kelly fraction from *trade_history*.

        Args:
            trade_history: Closed trades, oldest first.
            scale: When given, only trades opened on this scale (``"1m"``,
                ``"5m"``, ``"15m"``) are counted, and the result is remembered
                under it.
        """
        trades = [t for t in trade_history if scale is None or t.scale == scale]
        trades = trades[-ROLLING_WINDOW:]

        if len(trades) < MIN_SAMPLE_SIZE:
            result = KellyResult(
                full_kelly=0.0,
                applied_fraction=DEFAULT_FRACTION,
                win_rate=0.0,
                loss_rate=0.0,
                payoff_ratio=0.0,
                sample_size=len(trades),
                using_default=True,
                edge=0.0,
            )
            if scale is not None:
                self._scale_results[scale] = result
            return result

        wins = [t.pnl for t in trades if t.pnl > 0]
        losses = [t.pnl for t in trades if t.pnl <= 0]

        p = len(wins) / len(trades)
        q = 1.0 - p
        avg_win = sum(wins) / len(wins) if wins else 0.0
        avg_loss = abs(sum(losses) / len(losses)) if losses else 1.0

        b = avg_win / avg_loss if avg_loss > 0 else 0.0
        full_kelly = (b * p - q) / b if b > 0 else 0.0
        edge = b * p - q

        if full_kelly <= 0:
            applied = MIN_KELLY_FRACTION
        else:
            applied = min(max(full_kelly * KELLY_MULTIPLIER, MIN_KELLY_FRACTION), MAX_KELLY_FRACTION)

        result = KellyResult(
            full_kelly=round(full_kelly, 6),
            applied_fraction=round(applied, 6),
            win_rate=round(p, 4),
            loss_rate=round(q, 4),
            payoff_ratio=round(b, 4),
            sample_size=len(trades),
            using_default=False,
            edge=round(edge, 4),
        )
        if scale is not None:
            self._scale_results[scale] = result
        return result

    def get_risk_amount(
        self,
        balance: float,
        trade_history: Sequence[ClosedTrade],
        scale: Optional[str] = None,
    ) -> tuple[float, KellyResult]:
        """Return ``(risk_amount, result)`` where the amount is in account currency."""
        result = self.calculate(trade_history, scale)
        return round(balance * result.applied_fraction, 2), result
