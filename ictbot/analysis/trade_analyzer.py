"""Trade analyzer — win/loss statistics bucketed by entry conditions.

Every resolved trade record is grouped along independent dimensions
(scale, session, weekday, CISD status, ...) and each bucket reports its
win rate, payoff and expectancy ("edge")::

    edge = win_rate × avg_win − (1 − win_rate) × |avg_loss|
"""

from dataclasses import asdict, dataclass
from typing import Callable, Iterable

from ictbot.models.trade_record import TradeMetadata, TradeRecord

Analysis = dict[str, dict[str, "BucketStats"]]


def _confidence_bucket(confidence: float) -> str:
    if confidence >= 0.8:
        return "high_0.8+"
    if confidence >= 0.6:
        return "mid_0.6-0.8"
    if confidence >= 0.4:
        return "low_0.4-0.6"
    return "very_low_<0.4"


# Dimension name -> bucket key extractor.
DIMENSIONS: dict[str, Callable[[TradeMetadata], str]] = {
    "scale": lambda m: m.scale,
    "session": lambda m: m.session,
    "day_of_week": lambda m: m.day_of_week,
    "cisd_status": lambda m: "confirmed" if m.cisd_confirmed else "unconfirmed",
    "stop_mode": lambda m: m.stop_mode or "unknown",
    "pda_type": lambda m: m.pda_type or "none",
    "confidence_bucket": lambda m: _confidence_bucket(m.confidence),
    "cross_scale_confluence": lambda m: str(m.cross_scale_confluence),
    "weekly_profile": lambda m: m.weekly_profile or "unknown",
    "tp_label": lambda m: m.tp_label or "unknown",
    "scale_session": lambda m: f"{m.scale}_{m.session}",
}


@dataclass(frozen=True)
class BucketStats:
    dimension: str
    value: str
    total: int
    wins: int
    losses: int
    win_rate: float
    avg_pnl: float
    total_pnl: float
    payoff_ratio: float
    edge: float
    sample_sufficient: bool

    def to_dict(self) -> dict:
        return asdict(self)


class TradeAnalyzer:
    """Buckets resolved trades; a bucket is trusted once it has ``min_sample`` trades."""

    def __init__(self, min_sample: int) -> None:
        self.min_sample = min_sample

    def analyze(self, records: Iterable[TradeRecord]) -> Analysis:
        """Return ``{dimension: {bucket value: BucketStats}}`` over resolved records."""
        closed = [r for r in records if r.resolved]
        return {name: self._analyze_dimension(closed, name, key) for name, key in DIMENSIONS.items()}

    def get_negative_edge_buckets(self, analysis: Analysis) -> list[BucketStats]:
        """Trusted buckets losing money, worst first."""
        out = [b for b in _all_buckets(analysis) if b.sample_sufficient and b.edge < 0]
        return sorted(out, key=lambda b: b.edge)

    def get_strongest_buckets(self, analysis: Analysis) -> list[BucketStats]:
        """Trusted buckets making money, best first."""
        out = [b for b in _all_buckets(analysis) if b.sample_sufficient and b.edge > 0]
        return sorted(out, key=lambda b: b.edge, reverse=True)

    def _analyze_dimension(
        self,
        records: list[TradeRecord],
        dimension: str,
        key: Callable[[TradeMetadata], str],
    ) -> dict[str, BucketStats]:
        buckets: dict[str, list[TradeRecord]] = {}
        for record in records:
            buckets.setdefault(key(record.metadata), []).append(record)
        return {
            value: self._compute_stats(dimension, value, trades)
            for value, trades in buckets.items()
        }

    def _compute_stats(self, dimension: str, value: str, trades: list[TradeRecord]) -> BucketStats:
        total = len(trades)
        win_pnls = [t.pnl for t in trades if t.outcome == "win"]
        loss_pnls = [t.pnl for t in trades if t.outcome == "loss"]
        wins = len(win_pnls)
        losses = total - wins

        win_rate = wins / total if total else 0.0
        total_pnl = sum(t.pnl for t in trades)
        avg_pnl = total_pnl / total if total else 0.0
        avg_win = sum(win_pnls) / wins if wins else 0.0
        avg_loss = abs(sum(loss_pnls) / len(loss_pnls)) if loss_pnls else 0.0
        payoff = avg_win / avg_loss if avg_loss > 0 else 0.0
        edge = win_rate * avg_win - (1.0 - win_rate) * avg_loss if total else 0.0

        return BucketStats(
            dimension=dimension,
            value=value,
            total=total,
            wins=wins,
            losses=losses,
            win_rate=round(win_rate, 4),
            avg_pnl=round(avg_pnl, 4),
            total_pnl=round(total_pnl, 4),
            payoff_ratio=round(payoff, 4),
            edge=round(edge, 4),
            sample_sufficient=total >= self.min_sample,
        )


def _all_buckets(analysis: Analysis) -> Iterable[BucketStats]:
    for buckets in analysis.values():
        yield from buckets.values()
