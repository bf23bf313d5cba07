"""Entry scales — one fractal evaluation pipeline per scale.

Each scale pairs an entry timeframe with the higher timeframes that must
agree on trend, the timeframe PDAs are read from, and the timeframe CISD is
confirmed on.
"""

from dataclasses import dataclass
from enum import Enum

from ictbot.models.timeframe import Timeframe


class Scale(str, Enum):
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ScaleConfig:
    """Configuration for a single entry scale."""

    name: str
    entry_tf: Timeframe
    alignment_tfs: tuple[Timeframe, ...]
    structure_tf: Timeframe
    confirm_tf: Timeframe
    scan_interval: int  # seconds between scans in the live loop
    min_confidence: float
    weight: float = 1.0
    enabled: bool = True


DEFAULT_SCALES: dict[Scale, ScaleConfig] = {
    Scale.M1: ScaleConfig(
        name="1m Scalp",
        entry_tf=Timeframe.M1,
        alignment_tfs=(Timeframe.M5, Timeframe.M15, Timeframe.H1),
        structure_tf=Timeframe.M5,
        confirm_tf=Timeframe.M1,
        scan_interval=10,
        min_confidence=0.7,
    ),
    Scale.M5: ScaleConfig(
        name="5m Intraday",
        entry_tf=Timeframe.M5,
        alignment_tfs=(Timeframe.M15, Timeframe.H1, Timeframe.H4),
        structure_tf=Timeframe.M15,
        confirm_tf=Timeframe.M5,
        scan_interval=30,
        min_confidence=0.55,
    ),
    Scale.M15: ScaleConfig(
        name="15m Swing",
        entry_tf=Timeframe.M15,
        alignment_tfs=(Timeframe.H1, Timeframe.H4, Timeframe.D1),
        structure_tf=Timeframe.H1,
        confirm_tf=Timeframe.M15,
        scan_interval=60,
        min_confidence=0.7,
    ),
}
