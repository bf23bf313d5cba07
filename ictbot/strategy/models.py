"""Strategy data models — typed representations for detector outputs and signals."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ictbot.models.enums import BosType, Direction, DrawOnLiquidity, LiquidityType, PdaType, StopMode, SwingType, Trend, WeeklyProfile, Zone
from ictbot.models.timeframe import Timeframe
from ictbot.models.trade_record import AlignmentInfo, TpLevelInfo


# ── Market structure ─────────────────────────────────────────────────────


@dataclass
class SwingPoint:
    """A swing high or low. ``broken`` flips once a later close passes it."""

    swing_type: SwingType
    price: float
    timestamp: datetime
    broken: bool = False


@dataclass(frozen=True)
class BosEvent:
    bos_type: BosType
    level: float
    timestamp: datetime


@dataclass(frozen=True)
class DealingRange:
    high: float
    low: float
    equilibrium: float
    premium_zone: float
    discount_zone: float

    @classmethod
    def empty(cls) -> "DealingRange":
        return cls(0.0, 0.0, 0.0, 0.0, 0.0)

    @classmethod
    def from_bounds(cls, high: float, low: float) -> "DealingRange":
        size = high - low
        return cls(
            high=high,
            low=low,
            equilibrium=low + size * 0.5,
            premium_zone=low + size * 0.75,
            discount_zone=low + size * 0.25,
        )


@dataclass(frozen=True)
class LiquidityLevels:
    """Unbroken swing prices: ``bsl`` descending, ``ssl`` ascending."""

    bsl: list[float] = field(default_factory=list)
    ssl: list[float] = field(default_factory=list)


# ── Arrays / confirmations / pools ───────────────────────────────────────


@dataclass(frozen=True)
class Pda:
    """A price-delivery array band on one series."""

    pda_type: PdaType
    direction: Trend  # bullish or bearish, never neutral
    zone: Zone
    high: float
    low: float
    midpoint: float
    timestamp: datetime
    timeframe: Timeframe
    strength: float

    def overlaps(self, low: float, high: float) -> bool:
        return self.low <= high and self.high >= low


@dataclass(frozen=True)
class CisdConfirmation:
    direction: Trend
    breaker: Pda
    confirmation_candle: datetime
    close_price: float
    strength: float


@dataclass(frozen=True)
class LiquidityPool:
    pool_type: LiquidityType
    price: float
    touches: int
    first_touch: datetime
    last_touch: datetime
    swept: bool
    strength: float


# ── Projections ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DeviationLevel:
    level: float
    price: float
    label: str
    has_pda_confluence: bool = False
    confluence_pda: Optional[Pda] = None


@dataclass(frozen=True)
class SdProjection:
    direction: Trend
    anchor_high: float
    anchor_low: float
    range_size: float
    levels: list[DeviationLevel]
    recommended_tp: float
    recommended_label: str

    @classmethod
    def empty(cls, direction: Trend) -> "SdProjection":
        return cls(direction, 0.0, 0.0, 0.0, [], 0.0, "")


@dataclass(frozen=True)
class ConfluenceZone:
    """Two adjacent projected levels close enough to act as one target."""

    price: float
    levels: list[float]
    strength: str  # "high" or "moderate"


# ── Stops ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProtectedSwing:
    swing_type: SwingType
    extreme: float
    body_level: float
    timestamp: datetime
    sweep_confirmed: bool
    close_confirmed: bool
    strength: float
    candle_count: int


@dataclass(frozen=True)
class StopLossLevel:
    price: float
    mode: StopMode
    protected_swing: ProtectedSwing
    risk_distance: float
    risk_percent: float
    reason: str


# ── Weekly bias ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WeeklyBias:
    profile: WeeklyProfile
    direction: Trend
    confidence: float
    draw_on_liquidity: DrawOnLiquidity
    tgif_active: bool = False
    notes: tuple[str, ...] = ()


# ── Signals ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AlignmentState:
    timeframe: Timeframe
    trend: Trend
    dealing_range: Optional[DealingRange]
    swing_count: int
    bos_count: int


@dataclass(frozen=True)
class TradeSignal:
    """What the position simulator needs to open a position."""

    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float
    session: str
    session_weight: float
    reason: str
    pda_engaged: Optional[Pda] = None
    cisd_confirmed: bool = False
    tp_levels: Optional[tuple[TpLevelInfo, ...]] = None


@dataclass(frozen=True)
class HftSignal:
    """A signal produced by one scale of the fractal engine."""

    scale: str
    scale_name: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    pda_engaged: Pda
    cisd_confirmed: bool
    confidence: float
    session: str
    session_weight: float
    reason: str
    stop_mode: str
    stop_reason: str
    tp_label: str
    tp_levels: tuple[TpLevelInfo, ...] = ()
    alignment: tuple[AlignmentInfo, ...] = ()
    cross_scale_confluence: int = 1

    def to_trade_signal(self) -> TradeSignal:
        return TradeSignal(
            direction=self.direction,
            entry_price=self.entry_price,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            confidence=self.confidence,
            session=self.session,
            session_weight=self.session_weight,
            reason=self.reason,
            pda_engaged=self.pda_engaged,
            cisd_confirmed=self.cisd_confirmed,
            tp_levels=self.tp_levels,
        )
