"""Enumerations shared across detectors, the simulator and persistence.

All members are ``str`` subclasses so they serialise to JSON unchanged and
compare equal to their wire value.
"""

from enum import Enum
from typing import Optional


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"

    def __str__(self) -> str:
        return self.value

    @property
    def sign(self) -> int:
        """``+1`` for long, ``-1`` for short."""
        return 1 if self is Direction.LONG else -1


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"

    def __str__(self) -> str:
        return self.value

    def to_direction(self) -> Optional[Direction]:
        if self is Trend.BULLISH:
            return Direction.LONG
        if self is Trend.BEARISH:
            return Direction.SHORT
        return None

    def opposite(self) -> "Trend":
        if self is Trend.BULLISH:
            return Trend.BEARISH
        if self is Trend.BEARISH:
            return Trend.BULLISH
        return Trend.NEUTRAL


class SwingType(str, Enum):
    HIGH = "high"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class PdaType(str, Enum):
    """Price-delivery array kinds: order block, fair-value gap, breaker, rejection block."""

    OB = "OB"
    FVG = "FVG"
    BRK = "BRK"
    RB = "RB"

    def __str__(self) -> str:
        return self.value


class Zone(str, Enum):
    PREMIUM = "premium"
    DISCOUNT = "discount"

    def __str__(self) -> str:
        return self.value


class StopMode(str, Enum):
    WICK = "wick"
    BODY = "body"
    CONTINUATION = "continuation"

    def __str__(self) -> str:
        return self.value


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED_TP = "closed_tp"
    CLOSED_SL = "closed_sl"
    CLOSED_MANUAL = "closed_manual"

    def __str__(self) -> str:
        return self.value


class BosType(str, Enum):
    BULLISH_BOS = "bullish_bos"
    BEARISH_BOS = "bearish_bos"

    def __str__(self) -> str:
        return self.value


class WeeklyProfile(str, Enum):
    CLASSIC_EXPANSION = "classic_expansion"
    MIDWEEK_REVERSAL = "midweek_reversal"
    CONSOLIDATION_REVERSAL = "consolidation_reversal"
    UNDETERMINED = "undetermined"

    def __str__(self) -> str:
        return self.value


class DrawOnLiquidity(str, Enum):
    BSL = "BSL"
    SSL = "SSL"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


class LiquidityType(str, Enum):
    """Buy-side liquidity rests above highs, sell-side below lows."""

    BSL = "BSL"
    SSL = "SSL"

    def __str__(self) -> str:
        return self.value
