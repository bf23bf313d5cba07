"""Chart timeframes and their exchange granularity names."""

from enum import Enum
from typing import Optional


class Timeframe(str, Enum):
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    def __str__(self) -> str:
        return self.value

    @property
    def seconds(self) -> int:
        return _SECONDS[self]

    @property
    def granularity(self) -> str:
        """Coinbase Advanced Trade granularity. 4h has none and is resampled from 1h."""
        return _GRANULARITY[self]

    @property
    def needs_resample(self) -> bool:
        return self is Timeframe.H4

    @classmethod
    def from_str_loose(cls, value: str) -> Optional["Timeframe"]:
        """Parse ``"5m"``, ``"5M"``, ``" 1h "`` etc.; ``None`` when unknown."""
        cleaned = value.strip().lower()
        for tf in cls:
            if tf.value == cleaned:
                return tf
        return None

    @classmethod
    def parse(cls, value: str) -> "Timeframe":
        """Like :meth:`from_str_loose` but raises ``ValueError`` when unknown."""
        tf = cls.from_str_loose(value)
        if tf is None:
            raise ValueError(
                f"Unknown timeframe '{value}'. "
                f"Available: {', '.join(t.value for t in cls)}"
            )
        return tf


_SECONDS: dict[Timeframe, int] = {
    Timeframe.M1: 60,
    Timeframe.M5: 300,
    Timeframe.M15: 900,
    Timeframe.H1: 3600,
    Timeframe.H4: 14400,
    Timeframe.D1: 86400,
}

_GRANULARITY: dict[Timeframe, str] = {
    Timeframe.M1: "ONE_MINUTE",
    Timeframe.M5: "FIVE_MINUTE",
    Timeframe.M15: "FIFTEEN_MINUTE",
    Timeframe.H1: "ONE_HOUR",
    Timeframe.H4: "ONE_HOUR",
    Timeframe.D1: "ONE_DAY",
}
