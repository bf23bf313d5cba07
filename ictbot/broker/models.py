"""Broker data models — simulated positions and their exit ladder."""

from dataclasses import asdict, dataclass, field
from typing import Optional

from ictbot.models.enums import Direction, PositionStatus


@dataclass
class TpTarget:
    """One rung of the partial take-profit ladder."""

    level: float  # deviation multiple, e.g. -2.0
    price: float
    pct: float  # fraction of the original size
    size_btc: float
    hit: bool = False


@dataclass(frozen=True)
class PartialExit:
    """A fill against one ladder rung."""

    level: float
    price: float
    size_btc: float
    pnl: float
    time: str


@dataclass
class Position:
    """A simulated position.

    Only :class:`~ictbot.broker.paper_trader.PaperTrader` mutates positions.
    Times are ISO-8601 UTC strings.
    """

    id: int
    direction: Direction
    entry_price: float
    size_usd: float
    size_btc: float
    stop_loss: float
    take_profit: float
    entry_time: str
    reason: str
    scale: str = ""
    kelly_fraction: float = 0.0
    status: PositionStatus = PositionStatus.OPEN
    exit_price: Optional[float] = None
    exit_time: Optional[str] = None
    pnl: float = 0.0
    remaining_size_btc: float = 0.0
    tp_targets: list[TpTarget] = field(default_factory=list)
    partial_exits: list[PartialExit] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def to_dict(self) -> dict:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        payload = dict(data)
        payload["direction"] = Direction(payload["direction"])
        payload["status"] = PositionStatus(payload.get("status", PositionStatus.OPEN.value))
        payload["tp_targets"] = [TpTarget(**t) for t in payload.get("tp_targets", [])]
        payload["partial_exits"] = [PartialExit(**p) for p in payload.get("partial_exits", [])]
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in payload.items() if k in known})
