"""Trade records — the metadata snapshot taken at entry, resolved at close.

Only the trade analyzer reads these. Strings are used for categorical fields
so that persisted records from older runs stay readable.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional


@dataclass(frozen=True)
class TpLevelInfo:
    label: str
    price: float
    pda_confluence: bool = False
    level: Optional[float] = None


@dataclass(frozen=True)
class AlignmentInfo:
    tf: str
    trend: str
    bos: int = 0


@dataclass(frozen=True)
class TradeMetadata:
    """Everything known about a trade at the moment it was opened."""

    scale: str
    direction: str
    confidence: float
    session: str
    session_weight: float
    cisd_confirmed: bool
    pda_type: str = ""
    pda_direction: str = ""
    pda_zone: str = ""
    pda_strength: float = 0.0
    stop_mode: str = ""
    tp_label: str = ""
    tp_levels: tuple[TpLevelInfo, ...] = ()
    cross_scale_confluence: int = 1
    alignment: tuple[AlignmentInfo, ...] = ()
    weekly_profile: str = ""
    weekly_direction: str = ""
    weekly_confidence: float = 0.0
    day_of_week: str = ""
    kelly_fraction: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "TradeMetadata":
        payload = dict(data)
        payload["tp_levels"] = tuple(
            TpLevelInfo(**t) for t in payload.get("tp_levels", [])
        )
        payload["alignment"] = tuple(
            AlignmentInfo(**a) for a in payload.get("alignment", [])
        )
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in payload.items() if k in known})


@dataclass
class TradeRecord:
    """Metadata keyed by position id plus the outcome once resolved.

    ``outcome`` is ``""`` while open, then ``"win"`` or ``"loss"``.
    """

    position_id: int
    metadata: TradeMetadata
    outcome: str = ""
    pnl: float = 0.0
    hold_duration_seconds: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.outcome in ("win", "loss")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TradeRecord":
        return cls(
            position_id=int(data["position_id"]),
            metadata=TradeMetadata.from_dict(data["metadata"]),
            outcome=data.get("outcome", ""),
            pnl=float(data.get("pnl", 0.0)),
            hold_duration_seconds=float(data.get("hold_duration_seconds", 0.0)),
        )
