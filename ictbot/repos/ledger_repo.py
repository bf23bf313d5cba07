"""Ledger repository — the paper trader's balance, counters and positions."""

import logging
import pathlib
from dataclasses import dataclass, field

from ictbot.broker.models import Position
from ictbot.repos.json_store import read_json, write_json

logger = logging.getLogger("ictbot.repos")

LEDGER_FILE = "paper_trades.json"


@dataclass
class LedgerState:
    balance: float
    trade_counter: int = 0
    daily_pnl: float = 0.0
    daily_pnl_date: str = ""
    positions: list[Position] = field(default_factory=list)
    trade_history: list[Position] = field(default_factory=list)


class LedgerRepo:
    """Load and save ``paper_trades.json``.

    Args:
        state_dir: Directory holding the document.
    """

    def __init__(self, state_dir: str) -> None:
        self._path = pathlib.Path(state_dir) / LEDGER_FILE

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def load(self, initial_balance: float) -> LedgerState:
        """Return the stored ledger, or a fresh one funded with *initial_balance*."""
        data = read_json(self._path)
        if not data:
            return LedgerState(balance=initial_balance)

        state = LedgerState(
            balance=float(data.get("balance", initial_balance)),
            trade_counter=int(data.get("trade_counter", 0)),
            daily_pnl=float(data.get("daily_pnl", 0.0)),
            daily_pnl_date=data.get("daily_pnl_date", ""),
            positions=[Position.from_dict(p) for p in data.get("positions", [])],
            trade_history=[Position.from_dict(p) for p in data.get("trade_history", [])],
        )
        logger.info(
            "Loaded ledger: balance=%.2f open=%d closed=%d",
            state.balance, len(state.positions), len(state.trade_history),
        )
        return state

    def save(self, state: LedgerState) -> None:
        write_json(
            self._path,
            {
                "balance": state.balance,
                "trade_counter": state.trade_counter,
                "daily_pnl": state.daily_pnl,
                "daily_pnl_date": state.daily_pnl_date,
                "positions": [p.to_dict() for p in state.positions],
                "trade_history": [p.to_dict() for p in state.trade_history],
            },
        )
