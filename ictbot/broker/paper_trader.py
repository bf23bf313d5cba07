"""Paper trader — the simulated ledger both live and backtest modes trade against.

Positions open at the signal price adjusted for slippage, pay the entry fee
and slippage from the balance immediately, and exit through a partial
take-profit ladder. A stop check always runs before any target check, so a
price that satisfies both closes the position at the stop.
"""

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from ictbot.broker.models import PartialExit, Position, TpTarget
from ictbot.config import Config
from ictbot.models.enums import PositionStatus
from ictbot.models.scale import Scale
from ictbot.models.trade_record import TradeMetadata, TradeRecord
from ictbot.repos.ledger_repo import LedgerRepo, LedgerState
from ictbot.repos.record_repo import RecordRepo
from ictbot.risk.kelly import KellyCriterion, KellyResult
from ictbot.strategy.models import TradeSignal

logger = logging.getLogger("ictbot.paper")

# (deviation level, fraction of size) per ladder rung.
TP_ALLOC_CONSERVATIVE: tuple[tuple[float, float], ...] = (
    (-1.0, 0.60),
    (-2.0, 0.20),
    (-4.0, 0.10),
    (-4.5, 0.10),
)
# CISD-confirmed entries let runners run.
TP_ALLOC_AGGRESSIVE: tuple[tuple[float, float], ...] = (
    (-1.0, 0.10),
    (-2.0, 0.15),
    (-4.0, 0.30),
    (-4.5, 0.45),
)


@dataclass(frozen=True)
class TradingStats:
    total_trades: int
    balance: float
    win_rate: float  # percent
    total_pnl: float
    avg_win: float
    avg_loss: float
    best_trade: float
    worst_trade: float
    open_positions: int
    kelly_fraction: float
    kelly_full: float
    kelly_using_default: bool
    kelly_edge: float
    kelly_sample: int
    kelly_win_rate: float
    kelly_payoff: float

    def to_dict(self) -> dict:
        return asdict(self)


class PaperTrader:
    """Owns the balance, open positions, closed history and trade records.

    Args:
        config: Fees, slippage and risk caps.
        ledger_repo: Where the ledger is persisted; ``None`` disables persistence.
        record_repo: Where trade records are persisted; ``None`` disables persistence.
    """

    def __init__(
        self,
        config: Config,
        ledger_repo: Optional[LedgerRepo] = None,
        record_repo: Optional[RecordRepo] = None,
    ) -> None:
        self._config = config
        self._ledger_repo = ledger_repo
        self._record_repo = record_repo

        self.balance: float = config.initial_balance
        self.positions: list[Position] = []
        self.trade_history: list[Position] = []
        self.trade_counter: int = 0
        self.daily_pnl: float = 0.0
        self.daily_pnl_date: str = ""
        self.trade_records: dict[int, TradeRecord] = {}
        self.kelly = KellyCriterion()
        self.last_kelly_result: Optional[KellyResult] = None
        # Backtests set this so every timestamp follows the simulated clock.
        self.sim_time: Optional[datetime] = None

    @classmethod
    def persistent(cls, config: Config) -> "PaperTrader":
        """A trader backed by ``config.state_dir`` with any saved state loaded."""
        trader = cls(config, LedgerRepo(config.state_dir), RecordRepo(config.state_dir))
        trader.load_state()
        return trader

    def now(self) -> datetime:
        return self.sim_time or datetime.now(timezone.utc)

    @property
    def open_positions(self) -> list[Position]:
        return [p for p in self.positions if p.is_open]

    def get_position(self, position_id: int) -> Optional[Position]:
        return next((p for p in self.positions if p.id == position_id), None)

    # ── Gates ────────────────────────────────────────────────────────────

    def can_open_position(self) -> bool:
        """``False`` once the position cap or today's loss limit is reached."""
        if len(self.open_positions) >= self._config.max_open_positions:
            return False
        self._roll_day()
        if self.daily_pnl <= -(self._config.max_daily_loss * self.balance):
            return False
        return True

    # ── Open ─────────────────────────────────────────────────────────────

    def open_position(
        self,
        signal: TradeSignal,
        scale: str,
        metadata: Optional[TradeMetadata] = None,
    ) -> Optional[Position]:
        """Open a position for *signal*.

        Size is the Kelly risk amount (capped at ``max_risk_pct`` of balance)
        divided by the stop distance, then capped at ``max_leverage`` times
        balance in notional.

        Returns:
            The new position, or ``None`` when the stop or target sits on the
            wrong side of entry or there is nothing to risk.
        """
        sign = signal.direction.sign
        sl_distance = abs(signal.entry_price - signal.stop_loss)
        if sl_distance == 0 or signal.entry_price <= 0:
            return None
        if (signal.entry_price - signal.stop_loss) * sign <= 0:
            logger.warning("Rejected %s signal: stop %.2f on wrong side of %.2f",
                           signal.direction, signal.stop_loss, signal.entry_price)
            return None
        if (signal.take_profit - signal.entry_price) * sign <= 0:
            logger.warning("Rejected %s signal: target %.2f on wrong side of %.2f",
                           signal.direction, signal.take_profit, signal.entry_price)
            return None

        risk_amount, kelly_result = self.kelly.get_risk_amount(
            self.balance, self.trade_history, scale,
        )
        self.last_kelly_result = kelly_result
        risk = min(risk_amount, self.balance * self._config.max_risk_pct)
        if risk <= 0:
            return None

        size_btc = risk / sl_distance
        size_usd = size_btc * signal.entry_price
        max_notional = self.balance * self._config.max_leverage
        if size_usd > max_notional:
            size_usd = max_notional
            size_btc = size_usd / signal.entry_price

        fee_rate = self._config.fee_rate
        slippage_rate = self._config.slippage_rate
        self.balance -= size_usd * fee_rate + size_usd * slippage_rate
        entry_price = signal.entry_price * (1.0 + sign * slippage_rate)

        self.trade_counter += 1
        position = Position(
            id=self.trade_counter,
            direction=signal.direction,
            entry_price=entry_price,
            size_usd=round(size_usd, 2),
            size_btc=round(size_btc, 8),
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            entry_time=self.now().isoformat(),
            reason=signal.reason,
            scale=scale,
            kelly_fraction=kelly_result.applied_fraction,
            remaining_size_btc=round(size_btc, 8),
            tp_targets=_build_ladder(signal, size_btc),
        )
        self.positions.append(position)

        if metadata is not None:
            self.trade_records[position.id] = TradeRecord(
                position_id=position.id,
                metadata=replace(metadata, kelly_fraction=kelly_result.applied_fraction),
            )

        logger.info(
            "Opened #%d %s %.8f @ %.2f SL=%.2f TP=%.2f (kelly %.4f)",
            position.id, position.direction, position.size_btc, entry_price,
            position.stop_loss, position.take_profit, kelly_result.applied_fraction,
        )
        self.save_state()
        return position

    # ── Manage ───────────────────────────────────────────────────────────

    def check_positions(self, current_price: float) -> list[Position]:
        """Apply *current_price* to every open position.

        Returns:
            Positions fully closed by this call.
        """
        closed: list[Position] = []
        changed = False

        for position in list(self.open_positions):
            sign = position.direction.sign

            if (position.stop_loss - current_price) * sign >= 0:
                self._close(position, position.stop_loss, PositionStatus.CLOSED_SL)
                closed.append(position)
                changed = True
                continue

            if position.tp_targets:
                any_hit = False
                for target in position.tp_targets:
                    if not target.hit and (current_price - target.price) * sign >= 0:
                        self._partial_close(position, target, current_price)
                        any_hit = changed = True
                if any_hit and all(t.hit for t in position.tp_targets):
                    if position.remaining_size_btc > 0:
                        self._close(position, current_price, PositionStatus.CLOSED_TP)
                    else:
                        self._finalize(position, PositionStatus.CLOSED_TP)
                    closed.append(position)
            elif (current_price - position.take_profit) * sign >= 0:
                self._close(position, current_price, PositionStatus.CLOSED_TP)
                closed.append(position)
                changed = True

        if changed:
            self.save_state()
        return closed

    def close_position(
        self,
        position_id: int,
        exit_price: float,
        status: PositionStatus = PositionStatus.CLOSED_MANUAL,
    ) -> Optional[Position]:
        """Close an open position outright; ``None`` when it is not open."""
        position = self.get_position(position_id)
        if position is None or not position.is_open:
            return None
        self._close(position, exit_price, status)
        self.save_state()
        return position

    def update_stop(
        self, position_id: int, new_stop: float, current_price: Optional[float] = None,
    ) -> bool:
        """Move a stop, but only in the position's favour.

        When *current_price* is given, a stop at or beyond the market is refused.
        """
        position = self.get_position(position_id)
        if position is None or not position.is_open:
            return False
        if (new_stop - position.stop_loss) * position.direction.sign <= 0:
            return False
        if current_price is not None and (current_price - new_stop) * position.direction.sign <= 0:
            logger.warning(
                "Refusing #%d stop %.2f on the wrong side of market %.2f",
                position_id, new_stop, current_price,
            )
            return False
        logger.info("Trailing #%d stop %.2f -> %.2f", position_id, position.stop_loss, new_stop)
        position.stop_loss = new_stop
        self.save_state()
        return True

    def _partial_close(self, position: Position, target: TpTarget, exit_price: float) -> None:
        close_size = min(target.size_btc, position.remaining_size_btc)
        if close_size <= 0:
            target.hit = True
            return

        gross = (exit_price - position.entry_price) * close_size * position.direction.sign
        pnl = round(gross - close_size * exit_price * self._config.fee_rate, 2)

        position.remaining_size_btc = round(position.remaining_size_btc - close_size, 8)
        position.pnl = round(position.pnl + pnl, 2)
        self._book(pnl)

        target.hit = True
        position.partial_exits.append(
            PartialExit(
                level=target.level,
                price=exit_price,
                size_btc=close_size,
                pnl=pnl,
                time=self.now().isoformat(),
            )
        )
        logger.info(
            "Partial exit #%d %s SD @ %.2f size=%.8f pnl=%+.2f",
            position.id, target.level, exit_price, close_size, pnl,
        )

    def _close(self, position: Position, exit_price: float, status: PositionStatus) -> None:
        close_size = position.remaining_size_btc
        gross = (exit_price - position.entry_price) * close_size * position.direction.sign
        pnl = gross - close_size * exit_price * self._config.fee_rate

        position.exit_price = exit_price
        position.pnl = round(position.pnl + pnl, 2)
        position.remaining_size_btc = 0.0
        self._book(pnl)
        self._retire(position, status)

    def _finalize(self, position: Position, status: PositionStatus) -> None:
        position.exit_price = position.partial_exits[-1].price if position.partial_exits else None
        position.remaining_size_btc = 0.0
        self._retire(position, status)

    def _retire(self, position: Position, status: PositionStatus) -> None:
        position.status = status
        position.exit_time = self.now().isoformat()
        self.positions.remove(position)
        self.trade_history.append(position)
        self._resolve_record(position)
        logger.info(
            "Closed #%d %s @ %s pnl=%+.2f balance=%.2f",
            position.id, status, position.exit_price, position.pnl, self.balance,
        )

    def _resolve_record(self, position: Position) -> None:
        record = self.trade_records.get(position.id)
        if record is None:
            return
        record.outcome = "win" if position.pnl > 0 else "loss"
        record.pnl = position.pnl
        if position.exit_time:
            opened = datetime.fromisoformat(position.entry_time)
            closed = datetime.fromisoformat(position.exit_time)
            record.hold_duration_seconds = (closed - opened).total_seconds()

    def _book(self, pnl: float) -> None:
        self._roll_day()
        self.balance += pnl
        self.daily_pnl += pnl

    def _roll_day(self) -> None:
        today = self.now().date().isoformat()
        if self.daily_pnl_date != today:
            self.daily_pnl_date = today
            self.daily_pnl = 0.0

    # ── Stats ────────────────────────────────────────────────────────────

    def get_stats(self) -> TradingStats:
        kelly = self.kelly.calculate(self.trade_history)
        history = self.trade_history
        pnls = [t.pnl for t in history]
        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p <= 0]

        return TradingStats(
            total_trades=len(history),
            balance=round(self.balance, 2),
            win_rate=round(len(wins) / len(history) * 100.0, 1) if history else 0.0,
            total_pnl=round(sum(pnls), 2),
            avg_win=round(sum(wins) / len(wins), 2) if wins else 0.0,
            avg_loss=round(sum(losses) / len(losses), 2) if losses else 0.0,
            best_trade=round(max(pnls), 2) if pnls else 0.0,
            worst_trade=round(min(pnls), 2) if pnls else 0.0,
            open_positions=len(self.open_positions),
            kelly_fraction=kelly.applied_fraction,
            kelly_full=kelly.full_kelly,
            kelly_using_default=kelly.using_default,
            kelly_edge=kelly.edge,
            kelly_sample=kelly.sample_size,
            kelly_win_rate=kelly.win_rate,
            kelly_payoff=kelly.payoff_ratio,
        )

    def get_kelly_by_scale(self) -> dict[str, KellyResult]:
        return {s.value: self.kelly.calculate(self.trade_history, s.value) for s in Scale}

    # ── Persistence ──────────────────────────────────────────────────────

    def save_state(self) -> None:
        if self._ledger_repo is not None:
            self._ledger_repo.save(
                LedgerState(
                    balance=self.balance,
                    trade_counter=self.trade_counter,
                    daily_pnl=self.daily_pnl,
                    daily_pnl_date=self.daily_pnl_date,
                    positions=self.positions,
                    trade_history=self.trade_history,
                )
            )
        if self._record_repo is not None and self.trade_records:
            self._record_repo.save(self.trade_records)

    def load_state(self) -> None:
        if self._ledger_repo is not None:
            state = self._ledger_repo.load(self._config.initial_balance)
            self.balance = state.balance
            self.trade_counter = state.trade_counter
            self.daily_pnl = state.daily_pnl
            self.daily_pnl_date = state.daily_pnl_date
            self.positions = [p for p in state.positions if p.is_open]
            self.trade_history = state.trade_history
        if self._record_repo is not None:
            self.trade_records = self._record_repo.load()


def _build_ladder(signal: TradeSignal, size_btc: float) -> list[TpTarget]:
    if not signal.tp_levels:
        return []
    prices = {
        round(lvl.level, 1): lvl.price for lvl in signal.tp_levels if lvl.level is not None
    }
    alloc = TP_ALLOC_AGGRESSIVE if signal.cisd_confirmed else TP_ALLOC_CONSERVATIVE
    return [
        TpTarget(level=level, price=prices[level], pct=pct, size_btc=round(size_btc * pct, 8))
        for level, pct in alloc
        if level in prices
    ]


