"""Backtest report — trade and equity statistics for a finished replay."""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional, Sequence

import numpy as np

from ictbot.broker.paper_trader import PaperTrader
from ictbot.models.trade_record import TradeRecord

TRADING_DAYS = 252
_RULE = "  " + "─" * 35


@dataclass
class GroupStats:
    """Per-scale or per-session result line."""

    trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0  # percent
    total_pnl: float = 0.0
    avg_pnl: float = 0.0


@dataclass
class BacktestReport:
    start: datetime
    end: datetime
    days: float

    initial_balance: float
    final_balance: float
    total_pnl: float
    total_return_pct: float

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # percent
    avg_win: float
    avg_loss: float
    profit_factor: float
    best_trade: float
    worst_trade: float
    avg_trade: float

    max_drawdown: float
    max_drawdown_pct: float
    sharpe_ratio: float

    total_signals: int
    signals_filtered: int

    scale_stats: dict[str, GroupStats] = field(default_factory=dict)
    session_stats: dict[str, GroupStats] = field(default_factory=dict)
    equity_curve: list[tuple[datetime, float]] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["start"] = self.start.isoformat()
        data["end"] = self.end.isoformat()
        data["profit_factor"] = None if math.isinf(self.profit_factor) else self.profit_factor
        data["equity_curve"] = [[ts.isoformat(), eq] for ts, eq in self.equity_curve]
        return data

    def print_summary(self) -> None:
        conversion = self.total_trades / self.total_signals * 100 if self.total_signals else 0.0
        lines = [
            "",
            "=" * 70,
            "  BACKTEST REPORT",
            "=" * 70,
            f"  Period:      {self.start:%Y-%m-%d} to {self.end:%Y-%m-%d} ({self.days:.0f} days)",
            "",
            "  PERFORMANCE",
            _RULE,
            f"  Initial:     ${self.initial_balance:.2f}",
            f"  Final:       ${self.final_balance:.2f}",
            f"  PnL:         ${self.total_pnl:+.2f}",
            f"  Return:      {self.total_return_pct:+.1f}%",
            "",
            "  TRADES",
            _RULE,
            f"  Total:       {self.total_trades}",
            f"  Win/Loss:    {self.winning_trades} / {self.losing_trades}",
            f"  Win Rate:    {self.win_rate:.1f}%",
            f"  Avg Win:     ${self.avg_win:+.2f}",
            f"  Avg Loss:    ${self.avg_loss:+.2f}",
            f"  Best:        ${self.best_trade:+.2f}",
            f"  Worst:       ${self.worst_trade:+.2f}",
            f"  Avg Trade:   ${self.avg_trade:+.2f}",
            f"  Profit Factor: {self.profit_factor:.2f}",
            "",
            "  RISK",
            _RULE,
            f"  Max DD:      ${self.max_drawdown:.2f} ({self.max_drawdown_pct:.1f}%)",
            f"  Sharpe:      {self.sharpe_ratio:.2f}",
            "",
            "  SIGNALS",
            _RULE,
            f"  Generated:   {self.total_signals}",
            f"  Filtered:    {self.signals_filtered}",
            f"  Conversion:  {conversion:.1f}%",
        ]
        if self.scale_stats:
            lines += ["", "  BY SCALE", _RULE]
            for scale, s in sorted(self.scale_stats.items()):
                lines.append(
                    f"  {scale:>4}: {s.trades} trades | WR {s.win_rate:.0f}% "
                    f"| PnL ${s.total_pnl:+.2f} | Avg ${s.avg_pnl:+.2f}"
                )
        if self.session_stats:
            lines += ["", "  BY SESSION", _RULE]
            ranked = sorted(self.session_stats.items(), key=lambda kv: kv[1].total_pnl, reverse=True)
            for session, s in ranked:
                lines.append(
                    f"  {session:>12}: {s.trades} trades | WR {s.win_rate:.0f}% | PnL ${s.total_pnl:+.2f}"
                )
        lines.append("=" * 70)
        print("\n".join(lines))


def build_report(
    trader: PaperTrader,
    initial_balance: float,
    start: datetime,
    end: datetime,
    equity_curve: list[tuple[datetime, float]],
    max_drawdown: float,
    max_drawdown_pct: float,
    total_signals: int,
    signals_filtered: int,
) -> BacktestReport:
    """Summarise a finished replay from the trader's closed history and records."""
    pnls = [p.pnl for p in trader.trade_history]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]
    total = len(pnls)
    total_pnl = trader.balance - initial_balance

    if losses and sum(losses) != 0:
        profit_factor = sum(wins) / abs(sum(losses))
    elif wins:
        profit_factor = math.inf
    else:
        profit_factor = 0.0

    records = list(trader.trade_records.values())

    return BacktestReport(
        start=start,
        end=end,
        days=(end - start).total_seconds() / 86400.0,
        initial_balance=initial_balance,
        final_balance=trader.balance,
        total_pnl=total_pnl,
        total_return_pct=total_pnl / initial_balance * 100 if initial_balance > 0 else 0.0,
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / total * 100 if total else 0.0,
        avg_win=sum(wins) / len(wins) if wins else 0.0,
        avg_loss=sum(losses) / len(losses) if losses else 0.0,
        profit_factor=profit_factor,
        best_trade=max(pnls) if pnls else 0.0,
        worst_trade=min(pnls) if pnls else 0.0,
        avg_trade=total_pnl / total if total else 0.0,
        max_drawdown=max_drawdown,
        max_drawdown_pct=max_drawdown_pct,
        sharpe_ratio=daily_sharpe(equity_curve),
        total_signals=total_signals,
        signals_filtered=signals_filtered,
        scale_stats=_group(records, lambda r: r.metadata.scale),
        session_stats=_group(records, lambda r: r.metadata.session),
        equity_curve=equity_curve,
    )


def daily_sharpe(equity_curve: Sequence[tuple[datetime, float]]) -> float:
    """Annualised Sharpe ratio of day-over-day equity returns.

    The first equity sample of each UTC day is used. Uses the population
    standard deviation; returns 0.0 with fewer than two days or zero
    variance.
    """
    daily: list[float] = []
    last_day: Optional[object] = None
    for ts, equity in equity_curve:
        if ts.date() != last_day:
            daily.append(equity)
            last_day = ts.date()
    if len(daily) < 2:
        return 0.0

    values = np.asarray(daily, dtype=float)
    returns = np.diff(values) / values[:-1]
    std = float(np.std(returns))
    if std == 0.0:
        return 0.0
    return float(np.mean(returns)) / std * math.sqrt(TRADING_DAYS)


def _group(records: list[TradeRecord], key) -> dict[str, GroupStats]:
    groups: dict[str, GroupStats] = {}
    for record in records:
        if not record.resolved:
            continue
        stats = groups.setdefault(key(record), GroupStats())
        stats.trades += 1
        stats.total_pnl += record.pnl
        if record.pnl > 0:
            stats.wins += 1
        else:
            stats.losses += 1
    for stats in groups.values():
        stats.win_rate = stats.wins / stats.trades * 100 if stats.trades else 0.0
        stats.avg_pnl = stats.total_pnl / stats.trades if stats.trades else 0.0
    return groups
