"""Backtest runner — replays history through the same pipeline the live loop runs.

A simulated clock advances in fixed steps. At each step the historical
provider exposes only candles up to the clock, and the runner refreshes
data, updates the session, re-classifies the week every four simulated
hours, manages open positions, scans every scale, refines the strategy on
the live cadence, and records equity.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ictbot.analysis.strategy_refiner import StrategyRefiner
from ictbot.backtest.stats import BacktestReport, build_report
from ictbot.broker.historical import HistoricalExchange
from ictbot.broker.paper_trader import PaperTrader
from ictbot.config import Config
from ictbot.models.timeframe import Timeframe
from ictbot.risk.drawdown import DrawdownTracker
from ictbot.scanner import SignalScanner
from ictbot.strategy.fractal_engine import MarketData
from ictbot.strategy.models import WeeklyBias
from ictbot.strategy.sessions import SessionManager
from ictbot.strategy.weekly_profile import WeeklyProfileClassifier

logger = logging.getLogger("ictbot.backtest")

REFRESH_LIMITS: tuple[tuple[Timeframe, int], ...] = (
    (Timeframe.M1, 200),
    (Timeframe.M5, 200),
    (Timeframe.M15, 200),
    (Timeframe.H1, 200),
    (Timeframe.D1, 30),
)
H4_LIMIT = 200
WEEKLY_INTERVAL = timedelta(hours=4)
REFINE_AFTER_CLOSES = 10
PROGRESS_UPDATES = 20


class BacktestRunner:
    """Steps through history and produces a :class:`BacktestReport`.

    The trader starts fresh from ``config.initial_balance`` and nothing is
    persisted.
    """

    def __init__(self, exchange: HistoricalExchange, config: Config) -> None:
        self.exchange = exchange
        self.config = config
        self.trader = PaperTrader(config)
        self.refiner = StrategyRefiner(config)
        self.scanner = SignalScanner(config, self.trader, self.refiner, verbose=False)
        self.session = SessionManager(config)
        self.weekly_classifier = WeeklyProfileClassifier()
        self.weekly_bias: Optional[WeeklyBias] = None
        self.data: MarketData = {}

        self._last_weekly: Optional[datetime] = None
        self._last_refine: Optional[datetime] = None
        self._closed_since_refine = 0

    async def run(self, start: datetime, end: datetime, step_minutes: int = 5) -> BacktestReport:
        """Replay ``[start, end]`` in *step_minutes* steps.

        Raises:
            ValueError: If *step_minutes* is not positive.
        """
        if step_minutes <= 0:
            raise ValueError(f"step_minutes must be positive, got {step_minutes}")

        step = timedelta(minutes=step_minutes)
        total_steps = max(int((end - start) / step), 0)
        log_every = total_steps // PROGRESS_UPDATES
        initial_balance = self.trader.balance

        logger.info("=== BACKTEST START ===")
        logger.info(
            "Period: %s to %s (%d steps of %dm)",
            f"{start:%Y-%m-%d}", f"{end:%Y-%m-%d}", total_steps, step_minutes,
        )
        logger.info("Initial balance: $%.2f", initial_balance)

        drawdown = DrawdownTracker(initial_balance)
        equity_curve: list[tuple[datetime, float]] = []
        self._last_refine = start

        now = start
        step_count = 0
        while now <= end:
            step_count += 1
            await self.step(now)

            drawdown.update(self.trader.balance)
            equity_curve.append((now, self.trader.balance))

            if log_every > 0 and step_count % log_every == 0:
                logger.info(
                    "  Progress: %.0f%% | %s | Balance: $%.2f | Trades: %d | Signals: %d",
                    step_count / total_steps * 100, f"{now:%Y-%m-%d %H:%M}",
                    self.trader.balance, len(self.trader.trade_history),
                    self.scanner.total_signals,
                )
            now += step

        # Settle what the last visible price decides.
        try:
            price = await self.exchange.current_price()
        except LookupError:
            price = None
        if price is not None:
            self.trader.check_positions(price)

        logger.info("=== BACKTEST COMPLETE ===")
        return build_report(
            self.trader,
            initial_balance,
            start,
            end,
            equity_curve,
            drawdown.max_drawdown,
            drawdown.max_drawdown_pct,
            self.scanner.total_signals,
            self.scanner.signals_filtered,
        )

    async def step(self, now: datetime) -> None:
        """Run the whole pipeline once at simulated time *now*."""
        self.exchange.set_time(now)
        self.trader.sim_time = now

        await self._refresh_data()
        self.session.update(self.config, now)

        if self._last_weekly is None or now - self._last_weekly >= WEEKLY_INTERVAL:
            self._analyze_weekly()
            self._last_weekly = now

        await self._check_positions(now)

        for scale in self.config.scales:
            await self.scanner.scan(
                scale, self.data, self.session, self.weekly_bias,
                self.exchange, now, self.config,
            )

        if self._last_refine is not None and (
            (now - self._last_refine).total_seconds() > self.config.analysis_interval
            or self._closed_since_refine >= REFINE_AFTER_CLOSES
        ):
            self._refine(now)
            self._last_refine = now
            self._closed_since_refine = 0

    # ── Steps ────────────────────────────────────────────────────────────

    async def _refresh_data(self) -> None:
        for tf, limit in REFRESH_LIMITS:
            series = await self.exchange.fetch_ohlcv(tf, limit)
            if series:
                self.data[tf] = series
        h4 = await self.exchange.four_hour_series(H4_LIMIT)
        if h4:
            self.data[Timeframe.H4] = h4

    def _analyze_weekly(self) -> None:
        daily = self.data.get(Timeframe.D1)
        htf = self.data.get(Timeframe.H1)
        if not daily or not htf:
            return
        self.weekly_bias = self.weekly_classifier.classify(
            daily, htf, self.session.day_of_week(), self.config,
        )

    async def _check_positions(self, now: datetime) -> None:
        if not self.trader.open_positions:
            return
        try:
            price = await self.exchange.current_price()
        except LookupError:
            return

        self.scanner.trail_stops(self.data, self.config, price)
        closed = self.trader.check_positions(price)
        self._closed_since_refine += len(closed)
        self.scanner.on_closed(closed, now, self.config)

    def _refine(self, now: datetime) -> None:
        records = [r for r in self.trader.trade_records.values() if r.resolved]
        if len(records) < self.config.min_sample_per_bucket:
            return
        self.config, _ = self.refiner.refine(records, self.config, now)
