"""Trading engine — the live paper-trading loop.

One cooperative loop ticks about once a second. Each sub-task runs on its
own cadence: market data refresh, weekly profile classification, position
management, the alignment dashboard, per-scale scans, and strategy
refinement. Only the market-data provider calls suspend.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from ictbot.analysis.strategy_refiner import Adjustment, StrategyRefiner
from ictbot.api.routers import update_bot_status
from ictbot.broker.paper_trader import PaperTrader
from ictbot.broker.provider import MarketDataProvider
from ictbot.config import Config
from ictbot.models.timeframe import Timeframe
from ictbot.repos.refinement_repo import RefinementRepo
from ictbot.risk.drawdown import DrawdownTracker
from ictbot.scanner import SignalScanner
from ictbot.strategy.fractal_engine import MarketData
from ictbot.strategy.models import WeeklyBias
from ictbot.strategy.sessions import SessionManager
from ictbot.strategy.weekly_profile import WeeklyProfileClassifier

logger = logging.getLogger("ictbot")

WEEKLY_ANALYSIS_INTERVAL = 3600.0
POSITION_CHECK_INTERVAL = 10.0
ALIGNMENT_LOG_INTERVAL = 300.0
DATA_REFRESH_INTERVAL = 5.0
REFINE_AFTER_CLOSES = 10
TICK_SLEEP = 1.0
DAILY_LOOKBACK = 14
H4_LIMIT = 200


class TradingEngine:
    """Runs the scan / manage / refine cycle against a market-data provider.

    Args:
        config: Initial configuration. Refinement swaps in adjusted copies.
        provider: Live (or replay) market-data source.
        trader: Paper ledger; a persistent one under ``config.state_dir``
            is created when omitted.
        refiner: Strategy refiner; a persistent one is created when omitted.
    """

    def __init__(
        self,
        config: Config,
        provider: MarketDataProvider,
        trader: Optional[PaperTrader] = None,
        refiner: Optional[StrategyRefiner] = None,
    ) -> None:
        self._config = config
        self._config_lock = asyncio.Lock()
        self._provider = provider
        self.trader = trader or PaperTrader.persistent(config)
        self.refiner = refiner or StrategyRefiner(config, RefinementRepo(config.state_dir))
        self.scanner = SignalScanner(config, self.trader, self.refiner)
        self.session = SessionManager(config)
        self.weekly_classifier = WeeklyProfileClassifier()
        self.weekly_bias: Optional[WeeklyBias] = None
        self.data: MarketData = {}

        self._drawdown = DrawdownTracker(max(self.trader.balance, 1e-9))
        self._running = False
        self._cycle_count = 0
        self._closed_since_analysis = 0
        # Monotonic timestamps of each cadence's last run; absent means due.
        self._last_run: dict[str, float] = {}
        self._last_scan: dict[str, float] = {}

    @property
    def config(self) -> Config:
        return self._config

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Log the startup banner and publish the initial status."""
        cfg = self._config
        logger.info("=" * 60)
        logger.info("ICT HFT Bot starting up")
        logger.info("Mode: %s", "PAPER TRADING" if cfg.paper_trade else "LIVE DATA, PAPER LEDGER")
        logger.info("Symbol: %s", cfg.symbol)
        logger.info("Entry scales:")
        for scale_cfg in cfg.scales.values():
            logger.info(
                "  %s: entry=%s aligned=%s scan=%ds",
                scale_cfg.name, scale_cfg.entry_tf,
                "+".join(tf.value for tf in scale_cfg.alignment_tfs), scale_cfg.scan_interval,
            )
        logger.info("=" * 60)

        update_bot_status(
            mode="paper",
            running=True,
            symbol=cfg.symbol,
            started_at=datetime.now(timezone.utc).isoformat(),
            balance=self.trader.balance,
        )
        self._running = True

    def stop(self) -> None:
        """Signal the engine to stop after the current tick."""
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ── Loop ─────────────────────────────────────────────────────────────

    async def run(self, max_cycles: int = 0) -> None:
        """Tick until :meth:`stop` is called (or *max_cycles* ticks have run).

        A failing tick is logged and the loop carries on.
        """
        if not self._running:
            await self.initialize()
        logger.info("Bot is now running. Press Ctrl+C to stop.")
        self.log_status()

        cycle = 0
        while self._running:
            cycle += 1
            self._cycle_count += 1
            try:
                await self.run_once()
            except Exception as exc:
                logger.exception("Tick %d error: %s", cycle, exc)

            update_bot_status(
                running=True,
                cycle_count=self._cycle_count,
                last_cycle_at=datetime.now(timezone.utc).isoformat(),
                balance=self.trader.balance,
                open_positions=len(self.trader.open_positions),
                drawdown_pct=round(self._drawdown.drawdown_pct, 2),
            )

            if max_cycles > 0 and cycle >= max_cycles:
                break
            await asyncio.sleep(TICK_SLEEP)

        self._running = False
        logger.info("Shutting down...")
        self.log_status()
        update_bot_status(running=False)
        logger.info("Bot stopped.")

    async def run_once(self, utc_now: Optional[datetime] = None) -> list[str]:
        """Run every sub-task that is due.

        Args:
            utc_now: Clock override for the session and cooldowns.

        Returns:
            Names of the sub-tasks that ran, e.g. ``["refresh", "scan:5m"]``.
        """
        async with self._config_lock:
            cfg = self._config
        now = utc_now or datetime.now(timezone.utc)
        self.session.update(cfg, now)
        ran: list[str] = []

        if self._due("refresh", DATA_REFRESH_INTERVAL):
            await self.refresh_data(cfg)
            ran.append("refresh")

        if self._due("weekly", WEEKLY_ANALYSIS_INTERVAL) and self._analyze_weekly(cfg):
            ran.append("weekly")

        if self._due("positions", POSITION_CHECK_INTERVAL):
            await self._check_positions(cfg, now)
            ran.append("positions")

        if self._due("alignment", ALIGNMENT_LOG_INTERVAL):
            self._log_alignment()
            ran.append("alignment")

        for scale, scale_cfg in cfg.scales.items():
            last = self._last_scan.get(scale.value)
            if last is not None and time.monotonic() - last < scale_cfg.scan_interval:
                continue
            self._last_scan[scale.value] = time.monotonic()
            await self.scanner.scan(scale, self.data, self.session, self.weekly_bias, self._provider, now, cfg)
            ran.append(f"scan:{scale}")

        if self._due("analysis", cfg.analysis_interval) or self._closed_since_analysis >= REFINE_AFTER_CLOSES:
            self._last_run["analysis"] = time.monotonic()
            self._closed_since_analysis = 0
            await self.run_analysis(now)
            ran.append("analysis")

        self._drawdown.update(self.trader.balance)
        return ran

    def _due(self, name: str, interval: float) -> bool:
        """``True`` (and the cadence restarted) when *name* last ran over *interval* ago."""
        last = self._last_run.get(name)
        now = time.monotonic()
        if last is not None and now - last < interval:
            return False
        self._last_run[name] = now
        return True

    # ── Sub-tasks ────────────────────────────────────────────────────────

    async def refresh_data(self, cfg: Config) -> None:
        """Refresh every timeframe; a failed fetch keeps that timeframe's cached series."""
        limits = (
            (Timeframe.M1, cfg.data_lookback),
            (Timeframe.M5, cfg.data_lookback),
            (Timeframe.M15, cfg.data_lookback),
            (Timeframe.H1, cfg.data_lookback),
            (Timeframe.D1, DAILY_LOOKBACK),
        )
        for tf, limit in limits:
            try:
                self.data[tf] = await self._provider.fetch_ohlcv(tf, limit)
            except (httpx.HTTPError, LookupError) as exc:
                logger.debug("Data refresh %s: %s", tf, exc)
        try:
            self.data[Timeframe.H4] = await self._provider.four_hour_series(H4_LIMIT)
        except (httpx.HTTPError, LookupError) as exc:
            logger.debug("Data refresh 4h: %s", exc)

    def _analyze_weekly(self, cfg: Config) -> bool:
        daily = self.data.get(Timeframe.D1)
        htf = self.data.get(Timeframe.H1)
        if not daily or not htf:
            # Retry on the next tick once data has arrived.
            self._last_run.pop("weekly", None)
            return False

        logger.info("--- Weekly Profile Analysis ---")
        bias = self.weekly_classifier.classify(daily, htf, self.session.day_of_week(), cfg)
        logger.info(
            "Profile: %s | Direction: %s | Confidence: %.1f%%",
            bias.profile, bias.direction, bias.confidence * 100,
        )
        if bias.tgif_active:
            logger.info("TGIF ACTIVE")
        self.weekly_bias = bias
        return True

    async def _check_positions(self, cfg: Config, now: datetime) -> None:
        if not self.trader.open_positions:
            return
        try:
            price = await self._provider.current_price()
        except (httpx.HTTPError, LookupError) as exc:
            logger.error("Position check error: %s", exc)
            return

        self.scanner.trail_stops(self.data, cfg, price)
        before = {p.id: len(p.partial_exits) for p in self.trader.open_positions}
        closed = self.trader.check_positions(price)

        for position in [*self.trader.open_positions, *closed]:
            for exit_ in position.partial_exits[before.get(position.id, 0):]:
                logger.info(
                    "Position #%d PARTIAL TP (%s SD): %.6f BTC @ $%.2f PnL $%+.2f",
                    position.id, exit_.level, exit_.size_btc, exit_.price, exit_.pnl,
                )

        self._closed_since_analysis += len(closed)
        self.scanner.on_closed(closed, now, cfg)

    def _log_alignment(self) -> None:
        if not self.data:
            return
        logger.info("--- Alignment Dashboard ---")
        for state in self.scanner.fractal.get_alignment_summary(self.data).values():
            logger.info(
                "  %s: %s (%s) [%s]",
                state.name,
                "ALIGNED" if state.aligned else "NOT ALIGNED",
                state.direction,
                " | ".join(f"{d.tf}:{d.trend}" for d in state.details),
            )

    async def run_analysis(self, now: Optional[datetime] = None) -> list[Adjustment]:
        """Refine the configuration from resolved trade records.

        Holds the configuration lock while the adjusted config is swapped in.
        Nothing happens until at least ``min_sample_per_bucket`` trades closed.
        """
        records = [r for r in self.trader.trade_records.values() if r.resolved]
        if len(records) < self._config.min_sample_per_bucket:
            return []

        async with self._config_lock:
            self._config, adjustments = self.refiner.refine(records, self._config, now)

        if adjustments:
            logger.info("--- Strategy Refinement --- %d adjustment(s)", len(adjustments))
            if self.refiner.skip_combos:
                logger.info("  Skip combos: %s", sorted(self.refiner.skip_combos))
        else:
            logger.debug("Analysis complete, no adjustments needed")
        return adjustments

    # ── Status ───────────────────────────────────────────────────────────

    def status(self) -> dict:
        """Snapshot of the engine for the status API and console."""
        stats = self.trader.get_stats()
        bias = self.weekly_bias
        return {
            "running": self._running,
            "symbol": self._config.symbol,
            "cycle_count": self._cycle_count,
            "session": self.session.current_session,
            "session_weight": self.session.session_weight,
            "day": self.session.day_of_week(),
            "weekly_profile": bias.profile.value if bias else None,
            "weekly_direction": bias.direction.value if bias else None,
            "weekly_confidence": bias.confidence if bias else None,
            "balance": stats.balance,
            "total_trades": stats.total_trades,
            "win_rate": stats.win_rate,
            "total_pnl": stats.total_pnl,
            "open_positions": stats.open_positions,
            "drawdown_pct": round(self._drawdown.drawdown_pct, 2),
            "scale_slots": {str(k): v for k, v in self.scanner.scale_positions.items()},
            "kelly_fraction": stats.kelly_fraction,
            "kelly_using_default": stats.kelly_using_default,
            "kelly_edge": stats.kelly_edge,
            "kelly_sample": stats.kelly_sample,
            "skip_combos": sorted(self.refiner.skip_combos),
        }

    def log_status(self) -> None:
        status = self.status()
        logger.info("Session: %s (weight: %s)", status["session"], status["session_weight"])
        logger.info("Day: %s", status["day"])
        logger.info("Balance: $%.2f", status["balance"])
        logger.info("Trades: %d | Win Rate: %s%%", status["total_trades"], status["win_rate"])
        logger.info("PnL: $%+.2f", status["total_pnl"])
        logger.info("Open: %d | Scale slots: %s", status["open_positions"], status["scale_slots"])
        logger.info(
            "Kelly: f=%.4f (%s) | Edge: %+.4f | Sample: %d",
            status["kelly_fraction"],
            "default" if status["kelly_using_default"] else "calculated",
            status["kelly_edge"], status["kelly_sample"],
        )
        for scale, kr in self.trader.get_kelly_by_scale().items():
            if kr.sample_size > 0:
                logger.info(
                    "  Kelly %s: f=%.4f WR=%.1f%% Payoff=%.2f Edge=%+.4f (%d trades)",
                    scale, kr.applied_fraction, kr.win_rate * 100, kr.payoff_ratio,
                    kr.edge, kr.sample_size,
                )
