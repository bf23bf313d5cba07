"""Per-scale scan pipeline shared by the live loop and the backtest runner.

Owns the per-scale slot bookkeeping (one open position per scale, cooldown
after a close), trails open stops, and turns a passing signal into a paper
position with its trade-record metadata.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from ictbot.analysis.strategy_refiner import StrategyRefiner
from ictbot.broker.models import Position
from ictbot.broker.paper_trader import PaperTrader
from ictbot.broker.provider import MarketDataProvider
from ictbot.config import Config
from ictbot.models.scale import Scale
from ictbot.models.trade_record import TradeMetadata
from ictbot.risk.trailing_stop import TrailingStop
from ictbot.strategy.fractal_engine import FractalEngine, MarketData
from ictbot.strategy.models import HftSignal, WeeklyBias
from ictbot.strategy.sessions import SessionManager

logger = logging.getLogger("ictbot.scanner")


class SignalScanner:
    """Gates, evaluates and opens trades one scale at a time.

    Args:
        config: Initial configuration; later calls receive the current snapshot.
        trader: Ledger positions are opened against.
        refiner: Supplies the scale/session skip list.
        verbose: Log signals and closes at INFO instead of DEBUG.
    """

    def __init__(
        self,
        config: Config,
        trader: PaperTrader,
        refiner: StrategyRefiner,
        verbose: bool = True,
    ) -> None:
        self.fractal = FractalEngine(config)
        self.trader = trader
        self.refiner = refiner
        self.scale_positions: dict[Scale, int] = {}
        self.cooldowns: dict[Scale, datetime] = {}
        self.total_signals = 0
        self.signals_filtered = 0
        self._trails: dict[int, TrailingStop] = {}
        self._level = logging.INFO if verbose else logging.DEBUG

    # ── Open positions ───────────────────────────────────────────────────

    def trail_stops(self, data: MarketData, config: Config, current_price: float) -> None:
        """Ratchet every open stop to the nearest protected swing short of *current_price*."""
        candles = data.get(config.trail_timeframe)
        if not candles:
            return
        for position in self.trader.open_positions:
            trail = self._trails.get(position.id)
            if trail is None or trail.current_sl != position.stop_loss:
                trail = TrailingStop(position.stop_loss, position.direction)
                self._trails[position.id] = trail
            new_sl = trail.update(candles, current_price)
            if new_sl is not None:
                self.trader.update_stop(position.id, new_sl, current_price)

    def on_closed(self, closed: list[Position], now: datetime, config: Config) -> None:
        """Free the scale slots of *closed* positions and start their cooldowns."""
        for position in closed:
            self._trails.pop(position.id, None)
            logger.log(
                self._level,
                "Position #%d CLOSED (%s)%s: PnL $%+.2f | $%.2f -> $%.2f",
                position.id,
                "WIN" if position.pnl > 0 else "LOSS",
                f" ({len(position.partial_exits)} partials)" if position.partial_exits else "",
                position.pnl,
                position.entry_price,
                position.exit_price or 0.0,
            )
            for scale, pid in list(self.scale_positions.items()):
                if pid == position.id:
                    del self.scale_positions[scale]
                    self.cooldowns[scale] = now + timedelta(minutes=config.cooldown_minutes)

    # ── Scanning ─────────────────────────────────────────────────────────

    def ready(
        self,
        scale: Scale,
        data: MarketData,
        session: SessionManager,
        bias: Optional[WeeklyBias],
        now: datetime,
        config: Config,
    ) -> bool:
        """Whether every pre-evaluation gate passes for *scale*."""
        if bias is None:
            return False
        if session.day_of_week() == "Monday":
            return False
        if not session.is_killzone():
            return False
        if not session.should_trade_today(config, bias.profile):
            return False
        if scale in self.scale_positions:
            return False

        until = self.cooldowns.get(scale)
        if until is not None:
            if now < until:
                return False
            del self.cooldowns[scale]

        if not self.trader.can_open_position():
            return False
        if not data:
            return False
        return not self.refiner.should_skip(scale.value, session.current_session)

    async def scan(
        self,
        scale: Scale,
        data: MarketData,
        session: SessionManager,
        bias: Optional[WeeklyBias],
        provider: MarketDataProvider,
        now: datetime,
        config: Config,
    ) -> Optional[Position]:
        """Run the full gate-evaluate-open pipeline for one scale.

        Returns:
            The opened position, or ``None`` when any gate or filter rejects.
        """
        if not self.ready(scale, data, session, bias, now, config):
            return None
        if scale not in self.fractal.scales:
            return None

        try:
            midnight_open = await provider.midnight_open()
        except httpx.HTTPError as exc:
            logger.debug("Midnight open unavailable: %s", exc)
            midnight_open = None

        signals = self.fractal.evaluate_scales(data, midnight_open, session, config)
        signal = next((s for s in signals if s.scale == scale.value), None)
        if signal is None:
            return None
        self.total_signals += 1

        if signal.confidence < config.scales[scale].min_confidence:
            self.signals_filtered += 1
            return None

        tp_dist_pct = abs(signal.take_profit - signal.entry_price) / signal.entry_price
        min_tp_pct = (config.fee_rate + config.slippage_rate) * 2.0 * config.min_tp_multiple
        if tp_dist_pct < min_tp_pct:
            self.signals_filtered += 1
            logger.debug(
                "Skipping %s signal: TP dist %.4f%% < min %.4f%%",
                scale, tp_dist_pct * 100, min_tp_pct * 100,
            )
            return None

        self._log_signal(signal)
        position = self.trader.open_position(
            signal.to_trade_signal(), scale.value, _metadata(signal, bias, session.day_of_week()),
        )
        if position is None:
            return None

        self.scale_positions[scale] = position.id
        kelly = self.trader.last_kelly_result
        logger.log(
            self._level,
            "  Position #%d opened: $%.2f (%.6f BTC)%s",
            position.id, position.size_usd, position.size_btc,
            (
                f" | Kelly {kelly.applied_fraction:.4f} "
                f"({'default' if kelly.using_default else 'calculated'}) "
                f"edge {kelly.edge:+.4f} n={kelly.sample_size}"
                if kelly is not None else ""
            ),
        )
        return position

    def _log_signal(self, signal: HftSignal) -> None:
        log = logger.log
        log(self._level, "HFT SIGNAL: %s %s", signal.scale_name, signal.direction)
        log(self._level, "  Entry: $%.2f", signal.entry_price)
        log(self._level, "  Stop Loss: $%.2f [%s] %s", signal.stop_loss, signal.stop_mode, signal.stop_reason)
        log(self._level, "  Take Profit: $%.2f [%s]", signal.take_profit, signal.tp_label)
        for lvl in signal.tp_levels:
            log(self._level, "    %s: $%.2f%s", lvl.label, lvl.price, " *PDA*" if lvl.pda_confluence else "")
        log(
            self._level, "  Confidence: %.1f%% | CISD: %s | Cross-scale: %d",
            signal.confidence * 100, "confirmed" if signal.cisd_confirmed else "no",
            signal.cross_scale_confluence,
        )
        if signal.alignment:
            log(self._level, "  Alignment: %s", " | ".join(f"{a.tf}:{a.trend}" for a in signal.alignment))
        log(self._level, "  %s", signal.reason)


def _metadata(signal: HftSignal, bias: WeeklyBias, day: str) -> TradeMetadata:
    pda = signal.pda_engaged
    return TradeMetadata(
        scale=signal.scale,
        direction=signal.direction.value,
        confidence=signal.confidence,
        session=signal.session,
        session_weight=signal.session_weight,
        cisd_confirmed=signal.cisd_confirmed,
        pda_type=pda.pda_type.value,
        pda_direction=pda.direction.value,
        pda_zone=pda.zone.value,
        pda_strength=pda.strength,
        stop_mode=signal.stop_mode,
        tp_label=signal.tp_label,
        tp_levels=signal.tp_levels,
        cross_scale_confluence=signal.cross_scale_confluence,
        alignment=signal.alignment,
        weekly_profile=bias.profile.value,
        weekly_direction=bias.direction.value,
        weekly_confidence=bias.confidence,
        day_of_week=day,
    )
