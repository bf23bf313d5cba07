"""Fractal confluence engine — one six-step pipeline per entry scale.

Pipeline (first failing gate ends the evaluation with no signal):

1. Alignment: every alignment timeframe shows the same non-neutral trend.
2. Structure PDAs and dealing range on the structure timeframe.
3. Judas swing on the last 60 entry bars.
4. PDA engagement: the strongest matching array touched by the last 10 bars.
5. CISD on the confirmation timeframe (raises base confidence 0.4 -> 0.8).
6. Signal assembly: SD / ERL target, protected-swing stop, confidence.

Each :class:`HftScale` owns its detectors; nothing is shared between scales.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from ictbot.config import Config
from ictbot.models.candle import CandleSeries
from ictbot.models.enums import Direction, LiquidityType, PdaType, Trend, Zone
from ictbot.models.scale import Scale
from ictbot.models.timeframe import Timeframe
from ictbot.models.trade_record import AlignmentInfo, TpLevelInfo
from ictbot.risk.stop_loss import StopLossEngine
from ictbot.strategy.cisd import CisdDetector
from ictbot.strategy.liquidity import LiquidityDetector
from ictbot.strategy.models import (
    AlignmentState,
    DealingRange,
    HftSignal,
    LiquidityPool,
    Pda,
)
from ictbot.strategy.pd_arrays import PdArrayDetector
from ictbot.strategy.sd_projection import StdDevProjector
from ictbot.strategy.sessions import SessionManager
from ictbot.strategy.structure import MarketStructure

logger = logging.getLogger("ictbot.fractal")

JUDAS_LOOKBACK = 60
ENGAGEMENT_LOOKBACK = 10
VOLATILITY_LOOKBACK = 30
VOLATILITY_LIMIT = 0.03
HTF_POOL_STRENGTH = 0.5
HTF_POOL_DEDUP = 0.001
ERL_MIN_TOUCHES = 2
ERL_RELIABLE_RATIO = 0.6

MarketData = dict[Timeframe, CandleSeries]


@dataclass(frozen=True)
class AlignmentSummary:
    name: str
    aligned: bool
    direction: str
    alignment_tfs: tuple[str, ...]
    details: tuple[AlignmentInfo, ...]


class HftScale:
    """Evaluation state for one scale."""

    def __init__(self, scale: Scale, config: Config) -> None:
        scale_cfg = config.scales[scale]
        self.scale = scale
        self.name = scale_cfg.name
        self.entry_tf = scale_cfg.entry_tf
        self.alignment_tfs = scale_cfg.alignment_tfs
        self.structure_tf = scale_cfg.structure_tf
        self.confirm_tf = scale_cfg.confirm_tf

        self._pd_detector = PdArrayDetector()
        self._entry_pd_detector = PdArrayDetector()
        self._cisd = CisdDetector()
        self._stop_engine = StopLossEngine()
        self._projector = StdDevProjector(config.pda_confluence_tolerance)
        self._liquidity = LiquidityDetector(tolerance=config.liquidity_tolerance)
        self._alignment_analyzers = {tf: MarketStructure() for tf in self.alignment_tfs}
        self._structure = MarketStructure()

        self.last_alignment: list[AlignmentState] = []
        self._structure_pdas: list[Pda] = []

    def evaluate(
        self,
        data: MarketData,
        reference_price: Optional[float],
        session: SessionManager,
        config: Config,
    ) -> Optional[HftSignal]:
        """Run the pipeline on *data*; ``None`` when any gate fails.

        Args:
            data: Latest series per timeframe.
            reference_price: Judas-swing pivot (today's midnight open), if known.
            session: Already updated for the evaluation time.
            config: Configuration snapshot for this tick.
        """
        entry = data.get(self.entry_tf)
        struct = data.get(self.structure_tf)
        confirm = data.get(self.confirm_tf)
        if not entry or not struct or not confirm:
            return None

        direction = self.check_alignment(data)
        if direction is None:
            return None

        self._structure.analyze(struct)
        dealing_range = self._structure.get_dealing_range(struct)
        self._structure_pdas = list(self._pd_detector.detect_all(
            struct, self.structure_tf,
            config.fvg_min_gap_percent, config.ob_lookback, config.breaker_lookback,
        ))

        if not self._judas_swing(entry, direction, reference_price, dealing_range):
            logger.debug("[%s] %s alignment passed, no Judas swing", self.name, direction)
            return None

        engaged = self._engaged_pda(entry, direction)
        if engaged is None:
            logger.debug("[%s] Judas swing passed, no PDA engaged", self.name)
            return None

        entry_pdas = self._entry_pd_detector.detect_all(
            entry, self.entry_tf,
            config.fvg_min_gap_percent, config.ob_lookback, config.breaker_lookback,
        )
        breakers = [
            p for p in (*self._structure_pdas, *entry_pdas) if p.pda_type is PdaType.BRK
        ]
        cisd_confirmed = bool(self._cisd.detect(confirm, breakers))
        base_confidence = 0.8 if cisd_confirmed else 0.4

        return self._build_signal(
            entry, direction, engaged, dealing_range, cisd_confirmed,
            base_confidence, session, config,
        )

    def check_alignment(self, data: MarketData) -> Optional[Trend]:
        """Shared trend of all alignment timeframes, else ``None``."""
        self.last_alignment = []
        trends: list[Trend] = []
        for tf in self.alignment_tfs:
            candles = data.get(tf)
            if not candles:
                return None
            analyzer = self._alignment_analyzers[tf]
            trend = analyzer.analyze(candles)
            self.last_alignment.append(
                AlignmentState(
                    timeframe=tf,
                    trend=trend,
                    dealing_range=analyzer.get_dealing_range(candles),
                    swing_count=len(analyzer.swing_highs) + len(analyzer.swing_lows),
                    bos_count=len(analyzer.bos_events),
                )
            )
            if trend is Trend.NEUTRAL:
                return None
            trends.append(trend)

        if trends and all(t is trends[0] for t in trends):
            return trends[0]
        return None

    # ── Gates ────────────────────────────────────────────────────────────

    @staticmethod
    def _judas_swing(
        entry: CandleSeries,
        direction: Trend,
        reference_price: Optional[float],
        dealing_range: DealingRange,
    ) -> bool:
        pivot = reference_price if reference_price is not None else dealing_range.equilibrium
        if pivot == 0:
            return False

        recent = entry.tail(JUDAS_LOOKBACK)
        last = recent.last()
        if last is None:
            return False
        current = last.close

        if direction is Trend.BULLISH:
            if recent.any_low_below(pivot) and current > pivot:
                return True
            return dealing_range.low < current < dealing_range.equilibrium
        if direction is Trend.BEARISH:
            if recent.any_high_above(pivot) and current < pivot:
                return True
            return dealing_range.equilibrium < current < dealing_range.high
        return False

    def _engaged_pda(self, entry: CandleSeries, direction: Trend) -> Optional[Pda]:
        if not self._structure_pdas:
            return None
        recent = entry.tail(ENGAGEMENT_LOOKBACK)
        low, high = recent.lows_min(), recent.highs_max()

        preferred = Zone.DISCOUNT if direction is Trend.BULLISH else Zone.PREMIUM
        matching = [p for p in self._structure_pdas if p.direction is direction]
        candidates = [p for p in matching if p.zone is preferred] or matching

        for pda in sorted(candidates, key=lambda p: p.strength, reverse=True):
            if pda.overlaps(low, high):
                return pda
        return None

    # ── Signal assembly ──────────────────────────────────────────────────

    def _build_signal(
        self,
        entry: CandleSeries,
        direction: Trend,
        pda: Pda,
        dealing_range: DealingRange,
        cisd: bool,
        confidence: float,
        session: SessionManager,
        config: Config,
    ) -> Optional[HftSignal]:
        current = entry[-1].close
        trade_dir = Direction.LONG if direction is Trend.BULLISH else Direction.SHORT

        projection = self._projector.project(entry, direction, self._structure_pdas)
        take_profit = projection.recommended_tp
        tp_label = projection.recommended_label
        if trade_dir is Direction.LONG and (not projection.levels or take_profit <= current):
            take_profit, tp_label = dealing_range.high, "DR High (SD fallback)"
        elif trade_dir is Direction.SHORT and (not projection.levels or take_profit >= current):
            take_profit, tp_label = dealing_range.low, "DR Low (SD fallback)"

        pools = self._pools(entry)
        erl = LiquidityDetector.nearest_erl_target(pools, current, trade_dir)
        if erl is not None and erl.touches >= ERL_MIN_TOUCHES:
            erl_dist = abs(erl.price - current)
            sd_dist = abs(take_profit - current)
            if erl_dist > sd_dist:
                take_profit = erl.price
                tp_label = f"ERL {erl.touches}x touches ({erl.price:.0f})"
            elif erl_dist > sd_dist * ERL_RELIABLE_RATIO and erl.strength > 0.5:
                take_profit = erl.price
                tp_label = f"ERL {erl.touches}x reliable ({erl.price:.0f})"

        tp_levels = [
            TpLevelInfo(
                label=lvl.label,
                price=lvl.price,
                pda_confluence=lvl.has_pda_confluence,
                level=lvl.level,
            )
            for lvl in projection.levels
        ]
        # Stretch the last rung to the pool so partial exits can reach it.
        if erl is not None and erl.touches >= ERL_MIN_TOUCHES:
            for i, rung in enumerate(tp_levels):
                if rung.level == -4.5 and abs(erl.price - current) > abs(rung.price - current):
                    tp_levels[i] = replace(
                        rung,
                        price=round(erl.price, 2),
                        label=f"ERL {erl.touches}x ({erl.price:.0f})",
                    )

        if (take_profit - current) * trade_dir.sign <= 0:
            logger.debug("[%s] no target beyond %.2f", self.name, current)
            return None

        self._stop_engine.find_protected_swings(entry, self._structure_pdas)
        stop = self._stop_engine.get_stop_loss(
            current, trade_dir, take_profit, entry, self._structure_pdas,
        )
        if (current - stop.price) * trade_dir.sign <= 0:
            logger.debug("[%s] stop %.2f not behind entry %.2f", self.name, stop.price, current)
            return None

        scale_cfg = config.scales[self.scale]
        adjusted = confidence * scale_cfg.weight * session.session_weight
        adjusted *= session.silver_bullet_multiplier()
        recent = entry.tail(VOLATILITY_LOOKBACK)
        if (recent.highs_max() - recent.lows_min()) / current > VOLATILITY_LIMIT and not cisd:
            adjusted *= 0.5

        reason = (
            f"[{self.name}] {trade_dir.value.upper()} "
            f"| Aligned: {'+'.join(tf.value for tf in self.alignment_tfs)} -> {direction} "
            f"| PDA: {pda.pda_type}({pda.direction}) @ {pda.midpoint:.2f} "
            f"| CISD: {'YES' if cisd else 'NO'} "
            f"| SL: {stop.mode} ({stop.risk_percent:.2f}%) "
            f"| TP: {tp_label} | SD: {projection.range_size:.2f}"
        )

        return HftSignal(
            scale=self.scale.value,
            scale_name=self.name,
            direction=trade_dir,
            entry_price=round(current, 2),
            stop_loss=round(stop.price, 2),
            take_profit=round(take_profit, 2),
            pda_engaged=pda,
            cisd_confirmed=cisd,
            confidence=round(min(adjusted, 1.0), 3),
            session=session.current_session,
            session_weight=session.session_weight,
            reason=reason,
            stop_mode=stop.mode.value,
            stop_reason=stop.reason,
            tp_label=tp_label,
            tp_levels=tuple(tp_levels),
            alignment=tuple(
                AlignmentInfo(tf=a.timeframe.value, trend=a.trend.value, bos=a.bos_count)
                for a in self.last_alignment
            ),
        )

    def _pools(self, entry: CandleSeries) -> list[LiquidityPool]:
        """Entry-timeframe pools plus unbroken structure swings not already covered."""
        pools = list(self._liquidity.detect(entry))
        levels = self._structure.get_liquidity_levels()
        stamp = entry[-1].timestamp
        for pool_type, prices in ((LiquidityType.BSL, levels.bsl), (LiquidityType.SSL, levels.ssl)):
            for price in prices:
                covered = any(
                    p.pool_type is pool_type and abs(p.price - price) / price < HTF_POOL_DEDUP
                    for p in pools
                )
                if not covered:
                    pools.append(
                        LiquidityPool(
                            pool_type=pool_type,
                            price=price,
                            touches=1,
                            first_touch=stamp,
                            last_touch=stamp,
                            swept=False,
                            strength=HTF_POOL_STRENGTH,
                        )
                    )
        return pools


class FractalEngine:
    """All enabled scales plus the cross-scale confluence pass."""

    def __init__(self, config: Config) -> None:
        self.scales: dict[Scale, HftScale] = {
            scale: HftScale(scale, config)
            for scale in Scale
            if scale in config.scales and config.scales[scale].enabled
        }

    def evaluate_scales(
        self,
        data: MarketData,
        reference_price: Optional[float],
        session: SessionManager,
        config: Config,
    ) -> list[HftSignal]:
        """Evaluate every scale once and apply cross-scale confluence.

        Returns:
            One signal per scale that produced one, in scale order. The
            confidence floor is not applied.
        """
        raw = [
            signal
            for scale in self.scales.values()
            if (signal := scale.evaluate(data, reference_price, session, config)) is not None
        ]
        if len(raw) < 2:
            return raw

        total = len(raw)
        directions = [s.direction for s in raw]
        adjusted: list[HftSignal] = []
        for signal in raw:
            agreeing = directions.count(signal.direction)
            bonus = (agreeing - 1) * config.cross_scale_confluence_bonus
            reason = signal.reason
            if agreeing > 1:
                reason += f" | CROSS-SCALE: {agreeing}/{total} entry scales agree"
            adjusted.append(
                replace(
                    signal,
                    cross_scale_confluence=agreeing,
                    confidence=round(min(signal.confidence + bonus, 1.0), 3),
                    reason=reason,
                )
            )
        return adjusted

    def evaluate_all(
        self,
        data: MarketData,
        reference_price: Optional[float],
        session: SessionManager,
        config: Config,
    ) -> list[HftSignal]:
        """Evaluate every scale, apply cross-scale confluence and the confidence floor.

        Returns:
            Surviving signals sorted by confidence, highest first.
        """
        survivors = [
            s for s in self.evaluate_scales(data, reference_price, session, config)
            if Scale(s.scale) in config.scales
            and s.confidence >= config.scales[Scale(s.scale)].min_confidence
        ]
        survivors.sort(key=lambda s: s.confidence, reverse=True)
        return survivors

    def get_alignment_summary(self, data: MarketData) -> dict[Scale, AlignmentSummary]:
        summary: dict[Scale, AlignmentSummary] = {}
        for scale, engine in self.scales.items():
            direction = engine.check_alignment(data)
            summary[scale] = AlignmentSummary(
                name=engine.name,
                aligned=direction is not None,
                direction=direction.value if direction is not None else "no alignment",
                alignment_tfs=tuple(tf.value for tf in engine.alignment_tfs),
                details=tuple(
                    AlignmentInfo(tf=a.timeframe.value, trend=a.trend.value, bos=a.bos_count)
                    for a in engine.last_alignment
                ),
            )
        return summary
