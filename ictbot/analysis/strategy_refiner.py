"""Strategy refiner — nudges thresholds toward what has been working.

Run periodically against the trade records:

- a scale losing money gets a stricter minimum confidence, a scale with
  edge above +0.05 a looser one (clamped to [0.3, 0.8]);
- a session losing money gets less weight, a winning one more (clamped
  to [0.1, 2.0]);
- a scale/session combo with at least 20 trades and edge below -0.15 is
  skipped until its edge recovers to zero or better;
- stop modes with a trusted negative edge are reported, never changed.
"""

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from ictbot.analysis.trade_analyzer import Analysis, TradeAnalyzer
from ictbot.config import Config
from ictbot.models.trade_record import TradeRecord
from ictbot.repos.refinement_repo import RefinementRepo

logger = logging.getLogger("ictbot.refiner")

MIN_CONFIDENCE_FLOOR = 0.3
MIN_CONFIDENCE_CEILING = 0.8
SESSION_WEIGHT_FLOOR = 0.1
SESSION_WEIGHT_CEILING = 2.0
POSITIVE_EDGE = 0.05
SKIP_MIN_TRADES = 20
SKIP_EDGE = -0.15
STOP_MODE_WARN_EDGE = -0.1


@dataclass(frozen=True)
class Adjustment:
    parameter: str
    old_value: float
    new_value: float
    reason: str
    edge: float
    sample_size: int
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_warning(self) -> bool:
        return self.parameter.startswith("WARNING:")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Adjustment":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


class StrategyRefiner:
    """Derives config adjustments and the skip list from trade outcomes.

    Args:
        config: Supplies ``adjustment_step`` and ``min_sample_per_bucket``.
        repo: Persists history and skip list; ``None`` keeps them in memory.
    """

    def __init__(self, config: Config, repo: Optional[RefinementRepo] = None) -> None:
        self.adjustment_step = config.adjustment_step
        self.analyzer = TradeAnalyzer(config.min_sample_per_bucket)
        self.adjustment_history: list[Adjustment] = []
        self.skip_combos: set[str] = set()
        self._repo = repo
        if repo is not None:
            history, combos = repo.load()
            self.adjustment_history = [Adjustment.from_dict(a) for a in history]
            self.skip_combos = set(combos)

    def refine(
        self,
        records: Iterable[TradeRecord],
        config: Config,
        now: Optional[datetime] = None,
    ) -> tuple[Config, list[Adjustment]]:
        """Analyse *records* and return the adjusted config plus what changed.

        Adjustments are stamped with *now*, the simulated clock in a backtest
        and the wall clock when omitted. The input config is never mutated.
        """
        analysis = self.analyzer.analyze(records)

        scales, scale_adjustments = self._adjust_min_confidence(analysis, config)
        weights, session_adjustments = self._adjust_session_weights(analysis, config)
        skipped_before = set(self.skip_combos)
        self._update_skip_list(analysis)
        warnings = self._flag_stop_modes(analysis)

        stamp = (now or datetime.now(timezone.utc)).isoformat()
        adjustments = [
            replace(adj, timestamp=stamp)
            for adj in scale_adjustments + session_adjustments + warnings
        ]
        for adj in adjustments:
            if adj.is_warning:
                logger.warning("Refinement: %s", adj.reason)
            else:
                logger.info(
                    "Refinement: %s %.4f -> %.4f (%s, n=%d)",
                    adj.parameter, adj.old_value, adj.new_value, adj.reason, adj.sample_size,
                )

        self.adjustment_history.extend(adjustments)
        if adjustments or self.skip_combos != skipped_before:
            self._save()

        return replace(config, scales=scales, session_weights=weights), adjustments

    def should_skip(self, scale: str, session: str) -> bool:
        return f"{scale}_{session}" in self.skip_combos

    def reset(self) -> None:
        """Forget all history and skipped combos, including the persisted copy."""
        self.adjustment_history.clear()
        self.skip_combos.clear()
        if self._repo is not None:
            self._repo.clear()

    # ── Rules ────────────────────────────────────────────────────────────

    def _adjust_min_confidence(self, analysis: Analysis, config: Config):
        scales = dict(config.scales)
        adjustments: list[Adjustment] = []
        by_name = {s.value: s for s in scales}

        for key, bucket in analysis.get("scale", {}).items():
            scale = by_name.get(key)
            if not bucket.sample_sufficient or scale is None:
                continue

            current = scales[scale].min_confidence
            if bucket.edge < 0:
                new_val = min(current + self.adjustment_step, MIN_CONFIDENCE_CEILING)
            elif bucket.edge > POSITIVE_EDGE:
                new_val = max(current - self.adjustment_step, MIN_CONFIDENCE_FLOOR)
            else:
                continue
            new_val = round(new_val, 4)
            if new_val == current:
                continue

            scales[scale] = replace(scales[scale], min_confidence=new_val)
            adjustments.append(Adjustment(
                parameter=f"HFT_SCALES.{key}.min_confidence",
                old_value=current,
                new_value=new_val,
                reason=f"scale {key} edge={bucket.edge:+.4f}",
                edge=bucket.edge,
                sample_size=bucket.total,
            ))
        return scales, adjustments

    def _adjust_session_weights(self, analysis: Analysis, config: Config):
        weights = dict(config.session_weights)
        adjustments: list[Adjustment] = []

        for key, bucket in analysis.get("session", {}).items():
            if not bucket.sample_sufficient or key not in weights:
                continue

            current = weights[key]
            if bucket.edge < 0:
                new_val = max(current - self.adjustment_step, SESSION_WEIGHT_FLOOR)
            elif bucket.edge > POSITIVE_EDGE:
                new_val = min(current + self.adjustment_step, SESSION_WEIGHT_CEILING)
            else:
                continue
            new_val = round(new_val, 4)
            if new_val == current:
                continue

            weights[key] = new_val
            adjustments.append(Adjustment(
                parameter=f"SESSION_WEIGHTS.{key}",
                old_value=current,
                new_value=new_val,
                reason=f"session {key} edge={bucket.edge:+.4f}",
                edge=bucket.edge,
                sample_size=bucket.total,
            ))
        return weights, adjustments

    def _update_skip_list(self, analysis: Analysis) -> None:
        for combo, bucket in analysis.get("scale_session", {}).items():
            if bucket.total >= SKIP_MIN_TRADES and bucket.edge < SKIP_EDGE:
                if combo not in self.skip_combos:
                    logger.info("Skipping %s from now on (edge=%+.4f, n=%d)", combo, bucket.edge, bucket.total)
                self.skip_combos.add(combo)
            elif combo in self.skip_combos and bucket.edge >= 0:
                logger.info("Re-enabling %s (edge=%+.4f)", combo, bucket.edge)
                self.skip_combos.discard(combo)

    @staticmethod
    def _flag_stop_modes(analysis: Analysis) -> list[Adjustment]:
        return [
            Adjustment(
                parameter=f"WARNING:stop_mode.{mode}",
                old_value=0.0,
                new_value=0.0,
                reason=(
                    f"stop mode '{mode}' has negative edge={bucket.edge:+.4f} "
                    f"(n={bucket.total}, wr={bucket.win_rate * 100:.1f}%)"
                ),
                edge=bucket.edge,
                sample_size=bucket.total,
            )
            for mode, bucket in analysis.get("stop_mode", {}).items()
            if bucket.sample_sufficient and bucket.edge < STOP_MODE_WARN_EDGE
        ]

    def _save(self) -> None:
        if self._repo is not None:
            self._repo.save(
                [a.to_dict() for a in self.adjustment_history],
                sorted(self.skip_combos),
            )
