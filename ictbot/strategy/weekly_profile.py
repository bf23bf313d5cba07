"""Weekly profile classification.

Scores the current week's daily candles against three archetypes and
derives a directional bias for the days ahead:

- classic expansion: quiet Monday/Tuesday, then expansion from Wednesday
- midweek reversal: Wednesday reverses the Monday/Tuesday move
- consolidation reversal: overlapping Monday to Wednesday, Thursday breaks out

The highest score wins; a winning score below 0.3 is "undetermined".
"""

import logging
from datetime import timedelta

from ictbot.config import Config
from ictbot.models.candle import CandleSeries
from ictbot.models.enums import DrawOnLiquidity, PdaType, Trend, WeeklyProfile
from ictbot.models.timeframe import Timeframe
from ictbot.strategy.cisd import CisdDetector
from ictbot.strategy.models import Pda, WeeklyBias
from ictbot.strategy.pd_arrays import PdArrayDetector
from ictbot.strategy.structure import MarketStructure

logger = logging.getLogger("ictbot.weekly")

MIN_PROFILE_SCORE = 0.3
PDA_MIN_STRENGTH = 0.3


class WeeklyProfileClassifier:
    """Classifies the running week and keeps the latest bias in ``current_bias``."""

    def __init__(self) -> None:
        self._pd_detector = PdArrayDetector()
        self._structure = MarketStructure()
        self.current_bias: WeeklyBias | None = None

    def classify(
        self,
        daily: CandleSeries,
        htf: CandleSeries,
        day_of_week: str,
        config: Config,
    ) -> WeeklyBias:
        """Score the week ending at the last daily candle.

        Args:
            daily: Daily candles, oldest first; the last one is today.
            htf: Hourly candles used for structure, PDAs and CISD checks.
            day_of_week: Current weekday name (``"Thursday"``).
            config: Supplies day ratings and PDA detection settings.
        """
        if len(daily) < 3:
            return self._store(_undetermined("Insufficient data for weekly classification"))

        week = _current_week(daily)
        if not week:
            return self._store(_undetermined("No candles yet this week"))

        notes: list[str] = []
        trend = self._structure.analyze(htf)
        pdas = self._pd_detector.detect_all(
            htf, Timeframe.H1,
            config.fvg_min_gap_percent, config.ob_lookback, config.breaker_lookback,
        )
        liquidity = self._structure.get_liquidity_levels()

        scores = [
            (WeeklyProfile.CLASSIC_EXPANSION,
             self._score_classic_expansion(week, day_of_week, trend, pdas, config, notes)),
            (WeeklyProfile.MIDWEEK_REVERSAL,
             self._score_midweek_reversal(week, pdas, htf, notes)),
            (WeeklyProfile.CONSOLIDATION_REVERSAL,
             self._score_consolidation_reversal(week, day_of_week, pdas, htf, config, notes)),
        ]
        # Later archetypes win ties.
        profile, confidence = max(reversed(scores), key=lambda s: s[1])
        if confidence < MIN_PROFILE_SCORE:
            profile = WeeklyProfile.UNDETERMINED

        direction = _profile_direction(profile, week, trend)

        if direction is Trend.BULLISH and liquidity.bsl:
            draw = DrawOnLiquidity.BSL
        elif direction is Trend.BEARISH and liquidity.ssl:
            draw = DrawOnLiquidity.SSL
        else:
            draw = DrawOnLiquidity.NONE

        tgif = day_of_week == "Friday" and profile is WeeklyProfile.CLASSIC_EXPANSION
        if tgif:
            notes.append(
                f"TGIF active: expect {config.tgif_retrace_min:.0%}-{config.tgif_retrace_max:.0%} "
                "retracement of weekly range"
            )

        bias = WeeklyBias(
            profile=profile,
            direction=direction,
            confidence=confidence,
            draw_on_liquidity=draw,
            tgif_active=tgif,
            notes=tuple(notes),
        )
        logger.info(
            "Weekly profile: %s %s (%.0f%%) draw=%s",
            profile, direction, confidence * 100, draw,
        )
        return self._store(bias)

    def _store(self, bias: WeeklyBias) -> WeeklyBias:
        self.current_bias = bias
        return bias

    # ── Archetype scores ─────────────────────────────────────────────────

    @staticmethod
    def _score_classic_expansion(
        week: CandleSeries,
        day: str,
        trend: Trend,
        pdas: list[Pda],
        config: Config,
        notes: list[str],
    ) -> float:
        days = len(week)
        if days < 2:
            return 0.1 if trend is not Trend.NEUTRAL else 0.0

        score = 0.0
        mon_tue = week.head(2)
        mon_tue_range = mon_tue.highs_max() - mon_tue.lows_min()
        week_range = week.highs_max() - week.lows_min()

        if mon_tue_range < week_range * 0.5:
            score += 0.2
            notes.append("CE: Mon/Tue range < 50% of week (manipulation phase)")

        for pda in _strong_h1(pdas):
            if mon_tue.lows_min() <= pda.high and mon_tue.highs_max() >= pda.low:
                score += 0.25
                notes.append(f"CE: Mon/Tue engaged {pda.pda_type} {pda.direction} PDA")
                break

        if days >= 3:
            wed_onward = week.slice(2, days)
            if wed_onward.highs_max() - wed_onward.lows_min() > mon_tue_range * 1.5:
                score += 0.3
                notes.append("CE: Wed+ expansion > 1.5x Mon/Tue range")

        if trend is not Trend.NEUTRAL:
            score += 0.15

        score += config.day_rating(WeeklyProfile.CLASSIC_EXPANSION, day) / 5.0 * 0.1
        return min(score, 1.0)

    @staticmethod
    def _score_midweek_reversal(
        week: CandleSeries, pdas: list[Pda], htf: CandleSeries, notes: list[str],
    ) -> float:
        days = len(week)
        if days < 3:
            return 0.05

        score = 0.0
        mon_tue_up = week[1].close > week[0].open
        wed = week[2]
        if mon_tue_up != (wed.close > wed.open):
            score += 0.3
            notes.append("MWR: Wednesday reversed Mon/Tue direction")

        for pda in _strong_h1(pdas):
            if wed.low <= pda.high and wed.high >= pda.low:
                score += 0.25
                notes.append(f"MWR: Wednesday engaged {pda.pda_type} PDA")
                break

        if _cisd_on_day(htf, wed.timestamp.date(), pdas):
            score += 0.2
            notes.append("MWR: CISD confirmed on Wednesday")

        if days >= 4:
            thu_onward = week.slice(3, days)
            if thu_onward.highs_max() - thu_onward.lows_min() > wed.total_range:
                score += 0.15
                notes.append("MWR: Thu+ continuing expansion")

        opening = week.head(3)
        if all(c.close > c.open for c in opening) or all(c.close < c.open for c in opening):
            score -= 0.3
            notes.append("MWR NEGATIVE: Consecutive same-direction days")

        return min(max(score, 0.0), 1.0)

    @staticmethod
    def _score_consolidation_reversal(
        week: CandleSeries,
        day: str,
        pdas: list[Pda],
        htf: CandleSeries,
        config: Config,
        notes: list[str],
    ) -> float:
        days = len(week)
        if days < 3:
            return 0.05

        score = 0.0
        mon_wed = week.head(3)
        total_range = mon_wed.highs_max() - mon_wed.lows_min()
        overlap = sum(c.total_range for c in mon_wed) / (total_range + 0.01)
        if overlap > 1.5:
            score += 0.3
            notes.append("CR: Mon-Wed showing consolidation (overlapping ranges)")

        if days >= 4:
            thu = week[3]
            if thu.high > mon_wed.highs_max() or thu.low < mon_wed.lows_min():
                score += 0.25
                notes.append("CR: Thursday swept consolidation range")
                if _cisd_on_day(htf, thu.timestamp.date(), pdas):
                    score += 0.25
                    notes.append("CR: CISD confirmed on Thursday")

        if days >= 5 and week[4].body > week[3].body:
            score += 0.15
            notes.append("CR: Friday expanding")

        score += config.day_rating(WeeklyProfile.CONSOLIDATION_REVERSAL, day) / 5.0 * 0.05
        return min(max(score, 0.0), 1.0)


# ── Helpers ──────────────────────────────────────────────────────────────


def _undetermined(note: str) -> WeeklyBias:
    return WeeklyBias(
        profile=WeeklyProfile.UNDETERMINED,
        direction=Trend.NEUTRAL,
        confidence=0.0,
        draw_on_liquidity=DrawOnLiquidity.NONE,
        notes=(note,),
    )


def _current_week(daily: CandleSeries) -> CandleSeries:
    """Daily candles from Monday of the last candle's week onward."""
    latest = daily.last()
    if latest is None:
        return CandleSeries()
    week_start = (latest.timestamp - timedelta(days=latest.timestamp.weekday())).date()
    return CandleSeries(c for c in daily if c.timestamp.date() >= week_start)


def _strong_h1(pdas: list[Pda]) -> list[Pda]:
    return [p for p in pdas if p.timeframe is Timeframe.H1 and p.strength > PDA_MIN_STRENGTH]


def _cisd_on_day(htf: CandleSeries, day, pdas: list[Pda]) -> bool:
    breakers = [p for p in pdas if p.pda_type is PdaType.BRK]
    if not breakers:
        return False
    day_candles = htf.filter_by_date(day)
    if not day_candles:
        return False
    return bool(CisdDetector().detect(day_candles, breakers))


def _profile_direction(profile: WeeklyProfile, week: CandleSeries, trend: Trend) -> Trend:
    if profile is WeeklyProfile.UNDETERMINED or not week:
        return Trend.NEUTRAL

    if profile is WeeklyProfile.CLASSIC_EXPANSION:
        if trend is not Trend.NEUTRAL:
            return trend
        return Trend.BULLISH if week[-1].close > week[0].open else Trend.BEARISH

    if profile is WeeklyProfile.MIDWEEK_REVERSAL:
        if len(week) < 2:
            return Trend.NEUTRAL
        return Trend.BEARISH if week[1].close > week[0].open else Trend.BULLISH

    # Consolidation reversal follows Thursday's breakout candle.
    if len(week) >= 4:
        return Trend.BULLISH if week[3].close > week[3].open else Trend.BEARISH
    return trend
