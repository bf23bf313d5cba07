"""Tests for the risk management module.

Covers protected-swing stops, trailing, Kelly sizing and drawdown tracking.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.enums import Direction, StopMode, SwingType
from ictbot.risk.drawdown import DrawdownTracker
from ictbot.risk.kelly import KellyCriterion
from ictbot.risk.stop_loss import StopLossEngine
from ictbot.risk.trailing_stop import TrailingStop


T0 = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def _series(rows: list[tuple[float, float, float, float]]) -> CandleSeries:
    return CandleSeries(
        Candle(T0 + timedelta(minutes=5 * i), o, h, l, c) for i, (o, h, l, c) in enumerate(rows)
    )


def _swept_low_series() -> CandleSeries:
    """A decline into a sweep of 97 followed by a rally that closes back above."""
    return _series([
        (105, 106, 104, 105),
        (105, 105.5, 103, 103.5),
        (103.5, 104, 102, 102.5),
        (102.5, 103, 101, 101.5),
        (101.5, 102, 100, 100.5),
        (100.5, 101, 97, 99.5),  # swing low
        (99.5, 102, 99, 101.5),
        (101.5, 104, 101, 103.5),  # closes above the sweep candles
        (103.5, 105, 103, 104.5),
        (104.5, 106, 104, 105.5),
        (105.5, 107, 105, 106.5),
        (106.5, 108, 106, 107.5),
    ])


def _two_low_series() -> CandleSeries:
    """The swept low at 97, then a higher low at 103 confirmed by a close above 108."""
    return _series([
        (105, 106, 104, 105),
        (105, 105.5, 103, 103.5),
        (103.5, 104, 102, 102.5),
        (102.5, 103, 101, 101.5),
        (101.5, 102, 100, 100.5),
        (100.5, 101, 97, 99.5),  # swing low
        (99.5, 102, 99, 101.5),
        (101.5, 104, 101, 103.5),
        (103.5, 105, 103, 104.5),
        (104.5, 106, 104, 105.5),
        (105.5, 107, 105, 106.5),
        (106.5, 108, 106, 107.5),
        (107.5, 108, 106, 106.5),
        (106.5, 107, 104.5, 105),
        (105, 105.5, 103, 104),  # higher swing low
        (104, 107, 103.5, 106.5),
        (106.5, 109, 106, 108.5),
        (108.5, 110, 108, 109.5),
        (109.5, 111, 109, 110.5),
    ])


@dataclass
class _Trade:
    pnl: float
    scale: str = ""


# ── Protected swings / stops ─────────────────────────────────────────────


class TestStopLoss:
    def test_protected_swing_found(self):
        engine = StopLossEngine()
        swings = engine.find_protected_swings(_swept_low_series())

        assert len(swings) == 1
        swing = swings[0]
        assert swing.swing_type is SwingType.LOW
        assert swing.extreme == 97
        assert swing.body_level == 100.5
        assert swing.sweep_confirmed and swing.close_confirmed
        assert swing.strength == pytest.approx(1.0)
        assert swing.candle_count == 3

    def test_wick_stop_when_rr_is_met(self):
        candles = _swept_low_series()
        level = StopLossEngine().get_stop_loss(107.5, Direction.LONG, 125.0, candles)

        assert level.mode is StopMode.WICK
        assert level.price == 97
        assert level.risk_distance == 10.5
        assert level.risk_percent == pytest.approx(9.767)
        assert "R:R 1.7" in level.reason

    def test_low_rr_falls_back_to_wick(self):
        # Reward 7.5 against 10.5 risk; the swing candle's wick rules out body mode.
        level = StopLossEngine().get_stop_loss(107.5, Direction.LONG, 115.0, _swept_low_series())
        assert level.mode is StopMode.WICK
        assert level.price == 97
        assert "low R:R" in level.reason

    def test_atr_fallback_without_swings(self):
        candles = _series([(100, 101, 99, 100)] * 5)
        level = StopLossEngine().get_stop_loss(100.0, Direction.LONG, 110.0, candles)

        assert level.price == pytest.approx(97.0)  # 1.5 x ATR(2.0) below entry
        assert level.reason.startswith("FALLBACK")
        assert level.risk_percent == pytest.approx(3.0)

    def test_short_fallback_sits_above_entry(self):
        candles = _series([(100, 101, 99, 100)] * 5)
        level = StopLossEngine().get_stop_loss(100.0, Direction.SHORT, 90.0, candles)
        assert level.price == pytest.approx(103.0)


# ── Trailing stop ────────────────────────────────────────────────────────


class TestTrailingStop:
    def test_long_trails_up_to_protected_low(self):
        trail = TrailingStop(95.0, Direction.LONG)
        assert trail.update(_swept_low_series(), 107.5) == 97
        assert trail.current_sl == 97
        assert trail.initial_sl == 95.0

    def test_never_loosens(self):
        trail = TrailingStop(95.0, Direction.LONG)
        candles = _swept_low_series()
        trail.update(candles, 107.5)
        assert trail.update(candles, 107.5) is None
        assert trail.current_sl == 97

    def test_stop_above_swing_is_kept(self):
        trail = TrailingStop(98.0, Direction.LONG)
        assert trail.update(_swept_low_series(), 107.5) is None
        assert trail.current_sl == 98.0

    def test_short_without_protected_high(self):
        trail = TrailingStop(120.0, Direction.SHORT)
        assert trail.update(_swept_low_series(), 107.5) is None

    def test_low_above_market_is_ignored(self):
        """After a sell-off to 93.5 the protected low at 97 sits above the market."""
        trail = TrailingStop(90.0, Direction.LONG)
        assert trail.update(_swept_low_series(), 93.5) is None
        assert trail.current_sl == 90.0

    def test_trails_to_nearest_low_below_market(self):
        candles = _two_low_series()
        trail = TrailingStop(90.0, Direction.LONG)
        stops = []

        for price in (100.0, 110.5, 102.0, 111.0):
            new_sl = trail.update(candles, price)
            if new_sl is not None:
                assert new_sl < price
                stops.append(new_sl)

        assert stops == [97, 103]
        assert trail.current_sl == 103

    def test_short_trails_to_nearest_high_above_market(self):
        engine = StopLossEngine()
        candles = _two_low_series()

        assert engine.get_trailing_stop(Direction.SHORT, 115.0, 109.0, candles) is None
        level = engine.get_trailing_stop(Direction.SHORT, 115.0, 100.0, candles)
        assert level.price == 108
        assert "protected high" in level.reason


# ── Kelly ────────────────────────────────────────────────────────────────


class TestKelly:
    def test_capped_half_kelly(self):
        """14 wins of +2 and 6 losses of -1: full Kelly 0.55, applied capped at 6%."""
        history = [_Trade(2.0)] * 14 + [_Trade(-1.0)] * 6
        result = KellyCriterion().calculate(history)

        assert result.full_kelly == pytest.approx(0.55)
        assert result.applied_fraction == pytest.approx(0.06)
        assert result.win_rate == pytest.approx(0.7)
        assert result.payoff_ratio == pytest.approx(2.0)
        assert result.edge == pytest.approx(1.1)
        assert not result.using_default

    def test_default_below_minimum_sample(self):
        result = KellyCriterion().calculate([_Trade(1.0)] * 5)
        assert result.using_default
        assert result.applied_fraction == 0.005
        assert result.sample_size == 5

    def test_negative_edge_risks_floor(self):
        history = [_Trade(1.0)] * 5 + [_Trade(-1.0)] * 15
        result = KellyCriterion().calculate(history)
        assert result.full_kelly < 0
        assert result.applied_fraction == 0.002

    def test_rolling_window(self):
        result = KellyCriterion().calculate([_Trade(1.0), _Trade(-1.0)] * 75)
        assert result.sample_size == 100

    def test_scale_filter_and_memory(self):
        history = [_Trade(2.0, "5m")] * 20 + [_Trade(1.0, "1m")] * 3
        kelly = KellyCriterion()

        one_minute = kelly.calculate(history, "1m")
        assert one_minute.sample_size == 3
        assert one_minute.using_default
        assert kelly.results["1m"] is one_minute

    def test_swing_trades_do_not_size_intraday(self):
        """A full 15m window leaves the 5m window empty."""
        history = [_Trade(2.0, "15m")] * 14 + [_Trade(-1.0, "15m")] * 6
        kelly = KellyCriterion()

        intraday = kelly.calculate(history, "5m")
        assert intraday.sample_size == 0
        assert intraday.using_default
        assert intraday.applied_fraction == 0.005

        swing = kelly.calculate(history, "15m")
        assert swing.sample_size == 20
        assert swing.applied_fraction == pytest.approx(0.06)

    def test_risk_amount(self):
        history = [_Trade(2.0)] * 14 + [_Trade(-1.0)] * 6
        amount, result = KellyCriterion().get_risk_amount(1000.0, history)
        assert amount == pytest.approx(60.0)
        assert result.applied_fraction == pytest.approx(0.06)


# ── Drawdown tracking ────────────────────────────────────────────────────


class TestDrawdownTracker:
    def test_initial_state(self):
        dd = DrawdownTracker(200.0)
        assert dd.peak_equity == 200.0
        assert dd.drawdown_pct == 0.0
        assert dd.max_drawdown == 0.0

    def test_peak_rises_and_max_drawdown_holds(self):
        dd = DrawdownTracker(200.0)
        dd.update(250.0)
        dd.update(225.0)
        dd.update(240.0)

        assert dd.peak_equity == 250.0
        assert dd.max_drawdown == pytest.approx(25.0)
        assert dd.max_drawdown_pct == pytest.approx(10.0)
        assert dd.drawdown_pct == pytest.approx(4.0)

    def test_rejects_non_positive_equity(self):
        with pytest.raises(ValueError, match="initial_equity"):
            DrawdownTracker(0.0)
