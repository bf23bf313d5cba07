"""Tests for the per-scale scan pipeline: gates, filters, opening and trailing."""

from datetime import datetime, timedelta, timezone

import pytest

from ictbot.analysis.strategy_refiner import StrategyRefiner
from ictbot.broker.paper_trader import PaperTrader
from ictbot.config import Config
from ictbot.models.candle import Candle, CandleSeries
from ictbot.models.enums import (
    Direction,
    DrawOnLiquidity,
    PdaType,
    Trend,
    WeeklyProfile,
    Zone,
)
from ictbot.models.scale import Scale
from ictbot.models.timeframe import Timeframe
from ictbot.scanner import SignalScanner
from ictbot.strategy.models import HftSignal, Pda, TradeSignal, WeeklyBias
from ictbot.strategy.sessions import SessionManager


WEDNESDAY_LONDON = datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc)  # 03:00 ET


def _make_config(**overrides) -> Config:
    defaults = dict(initial_balance=1000.0, fee_rate=0.0, slippage_rate=0.0)
    defaults.update(overrides)
    return Config(**defaults)


def _make_bias(profile: WeeklyProfile = WeeklyProfile.CLASSIC_EXPANSION) -> WeeklyBias:
    return WeeklyBias(
        profile=profile,
        direction=Trend.BULLISH,
        confidence=0.6,
        draw_on_liquidity=DrawOnLiquidity.BSL,
    )


def _make_session(config: Config, now: datetime = WEDNESDAY_LONDON) -> SessionManager:
    session = SessionManager(config)
    session.update(config, now)
    return session


def _make_signal(**overrides) -> HftSignal:
    pda = Pda(
        pda_type=PdaType.FVG,
        direction=Trend.BULLISH,
        zone=Zone.DISCOUNT,
        high=49900.0,
        low=49800.0,
        midpoint=49850.0,
        timestamp=WEDNESDAY_LONDON,
        timeframe=Timeframe.M15,
        strength=1.0,
    )
    defaults = dict(
        scale="5m",
        scale_name="5m Intraday",
        direction=Direction.LONG,
        entry_price=50000.0,
        stop_loss=49500.0,
        take_profit=51000.0,
        pda_engaged=pda,
        cisd_confirmed=False,
        confidence=0.8,
        session="london",
        session_weight=1.5,
        reason="[5m Intraday] LONG | FVG bullish",
        stop_mode="wick",
        stop_reason="Protected swing low (wick) @ 49500.00",
        tp_label="TP2 (-2 SD)",
    )
    defaults.update(overrides)
    return HftSignal(**defaults)


def _data() -> dict[Timeframe, CandleSeries]:
    return {Timeframe.M5: CandleSeries([Candle(WEDNESDAY_LONDON, 1, 1, 1, 1)])}


class _FakeProvider:
    async def midnight_open(self):
        return None


def _make_scanner(config: Config) -> SignalScanner:
    trader = PaperTrader(config)
    trader.sim_time = WEDNESDAY_LONDON
    return SignalScanner(config, trader, StrategyRefiner(config), verbose=False)


def _stub_engine(monkeypatch, scanner: SignalScanner, signal, others=()) -> None:
    """Make the 5m scale return *signal* and the other scales the given *others*."""
    by_scale = {s.scale: s for s in others}
    for scale, engine in scanner.fractal.scales.items():
        result = signal if scale is Scale.M5 else by_scale.get(scale.value)
        monkeypatch.setattr(engine, "evaluate", lambda *args, _result=result: _result)


def _swept_low_candles() -> CandleSeries:
    rows = [
        (105, 106, 104, 105), (105, 105.5, 103, 103.5), (103.5, 104, 102, 102.5),
        (102.5, 103, 101, 101.5), (101.5, 102, 100, 100.5), (100.5, 101, 97, 99.5),
        (99.5, 102, 99, 101.5), (101.5, 104, 101, 103.5), (103.5, 105, 103, 104.5),
        (104.5, 106, 104, 105.5), (105.5, 107, 105, 106.5), (106.5, 108, 106, 107.5),
    ]
    return CandleSeries(
        Candle(WEDNESDAY_LONDON + timedelta(minutes=5 * i), o, h, l, c)
        for i, (o, h, l, c) in enumerate(rows)
    )


def _open_trailing_long(scanner: SignalScanner, entry: float, stop: float):
    return scanner.trader.open_position(
        TradeSignal(
            direction=Direction.LONG,
            entry_price=entry,
            stop_loss=stop,
            take_profit=125.0,
            confidence=0.8,
            session="london",
            session_weight=1.5,
            reason="[5m Intraday] LONG",
        ),
        "5m",
    )


# ── Gates ────────────────────────────────────────────────────────────────


class TestReady:
    def test_passes_in_london_on_wednesday(self):
        config = _make_config()
        scanner = _make_scanner(config)
        assert scanner.ready(Scale.M5, _data(), _make_session(config), _make_bias(),
                             WEDNESDAY_LONDON, config)

    def test_requires_weekly_bias(self):
        config = _make_config()
        scanner = _make_scanner(config)
        assert not scanner.ready(Scale.M5, _data(), _make_session(config), None,
                                 WEDNESDAY_LONDON, config)

    def test_never_on_monday(self):
        config = _make_config()
        monday = WEDNESDAY_LONDON - timedelta(days=2)
        scanner = _make_scanner(config)
        assert not scanner.ready(Scale.M5, _data(), _make_session(config, monday), _make_bias(),
                                 monday, config)

    def test_outside_killzone(self):
        config = _make_config()
        afternoon = WEDNESDAY_LONDON.replace(hour=18)
        scanner = _make_scanner(config)
        assert not scanner.ready(Scale.M5, _data(), _make_session(config, afternoon), _make_bias(),
                                 afternoon, config)

    def test_low_day_rating(self):
        config = _make_config()
        tuesday = WEDNESDAY_LONDON - timedelta(days=1)
        scanner = _make_scanner(config)
        bias = _make_bias(WeeklyProfile.CONSOLIDATION_REVERSAL)
        assert not scanner.ready(Scale.M5, _data(), _make_session(config, tuesday), bias,
                                 tuesday, config)

    def test_skipped_combo(self):
        config = _make_config()
        scanner = _make_scanner(config)
        scanner.refiner.skip_combos.add("5m_london")
        assert not scanner.ready(Scale.M5, _data(), _make_session(config), _make_bias(),
                                 WEDNESDAY_LONDON, config)
        assert scanner.ready(Scale.M1, _data(), _make_session(config), _make_bias(),
                             WEDNESDAY_LONDON, config)

    def test_cooldown_expires(self):
        config = _make_config()
        scanner = _make_scanner(config)
        scanner.cooldowns[Scale.M5] = WEDNESDAY_LONDON + timedelta(minutes=1)
        args = (_data(), _make_session(config), _make_bias())

        assert not scanner.ready(Scale.M5, *args, WEDNESDAY_LONDON, config)
        assert scanner.ready(Scale.M5, *args, WEDNESDAY_LONDON + timedelta(minutes=1), config)
        assert Scale.M5 not in scanner.cooldowns

    def test_no_data(self):
        config = _make_config()
        scanner = _make_scanner(config)
        assert not scanner.ready(Scale.M5, {}, _make_session(config), _make_bias(),
                                 WEDNESDAY_LONDON, config)


# ── Scanning ─────────────────────────────────────────────────────────────


class TestScan:
    @pytest.mark.asyncio
    async def test_opens_position_with_metadata(self, monkeypatch):
        config = _make_config()
        scanner = _make_scanner(config)
        _stub_engine(monkeypatch, scanner, _make_signal())

        position = await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                                      _FakeProvider(), WEDNESDAY_LONDON, config)

        assert position is not None
        assert position.scale == "5m"
        assert scanner.scale_positions == {Scale.M5: position.id}
        assert scanner.total_signals == 1

        meta = scanner.trader.trade_records[position.id].metadata
        assert meta.pda_type == "FVG"
        assert meta.weekly_profile == "classic_expansion"
        assert meta.day_of_week == "Wednesday"
        assert meta.stop_mode == "wick"

    @pytest.mark.asyncio
    async def test_occupied_scale_is_not_scanned_again(self, monkeypatch):
        config = _make_config()
        scanner = _make_scanner(config)
        _stub_engine(monkeypatch, scanner, _make_signal())
        args = (Scale.M5, _data(), _make_session(config), _make_bias(), _FakeProvider(),
                WEDNESDAY_LONDON, config)

        assert await scanner.scan(*args) is not None
        assert await scanner.scan(*args) is None
        assert len(scanner.trader.open_positions) == 1

    @pytest.mark.asyncio
    async def test_cross_scale_agreement_lifts_confidence(self, monkeypatch):
        """0.5 alone misses the 0.55 floor; an agreeing 15m signal adds 0.1."""
        config = _make_config()
        scanner = _make_scanner(config)
        swing = _make_signal(scale="15m", scale_name="15m Swing", reason="[15m Swing] LONG")
        _stub_engine(monkeypatch, scanner, _make_signal(confidence=0.5), others=[swing])

        position = await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                                      _FakeProvider(), WEDNESDAY_LONDON, config)

        assert position is not None
        meta = scanner.trader.trade_records[position.id].metadata
        assert meta.cross_scale_confluence == 2
        assert meta.confidence == pytest.approx(0.6)
        assert "CROSS-SCALE: 2/2" in position.reason

    @pytest.mark.asyncio
    async def test_each_scale_evaluated_once_per_scan(self, monkeypatch):
        config = _make_config()
        scanner = _make_scanner(config)
        calls = []
        for scale, engine in scanner.fractal.scales.items():
            result = _make_signal() if scale is Scale.M5 else None
            monkeypatch.setattr(
                engine, "evaluate",
                lambda *args, _scale=scale, _result=result: calls.append(_scale) or _result,
            )

        await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                           _FakeProvider(), WEDNESDAY_LONDON, config)

        assert sorted(calls) == sorted(scanner.fractal.scales)

    @pytest.mark.asyncio
    async def test_low_confidence_filtered(self, monkeypatch):
        config = _make_config()
        scanner = _make_scanner(config)
        _stub_engine(monkeypatch, scanner, _make_signal(confidence=0.5))

        position = await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                                      _FakeProvider(), WEDNESDAY_LONDON, config)

        assert position is None
        assert scanner.total_signals == 1
        assert scanner.signals_filtered == 1

    @pytest.mark.asyncio
    async def test_target_too_close_after_costs(self, monkeypatch):
        """1% to target is under 2 x 0.15% x 6 = 1.8% of round-trip costs."""
        config = _make_config(fee_rate=0.001, slippage_rate=0.0005)
        scanner = _make_scanner(config)
        _stub_engine(monkeypatch, scanner, _make_signal(take_profit=50500.0))

        position = await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                                      _FakeProvider(), WEDNESDAY_LONDON, config)

        assert position is None
        assert scanner.signals_filtered == 1
        assert scanner.trader.positions == []

    @pytest.mark.asyncio
    async def test_no_signal(self, monkeypatch):
        config = _make_config()
        scanner = _make_scanner(config)
        _stub_engine(monkeypatch, scanner, None)

        assert await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                                  _FakeProvider(), WEDNESDAY_LONDON, config) is None
        assert scanner.total_signals == 0


# ── Open positions ───────────────────────────────────────────────────────


class TestPositionUpkeep:
    @pytest.mark.asyncio
    async def test_close_frees_slot_and_starts_cooldown(self, monkeypatch):
        config = _make_config()
        scanner = _make_scanner(config)
        _stub_engine(monkeypatch, scanner, _make_signal())
        position = await scanner.scan(Scale.M5, _data(), _make_session(config), _make_bias(),
                                      _FakeProvider(), WEDNESDAY_LONDON, config)

        closed = scanner.trader.check_positions(51100.0)
        scanner.on_closed(closed, WEDNESDAY_LONDON, config)

        assert closed == [position]
        assert Scale.M5 not in scanner.scale_positions
        assert scanner.cooldowns[Scale.M5] == WEDNESDAY_LONDON + timedelta(minutes=15)

    def test_trailing_moves_stop_to_protected_low(self):
        config = _make_config()
        scanner = _make_scanner(config)
        position = _open_trailing_long(scanner, entry=107.5, stop=95.0)

        scanner.trail_stops({Timeframe.M5: _swept_low_candles()}, config, 107.5)
        assert position.stop_loss == 97

        scanner.trail_stops({}, config, 107.5)
        assert position.stop_loss == 97

    def test_swing_above_market_after_selloff_is_not_used(self):
        """A protected low at 97 is stale once price has sold off to 93.5."""
        config = _make_config()
        scanner = _make_scanner(config)
        position = _open_trailing_long(scanner, entry=95.0, stop=90.0)
        data = {Timeframe.M5: _swept_low_candles()}

        scanner.trail_stops(data, config, 93.5)
        assert position.stop_loss == 90.0
        assert scanner.trader.check_positions(93.5) == []
        assert position.is_open

        scanner.trail_stops(data, config, 98.0)
        assert position.stop_loss == 97
        assert position.stop_loss < 98.0
