"""Tests for the status API endpoints and the console dashboard."""

import pytest
from fastapi.testclient import TestClient

from ictbot.analysis.strategy_refiner import StrategyRefiner
from ictbot.api.routers import configure_routers, update_bot_status
from ictbot.broker.paper_trader import PaperTrader
from ictbot.cli.dashboard import print_status
from ictbot.config import Config
from ictbot.engine import TradingEngine
from ictbot.main import app
from ictbot.models.enums import Direction
from ictbot.strategy.models import TradeSignal

client = TestClient(app)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_engine(tmp_path) -> TradingEngine:
    config = Config(initial_balance=1000.0, fee_rate=0.0, slippage_rate=0.0, state_dir=str(tmp_path))
    return TradingEngine(config, provider=None, trader=PaperTrader(config), refiner=StrategyRefiner(config))


def _open_long(engine: TradingEngine):
    return engine.trader.open_position(
        TradeSignal(
            direction=Direction.LONG,
            entry_price=50000.0,
            stop_loss=49500.0,
            take_profit=51000.0,
            confidence=0.8,
            session="london",
            session_weight=1.5,
            reason="[5m Intraday] LONG",
        ),
        "5m",
    )


@pytest.fixture(autouse=True)
def _reset_routers():
    configure_routers()
    yield
    configure_routers()


# ── Endpoints ────────────────────────────────────────────────────────────


class TestHealth:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestStatusEndpoint:
    def test_idle_without_engine(self):
        resp = client.get("/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["mode"] == "idle"
        assert data["running"] is False

    def test_pushed_fields_are_reported(self):
        configure_routers(bot_status={"mode": "paper", "symbol": "BTC-USD"})
        update_bot_status(cycle_count=42, balance=1234.5)

        data = client.get("/status").json()
        assert data["mode"] == "paper"
        assert data["cycle_count"] == 42
        assert data["balance"] == 1234.5

    def test_engine_snapshot_merged(self, tmp_path):
        engine = _make_engine(tmp_path)
        configure_routers(engine=engine, bot_status={"mode": "paper"})

        data = client.get("/status").json()
        assert data["mode"] == "paper"
        assert data["symbol"] == "BTC-USD"
        assert data["balance"] == 1000.0
        assert "kelly_fraction" in data


class TestPositionsEndpoint:
    def test_unavailable_without_engine(self):
        assert client.get("/positions").status_code == 503

    def test_lists_open_positions(self, tmp_path):
        engine = _make_engine(tmp_path)
        _open_long(engine)
        configure_routers(engine=engine)

        resp = client.get("/positions")
        assert resp.status_code == 200
        positions = resp.json()
        assert len(positions) == 1
        assert positions[0]["direction"] == "long"
        assert positions[0]["status"] == "open"
        assert positions[0]["scale"] == "5m"


class TestStatsEndpoint:
    def test_stats_include_kelly_by_scale(self, tmp_path):
        engine = _make_engine(tmp_path)
        configure_routers(engine=engine)

        data = client.get("/stats").json()
        assert data["balance"] == 1000.0
        assert data["total_trades"] == 0
        assert set(data["kelly_by_scale"]) == {"1m", "5m", "15m"}
        assert data["kelly_by_scale"]["5m"]["applied_fraction"] == 0.005


class TestRefinementsEndpoint:
    def test_history_and_skip_list(self, tmp_path):
        engine = _make_engine(tmp_path)
        engine.refiner.skip_combos.update({"1m_asian", "5m_off_session"})
        configure_routers(engine=engine)

        data = client.get("/refinements").json()
        assert data["adjustment_history"] == []
        assert data["skip_combos"] == ["1m_asian", "5m_off_session"]

    def test_unavailable_without_engine(self):
        assert client.get("/refinements").status_code == 503


# ── Console dashboard ────────────────────────────────────────────────────


class TestPrintStatus:
    def test_engine_status(self, tmp_path, capsys):
        output = print_status(_make_engine(tmp_path).status())
        assert "ICT Bot Status" in output
        assert "$1,000.00" in output
        assert "not analysed" in output
        assert capsys.readouterr().out.strip() == output.strip()

    def test_missing_fields(self):
        output = print_status({})
        assert "Balance:         N/A" in output
        assert "Drawdown:        N/A" in output

    def test_weekly_line(self):
        output = print_status({
            "weekly_profile": "classic_expansion",
            "weekly_direction": "bullish",
            "weekly_confidence": 0.62,
        })
        assert "classic_expansion bullish (62%)" in output
