"""Tests for ictbot.config — environment variable loading and validation."""

import pytest

from ictbot.config import Config, SessionWindow, load_config
from ictbot.models.enums import WeeklyProfile
from ictbot.models.timeframe import Timeframe

_ENV_VARS = [
    "SYMBOL",
    "PAPER_TRADE",
    "COINBASE_API_KEY",
    "COINBASE_API_SECRET",
    "INITIAL_BALANCE",
    "MAX_OPEN_POSITIONS",
    "MAX_RISK_PCT",
    "MAX_LEVERAGE",
    "MIN_TP_MULTIPLE",
    "TRAIL_TF",
    "COOLDOWN_MINUTES",
    "FEE_RATE",
    "SLIPPAGE_RATE",
    "FVG_MIN_GAP",
    "OB_LOOKBACK",
    "BREAKER_LOOKBACK",
    "DATA_LOOKBACK",
    "STATE_DIR",
    "DATA_DIR",
    "LOG_LEVEL",
    "HEALTH_PORT",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure bot env vars are cleared between tests.

    Each var is set then deleted so monkeypatch removes anything a
    loaded .env file adds during the test.
    """
    for var in _ENV_VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


@pytest.fixture
def no_env_file(tmp_path):
    """A path that does not exist, so load_dotenv never reads a real .env."""
    return str(tmp_path / "missing.env")


class TestLoadConfig:
    def test_defaults(self, no_env_file):
        cfg = load_config(no_env_file)
        assert cfg.symbol == "BTC-USD"
        assert cfg.paper_trade is True
        assert cfg.initial_balance == 200.0
        assert cfg.max_open_positions == 3
        assert cfg.max_risk_pct == 0.02
        assert cfg.min_tp_multiple == 6.0
        assert cfg.trail_timeframe is Timeframe.M5
        assert cfg.cooldown_minutes == 15
        assert cfg.fee_rate == 0.001
        assert cfg.slippage_rate == 0.0005
        assert cfg.state_dir == "logs"
        assert cfg.health_port == 8080

    def test_overrides(self, monkeypatch, no_env_file):
        monkeypatch.setenv("SYMBOL", "ETH-USD")
        monkeypatch.setenv("INITIAL_BALANCE", "1500")
        monkeypatch.setenv("MAX_OPEN_POSITIONS", "5")
        monkeypatch.setenv("FEE_RATE", "0.0006")
        monkeypatch.setenv("STATE_DIR", "/tmp/ictbot")

        cfg = load_config(no_env_file)
        assert cfg.symbol == "ETH-USD"
        assert cfg.initial_balance == 1500.0
        assert cfg.max_open_positions == 5
        assert cfg.fee_rate == 0.0006
        assert cfg.state_dir == "/tmp/ictbot"

    def test_trail_timeframe_is_case_insensitive(self, monkeypatch, no_env_file):
        monkeypatch.setenv("TRAIL_TF", "15M")
        assert load_config(no_env_file).trail_timeframe is Timeframe.M15

    def test_unknown_trail_timeframe(self, monkeypatch, no_env_file):
        monkeypatch.setenv("TRAIL_TF", "2h")
        with pytest.raises(ValueError, match="TRAIL_TF"):
            load_config(no_env_file)

    def test_invalid_number(self, monkeypatch, no_env_file):
        monkeypatch.setenv("FEE_RATE", "cheap")
        with pytest.raises(ValueError, match="FEE_RATE must be a number"):
            load_config(no_env_file)

    def test_invalid_integer(self, monkeypatch, no_env_file):
        monkeypatch.setenv("HEALTH_PORT", "80.5")
        with pytest.raises(ValueError, match="HEALTH_PORT must be an integer"):
            load_config(no_env_file)

    def test_non_positive_balance(self, monkeypatch, no_env_file):
        monkeypatch.setenv("INITIAL_BALANCE", "0")
        with pytest.raises(ValueError, match="INITIAL_BALANCE"):
            load_config(no_env_file)

    def test_negative_fee(self, monkeypatch, no_env_file):
        monkeypatch.setenv("SLIPPAGE_RATE", "-0.1")
        with pytest.raises(ValueError, match="SLIPPAGE_RATE"):
            load_config(no_env_file)

    def test_live_mode_requires_credentials(self, monkeypatch, no_env_file):
        monkeypatch.setenv("PAPER_TRADE", "false")
        monkeypatch.setenv("COINBASE_API_KEY", "organizations/abc/apiKeys/def")
        with pytest.raises(ValueError, match="COINBASE_API_SECRET"):
            load_config(no_env_file)

    def test_live_mode_with_credentials(self, monkeypatch, no_env_file):
        monkeypatch.setenv("PAPER_TRADE", "false")
        monkeypatch.setenv("COINBASE_API_KEY", "key")
        monkeypatch.setenv("COINBASE_API_SECRET", "line1\\nline2")

        cfg = load_config(no_env_file)
        assert cfg.paper_trade is False
        assert cfg.coinbase_api_secret == "line1\nline2"

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SYMBOL=SOL-USD\nINITIAL_BALANCE=750\n")

        cfg = load_config(str(env_file))
        assert cfg.symbol == "SOL-USD"
        assert cfg.initial_balance == 750.0


class TestConfigDefaults:
    def test_session_lookup(self):
        cfg = Config()
        assert cfg.session_weight("london") == 1.5
        assert cfg.session_weight("unknown") == 0.5

    def test_day_rating_lookup(self):
        cfg = Config()
        assert cfg.day_rating(WeeklyProfile.CLASSIC_EXPANSION, "Wednesday") == 5.0
        assert cfg.day_rating(WeeklyProfile.MIDWEEK_REVERSAL, "Monday") == 0.0
        assert cfg.day_rating(WeeklyProfile.UNDETERMINED, "Funday") == 0.0

    def test_wrapping_window(self):
        asian = SessionWindow(start=(20, 0), end=(0, 0))
        assert asian.contains(21 * 60)
        assert not asian.contains(0)
        assert not asian.contains(12 * 60)

    def test_defaults_are_not_shared(self):
        a, b = Config(), Config()
        assert a.session_weights == b.session_weights
        assert a.session_weights is not b.session_weights
