"""ICT Bot — application configuration.

Loads .env variables into a typed config object.
Validates numeric ranges and live-mode credentials on startup.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from ictbot.models.enums import WeeklyProfile
from ictbot.models.scale import DEFAULT_SCALES, Scale, ScaleConfig
from ictbot.models.timeframe import Timeframe


_LIVE_REQUIRED_VARS = [
    "COINBASE_API_KEY",
    "COINBASE_API_SECRET",
]


@dataclass(frozen=True)
class SessionWindow:
    """A killzone window in US/Eastern wall-clock time, ``[start, end)``.

    A window whose end is not after its start wraps midnight
    (e.g. the Asian session 20:00 to 00:00).
    """

    start: tuple[int, int]
    end: tuple[int, int]

    @property
    def start_minute(self) -> int:
        return self.start[0] * 60 + self.start[1]

    @property
    def end_minute(self) -> int:
        return self.end[0] * 60 + self.end[1]

    def contains(self, minute_of_day: int) -> bool:
        if self.start_minute < self.end_minute:
            return self.start_minute <= minute_of_day < self.end_minute
        return minute_of_day >= self.start_minute or minute_of_day < self.end_minute


# Evaluation order matters where windows overlap (ny_forex before ny_indices).
DEFAULT_SESSIONS: dict[str, SessionWindow] = {
    "asian": SessionWindow(start=(20, 0), end=(0, 0)),
    "london": SessionWindow(start=(2, 0), end=(5, 0)),
    "ny_forex": SessionWindow(start=(7, 0), end=(10, 0)),
    "ny_indices": SessionWindow(start=(8, 30), end=(12, 0)),
}

DEFAULT_SESSION_WEIGHTS: dict[str, float] = {
    "london": 1.5,
    "ny_forex": 1.5,
    "ny_indices": 1.3,
    "asian": 0.3,
    "off_session": 0.3,
}

_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def _ratings(*values: float) -> dict[str, float]:
    return dict(zip(_WEEKDAYS, values))


DEFAULT_DAY_RATINGS: dict[WeeklyProfile, dict[str, float]] = {
    WeeklyProfile.CLASSIC_EXPANSION: _ratings(0.0, 4.0, 5.0, 4.5, 3.5, 3.0, 3.0),
    WeeklyProfile.MIDWEEK_REVERSAL: _ratings(0.0, 3.0, 3.5, 5.0, 4.5, 3.0, 3.0),
    WeeklyProfile.CONSOLIDATION_REVERSAL: _ratings(0.0, 2.0, 2.5, 4.0, 5.0, 3.0, 3.0),
    WeeklyProfile.UNDETERMINED: _ratings(0.0, 3.0, 3.5, 3.5, 3.0, 3.0, 3.0),
}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables.

    Every component receives this object explicitly; nothing below
    ``load_config`` reads the process environment.
    """

    # Exchange
    symbol: str = "BTC-USD"
    coinbase_api_key: str = ""
    coinbase_api_secret: str = ""

    # Paper trading
    paper_trade: bool = True
    initial_balance: float = 200.0

    # Risk
    max_daily_loss: float = 0.03
    max_open_positions: int = 3
    max_risk_pct: float = 0.02
    max_leverage: float = 5.0
    min_tp_multiple: float = 6.0
    trail_timeframe: Timeframe = Timeframe.M5
    cooldown_minutes: int = 15

    # Fees and slippage as fractions (0.001 = 0.1%)
    fee_rate: float = 0.001
    slippage_rate: float = 0.0005

    # Sessions (US/Eastern)
    sessions: dict[str, SessionWindow] = field(default_factory=lambda: dict(DEFAULT_SESSIONS))
    session_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_SESSION_WEIGHTS)
    )

    # Scales
    scales: dict[Scale, ScaleConfig] = field(default_factory=lambda: dict(DEFAULT_SCALES))
    cross_scale_confluence_bonus: float = 0.1

    # Weekly profile
    day_ratings: dict[WeeklyProfile, dict[str, float]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_DAY_RATINGS.items()}
    )
    min_day_rating: float = 3.0
    tgif_retrace_min: float = 0.20
    tgif_retrace_max: float = 0.30

    # PD arrays and liquidity
    fvg_min_gap_percent: float = 0.0005
    ob_lookback: int = 20
    breaker_lookback: int = 30
    liquidity_tolerance: float = 0.0005
    pda_confluence_tolerance: float = 0.15

    # Self-learning
    analysis_interval: int = 3600
    min_sample_per_bucket: int = 10
    adjustment_step: float = 0.02

    # Data and state
    data_lookback: int = 175
    state_dir: str = "logs"
    data_dir: str = "data"
    log_level: str = "INFO"
    health_port: int = 8080

    def day_rating(self, profile: WeeklyProfile, day: str) -> float:
        """Rating for *day* (``"Monday"`` ...) under *profile*; 0.0 when unknown."""
        return self.day_ratings.get(profile, {}).get(day, 0.0)

    def session_weight(self, session: str) -> float:
        return self.session_weights.get(session, 0.5)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value is malformed or out of range, or when live trading is requested
    without exchange credentials.
    """
    load_dotenv(dotenv_path=env_path)

    paper_trade = os.environ.get("PAPER_TRADE", "true").strip().lower() == "true"
    if not paper_trade:
        missing = [v for v in _LIVE_REQUIRED_VARS if not os.environ.get(v)]
        if missing:
            raise ValueError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )

    trail_raw = os.environ.get("TRAIL_TF", "5m")
    trail_tf = Timeframe.from_str_loose(trail_raw)
    if trail_tf is None:
        raise ValueError(f"Environment variable TRAIL_TF is not a timeframe: {trail_raw!r}")

    config = Config(
        symbol=os.environ.get("SYMBOL", "BTC-USD"),
        coinbase_api_key=os.environ.get("COINBASE_API_KEY", ""),
        coinbase_api_secret=os.environ.get("COINBASE_API_SECRET", "").replace("\\n", "\n"),
        paper_trade=paper_trade,
        initial_balance=_env_float("INITIAL_BALANCE", 200.0),
        max_open_positions=_env_int("MAX_OPEN_POSITIONS", 3),
        max_risk_pct=_env_float("MAX_RISK_PCT", 0.02),
        max_leverage=_env_float("MAX_LEVERAGE", 5.0),
        min_tp_multiple=_env_float("MIN_TP_MULTIPLE", 6.0),
        trail_timeframe=trail_tf,
        cooldown_minutes=_env_int("COOLDOWN_MINUTES", 15),
        fee_rate=_env_float("FEE_RATE", 0.001),
        slippage_rate=_env_float("SLIPPAGE_RATE", 0.0005),
        fvg_min_gap_percent=_env_float("FVG_MIN_GAP", 0.0005),
        ob_lookback=_env_int("OB_LOOKBACK", 20),
        breaker_lookback=_env_int("BREAKER_LOOKBACK", 30),
        data_lookback=_env_int("DATA_LOOKBACK", 175),
        state_dir=os.environ.get("STATE_DIR", "logs"),
        data_dir=os.environ.get("DATA_DIR", "data"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=_env_int("HEALTH_PORT", 8080),
    )

    if config.initial_balance <= 0:
        raise ValueError("INITIAL_BALANCE must be positive")
    for name, value in (
        ("FEE_RATE", config.fee_rate),
        ("SLIPPAGE_RATE", config.slippage_rate),
        ("MAX_RISK_PCT", config.max_risk_pct),
    ):
        if value < 0:
            raise ValueError(f"{name} must not be negative")
    if config.max_open_positions < 1:
        raise ValueError("MAX_OPEN_POSITIONS must be at least 1")

    return config
