"""Killzone session tracking in US/Eastern time."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ictbot.config import Config
from ictbot.models.enums import WeeklyProfile

EASTERN = ZoneInfo("America/New_York")
OFF_SESSION = "off_session"
KILLZONES = frozenset({"london", "ny_forex", "ny_indices"})

# NY AM silver bullet window, minutes past ET midnight.
SILVER_BULLET_START = 10 * 60
SILVER_BULLET_END = 11 * 60
SILVER_BULLET_MULTIPLIER = 1.2


def to_eastern(utc_now: datetime) -> datetime:
    if utc_now.tzinfo is None:
        utc_now = utc_now.replace(tzinfo=timezone.utc)
    return utc_now.astimezone(EASTERN)


class SessionManager:
    """Tracks which configured session a clock reading falls in.

    ``update`` must be called with the current (or simulated) time before the
    query helpers are used; day-of-week helpers read the same clock so a
    backtest sees its simulated day rather than the wall clock.
    """

    def __init__(self, config: Config) -> None:
        self.current_session = OFF_SESSION
        self.session_weight = config.session_weight(OFF_SESSION)
        self._now_et: datetime = to_eastern(datetime.now(timezone.utc))

    def update(self, config: Config, utc_now: Optional[datetime] = None) -> str:
        """Resolve the session for *utc_now* (defaults to now) and return its name.

        Sessions are checked in configuration order; the first match wins.
        """
        self._now_et = to_eastern(utc_now or datetime.now(timezone.utc))
        minute = self._now_et.hour * 60 + self._now_et.minute

        self.current_session = OFF_SESSION
        self.session_weight = config.session_weight(OFF_SESSION)
        for name, window in config.sessions.items():
            if window.contains(minute):
                self.current_session = name
                self.session_weight = config.session_weight(name)
                break
        return self.current_session

    def is_london(self) -> bool:
        return self.current_session == "london"

    def is_ny(self) -> bool:
        return self.current_session in ("ny_forex", "ny_indices")

    def is_killzone(self) -> bool:
        return self.current_session in KILLZONES

    def day_of_week(self) -> str:
        """Full weekday name in Eastern time, e.g. ``"Wednesday"``."""
        return self._now_et.strftime("%A")

    def day_rating(self, config: Config, profile: WeeklyProfile) -> float:
        return config.day_rating(profile, self.day_of_week())

    def should_trade_today(self, config: Config, profile: WeeklyProfile) -> bool:
        return self.day_rating(config, profile) >= config.min_day_rating

    def silver_bullet_multiplier(self) -> float:
        """Time-of-day confidence multiplier for the current clock reading."""
        minute = self._now_et.hour * 60 + self._now_et.minute
        if SILVER_BULLET_START <= minute < SILVER_BULLET_END:
            return SILVER_BULLET_MULTIPLIER
        return 1.0
