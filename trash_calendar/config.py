"""
This module contains configuration settings for the application.

Values come from the environment (optionally via a .env file). The module-level
constants are the documented defaults; Settings.from_env() builds the validated
settings object the process runs with.
"""
import os
import logging
from dataclasses import dataclass
from datetime import time
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .exceptions import ConfigurationError

# Geocoding
GEOCODER_URL = "https://nominatim.openstreetmap.org/search"
GEOCODER_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
GEOCODER_CITY = "Karlsruhe"
GEOCODER_USER_AGENT = "trash-bot/1.0 (waste collection reminders)"
GEOCODER_MIN_INTERVAL = 1.0
GEOCODE_CACHE_TTL_DAYS = 90
GEOCODE_NEGATIVE_TTL_HOURS = 20

# Daily trigger
DAILY_TRIGGER_TIME = "16:00"
TIMEZONE = "Europe/Berlin"

# Logging level
LOG_LEVEL = "INFO"

# Local database path (geocode cache, logs, system info)
LOCAL_DB_PATH = os.environ.get("LOCAL_DB_PATH", "trash_bot.db")

# Calendar refresh and download retry settings
CALENDAR_REFRESH_HOURS = 24
CALENDAR_MAX_RETRIES = 3
CALENDAR_RETRY_DELAY = 10
HOLIDAY_SHIFT = True
HOLIDAY_SUBDIVISION = "BW"  # Baden-Württemberg

# Notification fan-out
NOTIFY_MAX_WORKERS = 10
NOTIFY_DISPATCH_TIMEOUT = 30.0

# Data API
DATA_API_PAGE_SIZE = 500
DATA_API_TIMEOUT = 10

# Telegram bot rate limiting
TELEGRAM_RATE_LIMIT_OVERALL = 30
TELEGRAM_RATE_LIMIT_GROUP = 20 / 60

REQUIRED_VARIABLES = (
    "TELEGRAM_BOT_TOKEN",
    "DATA_API_URL",
    "DATA_API_SECRET",
    "CALENDAR_SOURCE",
)


@dataclass(frozen=True)
class Settings:
    """Validated process configuration."""

    telegram_bot_token: str
    data_api_url: str
    data_api_secret: str
    calendar_source: str
    geocoder_url: str = GEOCODER_URL
    geocoder_reverse_url: str = GEOCODER_REVERSE_URL
    geocoder_city: str = GEOCODER_CITY
    geocoder_user_agent: str = GEOCODER_USER_AGENT
    geocoder_min_interval: float = GEOCODER_MIN_INTERVAL
    geocode_cache_ttl_days: int = GEOCODE_CACHE_TTL_DAYS
    geocode_negative_ttl_hours: int = GEOCODE_NEGATIVE_TTL_HOURS
    daily_trigger_time: time = time(16, 0)
    timezone: str = TIMEZONE
    log_level: int = logging.INFO
    local_db_path: str = LOCAL_DB_PATH
    calendar_refresh_hours: int = CALENDAR_REFRESH_HOURS
    calendar_max_retries: int = CALENDAR_MAX_RETRIES
    calendar_retry_delay: int = CALENDAR_RETRY_DELAY
    holiday_shift: bool = HOLIDAY_SHIFT
    holiday_subdivision: str = HOLIDAY_SUBDIVISION
    notify_max_workers: int = NOTIFY_MAX_WORKERS
    notify_dispatch_timeout: float = NOTIFY_DISPATCH_TIMEOUT
    data_api_page_size: int = DATA_API_PAGE_SIZE
    data_api_timeout: int = DATA_API_TIMEOUT
    telegram_rate_limit_overall: int = TELEGRAM_RATE_LIMIT_OVERALL
    telegram_rate_limit_group: float = TELEGRAM_RATE_LIMIT_GROUP

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Builds settings from environment variables.

        Args:
            environ: The mapping to read from. Defaults to os.environ after loading
                a .env file from the working directory, if present.

        Returns:
            The validated settings.

        Raises:
            ConfigurationError: If a required variable is missing or a value is malformed.
                The message names every offending variable.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        reader = _EnvReader(environ)
        required = {name: reader.required(name) for name in REQUIRED_VARIABLES}

        settings = dict(
            telegram_bot_token=required["TELEGRAM_BOT_TOKEN"],
            data_api_url=required["DATA_API_URL"],
            data_api_secret=required["DATA_API_SECRET"],
            calendar_source=required["CALENDAR_SOURCE"],
            geocoder_url=reader.string("GEOCODER_URL", GEOCODER_URL),
            geocoder_reverse_url=reader.string("GEOCODER_REVERSE_URL", GEOCODER_REVERSE_URL),
            geocoder_city=reader.string("GEOCODER_CITY", GEOCODER_CITY),
            geocoder_user_agent=reader.string("GEOCODER_USER_AGENT", GEOCODER_USER_AGENT),
            geocoder_min_interval=reader.number("GEOCODER_MIN_INTERVAL", GEOCODER_MIN_INTERVAL, float, minimum=0),
            geocode_cache_ttl_days=reader.number("GEOCODE_CACHE_TTL_DAYS", GEOCODE_CACHE_TTL_DAYS, int, minimum=1),
            geocode_negative_ttl_hours=reader.number(
                "GEOCODE_NEGATIVE_TTL_HOURS", GEOCODE_NEGATIVE_TTL_HOURS, int, minimum=1
            ),
            daily_trigger_time=reader.clock_time("DAILY_TRIGGER_TIME", DAILY_TRIGGER_TIME),
            timezone=reader.timezone("TIMEZONE", TIMEZONE),
            log_level=reader.log_level("LOG_LEVEL", LOG_LEVEL),
            local_db_path=reader.string("LOCAL_DB_PATH", LOCAL_DB_PATH),
            calendar_refresh_hours=reader.number("CALENDAR_REFRESH_HOURS", CALENDAR_REFRESH_HOURS, int, minimum=1),
            calendar_max_retries=reader.number("CALENDAR_MAX_RETRIES", CALENDAR_MAX_RETRIES, int, minimum=1),
            calendar_retry_delay=reader.number("CALENDAR_RETRY_DELAY", CALENDAR_RETRY_DELAY, int, minimum=0),
            holiday_shift=reader.flag("HOLIDAY_SHIFT", HOLIDAY_SHIFT),
            holiday_subdivision=reader.string("HOLIDAY_SUBDIVISION", HOLIDAY_SUBDIVISION),
            notify_max_workers=reader.number("NOTIFY_MAX_WORKERS", NOTIFY_MAX_WORKERS, int, minimum=1),
            notify_dispatch_timeout=reader.number(
                "NOTIFY_DISPATCH_TIMEOUT", NOTIFY_DISPATCH_TIMEOUT, float, minimum=1
            ),
            data_api_page_size=reader.number("DATA_API_PAGE_SIZE", DATA_API_PAGE_SIZE, int, minimum=1),
            data_api_timeout=reader.number("DATA_API_TIMEOUT", DATA_API_TIMEOUT, int, minimum=1),
            telegram_rate_limit_overall=reader.number(
                "TELEGRAM_RATE_LIMIT_OVERALL", TELEGRAM_RATE_LIMIT_OVERALL, int, minimum=1
            ),
            telegram_rate_limit_group=reader.number(
                "TELEGRAM_RATE_LIMIT_GROUP", TELEGRAM_RATE_LIMIT_GROUP, float, minimum=0
            ),
        )

        if reader.errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(reader.errors))
        return cls(**settings)


class _EnvReader:
    """Reads typed values and collects every problem instead of stopping at the first."""

    def __init__(self, environ: Mapping[str, str]):
        self.environ = environ
        self.errors = []

    def _raw(self, name: str) -> Optional[str]:
        value = self.environ.get(name)
        if value is None or not value.strip():
            return None
        return value.strip()

    def required(self, name: str) -> str:
        value = self._raw(name)
        if value is None:
            self.errors.append(f"{name} is required but not set")
            return ""
        return value

    def string(self, name: str, default: str) -> str:
        value = self._raw(name)
        return default if value is None else value

    def number(self, name: str, default, cast, minimum=None):
        value = self._raw(name)
        if value is None:
            return default
        try:
            result = cast(value)
        except ValueError:
            self.errors.append(f"{name} must be a number, got {value!r}")
            return default
        if minimum is not None and result < minimum:
            self.errors.append(f"{name} must be at least {minimum}, got {value!r}")
            return default
        return result

    def flag(self, name: str, default: bool) -> bool:
        value = self._raw(name)
        if value is None:
            return default
        if value.lower() in ("1", "true", "yes", "on"):
            return True
        if value.lower() in ("0", "false", "no", "off"):
            return False
        self.errors.append(f"{name} must be true or false, got {value!r}")
        return default

    def clock_time(self, name: str, default: str) -> time:
        value = self._raw(name) or default
        try:
            hours, minutes = value.split(":")
            return time(int(hours), int(minutes))
        except ValueError:
            self.errors.append(f"{name} must be HH:MM, got {value!r}")
            return time(16, 0)

    def timezone(self, name: str, default: str) -> str:
        value = self._raw(name) or default
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            self.errors.append(f"{name} is not a known time zone: {value!r}")
            return default
        return value

    def log_level(self, name: str, default: str) -> int:
        value = (self._raw(name) or default).upper()
        level = logging.getLevelName(value)
        if not isinstance(level, int):
            self.errors.append(f"{name} is not a logging level: {value!r}")
            return logging.INFO
        return level
