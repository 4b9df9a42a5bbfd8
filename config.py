"""Environment configuration for the shift exchange bot."""

import os
from typing import Tuple

from dotenv import load_dotenv

from zoneinfo import ZoneInfo


load_dotenv()

DEFAULT_ZONES = (
    "Centrum",
    "Ursus",
    "Bemowo/Bielany",
    "Białołęka/Tarchomin",
    "Praga",
    "Rembertów",
    "Wawer",
    "Służew",
    "Ursynów",
    "Wilanów",
    "Marki",
    "Legionowo",
    "Łomianki",
)


def _int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw_value!r}") from None


def _zones_env() -> Tuple[str, ...]:
    raw_value = os.getenv("ZONES", "")
    zones = tuple(zone.strip() for zone in raw_value.split(",") if zone.strip())
    return zones or DEFAULT_ZONES


BOT_TOKEN = os.getenv("BOT_TOKEN") or os.getenv("TELEGRAM_TOKEN")
ADMIN_ID = _int_env("ADMIN_ID", 0)
TECH_CHAT_ID = _int_env("TECH_CHAT_ID", 0)
TIMEZONE = ZoneInfo(os.getenv("TIMEZONE", "Europe/Warsaw"))
ZONES = _zones_env()

DATE_WINDOW_DAYS = max(0, _int_env("DATE_WINDOW_DAYS", 60))
SESSION_RESET_MINUTES = _int_env("SESSION_RESET_MINUTES", 5)
SESSION_TEARDOWN_MINUTES = _int_env("SESSION_TEARDOWN_MINUTES", 60)
SWEEP_INTERVAL_SECONDS = _int_env("SWEEP_INTERVAL_SECONDS", 5 * 60)
SHIFT_MAX_AGE_HOURS = _int_env("SHIFT_MAX_AGE_HOURS", 24)
# label:furthest-closest, minutes before shift start
REMINDER_THRESHOLDS = os.getenv("REMINDER_THRESHOLDS", "3h:180-60,1h:60-0")
NOTIFY_SPACING_MS = max(0, _int_env("NOTIFY_SPACING_MS", 100))
NOTIFY_CONCURRENCY = max(1, _int_env("NOTIFY_CONCURRENCY", 1))

GOOGLE_SERVICE_ACCOUNT_JSON_BASE64 = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON_BASE64")
GOOGLE_SPREADSHEET_ID = os.getenv("GOOGLE_SPREADSHEET_ID")

WEBAPP_HOST = os.getenv("WEBAPP_HOST", "0.0.0.0")
WEBAPP_PORT = _int_env("WEBAPP_PORT", 3000)
WEBHOOK_PATH = os.getenv("WEBHOOK_PATH", "/webhook")
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "bot.log")
