"""Parsing of the free-form zone, date, time and identity answers."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Tuple

from errors import UserInputError
from models import TimeRange, UserProfile

DATE_FORMAT_HINT = "Napisz np. dzisiaj, jutro lub 05.05.2025"
TIME_FORMAT_HINT = "Napisz np. 11:00-19:00"
PROFILE_FORMAT_HINT = (
    "Podaj imię, nazwisko i ID kuriera, oddzielone spacjami (np. Jan Kowalski 12345)."
)

NATURAL_DAY_OFFSETS = {
    "dzisiaj": 0,
    "dzis": 0,
    "jutro": 1,
    "pojutrze": 2,
}

WEEKDAY_ALIASES = {
    "pn": 0,
    "pon": 0,
    "poniedzialek": 0,
    "wt": 1,
    "wto": 1,
    "wtorek": 1,
    "sr": 2,
    "sro": 2,
    "sroda": 2,
    "cz": 3,
    "czw": 3,
    "czwartek": 3,
    "pt": 4,
    "pia": 4,
    "piatek": 4,
    "sb": 5,
    "sob": 5,
    "sobota": 5,
    "nd": 6,
    "ndz": 6,
    "niedz": 6,
    "niedziela": 6,
}

_DIACRITICS = str.maketrans("ąćęłńóśźż", "acelnoszz")

TIME_RANGE_PATTERN = re.compile(
    r"^(\d{1,2})(?::?(\d{0,2}))?-(\d{1,2})(?::?(\d{0,2}))?$"
)
COURIER_ID_PATTERN = re.compile(r"^\d{1,12}$")
NAME_MAX_LENGTH = 40


def _normalize_text(value: str) -> str:
    text = value.strip().lower()
    text = text.replace("–", "-")
    text = text.replace("—", "-")
    text = text.replace("‒", "-")
    text = text.replace("‐", "-")
    text = text.replace("−", "-")
    text = text.replace(",", ".")
    text = text.replace("\xa0", " ")
    text = text.replace("“", "")
    text = text.replace("”", "")
    text = text.replace('"', "")
    text = text.replace("'", "")
    text = text.translate(_DIACRITICS)
    text = re.sub(r"\s+", "", text)
    return text


def parse_zone(raw_value: str, zones: Iterable[str]) -> str:
    candidate = (raw_value or "").strip().lower()
    for zone in zones:
        if zone.lower() == candidate:
            return zone
    raise UserInputError("Nie ma takiej strefy. Wybierz strefę z listy.", reason="zone")


def parse_user_date(raw_value: str, *, today: date, max_days: int) -> date:
    normalized = _normalize_text(raw_value or "")
    if not normalized:
        raise UserInputError(f"Zły format daty. {DATE_FORMAT_HINT}", reason="empty")

    try:
        candidate: Optional[date] = date.fromisoformat(normalized)
    except ValueError:
        candidate = None

    if candidate is None:
        if normalized in NATURAL_DAY_OFFSETS:
            candidate = today + timedelta(days=NATURAL_DAY_OFFSETS[normalized])
        elif normalized in WEEKDAY_ALIASES:
            target_weekday = WEEKDAY_ALIASES[normalized]
            days_ahead = (target_weekday - today.weekday()) % 7
            if days_ahead == 0:
                days_ahead = 7
            candidate = today + timedelta(days=days_ahead)
        else:
            dotted = normalized.replace("/", ".").replace("-", ".")
            parts = tuple(dotted.split(".")) if "." in dotted else ()
            candidate = _parse_numeric_date(parts, today)

    if candidate is None:
        raise UserInputError(f"Zły format daty. {DATE_FORMAT_HINT}", reason="unparsed")

    if candidate < today:
        raise UserInputError("Ta data już minęła. Podaj dzisiejszą lub przyszłą datę.", reason="past")

    if candidate > today + timedelta(days=max_days):
        raise UserInputError(
            f"Data jest zbyt odległa. Możesz oddać zmianę najwyżej {max_days} dni naprzód.",
            reason="too_far",
        )

    return candidate


def _parse_numeric_date(parts: Tuple[str, ...], today: date) -> Optional[date]:
    parts = tuple(part for part in parts if part)
    if not parts or not all(part.isdigit() for part in parts):
        return None
    if len(parts) == 2:
        day = int(parts[0])
        month = int(parts[1])
        try:
            candidate = date(today.year, month, day)
        except ValueError:
            return None
        if candidate < today:
            try:
                candidate = date(today.year + 1, month, day)
            except ValueError:
                return None
        return candidate
    if len(parts) == 3 and len(parts[2]) in (2, 4):
        day = int(parts[0])
        month = int(parts[1])
        year = int(parts[2])
        if year < 100:
            year += 2000
        try:
            return date(year, month, day)
        except ValueError:
            return None
    return None


def parse_time_range(raw_value: str) -> TimeRange:
    normalized = _normalize_text(raw_value or "")
    normalized = normalized.replace("..", ".")
    normalized = normalized.replace(".", ":")
    match = TIME_RANGE_PATTERN.match(normalized)
    if not match:
        raise UserInputError(f"Zły format godzin. {TIME_FORMAT_HINT}", reason="unparsed")
    start_hour, start_minute, end_hour, end_minute = match.groups()
    start = _normalize_time_component(start_hour, start_minute)
    end = _normalize_time_component(end_hour, end_minute)
    if not start or not end:
        raise UserInputError(
            f"Godziny muszą mieścić się w zakresie 00:00-23:59. {TIME_FORMAT_HINT}",
            reason="out_of_range",
        )
    time_range = TimeRange(
        start=datetime.strptime(start, "%H:%M").time(),
        end=datetime.strptime(end, "%H:%M").time(),
    )
    # end before start is an overnight shift; equal bounds describe nothing
    if time_range.start == time_range.end:
        raise UserInputError(
            "Godzina zakończenia musi różnić się od godziny rozpoczęcia.",
            reason="empty_range",
        )
    return time_range


def _normalize_time_component(hour_text: str, minute_text: Optional[str]) -> Optional[str]:
    hour = int(hour_text)
    if not 0 <= hour <= 23:
        return None
    if minute_text:
        if len(minute_text) == 1:
            minute = int(minute_text) * 10
        else:
            minute = int(minute_text)
    else:
        minute = 0
    if not 0 <= minute < 60:
        return None
    return f"{hour:02d}:{minute:02d}"


def validate_start(day: date, time_range: TimeRange, now: datetime) -> None:
    """Reject a shift for today whose start is not in the future."""

    if day == now.date() and time_range.start <= now.time().replace(tzinfo=None):
        raise UserInputError(
            "Ta zmiana już się zaczęła. Podaj późniejsze godziny lub inną datę.",
            reason="started",
        )


def _capitalize_name(value: str) -> str:
    parts = []
    for part in value.split("-"):
        if not part:
            parts.append(part)
        else:
            parts.append(part[0].upper() + part[1:].lower())
    return "-".join(parts)


def _is_name_token(value: str) -> bool:
    stripped = value.replace("-", "").replace("'", "")
    return bool(stripped) and stripped.isalpha() and len(value) <= NAME_MAX_LENGTH


def parse_profile(raw_value: str, user_id: int) -> UserProfile:
    tokens = (raw_value or "").split()
    if len(tokens) < 3:
        raise UserInputError(f"Błąd formatu. {PROFILE_FORMAT_HINT}", reason="tokens")
    courier_id = tokens[-1]
    if not COURIER_ID_PATTERN.match(courier_id):
        raise UserInputError(
            f"ID kuriera musi składać się z cyfr. {PROFILE_FORMAT_HINT}",
            reason="courier_id",
        )
    names = tokens[:-1]
    if not all(_is_name_token(token) for token in names):
        raise UserInputError(
            f"Imię i nazwisko mogą zawierać tylko litery i myślnik. {PROFILE_FORMAT_HINT}",
            reason="name",
        )
    return UserProfile(
        user_id=user_id,
        first_name=_capitalize_name(names[0]),
        last_name=" ".join(_capitalize_name(name) for name in names[1:]),
        courier_id=courier_id,
    )
