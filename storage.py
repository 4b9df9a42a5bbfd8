"""Persistence backends for shifts, subscriptions, profiles and stats.

Two interchangeable stores expose the same coroutine API:

* ``SheetsStore`` keeps everything in a Google Sheets spreadsheet through
  ``gspread``. Blocking calls run in worker threads; a process-wide lock makes
  read-modify-write sequences (duplicate-checked insert, conditional delete,
  counters) atomic within the bot process.
* ``MemoryStore`` keeps everything in dictionaries. It yields to the event
  loop before every operation, so concurrent coroutines interleave the same
  way they do against the networked store.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import json
import logging
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar

import gspread
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials

import config
from errors import ConflictError, StoreError
from models import (STAT_FIELDS, Shift, Stat, Subscription, TimeRange, UserProfile,
                    optional_int)


LOGGER = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

# failures reported to callers as StoreError
SHEETS_FAILURES = (
    gspread.exceptions.GSpreadException,
    requests.exceptions.RequestException,
    GoogleAuthError,
    RuntimeError,
)

SHIFTS_SHEET = "Shifts"
SUBSCRIPTIONS_SHEET = "Subscriptions"
PROFILES_SHEET = "Profiles"
STATS_SHEET = "Stats"
META_SHEET = "Meta"

SHIFTS_HEADERS = [
    "id",
    "owner_id",
    "owner_name",
    "zone",
    "date",
    "time_from",
    "time_to",
    "created_at",
]

SUBSCRIPTIONS_HEADERS = [
    "user_id",
    "zone",
]

PROFILES_HEADERS = [
    "user_id",
    "first_name",
    "last_name",
    "courier_id",
    "updated_at",
]

STATS_HEADERS = ["user_id", *STAT_FIELDS]

META_HEADERS = ["key", "value"]
LAST_SHIFT_ID_KEY = "last_shift_id"

T = TypeVar("T")


def _check_stat_field(field: str) -> None:
    if field not in STAT_FIELDS:
        raise ValueError(f"Unknown stat field {field!r}")


def shift_from_row(row: Dict[str, Any]) -> Optional[Shift]:
    """Build a Shift from a sheet row, or None when the row is unusable."""

    shift_id = optional_int(row.get("id"))
    owner_id = optional_int(row.get("owner_id"))
    if shift_id is None or owner_id is None:
        return None
    try:
        day = date.fromisoformat(str(row.get("date") or "").strip())
        time_range = TimeRange.from_label(
            f"{row.get('time_from') or ''}-{row.get('time_to') or ''}"
        )
        created_at = datetime.fromisoformat(str(row.get("created_at") or "").strip())
    except ValueError:
        LOGGER.warning("Skipping malformed shift row %s", row)
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Shift(
        id=shift_id,
        owner_id=owner_id,
        owner_name=str(row.get("owner_name") or ""),
        zone=str(row.get("zone") or ""),
        day=day,
        time_range=time_range,
        created_at=created_at,
    )


def shift_to_row(shift: Shift) -> List[str]:
    return [
        str(shift.id),
        str(shift.owner_id),
        shift.owner_name,
        shift.zone,
        shift.day.isoformat(),
        f"{shift.time_range.start:%H:%M}",
        f"{shift.time_range.end:%H:%M}",
        shift.created_at.isoformat(),
    ]


class MemoryStore:
    """Dictionary-backed store used in development and tests."""

    def __init__(self) -> None:
        self._shifts: Dict[int, Shift] = {}
        self._subscriptions: Set[Subscription] = set()
        self._profiles: Dict[int, UserProfile] = {}
        self._stats: Dict[int, Stat] = {}
        self._ids = itertools.count(1)

    async def _yield(self) -> None:
        await asyncio.sleep(0)

    async def create_shift(
        self,
        *,
        owner_id: int,
        owner_name: str,
        zone: str,
        day: date,
        time_range: TimeRange,
        created_at: datetime,
    ) -> Shift:
        await self._yield()
        if any(s.same_slot(owner_id, zone, day, time_range) for s in self._shifts.values()):
            raise ConflictError("duplicate shift", reason="duplicate")
        shift = Shift(
            id=next(self._ids),
            owner_id=owner_id,
            owner_name=owner_name,
            zone=zone,
            day=day,
            time_range=time_range,
            created_at=created_at,
        )
        self._shifts[shift.id] = shift
        return shift

    async def get_shift(self, shift_id: int) -> Optional[Shift]:
        await self._yield()
        return self._shifts.get(shift_id)

    async def list_open_shifts(self, zone: Optional[str] = None) -> List[Shift]:
        await self._yield()
        return [s for s in self._shifts.values() if zone is None or s.zone == zone]

    async def list_shifts_by_owner(self, owner_id: int) -> List[Shift]:
        await self._yield()
        return [s for s in self._shifts.values() if s.owner_id == owner_id]

    async def delete_shift_if_present(self, shift_id: int) -> bool:
        await self._yield()
        return self._shifts.pop(shift_id, None) is not None

    async def find_duplicate(
        self, owner_id: int, zone: str, day: date, time_range: TimeRange
    ) -> bool:
        await self._yield()
        return any(s.same_slot(owner_id, zone, day, time_range) for s in self._shifts.values())

    async def list_subscribers(self, zone: str) -> List[int]:
        await self._yield()
        return sorted(sub.user_id for sub in self._subscriptions if sub.zone == zone)

    async def list_subscriptions(self, user_id: int) -> List[str]:
        await self._yield()
        return sorted(sub.zone for sub in self._subscriptions if sub.user_id == user_id)

    async def upsert_subscription(self, user_id: int, zone: str) -> bool:
        await self._yield()
        key = Subscription(user_id, zone)
        if key in self._subscriptions:
            return False
        self._subscriptions.add(key)
        return True

    async def delete_subscription(self, user_id: int, zone: str) -> bool:
        await self._yield()
        key = Subscription(user_id, zone)
        if key not in self._subscriptions:
            return False
        self._subscriptions.discard(key)
        return True

    async def upsert_profile(self, profile: UserProfile) -> None:
        await self._yield()
        self._profiles[profile.user_id] = profile

    async def get_profile(self, user_id: int) -> Optional[UserProfile]:
        await self._yield()
        return self._profiles.get(user_id)

    async def increment_stat(self, user_id: int, field: str, delta: int = 1) -> Stat:
        _check_stat_field(field)
        await self._yield()
        current = self._stats.get(user_id) or Stat(user_id=user_id)
        values = {name: getattr(current, name) for name in STAT_FIELDS}
        values[field] = max(0, values[field] + delta)
        updated = Stat(user_id=user_id, **values)
        self._stats[user_id] = updated
        return updated

    async def get_stats(self, user_id: int) -> Optional[Stat]:
        await self._yield()
        return self._stats.get(user_id)

    async def list_known_user_ids(self) -> Set[int]:
        await self._yield()
        known = {s.owner_id for s in self._shifts.values()}
        known.update(sub.user_id for sub in self._subscriptions)
        known.update(self._profiles)
        known.update(self._stats)
        return known


def _decode_service_account(encoded: Optional[str]) -> Dict[str, Any]:
    if not encoded:
        raise RuntimeError("GOOGLE_SERVICE_ACCOUNT_JSON_BASE64 is required")
    try:
        decoded = base64.b64decode(encoded)
        return json.loads(decoded)
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError("Failed to decode GOOGLE_SERVICE_ACCOUNT_JSON_BASE64") from exc


def _ensure_headers(ws: gspread.Worksheet, headers: Iterable[str]) -> None:
    headers = list(headers)
    current = ws.row_values(1)
    if current[: len(headers)] != headers:
        ws.update(values=[headers], range_name="A1")


class SheetsStore:
    """Google Sheets backed store, one worksheet per record type."""

    def __init__(self, spreadsheet_id: str, service_account_b64: Optional[str]) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._service_account_b64 = service_account_b64
        self._lock = RLock()
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: Dict[str, gspread.Worksheet] = {}

    def _ensure_initialized(self) -> None:
        with self._lock:
            if self._spreadsheet is not None:
                return
            credentials_info = _decode_service_account(self._service_account_b64)
            credentials = Credentials.from_service_account_info(credentials_info, scopes=SCOPES)
            client = gspread.authorize(credentials)
            self._spreadsheet = client.open_by_key(self._spreadsheet_id)
            for title, headers in (
                (SHIFTS_SHEET, SHIFTS_HEADERS),
                (SUBSCRIPTIONS_SHEET, SUBSCRIPTIONS_HEADERS),
                (PROFILES_SHEET, PROFILES_HEADERS),
                (STATS_SHEET, STATS_HEADERS),
                (META_SHEET, META_HEADERS),
            ):
                ws = self._get_or_create_worksheet(title)
                _ensure_headers(ws, headers)
                self._worksheets[title] = ws
            LOGGER.info("Connected to spreadsheet %s", self._spreadsheet_id)

    def _get_or_create_worksheet(self, title: str) -> gspread.Worksheet:
        if self._spreadsheet is None:
            raise RuntimeError("Spreadsheet not initialized")
        try:
            return self._spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            LOGGER.info("Worksheet %s not found, creating", title)
            return self._spreadsheet.add_worksheet(title=title, rows=1000, cols=26)

    def _ws(self, title: str) -> gspread.Worksheet:
        self._ensure_initialized()
        return self._worksheets[title]

    def _records(self, title: str, headers: List[str]) -> List[Dict[str, Any]]:
        return self._ws(title).get_all_records(
            expected_headers=headers, numericise_ignore=["all"]
        )

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        def locked() -> T:
            with self._lock:
                return func(*args)

        try:
            return await asyncio.to_thread(locked)
        except SHEETS_FAILURES as exc:
            LOGGER.exception("Google Sheets call %s failed", func.__name__)
            raise StoreError(str(exc)) from exc

    # shifts

    def _shift_rows(self) -> List[Tuple[int, Shift]]:
        rows = []
        for index, row in enumerate(self._records(SHIFTS_SHEET, SHIFTS_HEADERS), start=2):
            shift = shift_from_row(row)
            if shift is not None:
                rows.append((index, shift))
        return rows

    def _next_shift_id(self, existing: Iterable[Shift]) -> int:
        meta = self._ws(META_SHEET)
        cell = meta.find(LAST_SHIFT_ID_KEY, in_column=1)
        stored = optional_int(meta.cell(cell.row, 2).value) if cell else None
        next_id = max([stored or 0, *(s.id for s in existing)]) + 1
        if cell:
            meta.update_cell(cell.row, 2, str(next_id))
        else:
            meta.append_row([LAST_SHIFT_ID_KEY, str(next_id)], value_input_option="RAW")
        return next_id

    def _create_shift_sync(
        self,
        owner_id: int,
        owner_name: str,
        zone: str,
        day: date,
        time_range: TimeRange,
        created_at: datetime,
    ) -> Shift:
        existing = [shift for _, shift in self._shift_rows()]
        if any(s.same_slot(owner_id, zone, day, time_range) for s in existing):
            raise ConflictError("duplicate shift", reason="duplicate")
        shift = Shift(
            id=self._next_shift_id(existing),
            owner_id=owner_id,
            owner_name=owner_name,
            zone=zone,
            day=day,
            time_range=time_range,
            created_at=created_at,
        )
        self._ws(SHIFTS_SHEET).append_row(shift_to_row(shift), value_input_option="RAW")
        LOGGER.info("Appended shift %s to Google Sheets", shift.id)
        return shift

    async def create_shift(
        self,
        *,
        owner_id: int,
        owner_name: str,
        zone: str,
        day: date,
        time_range: TimeRange,
        created_at: datetime,
    ) -> Shift:
        return await self._run(
            self._create_shift_sync, owner_id, owner_name, zone, day, time_range, created_at
        )

    def _get_shift_sync(self, shift_id: int) -> Optional[Shift]:
        for _, shift in self._shift_rows():
            if shift.id == shift_id:
                return shift
        return None

    async def get_shift(self, shift_id: int) -> Optional[Shift]:
        return await self._run(self._get_shift_sync, shift_id)

    def _list_shifts_sync(self, zone: Optional[str], owner_id: Optional[int]) -> List[Shift]:
        return [
            shift
            for _, shift in self._shift_rows()
            if (zone is None or shift.zone == zone)
            and (owner_id is None or shift.owner_id == owner_id)
        ]

    async def list_open_shifts(self, zone: Optional[str] = None) -> List[Shift]:
        return await self._run(self._list_shifts_sync, zone, None)

    async def list_shifts_by_owner(self, owner_id: int) -> List[Shift]:
        return await self._run(self._list_shifts_sync, None, owner_id)

    def _delete_shift_sync(self, shift_id: int) -> bool:
        for row_index, shift in self._shift_rows():
            if shift.id == shift_id:
                self._ws(SHIFTS_SHEET).delete_rows(row_index)
                LOGGER.info("Deleted shift %s from Google Sheets", shift_id)
                return True
        return False

    async def delete_shift_if_present(self, shift_id: int) -> bool:
        return await self._run(self._delete_shift_sync, shift_id)

    def _find_duplicate_sync(
        self, owner_id: int, zone: str, day: date, time_range: TimeRange
    ) -> bool:
        return any(
            shift.same_slot(owner_id, zone, day, time_range) for _, shift in self._shift_rows()
        )

    async def find_duplicate(
        self, owner_id: int, zone: str, day: date, time_range: TimeRange
    ) -> bool:
        return await self._run(self._find_duplicate_sync, owner_id, zone, day, time_range)

    # subscriptions

    def _subscription_rows(self) -> List[Tuple[int, int, str]]:
        rows = []
        records = self._records(SUBSCRIPTIONS_SHEET, SUBSCRIPTIONS_HEADERS)
        for index, row in enumerate(records, start=2):
            user_id = optional_int(row.get("user_id"))
            zone = str(row.get("zone") or "").strip()
            if user_id is not None and zone:
                rows.append((index, user_id, zone))
        return rows

    def _list_subscribers_sync(self, zone: str) -> List[int]:
        return sorted({user_id for _, user_id, sub_zone in self._subscription_rows() if sub_zone == zone})

    async def list_subscribers(self, zone: str) -> List[int]:
        return await self._run(self._list_subscribers_sync, zone)

    def _list_subscriptions_sync(self, user_id: int) -> List[str]:
        return sorted({zone for _, sub_user, zone in self._subscription_rows() if sub_user == user_id})

    async def list_subscriptions(self, user_id: int) -> List[str]:
        return await self._run(self._list_subscriptions_sync, user_id)

    def _upsert_subscription_sync(self, user_id: int, zone: str) -> bool:
        for _, sub_user, sub_zone in self._subscription_rows():
            if sub_user == user_id and sub_zone == zone:
                return False
        self._ws(SUBSCRIPTIONS_SHEET).append_row([str(user_id), zone], value_input_option="RAW")
        return True

    async def upsert_subscription(self, user_id: int, zone: str) -> bool:
        return await self._run(self._upsert_subscription_sync, user_id, zone)

    def _delete_subscription_sync(self, user_id: int, zone: str) -> bool:
        for row_index, sub_user, sub_zone in self._subscription_rows():
            if sub_user == user_id and sub_zone == zone:
                self._ws(SUBSCRIPTIONS_SHEET).delete_rows(row_index)
                return True
        return False

    async def delete_subscription(self, user_id: int, zone: str) -> bool:
        return await self._run(self._delete_subscription_sync, user_id, zone)

    # profiles

    def _upsert_profile_sync(self, profile: UserProfile) -> None:
        ws = self._ws(PROFILES_SHEET)
        row_values = [
            str(profile.user_id),
            profile.first_name,
            profile.last_name,
            profile.courier_id,
            datetime.now(timezone.utc).isoformat(),
        ]
        cell = ws.find(str(profile.user_id), in_column=1)
        if cell is None:
            ws.append_row(row_values, value_input_option="RAW")
        else:
            ws.update(
                values=[row_values],
                range_name=f"A{cell.row}:E{cell.row}",
                value_input_option="RAW",
            )
        LOGGER.debug("Stored profile of user %s", profile.user_id)

    async def upsert_profile(self, profile: UserProfile) -> None:
        await self._run(self._upsert_profile_sync, profile)

    def _get_profile_sync(self, user_id: int) -> Optional[UserProfile]:
        for row in self._records(PROFILES_SHEET, PROFILES_HEADERS):
            if optional_int(row.get("user_id")) == user_id:
                return UserProfile(
                    user_id=user_id,
                    first_name=str(row.get("first_name") or ""),
                    last_name=str(row.get("last_name") or ""),
                    courier_id=str(row.get("courier_id") or ""),
                )
        return None

    async def get_profile(self, user_id: int) -> Optional[UserProfile]:
        return await self._run(self._get_profile_sync, user_id)

    # stats

    def _stat_rows(self) -> List[Tuple[int, Stat]]:
        rows = []
        for index, row in enumerate(self._records(STATS_SHEET, STATS_HEADERS), start=2):
            user_id = optional_int(row.get("user_id"))
            if user_id is None:
                continue
            values = {name: optional_int(row.get(name)) or 0 for name in STAT_FIELDS}
            rows.append((index, Stat(user_id=user_id, **values)))
        return rows

    def _increment_stat_sync(self, user_id: int, field: str, delta: int) -> Stat:
        ws = self._ws(STATS_SHEET)
        for row_index, stat in self._stat_rows():
            if stat.user_id == user_id:
                new_value = max(0, getattr(stat, field) + delta)
                ws.update_cell(row_index, STATS_HEADERS.index(field) + 1, str(new_value))
                values = {name: getattr(stat, name) for name in STAT_FIELDS}
                values[field] = new_value
                return Stat(user_id=user_id, **values)
        values = {name: 0 for name in STAT_FIELDS}
        values[field] = max(0, delta)
        ws.append_row(
            [str(user_id), *(str(values[name]) for name in STAT_FIELDS)],
            value_input_option="RAW",
        )
        return Stat(user_id=user_id, **values)

    async def increment_stat(self, user_id: int, field: str, delta: int = 1) -> Stat:
        _check_stat_field(field)
        stat = await self._run(self._increment_stat_sync, user_id, field, delta)
        LOGGER.info("Updated stats of user %s: %s %+d", user_id, field, delta)
        return stat

    def _get_stats_sync(self, user_id: int) -> Optional[Stat]:
        for _, stat in self._stat_rows():
            if stat.user_id == user_id:
                return stat
        return None

    async def get_stats(self, user_id: int) -> Optional[Stat]:
        return await self._run(self._get_stats_sync, user_id)

    def _known_user_ids_sync(self) -> Set[int]:
        known = {shift.owner_id for _, shift in self._shift_rows()}
        known.update(user_id for _, user_id, _ in self._subscription_rows())
        known.update(stat.user_id for _, stat in self._stat_rows())
        for row in self._records(PROFILES_SHEET, PROFILES_HEADERS):
            user_id = optional_int(row.get("user_id"))
            if user_id is not None:
                known.add(user_id)
        return known

    async def list_known_user_ids(self) -> Set[int]:
        return await self._run(self._known_user_ids_sync)


def create_store() -> Any:
    """Return the Sheets store when a spreadsheet is configured, else memory."""

    if config.GOOGLE_SPREADSHEET_ID:
        return SheetsStore(
            config.GOOGLE_SPREADSHEET_ID, config.GOOGLE_SERVICE_ACCOUNT_JSON_BASE64
        )
    LOGGER.warning("GOOGLE_SPREADSHEET_ID is not set, shifts are kept in memory only")
    return MemoryStore()


__all__ = [
    "MemoryStore",
    "SheetsStore",
    "create_store",
    "shift_from_row",
    "shift_to_row",
]
