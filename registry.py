"""Business rules over the shift records kept by the store."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional

from errors import ConflictError
from models import Shift, TimeRange

LOGGER = logging.getLogger(__name__)


class ReminderLedger:
    """Fired reminder thresholds per open shift."""

    def __init__(self) -> None:
        self._fired: Dict[int, Dict[str, datetime]] = {}

    def has_fired(self, shift_id: int, label: str) -> bool:
        return label in self._fired.get(shift_id, {})

    def record(self, shift_id: int, label: str, fired_at: datetime) -> None:
        self._fired.setdefault(shift_id, {})[label] = fired_at

    def forget(self, shift_id: int) -> None:
        self._fired.pop(shift_id, None)


class ShiftRegistry:
    """Duplicate and lifecycle rules for shifts.

    Every removal goes through the store's conditional delete, which is the
    only arbiter of who disposed of a shift.
    """

    def __init__(self, store: Any, *, tz: tzinfo, clock: Callable[[], datetime]) -> None:
        self.store = store
        self.tz = tz
        self.clock = clock
        self.reminders = ReminderLedger()

    async def offer(
        self,
        *,
        owner_id: int,
        owner_name: str,
        zone: str,
        day: date,
        time_range: TimeRange,
    ) -> Shift:
        if await self.store.find_duplicate(owner_id, zone, day, time_range):
            raise ConflictError("duplicate shift", reason="duplicate")
        shift = await self.store.create_shift(
            owner_id=owner_id,
            owner_name=owner_name,
            zone=zone,
            day=day,
            time_range=time_range,
            created_at=self.clock(),
        )
        await self.store.increment_stat(owner_id, "shifts_given", 1)
        LOGGER.info(
            "Shift %s offered by %s: %s %s %s",
            shift.id,
            owner_id,
            zone,
            day.isoformat(),
            time_range.label(),
        )
        return shift

    async def get(self, shift_id: int) -> Optional[Shift]:
        return await self.store.get_shift(shift_id)

    def has_started(self, shift: Shift, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return shift.starts_at(self.tz).astimezone(timezone.utc) <= now.astimezone(timezone.utc)

    async def list_visible(self, zone: str) -> List[Shift]:
        """Open shifts of a zone that have not started yet, soonest first."""

        now = self.clock()
        shifts = await self.store.list_open_shifts(zone)
        visible = [shift for shift in shifts if not self.has_started(shift, now)]
        visible.sort(key=lambda shift: (shift.starts_at(self.tz), shift.id))
        return visible

    async def snapshot(self) -> List[Shift]:
        return list(await self.store.list_open_shifts())

    async def list_owned(self, owner_id: int) -> List[Shift]:
        shifts = await self.store.list_shifts_by_owner(owner_id)
        return sorted(shifts, key=lambda shift: (shift.starts_at(self.tz), shift.id))

    async def claim(self, shift_id: int, taker_id: int) -> Shift:
        """Hand the shift over to ``taker_id``; raises ConflictError when gone."""

        shift = await self.store.get_shift(shift_id)
        if shift is None:
            raise ConflictError("shift already gone")
        if shift.owner_id == taker_id:
            raise ConflictError("own shift", reason="own")
        if self.has_started(shift):
            raise ConflictError("shift already started", reason="started")
        if not await self.store.delete_shift_if_present(shift_id):
            LOGGER.info("User %s lost the race for shift %s", taker_id, shift_id)
            raise ConflictError("shift already gone")
        self.reminders.forget(shift_id)
        await self.store.increment_stat(taker_id, "shifts_taken", 1)
        LOGGER.info("Shift %s of %s claimed by %s", shift_id, shift.owner_id, taker_id)
        return shift

    async def withdraw(self, shift_id: int, owner_id: int) -> Shift:
        shift = await self.store.get_shift(shift_id)
        if shift is None or shift.owner_id != owner_id:
            raise ConflictError("shift already gone")
        if not await self.store.delete_shift_if_present(shift_id):
            raise ConflictError("shift already gone")
        self.reminders.forget(shift_id)
        LOGGER.info("Shift %s withdrawn by its owner %s", shift_id, owner_id)
        return shift

    async def remove(self, shift_id: int, reason: str) -> bool:
        removed = await self.store.delete_shift_if_present(shift_id)
        self.reminders.forget(shift_id)
        if removed:
            LOGGER.info("Shift %s removed (%s)", shift_id, reason)
        return removed
