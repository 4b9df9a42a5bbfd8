"""Periodic sweep expiring stale shifts and firing zone reminders."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple

import messages
from errors import SchedulerItemError
from models import Shift

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderThreshold:
    """Window of minutes before the start in which a reminder fires once."""

    label: str
    start_minutes: int
    end_minutes: int

    def contains(self, minutes_to_start: float) -> bool:
        return self.end_minutes < minutes_to_start <= self.start_minutes


def parse_thresholds(raw_value: str) -> Tuple[ReminderThreshold, ...]:
    """Parse ``"3h:180-60,1h:60-0"`` into thresholds."""

    thresholds = []
    for chunk in (raw_value or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            label, window = chunk.split(":", 1)
            start_text, end_text = window.split("-", 1)
            start_minutes = int(start_text)
            end_minutes = int(end_text)
        except ValueError:
            raise ValueError(f"Invalid reminder threshold {chunk!r}") from None
        if not label.strip() or end_minutes < 0 or start_minutes <= end_minutes:
            raise ValueError(f"Invalid reminder threshold {chunk!r}")
        thresholds.append(ReminderThreshold(label.strip(), start_minutes, end_minutes))
    labels = [threshold.label for threshold in thresholds]
    if len(labels) != len(set(labels)):
        raise ValueError("Reminder threshold labels must be unique")
    return tuple(thresholds)


@dataclass
class SweepReport:
    started: List[int] = field(default_factory=list)
    stale: List[int] = field(default_factory=list)
    reminded: List[Tuple[int, str]] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class ExpirySweeper:
    def __init__(
        self,
        registry: Any,
        sessions: Any,
        notifier: Any,
        *,
        max_age: timedelta,
        thresholds: Sequence[ReminderThreshold],
        clock: Callable[[], datetime],
    ) -> None:
        self.registry = registry
        self.sessions = sessions
        self.notifier = notifier
        self.max_age = max_age
        self.thresholds = tuple(thresholds)
        self.clock = clock
        self._lock = asyncio.Lock()

    async def sweep(self) -> SweepReport:
        async with self._lock:
            report = SweepReport()
            shifts = await self.registry.snapshot()
            for shift in shifts:
                try:
                    await self._process(shift, report)
                except Exception as exc:  # noqa: BLE001
                    error = SchedulerItemError(shift.id, exc)
                    LOGGER.exception("%s", error)
                    report.failed.append(shift.id)
            if shifts:
                LOGGER.info(
                    "Sweep over %s shifts: started=%s stale=%s reminded=%s skipped=%s failed=%s",
                    len(shifts),
                    len(report.started),
                    len(report.stale),
                    len(report.reminded),
                    len(report.skipped),
                    len(report.failed),
                )
            return report

    async def _process(self, shift: Shift, report: SweepReport) -> None:
        if self.sessions.is_viewed(shift.id):
            report.skipped.append(shift.id)
            return

        # UTC, so that the gaps stay exact across DST changes
        now = self.clock().astimezone(timezone.utc)
        starts_at = shift.starts_at(self.registry.tz).astimezone(timezone.utc)
        if starts_at <= now:
            if await self.registry.remove(shift.id, "started"):
                report.started.append(shift.id)
            return

        if now - shift.created_at.astimezone(timezone.utc) > self.max_age:
            if await self.registry.remove(shift.id, "stale"):
                report.stale.append(shift.id)
                await self._tell_owner_expired(shift)
            return

        minutes_to_start = (starts_at - now).total_seconds() / 60
        ledger = self.registry.reminders
        for threshold in self.thresholds:
            if not threshold.contains(minutes_to_start):
                continue
            if ledger.has_fired(shift.id, threshold.label):
                continue
            await self.notifier.notify_zone(
                shift.zone,
                shift.owner_id,
                messages.build_reminder_notice(shift),
                starts_at=starts_at,
            )
            ledger.record(shift.id, threshold.label, now)
            report.reminded.append((shift.id, threshold.label))
            LOGGER.info("Reminder %s sent for shift %s", threshold.label, shift.id)

    async def _tell_owner_expired(self, shift: Shift) -> None:
        try:
            await self.notifier.gateway.send(shift.owner_id, messages.build_expired_notice(shift))
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Could not tell %s about expired shift %s: %s", shift.owner_id, shift.id, exc)


async def run_periodically(
    sweeper: ExpirySweeper,
    interval_seconds: float,
    *,
    sessions: Optional[Any] = None,
) -> None:
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            if sessions is not None:
                await sessions.expire_idle()
            await sweeper.sweep()
        except asyncio.CancelledError:
            break
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Periodic sweep failed: %s", exc)
