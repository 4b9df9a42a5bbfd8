"""Staggered fan-out of chat messages with per-recipient failure isolation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Iterable, List, Optional, Set

LOGGER = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    sent: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


class Notifier:
    """Dispatch queue drained by ``concurrency`` workers.

    Each worker sleeps ``spacing`` seconds after every delivery attempt, which
    keeps the outbound rate under the transport's limits.
    """

    def __init__(
        self,
        gateway: Any,
        store: Any,
        *,
        clock: Callable[[], datetime],
        spacing: float = 0.1,
        concurrency: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.clock = clock
        self.spacing = spacing
        self.concurrency = max(1, concurrency)
        self.sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    async def notify_zone(
        self,
        zone: str,
        exclude_user_id: Optional[int],
        text: str,
        *,
        starts_at: Optional[datetime] = None,
    ) -> DeliveryReport:
        subscribers = await self.store.list_subscribers(zone)
        recipients = [user_id for user_id in subscribers if user_id != exclude_user_id]
        report = await self._deliver(recipients, text, starts_at=starts_at)
        LOGGER.info(
            "Zone %s notified: sent=%s failed=%s skipped=%s",
            zone,
            len(report.sent),
            len(report.failed),
            len(report.skipped),
        )
        return report

    async def broadcast(self, text: str) -> DeliveryReport:
        recipients = sorted(await self.store.list_known_user_ids())
        report = await self._deliver(recipients, text)
        LOGGER.info(
            "Broadcast delivered: sent=%s failed=%s", len(report.sent), len(report.failed)
        )
        return report

    async def _deliver(
        self,
        recipients: Iterable[int],
        text: str,
        *,
        starts_at: Optional[datetime] = None,
    ) -> DeliveryReport:
        report = DeliveryReport()
        queue: asyncio.Queue = asyncio.Queue()
        for user_id in recipients:
            queue.put_nowait(user_id)
        if queue.empty():
            return report
        deadline = starts_at.astimezone(timezone.utc) if starts_at is not None else None

        async def worker() -> None:
            while True:
                try:
                    user_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if deadline is not None and self.clock().astimezone(timezone.utc) >= deadline:
                    # the shift began while the batch was in flight
                    report.skipped.append(user_id)
                    continue
                try:
                    await self.gateway.send(user_id, text)
                    report.sent.append(user_id)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Failed to deliver notification to %s", user_id)
                    report.failed.append(user_id)
                await self.sleep(self.spacing)

        workers = min(self.concurrency, queue.qsize())
        await asyncio.gather(*(worker() for _ in range(workers)))
        return report

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a fan-out in the background, keeping a reference until done."""

        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background notification failed", exc_info=exc)

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
