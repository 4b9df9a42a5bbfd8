"""Tests for the staggered notification fan-out."""

import unittest
from datetime import timedelta

from notifications import Notifier
from storage import MemoryStore
from support import FakeClock, FakeGateway


class NotifierTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        self.gateway = FakeGateway()
        self.store = MemoryStore()
        self.sleeps = []
        self.notifier = Notifier(
            self.gateway,
            self.store,
            clock=self.clock,
            spacing=0.1,
            sleep=self.record_sleep,
        )
        for user_id in (1, 2, 3, 4):
            await self.store.upsert_subscription(user_id, "Praga")
        await self.store.upsert_subscription(9, "Centrum")

    async def record_sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    async def test_zone_subscribers_except_author(self) -> None:
        report = await self.notifier.notify_zone("Praga", 2, "nowa zmiana")
        self.assertEqual(report.sent, [1, 3, 4])
        self.assertEqual([m.user_id for m in self.gateway.sent], [1, 3, 4])
        self.assertEqual(self.sleeps, [0.1, 0.1, 0.1])

    async def test_failed_recipient_does_not_stop_the_batch(self) -> None:
        self.gateway.unreachable.add(3)
        report = await self.notifier.notify_zone("Praga", None, "nowa zmiana")
        self.assertEqual(report.sent, [1, 2, 4])
        self.assertEqual(report.failed, [3])

    async def test_batch_stops_once_the_shift_starts(self) -> None:
        starts_at = self.clock.now + timedelta(seconds=1)

        async def slow_sleep(seconds: float) -> None:
            self.clock.advance(seconds=1)

        self.notifier.sleep = slow_sleep
        report = await self.notifier.notify_zone("Praga", None, "nowa zmiana", starts_at=starts_at)
        self.assertEqual(report.sent, [1])
        self.assertEqual(report.skipped, [2, 3, 4])

    async def test_concurrent_workers_deliver_each_recipient_once(self) -> None:
        self.notifier.concurrency = 3
        report = await self.notifier.notify_zone("Praga", None, "nowa zmiana")
        self.assertEqual(sorted(report.sent), [1, 2, 3, 4])
        self.assertEqual(len(self.gateway.sent), 4)

    async def test_empty_zone(self) -> None:
        report = await self.notifier.notify_zone("Ursus", None, "nowa zmiana")
        self.assertEqual(report.sent, [])
        self.assertEqual(self.sleeps, [])

    async def test_broadcast_reaches_known_users(self) -> None:
        report = await self.notifier.broadcast("ogłoszenie")
        self.assertEqual(report.sent, [1, 2, 3, 4, 9])

    async def test_spawned_tasks_are_joined(self) -> None:
        self.notifier.spawn(self.notifier.notify_zone("Centrum", None, "hej"))
        await self.notifier.join()
        self.assertEqual(self.gateway.texts_for(9), ["hej"])


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    unittest.main()
