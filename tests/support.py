"""Fakes shared by the test modules."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional, Set, Tuple

from zoneinfo import ZoneInfo

from errors import TransportError
from gateway import ChannelGateway

WARSAW = ZoneInfo("Europe/Warsaw")


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 10, 20, 9, 0, tzinfo=WARSAW)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class SentMessage:
    user_id: int
    message_id: int
    text: str
    keyboard: Any = None


@dataclass
class FakeGateway(ChannelGateway):
    unreachable: Set[int] = field(default_factory=set)
    sent: List[SentMessage] = field(default_factory=list)
    deleted: List[Tuple[int, int]] = field(default_factory=list)
    edited: List[Tuple[int, int, str]] = field(default_factory=list)
    _next_id: int = 100

    async def send(self, user_id: int, text: str, keyboard: Any = None) -> int:
        if user_id in self.unreachable:
            raise TransportError(user_id, "bot was blocked by the user")
        self._next_id += 1
        self.sent.append(SentMessage(user_id, self._next_id, text, keyboard))
        return self._next_id

    async def edit(self, user_id: int, message_id: int, text: str, keyboard: Any = None) -> None:
        self.edited.append((user_id, message_id, text))

    async def delete(self, user_id: int, message_id: int) -> None:
        self.deleted.append((user_id, message_id))

    def texts_for(self, user_id: int) -> List[str]:
        return [message.text for message in self.sent if message.user_id == user_id]

    def last_text(self, user_id: int) -> str:
        texts = self.texts_for(user_id)
        return texts[-1] if texts else ""

    def clear(self) -> None:
        self.sent.clear()
        self.deleted.clear()


@dataclass
class SlowDeleteGateway(FakeGateway):
    """Deletes give way to other tasks before completing."""

    async def delete(self, user_id: int, message_id: int) -> None:
        for _ in range(3):
            await asyncio.sleep(0)
        await super().delete(user_id, message_id)


async def no_sleep(_: float) -> None:
    await asyncio.sleep(0)
