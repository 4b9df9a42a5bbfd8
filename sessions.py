"""Per-user conversational state with idle policies and serialization."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set

from wizard import MainMenu, WizardState

LOGGER = logging.getLogger(__name__)


@dataclass
class Session:
    user_id: int
    last_active_at: datetime
    state: WizardState = field(default_factory=MainMenu)
    transient_message_ids: List[int] = field(default_factory=list)
    viewed_shift_ids: Set[int] = field(default_factory=set)

    @property
    def mode(self) -> str:
        return self.state.mode


class SessionStore:
    """Holds sessions keyed by user id.

    ``reset_after`` is the short idle window: a session idle for longer is
    reset to the main menu on the next message. ``teardown_after`` is the long
    window after which ``expire_idle`` destroys the session together with its
    transient messages.
    """

    def __init__(
        self,
        gateway: Any,
        *,
        clock: Callable[[], datetime],
        reset_after: timedelta,
        teardown_after: timedelta,
    ) -> None:
        self.gateway = gateway
        self.clock = clock
        self.reset_after = reset_after
        self.teardown_after = teardown_after
        self._sessions: Dict[int, Session] = {}
        self._locks: Dict[int, asyncio.Lock] = {}
        self._locks_guard = asyncio.Lock()

    def get(self, user_id: int) -> Optional[Session]:
        return self._sessions.get(user_id)

    async def create(self, user_id: int, state: Optional[WizardState] = None) -> Session:
        """Start a fresh session, tearing down the previous one first."""

        if user_id in self._sessions:
            await self.destroy(user_id)
        session = Session(user_id=user_id, last_active_at=self.clock())
        if state is not None:
            session.state = state
        self._sessions[user_id] = session
        return session

    async def get_or_create(self, user_id: int) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            session = await self.create(user_id)
        return session

    def touch(self, user_id: int) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.last_active_at = self.clock()

    async def destroy(self, user_id: int) -> None:
        session = self._sessions.pop(user_id, None)
        if session is None:
            return
        for message_id in session.transient_message_ids:
            await self.gateway.delete(user_id, message_id)
        LOGGER.debug(
            "Session of %s destroyed, %s transient messages removed",
            user_id,
            len(session.transient_message_ids),
        )

    def remember_message(self, user_id: int, message_id: Optional[int]) -> None:
        session = self._sessions.get(user_id)
        if session is not None and message_id is not None:
            session.transient_message_ids.append(message_id)

    def mark_viewed(self, user_id: int, shift_ids: Iterable[int]) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.viewed_shift_ids.update(shift_ids)

    def unmark_viewed(self, user_id: int) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.viewed_shift_ids.clear()

    def is_viewed(self, shift_id: int) -> bool:
        return any(shift_id in session.viewed_shift_ids for session in self._sessions.values())

    def is_stale(self, session: Session, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return now - session.last_active_at > self.reset_after

    async def expire_idle(self) -> List[int]:
        """Destroy sessions idle for longer than the teardown window.

        Each teardown runs under the user's lock, and the idle window is
        checked again once the lock is held.
        """

        now = self.clock()
        candidates = [
            user_id
            for user_id, session in self._sessions.items()
            if now - session.last_active_at > self.teardown_after
        ]
        expired = []
        for user_id in candidates:
            async with self.serialized(user_id):
                session = self._sessions.get(user_id)
                if session is None or self.clock() - session.last_active_at <= self.teardown_after:
                    continue
                await self.destroy(user_id)
            expired.append(user_id)
            LOGGER.info("Session of %s cleared after idle timeout", user_id)
        return expired

    async def get_lock(self, user_id: int) -> asyncio.Lock:
        async with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def serialized(self, user_id: int) -> AsyncIterator[None]:
        """Run the enclosed block exclusively for ``user_id``."""

        lock = await self.get_lock(user_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._sessions)
