"""In-memory registry of live call sessions.

Keyed by the carrier call id. Each key gets its own asyncio.Condition, so
read-modify-write sequences on one call are serialized while different
calls never wait on each other. Entries are lost on restart; the
orchestrator rebuilds a minimal session from storage when that happens.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from callflow.session import CallSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self):
        self._sessions: dict[str, CallSession] = {}
        self._conditions: dict[str, asyncio.Condition] = {}
        # Holders and waiters per key; a key with none and no session is dropped
        self._users: dict[str, int] = {}

    def _condition(self, call_id: str) -> asyncio.Condition:
        cond = self._conditions.get(call_id)
        if cond is None:
            cond = asyncio.Condition()
            self._conditions[call_id] = cond
        return cond

    def _ready(self, call_id: str, ticket: int) -> bool:
        session = self._sessions.get(call_id)
        # A finalized session releases every waiter
        return session is None or session.is_turn_of(ticket)

    @asynccontextmanager
    async def hold(self, call_id: str, ticket: int | None = None) -> AsyncIterator[CallSession | None]:
        """Hold the lock for `call_id` and yield its session (or None).

        With `ticket`, also wait until all earlier tickets for the call have
        committed, so turn commits land in delivery order.
        """
        cond = self._condition(call_id)
        self._users[call_id] = self._users.get(call_id, 0) + 1
        try:
            async with cond:
                if ticket is not None:
                    await cond.wait_for(lambda: self._ready(call_id, ticket))
                try:
                    yield self._sessions.get(call_id)
                finally:
                    cond.notify_all()
        finally:
            self._release(call_id)

    def _release(self, call_id: str) -> None:
        remaining = self._users.get(call_id, 1) - 1
        if remaining > 0:
            self._users[call_id] = remaining
            return
        self._users.pop(call_id, None)
        if call_id not in self._sessions:
            self._conditions.pop(call_id, None)

    async def put(self, call_id: str, session: CallSession) -> None:
        async with self.hold(call_id):
            if call_id in self._sessions:
                logger.warning("Replacing live session for %s", call_id)
            self._sessions[call_id] = session

    async def put_if_absent(self, call_id: str, session: CallSession) -> CallSession:
        """Register `session` unless one is already live; return the live one."""
        async with self.hold(call_id) as existing:
            if existing is not None:
                return existing
            self._sessions[call_id] = session
            return session

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    async def remove(self, call_id: str) -> CallSession | None:
        """Remove and return the session; None if it was already gone."""
        async with self.hold(call_id):
            return self._sessions.pop(call_id, None)

    def pop_locked(self, call_id: str) -> CallSession | None:
        """Remove a session while the caller already holds its lock."""
        return self._sessions.pop(call_id, None)

    def list_active(self) -> list[CallSession]:
        return list(self._sessions.values())

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
