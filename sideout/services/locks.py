"""Per-session write serialization.

Every write for a session (registration changes, waitlist reorder, session
edits) runs under that session's lock, inside one database transaction, so
the occupancy read and the write that depends on it cannot interleave with
another request for the same session. The lock only covers this process; the
transaction additionally locks the session row (SELECT ... FOR UPDATE) on
databases that support it.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sideout.models import TrainingSession


class SessionLocks:
    """One asyncio.Lock per session id, scoped to the running event loop.

    A lock is dropped once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def get(self, session_id: int) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # Locks bind to the loop they first wait on
            self._locks = {}
            self._users = {}
            self._loop = loop
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: int) -> AsyncIterator[None]:
        lock = self.get(session_id)
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users.get(session_id, 1) - 1
            if remaining:
                self._users[session_id] = remaining
            else:
                self._users.pop(session_id, None)
                self._locks.pop(session_id, None)


session_locks = SessionLocks()


async def locked_session(db: AsyncSession, session_id: int) -> Optional[TrainingSession]:
    """Load the session row FOR UPDATE (ignored by SQLite, whose write lock serializes instead)."""
    result = await db.execute(
        select(TrainingSession)
        .where(TrainingSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
