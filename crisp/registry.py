"""
Process-wide store of live sessions.

The registry is an explicit object handed to whatever needs it. With a
SessionStore attached it keeps a dirty set, writes dirty sessions back on
``flush()`` or from the autosave task, and restores sessions on ``load()``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from uuid import uuid4

from .config import Settings
from .events import redis_relay_handler
from .persistence import SessionStore, restore, snapshot
from .session import CrispSession

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return uuid4().hex[:12]


class SessionRegistry:
    def __init__(self, settings: Settings, store: SessionStore | None = None):
        self.settings = settings
        self.store = store
        self._lock = threading.Lock()
        self._sessions: dict[str, CrispSession] = {}
        self._dirty: set[str] = set()
        self._autosave_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _attach(self, session: CrispSession) -> None:
        session.on_change(self.mark_dirty)
        if self.settings.redis_events_enabled:
            session.events.on_event(redis_relay_handler)

    def create(self, owner_id: str, configuration: Settings | None = None) -> CrispSession:
        with self._lock:
            session_id = new_session_id()
            while session_id in self._sessions:
                session_id = new_session_id()
            session = CrispSession(
                session_id,
                owner_id,
                configuration=configuration,
                backlog_limit=self.settings.event_backlog_limit,
            )
            self._sessions[session_id] = session
            self._dirty.add(session_id)
        self._attach(session)
        logger.info("Created session %s for %s", session_id, owner_id)
        return session

    def get(self, session_id: str) -> CrispSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_all(self) -> list[CrispSession]:
        """Sessions ordered by most recent activity."""
        with self._lock:
            sessions = list(self._sessions.values())
        return sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)

    def list_by_owner(self, owner_id: str) -> list[CrispSession]:
        return [session for session in self.list_all() if session.owner_id == owner_id]

    async def remove(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._dirty.discard(session_id)
        if session is None:
            return False
        session.events.close()
        if self.store is not None:
            await self.store.delete(session_id)
        logger.info("Removed session %s", session_id)
        return True

    # -- persistence ------------------------------------------------------

    def mark_dirty(self, session: CrispSession) -> None:
        with self._lock:
            if session.session_id in self._sessions:
                self._dirty.add(session.session_id)

    @property
    def dirty_count(self) -> int:
        with self._lock:
            return len(self._dirty)

    async def flush(self) -> int:
        """Write dirty sessions to the store. Returns the number saved."""
        if self.store is None:
            return 0
        with self._lock:
            dirty = [self._sessions[sid] for sid in self._dirty if sid in self._sessions]
            self._dirty.clear()
        if not dirty:
            return 0

        try:
            saved = await self.store.save_many(snapshot(session) for session in dirty)
        except Exception:
            logger.exception("Failed to save %d sessions", len(dirty))
            with self._lock:
                self._dirty.update(session.session_id for session in dirty)
            raise
        logger.debug("Saved %d sessions", saved)
        return saved

    async def load(self) -> int:
        """Restore persisted sessions not already live. Unreadable records are skipped."""
        if self.store is None:
            return 0
        restored = 0
        for persisted in await self.store.load_all():
            with self._lock:
                if persisted.session_id in self._sessions:
                    continue
            try:
                session = restore(persisted, self.settings.event_backlog_limit)
            except ValueError as exc:
                logger.warning("Skipping session %s: %s", persisted.session_id, exc)
                continue
            with self._lock:
                self._sessions[session.session_id] = session
            self._attach(session)
            if session.status.value != persisted.status:
                self.mark_dirty(session)
            restored += 1
        logger.info("Restored %d sessions", restored)
        return restored

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.flush()
            except Exception:
                logger.warning("Autosave failed; will retry in %.1fs", interval)

    def start_autosave(self) -> asyncio.Task[None]:
        if self._autosave_task is None or self._autosave_task.done():
            self._autosave_task = asyncio.create_task(
                self._autosave_loop(self.settings.session_autosave_seconds)
            )
        return self._autosave_task

    async def close(self) -> None:
        """Stop autosave and write any remaining changes."""
        task, self._autosave_task = self._autosave_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush()
