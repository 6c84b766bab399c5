"""Session store: Protocol + durable implementation with an in-memory mirror."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from tanda_router.domain.codec import (
    row_to_session,
    session_to_row,
    split_delta,
    strip_scratch,
    summarize,
)
from tanda_router.domain.state import Event, GetSessionConfig, Session, SessionSummary
from tanda_router.infrastructure.session_backend import Row, SessionBackend

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Protocol for creating, loading and mutating sessions."""

    async def create_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str | None = None,
        state: dict[str, Any] | None = None,
    ) -> Session:
        ...

    async def get_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str,
        config: GetSessionConfig | None = None,
    ) -> Session | None:
        ...

    async def list_sessions(self, app_name: str, user_id: str) -> list[SessionSummary]:
        ...

    async def delete_session(self, session_id: str) -> None:
        ...

    async def append_event(self, session: Session, event: Event) -> Event:
        ...


def default_session_id(app_name: str, user_id: str) -> str:
    return f"{app_name}:{user_id}"


def _detached(session: Session) -> Session:
    """Deep copy without scratch, so callers never share the cached object."""
    copied = session.model_copy(deep=True)
    copied.scratch = {}
    copied.state = strip_scratch(copied.state)
    return copied


def apply_get_config(session: Session, config: GetSessionConfig | None) -> Session:
    """Filter events on a copy. The input session is never mutated."""
    copied = _detached(session)
    if config is None:
        return copied

    total = len(copied.events)
    if config.num_recent_events:
        copied.events = copied.events[-config.num_recent_events :]

    if config.after_timestamp is not None:
        # Keep the trailing run of events at or after the timestamp.
        i = len(copied.events) - 1
        while i >= 0 and copied.events[i].timestamp >= config.after_timestamp:
            i -= 1
        copied.events = copied.events[i + 1 :]

    if len(copied.events) < total:
        copied._partial = True
    return copied


class DurableSessionStore:
    """
    Cache-aside store. The backend (when given) is the source of truth; the
    in-memory mirror serves reads when the backend fails or misses and is
    refreshed on every successful backend read.

    Backend errors are logged and never raised. A session whose last durable
    write failed is marked unsynced: reads prefer the mirror for it and retry
    the write, so a later backend read cannot roll its state back.

    Creating never overwrites a stored row. A session created while the
    backend was unreachable is provisional: a row may already exist for it,
    so its first successful write appends its events to the stored log
    instead of replacing it.
    """

    def __init__(self, backend: SessionBackend | None = None) -> None:
        self._backend = backend
        # Single event loop; no await between read and write of these.
        self._cache: dict[str, Session] = {}
        self._unsynced: set[str] = set()
        # session id -> initial state it was created with
        self._provisional: dict[str, dict[str, Any]] = {}

    @property
    def has_backend(self) -> bool:
        return self._backend is not None

    def cached(self, session_id: str) -> Session | None:
        """Detached copy of the mirror entry, for diagnostics and tests."""
        session = self._cache.get(session_id)
        return _detached(session) if session is not None else None

    async def _write(self, row: Row) -> None:
        assert self._backend is not None
        if await self._backend.update(row):
            return
        if not await self._backend.insert(row):
            # Created concurrently between the two calls.
            await self._backend.update(row)

    async def _reconcile(self, session: Session) -> None:
        """Merge a provisional session into the stored row, in place."""
        assert self._backend is not None
        row = await self._backend.fetch(session.app_name, session.id)
        if row is None:
            return
        stored = row_to_session(row)
        known = {e.id for e in stored.events}
        fresh = [e for e in session.events if e.id not in known]

        state = dict(stored.state)
        for key, value in self._provisional[session.id].items():
            state.setdefault(key, value)
        for event in fresh:
            state.update(event.state_delta)

        session.events = stored.events + fresh
        session.state = strip_scratch(state)
        session.created_at = stored.created_at
        session.last_update_time = max(session.last_update_time, stored.last_update_time)
        logger.info(
            "Merged provisional session %s into stored log (%d new events)", session.id, len(fresh)
        )

    async def _persist(self, session: Session, action: str) -> bool:
        if self._backend is None:
            return False
        try:
            if session.id in self._provisional:
                await self._reconcile(session)
            await self._write(session_to_row(session))
        except Exception as e:
            self._unsynced.add(session.id)
            logger.error("Error %s session %s in backend: %s", action, session.id, e)
            return False
        self._provisional.pop(session.id, None)
        self._unsynced.discard(session.id)
        return True

    async def create_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str | None = None,
        state: dict[str, Any] | None = None,
    ) -> Session:
        """
        Create and cache a session. If the backend already holds a row with
        this id, that row is returned unchanged instead.
        """
        resolved_id = session_id or default_session_id(app_name, user_id)
        session = Session(
            id=resolved_id,
            app_name=app_name,
            user_id=user_id,
            state=strip_scratch(state),
        )
        if self._backend is not None:
            try:
                inserted = await self._backend.insert(session_to_row(session))
                existing = None if inserted else await self._backend.fetch(app_name, resolved_id)
            except Exception as e:
                self._provisional[resolved_id] = dict(session.state)
                self._unsynced.add(resolved_id)
                logger.error("Error creating session %s in backend: %s", resolved_id, e)
            else:
                if existing is not None:
                    logger.info("Session %s already stored, keeping its log", resolved_id)
                    session = row_to_session(existing)
                elif inserted:
                    logger.debug("Session created in backend: %s", resolved_id)
                else:
                    logger.warning("Session id %s is already stored under another app", resolved_id)
        self._cache[resolved_id] = _detached(session)
        return session

    async def get_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str,
        config: GetSessionConfig | None = None,
    ) -> Session | None:
        cached = self._cache.get(session_id)
        if cached is not None and cached.app_name != app_name:
            cached = None

        if session_id in self._unsynced and cached is not None:
            await self._persist(cached, "resyncing")
            return apply_get_config(cached, config)

        if self._backend is not None:
            try:
                row = await self._backend.fetch(app_name, session_id)
            except Exception as e:
                logger.error("Error loading session %s from backend: %s", session_id, e)
            else:
                if row is not None:
                    loaded = row_to_session(row)
                    self._cache[session_id] = loaded
                    return apply_get_config(loaded, config)

        if cached is None:
            return None
        return apply_get_config(cached, config)

    async def list_sessions(self, app_name: str, user_id: str) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        if self._backend is not None:
            try:
                rows = await self._backend.fetch_for_user(app_name, user_id)
            except Exception as e:
                logger.error("Error listing sessions for %s from backend: %s", user_id, e)
            else:
                summaries = [summarize(row_to_session(r)) for r in rows]

        if not summaries:
            summaries = [
                summarize(s)
                for s in self._cache.values()
                if s.app_name == app_name and s.user_id == user_id
            ]
            summaries.sort(key=lambda s: s.last_update_time, reverse=True)
        return summaries

    async def delete_session(self, session_id: str) -> None:
        if self._backend is not None:
            try:
                await self._backend.delete(session_id)
                logger.debug("Session deleted from backend: %s", session_id)
            except Exception as e:
                logger.error("Error deleting session %s from backend: %s", session_id, e)
        self._cache.pop(session_id, None)
        self._unsynced.discard(session_id)
        self._provisional.pop(session_id, None)

    async def append_event(self, session: Session, event: Event) -> Event:
        """
        Apply the event's delta (temp: keys go to scratch only), append it,
        persist best-effort and refresh the mirror. Returns the stored event,
        whose delta holds only the persisted keys.

        The session must hold its full log: views read with an event filter
        are rejected with ValueError, since persisting them would truncate it.
        """
        if session.is_partial:
            raise ValueError(f"Session {session.id} is a filtered view; load it without a filter to append")

        persisted, scratch = split_delta(event.state_delta)
        stored = event if not scratch else event.model_copy(update={"state_delta": persisted})

        session.scratch.update(scratch)
        session.state.update(persisted)
        session.events.append(stored)
        session.last_update_time = stored.timestamp
        # Legacy rows may still carry temp: keys.
        session.state = strip_scratch(session.state)

        await self._persist(session, "updating")
        self._cache[session.id] = _detached(session)
        return stored
