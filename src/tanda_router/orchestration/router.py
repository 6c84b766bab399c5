"""Top-level router: resolve session, delegate to one handler, persist, classify."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
import weakref
from collections.abc import Callable
from typing import Any

from tanda_router.config.models import RouterConfig
from tanda_router.domain.codec import strip_scratch
from tanda_router.domain.intent import Intent, classify
from tanda_router.domain.phases import RoutePhase, next_phase
from tanda_router.domain.routing import RouteRequest, RouteResult
from tanda_router.domain.state import GROUP_CONTEXT_KEY, PHONE_KEY, Event, Session
from tanda_router.domain.validators import normalize_phone
from tanda_router.infrastructure.session_store import SessionStore
from tanda_router.orchestration.dispatch import HandlerKind, select_handler
from tanda_router.orchestration.handlers import Handler
from tanda_router.orchestration.prompt_builder import build_prompt

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_NAME = HandlerKind.GENERAL.value


class TandaRouter:
    """
    Single error boundary for a conversational turn. `route` never raises
    (except for task cancellation): store failures degrade to the cache,
    delegation failures and timeouts become an UNKNOWN result carrying the
    configured fallback text.
    """

    def __init__(
        self,
        config: RouterConfig,
        session_store: SessionStore,
        handlers: dict[HandlerKind, Handler],
        selector: Callable[[str], HandlerKind] = select_handler,
    ) -> None:
        if HandlerKind.GENERAL not in handlers:
            raise ValueError("A GENERAL handler is required")
        self.config = config
        self.app_name = config.app_name
        self._store = session_store
        self._handlers = handlers
        self._selector = selector
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def user_id_for(self, sender_id: str) -> str:
        return normalize_phone(sender_id) or sender_id.strip()

    def session_id_for(self, user_id: str) -> str:
        return f"{self.app_name}:{user_id}"

    def _session_lock(self, session_id: str) -> contextlib.AbstractAsyncContextManager[Any]:
        if not self.config.serialize_sessions:
            return contextlib.nullcontext()
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def route(self, request: RouteRequest) -> RouteResult:
        user_id = self.user_id_for(request.sender_id)
        session_id = self.session_id_for(user_id)
        async with self._session_lock(session_id):
            return await self._route(request, user_id, session_id)

    async def _route(self, request: RouteRequest, user_id: str, session_id: str) -> RouteResult:
        phase = RoutePhase.RESOLVING_SESSION
        invocation_id = uuid.uuid4().hex
        try:
            session = await self._resolve_session(request, user_id, session_id)

            # Retried transport deliveries are filtered before route is called.
            phase = next_phase(phase)
            phase = next_phase(phase)

            prompt = build_prompt(request)
            kind = self._selector(request.original_text)
            handler = self._handlers.get(kind) or self._handlers[HandlerKind.GENERAL]
            logger.debug("Delegating %s to %s", session_id, handler.kind.value)

            session.scratch.clear()
            await self._store.append_event(
                session,
                Event(invocation_id=invocation_id, author="user", content=request.original_text),
            )
            reply = await asyncio.wait_for(
                handler.invoke(prompt, session),
                timeout=self.config.delegation_timeout_seconds,
            )
            handler_used = reply.author or DEFAULT_HANDLER_NAME
            await self._store.append_event(
                session,
                Event(
                    invocation_id=invocation_id,
                    author=handler_used,
                    content=reply.response_text,
                    state_delta=reply.state_delta,
                ),
            )

            phase = next_phase(phase)
            updated = await self._store.get_session(self.app_name, user_id, session_id)
            session_state = updated.state if updated is not None else strip_scratch(session.state)

            phase = next_phase(phase)
            intent = classify(request.original_text, reply.response_text)

            phase = next_phase(phase)
            logger.info(
                "Message routed for %s - Intent: %s, handler: %s, phase: %s",
                user_id,
                intent.value,
                handler_used,
                phase.value,
            )
            return RouteResult(
                intent=intent,
                handler_used=handler_used,
                response_text=reply.response_text,
                session_state=session_state,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Routing failed for %s during %s: timed out after %.1fs",
                session_id,
                phase.value,
                self.config.delegation_timeout_seconds,
            )
        except Exception:
            logger.exception("Routing failed for %s during %s", session_id, phase.value)

        phase = next_phase(phase, failed=True)
        logger.debug("Route for %s ended in %s", session_id, phase.value)
        return RouteResult(
            intent=Intent.UNKNOWN,
            handler_used=DEFAULT_HANDLER_NAME,
            response_text=self.config.fallback_response,
        )

    async def _resolve_session(self, request: RouteRequest, user_id: str, session_id: str) -> Session:
        try:
            session = await self._store.get_session(self.app_name, user_id, session_id)
        except Exception as e:
            logger.error("Error loading session %s: %s", session_id, e)
            session = None
        if session is not None:
            return session

        initial_state: dict[str, Any] = {PHONE_KEY: user_id}
        if request.group_id:
            initial_state[GROUP_CONTEXT_KEY] = request.group_id
        try:
            return await self._store.create_session(
                self.app_name, user_id, session_id=session_id, state=initial_state
            )
        except Exception as e:
            logger.error("Error creating session %s, continuing unsaved: %s", session_id, e)
            return Session(id=session_id, app_name=self.app_name, user_id=user_id, state=initial_state)
