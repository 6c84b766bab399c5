"""Runtime: wires config, store, services and LLM into a gateway + router."""

from __future__ import annotations

import logging
from typing import Any

from tanda_router.config.models import RouterConfig
from tanda_router.domain.dedup import DeduplicationCache
from tanda_router.domain.routing import RouteRequest, RouteResult
from tanda_router.domain.state import SessionSummary
from tanda_router.infrastructure.llm_client import LLMClient
from tanda_router.infrastructure.services import GroupService, PaymentService, VerificationService
from tanda_router.infrastructure.session_backend import PostgresSessionBackend
from tanda_router.infrastructure.session_store import DurableSessionStore, SessionStore
from tanda_router.orchestration.gateway import InboundGateway, Messenger
from tanda_router.orchestration.handlers import build_handlers
from tanda_router.orchestration.router import TandaRouter
from tanda_router.orchestration.tools import ToolBox

logger = logging.getLogger(__name__)


async def build_session_store(config: RouterConfig) -> tuple[DurableSessionStore, PostgresSessionBackend | None]:
    """
    Postgres-backed store when a DSN is configured and reachable; otherwise
    a cache-only store. The caller closes the returned backend.
    """
    if not config.database.dsn:
        return DurableSessionStore(), None
    backend = PostgresSessionBackend(config.database)
    try:
        await backend.initialize()
    except Exception as e:
        logger.error("Session backend unavailable, running cache-only: %s", e)
        return DurableSessionStore(), None
    return DurableSessionStore(backend), backend


class TandaRuntime:
    """Holds config + store + collaborators; one router and one gateway; routes by sender."""

    def __init__(
        self,
        config: RouterConfig,
        session_store: SessionStore,
        groups: GroupService,
        payments: PaymentService,
        verification: VerificationService,
        llm_client: LLMClient | None = None,
        messenger: Messenger | None = None,
    ) -> None:
        self.config = config
        self.store = session_store
        self.tools = ToolBox(groups, payments, verification, DeduplicationCache(config.dedup_ttl_seconds))
        self.router = TandaRouter(config, session_store, build_handlers(self.tools, llm_client))
        self.gateway = InboundGateway(
            self.router,
            DeduplicationCache(config.dedup_ttl_seconds),
            messenger=messenger,
            send_agent_text=config.send_agent_text,
        )

    async def handle_message(self, request: RouteRequest) -> RouteResult | None:
        """Route one inbound message. None means it was a retried duplicate."""
        return await self.gateway.handle(request)

    async def get_state(self, sender_id: str) -> dict[str, Any] | None:
        """Persisted state for the sender's session (or None)."""
        user_id = self.router.user_id_for(sender_id)
        session = await self.store.get_session(self.config.app_name, user_id, self.router.session_id_for(user_id))
        return session.state if session is not None else None

    async def list_sessions(self, sender_id: str) -> list[SessionSummary]:
        return await self.store.list_sessions(self.config.app_name, self.router.user_id_for(sender_id))

    async def reset(self, sender_id: str) -> None:
        """Forget the sender's conversation."""
        user_id = self.router.user_id_for(sender_id)
        await self.store.delete_session(self.router.session_id_for(user_id))
