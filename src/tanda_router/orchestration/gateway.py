"""Inbound boundary: drop retried messages, route the rest, optionally relay the reply."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from tanda_router.domain.dedup import DeduplicationCache
from tanda_router.domain.routing import RouteRequest, RouteResult
from tanda_router.orchestration.router import TandaRouter

logger = logging.getLogger(__name__)


@runtime_checkable
class Messenger(Protocol):
    """Outbound text channel owned by the transport."""

    async def send_text(self, to: str, text: str) -> None:
        ...


class InboundGateway:
    """
    Sits between the transport and the router. A message whose id was seen
    within the dedup window yields None: nothing is routed, nothing is sent,
    no state changes.
    """

    def __init__(
        self,
        router: TandaRouter,
        dedup: DeduplicationCache,
        messenger: Messenger | None = None,
        send_agent_text: bool = False,
    ) -> None:
        self._router = router
        self._dedup = dedup
        self._messenger = messenger
        self._send_agent_text = send_agent_text

    async def handle(self, request: RouteRequest) -> RouteResult | None:
        if self._dedup.is_duplicate(request.message_id):
            logger.warning(
                "Duplicate message detected (id=%s), skipping to avoid reprocessing.",
                request.message_id,
            )
            return None

        result = await self._router.route(request)

        if self._send_agent_text and self._messenger is not None and (result.response_text or "").strip():
            try:
                await self._messenger.send_text(request.sender_id, result.response_text or "")
            except Exception as e:
                logger.error("Could not relay reply to %s: %s", request.sender_id, e)
        return result
