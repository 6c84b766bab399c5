"""Atomic business tools, each owned by exactly one handler kind."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, NamedTuple

from tanda_router.domain.dedup import DeduplicationCache
from tanda_router.domain.errors import ToolAccessError
from tanda_router.infrastructure.services import GroupService, PaymentService, VerificationService
from tanda_router.orchestration.dispatch import HandlerKind

logger = logging.getLogger(__name__)


class Tool(NamedTuple):
    name: str
    owner: HandlerKind
    fn: Callable[..., Awaitable[Any]]


class ToolResult(NamedTuple):
    """`executed` is False when the call was skipped as a repeat for the same message."""

    executed: bool
    value: Any = None


class ToolBox:
    """
    Registry of business tools. A handler may call only the tools it owns;
    the GENERAL (top-level) handler owns only `verify_phone_code`.

    Calls made with a message id are recorded in `executed`; repeating the
    same tool for the same message id inside the window is skipped, so a
    retried delegation does not repeat a side effect.
    """

    def __init__(
        self,
        groups: GroupService,
        payments: PaymentService,
        verification: VerificationService,
        executed: DeduplicationCache | None = None,
    ) -> None:
        self.executed = executed or DeduplicationCache()
        tools = [
            Tool("verify_phone_code", HandlerKind.GENERAL, verification.confirm_code),
            Tool("create_tanda_group", HandlerKind.GROUP, groups.create_draft_group),
            Tool("select_admin_group", HandlerKind.GROUP, groups.send_admin_selection),
            Tool("add_participant_to_group", HandlerKind.GROUP, groups.add_participant),
            Tool("respond_to_invitation", HandlerKind.GROUP, groups.respond_to_invitation),
            Tool("configure_tanda", HandlerKind.GROUP, groups.configure_group),
            Tool("check_group_status", HandlerKind.GROUP, groups.check_group_status),
            Tool("start_tanda", HandlerKind.GROUP, groups.start_tanda),
            Tool("create_payment_link", HandlerKind.PAYMENT, payments.create_payment_link),
            Tool("choose_payout_method", HandlerKind.PAYMENT, payments.choose_payout),
            Tool("verify_payment_proof", HandlerKind.PROOF, payments.verify_proof),
        ]
        self._tools: dict[str, Tool] = {t.name: t for t in tools}

    def names_for(self, kind: HandlerKind) -> list[str]:
        return [t.name for t in self._tools.values() if t.owner is kind]

    async def call(
        self,
        caller: HandlerKind,
        name: str,
        *,
        message_id: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(f"Unknown tool: {name}")
        if tool.owner is not caller:
            raise ToolAccessError(name, caller.value, tool.owner.value)

        key = f"{message_id}:{name}" if message_id else None
        if self.executed.is_duplicate(key):
            logger.warning("Skipping %s: already executed for message %s", name, message_id)
            return ToolResult(executed=False)

        logger.info("Tool %s called by %s", name, caller.value)
        try:
            value = await tool.fn(**kwargs)
        except Exception:
            # A failed call may be retried.
            self.executed.evict(key)
            raise
        return ToolResult(executed=True, value=value)
