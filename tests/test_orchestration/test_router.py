"""Router: session resolution, delegation, persistence, classification, fallbacks."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from tanda_router.config.models import DEFAULT_FALLBACK_RESPONSE, RouterConfig
from tanda_router.domain.intent import Intent
from tanda_router.domain.routing import ReferredProduct, RouteRequest
from tanda_router.domain.state import Session
from tanda_router.infrastructure.llm_client import MockLLMClient
from tanda_router.infrastructure.services import InMemoryServices
from tanda_router.infrastructure.session_store import DurableSessionStore
from tanda_router.orchestration.dispatch import HandlerKind
from tanda_router.orchestration.handlers import HELP_FALLBACK, HandlerReply, build_handlers
from tanda_router.orchestration.prompt_builder import PromptContext, build_prompt
from tanda_router.orchestration.router import TandaRouter
from tanda_router.orchestration.tools import ToolBox

from conftest import SENDER, FlakyBackend


def _router(
    config: RouterConfig,
    store: DurableSessionStore,
    services: InMemoryServices,
    llm: MockLLMClient | None = None,
) -> TandaRouter:
    tools = ToolBox(services, services, services)
    return TandaRouter(config, store, build_handlers(tools, llm))


class SlowHandler:
    kind = HandlerKind.GENERAL

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return HandlerReply(response_text="listo", author="orchestrator")


class ExplodingHandler:
    kind = HandlerKind.GENERAL

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        raise RuntimeError("handler crashed")


class NamelessHandler:
    kind = HandlerKind.GENERAL

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        return HandlerReply(response_text="ok", state_delta={"seen": True})


def test_fresh_user_help(router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices) -> None:
    async def run() -> None:
        router = _router(router_config, store, services, MockLLMClient())
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="ayuda"))
        assert result.intent is Intent.GENERAL_HELP
        assert result.handler_used == "orchestrator"
        assert result.response_text == MockLLMClient.DEFAULT_REPLY
        assert result.session_state == {"user:phone": SENDER}

        session = await store.get_session("pasatanda", SENDER, f"pasatanda:{SENDER}")
        assert session is not None
        assert [e.author for e in session.events] == ["user", "orchestrator"]
        assert session.events[0].content == "ayuda"
        assert session.events[0].invocation_id == session.events[1].invocation_id

    asyncio.run(run())


def test_group_id_seeds_new_session(
    router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices
) -> None:
    async def run() -> None:
        router = _router(router_config, store, services)
        result = await router.route(
            RouteRequest(sender_id=SENDER, group_id="120363@g.us", original_text="estado")
        )
        assert result.handler_used == "game_master"
        assert result.intent is Intent.CHECK_STATUS
        assert result.session_state is not None
        assert result.session_state["groupId"] == "120363@g.us"
        assert services.called("check_group_status")[0]["group_id"] == "120363@g.us"

    asyncio.run(run())


def test_scratch_never_reaches_result_or_store(
    router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices, backend: FlakyBackend
) -> None:
    async def run() -> None:
        router = _router(router_config, store, services)
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="crear tanda"))
        assert result.intent is Intent.CREATE_GROUP
        assert result.session_state is not None
        assert result.session_state["user:selected_group_id"] == "1"
        assert not any(k.startswith("temp:") for k in result.session_state)
        assert "temp:" not in backend.rows[f"pasatanda:{SENDER}"]["state"]
        assert "temp:" not in backend.rows[f"pasatanda:{SENDER}"]["events"]

    asyncio.run(run())


def test_state_carries_across_turns(
    router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices
) -> None:
    async def run() -> None:
        router = _router(router_config, store, services)
        await router.route(RouteRequest(sender_id=SENDER, original_text="crear tanda llamada Ahorro"))
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="tanda:start:1"))
        assert result.intent is Intent.START_TANDA
        assert services.groups["1"]["status"] == "ACTIVE"

    asyncio.run(run())


def test_handler_error_returns_fallback(router_config: RouterConfig, store: DurableSessionStore) -> None:
    async def run() -> None:
        router = TandaRouter(router_config, store, {HandlerKind.GENERAL: ExplodingHandler()})
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="hola"))
        assert result.intent is Intent.UNKNOWN
        assert result.handler_used == "orchestrator"
        assert result.response_text == DEFAULT_FALLBACK_RESPONSE
        assert result.session_state is None

    asyncio.run(run())


def test_delegation_timeout_returns_fallback(store: DurableSessionStore) -> None:
    async def run() -> None:
        config = RouterConfig(delegation_timeout_seconds=0.05, fallback_response="Intenta de nuevo.")
        router = TandaRouter(config, store, {HandlerKind.GENERAL: SlowHandler(delay=1.0)})
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="hola"))
        assert result.intent is Intent.UNKNOWN
        assert result.response_text == "Intenta de nuevo."

    asyncio.run(run())


def test_missing_handler_author_defaults_to_orchestrator(
    router_config: RouterConfig, store: DurableSessionStore
) -> None:
    async def run() -> None:
        router = TandaRouter(router_config, store, {HandlerKind.GENERAL: NamelessHandler()})
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="pagar"))
        # Unregistered kinds fall back to the general handler.
        assert result.handler_used == "orchestrator"
        assert result.intent is Intent.PAY_QUOTA
        assert result.session_state is not None and result.session_state["seen"] is True

    asyncio.run(run())


def test_backend_down_still_answers(
    router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices, backend: FlakyBackend
) -> None:
    async def run() -> None:
        backend.down = True
        router = _router(router_config, store, services)
        first = await router.route(RouteRequest(sender_id=SENDER, original_text="crear tanda"))
        assert first.intent is Intent.CREATE_GROUP
        assert first.session_state is not None
        assert first.session_state["user:selected_group_id"] == "1"
        assert backend.failures > 0

        backend.down = False
        second = await router.route(RouteRequest(sender_id=SENDER, original_text="estado"))
        assert services.called("check_group_status")[0]["group_id"] == "1"
        assert second.session_state is not None
        assert second.session_state["user:selected_group_id"] == "1"

    asyncio.run(run())


def test_session_creation_failure_continues_unsaved(
    router_config: RouterConfig, services: InMemoryServices
) -> None:
    class BrokenCreateStore(DurableSessionStore):
        async def get_session(self, *args: Any, **kwargs: Any) -> Session | None:
            return None

        async def create_session(self, *args: Any, **kwargs: Any) -> Session:
            raise ConnectionError("cannot create")

    async def run() -> None:
        router = _router(router_config, BrokenCreateStore(), services)
        result = await router.route(RouteRequest(sender_id=SENDER, original_text="hola"))
        assert result.handler_used == "orchestrator"
        assert result.response_text == HELP_FALLBACK
        assert result.session_state == {"user:phone": SENDER}

    asyncio.run(run())


def test_same_session_turns_are_serialized(router_config: RouterConfig, store: DurableSessionStore) -> None:
    async def run() -> None:
        handler = SlowHandler(delay=0.05)
        router = TandaRouter(router_config, store, {HandlerKind.GENERAL: handler})
        results = await asyncio.gather(
            router.route(RouteRequest(sender_id=SENDER, original_text="hola")),
            router.route(RouteRequest(sender_id=SENDER, original_text="hola de nuevo")),
        )
        assert [r.response_text for r in results] == ["listo", "listo"]
        assert handler.max_active == 1

        session = await store.get_session("pasatanda", SENDER, f"pasatanda:{SENDER}")
        assert session is not None
        assert [e.author for e in session.events] == ["user", "orchestrator", "user", "orchestrator"]

    asyncio.run(run())


def test_different_sessions_run_concurrently(router_config: RouterConfig, store: DurableSessionStore) -> None:
    async def run() -> None:
        handler = SlowHandler(delay=0.05)
        router = TandaRouter(router_config, store, {HandlerKind.GENERAL: handler})
        await asyncio.gather(
            router.route(RouteRequest(sender_id=SENDER, original_text="hola")),
            router.route(RouteRequest(sender_id="59170000001", original_text="hola")),
        )
        assert handler.max_active == 2

    asyncio.run(run())


def test_build_prompt_context_lines() -> None:
    request = RouteRequest(
        sender_id=SENDER,
        sender_name="Ana",
        group_id="120363@g.us",
        original_text="quiero este",
        referred_product=ReferredProduct(catalog_id="cat1", product_retailer_id="tanda-100"),
    )
    prompt = build_prompt(request)
    assert prompt.text == (
        "quiero este\n"
        "\n---\nContexto:\n"
        f"[Teléfono del usuario: {SENDER}]\n"
        "[Grupo WhatsApp: 120363@g.us]\n"
        "[Nombre WhatsApp: Ana]\n"
        "[Producto referido: tanda-100]"
    )
    assert prompt.user_text == "quiero este"
    assert prompt.sender_phone == SENDER

    bare = build_prompt(RouteRequest(sender_id=SENDER, original_text="hola"))
    assert bare.text.endswith(f"Contexto:\n[Teléfono del usuario: {SENDER}]")


def test_new_session_seeds_canonical_phone(
    router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices, backend: FlakyBackend
) -> None:
    async def run() -> None:
        router = _router(router_config, store, services)
        result = await router.route(RouteRequest(sender_id="+591 7724-2197", original_text="ayuda"))
        assert result.session_state is not None
        assert result.session_state["user:phone"] == "59177242197"
        assert f"pasatanda:{SENDER}" in backend.rows

    asyncio.run(run())


def test_failed_read_on_restart_keeps_stored_session(
    router_config: RouterConfig, store: DurableSessionStore, services: InMemoryServices, backend: FlakyBackend
) -> None:
    async def run() -> None:
        first = _router(router_config, store, services)
        await first.route(RouteRequest(sender_id=SENDER, original_text="crear tanda"))

        # Another process, cold cache, and its first backend read fails.
        second = _router(router_config, DurableSessionStore(backend), services)
        backend.fail_next = 1
        result = await second.route(RouteRequest(sender_id=SENDER, original_text="ayuda"))
        assert result.session_state is not None
        assert result.session_state["user:selected_group_id"] == "1"

        session = await store.get_session("pasatanda", SENDER, f"pasatanda:{SENDER}")
        assert session is not None
        assert session.state["user:selected_group_id"] == "1"
        assert len(session.events) == 4

    asyncio.run(run())


def test_failure_log_names_the_phase(store: DurableSessionStore, caplog: pytest.LogCaptureFixture) -> None:
    async def run() -> None:
        config = RouterConfig(delegation_timeout_seconds=0.05)
        slow = TandaRouter(config, store, {HandlerKind.GENERAL: SlowHandler(delay=1.0)})
        await slow.route(RouteRequest(sender_id=SENDER, original_text="hola"))
        broken = TandaRouter(config, store, {HandlerKind.GENERAL: ExplodingHandler()})
        await broken.route(RouteRequest(sender_id=SENDER, original_text="hola"))

    with caplog.at_level(logging.ERROR, logger="tanda_router.orchestration.router"):
        asyncio.run(run())

    failures = [r for r in caplog.records if r.name == "tanda_router.orchestration.router"]
    assert len(failures) == 2
    assert all("during delegating" in r.getMessage() for r in failures)
    assert "timed out" in failures[0].getMessage()
    assert failures[1].exc_info is not None
