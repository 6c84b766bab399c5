"""End-to-end conversation: help, create tanda, add participant, status, start, pay, proof, verify."""

from __future__ import annotations

import asyncio
from pathlib import Path

from tanda_router.config.loader import load_config
from tanda_router.domain.intent import Intent
from tanda_router.domain.routing import RouteRequest
from tanda_router.infrastructure.llm_client import MockLLMClient
from tanda_router.infrastructure.services import InMemoryServices
from tanda_router.infrastructure.session_backend import InMemorySessionBackend
from tanda_router.infrastructure.session_store import DurableSessionStore
from tanda_router.orchestration.runtime import TandaRuntime


def test_full_conversation_e2e() -> None:
    """Walk one organizer through a whole tanda lifecycle over the runtime."""

    async def run() -> None:
        root = Path(__file__).resolve().parent.parent.parent
        config = load_config(root / "configs" / "default_router.yaml")

        sender = "59177242197"
        services = InMemoryServices(pending_codes={sender: "ABC123"})
        backend = InMemorySessionBackend()
        store = DurableSessionStore(backend)
        llm = MockLLMClient(responses=["¡Hola! Te ayudo a organizar tu tanda."])
        runtime = TandaRuntime(config, store, services, services, services, llm_client=llm)

        def msg(text: str, message_id: str) -> RouteRequest:
            return RouteRequest(sender_id=sender, sender_name="Ana", original_text=text, message_id=message_id)

        # Turn 1: help
        result = await runtime.handle_message(msg("ayuda", "wamid.1"))
        assert result is not None
        assert result.intent is Intent.GENERAL_HELP
        assert result.response_text == "¡Hola! Te ayudo a organizar tu tanda."
        assert result.session_state == {"user:phone": sender}

        # Turn 2: create the tanda
        result = await runtime.handle_message(msg("crear tanda llamada Ahorro, de 50 usd mensual", "wamid.2"))
        assert result is not None
        assert result.intent is Intent.CREATE_GROUP
        assert result.handler_used == "game_master"
        assert "Ahorro" in (result.response_text or "")
        assert result.session_state is not None
        assert result.session_state["user:selected_group_id"] == "1"
        assert services.groups["1"]["frequency_days"] == 30

        # Turn 3: add a participant to the selected group
        result = await runtime.handle_message(msg("agregar a +591 700 00 001", "wamid.3"))
        assert result is not None
        assert result.intent is Intent.ADD_PARTICIPANT
        assert services.groups["1"]["participants"] == [sender, "59170000001"]

        # Turn 4: status
        result = await runtime.handle_message(msg("estado", "wamid.4"))
        assert result is not None
        assert result.intent is Intent.CHECK_STATUS
        assert result.response_text == "📊 Tanda Ahorro: estado DRAFT, 2 participante(s)."

        # Turn 5: start via button token
        result = await runtime.handle_message(msg("tanda:start:1", "wamid.5"))
        assert result is not None
        assert result.intent is Intent.START_TANDA
        assert services.groups["1"]["status"] == "ACTIVE"

        # Turn 6: pay, then the transport redelivers the same message
        result = await runtime.handle_message(msg("pagar mi cuota", "wamid.6"))
        assert result is not None
        assert result.intent is Intent.PAY_QUOTA
        assert result.handler_used == "treasurer"
        assert result.session_state is not None
        assert result.session_state["user:last_payment_order"] == "2"
        assert await runtime.handle_message(msg("pagar mi cuota", "wamid.6")) is None
        assert len(services.called("create_payment_link")) == 1

        # Turn 7: proof
        result = await runtime.handle_message(msg("te envío el comprobante", "wamid.7"))
        assert result is not None
        assert result.intent is Intent.UPLOAD_PROOF
        assert result.handler_used == "validator"

        # Turn 8: phone verification
        result = await runtime.handle_message(msg("mi codigo es ABC123", "wamid.8"))
        assert result is not None
        assert result.intent is Intent.VERIFY_PHONE
        assert result.handler_used == "orchestrator"
        assert (result.response_text or "").startswith("✅")

        state = await runtime.get_state(sender)
        assert state == {
            "user:phone": sender,
            "user:selected_group_id": "1",
            "user:last_payment_order": "2",
            "user:phone_verified": True,
        }
        assert not any(k.startswith("temp:") for k in state)

        session = await store.get_session(config.app_name, sender, f"{config.app_name}:{sender}")
        assert session is not None
        assert len(session.events) == 16
        assert [s.id for s in await runtime.list_sessions(sender)] == [session.id]

        await runtime.reset(sender)
        assert await runtime.get_state(sender) is None
        assert backend.rows == {}

    asyncio.run(run())
