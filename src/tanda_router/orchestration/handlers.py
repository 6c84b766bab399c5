"""Specialized handlers: one per HandlerKind. Each calls only its own tools and returns a reply plus state delta."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from tanda_router.domain.intent import (
    TANDA_ACTION_INTENTS,
    Intent,
    classify_user_text,
    parse_control_token,
)
from tanda_router.domain.state import (
    GROUP_CONTEXT_KEY,
    LAST_PAYMENT_ORDER_KEY,
    LAST_TOOL_KEY,
    PHONE_VERIFIED_KEY,
    SELECTED_GROUP_KEY,
    Session,
)
from tanda_router.domain.validators import (
    extract_invite_reply,
    extract_otp,
    extract_phone,
    normalize_phone,
)
from tanda_router.infrastructure.llm_client import LLMClient
from tanda_router.orchestration.dispatch import HandlerKind
from tanda_router.orchestration.prompt_builder import PromptContext, build_help_prompt
from tanda_router.orchestration.tools import ToolBox, ToolResult

logger = logging.getLogger(__name__)

ALREADY_PROCESSING = "⏳ Ya estoy procesando esta solicitud. Te aviso en cuanto quede lista."
HELP_FALLBACK = (
    "👋 Soy el asistente de PasaTanda. Puedo ayudarte a:\n"
    "• Crear una tanda (\"crear tanda\")\n"
    "• Agregar participantes (\"agregar +591...\")\n"
    "• Consultar el estado (\"estado\")\n"
    "• Pagar tu cuota (\"pagar\")\n"
    "• Enviar tu comprobante (\"comprobante\")"
)

AMOUNT_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:usd|\$|d[oó]lares|bs)", re.IGNORECASE)
EVERY_N_DAYS_RE = re.compile(r"cada\s+(\d+)\s*d[ií]as", re.IGNORECASE)
GROUP_NAME_RE = re.compile(r"(?:llamada|nombre)\s+[\"“]?([^\"”\n,]+?)[\"”]?(?:,|\.|$)", re.IGNORECASE)
FREQUENCY_WORDS = {"semanal": 7, "quincenal": 15, "mensual": 30}


class HandlerReply(BaseModel):
    """What a handler hands back to the router."""

    response_text: str
    author: str | None = None
    state_delta: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class Handler(Protocol):
    kind: HandlerKind

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        ...


class BaseHandler:
    """Shared plumbing: tool calls scoped to this handler's kind."""

    kind: HandlerKind = HandlerKind.GENERAL

    def __init__(self, tools: ToolBox) -> None:
        self._tools = tools

    async def _call(self, prompt: PromptContext, name: str, **kwargs: Any) -> ToolResult:
        return await self._tools.call(
            self.kind,
            name,
            message_id=prompt.request.message_id,
            **kwargs,
        )

    def _reply(self, text: str, tool: str | None = None, **delta: Any) -> HandlerReply:
        state_delta = dict(delta)
        if tool:
            state_delta[LAST_TOOL_KEY] = tool
        return HandlerReply(response_text=text, author=self.kind.value, state_delta=state_delta)


def _parse_group_request(text: str) -> dict[str, Any]:
    """Optional name, amount and frequency from 'crear tanda llamada X de 100 usd semanal'."""
    params: dict[str, Any] = {}
    m = GROUP_NAME_RE.search(text)
    if m:
        params["group_name"] = m.group(1).strip()
    m = AMOUNT_RE.search(text)
    if m:
        params["amount_usd"] = float(m.group(1).replace(",", "."))
    m = EVERY_N_DAYS_RE.search(text)
    if m:
        params["frequency_days"] = int(m.group(1))
    else:
        lowered = text.lower()
        for word, days in FREQUENCY_WORDS.items():
            if word in lowered:
                params["frequency_days"] = days
                break
    return params


class GroupHandler(BaseHandler):
    """Game master: groups, participants, invitations, configuration, status, start."""

    kind = HandlerKind.GROUP

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        text = prompt.user_text
        phone = normalize_phone(prompt.sender_phone)

        token = parse_control_token(text)
        if token is not None and token.kind == "invite":
            return await self._respond_invitation(prompt, phone, token.args[0], token.action == "accept")
        invite = extract_invite_reply(text)
        if invite is not None:
            return await self._respond_invitation(prompt, phone, invite[1], invite[0])

        delta: dict[str, Any] = {}
        group_id = session.state.get(SELECTED_GROUP_KEY) or session.state.get(GROUP_CONTEXT_KEY)
        if token is not None and token.kind == "tanda":
            group_id = token.args[0]
            delta[SELECTED_GROUP_KEY] = group_id
            intent = TANDA_ACTION_INTENTS[token.action]
        else:
            intent = classify_user_text(text)

        if intent is Intent.CREATE_GROUP:
            return await self._create_group(prompt, phone)
        if intent not in TANDA_ACTION_INTENTS.values():
            return self._reply(
                "Puedo crear tu tanda, agregar participantes, configurarla, consultar su estado "
                "o iniciarla. ¿Qué necesitas? 🎯"
            )
        if not group_id:
            result = await self._call(prompt, "select_admin_group", sender_phone=phone, purpose=intent.value)
            if not result.executed:
                return self._reply(ALREADY_PROCESSING)
            return self._reply(
                "📋 Te envié la lista de tus tandas. Elige una para continuar.",
                tool="select_admin_group",
            )

        if intent is Intent.ADD_PARTICIPANT:
            reply = await self._add_participant(prompt, phone, str(group_id))
        elif intent is Intent.CONFIGURE_TANDA:
            reply = await self._simple(
                prompt, "configure_tanda", "⚙️ Te envié las opciones para configurar tu tanda.",
                sender_phone=phone, group_id=str(group_id),
            )
        elif intent is Intent.CHECK_STATUS:
            reply = await self._status(prompt, phone, str(group_id))
        else:
            reply = await self._simple(
                prompt, "start_tanda", "🚀 Tu tanda se está activando. Te aviso cuando esté lista.",
                sender_phone=phone, group_id=str(group_id),
            )
        reply.state_delta.update(delta)
        return reply

    async def _respond_invitation(
        self, prompt: PromptContext, phone: str, code: str, accept: bool
    ) -> HandlerReply:
        if not code:
            return self._reply("¿Cuál es el código de invitación de 8 caracteres?")
        result = await self._call(
            prompt, "respond_to_invitation", sender_phone=phone, invite_code=code, accept=accept
        )
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        text = (
            "🎉 ¡Aceptaste la invitación! Te avisaremos cuando sea tu turno."
            if accept
            else "Rechazaste la invitación. ¡Gracias por avisar!"
        )
        return self._reply(text, tool="respond_to_invitation")

    async def _create_group(self, prompt: PromptContext, phone: str) -> HandlerReply:
        params = _parse_group_request(prompt.user_text)
        result = await self._call(prompt, "create_tanda_group", sender_phone=phone, **params)
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        group = result.value or {}
        name = group.get("name") or params.get("group_name") or "nueva"
        delta = {}
        if group.get("group_id"):
            delta[SELECTED_GROUP_KEY] = str(group["group_id"])
        return self._reply(
            f"🎯 ¡Tu tanda \"{name}\" fue creada en borrador! "
            "Ahora invita participantes escribiendo \"agregar +591...\".",
            tool="create_tanda_group",
            **delta,
        )

    async def _add_participant(self, prompt: PromptContext, phone: str, group_id: str) -> HandlerReply:
        participant = extract_phone(prompt.user_text)
        if participant is None:
            return self._reply("¿Cuál es el número de teléfono del participante que quieres agregar?")
        result = await self._call(
            prompt,
            "add_participant_to_group",
            sender_phone=phone,
            group_id=group_id,
            participant_phone=participant,
        )
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        return self._reply(
            f"✅ Agregué a {participant} a tu tanda. Le enviaremos la invitación.",
            tool="add_participant_to_group",
        )

    async def _status(self, prompt: PromptContext, phone: str, group_id: str) -> HandlerReply:
        result = await self._call(prompt, "check_group_status", sender_phone=phone, group_id=group_id)
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        status = result.value or {}
        name = status.get("name") or f"#{group_id}"
        participants = status.get("participants") or []
        return self._reply(
            f"📊 Tanda {name}: estado {status.get('status', 'desconocido')}, "
            f"{len(participants)} participante(s).",
            tool="check_group_status",
        )

    async def _simple(self, prompt: PromptContext, tool: str, text: str, **kwargs: Any) -> HandlerReply:
        result = await self._call(prompt, tool, **kwargs)
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        return self._reply(text, tool=tool)


class PaymentHandler(BaseHandler):
    """Treasurer: payment links and payout choices."""

    kind = HandlerKind.PAYMENT

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        phone = normalize_phone(prompt.sender_phone)
        token = parse_control_token(prompt.user_text)
        if token is not None and token.kind == "payout":
            group_id = token.args[0]
            cycle = int(token.args[1]) if len(token.args) > 1 else None
            method = token.action.upper()
            result = await self._call(
                prompt,
                "choose_payout_method",
                sender_phone=phone,
                group_id=group_id,
                cycle_index=cycle,
                method=method,
            )
            if not result.executed:
                return self._reply(ALREADY_PROCESSING)
            return self._reply(
                f"💸 Registré tu método de retiro: {method}.",
                tool="choose_payout_method",
                **{SELECTED_GROUP_KEY: group_id},
            )

        group_id = session.state.get(SELECTED_GROUP_KEY) or session.state.get(GROUP_CONTEXT_KEY)
        result = await self._call(
            prompt,
            "create_payment_link",
            sender_phone=phone,
            group_id=str(group_id) if group_id else None,
        )
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        payment = result.value or {}
        delta = {}
        if payment.get("order_id"):
            delta[LAST_PAYMENT_ORDER_KEY] = payment["order_id"]
        return self._reply(
            f"💰 Generé tu link de pago: {payment.get('link', '')}\n"
            "Puedes pagar con QR bancario o con USDC. Luego envíame tu comprobante.",
            tool="create_payment_link",
            **delta,
        )


class ProofHandler(BaseHandler):
    """Validator: payment proofs."""

    kind = HandlerKind.PROOF

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        phone = normalize_phone(prompt.sender_phone)
        result = await self._call(prompt, "verify_payment_proof", sender_phone=phone)
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        return self._reply(
            "🔍 Recibí tu comprobante. Lo revisaremos y te confirmaremos cuando el pago quede verificado.",
            tool="verify_payment_proof",
        )


class GeneralHandler(BaseHandler):
    """Top level: phone verification (its only tool) and short help answers."""

    kind = HandlerKind.GENERAL

    def __init__(self, tools: ToolBox, llm: LLMClient | None = None) -> None:
        super().__init__(tools)
        self._llm = llm

    async def invoke(self, prompt: PromptContext, session: Session) -> HandlerReply:
        if classify_user_text(prompt.user_text) is Intent.VERIFY_PHONE:
            return await self._verify(prompt)
        return self._reply(await self._help(prompt, session))

    async def _verify(self, prompt: PromptContext) -> HandlerReply:
        code = extract_otp(prompt.user_text)
        if code is None:
            return self._reply("Envíame el código de 6 caracteres que recibiste para verificar tu teléfono.")
        result = await self._call(
            prompt,
            "verify_phone_code",
            sender_phone=normalize_phone(prompt.sender_phone),
            code=code,
            whatsapp_username=prompt.request.sender_name,
        )
        if not result.executed:
            return self._reply(ALREADY_PROCESSING)
        if result.value:
            return self._reply(
                "✅ Teléfono verificado. Ya puedes continuar en la app.",
                tool="verify_phone_code",
                **{PHONE_VERIFIED_KEY: True},
            )
        return self._reply(
            "❌ El código no es válido o ya expiró. Solicita uno nuevo en la app.",
            tool="verify_phone_code",
        )

    async def _help(self, prompt: PromptContext, session: Session) -> str:
        if self._llm is None:
            return HELP_FALLBACK
        try:
            answer = await self._llm.complete(build_help_prompt(session.state), prompt.text)
        except Exception as e:
            logger.warning("Help answer from LLM failed, using static text: %s", e)
            return HELP_FALLBACK
        return answer.strip() or HELP_FALLBACK


def build_handlers(tools: ToolBox, llm: LLMClient | None = None) -> dict[HandlerKind, Handler]:
    return {
        HandlerKind.GENERAL: GeneralHandler(tools, llm),
        HandlerKind.GROUP: GroupHandler(tools),
        HandlerKind.PAYMENT: PaymentHandler(tools),
        HandlerKind.PROOF: ProofHandler(tools),
    }
