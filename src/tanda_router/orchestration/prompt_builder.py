"""Build the delegated prompt from a routed message, and the help system prompt."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from tanda_router.domain.routing import RouteRequest


HELP_SYSTEM_PROMPT = """
Eres el asistente de PasaTanda, una aplicación de tandas (grupos de ahorro rotativo) en WhatsApp.
Responde en español, de forma breve y amigable.
Explica qué puede hacer el usuario: crear una tanda, invitar participantes, configurar montos,
consultar el estado, pagar su cuota con link o QR, enviar su comprobante y verificar su teléfono.
Si falta información, pregunta específicamente qué necesitas.
"""


class PromptContext(BaseModel):
    """What a handler receives: the composite prompt plus the request it came from."""

    text: str
    request: RouteRequest

    @property
    def sender_phone(self) -> str:
        return self.request.sender_id

    @property
    def user_text(self) -> str:
        return self.request.original_text


def context_lines(request: RouteRequest) -> list[str]:
    """Bracketed context lines, in a fixed order."""
    lines = [f"[Teléfono del usuario: {request.sender_id}]"]
    if request.group_id:
        lines.append(f"[Grupo WhatsApp: {request.group_id}]")
    if request.sender_name:
        lines.append(f"[Nombre WhatsApp: {request.sender_name}]")
    if request.referred_product:
        lines.append(f"[Producto referido: {request.referred_product.product_retailer_id}]")
    return lines


def build_prompt(request: RouteRequest) -> PromptContext:
    """Original text first, then a `Contexto:` block with the bracketed lines."""
    parts = [request.original_text]
    lines = context_lines(request)
    if lines:
        parts.append("\n---\nContexto:\n" + "\n".join(lines))
    return PromptContext(text="\n".join(parts), request=request)


def build_help_prompt(state: dict[str, Any]) -> str:
    """Help system prompt plus the persistent state values worth mentioning."""
    parts = [HELP_SYSTEM_PROMPT.strip(), ""]
    known = []
    if state.get("user:selected_group_id"):
        known.append(f"- Tanda seleccionada: {state['user:selected_group_id']}")
    if state.get("user:phone_verified"):
        known.append("- El teléfono del usuario ya está verificado.")
    if known:
        parts.append("Estado conocido del usuario:")
        parts.extend(known)
    return "\n".join(parts).strip()
