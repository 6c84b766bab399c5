"""Deterministic intent classification over user text and handler response text. No I/O."""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple


class Intent(str, Enum):
    """Classified purpose of one exchange."""

    CREATE_GROUP = "CREATE_GROUP"
    ADD_PARTICIPANT = "ADD_PARTICIPANT"
    CONFIGURE_TANDA = "CONFIGURE_TANDA"
    CHECK_STATUS = "CHECK_STATUS"
    START_TANDA = "START_TANDA"
    PAY_QUOTA = "PAY_QUOTA"
    PAYOUT_WINNER = "PAYOUT_WINNER"
    UPLOAD_PROOF = "UPLOAD_PROOF"
    VERIFY_PHONE = "VERIFY_PHONE"
    GENERAL_HELP = "GENERAL_HELP"
    UNKNOWN = "UNKNOWN"


# --- Structured control tokens (button taps, list selections) ---

INVITE_TOKEN_RE = re.compile(r"^invite_(accept|decline):(\S*)")
TANDA_TOKEN_RE = re.compile(r"^tanda:(configure|status|add_participant|start):(\d+)")
PAYOUT_TOKEN_RE = re.compile(r"^payout:(fiat|usdc|later):([^:\s]+)(?::(\d+))?")

TANDA_ACTION_INTENTS: dict[str, Intent] = {
    "configure": Intent.CONFIGURE_TANDA,
    "status": Intent.CHECK_STATUS,
    "add_participant": Intent.ADD_PARTICIPANT,
    "start": Intent.START_TANDA,
}


class ControlToken(NamedTuple):
    """Parsed machine-generated token. `args` keeps the raw captured groups."""

    kind: str  # invite | tanda | payout
    action: str
    args: tuple[str, ...]


def parse_control_token(text: str) -> ControlToken | None:
    """Recognise invite_*, tanda:*, payout:* tokens at the start of the text."""
    lowered = text.strip().lower()
    m = INVITE_TOKEN_RE.match(lowered)
    if m:
        # Invite codes are case-sensitive upstream; re-read from the original text.
        rest = text.strip().split(":", 1)[1].split()
        code = rest[0] if rest else ""
        return ControlToken("invite", m.group(1), (code,))
    m = TANDA_TOKEN_RE.match(lowered)
    if m:
        return ControlToken("tanda", m.group(1), (m.group(2),))
    m = PAYOUT_TOKEN_RE.match(lowered)
    if m:
        args = tuple(g for g in (m.group(2), m.group(3)) if g is not None)
        return ControlToken("payout", m.group(1), args)
    return None


def _intent_for_token(token: ControlToken) -> Intent:
    if token.kind == "invite":
        return Intent.CREATE_GROUP
    if token.kind == "tanda":
        return TANDA_ACTION_INTENTS[token.action]
    return Intent.PAYOUT_WINNER


# --- Free-text rules, in priority order (first match wins) ---

VERIFICATION_RE = re.compile(r"~\*|otp|c[oó]digo|pin")

USER_TEXT_RULES: list[tuple[Intent, re.Pattern[str]]] = [
    (Intent.CREATE_GROUP, re.compile(r"crear|nueva tanda|iniciar grupo|armar")),
    (Intent.ADD_PARTICIPANT, re.compile(r"agregar|invitar|añadir|incluir")),
    (Intent.CONFIGURE_TANDA, re.compile(r"configurar|cambiar|modificar")),
    (Intent.CHECK_STATUS, re.compile(r"estado|cómo va|info|ver tanda|mi turno")),
    (Intent.PAY_QUOTA, re.compile(r"pagar|cuota|link.*pago|qr")),
    (Intent.UPLOAD_PROOF, re.compile(r"comprobante|voucher|recibo|pagué")),
    (Intent.GENERAL_HELP, re.compile(r"ayuda|cómo funciona|qué puedo")),
    (Intent.START_TANDA, re.compile(r"iniciar.*tanda|desplegar|activar")),
]

RESPONSE_TEXT_RULES: list[tuple[Intent, re.Pattern[str]]] = [
    (Intent.CREATE_GROUP, re.compile(r"grupo.*creado|tanda.*creada")),
    (
        Intent.VERIFY_PHONE,
        re.compile(r"(tel[eé]fono).*(verificado|validado)|c[oó]digo.*(verificado|validado)"),
    ),
    (Intent.PAY_QUOTA, re.compile(r"link.*pago|qr.*generado|payment")),
    (Intent.UPLOAD_PROOF, re.compile(r"verificado|comprobante")),
]


def classify_user_text(user_text: str) -> Intent:
    """Rules 1-3 only: tokens, verification markers, user keywords. UNKNOWN if none match."""
    token = parse_control_token(user_text)
    if token is not None:
        return _intent_for_token(token)

    lowered = user_text.lower()
    if VERIFICATION_RE.search(lowered):
        return Intent.VERIFY_PHONE
    for intent, pattern in USER_TEXT_RULES:
        if pattern.search(lowered):
            return intent
    return Intent.UNKNOWN


def classify(user_text: str, response_text: str = "") -> Intent:
    """
    Label one exchange. Structured tokens beat free text; user text beats
    the handler's response; anything unmatched is UNKNOWN.
    """
    intent = classify_user_text(user_text or "")
    if intent is not Intent.UNKNOWN:
        return intent

    lowered = (response_text or "").lower()
    for candidate, pattern in RESPONSE_TEXT_RULES:
        if pattern.search(lowered):
            return candidate
    return Intent.UNKNOWN
