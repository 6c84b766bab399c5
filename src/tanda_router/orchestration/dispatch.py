"""Closed set of handler kinds and the explicit choice between them."""

from __future__ import annotations

from enum import Enum

from tanda_router.domain.intent import Intent, classify_user_text
from tanda_router.domain.validators import extract_invite_reply


class HandlerKind(str, Enum):
    """Value is the author name recorded on the handler's events."""

    GENERAL = "orchestrator"
    GROUP = "game_master"
    PAYMENT = "treasurer"
    PROOF = "validator"


INTENT_HANDLERS: dict[Intent, HandlerKind] = {
    Intent.CREATE_GROUP: HandlerKind.GROUP,
    Intent.ADD_PARTICIPANT: HandlerKind.GROUP,
    Intent.CONFIGURE_TANDA: HandlerKind.GROUP,
    Intent.CHECK_STATUS: HandlerKind.GROUP,
    Intent.START_TANDA: HandlerKind.GROUP,
    Intent.PAY_QUOTA: HandlerKind.PAYMENT,
    Intent.PAYOUT_WINNER: HandlerKind.PAYMENT,
    Intent.UPLOAD_PROOF: HandlerKind.PROOF,
    Intent.VERIFY_PHONE: HandlerKind.GENERAL,
    Intent.GENERAL_HELP: HandlerKind.GENERAL,
    Intent.UNKNOWN: HandlerKind.GENERAL,
}


def select_handler(user_text: str) -> HandlerKind:
    """Pick the handler from the user's text alone (no response text exists yet)."""
    if extract_invite_reply(user_text) is not None:
        return HandlerKind.GROUP
    return INTENT_HANDLERS[classify_user_text(user_text)]
