"""Business collaborators the handlers call: Protocols + in-memory implementation for demos and tests."""

from __future__ import annotations

import itertools
import logging
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class GroupService(Protocol):
    """Tanda groups: drafts, participants, invitations, lifecycle."""

    async def create_draft_group(
        self,
        sender_phone: str,
        group_name: str | None = None,
        amount_usd: float | None = None,
        frequency_days: int | None = None,
    ) -> dict[str, Any]:
        """Return at least {"group_id": str, "name": str}."""
        ...

    async def send_admin_selection(self, sender_phone: str, purpose: str) -> None:
        ...

    async def add_participant(
        self,
        sender_phone: str,
        group_id: str,
        participant_phone: str,
        participant_name: str | None = None,
    ) -> None:
        ...

    async def respond_to_invitation(self, sender_phone: str, invite_code: str, accept: bool) -> None:
        ...

    async def configure_group(self, sender_phone: str, group_id: str) -> None:
        ...

    async def check_group_status(self, sender_phone: str, group_id: str) -> dict[str, Any]:
        ...

    async def start_tanda(self, sender_phone: str, group_id: str) -> None:
        ...


@runtime_checkable
class PaymentService(Protocol):
    """Payment links, proofs and payouts."""

    async def create_payment_link(self, sender_phone: str, group_id: str | None = None) -> dict[str, Any]:
        """Return at least {"link": str}."""
        ...

    async def verify_proof(self, sender_phone: str) -> None:
        ...

    async def choose_payout(
        self,
        sender_phone: str,
        group_id: str,
        cycle_index: int | None,
        method: str,
    ) -> None:
        ...


@runtime_checkable
class VerificationService(Protocol):
    """Phone OTP confirmation."""

    async def confirm_code(self, sender_phone: str, code: str, whatsapp_username: str | None = None) -> bool:
        ...


class InMemoryServices:
    """
    Implements all three service protocols in memory. Every call is recorded
    in `calls` as (method_name, kwargs). Suitable for single process demos.
    """

    def __init__(self, pending_codes: dict[str, str] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.groups: dict[str, dict[str, Any]] = {}
        self.pending_codes: dict[str, str] = dict(pending_codes or {})
        self.verified_phones: set[str] = set()
        self._ids = itertools.count(1)

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))
        logger.debug("service call %s %s", name, kwargs)

    def called(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for n, kwargs in self.calls if n == name]

    # --- GroupService ---

    async def create_draft_group(
        self,
        sender_phone: str,
        group_name: str | None = None,
        amount_usd: float | None = None,
        frequency_days: int | None = None,
    ) -> dict[str, Any]:
        self._record(
            "create_draft_group",
            sender_phone=sender_phone,
            group_name=group_name,
            amount_usd=amount_usd,
            frequency_days=frequency_days,
        )
        group_id = str(next(self._ids))
        group = {
            "group_id": group_id,
            "name": group_name or f"Tanda {group_id}",
            "admin": sender_phone,
            "status": "DRAFT",
            "amount_usd": amount_usd,
            "frequency_days": frequency_days,
            "participants": [sender_phone],
        }
        self.groups[group_id] = group
        return group

    async def send_admin_selection(self, sender_phone: str, purpose: str) -> None:
        self._record("send_admin_selection", sender_phone=sender_phone, purpose=purpose)

    async def add_participant(
        self,
        sender_phone: str,
        group_id: str,
        participant_phone: str,
        participant_name: str | None = None,
    ) -> None:
        self._record(
            "add_participant",
            sender_phone=sender_phone,
            group_id=group_id,
            participant_phone=participant_phone,
            participant_name=participant_name,
        )
        group = self.groups.get(group_id)
        if group is not None and participant_phone not in group["participants"]:
            group["participants"].append(participant_phone)

    async def respond_to_invitation(self, sender_phone: str, invite_code: str, accept: bool) -> None:
        self._record("respond_to_invitation", sender_phone=sender_phone, invite_code=invite_code, accept=accept)

    async def configure_group(self, sender_phone: str, group_id: str) -> None:
        self._record("configure_group", sender_phone=sender_phone, group_id=group_id)

    async def check_group_status(self, sender_phone: str, group_id: str) -> dict[str, Any]:
        self._record("check_group_status", sender_phone=sender_phone, group_id=group_id)
        return dict(self.groups.get(group_id) or {"group_id": group_id, "status": "UNKNOWN"})

    async def start_tanda(self, sender_phone: str, group_id: str) -> None:
        self._record("start_tanda", sender_phone=sender_phone, group_id=group_id)
        if group_id in self.groups:
            self.groups[group_id]["status"] = "ACTIVE"

    # --- PaymentService ---

    async def create_payment_link(self, sender_phone: str, group_id: str | None = None) -> dict[str, Any]:
        self._record("create_payment_link", sender_phone=sender_phone, group_id=group_id)
        order = next(self._ids)
        return {"link": f"https://pay.example.invalid/orders/{order}", "order_id": str(order)}

    async def verify_proof(self, sender_phone: str) -> None:
        self._record("verify_proof", sender_phone=sender_phone)

    async def choose_payout(
        self,
        sender_phone: str,
        group_id: str,
        cycle_index: int | None,
        method: str,
    ) -> None:
        self._record(
            "choose_payout",
            sender_phone=sender_phone,
            group_id=group_id,
            cycle_index=cycle_index,
            method=method,
        )

    # --- VerificationService ---

    async def confirm_code(self, sender_phone: str, code: str, whatsapp_username: str | None = None) -> bool:
        self._record("confirm_code", sender_phone=sender_phone, code=code, whatsapp_username=whatsapp_username)
        expected = self.pending_codes.get(sender_phone)
        if expected is None or expected.upper() != code.upper():
            return False
        self.verified_phones.add(sender_phone)
        del self.pending_codes[sender_phone]
        return True
