"""Inbound request and outbound result of one routed message."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from tanda_router.domain.intent import Intent


class ReferredProduct(BaseModel):
    """Catalog product the message was sent from, if any."""

    catalog_id: str
    product_retailer_id: str


class RouteRequest(BaseModel):
    """Normalized inbound message, already parsed from the transport envelope."""

    sender_id: str = Field(..., min_length=1)
    sender_name: str | None = None
    group_id: str | None = None
    original_text: str = ""
    message_id: str | None = Field(default=None, description="Transport id, used for dedup")
    referred_product: ReferredProduct | None = None


class RouteResult(BaseModel):
    """Projection of the session after the exchange. Not persisted."""

    intent: Intent
    handler_used: str = "orchestrator"
    response_text: str | None = None
    session_state: dict[str, Any] | None = None
