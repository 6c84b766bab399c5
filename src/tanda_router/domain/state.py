"""Session and event models. Append-only events per session, derived state mapping."""

from __future__ import annotations

import time
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


def _new_id() -> str:
    return uuid.uuid4().hex


class Event(BaseModel):
    """One immutable record in a session's log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    invocation_id: str | None = Field(default=None, description="Groups the events of one route call")
    author: str = Field(..., description="user | orchestrator | game_master | treasurer | validator")
    timestamp: float = Field(default_factory=time.time, description="Epoch seconds")
    content: str | None = None
    state_delta: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """Durable conversation state for one user within one app."""

    id: str
    app_name: str
    user_id: str
    state: dict[str, Any] = Field(default_factory=dict)
    # Per-exchange values; never serialized, never returned by the store.
    scratch: dict[str, Any] = Field(default_factory=dict, exclude=True)
    events: list[Event] = Field(default_factory=list)
    last_update_time: float = Field(default_factory=time.time)
    created_at: float = Field(default_factory=time.time)
    # Set on read views whose events were filtered; the store refuses to append to them.
    _partial: bool = PrivateAttr(default=False)

    @property
    def is_partial(self) -> bool:
        return self._partial

    def last_response(self) -> str | None:
        """Content of the most recent non-user event, if any."""
        for event in reversed(self.events):
            if event.author != "user" and event.content:
                return event.content
        return None


class SessionSummary(BaseModel):
    """What list_sessions returns: identity and freshness, no events or state."""

    id: str
    app_name: str
    user_id: str
    last_update_time: float


class GetSessionConfig(BaseModel):
    """Read-time filter applied to a copy of the session."""

    num_recent_events: int | None = Field(default=None, ge=1)
    after_timestamp: float | None = None


# Well-known state keys. "user:" keys follow the user across exchanges;
# "temp:" keys are per-exchange scratch.
PHONE_KEY = "user:phone"
PHONE_VERIFIED_KEY = "user:phone_verified"
SELECTED_GROUP_KEY = "user:selected_group_id"
LAST_PAYMENT_ORDER_KEY = "user:last_payment_order"
GROUP_CONTEXT_KEY = "groupId"
LAST_TOOL_KEY = "temp:last_tool"
