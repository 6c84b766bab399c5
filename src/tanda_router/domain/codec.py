"""Convert between persisted session rows and Session models; keep scratch keys out. No I/O."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from tanda_router.domain.state import Event, Session, SessionSummary

# Legacy prefix for per-exchange keys; such keys live in Session.scratch only.
TEMP_PREFIX = "temp:"


def is_scratch_key(key: str) -> bool:
    return key.startswith(TEMP_PREFIX)


def strip_scratch(state: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy of state without temp: keys."""
    if not state:
        return {}
    return {k: v for k, v in state.items() if not is_scratch_key(k)}


def split_delta(delta: Mapping[str, Any] | None) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a state delta into (persisted, scratch) parts."""
    persisted: dict[str, Any] = {}
    scratch: dict[str, Any] = {}
    for key, value in (delta or {}).items():
        if is_scratch_key(key):
            scratch[key] = value
        else:
            persisted[key] = value
    return persisted, scratch


def parse_json(value: Any, fallback: Any) -> Any:
    """Decode a JSON column that may already be decoded. Bad input yields fallback."""
    if not value:
        return fallback
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return fallback
    return fallback


def to_epoch(value: Any) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            return to_epoch(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    return time.time()


def to_datetime(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def _decode_events(raw: Any) -> list[Event]:
    events: list[Event] = []
    for item in parse_json(raw, []):
        if not isinstance(item, dict):
            continue
        try:
            event = Event.model_validate(item)
        except ValidationError:
            continue
        persisted, _ = split_delta(event.state_delta)
        if persisted != event.state_delta:
            event = event.model_copy(update={"state_delta": persisted})
        events.append(event)
    return events


def row_to_session(row: Mapping[str, Any]) -> Session:
    """
    Build a Session from a table row. JSON columns may arrive as text or
    already-decoded values; temp: keys are dropped from state and event deltas.
    """
    state = parse_json(row.get("state"), {})
    if not isinstance(state, dict):
        state = {}
    return Session(
        id=row["session_id"],
        app_name=row["app_name"],
        user_id=row["user_id"],
        state=strip_scratch(state),
        events=_decode_events(row.get("events")),
        last_update_time=to_epoch(row.get("last_update_time")),
        created_at=to_epoch(row.get("created_at")),
    )


def session_to_row(session: Session) -> dict[str, Any]:
    """Row with JSON text columns, ready for a parametrized insert or update."""
    events = [e.model_dump(mode="json") for e in session.events]
    return {
        "session_id": session.id,
        "app_name": session.app_name,
        "user_id": session.user_id,
        "events": json.dumps(events, default=str),
        "state": json.dumps(strip_scratch(session.state), default=str),
        "last_update_time": to_datetime(session.last_update_time),
        "created_at": to_datetime(session.created_at),
    }


def summarize(session: Session) -> SessionSummary:
    return SessionSummary(
        id=session.id,
        app_name=session.app_name,
        user_id=session.user_id,
        last_update_time=session.last_update_time,
    )
