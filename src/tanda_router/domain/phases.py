"""Routing FSM: enum and pure transition function."""

from __future__ import annotations

from enum import Enum


class RoutePhase(str, Enum):
    """Phases of one route call for one inbound message."""

    RESOLVING_SESSION = "resolving_session"
    DEDUP_CHECK = "dedup_check"
    DELEGATING = "delegating"
    PERSISTING = "persisting"
    CLASSIFYING = "classifying"
    DONE = "done"
    ERROR = "error"


TERMINAL_PHASES = frozenset({RoutePhase.DONE, RoutePhase.ERROR})

_FORWARD: dict[RoutePhase, RoutePhase] = {
    RoutePhase.RESOLVING_SESSION: RoutePhase.DEDUP_CHECK,
    RoutePhase.DEDUP_CHECK: RoutePhase.DELEGATING,
    RoutePhase.DELEGATING: RoutePhase.PERSISTING,
    RoutePhase.PERSISTING: RoutePhase.CLASSIFYING,
    RoutePhase.CLASSIFYING: RoutePhase.DONE,
}


def next_phase(phase: RoutePhase, failed: bool = False) -> RoutePhase:
    """
    Pure transition: a failure in any non-terminal phase goes to ERROR,
    otherwise advance one step. Terminal phases stay where they are.
    """
    if phase in TERMINAL_PHASES:
        return phase
    if failed:
        return RoutePhase.ERROR
    return _FORWARD[phase]
