"""Exceptions raised inside the routing engine. None of them escape TandaRouter.route."""

from __future__ import annotations


class BackendUnavailableError(RuntimeError):
    """Durable session backend is not initialized or cannot be reached."""


class ToolAccessError(PermissionError):
    """A handler tried to call a business tool owned by another handler."""

    def __init__(self, tool_name: str, caller: str, owner: str) -> None:
        super().__init__(f"Tool {tool_name!r} belongs to {owner!r}, not {caller!r}")
        self.tool_name = tool_name
        self.caller = caller
        self.owner = owner
