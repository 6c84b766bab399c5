"""LLM client used to phrase free-form answers: Protocol + httpx implementation + mock for tests."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for LLM completion. Implement with httpx or mock for tests."""

    async def complete(self, system_prompt: str, user_message: str) -> str:
        """Send system + user message to the LLM, return the raw reply text."""
        ...


class ChatCompletionsClient:
    """Async httpx client for an OpenAI-compatible /v1/chat/completions endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        timeout: float = 20.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout

    async def complete(self, system_prompt: str, user_message: str) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        payload = {"model": self._model, "messages": messages, "temperature": 0.3}
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            r = await client.post(
                f"{self._base_url}/v1/chat/completions",
                json=payload,
                headers=headers or None,
            )
            r.raise_for_status()
            data = r.json()
        choices = data.get("choices", [])
        if not choices:
            return ""
        return ((choices[0].get("message") or {}).get("content") or "").strip()


class MockLLMClient:
    """Implements LLMClient with scripted responses for tests. No network."""

    DEFAULT_REPLY = (
        "Puedo ayudarte a crear una tanda, invitar participantes, pagar tu cuota "
        "o enviar tu comprobante. ¿Qué quieres hacer?"
    )

    def __init__(self, responses: list[str] | None = None, error: Exception | None = None) -> None:
        self.responses = list(responses) if responses else []
        self.error = error
        self.call_count = 0
        self.prompts: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_message: str) -> str:
        self.prompts.append((system_prompt, user_message))
        self.call_count += 1
        if self.error is not None:
            raise self.error
        if self.call_count <= len(self.responses):
            return self.responses[self.call_count - 1]
        return self.DEFAULT_REPLY
