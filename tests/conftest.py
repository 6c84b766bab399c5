"""Pytest fixtures: config, stores with failure injection, fake services, clock."""

from __future__ import annotations

from pathlib import Path

import pytest

from tanda_router.config.models import RouterConfig
from tanda_router.infrastructure.llm_client import MockLLMClient
from tanda_router.infrastructure.services import InMemoryServices
from tanda_router.infrastructure.session_backend import InMemorySessionBackend, Row
from tanda_router.infrastructure.session_store import DurableSessionStore
from tanda_router.orchestration.runtime import TandaRuntime

SENDER = "59177242197"
OTP = "ABC123"


class FlakyBackend(InMemorySessionBackend):
    """In-memory rows that raise ConnectionError while `down` is True, or for the next `fail_next` calls."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False
        self.fail_next = 0
        self.failures = 0

    def _check(self) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
        elif not self.down:
            return
        self.failures += 1
        raise ConnectionError("backend unreachable")

    async def fetch(self, app_name: str, session_id: str) -> Row | None:
        self._check()
        return await super().fetch(app_name, session_id)

    async def fetch_for_user(self, app_name: str, user_id: str) -> list[Row]:
        self._check()
        return await super().fetch_for_user(app_name, user_id)

    async def insert(self, row: Row) -> bool:
        self._check()
        return await super().insert(row)

    async def update(self, row: Row) -> bool:
        self._check()
        return await super().update(row)

    async def delete(self, session_id: str) -> None:
        self._check()
        await super().delete(session_id)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def router_config() -> RouterConfig:
    return RouterConfig(app_name="pasatanda", delegation_timeout_seconds=2.0)


@pytest.fixture
def backend() -> FlakyBackend:
    return FlakyBackend()


@pytest.fixture
def store(backend: FlakyBackend) -> DurableSessionStore:
    return DurableSessionStore(backend)


@pytest.fixture
def services() -> InMemoryServices:
    return InMemoryServices(pending_codes={SENDER: OTP})


@pytest.fixture
def mock_llm() -> MockLLMClient:
    """Mock LLM that returns the default help text until scripted responses are set."""
    return MockLLMClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def runtime(
    router_config: RouterConfig,
    store: DurableSessionStore,
    services: InMemoryServices,
    mock_llm: MockLLMClient,
) -> TandaRuntime:
    return TandaRuntime(router_config, store, services, services, services, llm_client=mock_llm)


@pytest.fixture
def configs_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "configs"
