from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from turnstream.domain.context.memory.in_memory_backend import InMemoryMemoryBackend
from turnstream.domain.context.memory.memory_store import MemoryStore
from turnstream.domain.orchestration.core.provider_transport import ProviderTransport, ToolDispatcher, TurnRequest
from turnstream.domain.tool.tool_models import ToolCall
from turnstream.infrastructure.observability.logging import metrics


def record(delta: Optional[Dict[str, Any]] = None, **top_level: Any) -> bytes:
    """One ``data:`` line carrying a chat-completions style chunk."""
    body: Dict[str, Any] = dict(top_level)
    if delta is not None:
        body["choices"] = [{"delta": delta}]
    return f"data: {json.dumps(body, ensure_ascii=False)}\n".encode("utf-8")


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """datetime clock for memory timestamps."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ToolRound:
    """Script step: ask the dispatcher to run these calls, then continue."""

    def __init__(self, *calls: ToolCall):
        self.calls = list(calls)
        self.results: List[Any] = []


class Hold:
    """Script step: block until released (or cancelled)."""

    def __init__(self):
        self.reached = asyncio.Event()
        self.release = asyncio.Event()


class ScriptedTransport(ProviderTransport):
    """Provider transport replaying a fixed script of chunks and actions."""

    def __init__(self, *script: Any):
        self.script = list(script)
        self.requests: List[TurnRequest] = []

    async def stream(self, request: TurnRequest, dispatcher: ToolDispatcher) -> AsyncIterator[bytes]:
        self.requests.append(request)
        for step in self.script:
            if isinstance(step, ToolRound):
                step.results = await dispatcher(step.calls)
            elif isinstance(step, Hold):
                step.reached.set()
                await step.release.wait()
            elif isinstance(step, BaseException):
                raise step
            else:
                yield step


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def memory_backend() -> InMemoryMemoryBackend:
    return InMemoryMemoryBackend()


@pytest.fixture
def memory_store(memory_backend, wall_clock) -> MemoryStore:
    return MemoryStore(memory_backend, clock=wall_clock)


@pytest.fixture
def small_store(memory_backend, wall_clock) -> MemoryStore:
    """Store with tight quotas: 100 bytes per file, 250 bytes per user."""
    return MemoryStore(memory_backend, max_file_bytes=100, max_total_bytes=250, clock=wall_clock)
