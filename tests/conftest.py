from __future__ import annotations

import asyncio
from typing import Any

import pytest

from parley.runtime.cancellation import GlobalCancellation
from parley.runtime.event_bus import EventBus
from parley.runtime.llm.errors import LLMErrorCode, LLMRequestError
from parley.runtime.llm.providers.base import ProviderRegistry
from parley.runtime.llm.types import LLMStreamEvent, LLMStreamEventKind, ProviderKind
from parley.runtime.orchestrator import Orchestrator, RetryPolicy
from parley.runtime.protocol import Event

CLAUDE = "claude-sonnet-4-20250514"


def server_error(message: str = "upstream unavailable") -> LLMRequestError:
    return LLMRequestError(message, code=LLMErrorCode.SERVER_ERROR, status_code=503, retryable=True)


class ScriptedProvider:
    """
    Plays back one script step per `stream_chat` call.

    A step is a list of items: a `str` is streamed as a text delta, a `("thinking", str)` tuple as
    a thinking delta, an exception is raised, and an `asyncio.Event` is awaited (never set, it
    hangs the stream until cancelled).
    """

    def __init__(self, steps: list[list[Any]], *, kind: ProviderKind = ProviderKind.ANTHROPIC, models=(CLAUDE,)):
        self.kind = kind
        self.steps = list(steps)
        self.models = list(models)
        self.requests: list[Any] = []
        self.closed_streams = 0
        self.closed = False

    def list_models(self) -> list[str]:
        return list(self.models)

    async def stream_chat(self, request):
        self.requests.append(request)
        step = self.steps.pop(0)
        try:
            for item in step:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, asyncio.Event):
                    await item.wait()
                elif isinstance(item, tuple):
                    yield LLMStreamEvent(LLMStreamEventKind.THINKING_DELTA, item[1])
                else:
                    yield LLMStreamEvent(LLMStreamEventKind.TEXT_DELTA, item)
        finally:
            self.closed_streams += 1

    async def aclose(self) -> None:
        self.closed = True


class Recorder:
    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        bus.subscribe(self.events.append)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def of(self, kind) -> list[Event]:
        return [e for e in self.events if e.kind == kind.value]


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> Recorder:
    return Recorder(event_bus)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_orchestrator(event_bus: EventBus, sleeps: SleepRecorder):
    def _make(provider: ScriptedProvider, **kwargs: Any) -> Orchestrator:
        registry = ProviderRegistry({provider.kind.value: provider})
        return Orchestrator(
            providers=registry,
            event_bus=event_bus,
            global_cancel=GlobalCancellation(),
            retry_policy=RetryPolicy(),
            sleep=kwargs.pop("sleep", sleeps),
            **kwargs,
        )

    return _make
