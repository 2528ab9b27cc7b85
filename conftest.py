"""Shared pytest fixtures: a seeded in-memory store and scripted LLM backends."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from hrdesk.agent.orchestrator import Orchestrator, build_orchestrator
from hrdesk.channels.email import LogNotifier
from hrdesk.config.schema import Config
from hrdesk.providers.base import LLMParams, LLMProvider, ProviderError
from hrdesk.session.manager import ConversationContext
from hrdesk.storage.memory import MemoryDataStore, seed_demo
from hrdesk.storage.repository import Entity

# a classification the model stage ignores, so the heuristic stage decides
DEFER = {"intent": "information", "dataSource": [], "scope": "company", "confidence": 0.0}


class ScriptedProvider(LLMProvider):
    """Replies from a script; the last text reply repeats once the script runs out."""

    def __init__(
        self,
        name: str = "scripted",
        replies: Sequence[str] = ("Here is what I found.",),
        json_replies: Sequence[dict[str, Any]] = (),
        priority: int = 1,
        privacy_approved: bool = True,
    ):
        super().__init__(name, priority=priority, privacy_approved=privacy_approved)
        self.replies = list(replies)
        self.json_replies = list(json_replies)
        self.calls: list[tuple[str, str]] = []

    async def generate_text(self, prompt: str, params: LLMParams | None = None) -> str:
        self.calls.append(("text", prompt))
        return self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

    async def generate_json(self, prompt: str, params: LLMParams | None = None) -> dict[str, Any]:
        self.calls.append(("json", prompt))
        return self.json_replies.pop(0) if self.json_replies else dict(DEFER)


class FailingProvider(LLMProvider):
    def __init__(self, name: str = "failing", priority: int = 1, privacy_approved: bool = True):
        super().__init__(name, priority=priority, privacy_approved=privacy_approved)
        self.calls = 0

    async def generate_text(self, prompt: str, params: LLMParams | None = None) -> str:
        self.calls += 1
        raise ProviderError(f"{self.name} is down")


class SlowProvider(LLMProvider):
    def __init__(self, name: str = "slow", delay: float = 1.0, priority: int = 1):
        super().__init__(name, priority=priority, privacy_approved=True)
        self.delay = delay
        self.calls = 0

    async def generate_text(self, prompt: str, params: LLMParams | None = None) -> str:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return "too late"


class FixedClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 10, 19, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def store() -> MemoryDataStore:
    s = MemoryDataStore()
    asyncio.run(seed_demo(s))
    return s


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def context_for(store: MemoryDataStore) -> Callable[[str], ConversationContext]:
    def build(user_id: str) -> ConversationContext:
        row = asyncio.run(store.get(Entity.USERS, user_id))
        assert row is not None, user_id
        return ConversationContext.from_user(row)

    return build


@pytest.fixture
def make_orchestrator(
    store: MemoryDataStore, notifier: LogNotifier, clock: FixedClock
) -> Callable[..., Orchestrator]:
    def build(providers: Sequence[LLMProvider] | None = None, **kwargs: Any) -> Orchestrator:
        return build_orchestrator(
            Config(),
            store,
            notifier,
            providers=list(providers) if providers is not None else [ScriptedProvider()],
            clock=clock,
            **kwargs,
        )

    return build
