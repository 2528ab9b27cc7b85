"""LLM router: privacy- and health-aware failover across registered providers.

The router holds no provider-specific logic. Providers arrive as a list
(built from config by ``registry.build_providers``); the router orders them
per task, skips ineligible ones, and walks the list until one succeeds.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from loguru import logger

from hrdesk.providers.base import JSONResult, LLMParams, LLMProvider, TextResult

T = TypeVar("T")


class TaskType(str, Enum):
    CHAT = "chat"
    ANALYSIS = "analysis"
    GENERATION = "generation"
    EXTRACTION = "extraction"
    SUMMARY = "summary"
    CLASSIFICATION = "classification"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResponseTime(str, Enum):
    REALTIME = "realtime"
    FAST = "fast"
    NORMAL = "normal"
    BATCH = "batch"


@dataclass(frozen=True)
class LLMTaskContext:
    """What a call needs from a provider; drives selection."""

    task_type: TaskType
    priority: Priority = Priority.MEDIUM
    requires_privacy: bool = False
    expected_response_time: ResponseTime = ResponseTime.NORMAL


class ProviderUnavailable(RuntimeError):
    """Every eligible provider failed (or none was eligible)."""

    def __init__(self, task_type: TaskType, attempted: list[str], errors: dict[str, str]):
        self.task_type = task_type
        self.attempted = attempted
        self.errors = errors
        detail = ", ".join(f"{k}: {v}" for k, v in errors.items()) or "no eligible provider"
        super().__init__(f"all providers failed for {task_type.value} ({detail})")


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------


@dataclass
class ProviderHealth:
    provider: str
    available: bool = True
    last_failure_at: float | None = None
    backoff_until: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    total_latency: float = 0.0
    last_error: str = ""


@dataclass
class HealthTable:
    """Process-wide advisory health state shared by every router call.

    Updates are last-writer-wins under a plain lock; health is a hint for
    ordering, not a correctness guarantee.
    """

    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, ProviderHealth] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, provider: str) -> ProviderHealth:
        with self._lock:
            return self._entries.setdefault(provider, ProviderHealth(provider=provider))

    def is_available(self, provider: str) -> bool:
        entry = self.get(provider)
        if entry.available:
            return True
        if self.clock() >= entry.backoff_until:
            with self._lock:
                entry.available = True
            return True
        return False

    def mark_success(self, provider: str, latency: float) -> None:
        entry = self.get(provider)
        with self._lock:
            entry.available = True
            entry.backoff_until = 0.0
            entry.success_count += 1
            entry.total_latency += latency

    def mark_failure(self, provider: str, backoff_seconds: float, error: str) -> None:
        now = self.clock()
        entry = self.get(provider)
        with self._lock:
            entry.available = False
            entry.last_failure_at = now
            entry.backoff_until = now + backoff_seconds
            entry.failure_count += 1
            entry.last_error = error[:200]

    def snapshot(self) -> list[ProviderHealth]:
        with self._lock:
            return [ProviderHealth(**vars(e)) for e in self._entries.values()]


# ---------------------------------------------------------------------------
# router
# ---------------------------------------------------------------------------


class LLMRouter:
    """Uniform entry point for every language-model call in hrdesk."""

    def __init__(
        self,
        providers: Sequence[LLMProvider],
        health: HealthTable | None = None,
        attempt_timeout: float = 20.0,
        backoff_seconds: float = 60.0,
        max_concurrency_per_provider: int = 4,
        task_routing: dict[str, list[str]] | None = None,
    ):
        self._providers = list(providers)
        self.health = health or HealthTable()
        self.attempt_timeout = attempt_timeout
        self.backoff_seconds = backoff_seconds
        self.task_routing = task_routing or {}
        self._semaphores = {
            p.name: asyncio.Semaphore(max(1, max_concurrency_per_provider)) for p in self._providers
        }

    @classmethod
    def from_config(cls, config: Any, providers: Sequence[LLMProvider]) -> "LLMRouter":
        rc = config.router
        return cls(
            providers,
            attempt_timeout=rc.attempt_timeout_seconds,
            backoff_seconds=rc.backoff_seconds,
            max_concurrency_per_provider=rc.max_concurrency_per_provider,
            task_routing=rc.task_routing,
        )

    @property
    def providers(self) -> list[LLMProvider]:
        return list(self._providers)

    def _ordered(self, context: LLMTaskContext) -> list[LLMProvider]:
        preferred = self.task_routing.get(context.task_type.value, [])
        rank = {name: i for i, name in enumerate(preferred)}
        # Providers named in task routing come first in that order, the rest by priority.
        return sorted(
            self._providers,
            key=lambda p: (rank.get(p.name, len(rank)), p.priority),
        )

    def eligible(self, context: LLMTaskContext) -> list[LLMProvider]:
        """Providers that may serve *context* right now, in attempt order."""
        result = []
        for provider in self._ordered(context):
            if context.requires_privacy and not provider.privacy_approved:
                continue
            if not self.health.is_available(provider.name):
                logger.debug(f"[LLM Router] {provider.name} in backoff; skipped")
                continue
            result.append(provider)
        return result

    async def _attempt_chain(
        self,
        context: LLMTaskContext,
        call: Callable[[LLMProvider], Awaitable[T]],
    ) -> tuple[T, str]:
        attempted: list[str] = []
        errors: dict[str, str] = {}

        for provider in self.eligible(context):
            attempted.append(provider.name)
            started = time.monotonic()
            try:
                async with self._semaphores[provider.name]:
                    result = await asyncio.wait_for(call(provider), timeout=self.attempt_timeout)
            except asyncio.TimeoutError:
                errors[provider.name] = f"timeout after {self.attempt_timeout}s"
                logger.warning(f"[LLM Router] {provider.name} timed out ({context.task_type.value})")
                self.health.mark_failure(provider.name, self.backoff_seconds, errors[provider.name])
                continue
            except Exception as e:
                errors[provider.name] = f"{type(e).__name__}: {e}"
                logger.warning(f"[LLM Router] {provider.name} failed ({context.task_type.value}): {e}")
                self.health.mark_failure(provider.name, self.backoff_seconds, errors[provider.name])
                continue

            self.health.mark_success(provider.name, time.monotonic() - started)
            logger.info(f"[LLM Router] {context.task_type.value} served by {provider.name}")
            return result, provider.name

        logger.error(f"[LLM Router] no provider could serve {context.task_type.value}: {errors or 'none eligible'}")
        raise ProviderUnavailable(context.task_type, attempted, errors)

    async def generate_text(
        self,
        prompt: str,
        context: LLMTaskContext,
        params: LLMParams | None = None,
    ) -> TextResult:
        text, name = await self._attempt_chain(
            context, lambda p: p.generate_text(prompt, params)
        )
        return TextResult(text=text, provider=name)

    async def generate_json(
        self,
        prompt: str,
        context: LLMTaskContext,
        params: LLMParams | None = None,
    ) -> JSONResult:
        data, name = await self._attempt_chain(
            context, lambda p: p.generate_json(prompt, params)
        )
        return JSONResult(data=data, provider=name)

    def status(self) -> list[dict[str, Any]]:
        """Per-provider health summary for observability endpoints."""
        out = []
        for provider in sorted(self._providers, key=lambda p: p.priority):
            h = self.health.get(provider.name)
            avg = round(h.total_latency / h.success_count, 3) if h.success_count else None
            out.append({
                "provider": provider.name,
                "priority": provider.priority,
                "privacy_approved": provider.privacy_approved,
                "available": self.health.is_available(provider.name),
                "success_count": h.success_count,
                "failure_count": h.failure_count,
                "avg_latency_seconds": avg,
                "last_error": h.last_error or None,
            })
        return out

    def health_summary(self) -> dict[str, Any]:
        available = [p.name for p in self._providers if self.health.is_available(p.name)]
        total = len(self._providers)
        if not available:
            state = "down"
        elif len(available) < total:
            state = "degraded"
        else:
            state = "healthy"
        return {"available_providers": available, "total_providers": total, "status": state}
