"""Base LLM provider interface."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class ProviderError(RuntimeError):
    """A single backend failed to produce a usable result."""


@dataclass(frozen=True)
class LLMParams:
    """Per-call generation parameters."""

    system_prompt: str = ""
    temperature: float = 0.3
    max_tokens: int = 1024
    model: str | None = None


@dataclass(frozen=True)
class TextResult:
    text: str
    provider: str


@dataclass(frozen=True)
class JSONResult:
    data: dict[str, Any]
    provider: str


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_object(raw: str) -> dict[str, Any]:
    """Parse the first JSON object found in *raw*.

    Accepts bare JSON, fenced ```json blocks, and JSON surrounded by prose.
    Raises ``ProviderError`` when nothing parseable is found.
    """
    text = (raw or "").strip()
    if not text:
        raise ProviderError("empty response")

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    raise ProviderError(f"unparsable JSON response: {text[:120]!r}")


class LLMProvider(ABC):
    """
    Abstract base class for natural-language backends.

    Every backend exposes the same two calls; ``generate_json`` is built on top
    of ``generate_text`` unless a backend has a native JSON mode.
    """

    def __init__(
        self,
        name: str,
        priority: int = 100,
        privacy_approved: bool = False,
    ):
        self.name = name
        self.priority = priority
        self.privacy_approved = privacy_approved

    @abstractmethod
    async def generate_text(self, prompt: str, params: LLMParams | None = None) -> str:
        """Return generated text, or raise on failure."""

    async def generate_json(self, prompt: str, params: LLMParams | None = None) -> dict[str, Any]:
        """Return a JSON object produced by the backend, or raise ``ProviderError``."""
        raw = await self.generate_text(prompt, params)
        return extract_json_object(raw)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"
