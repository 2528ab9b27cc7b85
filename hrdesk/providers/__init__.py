"""LLM provider abstraction module."""

from hrdesk.providers.base import JSONResult, LLMParams, LLMProvider, ProviderError, TextResult
from hrdesk.providers.router import (
    HealthTable,
    LLMRouter,
    LLMTaskContext,
    ProviderUnavailable,
    TaskType,
)

__all__ = [
    "HealthTable",
    "JSONResult",
    "LLMParams",
    "LLMProvider",
    "LLMRouter",
    "LLMTaskContext",
    "ProviderError",
    "ProviderUnavailable",
    "TaskType",
    "TextResult",
]
