"""Configuration schema (pydantic models).

The on-disk file uses camelCase keys; ``loader.convert_keys`` maps them to the
snake_case field names below before validation.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """One entry of the declarative provider list.

    ``priority`` and ``privacy_approved`` default to the registry spec for
    ``name`` when left unset.
    """

    name: str
    enabled: bool = True
    model: str = ""
    api_key: str = ""
    api_base: str | None = None
    priority: int | None = None
    privacy_approved: bool | None = None


def _default_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(name="groq"),
        ProviderConfig(name="gemini"),
        ProviderConfig(name="openai"),
        ProviderConfig(name="ollama"),
    ]


class RouterConfig(BaseModel):
    attempt_timeout_seconds: float = 20.0
    backoff_seconds: float = 60.0
    max_concurrency_per_provider: int = 4
    # task type -> provider names in preference order (unlisted providers follow by priority)
    task_routing: dict[str, list[str]] = Field(default_factory=lambda: {
        "classification": ["groq", "gemini", "openai", "ollama"],
        "extraction": ["groq", "gemini", "openai", "ollama"],
        "generation": ["gemini", "openai", "groq", "ollama"],
        "summary": ["gemini", "groq", "openai", "ollama"],
    })


class ClassifierConfig(BaseModel):
    min_model_confidence: float = 0.4
    fallback_confidence: float = 0.5


class GateConfig(BaseModel):
    proposal_ttl_seconds: int = 300


class SynthesisConfig(BaseModel):
    temperature: float = 0.7
    max_tokens: int = 500
    history_window: int = 10
    # categories whose records must never leave privacy-approved providers
    privacy_categories: list[str] = Field(default_factory=lambda: ["salary", "contracts", "reviews"])
    privacy_departments: list[str] = Field(default_factory=lambda: ["HR"])


class Config(BaseModel):
    providers: list[ProviderConfig] = Field(default_factory=_default_providers)
    router: RouterConfig = Field(default_factory=RouterConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    synthesis: SynthesisConfig = Field(default_factory=SynthesisConfig)

    def get_provider(self, name: str) -> ProviderConfig | None:
        for p in self.providers:
            if p.name == name:
                return p
        return None
