"""
Provider registry: every known LLM backend is declared here.

Adding a backend means adding a ``ProviderSpec`` here; ordering and enabling
backends is done in the config file (``providers`` list), never in code.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from hrdesk.config.schema import Config, ProviderConfig
from hrdesk.providers.base import LLMProvider


@dataclass(frozen=True)
class ProviderSpec:
    """Static metadata for one backend family."""

    name: str
    label: str
    litellm_prefix: str
    default_model: str
    env_key: str = ""
    default_api_base: str = ""
    priority: int = 100
    # local deployments keep data on infrastructure we control
    is_local: bool = False

    @property
    def privacy_approved(self) -> bool:
        return self.is_local


# Cheap/fast first, paid remote next, local last.
PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(
        name="groq",
        label="Groq",
        litellm_prefix="groq",
        default_model="llama-3.1-8b-instant",
        env_key="GROQ_API_KEY",
        priority=1,
    ),
    ProviderSpec(
        name="gemini",
        label="Gemini",
        litellm_prefix="gemini",
        default_model="gemini-2.0-flash",
        env_key="GEMINI_API_KEY",
        priority=2,
    ),
    ProviderSpec(
        name="openai",
        label="OpenAI",
        litellm_prefix="",
        default_model="gpt-4o-mini",
        env_key="OPENAI_API_KEY",
        priority=3,
    ),
    ProviderSpec(
        name="ollama",
        label="Ollama",
        litellm_prefix="ollama",
        default_model="llama3.1:8b",
        default_api_base="http://localhost:11434",
        priority=4,
        is_local=True,
    ),
)


def find_by_name(name: str) -> ProviderSpec | None:
    key = name.strip().lower()
    for spec in PROVIDERS:
        if spec.name == key:
            return spec
    return None


def _is_configured(spec: ProviderSpec, entry: ProviderConfig) -> bool:
    # Local backends need no key; remote ones are skipped until a key is set.
    return spec.is_local or bool(entry.api_key)


def build_providers(config: Config) -> list[LLMProvider]:
    """Instantiate the enabled, configured providers from *config*."""
    from hrdesk.providers.litellm_provider import LiteLLMProvider

    providers: list[LLMProvider] = []
    for entry in config.providers:
        if not entry.enabled:
            continue
        spec = find_by_name(entry.name)
        if spec is None:
            logger.warning(f"Unknown provider '{entry.name}' in config; skipped")
            continue
        if not _is_configured(spec, entry):
            logger.debug(f"Provider {spec.label} has no API key; skipped")
            continue
        providers.append(
            LiteLLMProvider(
                spec=spec,
                model=entry.model or spec.default_model,
                api_key=entry.api_key or None,
                api_base=entry.api_base or spec.default_api_base or None,
                priority=entry.priority if entry.priority is not None else spec.priority,
                privacy_approved=(
                    entry.privacy_approved
                    if entry.privacy_approved is not None
                    else spec.privacy_approved
                ),
            )
        )
    logger.info(f"Provider registry: {', '.join(p.name for p in providers) or '(none)'}")
    return providers
