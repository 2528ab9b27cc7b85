"""LiteLLM provider implementation for multi-provider support."""

from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from hrdesk.providers.base import LLMParams, LLMProvider, ProviderError, extract_json_object
from hrdesk.providers.registry import ProviderSpec

_JSON_INSTRUCTION = "Respond with a single JSON object only. No prose, no code fences."


class LiteLLMProvider(LLMProvider):
    """
    One registry backend reached through LiteLLM.

    Provider-specific details (model prefix, default endpoint) come from the
    ``ProviderSpec``; this class only shapes the request and the response.
    Errors are raised, never converted into reply text: the router decides
    what happens next.
    """

    def __init__(
        self,
        spec: ProviderSpec,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        priority: int | None = None,
        privacy_approved: bool | None = None,
    ):
        super().__init__(
            name=spec.name,
            priority=spec.priority if priority is None else priority,
            privacy_approved=spec.privacy_approved if privacy_approved is None else privacy_approved,
        )
        self.spec = spec
        self.default_model = model or spec.default_model
        self.api_key = api_key
        self.api_base = api_base

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers (e.g. response_format on Ollama)
        litellm.drop_params = True

    def _resolve_model(self, model: str) -> str:
        prefix = self.spec.litellm_prefix
        if prefix and not model.startswith(f"{prefix}/"):
            return f"{prefix}/{model}"
        return model

    def _build_kwargs(self, prompt: str, params: LLMParams, json_mode: bool) -> dict[str, Any]:
        system = params.system_prompt
        if json_mode:
            system = f"{system}\n\n{_JSON_INSTRUCTION}".strip()

        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": self._resolve_model(params.model or self.default_model),
            "messages": messages,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        # api_key is passed per call, not through env vars
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    async def _complete(self, kwargs: dict[str, Any]) -> str:
        response = await acompletion(**kwargs)
        choice = response.choices[0]
        content = choice.message.content
        if not content or not content.strip():
            raise ProviderError(f"{self.name}: empty completion (finish_reason={choice.finish_reason})")
        logger.debug(f"{self.name} completion via {kwargs['model']}: {len(content)} chars")
        return content

    async def generate_text(self, prompt: str, params: LLMParams | None = None) -> str:
        return await self._complete(self._build_kwargs(prompt, params or LLMParams(), json_mode=False))

    async def generate_json(self, prompt: str, params: LLMParams | None = None) -> dict[str, Any]:
        raw = await self._complete(self._build_kwargs(prompt, params or LLMParams(), json_mode=True))
        return extract_json_object(raw)
