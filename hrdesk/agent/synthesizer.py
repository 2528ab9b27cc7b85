"""Natural-language replies built from aggregated data."""

from __future__ import annotations

from typing import Any

from hrdesk.agent.context import ContextBuilder
from hrdesk.config.schema import SynthesisConfig
from hrdesk.nl.intent_engine import Intent, IntentKind
from hrdesk.providers.base import LLMParams, TextResult
from hrdesk.providers.router import LLMRouter, LLMTaskContext, Priority, ResponseTime, TaskType
from hrdesk.session.manager import ConversationContext


class ResponseSynthesizer:
    def __init__(
        self,
        router: LLMRouter,
        context: ContextBuilder | None = None,
        config: SynthesisConfig | None = None,
    ):
        self.router = router
        self.config = config or SynthesisConfig()
        self.context = context or ContextBuilder(history_window=self.config.history_window)

    def requires_privacy(self, data: dict[str, Any], ctx: ConversationContext) -> bool:
        """Privacy-sensitive data, any HR-department caller, or a history that
        already carries private answers stays on approved providers."""
        if ctx.department in self.config.privacy_departments or ctx.is_private:
            return True
        return any(data.get(category) for category in self.config.privacy_categories)

    async def synthesize(
        self,
        message: str,
        intent: Intent,
        data: dict[str, Any],
        ctx: ConversationContext,
    ) -> TextResult:
        """Raises ``ProviderUnavailable`` when no provider can answer."""
        task = LLMTaskContext(
            task_type=TaskType.GENERATION if intent.kind is IntentKind.REPORT else TaskType.CHAT,
            priority=Priority.MEDIUM,
            requires_privacy=self.requires_privacy(data, ctx),
            expected_response_time=ResponseTime.NORMAL,
        )
        params = LLMParams(
            system_prompt=self.context.build_system_prompt(ctx, intent),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        return await self.router.generate_text(self.context.build_prompt(message, ctx, intent, data), task, params)
