"""Context builder for assembling synthesis prompts."""

import json
from typing import Any

from hrdesk.governance.roles import Tier, tier_for
from hrdesk.nl.intent_engine import Intent, IntentKind
from hrdesk.session.manager import ConversationContext

_ROLE_SUGGESTIONS: dict[Tier | None, list[str]] = {
    Tier.ADMIN: [
        "Show me the latest candidates",
        "How many PTO requests are pending?",
        "Generate a recruitment pipeline report",
        "Show employee headcount by department",
        "Move Taylor to screening",
        "Approve PTO request #123",
    ],
    Tier.MANAGER: [
        "Show me my team members",
        "Who on my team has upcoming PTO?",
        "Approve pending PTO requests",
        "What equipment is assigned to my team?",
        "Generate my team's report",
    ],
    Tier.EMPLOYEE: [
        "What is my PTO balance?",
        "Request PTO for next Friday",
        "What equipment is assigned to me?",
        "What are my benefits?",
        "Show me the employee handbook",
    ],
}

_STYLE_HINTS = {
    "formal": "Use a professional, formal tone.",
    "casual": "Keep the tone relaxed and conversational.",
    "friendly": "Be warm and friendly, but stay concise.",
}


def suggestions_for_role(role: str | None, limit: int = 4) -> list[str]:
    return _ROLE_SUGGESTIONS.get(tier_for(role), _ROLE_SUGGESTIONS[Tier.EMPLOYEE])[:limit]


class ContextBuilder:
    """
    Builds the prompt (system prompt + user turn) for response synthesis.

    Only data that passed the permission check and the aggregator's scope
    filter is ever placed in the prompt.
    """

    def __init__(self, assistant_name: str = "HR Desk", history_window: int = 10):
        self.assistant_name = assistant_name
        self.history_window = history_window

    def build_system_prompt(self, ctx: ConversationContext, intent: Intent) -> str:
        parts = [
            f"You are {self.assistant_name}, an HR assistant for a field-services company.",
            f"You are talking to {ctx.first_name or 'a user'} (role: {ctx.role}, department: {ctx.department or 'n/a'}).",
            "Answer only from the data provided below. If the data does not contain the answer, say so plainly "
            "and suggest who to contact. Never invent records, names or numbers.",
            _STYLE_HINTS.get(ctx.preferences.communication_style, _STYLE_HINTS["friendly"]),
        ]
        if intent.kind is IntentKind.REPORT:
            parts.append("Format the answer as a short report with headings and bullet points.")
        return "\n".join(parts)

    def build_prompt(self, message: str, ctx: ConversationContext, intent: Intent, data: dict[str, Any]) -> str:
        lines = []
        history = ctx.recent(self.history_window)
        if history:
            lines.append("Conversation so far:")
            lines.extend(f"{m['role']}: {m['content']}" for m in history)
            lines.append("")
        lines.append(f"Scope of the data: {intent.scope.value}")
        if data:
            lines.append("Data:")
            lines.append(json.dumps(data, default=str, indent=1, ensure_ascii=False))
        else:
            lines.append("Data: none")
        lines.append("")
        lines.append(f"User: {message}")
        return "\n".join(lines)
