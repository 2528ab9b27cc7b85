"""Intent detection for chat messages.

Classification runs as a chain of stages; the first stage that returns a
confident ``Intent`` wins:

1. ``RuleStage`` – deterministic regex rules.  Privacy-sensitive questions
   from the lowest tier about other people are resolved here and never reach
   a model.
2. ``ModelStage`` – structured JSON call through the LLM router.
3. ``HeuristicStage`` – keyword fallback with fixed low confidence that errs
   toward returning less data.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hrdesk.config.loader import camel_to_snake
from hrdesk.governance.roles import Tier, tier_for
from hrdesk.providers.base import LLMParams, ProviderError
from hrdesk.providers.router import LLMRouter, LLMTaskContext, Priority, ProviderUnavailable, ResponseTime, TaskType

if TYPE_CHECKING:
    from hrdesk.config.schema import ClassifierConfig
    from hrdesk.session.manager import ConversationContext


class IntentKind(str, Enum):
    INFORMATION = "information"
    ACTION = "action"
    REPORT = "report"


class Scope(str, Enum):
    SELF = "self"
    TEAM = "team"
    DEPARTMENT = "department"
    COMPANY = "company"


def _snake(name: str) -> str:
    return name.lower() if name.isupper() else camel_to_snake(name)


class ConfirmationType(str, Enum):
    SCHEDULE_INTERVIEW = "schedule_interview"
    MOVE_CANDIDATE = "move_candidate"
    APPROVE_PTO = "approve_pto"
    DENY_PTO = "deny_pto"
    REQUEST_PTO = "request_pto"
    CREATE_EMPLOYEE = "create_employee"
    ASSIGN_TOOL = "assign_tool"
    RETURN_TOOL = "return_tool"

    @classmethod
    def parse(cls, value: str | ConfirmationType | None) -> ConfirmationType | None:
        """Accept canonical values and the older ``confirm_*`` spellings."""
        if value is None:
            return None
        if isinstance(value, ConfirmationType):
            return value
        key = _snake(str(value).strip())
        try:
            return cls(key)
        except ValueError:
            return _LEGACY_CONFIRMATION_TYPES.get(key)


_LEGACY_CONFIRMATION_TYPES: dict[str, ConfirmationType] = {
    "confirm_interview_schedule": ConfirmationType.SCHEDULE_INTERVIEW,
    "confirm_move": ConfirmationType.MOVE_CANDIDATE,
    "confirm_candidate_move": ConfirmationType.MOVE_CANDIDATE,
    "confirm_pto_approve": ConfirmationType.APPROVE_PTO,
    "confirm_pto_deny": ConfirmationType.DENY_PTO,
    "confirm_pto_request": ConfirmationType.REQUEST_PTO,
    "confirm_employee_create": ConfirmationType.CREATE_EMPLOYEE,
    "confirm_tool_assign": ConfirmationType.ASSIGN_TOOL,
    "confirm_tool_return": ConfirmationType.RETURN_TOOL,
}


# ── data-source vocabulary ────────────────────────────────────────────────

PUBLIC_CATEGORIES = frozenset({"public", "policies", "handbook", "benefits", "general"})
AGGREGATE_CATEGORIES = frozenset({"company_stats"})
SENSITIVE_CATEGORIES = frozenset({"pto", "salary", "reviews", "contracts"})

ACTION_CATEGORIES: dict[ConfirmationType, frozenset[str]] = {
    ConfirmationType.SCHEDULE_INTERVIEW: frozenset({"candidates", "interviews"}),
    ConfirmationType.MOVE_CANDIDATE: frozenset({"candidates"}),
    ConfirmationType.APPROVE_PTO: frozenset({"pto"}),
    ConfirmationType.DENY_PTO: frozenset({"pto"}),
    ConfirmationType.REQUEST_PTO: frozenset({"pto"}),
    ConfirmationType.CREATE_EMPLOYEE: frozenset({"employees"}),
    ConfirmationType.ASSIGN_TOOL: frozenset({"tools"}),
    ConfirmationType.RETURN_TOOL: frozenset({"tools"}),
}

_SOURCE_ALIASES = {
    "user_pto_data": "pto_balance",
    "pto_data": "pto",
    "time_off": "pto",
    "pto_requests": "pto",
    "employee": "employees",
    "employee_data": "employees",
    "candidate": "candidates",
    "policy": "policies",
    "tool": "tools",
    "equipment": "tools",
    "territory": "territories",
    "contract": "contracts",
    "review": "reviews",
    "performance_reviews": "reviews",
    "stats": "company_stats",
    "company_data": "company_stats",
    "knowledge_base": "policies",
}


def normalize_source(name: str) -> str:
    key = _snake(str(name).strip()).replace("-", "_").replace(" ", "_")
    return _SOURCE_ALIASES.get(key, key)


@dataclass(frozen=True, slots=True)
class Intent:
    """What a message asks for.  Produced fresh per message; never mutated."""

    kind: IntentKind
    data_sources: frozenset[str]
    scope: Scope
    confidence: float
    requires_approval: bool = False
    action: ConfirmationType | None = None
    suggestions: tuple[str, ...] = ()
    stage: str = ""


class ClassificationError(RuntimeError):
    """The model stage failed or produced unusable output."""


# ── message signals ───────────────────────────────────────────────────────

_SELF_RE = re.compile(r"\b(i|me|my|mine|myself|i'm|i've|i'd|i’m)\b", re.IGNORECASE)
_OTHER_RE = re.compile(
    r"\b(others?|everyone|everybody|all\s+(?:the\s+)?(?:employees|staff|workers)|co-?workers?|colleagues?"
    r"|team(?:['’]s)?|department(?:['’]s)?|employees['’]|his|her|hers|him|he|she|their|theirs|them|they"
    r"|someone|somebody|anyone|anybody)\b",
    re.IGNORECASE,
)
# "Sarah's", "Mike’s" – capitalised possessives that are not contractions.
_NAMED_POSSESSIVE_RE = re.compile(r"\b([A-Z][a-zA-Z]+)['’]s\b")
# "sarah's pto" – lowercase name directly followed by a sensitive topic.
_LOWER_POSSESSIVE_RE = re.compile(
    r"\b([a-z]+)['’]s\s+(?:pto|time[\s-]?off|vacation|leave|salary|pay|review|contract)",
)
# "PTO for Sarah", "about Mike"
_NAMED_OBJECT_RE = re.compile(r"\b(?:for|about|of|on)\s+([A-Z][a-z]+)\b")
_NOT_A_PERSON = frozenset({
    "what", "it", "that", "there", "here", "let", "who", "he", "she", "where", "how", "when",
    "today", "tomorrow", "yesterday", "week", "month", "year", "company", "everyone", "i",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december", "pto", "hr",
})
# Lowercase forms of the above: "pto for sarah", "does mike have".  Anything
# that is plainly not a person's name is skipped.
_ANY_OBJECT_RE = re.compile(r"\b(?:for|about|of)\s+([a-z]+)\b", re.IGNORECASE)
_SUBJECT_RE = re.compile(
    r"\b(?:does|did|has|is|was|will|can)\s+([a-z]+)\s+"
    r"(?:have|has|had|get|got|take|takes|taking|took|earn|earns|make|makes|on|still|off)\b",
    re.IGNORECASE,
)
_NOT_A_NAME = _NOT_A_PERSON | frozenset({
    "a", "an", "the", "me", "my", "mine", "myself", "us", "our", "we", "you", "your", "its",
    "this", "these", "those", "next", "last", "all", "any", "each", "every", "some", "more", "much",
    "many", "which", "now", "later", "tonight", "weekend", "day", "days", "hours", "time", "leave",
    "vacation", "sick", "personal", "family", "medical", "holiday", "holidays", "christmas", "work",
    "salary", "pay", "review", "reviews", "contract", "contracts", "request", "requests", "policy",
    "balance", "one", "two", "three", "half", "approval", "use", "they", "them", "him", "her",
})

_TOPIC_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("pto", re.compile(r"\b(pto|p\.t\.o\.?|time[\s-]?off|days?\s+off|vacation|leave|sick\s+days?)\b", re.I)),
    ("salary", re.compile(r"\b(salary|salaries|pay|paid|paycheck|compensation|wages?|payroll|bonus(?:es)?)\b", re.I)),
    ("reviews", re.compile(r"\b(performance\s+reviews?|reviews?|evaluations?|appraisals?)\b", re.I)),
    ("contracts", re.compile(r"\bcontracts?\b", re.I)),
    ("candidates", re.compile(r"\b(candidates?|applicants?|recruit\w*|hiring|pipeline|interviews?)\b", re.I)),
    ("employees", re.compile(r"\b(employees?|staff|headcount|team\s+members?|directory|org\s+chart)\b", re.I)),
    ("tools", re.compile(r"\b(tools?|equipment|laptops?|inventory|gear)\b", re.I)),
    ("territories", re.compile(r"\b(territor(?:y|ies)|regions?)\b", re.I)),
    ("policies", re.compile(r"\b(polic(?:y|ies)|holidays?|dress\s+code|expense\s+reports?|accru\w*|carry\s*over|eligib\w*)\b", re.I)),
    ("handbook", re.compile(r"\bhandbook\b", re.I)),
    ("benefits", re.compile(r"\b(benefits?|insurance|401k)\b", re.I)),
    ("company_stats", re.compile(r"\b(headcount|statistics|stats|metrics|overview|dashboard)\b", re.I)),
)

_LOOKUP_RE = re.compile(
    r"^\s*(?:please\s+|hey\s+\w+,?\s+)?(show|find|who|list|what|what's|which|how|when|where|display|view|tell|"
    r"is|are|do|does|did|search|look\s+up|give\s+me|get\s+me)\b",
    re.IGNORECASE,
)
_REPORT_RE = re.compile(r"\b(report|summary|summari[sz]e|analytics|breakdown)\b", re.IGNORECASE)
_PTO_WORDS = r"(?:pto|time[\s-]?off|vacation|leave)"

_ACTION_PATTERNS: tuple[tuple[ConfirmationType, re.Pattern[str]], ...] = (
    (ConfirmationType.DENY_PTO, re.compile(rf"\b(deny|reject|decline)\b.*\b({_PTO_WORDS}|request)\b", re.I)),
    (ConfirmationType.APPROVE_PTO, re.compile(rf"\bapprove\b.*\b({_PTO_WORDS}|request)\b", re.I)),
    (ConfirmationType.SCHEDULE_INTERVIEW, re.compile(r"\b(schedule|book|set\s+up|arrange)\b.*\binterview\b", re.I)),
    (ConfirmationType.MOVE_CANDIDATE, re.compile(rf"\b(move|advance|progress)\b(?!.*\b{_PTO_WORDS}\b).*\b(to|into)\b", re.I)),
    (ConfirmationType.REQUEST_PTO, re.compile(
        rf"\b(request|book|take|need|want|submit)\b.*\b({_PTO_WORDS}|\w+\s+off)\b", re.I,
    )),
    (ConfirmationType.CREATE_EMPLOYEE, re.compile(
        r"\b(create|add|onboard|register)\b.*\b(employee|new\s+hire|team\s+member|user|staff\s+member)\b", re.I,
    )),
    (ConfirmationType.ASSIGN_TOOL, re.compile(r"\bassign\b", re.I)),
    (ConfirmationType.RETURN_TOOL, re.compile(r"\b(return|check\s+in)\b(?!\s+(?:to|from\s+(?:leave|vacation|pto)))", re.I)),
)


@dataclass(frozen=True, slots=True)
class Signals:
    self_ref: bool
    other_ref: bool
    topics: frozenset[str]
    action: ConfirmationType | None
    lookup: bool
    report: bool
    third_party: bool = False

    @property
    def sensitive(self) -> frozenset[str]:
        return self.topics & SENSITIVE_CATEGORIES


def _names_someone(text: str) -> bool:
    for pattern in (_NAMED_POSSESSIVE_RE, _LOWER_POSSESSIVE_RE, _NAMED_OBJECT_RE):
        for m in pattern.finditer(text):
            if m.group(1).lower() not in _NOT_A_PERSON:
                return True
    return False


def _mentions_third_party(text: str) -> bool:
    for pattern in (_ANY_OBJECT_RE, _SUBJECT_RE):
        for m in pattern.finditer(text):
            if m.group(1).lower() not in _NOT_A_NAME:
                return True
    return False


def analyze(message: str) -> Signals:
    """Extract the deterministic signals every stage can rely on."""
    text = message.strip()
    lookup = bool(_LOOKUP_RE.search(text))
    action = None
    if not lookup:
        for confirmation_type, pattern in _ACTION_PATTERNS:
            if pattern.search(text):
                action = confirmation_type
                break
    return Signals(
        self_ref=bool(_SELF_RE.search(text)),
        other_ref=bool(_OTHER_RE.search(text)) or _names_someone(text),
        topics=frozenset(name for name, pattern in _TOPIC_PATTERNS if pattern.search(text)),
        action=action,
        lookup=lookup,
        report=bool(_REPORT_RE.search(text)),
        third_party=_mentions_third_party(text),
    )


def action_scope(action: ConfirmationType, tier: Tier | None) -> Scope:
    if action is ConfirmationType.REQUEST_PTO:
        return Scope.SELF
    if tier is Tier.ADMIN:
        return Scope.COMPANY
    return Scope.TEAM if tier is not None else Scope.COMPANY


# ── stages ────────────────────────────────────────────────────────────────


class RuleStage:
    name = "rule"

    async def classify(self, message: str, ctx: ConversationContext) -> Intent | None:
        s = analyze(message)
        tier = tier_for(ctx.role)

        if tier is Tier.EMPLOYEE and s.sensitive and s.other_ref:
            # decided here so no model output can widen it back to self
            return Intent(
                kind=IntentKind.INFORMATION,
                data_sources=s.sensitive,
                scope=Scope.COMPANY,
                confidence=1.0,
                stage=self.name,
            )

        if s.action is not None:
            return Intent(
                kind=IntentKind.ACTION,
                data_sources=ACTION_CATEGORIES[s.action],
                scope=action_scope(s.action, tier),
                confidence=0.9,
                requires_approval=True,
                action=s.action,
                stage=self.name,
            )

        if tier is Tier.EMPLOYEE and s.sensitive and (
            s.third_party or not (s.self_ref or s.topics & PUBLIC_CATEGORIES)
        ):
            # only a purely self-referential question may read at self scope
            return Intent(
                kind=IntentKind.INFORMATION,
                data_sources=s.sensitive,
                scope=Scope.COMPANY,
                confidence=1.0,
                stage=self.name,
            )

        if "pto" in s.topics and s.self_ref and not (s.other_ref or s.third_party) and not s.report:
            return Intent(
                kind=IntentKind.INFORMATION,
                data_sources=frozenset({"pto", "pto_balance"}),
                scope=Scope.SELF,
                confidence=0.95,
                stage=self.name,
            )
        return None


class _ModelPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intent: IntentKind
    data_source: list[str] = Field(default_factory=list, alias="dataSource")
    scope: Scope
    confidence: float = Field(ge=0.0, le=1.0)
    requires_approval: bool = Field(default=False, alias="requiresApproval")
    action: str | None = None
    suggestions: list[str] = Field(default_factory=list)

    @field_validator("intent", "scope", mode="before")
    @classmethod
    def _lower(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("data_source", mode="before")
    @classmethod
    def _as_list(cls, v: object) -> object:
        if isinstance(v, str):
            return [v]
        return v or []


_CLASSIFY_SYSTEM = (
    "You classify requests sent to an HR assistant. "
    "Answer with JSON only, using exactly these keys: "
    '{"intent": "information|action|report", "dataSource": [..], '
    '"scope": "self|team|department|company", "confidence": 0.0-1.0, '
    '"requiresApproval": true|false, "action": null or one of '
    + ", ".join(t.value for t in ConfirmationType)
    + ', "suggestions": [..]}. '
    "Use scope self only when the user asks about their own records."
)


class ModelStage:
    name = "model"

    def __init__(self, router: LLMRouter, min_confidence: float = 0.4, history_window: int = 6):
        self.router = router
        self.min_confidence = min_confidence
        self.history_window = history_window

    def _prompt(self, message: str, ctx: ConversationContext) -> str:
        tier = tier_for(ctx.role)
        lines = [
            f"User role: {ctx.role} (tier: {tier.value if tier else 'none'})",
            f"Department: {ctx.department or 'unknown'}",
            "Data sources: pto, pto_balance, employees, candidates, interviews, territories, tools, "
            "contracts, salary, reviews, company_stats, policies, handbook, benefits, general",
        ]
        recent = ctx.recent(self.history_window)
        if recent:
            lines.append("Recent conversation:")
            lines.extend(f"{m['role']}: {m['content']}" for m in recent)
        lines.append(f"Message: {message}")
        return "\n".join(lines)

    async def classify(self, message: str, ctx: ConversationContext) -> Intent | None:
        task = LLMTaskContext(
            task_type=TaskType.CLASSIFICATION,
            priority=Priority.HIGH,
            # the prompt carries the recent history
            requires_privacy=ctx.is_private,
            expected_response_time=ResponseTime.FAST,
        )
        params = LLMParams(system_prompt=_CLASSIFY_SYSTEM, temperature=0.1, max_tokens=400)
        try:
            result = await self.router.generate_json(self._prompt(message, ctx), task, params)
            payload = _ModelPayload.model_validate(result.data)
        except (ProviderUnavailable, ProviderError, ValidationError) as exc:
            raise ClassificationError(str(exc)) from exc

        if payload.confidence < self.min_confidence:
            logger.debug(f"Model classification below threshold ({payload.confidence:.2f}); deferring")
            return None

        action = ConfirmationType.parse(payload.action) if payload.action else None
        sources = frozenset(normalize_source(s) for s in payload.data_source if str(s).strip())
        if action is not None:
            sources = sources | ACTION_CATEGORIES[action]
        return Intent(
            kind=IntentKind.ACTION if action is not None else payload.intent,
            data_sources=sources,
            scope=payload.scope,
            confidence=payload.confidence,
            requires_approval=payload.requires_approval or action is not None,
            action=action,
            suggestions=tuple(payload.suggestions[:5]),
            stage=f"{self.name}:{result.provider}",
        )


def fallback_intent(message: str, confidence: float = 0.5) -> Intent:
    """Least-data intent built from keywords alone."""
    s = analyze(message)
    kind = IntentKind.REPORT if s.report else IntentKind.INFORMATION
    if s.self_ref and not (s.other_ref or s.third_party):
        scope = Scope.SELF
        sources = s.topics or frozenset({"general"})
    else:
        scope = Scope.COMPANY
        sources = s.topics & PUBLIC_CATEGORIES
        if kind is IntentKind.REPORT:
            sources = sources | AGGREGATE_CATEGORIES
        sources = sources or frozenset({"general"})
    return Intent(kind=kind, data_sources=frozenset(sources), scope=scope, confidence=confidence, stage="heuristic")


class HeuristicStage:
    name = "heuristic"

    def __init__(self, confidence: float = 0.5):
        self.confidence = confidence

    async def classify(self, message: str, ctx: ConversationContext) -> Intent | None:
        return fallback_intent(message, self.confidence)


@dataclass
class IntentEngine:
    """Runs the stages in order; the first non-``None`` intent wins."""

    stages: Sequence[RuleStage | ModelStage | HeuristicStage] = field(default_factory=list)
    fallback_confidence: float = 0.5

    @classmethod
    def build(cls, router: LLMRouter, config: ClassifierConfig | None = None) -> IntentEngine:
        min_conf = config.min_model_confidence if config else 0.4
        fallback = config.fallback_confidence if config else 0.5
        return cls(
            stages=[RuleStage(), ModelStage(router, min_conf), HeuristicStage(fallback)],
            fallback_confidence=fallback,
        )

    async def classify(self, message: str, ctx: ConversationContext) -> Intent:
        for stage in self.stages:
            try:
                intent = await stage.classify(message, ctx)
            except ClassificationError as exc:
                logger.warning(f"Intent stage {stage.name} failed, falling through: {exc}")
                continue
            if intent is not None:
                logger.debug(
                    f"Intent [{intent.stage}] kind={intent.kind.value} scope={intent.scope.value} "
                    f"sources={sorted(intent.data_sources)} conf={intent.confidence:.2f}"
                )
                return intent
        return fallback_intent(message, self.fallback_confidence)


def categories_of(intent: Intent) -> Iterable[str]:
    return intent.data_sources or ("general",)
