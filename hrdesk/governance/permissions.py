"""Role × scope × data-category access table.

``evaluate`` is a pure function over ``RULES``.  Anything not allowed by a
rule is denied, and a matching deny rule beats any allow.  Every category an
intent touches has to be allowed on its own.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from hrdesk.governance.roles import Role, Tier, tier_for
from hrdesk.nl.intent_engine import AGGREGATE_CATEGORIES, PUBLIC_CATEGORIES, Intent, Scope, categories_of

REFUSAL_MESSAGE = (
    "I'm sorry, but I can't help with that request. "
    "If you think you should have access, please contact HR."
)

ALL_SCOPES = frozenset(Scope)


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True, slots=True)
class PermissionRule:
    tier: Tier
    scopes: frozenset[Scope]
    # None matches every category
    categories: frozenset[str] | None
    effect: Effect = Effect.ALLOW

    def matches(self, tier: Tier, scope: Scope, category: str) -> bool:
        if tier is not self.tier or scope not in self.scopes:
            return False
        return self.categories is None or category in self.categories


def _rule(tier: Tier, scopes: Iterable[Scope], categories: Iterable[str] | None, effect: Effect = Effect.ALLOW) -> PermissionRule:
    return PermissionRule(
        tier=tier,
        scopes=frozenset(scopes),
        categories=frozenset(categories) if categories is not None else None,
        effect=effect,
    )


RULES: tuple[PermissionRule, ...] = (
    _rule(Tier.ADMIN, ALL_SCOPES, None),

    _rule(Tier.MANAGER, {Scope.SELF, Scope.TEAM}, None),
    _rule(Tier.MANAGER, {Scope.DEPARTMENT, Scope.COMPANY}, PUBLIC_CATEGORIES | AGGREGATE_CATEGORIES),
    _rule(Tier.MANAGER, {Scope.SELF, Scope.DEPARTMENT, Scope.COMPANY}, {"salary"}, Effect.DENY),

    _rule(Tier.EMPLOYEE, {Scope.SELF}, None),
    _rule(Tier.EMPLOYEE, ALL_SCOPES, PUBLIC_CATEGORIES),
    _rule(Tier.EMPLOYEE, ALL_SCOPES, {"salary"}, Effect.DENY),
)


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    tier: Tier | None
    scope: Scope
    denied_categories: tuple[str, ...] = ()

    @property
    def reason(self) -> str:
        if self.allowed:
            return "allowed"
        if self.tier is None:
            return "unknown role"
        return f"{self.tier.value} may not read {', '.join(self.denied_categories)} at {self.scope.value} scope"


class PermissionDenied(PermissionError):
    """Raised by :func:`require`; carries the decision for logging only."""

    def __init__(self, decision: Decision):
        super().__init__(REFUSAL_MESSAGE)
        self.decision = decision


def category_allowed(tier: Tier, scope: Scope, category: str, rules: Iterable[PermissionRule] = RULES) -> bool:
    allowed = False
    for rule in rules:
        if not rule.matches(tier, scope, category):
            continue
        if rule.effect is Effect.DENY:
            return False
        allowed = True
    return allowed


def evaluate(role: str | Role | None, intent: Intent, rules: Iterable[PermissionRule] = RULES) -> Decision:
    """Decide whether *role* may act on *intent*.  No side effects."""
    rules = tuple(rules)
    tier = tier_for(role)
    categories = sorted(categories_of(intent))
    if tier is None:
        return Decision(allowed=False, tier=None, scope=intent.scope, denied_categories=tuple(categories))
    denied = tuple(c for c in categories if not category_allowed(tier, intent.scope, c, rules))
    return Decision(allowed=not denied, tier=tier, scope=intent.scope, denied_categories=denied)


def require(role: str | Role | None, intent: Intent) -> Decision:
    decision = evaluate(role, intent)
    if not decision.allowed:
        raise PermissionDenied(decision)
    return decision
