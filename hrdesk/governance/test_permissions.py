import asyncio

import pytest

from hrdesk.governance.permissions import PermissionDenied, REFUSAL_MESSAGE, evaluate, require
from hrdesk.governance.roles import Role, Tier, canonical_role, tier_for
from hrdesk.governance.scoping import candidate_in_scope, employee_in_scope
from hrdesk.nl.intent_engine import Intent, IntentKind, Scope


def _intent(scope: Scope, *sources: str) -> Intent:
    return Intent(kind=IntentKind.INFORMATION, data_sources=frozenset(sources), scope=scope, confidence=0.9)


def test_legacy_role_spellings() -> None:
    assert canonical_role("hr_manager") is Role.HR_ADMIN
    assert canonical_role("TRUE_ADMIN") is Role.SYSTEM_ADMIN
    assert tier_for("TEAM_LEAD") is Tier.EMPLOYEE
    assert tier_for("TERRITORY_SALES_MANAGER") is Tier.MANAGER
    assert tier_for("janitor") is None
    assert tier_for(None) is None


def test_admin_reads_everything() -> None:
    assert evaluate("HR_ADMIN", _intent(Scope.COMPANY, "salary", "reviews", "pto")).allowed


def test_employee_is_limited_to_self_and_public() -> None:
    assert evaluate("EMPLOYEE", _intent(Scope.SELF, "pto", "pto_balance")).allowed
    assert evaluate("EMPLOYEE", _intent(Scope.COMPANY, "policies")).allowed
    assert not evaluate("EMPLOYEE", _intent(Scope.COMPANY, "pto")).allowed
    assert not evaluate("EMPLOYEE", _intent(Scope.TEAM, "employees")).allowed


def test_salary_is_denied_outside_the_admin_tier() -> None:
    assert not evaluate("EMPLOYEE", _intent(Scope.SELF, "salary")).allowed
    assert not evaluate("MANAGER", _intent(Scope.COMPANY, "salary")).allowed
    assert evaluate("MANAGER", _intent(Scope.TEAM, "salary")).allowed


def test_manager_sees_aggregates_but_not_company_records() -> None:
    assert evaluate("MANAGER", _intent(Scope.COMPANY, "company_stats", "benefits")).allowed
    assert evaluate("MANAGER", _intent(Scope.TEAM, "pto", "tools")).allowed
    assert not evaluate("MANAGER", _intent(Scope.DEPARTMENT, "pto")).allowed


def test_every_category_is_checked() -> None:
    decision = evaluate("EMPLOYEE", _intent(Scope.COMPANY, "policies", "pto", "reviews"))

    assert not decision.allowed
    assert decision.denied_categories == ("pto", "reviews")
    assert "employee may not read pto, reviews at company scope" == decision.reason


def test_unknown_role_is_denied() -> None:
    decision = evaluate("INTERN", _intent(Scope.COMPANY, "policies"))

    assert not decision.allowed
    assert decision.reason == "unknown role"


def test_empty_sources_are_treated_as_general() -> None:
    assert evaluate("EMPLOYEE", _intent(Scope.COMPANY)).allowed


def test_require_raises_with_the_refusal_text() -> None:
    with pytest.raises(PermissionDenied) as exc_info:
        require("EMPLOYEE", _intent(Scope.COMPANY, "salary"))

    assert str(exc_info.value) == REFUSAL_MESSAGE
    assert exc_info.value.decision.denied_categories == ("salary",)


def test_employee_scope_by_reporting_line(store) -> None:
    def check(actor: str, scope: Scope, target: str | None) -> bool:
        return asyncio.run(employee_in_scope(store, actor, "Sales", scope, target))

    assert check("u-emp", Scope.SELF, "u-emp")
    assert not check("u-emp", Scope.SELF, "u-sarah")
    assert check("u-manager", Scope.TEAM, "u-sarah")
    assert not check("u-manager", Scope.TEAM, "u-admin")
    assert check("u-manager", Scope.DEPARTMENT, "u-emp")
    assert not check("u-manager", Scope.DEPARTMENT, "u-admin")
    assert check("u-admin", Scope.COMPANY, "u-sarah")
    assert not check("u-admin", Scope.COMPANY, None)
    assert not check("u-manager", Scope.TEAM, "u-missing")


def test_candidate_scope() -> None:
    assigned = {"id": "c-9", "assigned_to": "u-admin"}
    unassigned = {"id": "c-8", "assigned_to": None}

    assert candidate_in_scope("u-manager", Scope.COMPANY, assigned)
    assert not candidate_in_scope("u-manager", Scope.TEAM, assigned)
    assert candidate_in_scope("u-manager", Scope.TEAM, unassigned)
    assert not candidate_in_scope("u-admin", Scope.SELF, assigned)
