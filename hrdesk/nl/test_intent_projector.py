import asyncio
from datetime import date

from conftest import ScriptedProvider

from hrdesk.nl.intent_engine import ACTION_CATEGORIES, ConfirmationType, Intent, IntentKind, Scope
from hrdesk.nl.intent_projector import NOT_FOUND_MESSAGE, IntentProjector, parse_day, parse_time
from hrdesk.providers.router import LLMRouter
from hrdesk.storage.repository import Entity


def _intent(action: ConfirmationType, scope: Scope) -> Intent:
    return Intent(
        kind=IntentKind.ACTION,
        data_sources=ACTION_CATEGORIES[action],
        scope=scope,
        confidence=0.9,
        requires_approval=True,
        action=action,
    )


def _propose(projector, action, scope, message, ctx):
    return asyncio.run(projector.propose(_intent(action, scope), message, ctx))


def test_approval_by_request_number(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(projector, ConfirmationType.APPROVE_PTO, Scope.TEAM, "Approve PTO request #123", context_for("u-manager"))

    proposal = outcome.proposal
    assert dict(proposal.confirmation_data) == {"request_id": "123"}
    assert proposal.confirmation_message == "Approve PTO request #123 for Sarah Chen (2026-11-02 to 2026-11-04)?"
    assert proposal.requested_by == "u-manager"
    assert proposal.scope is Scope.TEAM
    assert (proposal.expires_at - proposal.created_at).total_seconds() == 300


def test_approval_by_employee_name(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(projector, ConfirmationType.APPROVE_PTO, Scope.TEAM, "Approve Sarah's PTO", context_for("u-manager"))

    assert dict(outcome.proposal.confirmation_data) == {"request_id": "123"}


def test_missing_and_out_of_scope_records_look_the_same(store, clock, context_for) -> None:
    asyncio.run(store.create(Entity.PTO_REQUESTS, {
        "id": "200", "employee_id": "u-admin", "start_date": "2026-12-01",
        "end_date": "2026-12-02", "days": 2.0, "status": "PENDING",
    }))
    projector = IntentProjector(store, clock=clock)
    manager = context_for("u-manager")

    missing = _propose(projector, ConfirmationType.APPROVE_PTO, Scope.TEAM, "Approve PTO request #999", manager)
    foreign = _propose(projector, ConfirmationType.APPROVE_PTO, Scope.TEAM, "Approve PTO request #200", manager)

    assert missing.proposal is None and foreign.proposal is None
    assert missing.clarification == foreign.clarification == NOT_FOUND_MESSAGE


def test_already_reviewed_request_is_not_proposed(store, clock, context_for) -> None:
    asyncio.run(store.update(Entity.PTO_REQUESTS, "123", {"status": "APPROVED"}))
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(projector, ConfirmationType.DENY_PTO, Scope.COMPANY, "Deny PTO request #123", context_for("u-admin"))

    assert outcome.clarification == NOT_FOUND_MESSAGE


def test_schedule_interview_fields(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(
        projector,
        ConfirmationType.SCHEDULE_INTERVIEW,
        Scope.COMPANY,
        "Schedule a phone interview with Taylor Reed tomorrow at 2pm",
        context_for("u-admin"),
    )

    assert dict(outcome.proposal.confirmation_data) == {
        "candidate_id": "c-1", "date": "2026-10-20", "time": "14:00", "type": "PHONE",
    }
    assert outcome.proposal.confirmation_message == "Schedule a phone interview with Taylor Reed on 2026-10-20 at 14:00?"


def test_missing_field_is_asked_for_not_guessed(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(
        projector, ConfirmationType.SCHEDULE_INTERVIEW, Scope.COMPANY, "Schedule an interview with Taylor Reed", context_for("u-admin")
    )

    assert outcome.proposal is None
    assert outcome.clarification == "To schedule interview, I still need the interview date."


def test_move_candidate_respects_assignment(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    admin = _propose(projector, ConfirmationType.MOVE_CANDIDATE, Scope.COMPANY, "Move Taylor to screening", context_for("u-admin"))
    manager = _propose(projector, ConfirmationType.MOVE_CANDIDATE, Scope.TEAM, "Move Taylor to screening", context_for("u-manager"))

    assert dict(admin.proposal.confirmation_data) == {"candidate_id": "c-1", "target_status": "SCREENING"}
    assert admin.proposal.confirmation_message == "Move Taylor Reed from Application Review to Initial Screening?"
    assert manager.clarification == NOT_FOUND_MESSAGE


def test_request_pto_with_dates_and_reason(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(
        projector,
        ConfirmationType.REQUEST_PTO,
        Scope.SELF,
        "I need time off from 2026-11-20 to 2026-11-21 for a wedding",
        context_for("u-emp"),
    )

    assert dict(outcome.proposal.confirmation_data) == {
        "start_date": "2026-11-20", "end_date": "2026-11-21", "reason": "a wedding",
    }
    assert outcome.proposal.confirmation_message == "Request 2 day(s) of PTO from 2026-11-20 to 2026-11-21?"


def test_model_extraction_fills_fields_regex_missed(store, clock, context_for) -> None:
    provider = ScriptedProvider(json_replies=[{"start_date": "2026-10-26", "end_date": "2026-10-30", "salary": "1"}])
    projector = IntentProjector(store, router=LLMRouter([provider]), clock=clock)

    outcome = _propose(projector, ConfirmationType.REQUEST_PTO, Scope.SELF, "I want some time off next week", context_for("u-emp"))

    assert dict(outcome.proposal.confirmation_data) == {"start_date": "2026-10-26", "end_date": "2026-10-30"}
    assert [kind for kind, _ in provider.calls] == ["json"]


def test_create_employee_fields(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(
        projector,
        ConfirmationType.CREATE_EMPLOYEE,
        Scope.COMPANY,
        "Add a new employee Robin Diaz robin@example.com as a manager in Sales",
        context_for("u-admin"),
    )

    assert dict(outcome.proposal.confirmation_data) == {
        "first_name": "Robin", "last_name": "Diaz", "email": "robin@example.com",
        "department": "Sales", "role": "MANAGER",
    }


def test_assign_tool_resolves_names(store, clock, context_for) -> None:
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(projector, ConfirmationType.ASSIGN_TOOL, Scope.TEAM, "Assign a laptop to Jamie Park", context_for("u-manager"))

    assert dict(outcome.proposal.confirmation_data) == {"tool_id": "tool-1", "employee_id": "u-emp"}
    assert outcome.proposal.confirmation_message == "Assign one Laptop to Jamie Park? (2 available)"


def test_return_tool_finds_open_assignment(store, clock, context_for) -> None:
    asyncio.run(store.create(Entity.TOOL_ASSIGNMENTS, {
        "id": "a-1", "tool_id": "tool-1", "employee_id": "u-emp", "assigned_by": "u-admin", "status": "ASSIGNED",
    }))
    projector = IntentProjector(store, clock=clock)

    outcome = _propose(projector, ConfirmationType.RETURN_TOOL, Scope.TEAM, "Return the laptop from Jamie Park", context_for("u-manager"))

    assert dict(outcome.proposal.confirmation_data) == {"assignment_id": "a-1"}


def test_parse_day_and_time() -> None:
    monday = date(2026, 10, 19)

    assert parse_day("next friday", monday) == date(2026, 10, 23)
    assert parse_day("on monday", monday) == date(2026, 10, 26)
    assert parse_day("on 2026-02-30", monday) is None
    assert parse_time("at 9") == "09:00"
    assert parse_time("at 12am") == "00:00"
    assert parse_time("at 25:00") is None
