import asyncio
from datetime import timedelta

from conftest import FailingProvider, ScriptedProvider

from hrdesk.agent.orchestrator import CANCELLED_MESSAGE, FALLBACK_MESSAGE
from hrdesk.governance.confirmation import GateState
from hrdesk.governance.permissions import REFUSAL_MESSAGE
from hrdesk.session.manager import SessionManager
from hrdesk.storage.repository import Entity
from hrdesk.utils.helpers import utcnow


def _pto_status(store, request_id: str) -> str:
    return asyncio.run(store.get(Entity.PTO_REQUESTS, request_id))["status"]


def test_employee_reads_own_pto_balance(make_orchestrator, context_for) -> None:
    provider = ScriptedProvider(replies=["You have 12.5 days of PTO left."])
    orchestrator = make_orchestrator([provider])

    reply = asyncio.run(orchestrator.handle_message("s-emp", context_for("u-emp"), "What is my PTO balance?"))

    assert reply.message == "You have 12.5 days of PTO left."
    assert reply.data["pto_balance"]["employee_id"] == "u-emp"
    assert reply.data["pto_balance"]["pto_balance_days"] == 12.5
    assert {r["employee_id"] for r in reply.data["pto"]} == {"u-emp"}
    assert not reply.requires_confirmation
    # classified by rule; only the synthesis call reached the provider
    assert [kind for kind, _ in provider.calls] == ["text"]


def test_employee_asking_about_colleague_pto_is_refused(make_orchestrator, context_for, store) -> None:
    provider = ScriptedProvider()
    orchestrator = make_orchestrator([provider])

    reply = asyncio.run(orchestrator.handle_message("s-emp", context_for("u-emp"), "Show me Sarah's PTO"))

    assert reply.message == REFUSAL_MESSAGE
    assert reply.data is None
    assert provider.calls == []
    events = asyncio.run(store.list(Entity.AUDIT_EVENTS, event_type="permission"))
    assert len(events) == 1
    assert "Sarah" not in str(events[0]["payload"])


def test_manager_approval_is_proposed_then_executed_on_confirm(make_orchestrator, context_for, store, notifier) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    reply = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))

    assert reply.requires_confirmation
    assert reply.confirmation_type == "approve_pto"
    assert reply.confirmation_data == {"request_id": "123"}
    assert reply.confirmation_message == "Approve PTO request #123 for Sarah Chen (2026-11-02 to 2026-11-04)?"
    assert reply.to_payload()["confirmationData"] == {"requestId": "123"}
    assert _pto_status(store, "123") == "PENDING"

    result = asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=reply.proposal_id))

    assert result.success
    row = asyncio.run(store.get(Entity.PTO_REQUESTS, "123"))
    assert row["status"] == "APPROVED"
    assert row["reviewed_by"] == "u-manager"
    assert [m["to"] for m in notifier.sent] == ["sarah@example.com"]
    assert orchestrator.gate.state("s-mgr") is GateState.IDLE


def test_confirm_with_echoed_camel_case_data(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    result = asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", confirmation_data={"requestId": "123"}))

    assert result.success
    assert _pto_status(store, "123") == "APPROVED"


def test_stale_confirm_changes_nothing(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    reply = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    wrong_id = asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id="not-the-id"))
    wrong_type = asyncio.run(orchestrator.confirm("s-mgr", manager, "deny_pto", proposal_id=reply.proposal_id))
    wrong_data = asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", confirmation_data={"requestId": "124"}))

    assert [r.error for r in (wrong_id, wrong_type, wrong_data)] == ["STALE_CONFIRMATION"] * 3
    assert _pto_status(store, "123") == "PENDING"
    assert _pto_status(store, "124") == "PENDING"
    # the held proposal survives a mismatched confirm
    assert orchestrator.gate.pending("s-mgr").proposal_id == reply.proposal_id


def test_second_confirm_of_same_proposal_is_stale(make_orchestrator, context_for, notifier) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    async def scenario():
        reply = await orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123")
        first = await orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=reply.proposal_id)
        second = await orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=reply.proposal_id)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.success
    assert second.error == "STALE_CONFIRMATION"
    assert len(notifier.sent) == 1


def test_concurrent_confirms_execute_once(make_orchestrator, context_for, store, notifier) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    async def scenario():
        reply = await orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123")
        return await asyncio.gather(
            *(orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=reply.proposal_id) for _ in range(3))
        )

    results = asyncio.run(scenario())

    assert sum(r.success for r in results) == 1
    assert len(notifier.sent) == 1
    assert _pto_status(store, "123") == "APPROVED"


def test_employee_cannot_propose_approval(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()

    reply = asyncio.run(orchestrator.handle_message("s-emp", context_for("u-emp"), "Approve PTO request #123"))

    assert reply.message == REFUSAL_MESSAGE
    assert not reply.requires_confirmation
    assert orchestrator.gate.pending("s-emp") is None
    assert _pto_status(store, "123") == "PENDING"


def test_provider_outage_returns_fallback_and_leaves_gate_idle(make_orchestrator, context_for) -> None:
    failing = FailingProvider()
    orchestrator = make_orchestrator([failing])

    reply = asyncio.run(orchestrator.handle_message("s-emp", context_for("u-emp"), "What is my PTO balance?"))

    assert reply.message == FALLBACK_MESSAGE
    assert reply.data is None
    assert failing.calls == 1
    assert orchestrator.gate.state("s-emp") is GateState.IDLE


def test_yes_in_chat_confirms_pending_proposal(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    reply = asyncio.run(orchestrator.handle_message("s-mgr", manager, "yes"))

    assert reply.actions[0]["success"] is True
    assert reply.actions[0]["type"] == "approve_pto"
    assert _pto_status(store, "123") == "APPROVED"


def test_no_in_chat_cancels_pending_proposal(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    reply = asyncio.run(orchestrator.handle_message("s-mgr", manager, "no thanks"))

    assert reply.message == CANCELLED_MESSAGE
    assert orchestrator.gate.state("s-mgr") is GateState.IDLE
    assert _pto_status(store, "123") == "PENDING"


def test_new_proposal_supersedes_the_old_one(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    first = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    second = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Deny PTO request #124 because coverage is thin"))
    stale = asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=first.proposal_id))
    done = asyncio.run(orchestrator.confirm("s-mgr", manager, "deny_pto", proposal_id=second.proposal_id))

    assert stale.error == "STALE_CONFIRMATION"
    assert done.success
    assert _pto_status(store, "123") == "PENDING"
    row = asyncio.run(store.get(Entity.PTO_REQUESTS, "124"))
    assert row["status"] == "DENIED"
    assert row["review_notes"] == "coverage is thin"


def test_expired_proposal_cannot_be_confirmed(make_orchestrator, context_for, store, clock) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    reply = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    clock.now += timedelta(seconds=301)
    result = asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=reply.proposal_id))

    assert result.error == "STALE_CONFIRMATION"
    assert _pto_status(store, "123") == "PENDING"


def test_other_user_cannot_confirm_on_a_shared_session_key(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()

    reply = asyncio.run(orchestrator.handle_message("shared", context_for("u-manager"), "Approve PTO request #123"))
    result = asyncio.run(orchestrator.confirm("shared", context_for("u-emp"), "approve_pto", proposal_id=reply.proposal_id))

    assert result.error == "STALE_CONFIRMATION"
    assert _pto_status(store, "123") == "PENDING"


def test_unknown_confirmation_type(make_orchestrator, context_for) -> None:
    orchestrator = make_orchestrator()

    result = asyncio.run(orchestrator.confirm("s-mgr", context_for("u-manager"), "launch_rocket", proposal_id="x"))

    assert result.error == "UNKNOWN_ACTION"
    assert not result.success


def test_greeting_needs_no_provider(make_orchestrator, context_for) -> None:
    provider = ScriptedProvider()
    orchestrator = make_orchestrator([provider])

    reply = asyncio.run(orchestrator.handle_message("s-emp", context_for("u-emp"), "Hello!"))

    assert reply.message == "Hi Jamie! How can I help you today?"
    assert reply.suggestions
    assert provider.calls == []


def test_turns_in_one_session_are_serialised(make_orchestrator, context_for) -> None:
    orchestrator = make_orchestrator()
    employee = context_for("u-emp")

    async def scenario():
        await asyncio.gather(
            orchestrator.handle_message("s-emp", employee, "What is my PTO balance?"),
            orchestrator.handle_message("s-emp", employee, "How many PTO days have I used?"),
        )

    asyncio.run(scenario())

    history = orchestrator.sessions.get("s-emp").context.history
    assert [m.role for m in history] == ["user", "assistant", "user", "assistant"]


def test_privacy_sensitive_answers_stay_on_approved_providers(make_orchestrator, context_for) -> None:
    public = ScriptedProvider(
        name="public",
        privacy_approved=False,
        priority=1,
        json_replies=[{"intent": "information", "dataSource": ["salary"], "scope": "company", "confidence": 0.9}],
        replies=["leaked"],
    )
    private = ScriptedProvider(name="private", privacy_approved=True, priority=2, replies=["Sarah earns 58,000."])
    orchestrator = make_orchestrator([public, private])

    reply = asyncio.run(orchestrator.handle_message("s-admin", context_for("u-admin"), "What is Sarah Chen's salary?"))

    assert reply.message == "Sarah earns 58,000."
    assert reply.provider == "private"
    assert [kind for kind, _ in public.calls] == ["json"]
    assert any(row["salary"] == 58000.0 for row in reply.data["salary"])


def test_proposals_and_executions_are_audited(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    manager = context_for("u-manager")

    reply = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Approve PTO request #123"))
    asyncio.run(orchestrator.confirm("s-mgr", manager, "approve_pto", proposal_id=reply.proposal_id))

    events = asyncio.run(orchestrator.audit.history("s-mgr"))
    names = sorted(f"{e['event_type']}.{e['event_name']}" for e in events)
    assert names == ["action.executed", "proposal.created"]
    assert all(e["principal_id"] == "u-manager" for e in events)


def test_admin_approval_runs_exactly_once(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()
    admin = context_for("u-admin")

    reply = asyncio.run(orchestrator.handle_message("s-admin", admin, "approve PTO request #123"))
    first = asyncio.run(orchestrator.confirm("s-admin", admin, "approve_pto", confirmation_data=reply.to_payload()["confirmationData"]))
    second = asyncio.run(orchestrator.confirm("s-admin", admin, "approve_pto", confirmation_data={"requestId": "123"}))

    assert reply.to_payload()["confirmationData"] == {"requestId": "123"}
    assert first.success and not second.success
    assert _pto_status(store, "123") == "APPROVED"
    assert asyncio.run(store.get(Entity.PTO_REQUESTS, "123"))["reviewed_by"] == "u-admin"


def test_report_during_full_outage_returns_fallback(make_orchestrator, context_for) -> None:
    orchestrator = make_orchestrator([FailingProvider("a"), FailingProvider("b", priority=2)])

    reply = asyncio.run(orchestrator.handle_message("s-admin", context_for("u-admin"), "Generate a headcount report"))

    assert reply.message == FALLBACK_MESSAGE
    assert reply.confidence == 0.0
    assert orchestrator.gate.state("s-admin") is GateState.IDLE


def test_employee_lowercase_colleague_pto_is_refused(make_orchestrator, context_for) -> None:
    provider = ScriptedProvider()
    orchestrator = make_orchestrator([provider])

    reply = asyncio.run(orchestrator.handle_message("s-emp", context_for("u-emp"), "Show me PTO for sarah"))

    assert reply.message == REFUSAL_MESSAGE
    assert reply.data is None
    assert provider.calls == []


def test_private_history_never_reaches_unapproved_providers(make_orchestrator, context_for) -> None:
    public = ScriptedProvider(
        name="public",
        privacy_approved=False,
        priority=1,
        json_replies=[{"intent": "information", "dataSource": ["salary"], "scope": "team", "confidence": 0.9}],
        replies=["public answer"],
    )
    private = ScriptedProvider(
        name="private",
        privacy_approved=True,
        priority=2,
        replies=["Jamie Park earns 60000.", "Business casual."],
    )
    orchestrator = make_orchestrator([public, private])
    manager = context_for("u-manager")

    first = asyncio.run(orchestrator.handle_message("s-mgr", manager, "Show my team's salaries"))
    second = asyncio.run(orchestrator.handle_message("s-mgr", manager, "What is the dress code?"))

    assert first.provider == "private"
    assert second.provider == "private"
    assert len(public.calls) == 1
    assert all("60000" not in prompt for _, prompt in public.calls)
    assert orchestrator.sessions.get("s-mgr").context.is_private


def test_role_change_applies_to_an_open_session(make_orchestrator, context_for, store) -> None:
    orchestrator = make_orchestrator()

    first = asyncio.run(orchestrator.handle_message("s-mgr", context_for("u-manager"), "Approve PTO request #123"))
    asyncio.run(store.update(Entity.USERS, "u-manager", {"role": "EMPLOYEE"}))
    demoted = context_for("u-manager")
    result = asyncio.run(orchestrator.confirm("s-mgr", demoted, "approve_pto", proposal_id=first.proposal_id))
    again = asyncio.run(orchestrator.handle_message("s-mgr", demoted, "Approve PTO request #123"))

    assert first.requires_confirmation
    assert result.error == "STALE_CONFIRMATION"
    assert again.message == REFUSAL_MESSAGE
    assert not again.requires_confirmation
    assert orchestrator.sessions.get("s-mgr").context.role == "EMPLOYEE"
    assert _pto_status(store, "123") == "PENDING"


def test_idle_sessions_are_evicted_with_their_slots_and_locks(make_orchestrator, context_for) -> None:
    orchestrator = make_orchestrator()

    asyncio.run(orchestrator.handle_message("s-mgr", context_for("u-manager"), "Approve PTO request #123"))
    assert len(orchestrator.gate) == 1

    assert orchestrator.evict_idle(now=utcnow() + timedelta(minutes=5)) == []
    evicted = orchestrator.evict_idle(now=utcnow() + timedelta(hours=1))

    assert evicted == ["s-mgr"]
    assert len(orchestrator.sessions) == 0
    assert len(orchestrator.gate) == 0
    assert "s-mgr" not in orchestrator.lock._local


def test_injected_session_manager_is_used_even_when_empty(make_orchestrator, context_for, tmp_path) -> None:
    sessions = SessionManager(transcripts_dir=tmp_path)
    orchestrator = make_orchestrator(sessions=sessions)

    asyncio.run(orchestrator.handle_message("cli_default", context_for("u-emp"), "Hello!"))

    assert orchestrator.sessions is sessions
    assert sessions.save_transcript("cli_default").parent == tmp_path
