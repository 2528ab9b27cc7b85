import asyncio

from conftest import FailingProvider, ScriptedProvider

from hrdesk.config.schema import ClassifierConfig
from hrdesk.nl.intent_engine import (
    ConfirmationType,
    IntentEngine,
    IntentKind,
    Scope,
    analyze,
    fallback_intent,
    normalize_source,
)
from hrdesk.providers.router import LLMRouter
from hrdesk.session.manager import ConversationContext


def _ctx(role: str = "EMPLOYEE", user_id: str = "u-1") -> ConversationContext:
    return ConversationContext(user_id=user_id, role=role, department="Sales", first_name="Jamie")


def _engine(*providers) -> IntentEngine:
    return IntentEngine.build(LLMRouter(list(providers)), ClassifierConfig())


def _classify(engine: IntentEngine, message: str, role: str = "EMPLOYEE"):
    return asyncio.run(engine.classify(message, _ctx(role)))


def test_employee_asking_about_named_colleague_is_company_scope() -> None:
    provider = ScriptedProvider(json_replies=[
        {"intent": "information", "dataSource": ["pto"], "scope": "self", "confidence": 0.99},
    ])
    intent = _classify(_engine(provider), "What is Sarah's PTO balance?")

    assert intent.scope is Scope.COMPANY
    assert "pto" in intent.data_sources
    assert intent.stage == "rule"
    # the model never got the chance to say "self"
    assert provider.calls == []


def test_team_and_pronoun_references_are_not_self() -> None:
    engine = _engine(ScriptedProvider())
    for message in ("How much PTO does my team have left?", "Is her vacation approved?", "show me salary for everyone"):
        intent = _classify(engine, message)
        assert intent.scope is Scope.COMPANY, message


def test_own_pto_question_is_self_scope() -> None:
    intent = _classify(_engine(ScriptedProvider()), "How many vacation days do I have?")

    assert intent.kind is IntentKind.INFORMATION
    assert intent.scope is Scope.SELF
    assert intent.data_sources == {"pto", "pto_balance"}


def test_actions_are_detected_by_rule() -> None:
    engine = _engine(ScriptedProvider())
    cases = {
        "Approve PTO request #123": ConfirmationType.APPROVE_PTO,
        "Deny Sarah's time off request": ConfirmationType.DENY_PTO,
        "Schedule an interview with Taylor Reed tomorrow at 2pm": ConfirmationType.SCHEDULE_INTERVIEW,
        "Move Taylor to screening": ConfirmationType.MOVE_CANDIDATE,
        "I need to request PTO on 2026-11-20": ConfirmationType.REQUEST_PTO,
        "Add a new employee Robin Diaz robin@example.com": ConfirmationType.CREATE_EMPLOYEE,
        "Assign a laptop to Jamie Park": ConfirmationType.ASSIGN_TOOL,
        "Return the laptop from Jamie Park": ConfirmationType.RETURN_TOOL,
    }
    for message, expected in cases.items():
        intent = _classify(engine, message, role="HR_ADMIN")
        assert intent.kind is IntentKind.ACTION, message
        assert intent.action is expected, message
        assert intent.requires_approval


def test_action_scope_follows_the_tier() -> None:
    engine = _engine(ScriptedProvider())

    assert _classify(engine, "Approve PTO request #123", role="HR_ADMIN").scope is Scope.COMPANY
    assert _classify(engine, "Approve PTO request #123", role="MANAGER").scope is Scope.TEAM
    assert _classify(engine, "Approve PTO request #123", role="EMPLOYEE").scope is Scope.TEAM
    assert _classify(engine, "I want to take time off on 2026-11-20", role="EMPLOYEE").scope is Scope.SELF


def test_lookup_questions_are_not_actions() -> None:
    signals = analyze("Show me who can approve my PTO request")
    assert signals.lookup
    assert signals.action is None


def test_model_stage_result_is_used_when_confident() -> None:
    provider = ScriptedProvider(json_replies=[
        {"intent": "report", "dataSource": ["candidates", "Interview"], "scope": "company", "confidence": 0.8,
         "suggestions": ["Show open roles"]},
    ])
    intent = _classify(_engine(provider), "Give the hiring pipeline overview", role="HR_ADMIN")

    assert intent.kind is IntentKind.REPORT
    assert intent.scope is Scope.COMPANY
    assert intent.data_sources == {"candidates", "interview"}
    assert intent.suggestions == ("Show open roles",)
    assert intent.stage == "model:scripted"


def test_low_confidence_model_result_defers_to_heuristic() -> None:
    provider = ScriptedProvider(json_replies=[
        {"intent": "information", "dataSource": ["salary"], "scope": "company", "confidence": 0.1},
    ])
    intent = _classify(_engine(provider), "Tell me about the benefits package", role="MANAGER")

    assert intent.stage == "heuristic"
    assert intent.data_sources == {"benefits"}
    assert intent.confidence == 0.5


def test_model_failure_falls_through_to_least_data_intent() -> None:
    intent = _classify(_engine(FailingProvider()), "Summarize salaries across the company", role="MANAGER")

    assert intent.stage == "heuristic"
    assert intent.kind is IntentKind.REPORT
    # sensitive topics never come from the keyword fallback
    assert "salary" not in intent.data_sources
    assert intent.data_sources == {"company_stats"}


def test_malformed_model_payload_falls_through() -> None:
    provider = ScriptedProvider(json_replies=[{"intent": "dance", "scope": "galaxy", "confidence": 2}])
    intent = _classify(_engine(provider), "What's the dress code?")

    assert intent.stage == "heuristic"
    assert intent.data_sources == {"policies"}


def test_fallback_self_reference_keeps_topics() -> None:
    intent = fallback_intent("What equipment do I have?")

    assert intent.scope is Scope.SELF
    assert intent.data_sources == {"tools"}


def test_confirmation_type_accepts_legacy_and_camel_spellings() -> None:
    assert ConfirmationType.parse("approve_pto") is ConfirmationType.APPROVE_PTO
    assert ConfirmationType.parse("APPROVE_PTO") is ConfirmationType.APPROVE_PTO
    assert ConfirmationType.parse("confirm_pto_approve") is ConfirmationType.APPROVE_PTO
    assert ConfirmationType.parse("approvePto") is ConfirmationType.APPROVE_PTO
    assert ConfirmationType.parse("launch_rocket") is None


def test_normalize_source_aliases() -> None:
    assert normalize_source("user_pto_data") == "pto_balance"
    assert normalize_source("Equipment") == "tools"
    assert normalize_source("pto-requests") == "pto"


def test_employee_questions_about_third_parties_in_any_case_are_company_scope() -> None:
    provider = ScriptedProvider(json_replies=[
        {"intent": "information", "dataSource": ["pto"], "scope": "self", "confidence": 0.99},
    ])
    engine = _engine(provider)
    for message in (
        "Show me PTO for sarah",
        "How much vacation does sarah have left?",
        "does Mike have PTO next week",
        "What is the salary of jordan?",
    ):
        intent = _classify(engine, message)
        assert intent.scope is Scope.COMPANY, message
        assert intent.stage == "rule", message
    assert provider.calls == []


def test_third_party_mentions_block_the_self_pto_shortcut_for_managers() -> None:
    intent = _classify(_engine(ScriptedProvider()), "Show me PTO for sarah", role="MANAGER")

    assert intent.scope is not Scope.SELF


def test_own_pto_phrasings_stay_self_scope() -> None:
    engine = _engine(ScriptedProvider())
    for message in (
        "How much PTO do I have for next year?",
        "What is the status of my PTO request?",
        "Can I see my vacation days?",
    ):
        intent = _classify(engine, message)
        assert intent.scope is Scope.SELF, message


def test_general_pto_rules_are_not_refused_as_someone_elses_data() -> None:
    intent = _classify(_engine(ScriptedProvider()), "How does PTO accrual work?")

    assert intent.stage == "heuristic"
    assert intent.data_sources == {"policies"}
