import json
from datetime import timedelta

import pytest

from hrdesk.session.manager import ConversationContext, SessionManager


def _ctx(user_id: str = "u-1") -> ConversationContext:
    return ConversationContext(user_id=user_id, role="EMPLOYEE", first_name="Jamie")


def test_get_or_create_reuses_the_same_users_session() -> None:
    manager = SessionManager()
    first = manager.get_or_create("s", _ctx())
    first.context.append("user", "hello")

    again = manager.get_or_create("s", _ctx())

    assert again is first
    assert len(manager) == 1


def test_another_user_gets_a_fresh_session() -> None:
    manager = SessionManager()
    manager.get_or_create("s", _ctx("u-1")).context.append("user", "private question")

    other = manager.get_or_create("s", _ctx("u-2"))

    assert other.context.user_id == "u-2"
    assert other.context.history == []


def test_recent_is_windowed_and_in_chat_format() -> None:
    ctx = _ctx()
    for i in range(5):
        ctx.append("user" if i % 2 == 0 else "assistant", f"m{i}")

    assert ctx.recent(2) == [{"role": "assistant", "content": "m3"}, {"role": "user", "content": "m4"}]


def test_metadata_is_read_only_and_drops_none() -> None:
    msg = _ctx().append("assistant", "done", confidence=0.9, data_sources=None)

    assert dict(msg.metadata) == {"confidence": 0.9}
    with pytest.raises(TypeError):
        msg.metadata["confidence"] = 1.0


def test_end_session() -> None:
    manager = SessionManager()
    manager.get_or_create("s", _ctx())

    assert manager.end("s") is True
    assert manager.end("s") is False
    assert manager.get("s") is None


def test_transcript_is_written_only_on_request(tmp_path) -> None:
    manager = SessionManager(transcripts_dir=tmp_path / "transcripts")
    session = manager.get_or_create("cli:default", _ctx())
    session.context.append("user", "What is my PTO balance?")
    session.context.append("assistant", "You have 12.5 days.", confidence=1.0)
    assert not (tmp_path / "transcripts").exists()

    path = manager.save_transcript("cli:default")

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert path.name == "cli_default.jsonl"
    assert lines[0]["_type"] == "metadata"
    assert lines[0]["user_id"] == "u-1"
    assert [line["role"] for line in lines[1:]] == ["user", "assistant"]
    assert lines[2]["metadata"] == {"confidence": 1.0}


def test_transcript_needs_a_known_session(tmp_path) -> None:
    with pytest.raises(KeyError):
        SessionManager(transcripts_dir=tmp_path).save_transcript("missing")


def test_from_user_maps_the_user_row() -> None:
    ctx = ConversationContext.from_user({
        "id": "u-7", "role": "MANAGER", "department": "Sales", "first_name": "Morgan", "email": "m@example.com",
    })

    assert (ctx.user_id, ctx.subject_id, ctx.role, ctx.department) == ("u-7", "u-7", "MANAGER", "Sales")


def test_existing_session_takes_the_fresh_identity() -> None:
    manager = SessionManager()
    session = manager.get_or_create("s", ConversationContext(user_id="u-1", role="MANAGER", department="Sales"))
    session.context.append("user", "hello")

    again = manager.get_or_create("s", ConversationContext(user_id="u-1", role="EMPLOYEE", department="Support"))

    assert again.context.role == "EMPLOYEE"
    assert again.context.department == "Support"
    assert [m.content for m in again.context.history] == ["hello"]


def test_idle_sessions_are_evicted() -> None:
    manager = SessionManager(idle_ttl_seconds=60)
    old = manager.get_or_create("old", _ctx())
    manager.get_or_create("new", _ctx())
    old.updated_at -= timedelta(minutes=5)

    assert manager.evict_idle() == ["old"]
    assert manager.get("old") is None
    assert manager.get("new") is not None


def test_private_flag_follows_message_metadata() -> None:
    ctx = _ctx()
    ctx.append("user", "what do I earn?")
    assert not ctx.is_private

    ctx.append("assistant", "You earn 60000.", private=True)
    assert ctx.is_private
