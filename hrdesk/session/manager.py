"""Session management for conversation history.

A session lives in memory for the lifetime of the conversation.  Nothing is
written to disk unless a transcript is saved explicitly.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping

from loguru import logger

from hrdesk.utils.helpers import ensure_dir, safe_filename, utcnow

MessageRole = Literal["system", "user", "assistant"]


@dataclass(frozen=True, slots=True)
class ConversationMessage:
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            **({"metadata": dict(self.metadata)} if self.metadata else {}),
        }


@dataclass(slots=True)
class Preferences:
    daily_briefing: bool = False
    proactive_assistance: bool = True
    communication_style: Literal["formal", "casual", "friendly"] = "friendly"


@dataclass
class ConversationContext:
    """Who is talking and what has been said so far.

    ``history`` is append-only; use :meth:`append` rather than mutating the
    list directly.
    """

    user_id: str
    role: str
    department: str = ""
    territory_id: str | None = None
    employee_id: str | None = None
    first_name: str = ""
    email: str = ""
    preferences: Preferences = field(default_factory=Preferences)
    history: list[ConversationMessage] = field(default_factory=list)

    @property
    def subject_id(self) -> str:
        """Id used for self-scoped reads and writes."""
        return self.employee_id or self.user_id

    def append(self, role: MessageRole, content: str, **metadata: Any) -> ConversationMessage:
        msg = ConversationMessage(
            role=role,
            content=content,
            metadata=MappingProxyType({k: v for k, v in metadata.items() if v is not None}),
        )
        self.history.append(msg)
        return msg

    def recent(self, window: int = 10) -> list[dict[str, str]]:
        """Last *window* messages in LLM chat format."""
        return [{"role": m.role, "content": m.content} for m in self.history[-window:]]

    @property
    def is_private(self) -> bool:
        """True once any message was produced from privacy-routed data."""
        return any(m.metadata.get("private") for m in self.history)

    def refresh_identity(self, other: "ConversationContext") -> None:
        """Take who-the-caller-is from a freshly resolved context; history stays."""
        self.role = other.role
        self.department = other.department
        self.territory_id = other.territory_id
        self.employee_id = other.employee_id
        self.first_name = other.first_name
        self.email = other.email

    @classmethod
    def from_user(cls, user: Mapping[str, Any], preferences: Preferences | None = None) -> "ConversationContext":
        return cls(
            user_id=str(user["id"]),
            role=str(user.get("role") or ""),
            department=str(user.get("department") or ""),
            territory_id=user.get("territory_id"),
            employee_id=str(user["id"]),
            first_name=str(user.get("first_name") or ""),
            email=str(user.get("email") or ""),
            preferences=preferences or Preferences(),
        )


@dataclass
class Session:
    """A conversation session keyed by ``key`` (usually the client session id)."""

    key: str
    context: ConversationContext
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()


class SessionManager:
    """
    Manages in-memory conversation sessions.

    Transcripts are written as JSONL only when :meth:`save_transcript` is called.
    """

    def __init__(self, transcripts_dir: Path | None = None, idle_ttl_seconds: int = 1800):
        self.transcripts_dir = transcripts_dir
        self.idle_ttl = timedelta(seconds=idle_ttl_seconds)
        self._sessions: dict[str, Session] = {}

    def get(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def get_or_create(self, key: str, context: ConversationContext) -> Session:
        """
        Return the session for *key*, starting one with *context* if none exists.

        An existing session takes the identity fields of *context* so role
        changes apply from the next turn.  A session started by a different
        user is replaced rather than shared.
        """
        session = self._sessions.get(key)
        if session is not None and session.context.user_id == context.user_id:
            if session.context is not context:
                session.context.refresh_identity(context)
            return session
        if session is not None:
            logger.warning(f"Session {key} reused by another user; starting fresh")
        session = Session(key=key, context=context)
        self._sessions[key] = session
        logger.debug(f"Session started: {key} user={context.user_id}")
        return session

    def end(self, key: str) -> bool:
        """Discard a session. Returns False if it did not exist."""
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        logger.debug(f"Session ended: {key} ({len(session.context.history)} msg(s))")
        return True

    def evict_idle(self, now: datetime | None = None) -> list[str]:
        """Drop sessions untouched for longer than the idle TTL; returns their keys."""
        cutoff = (now or utcnow()) - self.idle_ttl
        stale = [key for key, s in self._sessions.items() if s.updated_at < cutoff]
        for key in stale:
            del self._sessions[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} idle session(s)")
        return stale

    def save_transcript(self, key: str) -> Path:
        """Write the session's history to ``<transcripts_dir>/<key>.jsonl``."""
        session = self._sessions.get(key)
        if session is None:
            raise KeyError(key)
        if self.transcripts_dir is None:
            raise RuntimeError("transcripts_dir is not configured")
        path = ensure_dir(self.transcripts_dir) / f"{safe_filename(key)}.jsonl"
        with open(path, "w", encoding="utf-8") as f:
            header = {
                "_type": "metadata",
                "key": session.key,
                "user_id": session.context.user_id,
                "created_at": session.created_at.isoformat(),
                "updated_at": session.updated_at.isoformat(),
            }
            f.write(json.dumps(header) + "\n")
            for msg in session.context.history:
                f.write(json.dumps(msg.to_dict(), default=str) + "\n")
        logger.info(f"Transcript saved: {path}")
        return path

    def __len__(self) -> int:
        return len(self._sessions)
