"""Conversation sessions."""

from hrdesk.session.manager import (
    ConversationContext,
    ConversationMessage,
    Preferences,
    Session,
    SessionManager,
)

__all__ = ["ConversationContext", "ConversationMessage", "Preferences", "Session", "SessionManager"]
