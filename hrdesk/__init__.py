"""hrdesk - conversational action orchestrator for HR operations."""

__version__ = "0.1.0"
__logo__ = "🗂️"
