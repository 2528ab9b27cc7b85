"""Utility functions for hrdesk."""

from hrdesk.utils.helpers import ensure_dir, new_id, safe_filename, utcnow

__all__ = ["ensure_dir", "new_id", "safe_filename", "utcnow"]
