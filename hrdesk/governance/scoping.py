"""Which records an actor may touch at a given scope.

Used both when a proposal is built and again right before a handler writes,
so a proposal can never widen the ids it reaches.
"""

from __future__ import annotations

from typing import Any

from hrdesk.nl.intent_engine import Scope
from hrdesk.storage.repository import DataStore, Entity


async def employee_in_scope(
    store: DataStore,
    actor_id: str,
    actor_department: str,
    scope: Scope,
    employee_id: str | None,
) -> bool:
    if not employee_id:
        return False
    if scope is Scope.COMPANY:
        return True
    if employee_id == actor_id:
        return True
    if scope is Scope.SELF:
        return False
    user = await store.get(Entity.USERS, employee_id)
    if user is None:
        return False
    if scope is Scope.TEAM:
        return user.get("manager_id") == actor_id
    return bool(actor_department) and user.get("department") == actor_department


def candidate_in_scope(actor_id: str, scope: Scope, candidate: dict[str, Any]) -> bool:
    """Managers act on candidates assigned to them (or not yet assigned)."""
    if scope is Scope.COMPANY:
        return True
    if scope is Scope.SELF:
        return False
    return candidate.get("assigned_to") in (None, "", actor_id)
