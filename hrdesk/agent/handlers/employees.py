"""Employee creation from chat."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

from hrdesk.agent.handlers.base import ActionHandler, ActionResult, ActionValidationError, HandlerContext
from hrdesk.governance.roles import Role, Tier, canonical_role, tier_for
from hrdesk.nl.intent_engine import ConfirmationType, Scope
from hrdesk.storage.repository import Entity
from hrdesk.utils.crypto import hash_password, temporary_password
from hrdesk.utils.helpers import utcnow


class CreateEmployeeHandler(ActionHandler):
    """Creates the account with a temporary password emailed to the new hire.

    Managers may only create non-privileged accounts, which land on their own
    team.
    """

    confirmation_type = ConfirmationType.CREATE_EMPLOYEE
    required_fields = ("first_name", "last_name", "email")

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        email = str(data["email"]).strip().lower()
        if "@" not in email:
            raise ActionValidationError("A valid email address is required", code="INVALID_EMAIL")
        role = canonical_role(data.get("role") or Role.EMPLOYEE.value)
        if role is None:
            raise ActionValidationError(f"Unknown role {data.get('role')}", code="INVALID_ROLE")
        if hctx.scope is not Scope.COMPANY and tier_for(role) is not Tier.EMPLOYEE:
            raise ActionValidationError("Only HR can create manager or admin accounts.", code="OUT_OF_SCOPE")

        temp_password = temporary_password()
        async with hctx.store.transaction():
            if await hctx.store.list(Entity.USERS, email=email):
                raise ActionValidationError(f"An account for {email} already exists", code="DUPLICATE_EMAIL")
            user = await hctx.store.create(Entity.USERS, {
                "first_name": str(data["first_name"]).strip(),
                "last_name": str(data["last_name"]).strip(),
                "email": email,
                "role": role.value,
                "department": str(data.get("department") or "Operations"),
                "position": str(data.get("position") or "Employee"),
                "phone": str(data.get("phone") or ""),
                "hire_date": str(data.get("start_date") or utcnow().date().isoformat()),
                "manager_id": hctx.actor_id if hctx.scope is Scope.TEAM else None,
                "password_hash": hash_password(temp_password),
                "must_change_password": True,
                "is_active": True,
                "pto_balance_days": 0.0,
                "pto_used_days": 0.0,
            })

        sent = await self.notify(
            hctx,
            email,
            "Welcome aboard",
            f"<p>Hi {user['first_name']},</p><p>Your account is ready. "
            f"Temporary password: <code>{temp_password}</code>. You will be asked to change it at first login.</p>",
        )
        logger.info(f"Employee {user['id']} created by {hctx.actor_id}")
        note = " Login details were emailed to them." if sent else " The welcome email could not be sent; reset their password to share access."
        return self.result(
            f"Employee {user['first_name']} {user['last_name']} has been created.{note}",
            user_id=str(user["id"]),
            email=email,
        )
