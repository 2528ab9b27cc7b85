"""Base class and result types for confirmed-action handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from hrdesk.channels.email import NotificationError, Notifier
from hrdesk.governance.scoping import employee_in_scope
from hrdesk.nl.intent_engine import ConfirmationType, Scope
from hrdesk.storage.repository import DataStore


class ActionStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ActionResult:
    type: str
    status: ActionStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is not ActionStatus.FAILED

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.details:
            payload["data"] = dict(self.details)
        if self.error:
            payload["error"] = self.error
        return payload


class ActionValidationError(ValueError):
    """Proposal data is missing fields or carries invalid values."""

    def __init__(self, message: str, code: str = "MISSING_FIELDS"):
        super().__init__(message)
        self.code = code


class ActionExecutionError(RuntimeError):
    """A downstream write failed.  ``partial`` describes what did complete."""

    def __init__(self, message: str, code: str = "EXECUTION_FAILED", partial: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.partial = partial or {}


@dataclass(frozen=True, slots=True)
class HandlerContext:
    """Who confirmed the action and the collaborators a handler may use."""

    store: DataStore
    notifier: Notifier
    actor_id: str
    actor_name: str
    actor_department: str
    scope: Scope


class ActionHandler(ABC):
    """One mutation behind the confirmation gate."""

    confirmation_type: ConfirmationType
    required_fields: tuple[str, ...] = ()

    def validate(self, data: Mapping[str, Any]) -> None:
        missing = [f for f in self.required_fields if data.get(f) in (None, "")]
        if missing:
            raise ActionValidationError(f"Missing required field(s): {', '.join(missing)}")

    @abstractmethod
    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        """Perform the mutation.  Raise ``ActionExecutionError`` on downstream failure."""

    def result(self, message: str, outcome: ActionStatus = ActionStatus.SUCCESS, **details: Any) -> ActionResult:
        return ActionResult(
            type=self.confirmation_type.value,
            status=outcome,
            message=message,
            details=details,
        )

    async def ensure_employee_in_scope(self, hctx: HandlerContext, employee_id: str | None) -> None:
        if not await employee_in_scope(hctx.store, hctx.actor_id, hctx.actor_department, hctx.scope, employee_id):
            raise ActionValidationError("That record is outside what you can change.", code="OUT_OF_SCOPE")

    async def notify(self, hctx: HandlerContext, to: str | None, subject: str, html: str) -> bool:
        """Send an email; a delivery failure never undoes the committed change."""
        if not to:
            return False
        try:
            await hctx.notifier.send_email(to, subject, html)
        except NotificationError as exc:
            logger.warning(f"{self.confirmation_type.value}: notification to {to} failed: {exc}")
            return False
        return True
