"""PTO handlers: approve, deny and request time off."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any

from loguru import logger

from hrdesk.agent.handlers.base import (
    ActionExecutionError,
    ActionHandler,
    ActionResult,
    ActionStatus,
    ActionValidationError,
    HandlerContext,
)
from hrdesk.nl.intent_engine import ConfirmationType
from hrdesk.storage.repository import Entity
from hrdesk.utils.helpers import utcnow


def _parse_day(value: Any, name: str) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ActionValidationError(f"{name} must be a YYYY-MM-DD date", code="INVALID_DATE") from exc


class _ReviewPto(ActionHandler):
    required_fields = ("request_id",)
    new_status: str
    verb: str

    def notes(self, data: Mapping[str, Any], hctx: HandlerContext) -> str:
        return f"{self.verb.capitalize()} by {hctx.actor_name} via chat"

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        request_id = str(data["request_id"])
        async with hctx.store.transaction():
            request = await hctx.store.get(Entity.PTO_REQUESTS, request_id)
            if request is None:
                raise ActionExecutionError("PTO request not found", code="NOT_FOUND")
            await self.ensure_employee_in_scope(hctx, request.get("employee_id"))
            if request.get("status") != "PENDING":
                raise ActionValidationError(
                    f"PTO request #{request_id} is already {str(request.get('status')).lower()}",
                    code="INVALID_STATE",
                )
            await hctx.store.update(Entity.PTO_REQUESTS, request_id, {
                "status": self.new_status,
                "reviewed_by": hctx.actor_id,
                "reviewed_at": utcnow(),
                "review_notes": self.notes(data, hctx),
            })
            employee = await hctx.store.get(Entity.USERS, request["employee_id"]) or {}

        name = f"{employee.get('first_name', '')} {employee.get('last_name', '')}".strip() or "employee"
        span = f"{request.get('start_date')} to {request.get('end_date')}"
        await self.notify(
            hctx,
            employee.get("email"),
            f"Your PTO request was {self.verb}",
            f"<p>Hi {employee.get('first_name', '')},</p>"
            f"<p>Your time off for {span} was {self.verb} by {hctx.actor_name}.</p>",
        )
        logger.info(f"PTO request {request_id} {self.new_status} by {hctx.actor_id}")
        return self.result(
            f"PTO request for {name} has been {self.verb}.",
            request_id=request_id,
            status=self.new_status,
        )


class ApprovePtoHandler(_ReviewPto):
    confirmation_type = ConfirmationType.APPROVE_PTO
    new_status = "APPROVED"
    verb = "approved"


class DenyPtoHandler(_ReviewPto):
    confirmation_type = ConfirmationType.DENY_PTO
    new_status = "DENIED"
    verb = "denied"

    def notes(self, data: Mapping[str, Any], hctx: HandlerContext) -> str:
        return str(data.get("reason") or super().notes(data, hctx))


class RequestPtoHandler(ActionHandler):
    """Files a PENDING request for the caller; never for anyone else."""

    confirmation_type = ConfirmationType.REQUEST_PTO
    required_fields = ("start_date", "end_date")

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        start = _parse_day(data["start_date"], "start_date")
        end = _parse_day(data["end_date"], "end_date")
        if end < start:
            raise ActionValidationError("end_date is before start_date", code="INVALID_DATE")
        employee_id = hctx.actor_id
        days = float((end - start).days + 1)

        async with hctx.store.transaction():
            existing = await hctx.store.list(
                Entity.PTO_REQUESTS, employee_id=employee_id, status__in=["PENDING", "APPROVED"]
            )
            for row in existing:
                if str(row.get("start_date")) <= end.isoformat() and str(row.get("end_date")) >= start.isoformat():
                    raise ActionValidationError(
                        f"You already have time off from {row.get('start_date')} to {row.get('end_date')}",
                        code="OVERLAP",
                    )
            request = await hctx.store.create(Entity.PTO_REQUESTS, {
                "employee_id": employee_id,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "days": days,
                "reason": str(data.get("reason") or ""),
                "status": "PENDING",
            })
            employee = await hctx.store.get(Entity.USERS, employee_id) or {}
            manager = (
                await hctx.store.get(Entity.USERS, employee["manager_id"]) if employee.get("manager_id") else None
            )

        if manager:
            await self.notify(
                hctx,
                manager.get("email"),
                "New PTO request to review",
                f"<p>{hctx.actor_name} requested {days:g} day(s) off from {start} to {end}.</p>",
            )
        return self.result(
            f"Your PTO request for {start} to {end} ({days:g} day(s)) has been submitted for approval.",
            ActionStatus.PENDING,
            request_id=str(request["id"]),
            status="PENDING",
        )
