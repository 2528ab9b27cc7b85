"""Equipment handlers: assign a tool to an employee and take it back."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

from hrdesk.agent.handlers.base import (
    ActionExecutionError,
    ActionHandler,
    ActionResult,
    ActionValidationError,
    HandlerContext,
)
from hrdesk.nl.intent_engine import ConfirmationType
from hrdesk.storage.repository import Entity
from hrdesk.utils.helpers import utcnow


class AssignToolHandler(ActionHandler):
    """Decrements inventory and records the assignment in one transaction."""

    confirmation_type = ConfirmationType.ASSIGN_TOOL
    required_fields = ("tool_id", "employee_id")

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        employee_id = str(data["employee_id"])
        await self.ensure_employee_in_scope(hctx, employee_id)

        async with hctx.store.transaction():
            tool = await hctx.store.get(Entity.TOOLS, str(data["tool_id"]))
            if tool is None:
                raise ActionExecutionError("Tool not found", code="NOT_FOUND")
            employee = await hctx.store.get(Entity.USERS, employee_id)
            if employee is None:
                raise ActionExecutionError("Employee not found", code="NOT_FOUND")
            available = int(tool.get("available_quantity") or 0)
            if available < 1:
                raise ActionValidationError(f"No {tool['name']} is available", code="NOT_AVAILABLE")
            await hctx.store.update(Entity.TOOLS, tool["id"], {"available_quantity": available - 1})
            assignment = await hctx.store.create(Entity.TOOL_ASSIGNMENTS, {
                "tool_id": tool["id"],
                "employee_id": employee_id,
                "assigned_by": hctx.actor_id,
                "status": "ASSIGNED",
                "condition": tool.get("condition") or "GOOD",
                "notes": str(data.get("notes") or f"Assigned by {hctx.actor_name} via chat"),
            })

        await self.notify(
            hctx,
            employee.get("email"),
            f"{tool['name']} assigned to you",
            f"<p>Hi {employee.get('first_name', '')},</p><p>A {tool['name']} has been assigned to you by {hctx.actor_name}.</p>",
        )
        logger.info(f"Tool {tool['id']} assigned to {employee_id} ({assignment['id']})")
        return self.result(
            f"{tool['name']} assigned to {employee.get('first_name', '')} {employee.get('last_name', '')}".rstrip() + ".",
            assignment_id=str(assignment["id"]),
            available_quantity=available - 1,
        )


class ReturnToolHandler(ActionHandler):
    confirmation_type = ConfirmationType.RETURN_TOOL
    required_fields = ("assignment_id",)

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        async with hctx.store.transaction():
            assignment = await hctx.store.get(Entity.TOOL_ASSIGNMENTS, str(data["assignment_id"]))
            if assignment is None:
                raise ActionExecutionError("Assignment not found", code="NOT_FOUND")
            await self.ensure_employee_in_scope(hctx, assignment.get("employee_id"))
            if assignment.get("status") != "ASSIGNED":
                raise ActionValidationError("That tool has already been returned", code="INVALID_STATE")
            tool = await hctx.store.get(Entity.TOOLS, assignment["tool_id"])
            if tool is None:
                raise ActionExecutionError("Tool not found", code="NOT_FOUND")
            await hctx.store.update(Entity.TOOL_ASSIGNMENTS, assignment["id"], {
                "status": "RETURNED",
                "returned_at": utcnow(),
                "condition": str(data.get("condition") or assignment.get("condition") or "GOOD"),
            })
            available = int(tool.get("available_quantity") or 0) + 1
            if tool.get("total_quantity"):
                available = min(available, int(tool["total_quantity"]))
            await hctx.store.update(Entity.TOOLS, tool["id"], {"available_quantity": available})

        return self.result(
            f"{tool['name']} marked as returned.",
            assignment_id=str(assignment["id"]),
            available_quantity=available,
        )
