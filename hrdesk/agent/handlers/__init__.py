"""Handlers for confirmed actions, one per confirmation type."""

from hrdesk.agent.handlers.base import (
    ActionExecutionError,
    ActionHandler,
    ActionResult,
    ActionStatus,
    ActionValidationError,
    HandlerContext,
)
from hrdesk.agent.handlers.employees import CreateEmployeeHandler
from hrdesk.agent.handlers.pto import ApprovePtoHandler, DenyPtoHandler, RequestPtoHandler
from hrdesk.agent.handlers.recruiting import MoveCandidateHandler, ScheduleInterviewHandler
from hrdesk.agent.handlers.tools import AssignToolHandler, ReturnToolHandler


def default_handlers() -> list[ActionHandler]:
    return [
        ScheduleInterviewHandler(),
        MoveCandidateHandler(),
        ApprovePtoHandler(),
        DenyPtoHandler(),
        RequestPtoHandler(),
        CreateEmployeeHandler(),
        AssignToolHandler(),
        ReturnToolHandler(),
    ]


__all__ = [
    "ActionExecutionError",
    "ActionHandler",
    "ActionResult",
    "ActionStatus",
    "ActionValidationError",
    "HandlerContext",
    "default_handlers",
]
