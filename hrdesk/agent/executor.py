"""Dispatch confirmed proposals to their handlers."""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from hrdesk.agent.handlers import default_handlers
from hrdesk.agent.handlers.base import (
    ActionExecutionError,
    ActionHandler,
    ActionResult,
    ActionStatus,
    ActionValidationError,
    HandlerContext,
)
from hrdesk.channels.email import Notifier
from hrdesk.governance.confirmation import ConfirmedProposal
from hrdesk.nl.intent_engine import ConfirmationType
from hrdesk.session.manager import ConversationContext
from hrdesk.storage.repository import DataStore


def failed(action_type: str, message: str, error: str, **details) -> ActionResult:
    return ActionResult(type=action_type, status=ActionStatus.FAILED, message=message, details=details, error=error)


class ActionExecutor:
    """Maps each confirmation type to exactly one handler.

    ``execute`` takes a ``ConfirmedProposal``; there is no entry point that
    runs a handler from raw proposal data.  Results are never retried.
    """

    def __init__(
        self,
        store: DataStore,
        notifier: Notifier,
        handlers: Iterable[ActionHandler] | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self._handlers: dict[ConfirmationType, ActionHandler] = {}
        for handler in handlers if handlers is not None else default_handlers():
            self._handlers[handler.confirmation_type] = handler

    @property
    def supported(self) -> list[ConfirmationType]:
        return list(self._handlers)

    async def execute(self, confirmed: ConfirmedProposal, ctx: ConversationContext) -> ActionResult:
        if not isinstance(confirmed, ConfirmedProposal):
            raise TypeError("execute() requires a ConfirmedProposal from the confirmation gate")
        proposal = confirmed.proposal
        action_type = proposal.confirmation_type.value
        handler = self._handlers.get(proposal.confirmation_type)
        if handler is None:
            logger.warning(f"No handler registered for {action_type}")
            return failed(action_type, "I don't know how to carry out that action.", "UNKNOWN_ACTION")

        data = dict(proposal.confirmation_data)
        hctx = HandlerContext(
            store=self.store,
            notifier=self.notifier,
            actor_id=ctx.subject_id,
            actor_name=f"{ctx.first_name}".strip() or ctx.user_id,
            actor_department=ctx.department,
            scope=proposal.scope,
        )
        try:
            handler.validate(data)
            result = await handler.run(data, hctx)
        except ActionValidationError as exc:
            logger.info(f"{action_type} rejected before execution: {exc}")
            return failed(action_type, str(exc), exc.code)
        except ActionExecutionError as exc:
            logger.warning(f"{action_type} failed: {exc}")
            return failed(action_type, f"Failed to execute action: {exc}", exc.code, **exc.partial)
        except Exception as exc:
            logger.exception(f"{action_type} crashed in {type(handler).__name__}")
            return failed(action_type, f"Failed to execute action: {exc}", "EXECUTION_FAILED")

        logger.info(f"{action_type} executed for {ctx.user_id}: {result.status.value}")
        return result
