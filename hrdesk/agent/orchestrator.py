"""Chat orchestrator: the per-turn pipeline.

One turn runs under the session lock:

    greeting?  -> canned reply
    yes / no?  -> confirm or cancel the proposal held for the session
    classify   -> IntentEngine
    authorize  -> permissions.evaluate (refusal ends the turn, nothing is read)
    action     -> IntentProjector -> ConfirmationGate (never executed here)
    info       -> DataAggregator -> ResponseSynthesizer

Mutations only happen in :meth:`Orchestrator.confirm`, which runs the
executor with a ``ConfirmedProposal`` claimed from the gate.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from hrdesk.agent.aggregator import DataAggregator
from hrdesk.agent.context import ContextBuilder, suggestions_for_role
from hrdesk.agent.executor import ActionExecutor, failed
from hrdesk.agent.handlers.base import ActionResult
from hrdesk.agent.synthesizer import ResponseSynthesizer
from hrdesk.channels.email import Notifier
from hrdesk.config.loader import snake_to_camel
from hrdesk.config.schema import Config
from hrdesk.governance.confirmation import (
    ConfirmationGate,
    StaleConfirmation,
    is_cancellation,
    is_confirmation,
)
from hrdesk.governance.permissions import REFUSAL_MESSAGE, evaluate
from hrdesk.nl.intent_engine import ACTION_CATEGORIES, ConfirmationType, Intent, IntentEngine, IntentKind
from hrdesk.nl.intent_projector import ActionProposal, IntentProjector
from hrdesk.observability.audit import AuditCtx, AuditService
from hrdesk.providers.base import LLMProvider
from hrdesk.providers.registry import build_providers
from hrdesk.providers.router import LLMRouter, ProviderUnavailable
from hrdesk.runtime.session_lock import SessionLock, SessionLockTimeout
from hrdesk.session.manager import ConversationContext, SessionManager
from hrdesk.storage.repository import DataStore
from hrdesk.utils.helpers import utcnow

FALLBACK_MESSAGE = (
    "I'm having trouble reaching my language services right now. "
    "Please try again in a moment."
)
STALE_MESSAGE = (
    "That confirmation doesn't match anything waiting for approval. "
    "Could you restate the request?"
)
BUSY_MESSAGE = "I'm still working on your previous message. Please try again in a moment."
NOTHING_PENDING_MESSAGE = "There's nothing waiting for your confirmation right now."
CANCELLED_MESSAGE = "Okay, I've cancelled that."

_GREETING_RE = re.compile(
    r"^\s*(hi|hello|hey|hiya|good\s+(?:morning|afternoon|evening))(?:\s+there)?\s*[!.]*\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class ChatReply:
    message: str
    confidence: float = 1.0
    suggestions: tuple[str, ...] = ()
    data: dict[str, Any] | None = None
    actions: tuple[dict[str, Any], ...] = ()
    requires_confirmation: bool = False
    confirmation_type: str | None = None
    confirmation_data: dict[str, Any] | None = None
    confirmation_message: str | None = None
    proposal_id: str | None = None
    provider: str | None = None
    # built from privacy-routed data; kept off the wire
    private: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Wire shape (camelCase keys; ``data`` is passed through untouched)."""
        payload: dict[str, Any] = {
            "message": self.message,
            "confidence": self.confidence,
            "suggestions": list(self.suggestions),
            "actions": list(self.actions),
            "requiresConfirmation": self.requires_confirmation,
        }
        if self.data is not None:
            payload["data"] = self.data
        if self.requires_confirmation:
            payload["confirmationType"] = self.confirmation_type
            payload["confirmationData"] = {
                snake_to_camel(k): v for k, v in (self.confirmation_data or {}).items()
            }
            payload["confirmationMessage"] = self.confirmation_message
            payload["proposalId"] = self.proposal_id
        return payload


def _result_reply(result: ActionResult, ctx: ConversationContext, private: bool = False) -> ChatReply:
    return ChatReply(
        message=result.message,
        actions=(result.to_payload() | {"type": result.type},),
        suggestions=tuple(suggestions_for_role(ctx.role)),
        private=private,
    )


class Orchestrator:
    def __init__(
        self,
        engine: IntentEngine,
        projector: IntentProjector,
        gate: ConfirmationGate,
        executor: ActionExecutor,
        aggregator: DataAggregator,
        synthesizer: ResponseSynthesizer,
        sessions: SessionManager | None = None,
        lock: SessionLock | None = None,
        audit: AuditService | None = None,
        lock_timeout: float = 10.0,
    ):
        self.engine = engine
        self.projector = projector
        self.gate = gate
        self.executor = executor
        self.aggregator = aggregator
        self.synthesizer = synthesizer
        self.sessions = sessions if sessions is not None else SessionManager()
        self.lock = lock if lock is not None else SessionLock()
        self.audit = audit
        self.lock_timeout = lock_timeout

    @property
    def router(self) -> LLMRouter:
        return self.synthesizer.router

    # ── public entry points ──

    async def handle_message(self, session_key: str, ctx: ConversationContext, message: str) -> ChatReply:
        self.evict_idle()
        try:
            async with self.lock.acquire(session_key, timeout=self.lock_timeout):
                ctx = self._session_context(session_key, ctx)
                ctx.append("user", message)
                reply = await self._turn(session_key, ctx, message)
                ctx.append(
                    "assistant",
                    reply.message,
                    confidence=reply.confidence,
                    proposal_id=reply.proposal_id,
                    actions=[a.get("type") for a in reply.actions] or None,
                    private=reply.private or None,
                )
                return reply
        except SessionLockTimeout:
            logger.warning(f"Turn rejected, session {session_key} is busy")
            return ChatReply(message=BUSY_MESSAGE, confidence=0.0)

    async def confirm(
        self,
        session_key: str,
        ctx: ConversationContext,
        confirmation_type: str,
        proposal_id: str | None = None,
        confirmation_data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        """Execute the held proposal if the confirm matches it exactly."""
        try:
            async with self.lock.acquire(session_key, timeout=self.lock_timeout):
                ctx = self._session_context(session_key, ctx)
                result = await self._confirm(session_key, ctx, confirmation_type, proposal_id, confirmation_data)
                ctx.append(
                    "assistant",
                    result.message,
                    action=result.type,
                    success=result.success,
                    private=self._touches_private(ConfirmationType.parse(result.type)) or None,
                )
                return result
        except SessionLockTimeout:
            logger.warning(f"Confirm rejected, session {session_key} is busy")
            return failed(str(confirmation_type), BUSY_MESSAGE, "SESSION_BUSY")

    async def cancel(self, session_key: str, ctx: ConversationContext, proposal_id: str | None = None) -> bool:
        async with self.lock.acquire(session_key, timeout=self.lock_timeout):
            pending = self.gate.pending(session_key)
            if pending is None or pending.requested_by != ctx.user_id:
                return False
            cancelled = await self.gate.cancel(session_key, proposal_id)
            if cancelled is None:
                return False
            await self._audit(session_key, ctx, "proposal", "cancelled", {
                "proposal_id": cancelled.proposal_id,
                "confirmation_type": cancelled.confirmation_type.value,
            })
            return True

    def end_session(self, session_key: str, ctx: ConversationContext) -> bool:
        session = self.sessions.get(session_key)
        if session is None or session.context.user_id != ctx.user_id:
            return False
        self.gate.discard(session_key)
        self.lock.forget(session_key)
        return self.sessions.end(session_key)

    def evict_idle(self, now: datetime | None = None) -> list[str]:
        """Forget sessions idle past the session TTL, with their gate slots and locks."""
        evicted = self.sessions.evict_idle(now)
        for key in evicted:
            self.gate.discard(key)
            self.lock.forget(key)
        return evicted

    # ── turn pipeline ──

    def _session_context(self, session_key: str, ctx: ConversationContext) -> ConversationContext:
        existing = self.sessions.get(session_key)
        if existing is not None and existing.context.user_id != ctx.user_id:
            # a proposal never outlives the user it was made for
            self.gate.discard(session_key)
        elif existing is not None and existing.context.role != ctx.role:
            logger.info(f"Role of {ctx.user_id} changed to {ctx.role}; dropping pending proposal")
            self.gate.discard(session_key)
        session = self.sessions.get_or_create(session_key, ctx)
        session.touch()
        return session.context

    def _touches_private(self, action: ConfirmationType | None) -> bool:
        if action is None:
            return False
        return bool(ACTION_CATEGORIES[action] & set(self.synthesizer.config.privacy_categories))

    async def _turn(self, session_key: str, ctx: ConversationContext, message: str) -> ChatReply:
        pending = self.gate.pending(session_key)

        if pending is not None and is_confirmation(message):
            result = await self._confirm(
                session_key, ctx, pending.confirmation_type.value,
                proposal_id=pending.proposal_id, confirmation_data=None,
            )
            return _result_reply(result, ctx, private=self._touches_private(pending.confirmation_type))
        if pending is not None and is_cancellation(message):
            await self.gate.cancel(session_key, pending.proposal_id)
            await self._audit(session_key, ctx, "proposal", "cancelled", {
                "proposal_id": pending.proposal_id,
                "confirmation_type": pending.confirmation_type.value,
            })
            return ChatReply(message=CANCELLED_MESSAGE, suggestions=tuple(suggestions_for_role(ctx.role)))
        if pending is None and (is_confirmation(message) or is_cancellation(message)):
            return ChatReply(message=NOTHING_PENDING_MESSAGE, suggestions=tuple(suggestions_for_role(ctx.role)))

        if _GREETING_RE.match(message):
            name = f" {ctx.first_name}" if ctx.first_name else ""
            return ChatReply(
                message=f"Hi{name}! How can I help you today?",
                suggestions=tuple(suggestions_for_role(ctx.role)),
            )

        intent = await self.engine.classify(message, ctx)
        decision = evaluate(ctx.role, intent)
        if not decision.allowed:
            logger.info(f"Denied {ctx.user_id} ({ctx.role}): {decision.reason}")
            await self._audit(session_key, ctx, "permission", "denied", {
                "scope": intent.scope.value,
                "categories": list(decision.denied_categories),
                "kind": intent.kind.value,
            }, severity="warning")
            return ChatReply(
                message=REFUSAL_MESSAGE,
                confidence=intent.confidence,
                suggestions=tuple(suggestions_for_role(ctx.role)),
            )

        if intent.kind is IntentKind.ACTION:
            return await self._propose(session_key, ctx, intent, message)
        return await self._answer(ctx, intent, message)

    async def _propose(self, session_key: str, ctx: ConversationContext, intent: Intent, message: str) -> ChatReply:
        outcome = await self.projector.propose(intent, message, ctx)
        if outcome.proposal is None:
            return ChatReply(message=outcome.clarification or "", confidence=intent.confidence)

        proposal = outcome.proposal
        superseded = await self.gate.propose(session_key, proposal)
        await self._audit(session_key, ctx, "proposal", "created", {
            "proposal_id": proposal.proposal_id,
            "confirmation_type": proposal.confirmation_type.value,
            "scope": proposal.scope.value,
            "superseded": superseded.proposal_id if superseded else None,
        })
        return self._proposal_reply(proposal, intent.confidence, self._touches_private(proposal.confirmation_type))

    @staticmethod
    def _proposal_reply(proposal: ActionProposal, confidence: float, private: bool = False) -> ChatReply:
        return ChatReply(
            private=private,
            message=f"{proposal.confirmation_message} Reply \"yes\" to confirm or \"no\" to cancel.",
            confidence=confidence,
            requires_confirmation=True,
            confirmation_type=proposal.confirmation_type.value,
            confirmation_data=dict(proposal.confirmation_data),
            confirmation_message=proposal.confirmation_message,
            proposal_id=proposal.proposal_id,
        )

    async def _answer(self, ctx: ConversationContext, intent: Intent, message: str) -> ChatReply:
        data = await self.aggregator.collect(intent, ctx)
        private = self.synthesizer.requires_privacy(data, ctx)
        try:
            result = await self.synthesizer.synthesize(message, intent, data, ctx)
        except ProviderUnavailable as exc:
            logger.error(f"No provider answered for {ctx.user_id}: {exc}")
            return ChatReply(message=FALLBACK_MESSAGE, confidence=0.0)
        return ChatReply(
            message=result.text,
            confidence=intent.confidence,
            suggestions=intent.suggestions or tuple(suggestions_for_role(ctx.role)),
            data=data or None,
            provider=result.provider,
            private=private,
        )

    async def _confirm(
        self,
        session_key: str,
        ctx: ConversationContext,
        confirmation_type: str,
        proposal_id: str | None = None,
        confirmation_data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        action = ConfirmationType.parse(confirmation_type)
        if action is None:
            logger.info(f"Unknown confirmation type {confirmation_type!r} from {ctx.user_id}")
            return failed(str(confirmation_type), "I don't recognise that action.", "UNKNOWN_ACTION")

        try:
            async with self.gate.executing(
                session_key, action, proposal_id, confirmation_data, actor_id=ctx.user_id
            ) as confirmed:
                result = await self.executor.execute(confirmed, ctx)
        except StaleConfirmation as exc:
            logger.info(f"Stale confirm for {action.value}: {exc.reason}")
            await self._audit(session_key, ctx, "proposal", "stale_confirm", {
                "confirmation_type": action.value,
                "reason": exc.reason,
            }, severity="warning")
            return failed(action.value, STALE_MESSAGE, "STALE_CONFIRMATION")

        await self._audit(session_key, ctx, "action", "executed", {
            "proposal_id": confirmed.proposal.proposal_id,
            "confirmation_type": action.value,
            "status": result.status.value,
            "error": result.error,
        }, severity="info" if result.success else "warning")
        return result

    async def _audit(
        self,
        session_key: str,
        ctx: ConversationContext,
        event_type: str,
        event_name: str,
        payload: dict[str, Any],
        severity: str = "info",
    ) -> None:
        if self.audit is None:
            return
        await self.audit.emit(AuditCtx(ctx.user_id, session_key), event_type, event_name, payload, severity)


def build_orchestrator(
    config: Config,
    store: DataStore,
    notifier: Notifier,
    providers: Sequence[LLMProvider] | None = None,
    lock: SessionLock | None = None,
    sessions: SessionManager | None = None,
    clock: Callable[[], datetime] = utcnow,
    audit: bool = True,
    lock_timeout: float = 10.0,
) -> Orchestrator:
    """Wire every collaborator from *config*.  Providers default to the registry."""
    router = LLMRouter.from_config(config, build_providers(config) if providers is None else providers)
    return Orchestrator(
        engine=IntentEngine.build(router, config.classifier),
        projector=IntentProjector(store, router, ttl_seconds=config.gate.proposal_ttl_seconds, clock=clock),
        gate=ConfirmationGate(clock=clock),
        executor=ActionExecutor(store, notifier),
        aggregator=DataAggregator(store),
        synthesizer=ResponseSynthesizer(
            router,
            ContextBuilder(history_window=config.synthesis.history_window),
            config.synthesis,
        ),
        sessions=sessions,
        lock=lock,
        audit=AuditService(store) if audit else None,
        lock_timeout=lock_timeout,
    )
