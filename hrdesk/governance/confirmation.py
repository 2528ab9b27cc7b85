"""Per-session confirmation gate for proposed actions.

Each session has one slot.  A proposal moves it to AWAITING_CONFIRMATION; a
matching confirm moves it through CONFIRMED and EXECUTING back to IDLE once
the handler returns, whatever the outcome.  Cancel and expiry also return the
slot to IDLE.  A new proposal replaces whatever was waiting.

Handlers only accept a ``ConfirmedProposal``, and only this module can create
one.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from hrdesk.config.loader import camel_to_snake
from hrdesk.nl.intent_engine import ConfirmationType
from hrdesk.nl.intent_projector import ActionProposal
from hrdesk.utils.helpers import utcnow

_MINT = object()

_CONFIRM_RE = re.compile(
    r"^\s*(yes|y|yep|yeah|sure|ok|okay|confirm(?:ed)?|go\s+ahead|do\s+it|proceed|please\s+do)"
    r"(?:\s*,?\s*(?:please|thanks|thank\s+you))?\s*[.!]*\s*$",
    re.IGNORECASE,
)
_CANCEL_RE = re.compile(
    r"^\s*(no|n|nope|cancel|stop|abort|never\s*mind|don'?t|do\s+not)(?:\s*,?\s*(?:thanks|thank\s+you))?\s*[.!]*\s*$",
    re.IGNORECASE,
)


def is_confirmation(text: str) -> bool:
    return bool(_CONFIRM_RE.match(text))


def is_cancellation(text: str) -> bool:
    return bool(_CANCEL_RE.match(text))


class GateState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    EXECUTING = "executing"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class StaleConfirmation(RuntimeError):
    """A confirm did not match the proposal held for the session."""

    def __init__(self, session_key: str, reason: str):
        super().__init__(f"stale confirmation for {session_key}: {reason}")
        self.session_key = session_key
        self.reason = reason


@dataclass(frozen=True, slots=True)
class ConfirmedProposal:
    proposal: ActionProposal
    session_key: str
    confirmed_at: datetime
    _mint: object = field(repr=False, compare=False, default=None)

    def __post_init__(self) -> None:
        if self._mint is not _MINT:
            raise TypeError("ConfirmedProposal is issued by ConfirmationGate only")

    @property
    def confirmation_type(self) -> ConfirmationType:
        return self.proposal.confirmation_type

    @property
    def data(self) -> Mapping[str, Any]:
        return self.proposal.confirmation_data


@dataclass
class _Slot:
    state: GateState = GateState.IDLE
    proposal: ActionProposal | None = None


def _normalize(data: Mapping[str, Any]) -> dict[str, str]:
    return {camel_to_snake(str(k)): str(v) for k, v in data.items() if v is not None}


class ConfirmationGate:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._slots: dict[str, _Slot] = {}
        self._lock = asyncio.Lock()

    def _slot(self, session_key: str) -> _Slot:
        return self._slots.setdefault(session_key, _Slot())

    def _expire_if_due(self, session_key: str, slot: _Slot) -> bool:
        if (
            slot.state is GateState.AWAITING_CONFIRMATION
            and slot.proposal is not None
            and slot.proposal.is_expired(self.clock())
        ):
            logger.info(f"Proposal {slot.proposal.proposal_id} expired ({session_key})")
            slot.state = GateState.EXPIRED
            slot.proposal = None
            slot.state = GateState.IDLE
            return True
        return False

    def state(self, session_key: str) -> GateState:
        slot = self._slots.get(session_key)
        if slot is None:
            return GateState.IDLE
        self._expire_if_due(session_key, slot)
        return slot.state

    def pending(self, session_key: str) -> ActionProposal | None:
        slot = self._slots.get(session_key)
        if slot is None or self._expire_if_due(session_key, slot):
            return None
        return slot.proposal if slot.state is GateState.AWAITING_CONFIRMATION else None

    async def propose(self, session_key: str, proposal: ActionProposal) -> ActionProposal | None:
        """Hold *proposal* for the session.  Returns the proposal it replaced, if any."""
        async with self._lock:
            slot = self._slot(session_key)
            self._expire_if_due(session_key, slot)
            superseded = slot.proposal if slot.state is GateState.AWAITING_CONFIRMATION else None
            slot.proposal = proposal
            slot.state = GateState.AWAITING_CONFIRMATION
        if superseded is not None:
            logger.info(f"Proposal {superseded.proposal_id} superseded by {proposal.proposal_id} ({session_key})")
        else:
            logger.debug(f"Awaiting confirmation for {proposal.proposal_id} ({session_key})")
        return superseded

    async def cancel(self, session_key: str, proposal_id: str | None = None) -> ActionProposal | None:
        async with self._lock:
            slot = self._slots.get(session_key)
            if slot is None or slot.state is not GateState.AWAITING_CONFIRMATION or slot.proposal is None:
                return None
            if proposal_id is not None and slot.proposal.proposal_id != proposal_id:
                return None
            cancelled = slot.proposal
            slot.state = GateState.CANCELLED
            slot.proposal = None
            slot.state = GateState.IDLE
        logger.info(f"Proposal {cancelled.proposal_id} cancelled ({session_key})")
        return cancelled

    async def claim(
        self,
        session_key: str,
        confirmation_type: ConfirmationType | str,
        proposal_id: str | None = None,
        echoed_data: Mapping[str, Any] | None = None,
        actor_id: str | None = None,
    ) -> ConfirmedProposal:
        """Compare-and-swap AWAITING_CONFIRMATION -> EXECUTING for a matching confirm."""
        wanted = ConfirmationType.parse(confirmation_type)
        async with self._lock:
            slot = self._slots.get(session_key)
            if slot is None or slot.proposal is None or slot.state is not GateState.AWAITING_CONFIRMATION:
                raise StaleConfirmation(session_key, "nothing awaiting confirmation")
            if self._expire_if_due(session_key, slot):
                raise StaleConfirmation(session_key, "proposal expired")
            held = slot.proposal
            if wanted is not held.confirmation_type:
                raise StaleConfirmation(session_key, f"type {confirmation_type!r} does not match")
            if actor_id is not None and actor_id != held.requested_by:
                raise StaleConfirmation(session_key, "proposal belongs to another user")
            if proposal_id is None and echoed_data is None:
                raise StaleConfirmation(session_key, "confirm names no proposal")
            if proposal_id is not None and proposal_id != held.proposal_id:
                raise StaleConfirmation(session_key, "proposal id does not match")
            if echoed_data is not None and _normalize(echoed_data) != _normalize(held.confirmation_data):
                raise StaleConfirmation(session_key, "confirmation data does not match")

            slot.state = GateState.CONFIRMED
            confirmed = ConfirmedProposal(
                proposal=held, session_key=session_key, confirmed_at=self.clock(), _mint=_MINT
            )
            slot.state = GateState.EXECUTING
        logger.info(f"Proposal {held.proposal_id} confirmed ({session_key})")
        return confirmed

    async def finish(self, confirmed: ConfirmedProposal) -> None:
        async with self._lock:
            slot = self._slots.get(confirmed.session_key)
            if slot is None or slot.proposal is not confirmed.proposal:
                # replaced while executing; leave the newer proposal alone
                return
            slot.proposal = None
            slot.state = GateState.IDLE

    @asynccontextmanager
    async def executing(
        self,
        session_key: str,
        confirmation_type: ConfirmationType | str,
        proposal_id: str | None = None,
        echoed_data: Mapping[str, Any] | None = None,
        actor_id: str | None = None,
    ) -> AsyncIterator[ConfirmedProposal]:
        confirmed = await self.claim(session_key, confirmation_type, proposal_id, echoed_data, actor_id)
        try:
            yield confirmed
        finally:
            await self.finish(confirmed)

    def discard(self, session_key: str) -> None:
        self._slots.pop(session_key, None)

    def __len__(self) -> int:
        return len(self._slots)
