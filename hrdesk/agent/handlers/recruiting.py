"""Recruiting handlers: schedule interviews and move candidates between stages."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any

from loguru import logger

from hrdesk.agent.handlers.base import (
    ActionExecutionError,
    ActionHandler,
    ActionResult,
    ActionValidationError,
    HandlerContext,
)
from hrdesk.governance.scoping import candidate_in_scope
from hrdesk.nl.intent_engine import ConfirmationType
from hrdesk.nl.intent_projector import STAGE_LABELS
from hrdesk.storage.repository import Entity

INTERVIEW_TYPES = ("VIDEO", "PHONE", "IN_PERSON")


def stage_label(status: str) -> str:
    return STAGE_LABELS.get(status.upper(), status)


async def _load_candidate(hctx: HandlerContext, candidate_id: str) -> dict[str, Any]:
    candidate = await hctx.store.get(Entity.CANDIDATES, candidate_id)
    if candidate is None:
        raise ActionExecutionError("Candidate not found", code="NOT_FOUND")
    if not candidate_in_scope(hctx.actor_id, hctx.scope, candidate):
        raise ActionValidationError("That candidate is outside what you can change.", code="OUT_OF_SCOPE")
    return candidate


class ScheduleInterviewHandler(ActionHandler):
    confirmation_type = ConfirmationType.SCHEDULE_INTERVIEW
    required_fields = ("candidate_id", "date")

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        try:
            day = date.fromisoformat(str(data["date"]))
        except ValueError as exc:
            raise ActionValidationError("date must be YYYY-MM-DD", code="INVALID_DATE") from exc
        kind = str(data.get("type") or "VIDEO").upper()
        if kind not in INTERVIEW_TYPES:
            raise ActionValidationError(f"Unknown interview type {kind}", code="INVALID_TYPE")
        scheduled_at = f"{day.isoformat()}T{data.get('time') or '10:00'}"
        location = str(data.get("location") or ("Virtual Meeting" if kind == "VIDEO" else "Office"))

        async with hctx.store.transaction():
            candidate = await _load_candidate(hctx, str(data["candidate_id"]))
            interview = await hctx.store.create(Entity.INTERVIEWS, {
                "candidate_id": candidate["id"],
                "interviewer_ids": [hctx.actor_id],
                "scheduled_at": scheduled_at,
                "type": kind,
                "location": location,
                "notes": f"Scheduled by {hctx.actor_name} via chat",
                "status": "SCHEDULED",
                "created_by": hctx.actor_id,
            })
            await hctx.store.update(Entity.CANDIDATES, candidate["id"], {
                "status": "INTERVIEW",
                "stage": stage_label("INTERVIEW"),
            })

        name = f"{candidate.get('first_name', '')} {candidate.get('last_name', '')}".strip() or "candidate"
        await self.notify(
            hctx,
            candidate.get("email"),
            "Your interview has been scheduled",
            f"<p>Hi {candidate.get('first_name', '')},</p>"
            f"<p>Your {kind.replace('_', ' ').lower()} interview is set for {day} at "
            f"{data.get('time') or '10:00'} ({location}).</p>",
        )
        logger.info(f"Interview {interview['id']} scheduled for candidate {candidate['id']}")
        return self.result(
            f"Interview scheduled for {name} on {day} at {data.get('time') or '10:00'}.",
            interview_id=str(interview["id"]),
            candidate_id=str(candidate["id"]),
        )


class MoveCandidateHandler(ActionHandler):
    confirmation_type = ConfirmationType.MOVE_CANDIDATE
    required_fields = ("candidate_id", "target_status")

    async def run(self, data: Mapping[str, Any], hctx: HandlerContext) -> ActionResult:
        target = str(data["target_status"]).upper()
        if target not in STAGE_LABELS:
            raise ActionValidationError(f"Unknown candidate status {target}", code="INVALID_STATUS")
        if target == "NEW":
            target = "APPLIED"

        async with hctx.store.transaction():
            candidate = await _load_candidate(hctx, str(data["candidate_id"]))
            previous = str(candidate.get("status") or "")
            if previous == target:
                raise ActionValidationError(f"Candidate is already at {stage_label(target)}", code="INVALID_STATE")
            await hctx.store.update(Entity.CANDIDATES, candidate["id"], {
                "status": target,
                "stage": stage_label(target),
            })

        name = f"{candidate.get('first_name', '')} {candidate.get('last_name', '')}".strip() or "Candidate"
        return self.result(
            f"{name} has been moved from {stage_label(previous) or 'current stage'} to {stage_label(target)}.",
            candidate_id=str(candidate["id"]),
            new_status=target,
        )
