"""Chat API – send a message, confirm or cancel a proposed action."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from hrdesk.api.routes.deps import ContainerDep, ContextDep, SessionKeyDep
from hrdesk.runtime.session_lock import SessionLockTimeout

router = APIRouter()

# failed confirms map to these statuses; everything else is 200 with success=false
_CONFIRM_STATUS = {
    "UNKNOWN_ACTION": 400,
    "STALE_CONFIRMATION": 409,
    "SESSION_BUSY": 429,
}


# ── schemas ──────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessageRequest(_CamelModel):
    message: str = Field(min_length=1, max_length=4000)


class ConfirmRequest(_CamelModel):
    confirmation_type: str
    proposal_id: str | None = None
    # echoed back from the proposal; compared against the server copy, never executed
    confirmation_data: dict[str, Any] | None = None


class CancelRequest(_CamelModel):
    proposal_id: str | None = None


# ── routes ───────────────────────────────────────────────────────────────


@router.post("/message")
async def send_message(
    body: ChatMessageRequest,
    container: ContainerDep,
    ctx: ContextDep,
    session_key: SessionKeyDep,
) -> dict[str, Any]:
    reply = await container.orchestrator.handle_message(session_key, ctx, body.message.strip())
    return reply.to_payload()


@router.post("/confirm")
async def confirm_action(
    body: ConfirmRequest,
    container: ContainerDep,
    ctx: ContextDep,
    session_key: SessionKeyDep,
) -> JSONResponse:
    result = await container.orchestrator.confirm(
        session_key,
        ctx,
        body.confirmation_type,
        proposal_id=body.proposal_id,
        confirmation_data=body.confirmation_data,
    )
    status = _CONFIRM_STATUS.get(result.error or "", 200)
    return JSONResponse(status_code=status, content=jsonable_encoder({**result.to_payload(), "type": result.type}))


@router.post("/cancel")
async def cancel_action(
    body: CancelRequest,
    container: ContainerDep,
    ctx: ContextDep,
    session_key: SessionKeyDep,
) -> dict[str, Any]:
    try:
        cancelled = await container.orchestrator.cancel(session_key, ctx, body.proposal_id)
    except SessionLockTimeout as exc:
        raise HTTPException(status_code=429, detail="Session is busy") from exc
    return {"success": cancelled}


@router.delete("/session")
async def end_session(container: ContainerDep, ctx: ContextDep, session_key: SessionKeyDep) -> dict[str, Any]:
    return {"success": container.orchestrator.end_session(session_key, ctx)}
