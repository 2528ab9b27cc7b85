"""Request dependencies shared by the API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from hrdesk.api.app import Container
from hrdesk.session.manager import ConversationContext
from hrdesk.storage.repository import Entity


def get_container(request: Request) -> Container:
    return request.app.state.container


ContainerDep = Annotated[Container, Depends(get_container)]


async def get_context(
    container: ContainerDep,
    x_user_id: Annotated[str | None, Header()] = None,
) -> ConversationContext:
    """Resolve the caller from ``X-User-Id``; unknown or inactive users get 401."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = await container.store.get(Entity.USERS, x_user_id)
    if user is None or user.get("is_active") is False:
        raise HTTPException(status_code=401, detail="Unknown user")
    return ConversationContext.from_user(user)


ContextDep = Annotated[ConversationContext, Depends(get_context)]


def get_session_key(
    ctx: ContextDep,
    x_session_id: Annotated[str | None, Header()] = None,
) -> str:
    """Session keys are namespaced by caller so one user cannot address another's session."""
    if x_session_id:
        return f"user:{ctx.user_id}:{x_session_id}"
    return f"user:{ctx.user_id}"


SessionKeyDep = Annotated[str, Depends(get_session_key)]
