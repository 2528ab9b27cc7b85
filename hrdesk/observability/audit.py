"""Append-only audit service for proposals and executed actions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from hrdesk.storage.repository import DataStore, Entity


@dataclass(frozen=True, slots=True)
class AuditCtx:
    principal_id: str
    session_key: str


class AuditService:
    def __init__(self, store: DataStore) -> None:
        self._store = store

    async def emit(
        self,
        ctx: AuditCtx,
        event_type: str,
        event_name: str,
        payload: dict[str, Any],
        severity: str = "info",
    ) -> dict[str, Any]:
        ev = await self._store.create(
            Entity.AUDIT_EVENTS,
            {
                "principal_id": ctx.principal_id,
                "session_key": ctx.session_key,
                "event_type": event_type,
                "event_name": event_name,
                "severity": severity,
                "payload": payload,
            },
        )
        logger.debug(f"audit {event_type}.{event_name} principal={ctx.principal_id}")
        return ev

    async def history(self, session_key: str, limit: int = 50) -> list[dict[str, Any]]:
        return await self._store.list(
            Entity.AUDIT_EVENTS, session_key=session_key, order_by="-created_at", limit=limit
        )
