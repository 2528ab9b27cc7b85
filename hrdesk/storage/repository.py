"""Entity-keyed data store on top of SQLAlchemy async sessions.

The orchestrator only ever talks to a ``DataStore``: get/list/create/update
per entity plus a ``transaction()`` context that groups several writes into
one unit.  Records travel as plain dicts so the in-memory store and the SQL
store are interchangeable.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrdesk.storage.models import (
    AuditEvent,
    Base,
    Candidate,
    Contract,
    Interview,
    PtoRequest,
    Territory,
    Tool,
    ToolAssignment,
    User,
)


class Entity(str, Enum):
    USERS = "users"
    CANDIDATES = "candidates"
    INTERVIEWS = "interviews"
    PTO_REQUESTS = "pto_requests"
    TERRITORIES = "territories"
    TOOLS = "tools"
    TOOL_ASSIGNMENTS = "tool_assignments"
    CONTRACTS = "contracts"
    AUDIT_EVENTS = "audit_events"


class UnknownField(ValueError):
    """Raised when a filter or order key names a column the entity lacks."""


@runtime_checkable
class DataStore(Protocol):
    async def get(self, entity: Entity, record_id: str) -> dict[str, Any] | None: ...

    async def list(
        self,
        entity: Entity,
        *,
        order_by: str | None = None,
        limit: int | None = None,
        **filters: Any,
    ) -> list[dict[str, Any]]: ...

    async def create(self, entity: Entity, values: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, entity: Entity, record_id: str, values: dict[str, Any]) -> dict[str, Any] | None: ...

    def transaction(self) -> Any: ...


def split_filter(key: str) -> tuple[str, str]:
    """``"status__in"`` -> ``("status", "in")``; plain keys use ``"eq"``."""
    if key.endswith("__in"):
        return key[: -len("__in")], "in"
    return key, "eq"


# ── SQL store ────────────────────────────────────────────────────────────


MODELS: dict[Entity, type[Base]] = {
    Entity.USERS: User,
    Entity.CANDIDATES: Candidate,
    Entity.INTERVIEWS: Interview,
    Entity.PTO_REQUESTS: PtoRequest,
    Entity.TERRITORIES: Territory,
    Entity.TOOLS: Tool,
    Entity.TOOL_ASSIGNMENTS: ToolAssignment,
    Entity.CONTRACTS: Contract,
    Entity.AUDIT_EVENTS: AuditEvent,
}


def _to_dict(obj: Base) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in obj.__mapper__.column_attrs}


def _column(model: type[Base], name: str):
    col = model.__table__.columns.get(name)
    if col is None:
        raise UnknownField(f"{model.__tablename__} has no column {name!r}")
    return col


class SqlDataStore:
    """DataStore backed by an async session factory.

    Outside ``transaction()`` every call runs in its own session and commits
    immediately.  Inside, calls share one session that commits on exit and
    rolls back if the block raises.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory
        self._active: ContextVar[AsyncSession | None] = ContextVar("hrdesk_sql_tx", default=None)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        active = self._active.get()
        if active is not None:
            yield active
            return
        async with self._factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._active.get() is not None:
            # nested blocks join the outer unit
            yield
            return
        async with self._factory() as s:
            token = self._active.set(s)
            try:
                yield
                await s.commit()
            except Exception:
                await s.rollback()
                raise
            finally:
                self._active.reset(token)

    async def get(self, entity: Entity, record_id: str) -> dict[str, Any] | None:
        model = MODELS[Entity(entity)]
        async with self._session() as s:
            obj = await s.get(model, record_id)
            return _to_dict(obj) if obj is not None else None

    async def list(
        self,
        entity: Entity,
        *,
        order_by: str | None = None,
        limit: int | None = None,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        model = MODELS[Entity(entity)]
        stmt = select(model)
        for key, value in filters.items():
            name, op = split_filter(key)
            col = _column(model, name)
            stmt = stmt.where(col.in_(list(value)) if op == "in" else col == value)
        if order_by:
            desc = order_by.startswith("-")
            col = _column(model, order_by.lstrip("-"))
            stmt = stmt.order_by(col.desc() if desc else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as s:
            return [_to_dict(o) for o in await s.scalars(stmt)]

    async def create(self, entity: Entity, values: dict[str, Any]) -> dict[str, Any]:
        model = MODELS[Entity(entity)]
        for key in values:
            _column(model, key)
        async with self._session() as s:
            obj = model(**values)
            s.add(obj)
            await s.flush()
            return _to_dict(obj)

    async def update(self, entity: Entity, record_id: str, values: dict[str, Any]) -> dict[str, Any] | None:
        model = MODELS[Entity(entity)]
        async with self._session() as s:
            obj = await s.get(model, record_id)
            if obj is None:
                return None
            for key, value in values.items():
                _column(model, key)
                setattr(obj, key, value)
            await s.flush()
            return _to_dict(obj)
