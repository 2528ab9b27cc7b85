"""Scoped reads from the data store, run only after a permission check passes."""

from __future__ import annotations

from collections import Counter
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from hrdesk.governance.scoping import candidate_in_scope
from hrdesk.nl.intent_engine import Intent, Scope
from hrdesk.session.manager import ConversationContext
from hrdesk.storage.repository import DataStore, Entity

_USER_FIELDS = ("id", "first_name", "last_name", "email", "role", "department", "position", "territory_id", "manager_id", "hire_date")

Reader = Callable[[Scope, ConversationContext], Awaitable[Any]]


def _name(row: dict[str, Any]) -> str:
    return f"{row.get('first_name', '')} {row.get('last_name', '')}".strip()


class DataAggregator:
    """Reads one bucket per data source.

    With ``Scope.SELF`` every record returned is keyed by the caller's own id;
    rows for anyone else are dropped even if the store returned them.
    """

    def __init__(self, store: DataStore, limit: int = 50):
        self.store = store
        self.limit = limit
        self._readers: dict[str, Reader] = {
            "pto": self._pto,
            "pto_balance": self._pto_balance,
            "employees": self._employees,
            "salary": self._salary,
            "candidates": self._candidates,
            "interviews": self._interviews,
            "territories": self._territories,
            "tools": self._tools,
            "contracts": self._contracts,
            "company_stats": self._company_stats,
        }

    async def collect(self, intent: Intent, ctx: ConversationContext) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for category in sorted(intent.data_sources):
            reader = self._readers.get(category)
            if reader is None:
                continue
            out[category] = await reader(intent.scope, ctx)
        logger.debug(f"Aggregated {sorted(out)} at {intent.scope.value} scope for {ctx.user_id}")
        return out

    # ── scoping helpers ──

    async def _people(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        if scope is Scope.SELF:
            me = await self.store.get(Entity.USERS, ctx.subject_id)
            return [me] if me else []
        if scope is Scope.TEAM:
            team = await self.store.list(Entity.USERS, manager_id=ctx.subject_id, is_active=True)
            me = await self.store.get(Entity.USERS, ctx.subject_id)
            return ([me] if me else []) + team
        if scope is Scope.DEPARTMENT:
            return await self.store.list(Entity.USERS, department=ctx.department, is_active=True)
        return await self.store.list(Entity.USERS, is_active=True)

    async def _people_ids(self, scope: Scope, ctx: ConversationContext) -> list[str] | None:
        if scope is Scope.COMPANY:
            return None
        if scope is Scope.SELF:
            return [ctx.subject_id]
        return [p["id"] for p in await self._people(scope, ctx)]

    @staticmethod
    def _only_self(rows: list[dict[str, Any]], key: str, ctx: ConversationContext, scope: Scope) -> list[dict[str, Any]]:
        if scope is not Scope.SELF:
            return rows
        return [r for r in rows if r.get(key) == ctx.subject_id]

    async def _by_employee(
        self, entity: Entity, scope: Scope, ctx: ConversationContext, order_by: str = "-created_at", **filters: Any
    ) -> list[dict[str, Any]]:
        ids = await self._people_ids(scope, ctx)
        if ids is not None:
            filters["employee_id__in"] = ids
        rows = await self.store.list(entity, order_by=order_by, limit=self.limit, **filters)
        return self._only_self(rows, "employee_id", ctx, scope)

    # ── readers ──

    async def _pto(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        rows = await self._by_employee(Entity.PTO_REQUESTS, scope, ctx)
        keep = ("id", "employee_id", "start_date", "end_date", "days", "status", "reason")
        return [{k: r.get(k) for k in keep} for r in rows]

    async def _pto_balance(self, scope: Scope, ctx: ConversationContext) -> Any:
        people = self._only_self(await self._people(scope, ctx), "id", ctx, scope)
        rows = [
            {
                "employee_id": p["id"],
                "name": _name(p),
                "pto_balance_days": p.get("pto_balance_days", 0.0),
                "pto_used_days": p.get("pto_used_days", 0.0),
            }
            for p in people
        ]
        if scope is Scope.SELF:
            return rows[0] if rows else None
        return rows

    async def _employees(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        people = self._only_self(await self._people(scope, ctx), "id", ctx, scope)
        return [{k: p.get(k) for k in _USER_FIELDS} for p in people[: self.limit]]

    async def _salary(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        people = self._only_self(await self._people(scope, ctx), "id", ctx, scope)
        return [{"employee_id": p["id"], "name": _name(p), "salary": p.get("salary")} for p in people[: self.limit]]

    async def _candidates(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        if scope is Scope.SELF:
            return []
        if scope is Scope.COMPANY:
            rows = await self.store.list(Entity.CANDIDATES, order_by="-created_at", limit=self.limit)
        else:
            # same ownership rule the action handlers enforce
            rows = [
                r for r in await self.store.list(Entity.CANDIDATES, order_by="-created_at")
                if candidate_in_scope(ctx.user_id, scope, r)
            ][: self.limit]
        keep = ("id", "first_name", "last_name", "position", "status", "stage")
        return [{k: r.get(k) for k in keep} for r in rows]

    async def _interviews(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        if scope is Scope.SELF:
            return []
        candidate_ids = [c["id"] for c in await self._candidates(scope, ctx)]
        if not candidate_ids:
            return []
        return await self.store.list(
            Entity.INTERVIEWS, candidate_id__in=candidate_ids, order_by="scheduled_at", limit=self.limit
        )

    async def _territories(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        if scope is Scope.COMPANY:
            return await self.store.list(Entity.TERRITORIES)
        if scope is Scope.TEAM:
            managed = await self.store.list(Entity.TERRITORIES, sales_manager_id=ctx.user_id)
            if managed:
                return managed
        if ctx.territory_id:
            own = await self.store.get(Entity.TERRITORIES, ctx.territory_id)
            return [own] if own else []
        return []

    async def _tools(self, scope: Scope, ctx: ConversationContext) -> dict[str, Any]:
        assignments = await self._by_employee(Entity.TOOL_ASSIGNMENTS, scope, ctx, order_by="-assigned_at", status="ASSIGNED")
        tools = {t["id"]: t for t in await self.store.list(Entity.TOOLS)}
        assigned = [
            {
                "assignment_id": a["id"],
                "employee_id": a["employee_id"],
                "tool": tools.get(a["tool_id"], {}).get("name"),
                "condition": a.get("condition"),
            }
            for a in assignments
        ]
        out: dict[str, Any] = {"assigned": assigned}
        if scope is not Scope.SELF:
            out["inventory"] = [
                {"id": t["id"], "name": t["name"], "available": t.get("available_quantity"), "total": t.get("total_quantity")}
                for t in tools.values()
            ]
        return out

    async def _contracts(self, scope: Scope, ctx: ConversationContext) -> list[dict[str, Any]]:
        rows = await self._by_employee(Entity.CONTRACTS, scope, ctx)
        keep = ("id", "employee_id", "title", "status")
        return [{k: r.get(k) for k in keep} for r in rows]

    async def _company_stats(self, scope: Scope, ctx: ConversationContext) -> dict[str, Any]:
        if scope is Scope.SELF:
            return {}
        people = await self._people(scope, ctx)
        pending = await self.store.list(Entity.PTO_REQUESTS, status="PENDING")
        if scope is not Scope.COMPANY:
            ids = {p["id"] for p in people}
            pending = [r for r in pending if r.get("employee_id") in ids]
        candidates = await self.store.list(Entity.CANDIDATES)
        tools = await self.store.list(Entity.TOOLS)
        return {
            "headcount": len(people),
            "by_department": dict(Counter(str(p.get("department") or "Unassigned") for p in people)),
            "pending_pto_requests": len(pending),
            "candidates_by_status": dict(Counter(str(c.get("status")) for c in candidates)),
            "tools_available": sum(int(t.get("available_quantity") or 0) for t in tools),
        }
