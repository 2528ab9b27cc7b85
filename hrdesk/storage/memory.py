"""In-process DataStore used by the test-suite and ``hrdesk chat --demo``."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from hrdesk.storage.repository import DataStore, Entity, split_filter
from hrdesk.utils.helpers import new_id, utcnow

# Columns that get a timestamp when a record is created without one.
_STAMPED = {
    Entity.USERS: "created_at",
    Entity.CANDIDATES: "created_at",
    Entity.INTERVIEWS: "created_at",
    Entity.PTO_REQUESTS: "created_at",
    Entity.CONTRACTS: "created_at",
    Entity.AUDIT_EVENTS: "created_at",
    Entity.TOOL_ASSIGNMENTS: "assigned_at",
}


class MemoryDataStore:
    """Dict-of-dicts store with snapshot rollback for ``transaction()``."""

    def __init__(self) -> None:
        self._tables: dict[Entity, dict[str, dict[str, Any]]] = {e: {} for e in Entity}
        self._tx_lock = asyncio.Lock()
        self._depth = 0
        self.fail_on: set[tuple[Entity, str]] = set()

    # ── test hooks ──

    def _check(self, entity: Entity, op: str) -> None:
        if (entity, op) in self.fail_on:
            raise RuntimeError(f"simulated {op} failure on {entity.value}")

    def count(self, entity: Entity) -> int:
        return len(self._tables[Entity(entity)])

    # ── DataStore ──

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._depth:
            yield
            return
        async with self._tx_lock:
            snapshot = copy.deepcopy(self._tables)
            self._depth += 1
            try:
                yield
            except Exception:
                self._tables = snapshot
                logger.debug("memory store: transaction rolled back")
                raise
            finally:
                self._depth -= 1

    async def get(self, entity: Entity, record_id: str) -> dict[str, Any] | None:
        entity = Entity(entity)
        self._check(entity, "get")
        row = self._tables[entity].get(str(record_id))
        return dict(row) if row is not None else None

    async def list(
        self,
        entity: Entity,
        *,
        order_by: str | None = None,
        limit: int | None = None,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        entity = Entity(entity)
        self._check(entity, "list")
        rows = [dict(r) for r in self._tables[entity].values() if _matches(r, filters)]
        if order_by:
            key = order_by.lstrip("-")
            rows.sort(key=lambda r: (r.get(key) is None, r.get(key)), reverse=order_by.startswith("-"))
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def create(self, entity: Entity, values: dict[str, Any]) -> dict[str, Any]:
        entity = Entity(entity)
        self._check(entity, "create")
        row = dict(values)
        row.setdefault("id", new_id())
        row["id"] = str(row["id"])
        stamp = _STAMPED.get(entity)
        if stamp:
            row.setdefault(stamp, utcnow())
        self._tables[entity][row["id"]] = row
        return dict(row)

    async def update(self, entity: Entity, record_id: str, values: dict[str, Any]) -> dict[str, Any] | None:
        entity = Entity(entity)
        self._check(entity, "update")
        row = self._tables[entity].get(str(record_id))
        if row is None:
            return None
        row.update(values)
        return dict(row)


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    for key, value in filters.items():
        name, op = split_filter(key)
        if op == "in":
            if row.get(name) not in set(value):
                return False
        elif row.get(name) != value:
            return False
    return True


async def seed_demo(store: DataStore) -> dict[str, str]:
    """Populate a small company; returns the ids of the named users."""
    ids: dict[str, str] = {}

    async def user(key: str, **values: Any) -> None:
        row = await store.create(Entity.USERS, {"id": key, "is_active": True, **values})
        ids[key] = row["id"]

    await store.create(Entity.TERRITORIES, {"id": "t-north", "name": "North", "region": "Midwest"})
    await user(
        "u-admin", first_name="Alex", last_name="Admin", email="alex@example.com",
        role="HR_ADMIN", department="HR", position="HR Director",
        pto_balance_days=20.0, pto_used_days=2.0, salary=120000.0,
    )
    await user(
        "u-manager", first_name="Morgan", last_name="Lee", email="morgan@example.com",
        role="MANAGER", department="Sales", position="Sales Manager", territory_id="t-north",
        manager_id="u-admin", pto_balance_days=15.0, pto_used_days=5.0, salary=95000.0,
    )
    await user(
        "u-emp", first_name="Jamie", last_name="Park", email="jamie@example.com",
        role="EMPLOYEE", department="Sales", position="Sales Rep", territory_id="t-north",
        manager_id="u-manager", pto_balance_days=12.5, pto_used_days=3.0, salary=60000.0,
    )
    await user(
        "u-sarah", first_name="Sarah", last_name="Chen", email="sarah@example.com",
        role="EMPLOYEE", department="Sales", position="Field Tech", territory_id="t-north",
        manager_id="u-manager", pto_balance_days=9.0, pto_used_days=6.0, salary=58000.0,
    )
    await store.create(Entity.PTO_REQUESTS, {
        "id": "123", "employee_id": "u-sarah", "start_date": "2026-11-02",
        "end_date": "2026-11-04", "days": 3.0, "reason": "Family trip", "status": "PENDING",
    })
    await store.create(Entity.PTO_REQUESTS, {
        "id": "124", "employee_id": "u-emp", "start_date": "2026-12-21",
        "end_date": "2026-12-23", "days": 3.0, "reason": "Holidays", "status": "PENDING",
    })
    await store.create(Entity.CANDIDATES, {
        "id": "c-1", "first_name": "Taylor", "last_name": "Reed", "email": "taylor@example.com",
        "position": "Sales Rep", "status": "APPLIED", "stage": "Application Review",
        "assigned_to": "u-admin",
    })
    await store.create(Entity.TOOLS, {
        "id": "tool-1", "name": "Laptop", "category": "IT",
        "total_quantity": 5, "available_quantity": 2, "condition": "GOOD",
    })
    logger.info(f"Seeded demo store with {len(ids)} users")
    return ids
