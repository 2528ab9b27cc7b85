import asyncio

import pytest
from conftest import FixedClock, ScriptedProvider
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from hrdesk.agent.orchestrator import build_orchestrator
from hrdesk.channels.email import LogNotifier
from hrdesk.config.schema import Config
from hrdesk.session.manager import ConversationContext
from hrdesk.storage.database import create_all_tables
from hrdesk.storage.memory import MemoryDataStore, seed_demo
from hrdesk.storage.repository import Entity, SqlDataStore, UnknownField


def _run_with_store(tmp_path, scenario):
    async def run():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hrdesk.db'}")
        try:
            await create_all_tables(engine)
            store = SqlDataStore(async_sessionmaker(bind=engine, expire_on_commit=False))
            await seed_demo(store)
            return await scenario(store)
        finally:
            await engine.dispose()

    return asyncio.run(run())


def test_crud_and_filters(tmp_path) -> None:
    async def scenario(store: SqlDataStore):
        created = await store.create(Entity.PTO_REQUESTS, {
            "employee_id": "u-emp", "start_date": "2027-01-04", "end_date": "2027-01-05", "days": 2.0,
        })
        assert created["id"] and created["status"] == "PENDING"
        assert created["created_at"] is not None

        pending = await store.list(Entity.PTO_REQUESTS, employee_id="u-emp", status="PENDING", order_by="start_date")
        assert [r["start_date"] for r in pending] == ["2026-12-21", "2027-01-04"]

        sales = await store.list(Entity.USERS, id__in=["u-emp", "u-sarah", "u-admin"], department="Sales")
        assert {u["id"] for u in sales} == {"u-emp", "u-sarah"}

        newest = await store.list(Entity.PTO_REQUESTS, order_by="-start_date", limit=1)
        assert newest[0]["id"] == created["id"]

        updated = await store.update(Entity.PTO_REQUESTS, "123", {"status": "APPROVED"})
        assert updated["status"] == "APPROVED"
        assert (await store.get(Entity.PTO_REQUESTS, "123"))["status"] == "APPROVED"
        assert await store.update(Entity.PTO_REQUESTS, "missing", {"status": "APPROVED"}) is None
        assert await store.get(Entity.USERS, "missing") is None

    _run_with_store(tmp_path, scenario)


def test_unknown_fields_are_rejected(tmp_path) -> None:
    async def scenario(store: SqlDataStore):
        with pytest.raises(UnknownField):
            await store.list(Entity.USERS, favourite_colour="blue")
        with pytest.raises(UnknownField):
            await store.create(Entity.TOOLS, {"name": "Drill", "sparkle": True})

    _run_with_store(tmp_path, scenario)


def test_transaction_rolls_back_every_write(tmp_path) -> None:
    async def scenario(store: SqlDataStore):
        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.update(Entity.TOOLS, "tool-1", {"available_quantity": 1})
                await store.create(Entity.TOOL_ASSIGNMENTS, {"tool_id": "tool-1", "employee_id": "u-emp"})
                raise RuntimeError("downstream failure")

        assert (await store.get(Entity.TOOLS, "tool-1"))["available_quantity"] == 2
        assert await store.list(Entity.TOOL_ASSIGNMENTS) == []

        async with store.transaction():
            await store.update(Entity.TOOLS, "tool-1", {"available_quantity": 1})
        assert (await store.get(Entity.TOOLS, "tool-1"))["available_quantity"] == 1

    _run_with_store(tmp_path, scenario)


def test_approval_flow_against_sql(tmp_path) -> None:
    notifier = LogNotifier()

    async def scenario(store: SqlDataStore):
        orchestrator = build_orchestrator(
            Config(), store, notifier, providers=[ScriptedProvider()], clock=FixedClock()
        )
        manager = ConversationContext.from_user(await store.get(Entity.USERS, "u-manager"))

        reply = await orchestrator.handle_message("s-sql", manager, "Approve PTO request #123")
        result = await orchestrator.confirm("s-sql", manager, "approve_pto", proposal_id=reply.proposal_id)

        assert result.success
        row = await store.get(Entity.PTO_REQUESTS, "123")
        assert (row["status"], row["reviewed_by"]) == ("APPROVED", "u-manager")
        events = await orchestrator.audit.history("s-sql")
        assert {e["event_name"] for e in events} == {"created", "executed"}

    _run_with_store(tmp_path, scenario)
    assert notifier.sent[0]["to"] == "sarah@example.com"


def test_memory_store_matches_sql_filter_semantics() -> None:
    async def scenario():
        store = MemoryDataStore()
        await seed_demo(store)
        return await store.list(Entity.USERS, id__in=["u-emp", "u-sarah", "u-admin"], department="Sales")

    assert {u["id"] for u in asyncio.run(scenario())} == {"u-emp", "u-sarah"}
