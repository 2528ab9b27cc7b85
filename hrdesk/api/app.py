"""FastAPI application factory with lifespan for hrdesk."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from loguru import logger

from hrdesk import __version__
from hrdesk.agent.orchestrator import Orchestrator, build_orchestrator
from hrdesk.channels.email import LogNotifier, Notifier, WebhookNotifier
from hrdesk.config.loader import load_config
from hrdesk.runtime.session_lock import SessionLock
from hrdesk.session.manager import SessionManager
from hrdesk.settings import HRDeskSettings, get_settings
from hrdesk.storage.database import create_all_tables, dispose_engine, get_session_factory
from hrdesk.storage.repository import DataStore, SqlDataStore


@dataclass
class Container:
    """Long-lived collaborators shared by every request."""

    store: DataStore
    notifier: Notifier
    orchestrator: Orchestrator

    async def close(self) -> None:
        await self.orchestrator.lock.close()


def build_container(settings: HRDeskSettings | None = None) -> Container:
    s = settings or get_settings()
    config = load_config(s.config_path)
    store = SqlDataStore(get_session_factory(s))
    notifier: Notifier
    if s.email_webhook_url:
        notifier = WebhookNotifier(s.email_webhook_url, s.email_webhook_token, s.email_sender)
    else:
        notifier = LogNotifier()
    orchestrator = build_orchestrator(
        config,
        store,
        notifier,
        lock=SessionLock.from_url(s.redis_url, s.session_lock_ttl_seconds),
        sessions=SessionManager(s.state_dir / "transcripts", idle_ttl_seconds=s.session_idle_ttl_seconds),
        lock_timeout=s.session_lock_timeout_seconds,
    )
    return Container(store=store, notifier=notifier, orchestrator=orchestrator)


def create_app(container: Container | None = None) -> FastAPI:
    """Build the app.  A supplied *container* is used as-is and owns no database."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup: ensure DB schema and wire services. Shutdown: release them."""
        if container is not None:
            app.state.container = container
            yield
            return
        await create_all_tables()
        app.state.container = build_container(settings)
        logger.info(f"{settings.app_name} API ready ({len(app.state.container.orchestrator.router.providers)} provider(s))")
        try:
            yield
        finally:
            await app.state.container.close()
            await dispose_engine()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # ── mount routers ──
    from hrdesk.api.routes import chat, health, providers

    app.include_router(health.router)
    app.include_router(chat.router, prefix="/api/v1/chat", tags=["chat"])
    app.include_router(providers.router, prefix="/api/v1/llm", tags=["llm"])

    return app
