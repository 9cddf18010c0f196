from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)

from .api.health import router as health_router
from .api.ledger import router as ledger_router
from .events import LedgerCheckpointPublisher
from .locking import SyncLock
from .models import Base
from .orchestrator import LedgerSyncOrchestrator
from .report_client import ReportsClient

SERVICE_NAME = "Ledger Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./ledger_service.db"


def build_reports_client(
    settings: ServiceSettings,
    publisher: LedgerCheckpointPublisher,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReportsClient:
    """Create the upstream report API client from settings."""

    http_client = httpx.AsyncClient(
        base_url=settings.reports_api_url,
        timeout=settings.report_request_timeout_seconds,
        transport=transport,
    )
    return ReportsClient(
        client=http_client,
        marketplace_id=settings.marketplace_id,
        access_token=settings.reports_api_access_token,
        publisher=publisher,
    )


def create_app(
    settings: ServiceSettings | None = None,
    *,
    reports_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create the Ledger Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)
    redis_client = resolve_redis(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reports_client: ReportsClient | None = None
        app.state.session_factory = session_factory
        try:
            await create_schema(database_url, Base.metadata)
            publisher = LedgerCheckpointPublisher()
            reports_client = build_reports_client(
                resolved_settings, publisher, transport=reports_transport
            )
            app.state.checkpoint_publisher = publisher
            app.state.reports_client = reports_client
            app.state.orchestrator = LedgerSyncOrchestrator(
                client=reports_client,
                session_factory=session_factory,
                publisher=publisher,
                lock=SyncLock(redis_client, ttl_seconds=resolved_settings.sync_lock_ttl_seconds),
                max_wait=resolved_settings.report_max_wait_seconds,
                poll_interval=resolved_settings.report_poll_interval_seconds,
                claimable_after_days=resolved_settings.claimable_after_days,
            )
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.checkpoint_publisher = None
            app.state.reports_client = None
            app.state.orchestrator = None
            if reports_client is not None:
                await reports_client.close()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(ledger_router)
    return app


app = create_app()
