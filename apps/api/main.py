from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from apps.api.api.routes import employees, metrics, ping, tickets
from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.middleware import RBACMiddleware
from apps.api.notifications import (
    LoggingNotificationBridge,
    NotificationDispatcher,
    WebhookNotificationBridge,
)
from apps.api.storage import LocalPhotoStorage
from apps.api.tickets.engine import EngineOptions, LifecycleEngine
from apps.api.tickets.errors import TicketError
from apps.api.tickets.state import TicketStateMachine
from apps.api.tickets.stats import StatsAggregator


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def _build_bridge(settings: Settings):
    if settings.notification_webhook_url:
        return WebhookNotificationBridge(settings.notification_webhook_url, timeout=settings.notification_timeout)
    return LoggingNotificationBridge()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    if settings.create_schema_on_startup:
        async with db_engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    bridge = _build_bridge(settings)
    dispatcher = NotificationDispatcher(bridge)
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory
    app.state.notification_dispatcher = dispatcher
    app.state.lifecycle_engine = LifecycleEngine(
        session_factory,
        state_machine=TicketStateMachine(strict=settings.strict_transitions),
        dispatcher=dispatcher,
        photo_storage=LocalPhotoStorage(settings.photo_storage_dir),
        options=EngineOptions.from_settings(settings),
    )
    app.state.stats_aggregator = StatsAggregator(
        session_factory, recent_limit=settings.recent_interactions_limit
    )
    logger.info("%s started in %s mode", settings.app_name, settings.environment)
    try:
        yield
    finally:
        await dispatcher.drain()
        if isinstance(bridge, WebhookNotificationBridge):
            await bridge.close()
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


async def ticket_error_handler(request: Request, exc: TicketError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.add_exception_handler(TicketError, ticket_error_handler)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(tickets.router)
    app.include_router(employees.router)
    return app


app = create_app()
