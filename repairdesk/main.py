import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from repairdesk.api.routes import ping, repairs
from repairdesk.core.config import get_settings
from repairdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from repairdesk.middleware import RBACMiddleware
from repairdesk.notifications import LoggingNotificationDispatcher
from repairdesk.tickets.repository import TicketRepository
from repairdesk.tickets.service import TicketService

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    app.state.notifier = LoggingNotificationDispatcher()

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    repository = TicketRepository(session_factory, engine=db_engine)
    service = TicketService(repository)
    try:
        if settings.create_schema_on_startup:
            await service.ensure_schema()
    except Exception:
        logger.exception("Could not prepare the ticket schema; ticket routes are disabled")
        app.state.ticket_service = None
    else:
        app.state.ticket_service = service
    app.state.db_engine = db_engine
    try:
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(repairs.router)
    return app


app = create_app()
