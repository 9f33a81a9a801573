from contextlib import asynccontextmanager

from fastapi import FastAPI

from ticketdesk.api.routes import diagnostics, ping, tickets
from ticketdesk.core.config import Settings, get_settings
from ticketdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from ticketdesk.services.postgres import PostgresStore
from ticketdesk.tickets.ledger import TicketLedger
from ticketdesk.tickets.repository import TicketRepository
from ticketdesk.tickets.service import TicketService
from ticketdesk.tickets.sla import SLACalculator, SLAPolicy


def build_store(settings: Settings) -> PostgresStore:
    return PostgresStore(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
    )


def build_ticket_service(settings: Settings, store: PostgresStore) -> TicketService:
    """Wire the repository, ledger and SLA policy around one store."""

    repository = TicketRepository(store)
    policy = SLAPolicy(
        tta_hours=settings.sla_tta_hours,
        ttt_hours=settings.sla_ttt_hours,
        ttr_hours=settings.sla_ttr_hours,
        ttl_hours=settings.sla_ttl_hours,
        approaching_ratio=settings.sla_approaching_ratio,
    )
    return TicketService(
        repository,
        ledger=TicketLedger(repository),
        sla=SLACalculator(policy),
        schema_check=store.check_tables_exist,
        required_tables=settings.required_tables,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    store = build_store(settings)
    if not settings.database_url:
        logger.warning("DATABASE_URL is not set; ticket operations will fail until it is configured")
    service = build_ticket_service(settings, store)
    if settings.db_auto_create_schema:
        await service.ensure_schema()

    app.state.store = store
    app.state.ticket_service = service
    logger.info("Ticketdesk started (environment=%s)", settings.environment)
    try:
        yield
    finally:
        await store.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(diagnostics.router)
    app.include_router(tickets.router)
    return app


app = create_app()
