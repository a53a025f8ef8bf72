import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI

from helpdesk.api.routes import ping, tickets
from helpdesk.core.config import get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.services.postgres import PostgresPool
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.service import TicketService


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    postgres = PostgresPool.from_settings(settings)
    app.state.postgres = postgres
    app.state.ticket_service = None
    try:
        pool = await postgres.get_pool()
        service = TicketService(TicketRepository(pool), default_page_size=settings.default_page_size)
        await service.ensure_schema()
        app.state.ticket_service = service
    except (OSError, asyncpg.PostgresError) as exc:
        logger.error("Ticket service unavailable: %s", exc)
    try:
        yield
    finally:
        await postgres.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    logging.getLogger(__name__).debug("Application %s created", settings.app_name)
    return app


app = create_app()
