"""
FastAPI application factory.

Services are attached to ``app.state`` when the app is created so they
are available with or without the lifespan running; the lifespan only
prepares the webhook log table, runs the retry scheduler and releases
connections on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from matter_intake.api.dependencies import IntakeServices, build_services
from matter_intake.api.errors import register_exception_handlers
from matter_intake.api.routes import router

logger = logging.getLogger(__name__)


def create_app(services: Optional[IntakeServices] = None) -> FastAPI:
    """Create the HTTP application, wiring production services unless given."""
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init = getattr(services.log_store, "init", None)
        if init is not None:
            await init()
        if services.scheduler is not None:
            services.scheduler.start()
        logger.info("Matter intake service started")

        yield

        if services.scheduler is not None:
            await services.scheduler.stop()
        await services.dialogue.drain()
        await services.webhooks.aclose()
        close = getattr(services.log_store, "close", None)
        if close is not None:
            await close()
        logger.info("Matter intake service stopped")

    app = FastAPI(title="Matter Intake", version="1.0.0", lifespan=lifespan)
    app.state.services = services
    register_exception_handlers(app)
    app.include_router(router)
    return app
