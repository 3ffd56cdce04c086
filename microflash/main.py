"""
MicroFlash API

FastAPI application hosting the scheduling core.

Lifespan:
    startup  -> configure logging, create tables, start the reminder scheduler
    shutdown -> stop the scheduler (waiting for an in-flight tick), close
                the push transport and the database engine
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from microflash.config import settings
from microflash.db.base import engine, init_db
from microflash.logging_config import setup_logging
from microflash.middleware.error_handling import setup_error_handling
from microflash.routers import health
from microflash.services.notifications.delivery import ExpoPushTransport
from microflash.services.notifications.orchestrator import NotificationOrchestrator
from microflash.services.scheduler import ReminderScheduler

logger = logging.getLogger(__name__)


def create_app(start_scheduler: bool = True, create_tables: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        start_scheduler: Run the reminder scheduler for the app's lifetime
        create_tables: Create missing tables on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(debug=settings.DEBUG)
        logger.info(f"Starting {settings.APP_NAME}")

        if create_tables:
            await init_db()

        transport: Optional[ExpoPushTransport] = None
        app.state.reminder_scheduler = None
        if start_scheduler:
            transport = ExpoPushTransport()
            app.state.reminder_scheduler = ReminderScheduler(NotificationOrchestrator(transport))
            app.state.reminder_scheduler.start()

        yield

        if app.state.reminder_scheduler is not None:
            await app.state.reminder_scheduler.stop()
        if transport is not None:
            await transport.close()
        await engine.dispose()
        logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(title=f"{settings.APP_NAME} API", lifespan=lifespan)
    setup_error_handling(app, debug=settings.DEBUG)
    app.include_router(health.router)
    return app


app = create_app()
