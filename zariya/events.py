import logging

from fastapi import FastAPI

from zariya.core.settings import settings
from zariya.db.session import engine

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "Application startup",
            extra={
                "environment": settings.environment,
                "loan_initial_status": settings.loan_initial_status,
                "reporting_timezone": settings.reporting_timezone,
            },
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        await engine.dispose()
