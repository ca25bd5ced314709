from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from zariya.core.settings import settings
from zariya.db.session import engine
from zariya.models.sequence_counter import SequenceCounter

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database health check failed", extra={"error": str(exc)})
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


async def _check_schema() -> dict[str, Any]:
    """The identifier counters must be readable, otherwise nothing can be created."""
    try:
        async with engine.connect() as conn:
            counters = (await conn.execute(select(func.count()).select_from(SequenceCounter))).scalar_one()
    except (SQLAlchemyError, OSError) as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", "counters": counters}


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks: dict[str, dict[str, Any]] = {"api": {"status": "ok", "version": APP_VERSION}}
    checks["database"] = await _check_db()
    # A missing table is only worth reporting when the database itself answers.
    if checks["database"]["status"] == "ok":
        checks["schema"] = await _check_schema()
    ready = all(check["status"] == "ok" for check in checks.values())
    return {
        "status": "ok" if ready else "degraded",
        "ready": ready,
        "environment": settings.environment,
        "reporting_timezone": settings.reporting_timezone,
        "version": APP_VERSION,
        "timestamp": _now(),
        "checks": checks,
    }


async def health_payload() -> dict[str, Any]:
    return await ready_payload()
