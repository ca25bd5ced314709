from fastapi import APIRouter

from zariya.core.limiter import limiter
from zariya.core.health import health_payload, live_payload, ready_payload

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready() -> dict:
    return await ready_payload()


@router.get("/health", summary="Readiness check")
@limiter.exempt
async def read_health() -> dict:
    return await health_payload()
