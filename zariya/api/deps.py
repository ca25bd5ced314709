from dataclasses import dataclass

from fastapi import Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.core.context import set_actor_id
from zariya.db.session import get_db


@dataclass(slots=True)
class PageParams:
    offset: int
    limit: int


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_actor_id(actor_id: str | None = Header(default=None, alias="X-Actor-Id")) -> str | None:
    """Opaque caller identity forwarded by the gateway; authentication happens upstream."""
    cleaned = (actor_id or "").strip() or None
    if cleaned:
        set_actor_id(cleaned)
    return cleaned


def page_params(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PageParams:
    return PageParams(offset=offset, limit=limit)
