from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.db.retry import retry_read, store_errors
from zariya.models.sequence_counter import SequenceCounter
from zariya.models.types import utcnow
from zariya.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

MEMBERSHIP_SEQUENCE = "membership"
LOAN_APPLICATION_SEQUENCE = "loan_application"
LOAN_SEQUENCE = "loan"

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _upsert(db: AsyncSession, operation: str):
    dialect = db.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect]
    except KeyError as exc:
        # No atomic upsert on this store; read-then-write would hand out duplicates.
        raise StoreUnavailable(operation, details={"dialect": dialect}) from exc


async def next_value(db: AsyncSession, name: str) -> int:
    """Atomically increment counter ``name`` and return the new value.

    A single ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING`` statement, so
    concurrent callers never observe the same value. The increment belongs to
    the caller's transaction: rolling it back releases the number.
    """
    table = SequenceCounter.__table__
    now = utcnow()
    stmt = _upsert(db, "sequence.next_value")(table).values(name=name, value=1, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.name],
        set_={"value": table.c.value + 1, "updated_at": now},
    ).returning(table.c.value)
    with store_errors("sequence.next_value"):
        result = await db.execute(stmt)
    value = int(result.scalar_one())
    logger.debug("Sequence advanced", extra={"sequence": name, "value": value})
    return value


@retry_read
async def current_value(db: AsyncSession, name: str) -> int:
    with store_errors("sequence.current_value"):
        result = await db.execute(select(SequenceCounter.value).where(SequenceCounter.name == name))
    value = result.scalar_one_or_none()
    return int(value) if value is not None else 0


async def reset_to(db: AsyncSession, name: str, value: int = 0) -> None:
    """Maintenance only: force counter ``name`` to ``value``.

    Resetting below the highest issued number makes the next issuance collide
    with an existing identifier; request handlers never call this.
    """
    if value < 0:
        raise ValueError("Sequence value must be non-negative")
    table = SequenceCounter.__table__
    now = utcnow()
    stmt = _upsert(db, "sequence.reset_to")(table).values(name=name, value=value, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.name],
        set_={"value": value, "updated_at": now},
    )
    with store_errors("sequence.reset_to"):
        await db.execute(stmt)
    logger.warning("Sequence reset", extra={"sequence": name, "value": value})
