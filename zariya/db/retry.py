from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from zariya.core.settings import settings
from zariya.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Connectivity failures; constraint and version conflicts are not in this list.
TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver connectivity failures raised inside the block into StoreUnavailable."""
    try:
        yield
    except TRANSIENT_STORE_ERRORS as exc:
        raise StoreUnavailable(operation, details={"error": type(exc).__name__}) from exc


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying read after store failure",
        extra={
            "operation": getattr(exc, "operation", None),
            "attempt": retry_state.attempt_number,
        },
    )


def retry_read(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Retry a read-only service call on StoreUnavailable with exponential backoff.

    The wrapped coroutine must take the session as its first argument. The
    session is rolled back between attempts so the retry starts on a fresh
    connection. Writes are never decorated with this.
    """

    @functools.wraps(fn)
    async def wrapper(db: AsyncSession, *args: Any, **kwargs: Any) -> T:
        async def attempt() -> T:
            try:
                return await fn(db, *args, **kwargs)
            except StoreUnavailable:
                try:
                    await db.rollback()
                except SQLAlchemyError:
                    logger.warning("Rollback after store failure also failed", exc_info=True)
                raise

        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.read_retry_attempts),
            wait=wait_exponential(multiplier=settings.read_retry_backoff_seconds, max=5),
            retry=retry_if_exception_type(StoreUnavailable),
            before_sleep=_log_retry,
            reraise=True,
        )
        return await retrying(attempt)

    return wrapper


async def flush(db: AsyncSession, operation: str) -> None:
    with store_errors(operation):
        await db.flush()


async def commit(db: AsyncSession, operation: str) -> None:
    with store_errors(operation):
        await db.commit()
