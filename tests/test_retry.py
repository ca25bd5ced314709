import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from zariya.db.retry import retry_read, store_errors
from zariya.services import sequences
from zariya.services.errors import StoreUnavailable


class FakeSession:
    def __init__(self) -> None:
        self.rollbacks = 0

    async def rollback(self) -> None:
        self.rollbacks += 1


def _dropped_connection() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))


def test_store_errors_translates_connectivity_failures() -> None:
    with pytest.raises(StoreUnavailable) as exc_info:
        with store_errors("loan.load"):
            raise _dropped_connection()

    assert exc_info.value.operation == "loan.load"
    assert exc_info.value.details == {"error": "OperationalError"}
    assert isinstance(exc_info.value.__cause__, OperationalError)


def test_store_errors_leaves_constraint_violations_alone() -> None:
    with pytest.raises(IntegrityError):
        with store_errors("repayment.post"):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))


@pytest.mark.asyncio
async def test_retry_read_recovers_from_transient_failures() -> None:
    calls = []

    @retry_read
    async def read(db, value):
        calls.append(value)
        if len(calls) < 3:
            raise StoreUnavailable("test.read")
        return value * 2

    db = FakeSession()
    assert await read(db, 21) == 42
    assert len(calls) == 3
    assert db.rollbacks == 2


@pytest.mark.asyncio
async def test_retry_read_gives_up_after_configured_attempts() -> None:
    calls = []

    @retry_read
    async def read(db):
        calls.append(1)
        raise StoreUnavailable("test.read")

    with pytest.raises(StoreUnavailable):
        await read(FakeSession())
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_read_does_not_retry_business_errors() -> None:
    calls = []

    @retry_read
    async def read(db):
        calls.append(1)
        raise LookupError("missing")

    with pytest.raises(LookupError):
        await read(FakeSession())
    assert calls == [1]


@pytest.mark.asyncio
async def test_sequence_issuance_is_not_retried(db, monkeypatch) -> None:
    calls = []

    async def failing_execute(*args, **kwargs):
        calls.append(1)
        raise _dropped_connection()

    monkeypatch.setattr(db, "execute", failing_execute)

    with pytest.raises(StoreUnavailable):
        await sequences.next_value(db, sequences.LOAN_SEQUENCE)
    assert calls == [1]
