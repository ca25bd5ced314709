import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import open_loan
from zariya.models.repayment import Repayment
from zariya.services import loans, repayments
from zariya.services.errors import DuplicateRecord, InvalidAmount, InvalidLoanState, OverPayment


async def _post(factory, loan_id, amount, **kwargs):
    kwargs.setdefault("payment_method", "cash")
    kwargs.setdefault("recorded_by", "agent-1")
    async with factory() as db:
        repayment = await repayments.post_repayment(db, loan_id, amount=amount, **kwargs)
        await db.commit()
        return repayment


async def _loan(factory, loan_id):
    async with factory() as db:
        return await loans.get_loan(db, loan_id)


@pytest.mark.asyncio
async def test_full_repayment_scenario(session_factory) -> None:
    loan = await open_loan(session_factory, amount="10000.00")
    assert loan.status == "approved"

    first = await _post(session_factory, loan.id, "500")
    loan = await _loan(session_factory, loan.id)
    assert first.sequence_no == 1
    assert loan.status == "active"
    assert loan.remaining_amount == Decimal("9500.00")
    assert loan.activated_at is not None

    for _ in range(19):
        await _post(session_factory, loan.id, "500.00", payment_method="upi")

    loan = await _loan(session_factory, loan.id)
    assert loan.remaining_amount == Decimal("0.00")
    assert loan.status == "closed"
    assert loan.closed_at is not None
    assert loan.posting_count == 20

    with pytest.raises(InvalidLoanState):
        await _post(session_factory, loan.id, "1")


@pytest.mark.asyncio
async def test_overpayment_leaves_balance_unchanged(session_factory) -> None:
    loan = await open_loan(session_factory, amount="1000.00")
    await _post(session_factory, loan.id, "400")

    with pytest.raises(OverPayment) as exc_info:
        await _post(session_factory, loan.id, "600.01")

    assert exc_info.value.details == {"remaining": "600.00", "attempted": "600.01"}
    loan = await _loan(session_factory, loan.id)
    assert loan.remaining_amount == Decimal("600.00")
    assert loan.posting_count == 1


@pytest.mark.asyncio
async def test_late_fee_is_recorded_but_never_reduces_balance(session_factory) -> None:
    loan = await open_loan(session_factory, amount="1000.00")

    fee = await _post(session_factory, loan.id, "2500", is_late_fee=True)

    loan = await _loan(session_factory, loan.id)
    assert fee.is_late_fee is True
    assert loan.remaining_amount == Decimal("1000.00")
    assert loan.status == "approved"
    assert loan.posting_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-5", "10.001", "NaN", "abc"])
async def test_invalid_amounts(session_factory, amount) -> None:
    loan = await open_loan(session_factory, amount="1000.00")

    with pytest.raises(InvalidAmount):
        await _post(session_factory, loan.id, amount)


@pytest.mark.asyncio
async def test_pending_loan_refuses_postings(session_factory, loan_status) -> None:
    loan_status("pending")
    loan = await open_loan(session_factory)

    with pytest.raises(InvalidLoanState):
        await _post(session_factory, loan.id, "100")


@pytest.mark.asyncio
async def test_idempotency_key_returns_original_posting(session_factory) -> None:
    loan = await open_loan(session_factory, amount="1000.00")

    first = await _post(session_factory, loan.id, "100", idempotency_key="receipt-0001")
    again = await _post(session_factory, loan.id, "100", idempotency_key="receipt-0001")

    assert again.id == first.id
    loan = await _loan(session_factory, loan.id)
    assert loan.remaining_amount == Decimal("900.00")
    assert loan.posting_count == 1


@pytest.mark.asyncio
async def test_idempotency_key_cannot_be_reused_for_a_different_posting(session_factory) -> None:
    loan = await open_loan(session_factory, amount="1000.00")
    first = await _post(session_factory, loan.id, "100", idempotency_key="receipt-0002")

    with pytest.raises(DuplicateRecord) as exc_info:
        await _post(session_factory, loan.id, "150", payment_method="upi", idempotency_key="receipt-0002")
    assert exc_info.value.details["fields"] == ["amount", "payment_method"]
    assert exc_info.value.details["repayment_id"] == str(first.id)

    with pytest.raises(DuplicateRecord):
        await _post(session_factory, loan.id, "100", is_late_fee=True, idempotency_key="receipt-0002")

    loan = await _loan(session_factory, loan.id)
    assert loan.remaining_amount == Decimal("900.00")
    assert loan.posting_count == 1


@pytest.mark.asyncio
async def test_record_repayment_flags_replays(session_factory) -> None:
    loan = await open_loan(session_factory, amount="300.00")
    async with session_factory() as db:
        posting = await repayments.record_repayment(
            db, loan.id, amount="300", payment_method="cash", recorded_by="agent-1", idempotency_key="close-0002"
        )
        await db.commit()
    assert posting.replayed is False
    assert posting.closed_loan is True

    async with session_factory() as db:
        replay = await repayments.record_repayment(
            db, loan.id, amount="300", payment_method="cash", recorded_by="agent-1", idempotency_key="close-0002"
        )
    assert replay.replayed is True
    assert replay.repayment.id == posting.repayment.id
    assert replay.loan.status == "closed"
    assert replay.closed_loan is False


@pytest.mark.asyncio
async def test_concurrent_postings_conserve_balance(session_factory) -> None:
    loan = await open_loan(session_factory, amount="1000.00")

    results = await asyncio.gather(
        *(_post(session_factory, loan.id, "100") for _ in range(5)), return_exceptions=True
    )

    assert [r for r in results if isinstance(r, Exception)] == []
    loan = await _loan(session_factory, loan.id)
    assert loan.remaining_amount == Decimal("500.00")
    assert loan.posting_count == 5
    assert sorted(r.sequence_no for r in results) == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_concurrent_postings_past_the_balance(session_factory) -> None:
    loan = await open_loan(session_factory, amount="300.00")

    results = await asyncio.gather(
        *(_post(session_factory, loan.id, "200") for _ in range(3)), return_exceptions=True
    )

    posted = [r for r in results if isinstance(r, Repayment)]
    refused = [r for r in results if isinstance(r, OverPayment)]
    assert len(posted) == 1
    assert len(refused) == 2
    loan = await _loan(session_factory, loan.id)
    assert loan.remaining_amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_payment_date_defaults_and_normalizes(session_factory) -> None:
    loan = await open_loan(session_factory, amount="1000.00")

    explicit = await _post(
        session_factory, loan.id, "10", payment_date=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    )
    local = await _post(session_factory, loan.id, "10", payment_date=datetime(2026, 3, 1, 10, 0))

    assert explicit.payment_date == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    # Naive timestamps are reporting-zone local (Asia/Kolkata, UTC+05:30).
    assert local.payment_date == datetime(2026, 3, 1, 4, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_list_repayments_pages_by_sequence(session_factory, db) -> None:
    loan = await open_loan(session_factory, amount="1000.00")
    for amount in ("100", "50", "25"):
        await _post(session_factory, loan.id, amount)
    await _post(session_factory, loan.id, "30", is_late_fee=True)

    page = await repayments.list_repayments(db, loan.id, limit=3)
    assert [item.sequence_no for item in page.items] == [1, 2, 3]
    assert page.next_cursor == 3
    assert page.total_paid == Decimal("175.00")
    assert page.total_late_fee == Decimal("30.00")

    rest = await repayments.list_repayments(db, loan.id, after=page.next_cursor, limit=3)
    assert [item.sequence_no for item in rest.items] == [4]
    assert rest.next_cursor is None

    summary = await repayments.loan_balance_summary(db, loan.id)
    assert summary.remaining_amount == Decimal("825.00")
    assert summary.principal - summary.principal_paid == summary.remaining_amount
    assert summary.late_fees_paid == Decimal("30.00")

    stored = (await db.execute(select(Repayment).where(Repayment.loan_id == loan.id))).scalars().all()
    assert len(stored) == 4
