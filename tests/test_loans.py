import pytest

from conftest import open_loan
from zariya.services import loans, repayments
from zariya.services.errors import InvalidLoanState, InvalidTransition, NotFound


@pytest.mark.asyncio
async def test_pending_loan_review_approves_and_stamps_term(session_factory, db, loan_status) -> None:
    loan_status("pending")
    loan = await open_loan(session_factory)

    approved = await loans.review_loan(db, loan.id, decision="approved", reviewed_by="manager-1")
    await db.commit()

    assert approved.status == "approved"
    assert approved.reviewed_by == "manager-1"
    assert approved.approved_at is not None
    assert (approved.end_date - approved.start_date).days == approved.tenure_days


@pytest.mark.asyncio
async def test_pending_loan_review_rejects(session_factory, db, loan_status) -> None:
    loan_status("pending")
    loan = await open_loan(session_factory)

    rejected = await loans.review_loan(
        db, loan.id, decision="rejected", reviewed_by="manager-1", reason="Guarantor withdrew"
    )
    await db.commit()

    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Guarantor withdrew"
    with pytest.raises(InvalidLoanState):
        await repayments.post_repayment(db, loan.id, amount="100", payment_method="cash", recorded_by="agent-1")


@pytest.mark.asyncio
async def test_review_only_decides_pending_loans(session_factory, db) -> None:
    loan = await open_loan(session_factory)

    with pytest.raises(InvalidTransition):
        await loans.review_loan(db, loan.id, decision="approved", reviewed_by="manager-1")
    with pytest.raises(ValueError):
        await loans.review_loan(db, loan.id, decision="closed", reviewed_by="manager-1")


@pytest.mark.asyncio
async def test_pending_loan_cannot_be_activated(session_factory, db, loan_status) -> None:
    loan_status("pending")
    loan = await open_loan(session_factory)

    with pytest.raises(InvalidTransition):
        await loans.activate_loan(db, loan.id, actor_id="manager-1")


@pytest.mark.asyncio
async def test_activate_approved_loan(session_factory, db) -> None:
    loan = await open_loan(session_factory)

    active = await loans.activate_loan(db, loan.id, actor_id="manager-1")
    await db.commit()

    assert active.status == "active"
    assert active.activated_at is not None
    with pytest.raises(InvalidTransition):
        await loans.activate_loan(db, loan.id)


@pytest.mark.asyncio
async def test_reject_blocked_once_repayments_exist(session_factory, db) -> None:
    loan = await open_loan(session_factory)
    await repayments.post_repayment(
        db, loan.id, amount="50", payment_method="cash", is_late_fee=True, recorded_by="agent-1"
    )
    await db.commit()

    with pytest.raises(InvalidLoanState):
        await loans.reject_loan(db, loan.id, reviewed_by="manager-1")


@pytest.mark.asyncio
async def test_resolve_loan_by_account_number(session_factory, db) -> None:
    loan = await open_loan(session_factory)

    assert (await loans.resolve_loan(db, loan.loan_account_number)).id == loan.id
    with pytest.raises(NotFound):
        await loans.resolve_loan(db, "LOAN-0000999")

    rows, total = await loans.list_loans(db, status="approved")
    assert total == 1
    assert rows[0].id == loan.id
