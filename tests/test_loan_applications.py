import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import application_payload, approved_member, membership_payload, open_loan, submitted_application
from zariya.models.audit_log import AuditLog
from zariya.models.loan import Loan
from zariya.schemas.loan import LoanApplicationCreate, LoanApplicationUpdate
from zariya.schemas.membership import MembershipCreate
from zariya.services import loan_applications, memberships, sequences
from zariya.services.errors import AlreadyReviewed, DuplicateRecord, InvalidTransition


@pytest.mark.asyncio
async def test_submit_requires_approved_membership(db) -> None:
    membership = await memberships.create_membership(db, MembershipCreate(**membership_payload()))
    await db.commit()

    with pytest.raises(InvalidTransition) as exc_info:
        await loan_applications.submit_application(
            db, LoanApplicationCreate(**application_payload(membership.display_id))
        )
    assert exc_info.value.details["membership_status"] == "pending"
    assert await sequences.current_value(db, sequences.LOAN_APPLICATION_SEQUENCE) == 0


@pytest.mark.asyncio
async def test_submit_by_display_id(session_factory, db) -> None:
    membership = await approved_member(session_factory)

    application = await loan_applications.submit_application(
        db, LoanApplicationCreate(**application_payload(membership.display_id))
    )
    await db.commit()

    assert application.application_number == "ZLAP-0000001"
    assert application.status == "under_review"
    assert application.membership_id == membership.id
    assert application.email == membership.email
    assert application.co_applicant is None
    assert application.nominee["address"]["district"] == "Nadia"


@pytest.mark.asyncio
async def test_approve_creates_exactly_one_loan(session_factory, db) -> None:
    application = await submitted_application(session_factory, requested_amount="10000.00", tenure_days=30)

    approval = await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")
    await db.commit()

    loan = approval.loan
    assert approval.replayed is False
    assert approval.application.status == "approved"
    assert approval.application.loan_id == loan.id
    assert loan.application_id == application.id
    assert loan.loan_account_number == "LOAN-0000001"
    assert loan.status == "approved"
    assert loan.remaining_amount == loan.principal == Decimal("10000.00")
    assert (loan.end_date - loan.start_date).days == 30

    actions = (await db.execute(select(AuditLog.action).order_by(AuditLog.created_at))).scalars().all()
    assert "loan_application.approved" in actions
    assert "loan.created" in actions


@pytest.mark.asyncio
async def test_loan_can_start_pending(session_factory, db, loan_status) -> None:
    loan_status("pending")
    application = await submitted_application(session_factory)

    approval = await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")

    assert approval.loan.status == "pending"
    assert approval.loan.start_date is None
    assert approval.loan.approved_at is None


@pytest.mark.asyncio
async def test_second_approval_is_already_reviewed(session_factory, db) -> None:
    application = await submitted_application(session_factory)
    first = await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")
    await db.commit()

    with pytest.raises(AlreadyReviewed) as exc_info:
        await loan_applications.approve_application(db, application.id, reviewed_by="officer-2")

    assert exc_info.value.details["loan_id"] == str(first.loan.id)
    assert exc_info.value.details["loan_account_number"] == first.loan.loan_account_number
    assert (await db.execute(select(func.count()).select_from(Loan))).scalar_one() == 1
    assert await sequences.current_value(db, sequences.LOAN_SEQUENCE) == 1


@pytest.mark.asyncio
async def test_loan_number_collision_leaves_application_reviewable(session_factory, db) -> None:
    await open_loan(session_factory)
    application = await submitted_application(session_factory)
    await sequences.reset_to(db, sequences.LOAN_SEQUENCE, 0)
    await db.commit()

    with pytest.raises(DuplicateRecord) as exc_info:
        await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")

    assert exc_info.value.details["loan_account_number"] == "LOAN-0000001"
    current = await loan_applications.get_application(db, application.id)
    assert current.status == "under_review"
    assert current.loan_id is None
    assert (await db.execute(select(func.count()).select_from(Loan))).scalar_one() == 1

    await sequences.reset_to(db, sequences.LOAN_SEQUENCE, 1)
    approval = await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")
    await db.commit()
    assert approval.loan.loan_account_number == "LOAN-0000002"


@pytest.mark.asyncio
async def test_retry_with_same_idempotency_key_replays(session_factory, db) -> None:
    application = await submitted_application(session_factory)
    first = await loan_applications.approve_application(
        db, application.id, reviewed_by="officer-1", idempotency_key="approve-1234"
    )
    await db.commit()

    again = await loan_applications.approve_application(
        db, application.id, reviewed_by="officer-1", idempotency_key="approve-1234"
    )

    assert again.replayed is True
    assert again.loan.id == first.loan.id
    with pytest.raises(AlreadyReviewed):
        await loan_applications.approve_application(
            db, application.id, reviewed_by="officer-1", idempotency_key="other-key-99"
        )


@pytest.mark.asyncio
async def test_concurrent_approvals_create_one_loan(session_factory) -> None:
    application = await submitted_application(session_factory)

    async def approve(reviewer: str):
        async with session_factory() as db:
            try:
                approval = await loan_applications.approve_application(db, application.id, reviewed_by=reviewer)
                await db.commit()
                return approval
            except AlreadyReviewed as exc:
                return exc

    outcomes = await asyncio.gather(approve("officer-1"), approve("officer-2"))

    winners = [o for o in outcomes if isinstance(o, loan_applications.Approval)]
    losers = [o for o in outcomes if isinstance(o, AlreadyReviewed)]
    assert len(winners) == 1
    assert len(losers) == 1
    async with session_factory() as db:
        loans = (await db.execute(select(Loan))).scalars().all()
        assert [loan.id for loan in loans] == [winners[0].loan.id]
        # The losing attempt's loan-number increment was rolled back with it.
        assert await sequences.current_value(db, sequences.LOAN_SEQUENCE) == 1


@pytest.mark.asyncio
async def test_reject_then_approve_is_already_reviewed(session_factory, db) -> None:
    application = await submitted_application(session_factory)

    rejected = await loan_applications.reject_application(
        db, application.id, reviewed_by="officer-1", reason="Income not verified"
    )
    await db.commit()
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Income not verified"

    with pytest.raises(AlreadyReviewed) as exc_info:
        await loan_applications.approve_application(db, application.id, reviewed_by="officer-2")
    assert exc_info.value.current == "rejected"
    assert "loan_id" not in exc_info.value.details


@pytest.mark.asyncio
async def test_update_while_under_review(session_factory, db) -> None:
    application = await submitted_application(session_factory)

    updated = await loan_applications.update_application(
        db, application.id, LoanApplicationUpdate(requested_amount=Decimal("7500.00"), purpose="Goats")
    )
    await db.commit()
    assert updated.requested_amount == Decimal("7500.00")
    assert updated.purpose == "Goats"

    await loan_applications.reject_application(db, application.id, reviewed_by="officer-1")
    await db.commit()
    with pytest.raises(AlreadyReviewed):
        await loan_applications.update_application(db, application.id, LoanApplicationUpdate(purpose="Cow"))


@pytest.mark.asyncio
async def test_resolve_and_list(session_factory, db) -> None:
    application = await submitted_application(session_factory)

    found = await loan_applications.resolve_application(db, application.application_number)
    assert found.id == application.id

    rows, total = await loan_applications.list_applications(db, status="under_review")
    assert total == 1
    assert rows[0].id == application.id
    rows, total = await loan_applications.list_applications(db, status="approved")
    assert total == 0
