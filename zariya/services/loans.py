from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from zariya.core.timezones import local_date
from zariya.db.retry import flush, retry_read, store_errors
from zariya.models.loan import Loan
from zariya.models.membership import Membership
from zariya.models.types import utcnow
from zariya.services import identifiers
from zariya.services.audit import model_snapshot, record_audit_log
from zariya.services.errors import InvalidLoanState, InvalidTransition, NotFound
from zariya.services.lifecycle import LoanStatus, ensure_transition

logger = logging.getLogger(__name__)

ENTITY = "loan"
ACCEPTS_POSTINGS = frozenset({LoanStatus.APPROVED.value, LoanStatus.ACTIVE.value})


def _record_audit_log(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    loan: Loan,
    old_value: dict | None,
) -> None:
    record_audit_log(
        db,
        actor_id=actor_id,
        action=action,
        resource_type=ENTITY,
        resource_id=loan.id,
        old_value=old_value,
        new_value=model_snapshot(loan),
    )


def notification_payload(loan: Loan) -> dict[str, Any]:
    return {
        "loan_id": str(loan.id),
        "loan_account_number": loan.loan_account_number,
        "membership_id": str(loan.membership_id),
        "application_id": str(loan.application_id),
        "principal": str(loan.principal),
        "remaining_amount": str(loan.remaining_amount),
        "status": loan.status,
    }


def apply_approval(loan: Loan, *, reviewed_by: str | None, at: datetime) -> None:
    """Stamp approval fields; the loan term starts on the approval day in the reporting zone."""
    loan.status = LoanStatus.APPROVED.value
    loan.approved_at = at
    loan.reviewed_by = reviewed_by
    loan.reviewed_at = at
    loan.start_date = local_date(at)
    loan.end_date = loan.start_date + timedelta(days=loan.tenure_days)


async def load_loan(db: AsyncSession, loan_id: UUID, *, refresh: bool = False) -> Loan:
    with store_errors("loan.load"):
        loan = await db.get(Loan, loan_id, populate_existing=refresh)
    if loan is None:
        raise NotFound(ENTITY, loan_id)
    return loan


async def _flush_transition(db: AsyncSession, loan_id: UUID, attempted: str, operation: str) -> None:
    try:
        await flush(db, operation)
    except StaleDataError:
        await db.rollback()
        current = await load_loan(db, loan_id, refresh=True)
        raise InvalidTransition(ENTITY, current.status, attempted, details={"reason": "concurrent_update"})


@retry_read
async def get_loan(db: AsyncSession, loan_id: UUID) -> Loan:
    return await load_loan(db, loan_id)


@retry_read
async def get_loan_by_account_number(db: AsyncSession, loan_account_number: str) -> Loan:
    with store_errors("loan.by_account_number"):
        result = await db.execute(select(Loan).where(Loan.loan_account_number == loan_account_number))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFound(ENTITY, loan_account_number)
    return loan


async def resolve_loan(db: AsyncSession, reference: str | UUID) -> Loan:
    """Look a loan up by UUID or by its ``LOAN-…`` account number."""
    kind = identifiers.loan_kind()
    if isinstance(reference, str) and identifiers.looks_like(reference, kind.prefix):
        return await get_loan_by_account_number(db, reference.strip())
    loan_id = identifiers.as_uuid(reference)
    if loan_id is None:
        raise NotFound(ENTITY, reference)
    return await get_loan(db, loan_id)


@retry_read
async def list_loans(
    db: AsyncSession,
    *,
    status: LoanStatus | str | None = None,
    membership_id: UUID | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Loan], int]:
    conditions = []
    if status:
        conditions.append(Loan.status == LoanStatus(status).value)
    if membership_id is not None:
        conditions.append(Loan.membership_id == membership_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        member_ids = select(Membership.id).where(
            or_(Membership.full_name.ilike(pattern), Membership.display_id.ilike(pattern))
        )
        conditions.append(or_(Loan.loan_account_number.ilike(pattern), Loan.membership_id.in_(member_ids)))
    stmt = select(Loan).where(*conditions).order_by(Loan.created_at.desc(), Loan.loan_account_number.desc())
    count_stmt = select(func.count()).select_from(Loan).where(*conditions)
    with store_errors("loan.list"):
        total = (await db.execute(count_stmt)).scalar_one()
        rows = (await db.execute(stmt.offset(offset).limit(limit))).scalars().all()
    return list(rows), int(total)


async def review_loan(
    db: AsyncSession,
    loan_id: UUID,
    *,
    decision: LoanStatus | str,
    reviewed_by: str,
    reason: str | None = None,
) -> Loan:
    """Decide a pending loan: approve it or reject it."""
    decision = LoanStatus(decision)
    if decision not in (LoanStatus.APPROVED, LoanStatus.REJECTED):
        raise ValueError("A loan review decides approved or rejected")
    loan = await load_loan(db, loan_id)
    if loan.status != LoanStatus.PENDING.value:
        raise InvalidTransition(ENTITY, loan.status, decision.value, details={"loan_account_number": loan.loan_account_number})
    if decision is LoanStatus.REJECTED:
        return await reject_loan(db, loan_id, reviewed_by=reviewed_by, reason=reason)

    ensure_transition(ENTITY, loan.status, LoanStatus.APPROVED)
    old_value = model_snapshot(loan)
    apply_approval(loan, reviewed_by=reviewed_by, at=utcnow())
    _record_audit_log(db, actor_id=reviewed_by, action="loan.approved", loan=loan, old_value=old_value)
    await _flush_transition(db, loan.id, LoanStatus.APPROVED.value, "loan.review")
    logger.info("Loan approved", extra={"loan_id": str(loan.id), "loan_account_number": loan.loan_account_number})
    return loan


async def reject_loan(
    db: AsyncSession,
    loan_id: UUID,
    *,
    reviewed_by: str,
    reason: str | None = None,
) -> Loan:
    loan = await load_loan(db, loan_id)
    ensure_transition(ENTITY, loan.status, LoanStatus.REJECTED)
    if loan.posting_count:
        raise InvalidLoanState(loan.status, "rejection after repayments were posted")
    old_value = model_snapshot(loan)
    now = utcnow()
    loan.status = LoanStatus.REJECTED.value
    loan.rejection_reason = reason
    loan.reviewed_by = reviewed_by
    loan.reviewed_at = now
    _record_audit_log(db, actor_id=reviewed_by, action="loan.rejected", loan=loan, old_value=old_value)
    await _flush_transition(db, loan.id, LoanStatus.REJECTED.value, "loan.reject")
    logger.info("Loan rejected", extra={"loan_id": str(loan.id), "loan_account_number": loan.loan_account_number})
    return loan


async def activate_loan(db: AsyncSession, loan_id: UUID, *, actor_id: str | None = None) -> Loan:
    loan = await load_loan(db, loan_id)
    ensure_transition(ENTITY, loan.status, LoanStatus.ACTIVE)
    old_value = model_snapshot(loan)
    loan.status = LoanStatus.ACTIVE.value
    loan.activated_at = utcnow()
    _record_audit_log(db, actor_id=actor_id, action="loan.activated", loan=loan, old_value=old_value)
    await _flush_transition(db, loan.id, LoanStatus.ACTIVE.value, "loan.activate")
    logger.info("Loan activated", extra={"loan_id": str(loan.id), "loan_account_number": loan.loan_account_number})
    return loan
