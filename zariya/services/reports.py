from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.core.settings import settings
from zariya.core.timezones import day_bounds
from zariya.db.retry import retry_read, store_errors
from zariya.models.loan import Loan
from zariya.models.loan_application import LoanApplication
from zariya.models.membership import Membership
from zariya.models.repayment import Repayment
from zariya.schemas.loan import PaymentMethod
from zariya.schemas.reports import (
    ActivityItem,
    CollectionPosting,
    DailyCollectionReport,
    DashboardStats,
    RecentActivity,
)
from zariya.services.lifecycle import ApplicationStatus, LoanStatus, MembershipStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DISBURSED_STATUSES = (LoanStatus.APPROVED.value, LoanStatus.ACTIVE.value, LoanStatus.CLOSED.value)


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


@retry_read
async def daily_collections(db: AsyncSession, day: date) -> DailyCollectionReport:
    """Collections whose payment falls on ``day`` in the reporting timezone.

    Every total is derived from the single posting list returned, so
    ``total_collection + total_late_fee == grand_total`` and the per-method
    figures add up to the same grand total.
    """
    start, end = day_bounds(day)
    stmt = (
        select(Repayment, Loan.loan_account_number, Membership.display_id, Membership.full_name)
        .join(Loan, Loan.id == Repayment.loan_id)
        .join(Membership, Membership.id == Loan.membership_id)
        .where(Repayment.payment_date >= start, Repayment.payment_date < end)
        .order_by(Repayment.payment_date, Loan.loan_account_number, Repayment.sequence_no)
    )
    with store_errors("reports.daily_collections"):
        rows = (await db.execute(stmt)).all()

    postings: list[CollectionPosting] = []
    total_collection = ZERO
    total_late_fee = ZERO
    by_method: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for repayment, loan_account_number, display_id, full_name in rows:
        amount = _money(repayment.amount)
        postings.append(
            CollectionPosting(
                repayment_id=repayment.id,
                loan_id=repayment.loan_id,
                loan_account_number=loan_account_number,
                membership_display_id=display_id,
                member_name=full_name,
                sequence_no=repayment.sequence_no,
                amount=amount,
                payment_method=repayment.payment_method,
                is_late_fee=repayment.is_late_fee,
                payment_date=repayment.payment_date,
                recorded_by=repayment.recorded_by,
            )
        )
        if repayment.is_late_fee:
            total_late_fee += amount
        else:
            total_collection += amount
        by_method[repayment.payment_method] += amount

    methods = {method.value: by_method.get(method.value, ZERO) for method in PaymentMethod}
    return DailyCollectionReport(
        date=day,
        timezone=settings.reporting_timezone,
        postings=postings,
        total_collection=total_collection,
        total_late_fee=total_late_fee,
        grand_total=total_collection + total_late_fee,
        total_count=len(postings),
        by_method=methods,
    )


async def _count(db: AsyncSession, model, *conditions) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*conditions))
    return int(result.scalar_one())


@retry_read
async def dashboard_stats(db: AsyncSession) -> DashboardStats:
    with store_errors("reports.dashboard_stats"):
        approved_members = await _count(db, Membership, Membership.status == MembershipStatus.APPROVED.value)
        pending_memberships = await _count(db, Membership, Membership.status == MembershipStatus.PENDING.value)
        pending_applications = await _count(
            db, LoanApplication, LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value
        )
        pending_loans = await _count(db, Loan, Loan.status == LoanStatus.PENDING.value)
        total_loans = await _count(db, Loan)
        disbursed = (
            await db.execute(select(func.sum(Loan.principal)).where(Loan.status.in_(DISBURSED_STATUSES)))
        ).scalar_one()
        outstanding = (
            await db.execute(select(func.sum(Loan.remaining_amount)).where(Loan.status == LoanStatus.ACTIVE.value))
        ).scalar_one()
    return DashboardStats(
        approved_members=approved_members,
        total_loans=total_loans,
        pending_memberships=pending_memberships,
        pending_applications=pending_applications,
        pending_loans=pending_loans,
        pending_approvals=pending_memberships + pending_applications + pending_loans,
        total_disbursed=_money(disbursed),
        outstanding_balance=_money(outstanding),
    )


@retry_read
async def recent_activity(db: AsyncSession, limit: int = 10) -> RecentActivity:
    """Newest memberships and loans merged into one feed, newest first."""
    if limit < 1:
        raise ValueError("limit must be positive")
    with store_errors("reports.recent_activity"):
        members = (
            await db.execute(select(Membership).order_by(Membership.created_at.desc()).limit(limit))
        ).scalars().all()
        loan_rows = (
            await db.execute(
                select(Loan, Membership.full_name, Membership.display_id)
                .join(Membership, Membership.id == Loan.membership_id)
                .order_by(Loan.created_at.desc())
                .limit(limit)
            )
        ).all()

    items = [
        ActivityItem(
            type="membership",
            id=member.id,
            reference=member.display_id,
            title=f"New membership application received - {member.display_id}",
            description=member.full_name,
            status=member.status,
            created_at=member.created_at,
        )
        for member in members
    ]
    items.extend(
        ActivityItem(
            type="loan",
            id=loan.id,
            reference=loan.loan_account_number,
            title=f"New loan opened - {loan.loan_account_number}",
            description=f"{full_name} ({display_id})",
            status=loan.status,
            created_at=loan.created_at,
        )
        for loan, full_name, display_id in loan_rows
    )
    items.sort(key=lambda item: (item.created_at, item.type), reverse=True)
    return RecentActivity(items=items[:limit])
