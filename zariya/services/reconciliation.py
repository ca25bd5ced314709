"""Repair and verification passes over loans and their applications.

Approval writes the loan and the application link in one transaction, so
orphans only appear from data written outside the service layer (imports,
manual fixes). These passes are run from ``scripts/reconcile_loans.py``.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.db.retry import flush, store_errors
from zariya.models.loan import Loan
from zariya.models.loan_application import LoanApplication
from zariya.models.repayment import Repayment
from zariya.schemas.reports import BalanceMismatch, OrphanLoan, ReconciliationReport
from zariya.services.audit import model_snapshot, record_audit_log
from zariya.services.lifecycle import ApplicationStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
RECONCILER = "system:reconciliation"


async def reconcile_orphan_loans(db: AsyncSession) -> ReconciliationReport:
    stmt = (
        select(Loan, LoanApplication)
        .join(LoanApplication, LoanApplication.id == Loan.application_id)
        .where(or_(LoanApplication.loan_id.is_(None), LoanApplication.loan_id != Loan.id))
        .order_by(Loan.loan_account_number)
    )
    with store_errors("reconciliation.orphans"):
        rows = (await db.execute(stmt)).all()

    report = ReconciliationReport()
    for loan, application in rows:
        entry = dict(
            loan_id=loan.id,
            loan_account_number=loan.loan_account_number,
            application_id=application.id,
            application_status=application.status,
        )
        if application.status == ApplicationStatus.UNDER_REVIEW.value and application.loan_id is None:
            old_value = model_snapshot(application)
            application.status = ApplicationStatus.APPROVED.value
            application.loan_id = loan.id
            application.reviewed_by = application.reviewed_by or loan.created_by
            application.reviewed_at = application.reviewed_at or loan.created_at
            application.approved_at = loan.approved_at or loan.created_at
            record_audit_log(
                db,
                actor_id=RECONCILER,
                action="loan_application.approval_rolled_forward",
                resource_type="loan_application",
                resource_id=application.id,
                old_value=old_value,
                new_value=model_snapshot(application),
            )
            report.rolled_forward.append(OrphanLoan(action="rolled_forward", **entry))
        elif not loan.posting_count:
            record_audit_log(
                db,
                actor_id=RECONCILER,
                action="loan.orphan_removed",
                resource_type="loan",
                resource_id=loan.id,
                old_value=model_snapshot(loan),
            )
            await db.delete(loan)
            report.removed.append(OrphanLoan(action="removed", **entry))
        else:
            report.needs_attention.append(OrphanLoan(action="needs_attention", **entry))

    await flush(db, "reconciliation.orphans")
    logger.info(
        "Orphan loan reconciliation finished",
        extra={
            "rolled_forward": len(report.rolled_forward),
            "removed": len(report.removed),
            "needs_attention": len(report.needs_attention),
        },
    )
    return report


async def verify_loan_balances(db: AsyncSession) -> list[BalanceMismatch]:
    """Loans whose stored balance differs from principal minus principal postings."""
    paid = (
        select(
            Repayment.loan_id.label("loan_id"),
            func.sum(case((Repayment.is_late_fee.is_(False), Repayment.amount), else_=0)).label("principal_paid"),
        )
        .group_by(Repayment.loan_id)
        .subquery()
    )
    stmt = (
        select(Loan, paid.c.principal_paid)
        .outerjoin(paid, paid.c.loan_id == Loan.id)
        .order_by(Loan.loan_account_number)
    )
    with store_errors("reconciliation.balances"):
        rows = (await db.execute(stmt)).all()

    mismatches = []
    for loan, principal_paid in rows:
        expected = (loan.principal - Decimal(str(principal_paid or 0))).quantize(CENT)
        recorded = Decimal(str(loan.remaining_amount)).quantize(CENT)
        if expected != recorded:
            mismatches.append(
                BalanceMismatch(
                    loan_id=loan.id,
                    loan_account_number=loan.loan_account_number,
                    recorded_remaining=recorded,
                    expected_remaining=expected,
                )
            )
    if mismatches:
        logger.warning("Loan balance mismatches found", extra={"count": len(mismatches)})
    return mismatches
