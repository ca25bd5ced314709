"""Append-only repayment ledger.

``Loan.remaining_amount`` is only ever changed here, always in the same flush
as the posting that explains the change, so the balance equals the principal
minus the sum of principal postings at every commit point.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from zariya.core.settings import settings
from zariya.core.timezones import to_utc
from zariya.db.retry import flush, retry_read, store_errors
from zariya.models.loan import Loan
from zariya.models.repayment import Repayment
from zariya.models.types import utcnow
from zariya.schemas.loan import LoanBalanceSummary, PaymentMethod, RepaymentPage, RepaymentRead
from zariya.services import loans
from zariya.services.audit import model_snapshot, record_audit_log
from zariya.services.errors import (
    ConcurrentModification,
    DuplicateRecord,
    InvalidAmount,
    InvalidLoanState,
    NotFound,
    OverPayment,
)
from zariya.services.lifecycle import LoanStatus, ensure_transition

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass
class Posting:
    repayment: Repayment
    loan: Loan
    replayed: bool = False

    @property
    def closed_loan(self) -> bool:
        """True only for the posting that just brought the balance to zero."""
        return not self.replayed and self.loan.status == LoanStatus.CLOSED.value


def to_money(value) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(value) from exc
    if not amount.is_finite() or amount <= 0 or amount != amount.quantize(CENT):
        raise InvalidAmount(value)
    return amount.quantize(CENT)


def _validate_idempotency_key(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if len(cleaned) > 100:
        raise ValueError("Idempotency key is too long")
    return cleaned


async def _find_by_key(db: AsyncSession, loan_id: UUID, idempotency_key: str) -> Repayment | None:
    with store_errors("repayment.by_idempotency_key"):
        result = await db.execute(
            select(Repayment).where(Repayment.loan_id == loan_id, Repayment.idempotency_key == idempotency_key)
        )
    return result.scalar_one_or_none()


def _replayed(existing: Repayment, loan: Loan, *, amount: Decimal, method: str, is_late_fee: bool) -> Posting:
    """A retried request may only re-observe its own posting, never reuse the key for a different one."""
    mismatched = [
        field
        for field, requested in (("amount", amount), ("payment_method", method), ("is_late_fee", is_late_fee))
        if getattr(existing, field) != requested
    ]
    if mismatched:
        raise DuplicateRecord(
            "repayment",
            details={"idempotency_key": existing.idempotency_key, "fields": mismatched, "repayment_id": str(existing.id)},
        )
    return Posting(repayment=existing, loan=loan, replayed=True)


def _apply_posting(loan: Loan, amount: Decimal, is_late_fee: bool, now: datetime) -> None:
    if loan.status not in loans.ACCEPTS_POSTINGS:
        raise InvalidLoanState(loan.status, "repayment")
    if not is_late_fee:
        if amount > loan.remaining_amount:
            raise OverPayment(loan.remaining_amount, amount)
        loan.remaining_amount = (loan.remaining_amount - amount).quantize(CENT)
        if loan.status == LoanStatus.APPROVED.value:
            ensure_transition(loans.ENTITY, loan.status, LoanStatus.ACTIVE)
            loan.status = LoanStatus.ACTIVE.value
            loan.activated_at = now
        if loan.remaining_amount == ZERO:
            ensure_transition(loans.ENTITY, loan.status, LoanStatus.CLOSED)
            loan.status = LoanStatus.CLOSED.value
            loan.closed_at = now
    loan.posting_count = (loan.posting_count or 0) + 1


async def record_repayment(
    db: AsyncSession,
    loan_id: UUID,
    *,
    amount,
    payment_method: PaymentMethod | str,
    is_late_fee: bool = False,
    recorded_by: str | None,
    payment_date: datetime | date | None = None,
    remarks: str | None = None,
    receipt_ref: str | None = None,
    idempotency_key: str | None = None,
) -> Posting:
    """Append a posting and update the loan balance as one compare-and-set.

    The loan row is updated conditionally on the version read at the start of
    the attempt. When another posting lands first the attempt is rolled back,
    the loan re-read and every check re-run, up to ``LEDGER_MAX_ATTEMPTS``
    times. A rollback discards the whole session transaction, so callers post
    repayments in a transaction of their own.
    """
    amount = to_money(amount)
    method = PaymentMethod(payment_method).value
    idempotency_key = _validate_idempotency_key(idempotency_key)
    posted_at = to_utc(payment_date) if payment_date is not None else utcnow()
    attempts = settings.ledger_max_attempts

    for attempt in range(1, attempts + 1):
        loan = await loans.load_loan(db, loan_id, refresh=attempt > 1)
        if idempotency_key:
            existing = await _find_by_key(db, loan.id, idempotency_key)
            if existing is not None:
                return _replayed(existing, loan, amount=amount, method=method, is_late_fee=is_late_fee)
        old_value = model_snapshot(loan)
        now = utcnow()
        _apply_posting(loan, amount, is_late_fee, now)
        repayment = Repayment(
            loan_id=loan.id,
            sequence_no=loan.posting_count,
            amount=amount,
            payment_date=posted_at,
            payment_method=method,
            is_late_fee=is_late_fee,
            recorded_by=recorded_by,
            remarks=remarks,
            receipt_ref=receipt_ref,
            idempotency_key=idempotency_key,
        )
        db.add(repayment)
        try:
            await flush(db, "repayment.post")
        except (StaleDataError, IntegrityError) as exc:
            await db.rollback()
            logger.info(
                "Repayment posting conflicted, retrying",
                extra={"loan_id": str(loan_id), "attempt": attempt, "conflict": type(exc).__name__},
            )
            if idempotency_key:
                existing = await _find_by_key(db, loan_id, idempotency_key)
                if existing is not None:
                    loan = await loans.load_loan(db, loan_id, refresh=True)
                    return _replayed(existing, loan, amount=amount, method=method, is_late_fee=is_late_fee)
            continue

        record_audit_log(
            db,
            actor_id=recorded_by,
            action="repayment.posted",
            resource_type="repayment",
            resource_id=repayment.id,
            new_value=model_snapshot(repayment),
        )
        record_audit_log(
            db,
            actor_id=recorded_by,
            action="loan.balance_updated",
            resource_type=loans.ENTITY,
            resource_id=loan.id,
            old_value=old_value,
            new_value=model_snapshot(loan),
        )
        await flush(db, "repayment.post")
        logger.info(
            "Repayment posted",
            extra={
                "loan_id": str(loan.id),
                "loan_account_number": loan.loan_account_number,
                "sequence_no": repayment.sequence_no,
                "amount": str(amount),
                "is_late_fee": is_late_fee,
                "remaining_amount": str(loan.remaining_amount),
                "loan_status": loan.status,
            },
        )
        return Posting(repayment=repayment, loan=loan)

    raise ConcurrentModification(loans.ENTITY, loan_id, attempts)


async def post_repayment(
    db: AsyncSession,
    loan_id: UUID,
    *,
    amount,
    payment_method: PaymentMethod | str,
    is_late_fee: bool = False,
    recorded_by: str | None,
    payment_date: datetime | date | None = None,
    remarks: str | None = None,
    receipt_ref: str | None = None,
    idempotency_key: str | None = None,
) -> Repayment:
    """Like ``record_repayment`` but returns only the posting row."""
    posting = await record_repayment(
        db,
        loan_id,
        amount=amount,
        payment_method=payment_method,
        is_late_fee=is_late_fee,
        recorded_by=recorded_by,
        payment_date=payment_date,
        remarks=remarks,
        receipt_ref=receipt_ref,
        idempotency_key=idempotency_key,
    )
    return posting.repayment


@retry_read
async def get_repayment(db: AsyncSession, repayment_id: UUID) -> Repayment:
    with store_errors("repayment.load"):
        repayment = await db.get(Repayment, repayment_id)
    if repayment is None:
        raise NotFound("repayment", repayment_id)
    return repayment


async def _totals(db: AsyncSession, loan_id: UUID) -> tuple[Decimal, Decimal]:
    stmt = select(
        func.coalesce(func.sum(case((Repayment.is_late_fee.is_(False), Repayment.amount), else_=0)), 0),
        func.coalesce(func.sum(case((Repayment.is_late_fee.is_(True), Repayment.amount), else_=0)), 0),
    ).where(Repayment.loan_id == loan_id)
    with store_errors("repayment.totals"):
        principal_paid, late_fees = (await db.execute(stmt)).one()
    return Decimal(str(principal_paid)).quantize(CENT), Decimal(str(late_fees)).quantize(CENT)


@retry_read
async def list_repayments(
    db: AsyncSession,
    loan_id: UUID,
    *,
    after: int | None = None,
    limit: int = 50,
) -> RepaymentPage:
    """Postings in append order; pass the previous page's ``next_cursor`` as ``after`` to continue."""
    await loans.load_loan(db, loan_id)
    stmt = select(Repayment).where(Repayment.loan_id == loan_id)
    if after is not None:
        stmt = stmt.where(Repayment.sequence_no > after)
    stmt = stmt.order_by(Repayment.sequence_no).limit(limit + 1)
    with store_errors("repayment.list"):
        rows = list((await db.execute(stmt)).scalars().all())
    has_more = len(rows) > limit
    rows = rows[:limit]
    total_paid, total_late_fee = await _totals(db, loan_id)
    return RepaymentPage(
        items=[RepaymentRead.model_validate(row) for row in rows],
        next_cursor=rows[-1].sequence_no if has_more and rows else None,
        total_paid=total_paid,
        total_late_fee=total_late_fee,
    )


@retry_read
async def loan_balance_summary(db: AsyncSession, loan_id: UUID) -> LoanBalanceSummary:
    loan = await loans.load_loan(db, loan_id)
    principal_paid, late_fees = await _totals(db, loan_id)
    return LoanBalanceSummary(
        loan_id=loan.id,
        loan_account_number=loan.loan_account_number,
        status=loan.status,
        principal=loan.principal,
        remaining_amount=loan.remaining_amount,
        principal_paid=principal_paid,
        late_fees_paid=late_fees,
        posting_count=loan.posting_count,
    )
