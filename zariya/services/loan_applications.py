from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from zariya.core.settings import settings
from zariya.db.retry import flush, retry_read, store_errors
from zariya.models.loan import Loan
from zariya.models.loan_application import LoanApplication
from zariya.models.membership import Membership
from zariya.models.types import utcnow
from zariya.schemas.loan import LoanApplicationCreate, LoanApplicationUpdate
from zariya.services import identifiers, loans
from zariya.services.audit import model_snapshot, record_audit_log
from zariya.services.errors import AlreadyReviewed, ConcurrentModification, DuplicateRecord, InvalidTransition, NotFound
from zariya.services.lifecycle import ApplicationStatus, LoanStatus, MembershipStatus, ensure_transition
from zariya.services.memberships import resolve_membership

logger = logging.getLogger(__name__)

ENTITY = "loan_application"


@dataclass
class Approval:
    application: LoanApplication
    loan: Loan
    replayed: bool = False


def _record_audit_log(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    application: LoanApplication,
    old_value: dict | None,
) -> None:
    record_audit_log(
        db,
        actor_id=actor_id,
        action=action,
        resource_type=ENTITY,
        resource_id=application.id,
        old_value=old_value,
        new_value=model_snapshot(application),
    )


def _validate_idempotency_key(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if len(cleaned) > 100:
        raise ValueError("Idempotency key is too long")
    return cleaned


def notification_payload(application: LoanApplication) -> dict[str, Any]:
    return {
        "application_id": str(application.id),
        "application_number": application.application_number,
        "membership_id": str(application.membership_id),
        "requested_amount": str(application.requested_amount),
        "email": application.email,
        "mobile_number": application.mobile_number,
        "status": application.status,
        "rejection_reason": application.rejection_reason,
        "loan_id": str(application.loan_id) if application.loan_id else None,
    }


async def _load(db: AsyncSession, application_id: UUID, *, refresh: bool = False) -> LoanApplication:
    with store_errors("loan_application.load"):
        application = await db.get(LoanApplication, application_id, populate_existing=refresh)
    if application is None:
        raise NotFound(ENTITY, application_id)
    return application


async def _already_reviewed(db: AsyncSession, application: LoanApplication) -> AlreadyReviewed:
    """Describe the settled outcome so a caller whose request timed out can re-observe it."""
    details: dict[str, Any] = {"application_number": application.application_number}
    if application.loan_id is not None:
        details["loan_id"] = str(application.loan_id)
        with store_errors("loan_application.already_reviewed"):
            loan = await db.get(Loan, application.loan_id)
        if loan is not None:
            details["loan_account_number"] = loan.loan_account_number
    return AlreadyReviewed(ENTITY, application.status, details=details)


async def _replay(db: AsyncSession, application: LoanApplication, idempotency_key: str | None) -> Approval | None:
    if (
        idempotency_key
        and application.status == ApplicationStatus.APPROVED.value
        and application.approve_idempotency_key == idempotency_key
        and application.loan_id is not None
    ):
        loan = await loans.load_loan(db, application.loan_id)
        return Approval(application=application, loan=loan, replayed=True)
    return None


async def submit_application(db: AsyncSession, payload: LoanApplicationCreate) -> LoanApplication:
    """File a loan application for an approved member; it starts ``under_review``."""
    membership = await resolve_membership(db, payload.membership_id)
    if membership.status != MembershipStatus.APPROVED.value:
        raise InvalidTransition(
            ENTITY,
            "unsubmitted",
            ApplicationStatus.UNDER_REVIEW.value,
            message=f"Membership {membership.display_id} is {membership.status}; only approved members can apply",
            details={"membership_id": str(membership.id), "membership_status": membership.status},
        )

    application_number = await identifiers.issue_identifier(db, identifiers.application_kind())
    application = LoanApplication(
        application_number=application_number,
        membership_id=membership.id,
        requested_amount=payload.requested_amount,
        tenure_days=payload.tenure_days,
        installment_amount=payload.installment_amount,
        purpose=payload.purpose,
        mobile_number=payload.mobile_number,
        email=payload.email or membership.email,
        bank_account_number=payload.bank_account_number,
        nominee=payload.nominee.model_dump(),
        guarantor=payload.guarantor.model_dump(),
        co_applicant=payload.co_applicant.model_dump() if payload.co_applicant else None,
        status=ApplicationStatus.UNDER_REVIEW.value,
        created_by=payload.created_by,
    )
    db.add(application)
    await flush(db, "loan_application.submit")
    _record_audit_log(
        db, actor_id=payload.created_by, action="loan_application.submitted", application=application, old_value=None
    )
    await flush(db, "loan_application.submit")
    logger.info(
        "Loan application submitted",
        extra={"application_id": str(application.id), "application_number": application_number},
    )
    return application


@retry_read
async def get_application(db: AsyncSession, application_id: UUID) -> LoanApplication:
    return await _load(db, application_id)


@retry_read
async def get_application_by_number(db: AsyncSession, application_number: str) -> LoanApplication:
    with store_errors("loan_application.by_number"):
        result = await db.execute(
            select(LoanApplication).where(LoanApplication.application_number == application_number)
        )
    application = result.scalar_one_or_none()
    if application is None:
        raise NotFound(ENTITY, application_number)
    return application


async def resolve_application(db: AsyncSession, reference: str | UUID) -> LoanApplication:
    kind = identifiers.application_kind()
    if isinstance(reference, str) and identifiers.looks_like(reference, kind.prefix):
        return await get_application_by_number(db, reference.strip())
    application_id = identifiers.as_uuid(reference)
    if application_id is None:
        raise NotFound(ENTITY, reference)
    return await get_application(db, application_id)


@retry_read
async def list_applications(
    db: AsyncSession,
    *,
    status: ApplicationStatus | str | None = None,
    membership_id: UUID | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[LoanApplication], int]:
    conditions = []
    if status:
        conditions.append(LoanApplication.status == ApplicationStatus(status).value)
    if membership_id is not None:
        conditions.append(LoanApplication.membership_id == membership_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        member_ids = select(Membership.id).where(
            or_(Membership.full_name.ilike(pattern), Membership.display_id.ilike(pattern))
        )
        conditions.append(
            or_(
                LoanApplication.application_number.ilike(pattern),
                LoanApplication.mobile_number.ilike(pattern),
                LoanApplication.membership_id.in_(member_ids),
            )
        )
    stmt = (
        select(LoanApplication)
        .where(*conditions)
        .order_by(LoanApplication.created_at.desc(), LoanApplication.application_number.desc())
    )
    count_stmt = select(func.count()).select_from(LoanApplication).where(*conditions)
    with store_errors("loan_application.list"):
        total = (await db.execute(count_stmt)).scalar_one()
        rows = (await db.execute(stmt.offset(offset).limit(limit))).scalars().all()
    return list(rows), int(total)


async def update_application(
    db: AsyncSession,
    application_id: UUID,
    payload: LoanApplicationUpdate,
    *,
    actor_id: str | None = None,
) -> LoanApplication:
    application = await _load(db, application_id)
    if application.status != ApplicationStatus.UNDER_REVIEW.value:
        raise await _already_reviewed(db, application)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return application
    old_value = model_snapshot(application)
    for field in changes:
        value = getattr(payload, field)
        if field in {"nominee", "guarantor", "co_applicant"}:
            value = value.model_dump() if value is not None else None
            if value is None and field != "co_applicant":
                continue
        setattr(application, field, value)
    _record_audit_log(db, actor_id=actor_id, action="loan_application.updated", application=application, old_value=old_value)
    try:
        await flush(db, "loan_application.update")
    except StaleDataError:
        await db.rollback()
        current = await _load(db, application_id, refresh=True)
        raise await _already_reviewed(db, current)
    return application


async def approve_application(
    db: AsyncSession,
    application_id: UUID,
    *,
    reviewed_by: str,
    idempotency_key: str | None = None,
) -> Approval:
    """Approve an application and open its loan in the caller's transaction.

    Postcondition on success: the application is ``approved`` and points at a
    new loan whose ``application_id`` points back, with a freshly issued loan
    account number and ``remaining_amount == principal``. A second approval,
    concurrent or not, raises AlreadyReviewed; nothing of the losing attempt
    survives, including its loan-number increment. Retrying with the same
    ``idempotency_key`` returns the original outcome instead.
    """
    idempotency_key = _validate_idempotency_key(idempotency_key)
    application = await _load(db, application_id)
    if application.status != ApplicationStatus.UNDER_REVIEW.value:
        replay = await _replay(db, application, idempotency_key)
        if replay is not None:
            return replay
        raise await _already_reviewed(db, application)
    ensure_transition(ENTITY, application.status, ApplicationStatus.APPROVED)

    loan_account_number = await identifiers.issue_identifier(db, identifiers.loan_kind())
    now = utcnow()
    loan = Loan(
        id=uuid4(),
        loan_account_number=loan_account_number,
        membership_id=application.membership_id,
        application_id=application.id,
        principal=application.requested_amount,
        tenure_days=application.tenure_days,
        installment_amount=application.installment_amount,
        remaining_amount=application.requested_amount,
        posting_count=0,
        status=LoanStatus.PENDING.value,
        created_by=reviewed_by,
    )
    if settings.loan_initial_status == LoanStatus.APPROVED.value:
        loans.apply_approval(loan, reviewed_by=reviewed_by, at=now)
    db.add(loan)

    old_value = model_snapshot(application)
    application.status = ApplicationStatus.APPROVED.value
    application.loan_id = loan.id
    application.reviewed_by = reviewed_by
    application.reviewed_at = now
    application.approved_at = now
    application.approve_idempotency_key = idempotency_key
    try:
        await flush(db, "loan_application.approve")
    except (StaleDataError, IntegrityError) as exc:
        await db.rollback()
        current = await _load(db, application_id, refresh=True)
        if current.status != ApplicationStatus.UNDER_REVIEW.value:
            # Another reviewer won: the version check or loans.application_id uniqueness tripped.
            replay = await _replay(db, current, idempotency_key)
            if replay is not None:
                return replay
            raise await _already_reviewed(db, current) from exc
        if isinstance(exc, IntegrityError):
            # Still reviewable, so the issued loan number itself clashed (e.g. after a counter reset).
            logger.error(
                "Loan account number collision",
                extra={"application_id": str(application_id), "loan_account_number": loan_account_number},
            )
            raise DuplicateRecord(
                loans.ENTITY,
                details={"loan_account_number": loan_account_number, "application_number": current.application_number},
            ) from exc
        # An edit landed between our read and write; the caller can simply retry.
        raise ConcurrentModification(ENTITY, application_id, 1) from exc

    _record_audit_log(db, actor_id=reviewed_by, action="loan_application.approved", application=application, old_value=old_value)
    record_audit_log(
        db,
        actor_id=reviewed_by,
        action="loan.created",
        resource_type=loans.ENTITY,
        resource_id=loan.id,
        new_value=model_snapshot(loan),
    )
    await flush(db, "loan_application.approve")
    logger.info(
        "Loan application approved",
        extra={
            "application_id": str(application.id),
            "application_number": application.application_number,
            "loan_id": str(loan.id),
            "loan_account_number": loan_account_number,
        },
    )
    return Approval(application=application, loan=loan)


async def reject_application(
    db: AsyncSession,
    application_id: UUID,
    *,
    reviewed_by: str,
    reason: str | None = None,
) -> LoanApplication:
    application = await _load(db, application_id)
    if application.status != ApplicationStatus.UNDER_REVIEW.value:
        raise await _already_reviewed(db, application)
    ensure_transition(ENTITY, application.status, ApplicationStatus.REJECTED)
    old_value = model_snapshot(application)
    application.status = ApplicationStatus.REJECTED.value
    application.rejection_reason = reason
    application.reviewed_by = reviewed_by
    application.reviewed_at = utcnow()
    _record_audit_log(db, actor_id=reviewed_by, action="loan_application.rejected", application=application, old_value=old_value)
    try:
        await flush(db, "loan_application.reject")
    except StaleDataError:
        await db.rollback()
        current = await _load(db, application_id, refresh=True)
        raise await _already_reviewed(db, current)
    logger.info(
        "Loan application rejected",
        extra={"application_id": str(application.id), "application_number": application.application_number},
    )
    return application
