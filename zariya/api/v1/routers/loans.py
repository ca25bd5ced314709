from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.api import deps
from zariya.db.retry import commit
from zariya.schemas.loan import (
    LoanBalanceSummary,
    LoanListResponse,
    LoanRead,
    LoanReviewRequest,
    RepaymentCreate,
    RepaymentPage,
    RepaymentRead,
)
from zariya.schemas.membership import RejectRequest, ReviewRequest
from zariya.services import loans, notifications, repayments
from zariya.services.lifecycle import LoanStatus

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("", response_model=LoanListResponse)
async def list_loans(
    status_filter: LoanStatus | None = Query(default=None, alias="status"),
    membership_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: deps.PageParams = Depends(deps.page_params),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanListResponse:
    rows, total = await loans.list_loans(
        db,
        status=status_filter,
        membership_id=membership_id,
        search=search,
        offset=page.offset,
        limit=page.limit,
    )
    return LoanListResponse(
        items=[LoanRead.model_validate(row) for row in rows],
        total=total,
        offset=page.offset,
        limit=page.limit,
    )


@router.get("/{reference}", response_model=LoanRead)
async def get_loan(reference: str, db: AsyncSession = Depends(deps.get_db_session)) -> LoanRead:
    loan = await loans.resolve_loan(db, reference)
    return LoanRead.model_validate(loan)


@router.post("/{reference}/review", response_model=LoanRead)
async def review_loan(
    reference: str,
    payload: LoanReviewRequest,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanRead:
    loan = await loans.resolve_loan(db, reference)
    loan = await loans.review_loan(
        db,
        loan.id,
        decision=payload.decision.value,
        reviewed_by=payload.reviewed_by,
        reason=payload.reason,
    )
    await commit(db, "loan.review")
    return LoanRead.model_validate(loan)


@router.post("/{reference}/reject", response_model=LoanRead)
async def reject_loan(
    reference: str,
    payload: RejectRequest,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanRead:
    loan = await loans.resolve_loan(db, reference)
    loan = await loans.reject_loan(db, loan.id, reviewed_by=payload.reviewed_by, reason=payload.reason)
    await commit(db, "loan.reject")
    return LoanRead.model_validate(loan)


@router.post("/{reference}/activate", response_model=LoanRead)
async def activate_loan(
    reference: str,
    payload: ReviewRequest,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanRead:
    loan = await loans.resolve_loan(db, reference)
    loan = await loans.activate_loan(db, loan.id, actor_id=payload.reviewed_by)
    await commit(db, "loan.activate")
    return LoanRead.model_validate(loan)


@router.get("/{reference}/balance", response_model=LoanBalanceSummary)
async def loan_balance(reference: str, db: AsyncSession = Depends(deps.get_db_session)) -> LoanBalanceSummary:
    loan = await loans.resolve_loan(db, reference)
    return await repayments.loan_balance_summary(db, loan.id)


@router.get("/{reference}/repayments", response_model=RepaymentPage)
async def list_loan_repayments(
    reference: str,
    after: int | None = Query(default=None, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(deps.get_db_session),
) -> RepaymentPage:
    loan = await loans.resolve_loan(db, reference)
    return await repayments.list_repayments(db, loan.id, after=after, limit=limit)


@router.post("/{reference}/repayments", response_model=RepaymentRead, status_code=status.HTTP_201_CREATED)
async def post_repayment(
    reference: str,
    payload: RepaymentCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(deps.get_db_session),
) -> RepaymentRead:
    loan = await loans.resolve_loan(db, reference)
    posting = await repayments.record_repayment(
        db,
        loan.id,
        amount=payload.amount,
        payment_method=payload.payment_method,
        is_late_fee=payload.is_late_fee,
        recorded_by=payload.recorded_by,
        payment_date=payload.payment_date,
        remarks=payload.remarks,
        receipt_ref=payload.receipt_ref,
        idempotency_key=payload.idempotency_key,
    )
    await commit(db, "repayment.post")
    if posting.closed_loan:
        background_tasks.add_task(
            notifications.dispatch, notifications.LOAN_CLOSED, loans.notification_payload(posting.loan)
        )
    return RepaymentRead.model_validate(posting.repayment)
