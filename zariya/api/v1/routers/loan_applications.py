from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.api import deps
from zariya.db.retry import commit
from zariya.schemas.loan import (
    ApprovalResult,
    ApproveApplicationRequest,
    LoanApplicationCreate,
    LoanApplicationListResponse,
    LoanApplicationRead,
    LoanApplicationUpdate,
    LoanRead,
)
from zariya.schemas.membership import RejectRequest
from zariya.services import loan_applications, loans, notifications
from zariya.services.lifecycle import ApplicationStatus

router = APIRouter(prefix="/loan-applications", tags=["loan-applications"])


@router.post("", response_model=LoanApplicationRead, status_code=status.HTTP_201_CREATED)
async def submit_application(
    payload: LoanApplicationCreate,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationRead:
    application = await loan_applications.submit_application(db, payload)
    await commit(db, "loan_application.submit")
    return LoanApplicationRead.model_validate(application)


@router.get("", response_model=LoanApplicationListResponse)
async def list_applications(
    status_filter: ApplicationStatus | None = Query(default=None, alias="status"),
    membership_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: deps.PageParams = Depends(deps.page_params),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationListResponse:
    rows, total = await loan_applications.list_applications(
        db,
        status=status_filter,
        membership_id=membership_id,
        search=search,
        offset=page.offset,
        limit=page.limit,
    )
    return LoanApplicationListResponse(
        items=[LoanApplicationRead.model_validate(row) for row in rows],
        total=total,
        offset=page.offset,
        limit=page.limit,
    )


@router.get("/{reference}", response_model=LoanApplicationRead)
async def get_application(
    reference: str,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationRead:
    application = await loan_applications.resolve_application(db, reference)
    return LoanApplicationRead.model_validate(application)


@router.patch("/{reference}", response_model=LoanApplicationRead)
async def update_application(
    reference: str,
    payload: LoanApplicationUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    actor_id: str | None = Depends(deps.get_actor_id),
) -> LoanApplicationRead:
    application = await loan_applications.resolve_application(db, reference)
    application = await loan_applications.update_application(db, application.id, payload, actor_id=actor_id)
    await commit(db, "loan_application.update")
    return LoanApplicationRead.model_validate(application)


@router.post("/{reference}/approve", response_model=ApprovalResult)
async def approve_application(
    reference: str,
    payload: ApproveApplicationRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApprovalResult:
    application = await loan_applications.resolve_application(db, reference)
    approval = await loan_applications.approve_application(
        db,
        application.id,
        reviewed_by=payload.reviewed_by,
        idempotency_key=payload.idempotency_key or idempotency_key,
    )
    await commit(db, "loan_application.approve")
    if not approval.replayed:
        background_tasks.add_task(
            notifications.dispatch,
            notifications.APPLICATION_APPROVED,
            loan_applications.notification_payload(approval.application),
        )
        background_tasks.add_task(
            notifications.dispatch, notifications.LOAN_CREATED, loans.notification_payload(approval.loan)
        )
    return ApprovalResult(
        application=LoanApplicationRead.model_validate(approval.application),
        loan=LoanRead.model_validate(approval.loan),
    )


@router.post("/{reference}/reject", response_model=LoanApplicationRead)
async def reject_application(
    reference: str,
    payload: RejectRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationRead:
    application = await loan_applications.resolve_application(db, reference)
    application = await loan_applications.reject_application(
        db, application.id, reviewed_by=payload.reviewed_by, reason=payload.reason
    )
    await commit(db, "loan_application.reject")
    background_tasks.add_task(
        notifications.dispatch,
        notifications.APPLICATION_REJECTED,
        loan_applications.notification_payload(application),
    )
    return LoanApplicationRead.model_validate(application)
