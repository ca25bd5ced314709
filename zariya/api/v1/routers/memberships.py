from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.api import deps
from zariya.db.retry import commit
from zariya.schemas.membership import (
    DocumentSlot,
    MembershipCreate,
    MembershipListResponse,
    MembershipRead,
    MembershipUpdate,
    RejectRequest,
    ReviewRequest,
)
from zariya.services import documents, memberships, notifications
from zariya.services.errors import CoreError
from zariya.services.lifecycle import MembershipStatus

router = APIRouter(prefix="/memberships", tags=["memberships"])


@router.post("", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
async def create_membership(
    payload: MembershipCreate,
    db: AsyncSession = Depends(deps.get_db_session),
) -> MembershipRead:
    membership = await memberships.create_membership(db, payload)
    await commit(db, "membership.create")
    return MembershipRead.model_validate(membership)


@router.get("", response_model=MembershipListResponse)
async def list_memberships(
    status_filter: MembershipStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
    page: deps.PageParams = Depends(deps.page_params),
    db: AsyncSession = Depends(deps.get_db_session),
) -> MembershipListResponse:
    rows, total = await memberships.list_memberships(
        db, status=status_filter, search=search, offset=page.offset, limit=page.limit
    )
    return MembershipListResponse(
        items=[MembershipRead.model_validate(row) for row in rows],
        total=total,
        offset=page.offset,
        limit=page.limit,
    )


@router.get("/{reference}", response_model=MembershipRead)
async def get_membership(reference: str, db: AsyncSession = Depends(deps.get_db_session)) -> MembershipRead:
    membership = await memberships.resolve_membership(db, reference)
    return MembershipRead.model_validate(membership)


@router.patch("/{reference}", response_model=MembershipRead)
async def update_membership(
    reference: str,
    payload: MembershipUpdate,
    db: AsyncSession = Depends(deps.get_db_session),
    actor_id: str | None = Depends(deps.get_actor_id),
) -> MembershipRead:
    membership = await memberships.resolve_membership(db, reference)
    membership = await memberships.update_membership(db, membership.id, payload, actor_id=actor_id)
    await commit(db, "membership.update")
    return MembershipRead.model_validate(membership)


@router.post("/{reference}/approve", response_model=MembershipRead)
async def approve_membership(
    reference: str,
    payload: ReviewRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(deps.get_db_session),
) -> MembershipRead:
    membership = await memberships.resolve_membership(db, reference)
    membership = await memberships.approve_membership(db, membership.id, reviewed_by=payload.reviewed_by)
    await commit(db, "membership.approve")
    background_tasks.add_task(
        notifications.dispatch, notifications.MEMBERSHIP_APPROVED, memberships.notification_payload(membership)
    )
    return MembershipRead.model_validate(membership)


@router.post("/{reference}/reject", response_model=MembershipRead)
async def reject_membership(
    reference: str,
    payload: RejectRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(deps.get_db_session),
) -> MembershipRead:
    membership = await memberships.resolve_membership(db, reference)
    membership = await memberships.reject_membership(
        db, membership.id, reviewed_by=payload.reviewed_by, reason=payload.reason
    )
    await commit(db, "membership.reject")
    background_tasks.add_task(
        notifications.dispatch, notifications.MEMBERSHIP_REJECTED, memberships.notification_payload(membership)
    )
    return MembershipRead.model_validate(membership)


@router.get("/{reference}/documents")
async def get_membership_documents(
    reference: str,
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    membership = await memberships.resolve_membership(db, reference)
    refs = membership.document_refs or {}
    return {slot.value: documents.resolve_document(refs.get(slot.value)) for slot in DocumentSlot}


@router.put("/{reference}/documents/{slot}", response_model=MembershipRead)
async def upload_membership_document(
    reference: str,
    slot: DocumentSlot,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(deps.get_db_session),
    actor_id: str | None = Depends(deps.get_actor_id),
) -> MembershipRead:
    membership = await memberships.resolve_membership(db, reference)
    try:
        object_key = await documents.store_document(file, owner=membership.display_id, slot=slot.value)
    except documents.DocumentRejected as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        membership, previous = await memberships.attach_membership_document(
            db, membership.id, slot, object_key, actor_id=actor_id
        )
        await commit(db, "membership.attach_document")
    except CoreError:
        documents.discard_document(object_key)
        raise
    background_tasks.add_task(documents.discard_document, previous)
    return MembershipRead.model_validate(membership)
