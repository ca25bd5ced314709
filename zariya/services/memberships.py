from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from zariya.db.retry import flush, retry_read, store_errors
from zariya.models.membership import Membership
from zariya.models.types import utcnow
from zariya.schemas.membership import DocumentSlot, MembershipCreate, MembershipUpdate
from zariya.services import identifiers
from zariya.services.audit import model_snapshot, record_audit_log
from zariya.services.errors import AlreadyReviewed, DuplicateRecord, InvalidTransition, NotFound
from zariya.services.lifecycle import MembershipStatus, ensure_transition

logger = logging.getLogger(__name__)

ENTITY = "membership"
EMPTY_DOCUMENT_REFS = {slot.value: None for slot in DocumentSlot}
_UNIQUE_FIELDS = ("mobile_number", "aadhar", "pan")


def _record_audit_log(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    membership: Membership,
    old_value: dict | None,
) -> None:
    record_audit_log(
        db,
        actor_id=actor_id,
        action=action,
        resource_type=ENTITY,
        resource_id=membership.id,
        old_value=old_value,
        new_value=model_snapshot(membership),
    )


def notification_payload(membership: Membership) -> dict[str, Any]:
    return {
        "membership_id": str(membership.id),
        "display_id": membership.display_id,
        "full_name": membership.full_name,
        "email": membership.email,
        "mobile_number": membership.mobile_number,
        "status": membership.status,
        "rejection_reason": membership.rejection_reason,
    }


async def _find_duplicates(db: AsyncSession, values: dict[str, Any], *, exclude_id: UUID | None = None) -> list[str]:
    clashes = []
    for field in _UNIQUE_FIELDS:
        value = values.get(field)
        if not value:
            continue
        stmt = select(Membership.id).where(getattr(Membership, field) == value)
        if exclude_id is not None:
            stmt = stmt.where(Membership.id != exclude_id)
        with store_errors("membership.duplicate_check"):
            result = await db.execute(stmt.limit(1))
        if result.scalar_one_or_none() is not None:
            clashes.append(field)
    return clashes


async def _load(db: AsyncSession, membership_id: UUID) -> Membership:
    with store_errors("membership.load"):
        membership = await db.get(Membership, membership_id)
    if membership is None:
        raise NotFound(ENTITY, membership_id)
    return membership


async def create_membership(db: AsyncSession, payload: MembershipCreate) -> Membership:
    """Register a new member in ``pending`` status with a freshly issued display id."""
    values = payload.model_dump(exclude={"address", "created_by"})
    clashes = await _find_duplicates(db, values)
    if clashes:
        raise DuplicateRecord(ENTITY, details={"fields": clashes})

    display_id = await identifiers.issue_identifier(db, identifiers.membership_kind())
    membership = Membership(
        display_id=display_id,
        address=payload.address.model_dump(),
        document_refs=dict(EMPTY_DOCUMENT_REFS),
        status=MembershipStatus.PENDING.value,
        created_by=payload.created_by,
        **values,
    )
    db.add(membership)
    try:
        await flush(db, "membership.create")
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateRecord(ENTITY, details={"fields": list(_UNIQUE_FIELDS)}) from exc
    _record_audit_log(db, actor_id=payload.created_by, action="membership.created", membership=membership, old_value=None)
    await flush(db, "membership.create")
    logger.info("Membership created", extra={"membership_id": str(membership.id), "display_id": display_id})
    return membership


@retry_read
async def get_membership(db: AsyncSession, membership_id: UUID) -> Membership:
    return await _load(db, membership_id)


@retry_read
async def get_membership_by_display_id(db: AsyncSession, display_id: str) -> Membership:
    with store_errors("membership.by_display_id"):
        result = await db.execute(select(Membership).where(Membership.display_id == display_id))
    membership = result.scalar_one_or_none()
    if membership is None:
        raise NotFound(ENTITY, display_id)
    return membership


async def resolve_membership(db: AsyncSession, reference: str | UUID) -> Membership:
    """Look a membership up by UUID or by its ``ZMID-…`` display id."""
    kind = identifiers.membership_kind()
    if isinstance(reference, str) and identifiers.looks_like(reference, kind.prefix):
        return await get_membership_by_display_id(db, reference.strip())
    membership_id = identifiers.as_uuid(reference)
    if membership_id is None:
        raise NotFound(ENTITY, reference)
    return await get_membership(db, membership_id)


@retry_read
async def list_memberships(
    db: AsyncSession,
    *,
    status: MembershipStatus | str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Membership], int]:
    conditions = []
    if status:
        conditions.append(Membership.status == MembershipStatus(status).value)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(
                Membership.full_name.ilike(pattern),
                Membership.display_id.ilike(pattern),
                Membership.mobile_number.ilike(pattern),
            )
        )
    stmt = select(Membership).where(*conditions).order_by(Membership.created_at.desc(), Membership.display_id.desc())
    count_stmt = select(func.count()).select_from(Membership).where(*conditions)
    with store_errors("membership.list"):
        total = (await db.execute(count_stmt)).scalar_one()
        rows = (await db.execute(stmt.offset(offset).limit(limit))).scalars().all()
    return list(rows), int(total)


def _ensure_editable(membership: Membership) -> None:
    if membership.status != MembershipStatus.PENDING.value:
        raise AlreadyReviewed(ENTITY, membership.status, details={"display_id": membership.display_id})


async def _flush_transition(db: AsyncSession, membership_id: UUID, attempted: str, operation: str) -> None:
    try:
        await flush(db, operation)
    except StaleDataError:
        await db.rollback()
        with store_errors(operation):
            current = await db.get(Membership, membership_id, populate_existing=True)
        if current is None:
            raise NotFound(ENTITY, membership_id)
        raise InvalidTransition(ENTITY, current.status, attempted, details={"reason": "concurrent_update"})


async def update_membership(
    db: AsyncSession,
    membership_id: UUID,
    payload: MembershipUpdate,
    *,
    actor_id: str | None = None,
) -> Membership:
    membership = await _load(db, membership_id)
    _ensure_editable(membership)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return membership
    clashes = await _find_duplicates(db, changes, exclude_id=membership.id)
    if clashes:
        raise DuplicateRecord(ENTITY, details={"fields": clashes})
    old_value = model_snapshot(membership)
    for field, value in changes.items():
        if field == "address":
            value = payload.address.model_dump() if payload.address is not None else membership.address
        setattr(membership, field, value)
    _record_audit_log(db, actor_id=actor_id, action="membership.updated", membership=membership, old_value=old_value)
    try:
        await _flush_transition(db, membership.id, MembershipStatus.PENDING.value, "membership.update")
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateRecord(ENTITY, details={"fields": list(_UNIQUE_FIELDS)}) from exc
    return membership


async def approve_membership(db: AsyncSession, membership_id: UUID, *, reviewed_by: str) -> Membership:
    membership = await _load(db, membership_id)
    ensure_transition(ENTITY, membership.status, MembershipStatus.APPROVED)
    old_value = model_snapshot(membership)
    membership.status = MembershipStatus.APPROVED.value
    membership.rejection_reason = None
    membership.reviewed_by = reviewed_by
    membership.reviewed_at = utcnow()
    _record_audit_log(db, actor_id=reviewed_by, action="membership.approved", membership=membership, old_value=old_value)
    await _flush_transition(db, membership.id, MembershipStatus.APPROVED.value, "membership.approve")
    logger.info("Membership approved", extra={"membership_id": str(membership.id), "display_id": membership.display_id})
    return membership


async def reject_membership(
    db: AsyncSession,
    membership_id: UUID,
    *,
    reviewed_by: str,
    reason: str | None = None,
) -> Membership:
    membership = await _load(db, membership_id)
    ensure_transition(ENTITY, membership.status, MembershipStatus.REJECTED)
    old_value = model_snapshot(membership)
    membership.status = MembershipStatus.REJECTED.value
    membership.rejection_reason = reason
    membership.reviewed_by = reviewed_by
    membership.reviewed_at = utcnow()
    _record_audit_log(db, actor_id=reviewed_by, action="membership.rejected", membership=membership, old_value=old_value)
    await _flush_transition(db, membership.id, MembershipStatus.REJECTED.value, "membership.reject")
    logger.info("Membership rejected", extra={"membership_id": str(membership.id), "display_id": membership.display_id})
    return membership


async def attach_membership_document(
    db: AsyncSession,
    membership_id: UUID,
    slot: DocumentSlot | str,
    reference: str,
    *,
    actor_id: str | None = None,
) -> tuple[Membership, str | None]:
    """Point ``slot`` at a stored document; returns the membership and the reference it replaced."""
    slot = DocumentSlot(slot)
    membership = await _load(db, membership_id)
    _ensure_editable(membership)
    old_value = model_snapshot(membership)
    refs = dict(EMPTY_DOCUMENT_REFS)
    refs.update(membership.document_refs or {})
    previous = refs.get(slot.value)
    refs[slot.value] = reference
    membership.document_refs = refs
    _record_audit_log(
        db, actor_id=actor_id, action="membership.document_attached", membership=membership, old_value=old_value
    )
    await _flush_transition(db, membership.id, MembershipStatus.PENDING.value, "membership.attach_document")
    return membership, previous
