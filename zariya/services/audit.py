from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.core.logging import get_audit_logger
from zariya.models.audit_log import AuditLog

# Bookkeeping columns that change on every write and would drown the diff.
_NOISE_COLUMNS = frozenset({"updated_at", "version"})

_AUDIT_ENCODERS = {
    Decimal: str,
    datetime: lambda value: value.isoformat(),
    date: lambda value: value.isoformat(),
}


def serialize_for_audit(value: Any) -> Any:
    # Money stays a string so amounts round-trip exactly through JSON.
    return jsonable_encoder(value, custom_encoder=_AUDIT_ENCODERS)


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    skipped = _NOISE_COLUMNS | set(exclude or ())
    return serialize_for_audit(
        {column.name: getattr(model, column.name) for column in model.__table__.columns if column.name not in skipped}
    )


def diff_snapshots(old: Any, new: Any, path: str = "") -> dict[str, dict[str, Any]]:
    """Flatten the differences between two snapshots into ``{"a.b": {"from", "to"}}``."""
    if not (isinstance(old, dict) and isinstance(new, dict)):
        return {} if old == new else {path or "value": {"from": old, "to": new}}
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old) | set(new), key=str):
        changes.update(diff_snapshots(old.get(key), new.get(key), f"{path}.{key}" if path else str(key)))
    return changes


def _summarize(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    if not changes:
        return action
    fields = list(changes)
    shown = ", ".join(fields[:3])
    return f"{action}: {shown}..." if len(fields) > 3 else f"{action}: {shown}"


def record_audit_log(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    resource_type: str,
    resource_id: Any,
    old_value: Any | None = None,
    new_value: Any | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction and mirror it to the audit log stream."""
    before = serialize_for_audit(old_value) if old_value is not None else None
    after = serialize_for_audit(new_value) if new_value is not None else None
    changes = None
    if before is not None or after is not None:
        changes = diff_snapshots(before or {}, after or {}) or None
    summary = _summarize(action, changes)
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        old_value=before,
        new_value=after,
        changes=changes,
        summary=summary,
    )
    db.add(entry)
    get_audit_logger().info(
        summary,
        extra={"action": action, "resource_type": resource_type, "resource_id": str(resource_id), "actor_id": actor_id},
    )
    return entry
