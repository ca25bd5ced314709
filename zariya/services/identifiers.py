from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from zariya.core.settings import settings
from zariya.services import sequences
from zariya.services.errors import SequenceOverflow


@dataclass(frozen=True)
class IdentifierKind:
    sequence: str
    prefix: str
    width: int


def membership_kind() -> IdentifierKind:
    return IdentifierKind(sequences.MEMBERSHIP_SEQUENCE, settings.membership_id_prefix, settings.membership_id_width)


def application_kind() -> IdentifierKind:
    return IdentifierKind(
        sequences.LOAN_APPLICATION_SEQUENCE,
        settings.application_number_prefix,
        settings.application_number_width,
    )


def loan_kind() -> IdentifierKind:
    return IdentifierKind(sequences.LOAN_SEQUENCE, settings.loan_account_prefix, settings.loan_account_width)


def format_identifier(prefix: str, value: int, width: int) -> str:
    """Render ``value`` as ``PREFIX-000…N`` zero-padded to ``width`` digits."""
    if width <= 0:
        raise ValueError("width must be positive")
    if value < 0:
        raise ValueError("sequence value must be non-negative")
    if value > 10**width - 1:
        raise SequenceOverflow(prefix, value, width)
    return f"{prefix}-{value:0{width}d}"


def parse_identifier(identifier: str, prefix: str) -> int:
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d+)", (identifier or "").strip())
    if not match:
        raise ValueError(f"{identifier!r} is not a {prefix} identifier")
    return int(match.group(1))


def looks_like(identifier: str, prefix: str) -> bool:
    return (identifier or "").startswith(f"{prefix}-")


async def issue_identifier(db: AsyncSession, kind: IdentifierKind) -> str:
    value = await sequences.next_value(db, kind.sequence)
    return format_identifier(kind.prefix, value, kind.width)


def as_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None
