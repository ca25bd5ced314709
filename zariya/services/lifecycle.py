"""Status enums and transition tables for memberships, loan applications and loans.

Every status change in the service layer goes through ``ensure_transition``;
the tables below are the single source of truth for which moves are legal.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from zariya.services.errors import InvalidTransition


class MembershipStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApplicationStatus(str, Enum):
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    CLOSED = "closed"
    REJECTED = "rejected"


MEMBERSHIP_TRANSITIONS: Mapping[str, frozenset[str]] = {
    MembershipStatus.PENDING.value: frozenset({MembershipStatus.APPROVED.value, MembershipStatus.REJECTED.value}),
    MembershipStatus.APPROVED.value: frozenset(),
    MembershipStatus.REJECTED.value: frozenset(),
}

APPLICATION_TRANSITIONS: Mapping[str, frozenset[str]] = {
    ApplicationStatus.UNDER_REVIEW.value: frozenset(
        {ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value}
    ),
    ApplicationStatus.APPROVED.value: frozenset(),
    ApplicationStatus.REJECTED.value: frozenset(),
}

LOAN_TRANSITIONS: Mapping[str, frozenset[str]] = {
    LoanStatus.PENDING.value: frozenset({LoanStatus.APPROVED.value, LoanStatus.REJECTED.value}),
    LoanStatus.APPROVED.value: frozenset(
        {LoanStatus.ACTIVE.value, LoanStatus.REJECTED.value, LoanStatus.CLOSED.value}
    ),
    LoanStatus.ACTIVE.value: frozenset({LoanStatus.CLOSED.value}),
    LoanStatus.CLOSED.value: frozenset(),
    LoanStatus.REJECTED.value: frozenset(),
}

TRANSITIONS: Mapping[str, Mapping[str, frozenset[str]]] = {
    "membership": MEMBERSHIP_TRANSITIONS,
    "loan_application": APPLICATION_TRANSITIONS,
    "loan": LOAN_TRANSITIONS,
}


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def can_transition(entity: str, current, target) -> bool:
    table = TRANSITIONS[entity]
    return _value(target) in table.get(_value(current), frozenset())


def ensure_transition(entity: str, current, target) -> None:
    if not can_transition(entity, current, target):
        raise InvalidTransition(entity, _value(current), _value(target))


def is_terminal(entity: str, status) -> bool:
    return not TRANSITIONS[entity].get(_value(status))
