import pytest

from zariya.services.errors import InvalidTransition
from zariya.services.lifecycle import (
    ApplicationStatus,
    LoanStatus,
    MembershipStatus,
    can_transition,
    ensure_transition,
    is_terminal,
)


@pytest.mark.parametrize(
    "entity,current,target,allowed",
    [
        ("membership", MembershipStatus.PENDING, MembershipStatus.APPROVED, True),
        ("membership", MembershipStatus.PENDING, MembershipStatus.REJECTED, True),
        ("membership", MembershipStatus.APPROVED, MembershipStatus.REJECTED, False),
        ("membership", MembershipStatus.REJECTED, MembershipStatus.APPROVED, False),
        ("loan_application", ApplicationStatus.UNDER_REVIEW, ApplicationStatus.APPROVED, True),
        ("loan_application", ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, False),
        ("loan", LoanStatus.PENDING, LoanStatus.APPROVED, True),
        ("loan", LoanStatus.PENDING, LoanStatus.ACTIVE, False),
        ("loan", LoanStatus.APPROVED, LoanStatus.ACTIVE, True),
        ("loan", LoanStatus.APPROVED, LoanStatus.CLOSED, True),
        ("loan", LoanStatus.ACTIVE, LoanStatus.CLOSED, True),
        ("loan", LoanStatus.ACTIVE, LoanStatus.REJECTED, False),
        ("loan", LoanStatus.CLOSED, LoanStatus.ACTIVE, False),
    ],
)
def test_transition_table(entity, current, target, allowed) -> None:
    assert can_transition(entity, current, target) is allowed
    assert can_transition(entity, current.value, target.value) is allowed


def test_ensure_transition_names_both_states() -> None:
    with pytest.raises(InvalidTransition) as exc_info:
        ensure_transition("loan", "closed", "active")
    assert exc_info.value.current == "closed"
    assert exc_info.value.attempted == "active"
    assert exc_info.value.details["entity"] == "loan"


def test_terminal_states() -> None:
    assert is_terminal("loan", LoanStatus.CLOSED)
    assert is_terminal("loan", LoanStatus.REJECTED)
    assert not is_terminal("loan", LoanStatus.ACTIVE)
    assert is_terminal("membership", MembershipStatus.APPROVED)
    assert not is_terminal("loan_application", ApplicationStatus.UNDER_REVIEW)
