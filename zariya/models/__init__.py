from zariya.models.audit_log import AuditLog
from zariya.models.loan import Loan
from zariya.models.loan_application import LoanApplication
from zariya.models.membership import Membership
from zariya.models.repayment import Repayment
from zariya.models.sequence_counter import SequenceCounter

__all__ = [
    "AuditLog",
    "Loan",
    "LoanApplication",
    "Membership",
    "Repayment",
    "SequenceCounter",
]
