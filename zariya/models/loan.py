import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)

from zariya.db.base import Base
from zariya.models.types import UTCDateTime, utcnow


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("principal > 0", name="ck_loan_principal_positive"),
        CheckConstraint("tenure_days > 0", name="ck_loan_tenure_positive"),
        CheckConstraint("installment_amount > 0", name="ck_loan_installment_positive"),
        CheckConstraint(
            "remaining_amount >= 0 AND remaining_amount <= principal",
            name="ck_loan_remaining_bounds",
        ),
        CheckConstraint("posting_count >= 0", name="ck_loan_posting_count_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_version_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'active', 'closed', 'rejected')",
            name="ck_loan_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_account_number = Column(String(32), nullable=False, unique=True)
    membership_id = Column(
        Uuid,
        ForeignKey("memberships.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    application_id = Column(
        Uuid,
        ForeignKey("loan_applications.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    principal = Column(Numeric(18, 2), nullable=False)
    tenure_days = Column(Integer, nullable=False)
    installment_amount = Column(Numeric(18, 2), nullable=False)
    remaining_amount = Column(Numeric(18, 2), nullable=False)
    posting_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    approved_at = Column(UTCDateTime, nullable=True)
    activated_at = Column(UTCDateTime, nullable=True)
    closed_at = Column(UTCDateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(UTCDateTime, nullable=True)
    created_by = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
