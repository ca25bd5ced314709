import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)

from zariya.db.base import Base
from zariya.models.types import JSONType, UTCDateTime, utcnow


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="ck_loan_app_amount_positive"),
        CheckConstraint("tenure_days > 0", name="ck_loan_app_tenure_positive"),
        CheckConstraint("installment_amount > 0", name="ck_loan_app_installment_positive"),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        CheckConstraint(
            "status IN ('under_review', 'approved', 'rejected')",
            name="ck_loan_app_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_number = Column(String(32), nullable=False, unique=True)
    membership_id = Column(
        Uuid,
        ForeignKey("memberships.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    requested_amount = Column(Numeric(18, 2), nullable=False)
    tenure_days = Column(Integer, nullable=False)
    installment_amount = Column(Numeric(18, 2), nullable=False)
    purpose = Column(Text, nullable=True)
    mobile_number = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    bank_account_number = Column(String(34), nullable=True)
    nominee = Column(JSONType, nullable=False, default=dict)
    guarantor = Column(JSONType, nullable=False, default=dict)
    co_applicant = Column(JSONType, nullable=True)
    status = Column(String(20), nullable=False, default="under_review", index=True)
    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(UTCDateTime, nullable=True)
    approved_at = Column(UTCDateTime, nullable=True)
    # No FK: loans.application_id owns the link, this is the back-reference.
    loan_id = Column(Uuid, nullable=True, unique=True)
    approve_idempotency_key = Column(String(100), nullable=True)
    created_by = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
