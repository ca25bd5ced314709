import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from zariya.db.base import Base
from zariya.models.types import UTCDateTime, utcnow


class Repayment(Base):
    """Append-only ledger posting against a loan."""

    __tablename__ = "repayments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_repayment_amount_positive"),
        CheckConstraint("sequence_no >= 1", name="ck_repayment_sequence_positive"),
        CheckConstraint(
            "payment_method IN ('cash', 'bank_transfer', 'upi', 'cheque', 'other')",
            name="ck_repayment_payment_method",
        ),
        UniqueConstraint("loan_id", "sequence_no", name="uq_repayment_loan_sequence"),
        UniqueConstraint("loan_id", "idempotency_key", name="uq_repayment_loan_idempotency"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        Uuid,
        ForeignKey("loans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    sequence_no = Column(Integer, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    payment_date = Column(UTCDateTime, nullable=False, index=True)
    payment_method = Column(String(20), nullable=False)
    is_late_fee = Column(Boolean, nullable=False, default=False)
    recorded_by = Column(String(255), nullable=True)
    remarks = Column(Text, nullable=True)
    receipt_ref = Column(String(1024), nullable=True)
    idempotency_key = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
