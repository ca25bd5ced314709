from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from zariya.schemas.membership import MOBILE_PATTERN, Address, RejectRequest, ReviewRequest

Money = Decimal


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CHEQUE = "cheque"
    OTHER = "other"


class Nominee(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    relationship: str = Field(min_length=1, max_length=100)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    bank_account_number: str = ""
    address: Address


class Guarantor(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    father_or_husband_name: str = Field(min_length=1, max_length=255)
    relationship: str = Field(min_length=1, max_length=100)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    bank_account_number: str = ""
    address: Address


class CoApplicant(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    father_or_husband_name: str = Field(min_length=1, max_length=255)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    email: EmailStr | None = None
    address: Address


class LoanApplicationCreate(BaseModel):
    membership_id: str = Field(description="Membership UUID or display id (ZMID-…)")
    requested_amount: Money = Field(gt=0, max_digits=18, decimal_places=2)
    tenure_days: int = Field(ge=1)
    installment_amount: Money = Field(gt=0, max_digits=18, decimal_places=2)
    purpose: str = Field(min_length=1, max_length=2000)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    email: EmailStr | None = None
    bank_account_number: str | None = Field(default=None, max_length=34)
    nominee: Nominee
    guarantor: Guarantor
    co_applicant: CoApplicant | None = None
    created_by: str | None = None


class LoanApplicationUpdate(BaseModel):
    requested_amount: Money | None = Field(default=None, gt=0, max_digits=18, decimal_places=2)
    tenure_days: int | None = Field(default=None, ge=1)
    installment_amount: Money | None = Field(default=None, gt=0, max_digits=18, decimal_places=2)
    purpose: str | None = Field(default=None, min_length=1, max_length=2000)
    mobile_number: str | None = Field(default=None, pattern=MOBILE_PATTERN)
    email: EmailStr | None = None
    bank_account_number: str | None = Field(default=None, max_length=34)
    nominee: Nominee | None = None
    guarantor: Guarantor | None = None
    co_applicant: CoApplicant | None = None


class ApproveApplicationRequest(ReviewRequest):
    idempotency_key: str | None = Field(default=None, min_length=8, max_length=100)


class LoanApplicationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_number: str
    membership_id: UUID
    requested_amount: Money
    tenure_days: int
    installment_amount: Money
    purpose: str | None = None
    mobile_number: str | None = None
    email: str | None = None
    bank_account_number: str | None = None
    nominee: dict
    guarantor: dict
    co_applicant: dict | None = None
    status: str
    rejection_reason: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    approved_at: datetime | None = None
    loan_id: UUID | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class LoanApplicationListResponse(BaseModel):
    items: list[LoanApplicationRead]
    total: int
    offset: int
    limit: int


class LoanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_account_number: str
    membership_id: UUID
    application_id: UUID
    principal: Money
    tenure_days: int
    installment_amount: Money
    remaining_amount: Money
    posting_count: int
    status: str
    start_date: date | None = None
    end_date: date | None = None
    approved_at: datetime | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None
    rejection_reason: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class LoanListResponse(BaseModel):
    items: list[LoanRead]
    total: int
    offset: int
    limit: int


class ApprovalResult(BaseModel):
    application: LoanApplicationRead
    loan: LoanRead


class LoanReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class LoanReviewRequest(RejectRequest):
    decision: LoanReviewDecision


class RepaymentCreate(BaseModel):
    amount: Money = Field(max_digits=18, decimal_places=2)
    payment_method: PaymentMethod
    is_late_fee: bool = False
    payment_date: datetime | date | None = None
    recorded_by: str = Field(min_length=1, max_length=255)
    remarks: str | None = Field(default=None, max_length=2000)
    receipt_ref: str | None = Field(default=None, max_length=1024)
    idempotency_key: str | None = Field(default=None, min_length=8, max_length=100)


class RepaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    sequence_no: int
    amount: Money
    payment_date: datetime
    payment_method: str
    is_late_fee: bool
    recorded_by: str | None = None
    remarks: str | None = None
    receipt_ref: str | None = None
    created_at: datetime


class RepaymentPage(BaseModel):
    items: list[RepaymentRead]
    next_cursor: int | None = None
    total_paid: Money
    total_late_fee: Money


class LoanBalanceSummary(BaseModel):
    loan_id: UUID
    loan_account_number: str
    status: str
    principal: Money
    remaining_amount: Money
    principal_paid: Money
    late_fees_paid: Money
    posting_count: int
