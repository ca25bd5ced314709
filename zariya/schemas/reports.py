from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class CollectionPosting(BaseModel):
    repayment_id: UUID
    loan_id: UUID
    loan_account_number: str
    membership_display_id: str
    member_name: str
    sequence_no: int
    amount: Decimal
    payment_method: str
    is_late_fee: bool
    payment_date: datetime
    recorded_by: str | None = None


class DailyCollectionReport(BaseModel):
    date: date
    timezone: str
    postings: list[CollectionPosting]
    total_collection: Decimal = Field(description="Principal repayments, late fees excluded")
    total_late_fee: Decimal
    grand_total: Decimal
    total_count: int
    by_method: dict[str, Decimal]


class DashboardStats(BaseModel):
    approved_members: int
    total_loans: int
    pending_memberships: int
    pending_applications: int
    pending_loans: int
    pending_approvals: int
    total_disbursed: Decimal
    outstanding_balance: Decimal


class ActivityItem(BaseModel):
    type: Literal["membership", "loan"]
    id: UUID
    reference: str
    title: str
    description: str
    status: str
    created_at: datetime


class RecentActivity(BaseModel):
    items: list[ActivityItem]


class OrphanLoan(BaseModel):
    loan_id: UUID
    loan_account_number: str
    application_id: UUID
    application_status: str
    action: str


class BalanceMismatch(BaseModel):
    loan_id: UUID
    loan_account_number: str
    recorded_remaining: Decimal
    expected_remaining: Decimal


class ReconciliationReport(BaseModel):
    rolled_forward: list[OrphanLoan] = Field(default_factory=list)
    removed: list[OrphanLoan] = Field(default_factory=list)
    needs_attention: list[OrphanLoan] = Field(default_factory=list)
