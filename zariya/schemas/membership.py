from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

MOBILE_PATTERN = r"^\d{10}$"
PIN_CODE_PATTERN = r"^\d{6}$"
AADHAR_PATTERN = r"^\d{12}$"
PAN_PATTERN = r"^[A-Z]{5}[0-9]{4}[A-Z]$"


class DocumentSlot(str, Enum):
    AADHAR_FRONT = "aadhar_front"
    AADHAR_BACK = "aadhar_back"
    PAN = "pan"
    PASSPORT_PHOTO = "passport_photo"


def _strip(value):
    if isinstance(value, str):
        return value.strip()
    return value


class Address(BaseModel):
    village: str = Field(min_length=1, max_length=255)
    post_office: str = Field(min_length=1, max_length=255)
    police_station: str = Field(min_length=1, max_length=255)
    district: str = Field(min_length=1, max_length=255)
    pin_code: str = Field(pattern=PIN_CODE_PATTERN)
    landmark: str = ""

    @field_validator("village", "post_office", "police_station", "district", "pin_code", "landmark", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)


class MembershipBase(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    father_or_husband_name: str = Field(min_length=1, max_length=255)
    date_of_birth: date
    age: int = Field(ge=18, le=100)
    occupation: str = Field(min_length=1, max_length=255)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    email: EmailStr | None = None
    aadhar: str | None = Field(default=None, pattern=AADHAR_PATTERN)
    pan: str | None = Field(default=None, pattern=PAN_PATTERN)
    address: Address

    @field_validator("full_name", "father_or_husband_name", "occupation", "mobile_number", "aadhar", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("pan", mode="before")
    @classmethod
    def normalize_pan(cls, value):
        value = _strip(value)
        if isinstance(value, str):
            return value.upper() or None
        return value


class MembershipCreate(MembershipBase):
    created_by: str | None = None


class MembershipUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    father_or_husband_name: str | None = Field(default=None, min_length=1, max_length=255)
    date_of_birth: date | None = None
    age: int | None = Field(default=None, ge=18, le=100)
    occupation: str | None = Field(default=None, min_length=1, max_length=255)
    mobile_number: str | None = Field(default=None, pattern=MOBILE_PATTERN)
    email: EmailStr | None = None
    aadhar: str | None = Field(default=None, pattern=AADHAR_PATTERN)
    pan: str | None = Field(default=None, pattern=PAN_PATTERN)
    address: Address | None = None

    @field_validator("pan", mode="before")
    @classmethod
    def normalize_pan(cls, value):
        value = _strip(value)
        if isinstance(value, str):
            return value.upper() or None
        return value


class ReviewRequest(BaseModel):
    reviewed_by: str = Field(min_length=1, max_length=255)


class RejectRequest(ReviewRequest):
    reason: str | None = Field(default=None, max_length=2000)


class MembershipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_id: str
    full_name: str
    father_or_husband_name: str | None = None
    date_of_birth: date | None = None
    age: int | None = None
    occupation: str | None = None
    mobile_number: str | None = None
    email: str | None = None
    aadhar: str | None = None
    pan: str | None = None
    address: dict
    document_refs: dict
    status: str
    rejection_reason: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class MembershipListResponse(BaseModel):
    items: list[MembershipRead]
    total: int
    offset: int
    limit: int
