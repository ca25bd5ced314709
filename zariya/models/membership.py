import uuid

from sqlalchemy import CheckConstraint, Column, Date, Integer, String, Text, Uuid

from zariya.db.base import Base
from zariya.models.types import JSONType, UTCDateTime, utcnow


class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_membership_version_positive"),
        CheckConstraint("age IS NULL OR age >= 0", name="ck_membership_age_nonneg"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_membership_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    display_id = Column(String(32), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False, index=True)
    father_or_husband_name = Column(String(255), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    age = Column(Integer, nullable=True)
    occupation = Column(String(255), nullable=True)
    mobile_number = Column(String(20), nullable=True, unique=True)
    email = Column(String(255), nullable=True)
    aadhar = Column(String(12), nullable=True, unique=True)
    pan = Column(String(10), nullable=True, unique=True)
    address = Column(JSONType, nullable=False, default=dict)
    document_refs = Column(JSONType, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="pending", index=True)
    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(UTCDateTime, nullable=True)
    created_by = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
