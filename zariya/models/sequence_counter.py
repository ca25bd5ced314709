from sqlalchemy import BigInteger, CheckConstraint, Column, String

from zariya.db.base import Base
from zariya.models.types import UTCDateTime, utcnow


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"
    __table_args__ = (CheckConstraint("value >= 0", name="ck_sequence_counter_value_nonneg"),)

    name = Column(String(64), primary_key=True)
    value = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
