import uuid

from sqlalchemy import Column, Index, String, Text, Uuid

from zariya.db.base import Base
from zariya.models.types import JSONType, UTCDateTime, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_resource", "resource_type", "resource_id"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id = Column(String(255), nullable=True)
    action = Column(String(255), nullable=False)
    resource_type = Column(String(255), nullable=False)
    resource_id = Column(String(255), nullable=False)
    old_value = Column(JSONType, nullable=True)
    new_value = Column(JSONType, nullable=True)
    changes = Column(JSONType, nullable=True)
    summary = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
