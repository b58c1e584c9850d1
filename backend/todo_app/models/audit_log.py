"""Audit log model."""
from sqlalchemy import Boolean, Column, DateTime, Index, String

from todo_app.clock import utcnow
from todo_app.database import Base
from todo_app.models.base import generate_id


class AuditLog(Base):
    """Append-only trail of security relevant actions."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_actor_created", "actor_user_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    actor_user_id = Column(String(36), index=True)
    target_user_id = Column(String(36))
    action = Column(String(64), nullable=False)
    resource_type = Column(String(64))
    resource_id = Column(String(36))
    success = Column(Boolean, nullable=False, default=True)
    ip = Column(String(45))
    user_agent = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=utcnow)
