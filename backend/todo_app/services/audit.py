"""Append-only audit trail."""
from collections.abc import Callable
import logging

from sqlalchemy.orm import Session

from todo_app.clock import Clock, utcnow
from todo_app.models.audit_log import AuditLog
from todo_app.models.base import generate_id

logger = logging.getLogger(__name__)


class AuditTrail:
    """Adds ``AuditLog`` rows to the caller's unit of work and echoes them to the log."""

    def __init__(self, db: Session, clock: Clock = utcnow, new_id: Callable[[], str] = generate_id):
        self.db = db
        self.clock = clock
        self.new_id = new_id

    def append(
        self,
        action: str,
        actor_user_id: str | None = None,
        target_user_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        success: bool = True,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            id=self.new_id(),
            actor_user_id=actor_user_id,
            target_user_id=target_user_id or actor_user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            success=success,
            ip=ip,
            user_agent=user_agent,
            created_at=self.clock(),
        )
        self.db.add(entry)
        logger.info(
            "audit action=%s actor=%s resource=%s:%s success=%s",
            action,
            actor_user_id,
            resource_type,
            resource_id,
            success,
        )
        return entry
