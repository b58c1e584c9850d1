"""Shared column sets for models."""
import uuid

from sqlalchemy import Column, DateTime

from todo_app.clock import utcnow


def generate_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SoftDeleteMixin:
    """Rows are never removed, only marked with ``deleted_at``."""

    deleted_at = Column(DateTime, nullable=True)
