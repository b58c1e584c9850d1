"""Query helpers that apply the soft-delete filter uniformly."""
from sqlalchemy.orm import Query, Session


def not_deleted(model):
    """Criterion excluding soft-deleted rows of ``model``."""
    return model.deleted_at.is_(None)


def live_query(db: Session, model, *criteria) -> Query:
    """Query ``model`` restricted to rows that are not soft-deleted."""
    return db.query(model).filter(not_deleted(model), *criteria)


def active_session_criteria(model, now):
    """Criteria for a session that is neither revoked nor expired."""
    return (model.revoked_at.is_(None), model.expires_at > now)


def current_token_criteria(model):
    """Criteria for the single refresh token of a chain that is still usable."""
    return (model.rotated_at.is_(None), model.revoked_at.is_(None))
