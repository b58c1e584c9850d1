"""Session and refresh-token listing endpoints."""
from fastapi import APIRouter, Depends, Query

from todo_app.api.deps import get_clock, get_current_principal, get_session_queries, require_role
from todo_app.api.errors import service_errors
from todo_app.clock import Clock
from todo_app.schemas.session import RefreshTokenResponse, SessionListResponse, SessionResponse
from todo_app.services.session_queries import SessionQueries, SessionStatusFilter
from todo_app.services.tokens import Principal, Role

router = APIRouter(tags=["sessions"])


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    status: SessionStatusFilter = SessionStatusFilter.ALL,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    queries: SessionQueries = Depends(get_session_queries),
    clock: Clock = Depends(get_clock),
):
    """List the caller's own sessions."""
    items, total = queries.list_sessions(principal.subject_id, status, page, limit)
    now = clock()
    return SessionListResponse(
        items=[SessionResponse.from_model(item, now) for item in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    queries: SessionQueries = Depends(get_session_queries),
    clock: Clock = Depends(get_clock),
):
    with service_errors():
        session = queries.get_session(principal.subject_id, session_id)
    return SessionResponse.from_model(session, clock())


@router.get("/sessions/{session_id}/refresh-tokens", response_model=list[RefreshTokenResponse])
def list_refresh_tokens(
    session_id: str,
    rotated: bool | None = None,
    revoked: bool | None = None,
    principal: Principal = Depends(get_current_principal),
    queries: SessionQueries = Depends(get_session_queries),
):
    with service_errors():
        tokens = queries.list_refresh_tokens(principal.subject_id, session_id, rotated=rotated, revoked=revoked)
    return [RefreshTokenResponse.from_model(token) for token in tokens]


@router.get("/sessions/{session_id}/refresh-tokens/{token_id}", response_model=RefreshTokenResponse)
def get_refresh_token(
    session_id: str,
    token_id: str,
    principal: Principal = Depends(get_current_principal),
    queries: SessionQueries = Depends(get_session_queries),
):
    with service_errors():
        token = queries.get_refresh_token(principal.subject_id, session_id, token_id)
    return RefreshTokenResponse.from_model(token)


@router.get("/admin/users/{user_id}/sessions", response_model=SessionListResponse)
def list_user_sessions(
    user_id: str,
    status: SessionStatusFilter = SessionStatusFilter.ALL,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: Principal = Depends(require_role(Role.SYSTEM_ADMIN)),
    queries: SessionQueries = Depends(get_session_queries),
    clock: Clock = Depends(get_clock),
):
    """List any user's sessions (system administrators only)."""
    with service_errors():
        items, total = queries.list_sessions_for_admin(user_id, status, page, limit)
    now = clock()
    return SessionListResponse(
        items=[SessionResponse.from_model(item, now) for item in items],
        total=total,
        page=page,
        limit=limit,
    )
