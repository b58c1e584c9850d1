"""Authentication API endpoints, mounted once per role."""
from fastapi import APIRouter, Body, Depends, Request, status

from todo_app.api.deps import (
    get_auth_service,
    get_registration_service,
    get_request_ip,
    require_authenticated_role,
    require_role,
)
from todo_app.api.errors import service_errors
from todo_app.schemas.auth import (
    AuthorizedResponse,
    EmailVerifyRequest,
    JoinRequest,
    JoinResponse,
    LoginRequest,
    LogoutRequest,
    PasswordChangeRequest,
    PasswordChangeResponse,
    PasswordResetCompletedResponse,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    PasswordResetRequestedResponse,
    RefreshRequest,
    RevocationResponse,
    RevokeOtherSessionsRequest,
    RevokeOtherSessionsResponse,
    VerifyEmailResponse,
)
from todo_app.services.auth_service import AuthService
from todo_app.services.registration import RegistrationService
from todo_app.services.tokens import Principal, Role

ROLE_SLUGS = {
    Role.TODO_USER: "todo-user",
    Role.SYSTEM_ADMIN: "system-admin",
    Role.GUEST_VISITOR: "guest-visitor",
}


def build_auth_router(role: Role) -> APIRouter:
    """Auth routes for one role under ``/auth/<role-slug>``."""
    router = APIRouter(prefix=f"/auth/{ROLE_SLUGS[role]}", tags=["auth"])

    @router.post("/join", response_model=JoinResponse, status_code=status.HTTP_201_CREATED)
    def join(
        payload: JoinRequest,
        request: Request,
        registration: RegistrationService = Depends(get_registration_service),
    ):
        """Register a new account holding this role."""
        with service_errors():
            result = registration.join(
                payload.email,
                payload.password,
                role,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return JoinResponse(subject_id=result.subject_id, email=result.email, role=result.role.value)

    @router.post("/email/verify", response_model=VerifyEmailResponse)
    def verify_email(
        payload: EmailVerifyRequest,
        request: Request,
        registration: RegistrationService = Depends(get_registration_service),
    ):
        with service_errors():
            user = registration.verify_email(
                payload.token,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return VerifyEmailResponse(subject_id=user.id, email=user.email, email_verified=user.email_verified)

    @router.post("/password/reset/request", response_model=PasswordResetRequestedResponse)
    def request_password_reset(
        payload: PasswordResetRequest,
        request: Request,
        registration: RegistrationService = Depends(get_registration_service),
    ):
        """Send a reset code. The answer does not reveal whether the email is registered."""
        with service_errors():
            result = registration.request_password_reset(
                payload.email,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return PasswordResetRequestedResponse.from_result(result)

    @router.post("/password/reset/confirm", response_model=PasswordResetCompletedResponse)
    def confirm_password_reset(
        payload: PasswordResetConfirmRequest,
        request: Request,
        registration: RegistrationService = Depends(get_registration_service),
    ):
        with service_errors():
            result = registration.confirm_password_reset(
                payload.token,
                payload.new_password,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return PasswordResetCompletedResponse.from_result(result)

    @router.post("/login", response_model=AuthorizedResponse)
    def login(
        payload: LoginRequest,
        request: Request,
        auth: AuthService = Depends(get_auth_service),
    ):
        """Login and get tokens."""
        with service_errors():
            result = auth.login(
                payload.email,
                payload.password,
                role,
                stay_signed_in=payload.stay_signed_in,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return AuthorizedResponse.from_result(result)

    @router.post("/refresh", response_model=AuthorizedResponse)
    def refresh(
        payload: RefreshRequest,
        request: Request,
        auth: AuthService = Depends(get_auth_service),
    ):
        """Exchange a refresh token for a new access/refresh pair."""
        with service_errors():
            result = auth.refresh(
                payload.refresh_token,
                role=role,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return AuthorizedResponse.from_result(result)

    @router.post("/logout", response_model=RevocationResponse)
    def logout(
        request: Request,
        payload: LogoutRequest | None = Body(None),
        principal: Principal = Depends(require_authenticated_role(role)),
        auth: AuthService = Depends(get_auth_service),
    ):
        """Revoke the current session. Safe to call repeatedly."""
        with service_errors():
            summary = auth.logout(
                principal.subject_id,
                session_id=principal.session_id,
                reason=payload.reason if payload else None,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return RevocationResponse.from_summary(summary)

    @router.post("/sessions/revoke-others", response_model=RevokeOtherSessionsResponse)
    def revoke_other_sessions(
        request: Request,
        payload: RevokeOtherSessionsRequest | None = Body(None),
        principal: Principal = Depends(require_role(role)),
        auth: AuthService = Depends(get_auth_service),
    ):
        payload = payload or RevokeOtherSessionsRequest()
        with service_errors():
            summaries = auth.revoke_other_sessions(
                principal.subject_id,
                current_session_id=principal.session_id,
                include_current=payload.include_current,
                reason=payload.reason,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        revoked = [RevocationResponse.from_summary(summary) for summary in summaries]
        return RevokeOtherSessionsResponse(revoked=revoked, count=len(revoked))

    @router.put("/password", response_model=PasswordChangeResponse)
    def change_password(
        payload: PasswordChangeRequest,
        request: Request,
        principal: Principal = Depends(require_role(role)),
        auth: AuthService = Depends(get_auth_service),
    ):
        with service_errors():
            result = auth.change_password(
                principal.subject_id,
                payload.current_password,
                payload.new_password,
                revoke_other_sessions=payload.revoke_other_sessions,
                current_session_id=principal.session_id,
                ip=get_request_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        return PasswordChangeResponse(
            subject_id=result.subject_id,
            revoked_sessions=[RevocationResponse.from_summary(summary) for summary in result.revoked_sessions],
        )

    return router


routers = [build_auth_router(role) for role in Role]
