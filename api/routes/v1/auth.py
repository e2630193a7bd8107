"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/login                   -- password login; returns token bundle
  POST /api/v1/auth/refresh                 -- rotate refresh token; returns token bundle
  POST /api/v1/auth/logout                  -- deny bearer token, revoke all refresh tokens
  POST /api/v1/auth/logout-all              -- same, reports revoked session count
  POST /api/v1/auth/password/request-reset  -- generic acknowledgement
  POST /api/v1/auth/password/confirm-reset  -- redeem reset token, revoke all sessions
  GET  /api/v1/auth/me                      -- current identity (requires auth)

Security:
  Login, request-reset and confirm-reset are rate-limited per client IP.
  Cache-Control: no-store on every response that carries a token.
  Domain failures are raised as core.errors.AuthError and mapped to status
  codes by the handler in api/main.py; nothing here builds error bodies.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_limit, reset_confirm_limit, reset_request_limit
from api.models import (
    ConfirmPasswordResetRequest,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MeResponse,
    MessageResponse,
    PasswordResetRequest,
    RefreshRequest,
    ResetRequestResponse,
)
from auth.dependencies import (
    get_auth_service,
    get_authenticated_context,
    get_bearer_token,
    get_current_identity,
    get_request_context,
)
from auth.models import Identity
from auth.service import AuthService
from core.context import RequestContext

# Auth policy:
# - POST /api/v1/auth/login:                   public
# - POST /api/v1/auth/refresh:                 public -- the refresh token is the credential
# - POST /api/v1/auth/logout:                  requires bearer token
# - POST /api/v1/auth/logout-all:              requires bearer token
# - POST /api/v1/auth/password/request-reset:  public
# - POST /api/v1/auth/password/confirm-reset:  public -- the reset token is the credential
# - GET  /api/v1/auth/me:                      requires bearer token
router = APIRouter()

LOGOUT_MESSAGE = "Logged out successfully."
LOGOUT_ALL_MESSAGE = "Logged out from all devices."


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 403. A locked account
    gets 403 with a coarse remaining-minutes message.
    """
    bundle = service.login(body.email, body.password, ctx)
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse.from_bundle(bundle)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(
    response: Response,
    body: RefreshRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Exchange a refresh token for a new bundle. The presented token stops working."""
    bundle = service.refresh(body.refresh_token, ctx)
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse.from_bundle(bundle)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    token: str = Depends(get_bearer_token),
    ctx: RequestContext = Depends(get_authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.logout(token, ctx)
    return MessageResponse(message=LOGOUT_MESSAGE)


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(
    token: str = Depends(get_bearer_token),
    ctx: RequestContext = Depends(get_authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> LogoutAllResponse:
    revoked = service.logout_all(token, ctx)
    return LogoutAllResponse(message=LOGOUT_ALL_MESSAGE, revoked_count=revoked)


@limiter.limit(reset_request_limit)
@router.post("/auth/password/request-reset", response_model=ResetRequestResponse, response_model_exclude_none=True)
def request_password_reset(
    request: Request,
    response: Response,
    body: PasswordResetRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> ResetRequestResponse:
    """Identical response whether or not the email is registered."""
    result = service.request_password_reset(body.email, ctx)
    response.headers["Cache-Control"] = "no-store"
    return ResetRequestResponse(message=result.message, token=result.token)


@limiter.limit(reset_confirm_limit)
@router.post("/auth/password/confirm-reset", response_model=MessageResponse)
def confirm_password_reset(
    request: Request,
    body: ConfirmPasswordResetRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    result = service.confirm_password_reset(body.token, body.new_password, ctx)
    return MessageResponse(message=result.message)


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    return MeResponse.from_identity(identity)
