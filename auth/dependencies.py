"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: Authorization: Bearer <access token>.

get_request_context() builds the explicit RequestContext from the connection
(client IP, User-Agent). get_bearer_token() extracts the raw token or raises
InvalidToken. get_current_identity() resolves it through
AuthService.authenticate(): denylist first, then signature and expiry, then
an active identity.

Failures raise core.errors.InvalidToken, which api/main.py maps to 401 with
the standard error envelope.

Layer rule: this module may import from fastapi (Depends/Request) because it
is part of the FastAPI dependency injection system. It does not import api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import Identity
from auth.service import AuthService
from core.context import RequestContext
from core.errors import InvalidToken


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_request_context(request: Request) -> RequestContext:
    """Anonymous context carrying the caller's IP and User-Agent."""
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidToken("Authentication required.")
    return token.strip()


def get_current_identity(
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> Identity:
    """Require a valid, non-blacklisted bearer token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return service.authenticate(token)


def get_authenticated_context(
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """RequestContext attributed to the authenticated caller."""
    return ctx.as_user(identity.id)
