"""
auth/dependencies.py -- FastAPI Depends() helpers for access-token consumers.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by the sign-in / sign-up / OAuth routes.
  2. Authorization: Bearer <token> header -- API clients.

The result is the verified session payload (user_id, user_name, isAdmin,
permissions). No database round-trip: tokens are stateless.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() raises HTTP 401; require_permission(key) also raises 403.

Layer rule: may import fastapi, because this module is part of the FastAPI
dependency injection system. No imports from api/ or mail/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import Unauthorized
from auth.permissions import has_permission
from auth.service import AuthService

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"


def _extract_token(request: Request) -> str | None:
    token: str | None = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token


def try_get_current_session(request: Request) -> dict | None:
    """Return the verified access-token payload, or None. Never raises."""
    service: AuthService = request.app.state.auth_service
    token = _extract_token(request)
    if not token:
        return None
    try:
        return service.authenticate(token)
    except Unauthorized:
        return None


def get_current_session(request: Request) -> dict:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: dict = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session


def require_permission(key: str) -> Callable[[Request], dict]:
    """Build a dependency that requires admin or the given permission key.

        @router.delete("/things/{id}")
        async def route(session: dict = Depends(require_permission("thing.delete"))): ...
    """

    def dependency(request: Request) -> dict:
        session = get_current_session(request)
        if not has_permission(session, key):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Permission required."},
            )
        return session

    return dependency
