"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/sign-in           -- password sign-in; sets token cookies
  POST /api/v1/auth/sign-up           -- create account + sign in; sets token cookies
  GET  /api/v1/auth/google            -- start Google OAuth (remembers webpage_key)
  GET  /api/v1/auth/google-redirect   -- Google callback; link or create account
  GET  /api/v1/auth/github            -- start GitHub OAuth (remembers webpage_key)
  GET  /api/v1/auth/github-redirect   -- GitHub callback; link or create account
  POST /api/v1/auth/forgot-password   -- issue reset code, queue reset email
  POST /api/v1/auth/reset-password    -- redeem reset code
  GET  /api/v1/auth/logout            -- clear token cookies
  GET  /api/v1/auth/me                -- current session payload (requires auth)
  GET  /api/v1/auth/providers         -- configured OAuth providers (public)

Security:
  [H2] POST /sign-in is rate-limited per IP (SIGN_IN_RATE_LIMIT).
  [C1] AuthService.sign_in() equalizes timing -- never inline the lookup here.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Errors raised by AuthService (auth.errors.AuthError) are rendered by the
  exception handler in api/main.py; routes do not catch them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter, sign_in_limit
from api.models import (
    ForgotPasswordRequest,
    MeResponse,
    OAuthProviderInfo,
    PasswordUpdatedResponse,
    ResetCodeResponse,
    ResetPasswordRequest,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
)
from auth.dependencies import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, get_current_session
from auth.oauth import get_enabled_providers, resolve_identity
from auth.service import AuthService, SignUpData
from core.config import get_settings

logger = logging.getLogger("authgate.api.auth")

# Cookie that carries webpage_key across the provider round-trip.
REDIRECT_COOKIE = "redirect_webpage_key"

# Auth policy:
# - every route is public except GET /auth/me (get_current_session)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _set_token_cookies(response: Response, session: dict) -> None:
    """Write both tokens as httpOnly cookies whose max_age matches each token's expiry."""
    settings = get_settings()
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        value=session["access_token"],
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.token_expire_seconds,
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        value=session["refresh_token"],
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
    )
    response.headers["Cache-Control"] = "no-store"  # [M5]


def _session_json(session: dict, status_code: int = 200) -> JSONResponse:
    body = SessionResponse(**session).model_dump(by_alias=True, exclude_none=True)
    resp = JSONResponse(status_code=status_code, content=body)
    _set_token_cookies(resp, session)
    return resp


# ---------------------------------------------------------------------------
# Password sign-in / sign-up
# ---------------------------------------------------------------------------


@router.post("/auth/sign-in", response_model=SessionResponse, response_model_exclude_none=True)
@limiter.limit(sign_in_limit)  # [H2]
def sign_in(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with user name / email / phone and password.

    When webpage_key names a known redirect webpage, its URL is merged into
    the response as webpage_url.
    """
    service = _service(request)
    session = service.sign_in(body.user_name, body.password)
    webpage = service.get_webpage_redirect(body.webpage_key)
    if webpage:
        session = {**session, **webpage}
    return _session_json(session)


@router.post("/auth/sign-up", response_model=SessionResponse, status_code=201, response_model_exclude_none=True)
def sign_up(request: Request, body: SignUpRequest) -> JSONResponse:
    """Create a password account and return a session for it.

    password may be omitted; a random one is generated and the account can
    then only be reached through the reset flow.
    """
    data = SignUpData(
        user_name=body.user_name,
        email=body.email,
        phone_number=body.phone_number,
        password=body.password,
        first_name=body.user_first_name,
        last_name=body.user_last_name,
        date_of_birth=body.date_of_birth.isoformat() if body.date_of_birth else None,
        image_url=body.user_image_url,
    )
    session = _service(request).sign_up(data)
    return _session_json(session, status_code=201)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


async def _start_oauth(request: Request, provider: str, webpage_key: str | None):
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_not_configured", "message": f"{provider} sign-in is not configured."},
        )
    redirect_uri = str(request.url_for(f"{provider}_callback"))
    response = await client.authorize_redirect(request, redirect_uri)
    if webpage_key:
        response.set_cookie(
            REDIRECT_COOKIE,
            value=webpage_key,
            httponly=True,
            samesite="lax",
            secure=get_settings().secure_cookies,
            max_age=get_settings().redirect_cookie_expire_seconds,
        )
    return response


async def _finish_oauth(request: Request, provider: str):
    """Shared callback: resolve identity, link or create the account, respond.

    With a resolvable webpage_key cookie the response is a 302 to that page
    (tokens travel in cookies); otherwise the JSON session payload.
    """
    client = request.app.state.oauth.create_client(provider)
    identity = await resolve_identity(client, provider, request) if client is not None else None

    service = _service(request)
    link = service.sign_up_with_google if provider == "google" else service.sign_up_with_github
    # Blocking bcrypt and database work runs in the threadpool.
    session = await run_in_threadpool(link, identity)
    webpage = await run_in_threadpool(service.get_webpage_redirect, request.cookies.get(REDIRECT_COOKIE))
    if webpage is None:
        resp = _session_json(session)
    else:
        resp = RedirectResponse(webpage["webpage_url"], status_code=302)
        _set_token_cookies(resp, session)
    resp.delete_cookie(REDIRECT_COOKIE)
    return resp


@router.get("/auth/google", include_in_schema=False)
async def google_start(request: Request, webpage_key: str | None = None):
    return await _start_oauth(request, "google", webpage_key)


@router.get("/auth/google-redirect", name="google_callback", include_in_schema=False)
async def google_callback(request: Request):
    return await _finish_oauth(request, "google")


@router.get("/auth/github", include_in_schema=False)
async def github_start(request: Request, webpage_key: str | None = None):
    return await _start_oauth(request, "github", webpage_key)


@router.get("/auth/github-redirect", name="github_callback", include_in_schema=False)
async def github_callback(request: Request):
    return await _finish_oauth(request, "github")


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so the login page can render buttons."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=ResetCodeResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> ResetCodeResponse:
    """Queue a reset notification and return the reset code.

    The response does not wait for mail delivery.
    """
    result = _service(request).forgot_password(
        email=body.email,
        phone_number=body.phone_number,
        redirect_to=body.redirect_to,
    )
    return ResetCodeResponse(**result)


@router.post("/auth/reset-password", response_model=PasswordUpdatedResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> PasswordUpdatedResponse:
    result = _service(request).reset_password(body.code_reset, body.password)
    return PasswordUpdatedResponse(**result)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/auth/logout")
async def logout() -> JSONResponse:
    """Clear both token cookies. Tokens are stateless, so nothing is revoked server-side."""
    resp = JSONResponse(content={})
    resp.delete_cookie(ACCESS_TOKEN_COOKIE)
    resp.delete_cookie(REFRESH_TOKEN_COOKIE)
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(session: dict = Depends(get_current_session)) -> MeResponse:
    return MeResponse(**session)
