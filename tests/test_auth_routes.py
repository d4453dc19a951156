"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/*.

Covers:
  - sign-up / sign-in set httpOnly token cookies and return the session payload
  - unknown user and wrong password are indistinguishable (401, same body)
  - webpage_key merges webpage_url into the sign-in response
  - /auth/me accepts cookie or Bearer token; 401 otherwise
  - forgot-password -> reset-password -> sign-in with the new password
  - OAuth callbacks create once, then reuse; 302 to a remembered webpage
  - logout clears cookies
"""

from __future__ import annotations

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest
from authlib.integrations.starlette_client import OAuthError
from fastapi import Depends, FastAPI
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from api.routes.v1.auth import REDIRECT_COOKIE
from auth.dependencies import require_permission
from auth.models import LoginType, Permission, Webpage
from auth.service import SignUpData

_counter = itertools.count()


def _unique(prefix: str) -> str:
    return f"{prefix}{next(_counter)}"


@pytest.fixture(autouse=True)
def _fresh_cookies(api_client):
    client, _, _ = api_client
    client.cookies.clear()
    yield
    client.cookies.clear()


def _sign_up(client, user_name: str, password: str = "s3cret-pass", **extra):
    return client.post("/api/v1/auth/sign-up", json={"user_name": user_name, "password": password, **extra})


def _oauth_client(**token) -> MagicMock:
    oauth_client = MagicMock()
    oauth_client.authorize_access_token = AsyncMock(return_value=token)
    oauth_client.authorize_redirect = AsyncMock(
        return_value=RedirectResponse("https://accounts.example.com/authorize", status_code=302)
    )
    return oauth_client


# ---------------------------------------------------------------------------
# Sign-up / sign-in
# ---------------------------------------------------------------------------


class TestSignUp:
    def test_creates_account_and_session(self, api_client):
        client, _, _ = api_client
        name = _unique("signup")
        resp = _sign_up(client, name, email=f"{name}@example.com", date_of_birth="1990-05-01")
        assert resp.status_code == 201
        body = resp.json()
        assert body["user_name"] == name
        assert body["isAdmin"] is False
        assert body["permissions"] == []
        assert body["access_token"] and body["refresh_token"]
        assert "webpage_url" not in body
        assert resp.cookies.get("access_token") == body["access_token"]
        assert resp.cookies.get("refresh_token") == body["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"

    def test_duplicate_email(self, api_client):
        client, _, _ = api_client
        email = f"{_unique('dup')}@example.com"
        assert _sign_up(client, _unique("first"), email=email).status_code == 201
        resp = _sign_up(client, _unique("second"), email=email)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "duplicate_user"

    def test_password_optional(self, api_client):
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/sign-up", json={"user_name": _unique("nopass")})
        assert resp.status_code == 201

    def test_invalid_email(self, api_client):
        client, _, _ = api_client
        resp = _sign_up(client, _unique("bad"), email="not-an-email")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_overlong_multibyte_password(self, api_client):
        client, store, _ = api_client
        name = _unique("multibyte")
        resp = _sign_up(client, name, password="é" * 40)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert store.find_by_identifier(name) is None

    def test_padded_password_used_verbatim(self, api_client):
        client, _, _ = api_client
        name = _unique("padded")
        assert _sign_up(client, name, password="  pw  ").status_code == 201
        client.cookies.clear()
        resp = client.post("/api/v1/auth/sign-in", json={"user_name": f" {name} ", "password": "  pw  "})
        assert resp.status_code == 200
        assert resp.json()["user_name"] == name

    def test_user_name_equal_to_another_phone(self, api_client):
        client, store, _ = api_client
        phone = f"+1555{next(_counter):06d}"
        _sign_up(client, _unique("carol"), phone_number=phone)
        resp = _sign_up(client, phone)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "duplicate_user"
        assert store.find_by_identifier(phone).user_name.startswith("carol")


class TestSignIn:
    def test_by_user_name_and_email(self, api_client):
        client, _, _ = api_client
        name = _unique("signin")
        _sign_up(client, name, email=f"{name}@example.com")
        client.cookies.clear()

        for identifier in (name, f"{name}@example.com"):
            resp = client.post("/api/v1/auth/sign-in", json={"user_name": identifier, "password": "s3cret-pass"})
            assert resp.status_code == 200
            assert resp.json()["user_name"] == name
            assert "access_token" in resp.cookies

    def test_wrong_password_matches_unknown_user(self, api_client):
        client, _, _ = api_client
        name = _unique("victim")
        _sign_up(client, name)
        wrong = client.post("/api/v1/auth/sign-in", json={"user_name": name, "password": "nope"})
        unknown = client.post("/api/v1/auth/sign-in", json={"user_name": _unique("ghost"), "password": "nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "unauthorized"

    def test_password_required(self, api_client):
        client, _, _ = api_client
        name = _unique("nopw")
        _sign_up(client, name)
        resp = client.post("/api/v1/auth/sign-in", json={"user_name": name})
        assert resp.status_code == 422

    def test_webpage_url_merged(self, api_client):
        client, store, _ = api_client
        key = _unique("page")
        store.create_webpage(Webpage(key=key, url="https://app.example.com/home"))
        name = _unique("web")
        _sign_up(client, name)

        resp = client.post(
            "/api/v1/auth/sign-in",
            json={"user_name": name, "password": "s3cret-pass", "webpage_key": key},
        )
        assert resp.status_code == 200
        assert resp.json()["webpage_url"] == "https://app.example.com/home"

        resp = client.post(
            "/api/v1/auth/sign-in",
            json={"user_name": name, "password": "s3cret-pass", "webpage_key": "missing"},
        )
        assert "webpage_url" not in resp.json()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestMe:
    def test_cookie_session(self, api_client):
        client, _, _ = api_client
        name = _unique("me")
        _sign_up(client, name)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["user_name"] == name
        assert resp.json()["isAdmin"] is False

    def test_bearer_session(self, api_client):
        client, _, _ = api_client
        name = _unique("bearer")
        token = _sign_up(client, name).json()["access_token"]
        client.cookies.clear()
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["user_name"] == name

    def test_no_token(self, api_client):
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token(self, api_client):
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401


def test_logout_clears_cookies(api_client):
    client, _, _ = api_client
    _sign_up(client, _unique("bye"))
    resp = client.get("/api/v1/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {}
    assert "access_token" not in client.cookies
    assert client.get("/api/v1/auth/me").status_code == 401


def test_providers_empty_when_unconfigured(api_client):
    client, _, _ = api_client
    assert client.get("/api/v1/auth/providers").json() == []


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_full_flow(self, api_client):
        client, _, notifier = api_client
        name = _unique("reset")
        email = f"{name}@example.com"
        _sign_up(client, name, email=email)
        client.cookies.clear()

        resp = client.post(
            "/api/v1/auth/forgot-password",
            json={"email": email, "redirect_to": "https://app.example.com/reset"},
        )
        assert resp.status_code == 200
        assert (email, "https://app.example.com/reset") in notifier.emails

        code = resp.json()["code_reset"]
        resp = client.post("/api/v1/auth/reset-password", json={"code_reset": code, "password": "brand-new"})
        assert resp.status_code == 200
        assert resp.json()["updated"] is True

        old = client.post("/api/v1/auth/sign-in", json={"user_name": name, "password": "s3cret-pass"})
        new = client.post("/api/v1/auth/sign-in", json={"user_name": name, "password": "brand-new"})
        assert old.status_code == 401
        assert new.status_code == 200

    def test_password_whitespace_kept_through_reset(self, api_client):
        client, _, _ = api_client
        name = _unique("spaces")
        email = f"{name}@example.com"
        _sign_up(client, name, email=email)
        client.cookies.clear()

        code = client.post("/api/v1/auth/forgot-password", json={"email": email}).json()["code_reset"]
        resp = client.post("/api/v1/auth/reset-password", json={"code_reset": code, "password": " new pw "})
        assert resp.status_code == 200

        padded = client.post("/api/v1/auth/sign-in", json={"user_name": name, "password": " new pw "})
        trimmed = client.post("/api/v1/auth/sign-in", json={"user_name": name, "password": "new pw"})
        assert padded.status_code == 200
        assert trimmed.status_code == 401

    def test_overlong_multibyte_password(self, api_client):
        client, _, _ = api_client
        name = _unique("mbreset")
        email = f"{name}@example.com"
        _sign_up(client, name, email=email)
        code = client.post("/api/v1/auth/forgot-password", json={"email": email}).json()["code_reset"]
        resp = client.post("/api/v1/auth/reset-password", json={"code_reset": code, "password": "é" * 40})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_unknown_contact(self, api_client):
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/forgot-password", json={"email": f"{_unique('nobody')}@example.com"})
        assert resp.status_code == 401

    def test_contact_required(self, api_client):
        client, _, _ = api_client
        assert client.post("/api/v1/auth/forgot-password", json={}).status_code == 422

    def test_access_token_is_not_a_reset_code(self, api_client):
        client, _, _ = api_client
        token = _sign_up(client, _unique("swap")).json()["access_token"]
        resp = client.post("/api/v1/auth/reset-password", json={"code_reset": token, "password": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Reset password failed"


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class TestOAuth:
    def _google(self, api_client, email: str) -> None:
        client, _, _ = api_client
        client.app.state.oauth.create_client.return_value = _oauth_client(
            userinfo={"email": email, "email_verified": True, "given_name": "Ada", "family_name": email.split("@")[0]}
        )

    def test_start_remembers_webpage_key(self, api_client):
        client, _, _ = api_client
        client.app.state.oauth.create_client.return_value = _oauth_client()
        resp = client.get("/api/v1/auth/google", params={"webpage_key": "home"}, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.cookies.get(REDIRECT_COOKIE) == "home"

    def test_unconfigured_provider(self, api_client):
        client, _, _ = api_client
        client.app.state.oauth.create_client.return_value = None
        resp = client.get("/api/v1/auth/github", follow_redirects=False)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "provider_not_configured"

    def test_google_creates_once_then_reuses(self, api_client):
        client, store, _ = api_client
        email = f"{_unique('gg')}@gmail.com"
        self._google(api_client, email)

        first = client.get("/api/v1/auth/google-redirect")
        client.cookies.clear()
        second = client.get("/api/v1/auth/google-redirect")
        assert first.status_code == second.status_code == 200
        assert first.json()["user_id"] == second.json()["user_id"]
        assert store.find_by_email_and_login_type(email, LoginType.GOOGLE) is not None

    def test_google_redirects_to_remembered_webpage(self, api_client):
        client, store, _ = api_client
        key = _unique("dash")
        store.create_webpage(Webpage(key=key, url="https://app.example.com/dashboard"))
        self._google(api_client, f"{_unique('gr')}@gmail.com")

        client.cookies.set(REDIRECT_COOKIE, key)
        resp = client.get("/api/v1/auth/google-redirect", follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.example.com/dashboard"
        assert "access_token" in resp.cookies

    def test_github_provider_error(self, api_client):
        client, _, _ = api_client
        oauth_client = MagicMock()
        oauth_client.authorize_access_token = AsyncMock(side_effect=OAuthError(error="access_denied"))
        client.app.state.oauth.create_client.return_value = oauth_client
        resp = client.get("/api/v1/auth/github-redirect")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Not found user from github!"


# ---------------------------------------------------------------------------
# Permission guard
# ---------------------------------------------------------------------------


class TestRequirePermission:
    @pytest.fixture
    def guarded(self, service):
        guarded_app = FastAPI()
        guarded_app.state.auth_service = service

        @guarded_app.get("/posts")
        def write_posts(session: dict = Depends(require_permission("post.write"))):
            return {"user_id": session["user_id"]}

        return TestClient(guarded_app)

    def _token(self, service, user_name: str, *keys: str, admin: bool = False) -> str:
        store = service.store
        role_id = store.create_role(f"{user_name}-role", is_all_permissions=admin)
        group_id = store.create_group(f"{user_name}-group")
        for key in keys:
            store.add_permission_to_group(group_id, store.create_permission(Permission(key=key)))
        store.add_group_to_role(role_id, group_id)
        session = service.sign_up(SignUpData(user_name=user_name, password="pw"))
        store.assign_role(session["user_id"], role_id)
        return service.sign_in(user_name, "pw")["access_token"]

    def test_listed_permission(self, service, guarded):
        token = self._token(service, "writer", "post.write")
        resp = guarded.get("/posts", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_admin_passes(self, service, guarded):
        token = self._token(service, "root", admin=True)
        assert guarded.get("/posts", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    def test_missing_permission(self, service, guarded):
        token = self._token(service, "reader", "post.read")
        assert guarded.get("/posts", headers={"Authorization": f"Bearer {token}"}).status_code == 403

    def test_anonymous(self, guarded):
        assert guarded.get("/posts").status_code == 401
