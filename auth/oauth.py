"""
auth/oauth.py -- Authlib OAuth provider registration and profile mapping.

The provider protocol (authorization redirect, code exchange, state/CSRF via
the Starlette session) is Authlib's job. This module only:
  1. registers the providers whose client ID and secret are configured, and
  2. turns the provider's answer into an ExternalIdentity, or None when the
     provider could not vouch for the user.

AuthService turns None into Unauthorized.

Security notes:
  [H1] Google identities are only accepted when the id_token says
       email_verified. GitHub emails come from /user/emails and only the
       primary+verified entry is used; a GitHub account without one yields an
       identity with email=None (matched by login instead).

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/ or mail/. Settings are passed in by the
caller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from authlib.integrations.starlette_client import OAuth, OAuthError

from auth.models import ExternalIdentity

logger = logging.getLogger("authgate.auth.oauth")

PROVIDERS = ("google", "github")


def create_oauth(settings) -> OAuth:
    """Build an Authlib registry with every configured provider."""
    oauth = OAuth()

    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    return oauth


def get_enabled_providers(settings) -> list[dict]:
    """Return [{"name", "label"}] for each provider with credentials configured."""
    providers: list[dict] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    return providers


# ---------------------------------------------------------------------------
# Profile mapping
# ---------------------------------------------------------------------------


async def resolve_identity(client, provider: str, request) -> ExternalIdentity | None:
    """Finish the code exchange for provider and map the profile.

    Returns None on any provider-side failure (denied consent, bad state,
    unverified email, API error). The reason is logged, never returned.
    """
    try:
        token = await client.authorize_access_token(request)
        if provider == "google":
            return identity_from_google(token.get("userinfo"))
        if provider == "github":
            return await fetch_github_identity(client, token)
    except (OAuthError, httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("%s OAuth failed: %s", provider, type(exc).__name__)
        return None
    logger.warning("Unknown OAuth provider: %r", provider)
    return None


def identity_from_google(userinfo: dict[str, Any] | None) -> ExternalIdentity | None:
    """Map Google OIDC userinfo claims. Unverified or missing emails give None [H1]."""
    if not userinfo:
        return None
    if not userinfo.get("email_verified", False) or not userinfo.get("email"):
        logger.warning("Google OAuth rejected: email missing or not verified")
        return None
    return ExternalIdentity(
        email=userinfo["email"],
        first_name=userinfo.get("given_name"),
        last_name=userinfo.get("family_name"),
        picture_url=userinfo.get("picture"),
    )


async def fetch_github_identity(client, token: dict) -> ExternalIdentity | None:
    """Fetch /user and /user/emails and map them.

    GitHub's "name" is a single free-text field; it is split on the first
    space into first/last name.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    return identity_from_github(profile, emails_resp.json())


def identity_from_github(profile: dict[str, Any], emails: list[dict[str, Any]]) -> ExternalIdentity | None:
    login = profile.get("login")
    if not login:
        return None

    email: str | None = None
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    first_name, _, last_name = (profile.get("name") or "").partition(" ")
    return ExternalIdentity(
        email=email,
        first_name=first_name or None,
        last_name=last_name or None,
        picture_url=profile.get("avatar_url"),
        username=login,
    )
