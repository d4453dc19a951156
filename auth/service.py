"""
auth/service.py -- Sign-up, sign-in, OAuth account linking and password reset.

AuthService is the only place that combines the store, the permission
aggregator, the session issuer and the notifier. Every failure leaving it is
an auth.errors.AuthError; store and codec errors are converted here.

Flows:
  sign_up        duplicate check -> hash -> insert -> session for the new row
  sign_in        lookup -> (password check) -> role graph -> token pair
  OAuth linking  lookup by (email, provider) -> session without password,
                 or sign_up with provider login type and a random password
  forgot/reset   reset code = signed {user_id}, 5 minutes, purpose secret

Security:
  [C1] sign_in() always runs bcrypt when a password was supplied, even when
       the identifier matched nothing, and uses the same Unauthorized message
       for "no such user" and "wrong password".

  The password-less branch of sign_in() trusts the caller. It is reachable
  only from the OAuth linking flow, after the provider verified the identity;
  the HTTP sign-in route requires a password.

Open issues kept as-is:
  - The reset email context carries only redirect_to, not the reset code.
    The code is returned to the forgot-password caller instead.
  - GitHub linking matches (email or GitHub handle) against the email column,
    mixing two identity namespaces. When GitHub reports no verified email
    the handle is also matched against GitHub accounts by identifier, so an
    account created without an email is found again on the next login.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import BadRequest, CreationFailed, DuplicateUser, Unauthorized
from auth.models import ExternalIdentity, LoginType, User
from auth.permissions import aggregate_permissions
from auth.sessions import SessionIssuer
from auth.store import UserStore
from auth.tokens import burn_password_check, generate_password, hash_password, verify_password

logger = logging.getLogger("authgate.auth")

RESET_CODE_EXPIRE_SECONDS = 5 * 60
_RESET_PURPOSE = "password-reset"


class Notifier(Protocol):
    def send_reset_password(self, to: str, redirect_to: str | None) -> Any: ...

    def send_sms(self, phone_number: str | None) -> Any: ...


@dataclass
class SignUpData:
    """Fields accepted by sign_up(). password=None means generate one."""

    user_name: str
    email: str | None = None
    phone_number: str | None = None
    password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: str | None = None
    image_url: str | None = None
    login_type: LoginType = LoginType.ACCOUNT


class AuthService:
    def __init__(self, store: UserStore, issuer: SessionIssuer, notifier: Notifier) -> None:
        self.store = store
        self.issuer = issuer
        self.codec = issuer.codec
        self.notifier = notifier
        self._reset_secret = self.codec.derive_secret(_RESET_PURPOSE)

    # ------------------------------------------------------------------
    # Password path
    # ------------------------------------------------------------------

    def sign_up(self, data: SignUpData) -> dict[str, Any]:
        """Create an account and return a session for it.

        Raises DuplicateUser if user_name, email or phone_number is already
        used as any identifier, BadRequest if the password exceeds 72 bytes and
        CreationFailed if the insert fails for any other reason.
        """
        try:
            conflict = self.store.find_conflict(data.user_name, data.email, data.phone_number)
        except SQLAlchemyError as exc:
            logger.error("Sign-up duplicate check failed: %s", type(exc).__name__)
            raise CreationFailed() from exc
        if conflict is not None:
            logger.info("Sign-up rejected: identifier already registered (login_type=%s)", data.login_type.value)
            raise DuplicateUser()

        password = data.password if data.password is not None else generate_password()
        try:
            hashed_password = hash_password(password)
        except ValueError as exc:
            raise BadRequest("Password is too long") from exc
        user = User(
            user_name=data.user_name,
            email=data.email,
            phone_number=data.phone_number,
            hashed_password=hashed_password,
            login_type=data.login_type,
            first_name=data.first_name,
            last_name=data.last_name,
            date_of_birth=data.date_of_birth,
            image_url=data.image_url,
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            # A concurrent sign-up took the name between the check and the insert.
            raise DuplicateUser() from exc
        except SQLAlchemyError as exc:
            logger.error("User insert failed: %s", type(exc).__name__)
            raise CreationFailed() from exc

        logger.info("User %d created (login_type=%s)", user_id, data.login_type.value)
        # Issue from the inserted row; an identifier lookup could resolve to an older user.
        try:
            created = self.store.get_by_id(user_id)
        except SQLAlchemyError as exc:
            logger.error("Created user %d could not be reloaded: %s", user_id, type(exc).__name__)
            raise CreationFailed() from exc
        if created is None:
            raise CreationFailed()
        return self._issue_session(created)

    def sign_in(
        self,
        identifier: str,
        password: str | None = None,
        login_type: LoginType | None = None,
    ) -> dict[str, Any]:
        """Resolve identifier (user_name, email or phone) and issue a session.

        With a password the login type is ignored: the password proves intent.
        Without one, the account must have login_type (default ACCOUNT).
        """
        try:
            if password is not None:
                user = self.store.find_by_identifier(identifier)
            else:
                user = self.store.find_by_identifier(identifier, login_type or LoginType.ACCOUNT)
        except SQLAlchemyError as exc:
            logger.error("Sign-in lookup failed: %s", type(exc).__name__)
            raise Unauthorized() from exc

        if password is not None:
            if user is None or user.hashed_password is None:
                burn_password_check(password)  # [C1]
                raise Unauthorized()
            if not verify_password(password, user.hashed_password):
                raise Unauthorized()
        elif user is None:
            raise Unauthorized()

        return self._issue_session(user)

    def _issue_session(self, user: User) -> dict[str, Any]:
        try:
            role = self.store.get_role(user.role_id) if user.role_id is not None else None
        except SQLAlchemyError as exc:
            logger.error("Role lookup failed for user %s: %s", user.id, type(exc).__name__)
            raise Unauthorized() from exc
        permission_set = aggregate_permissions(role)
        data = {
            "user_id": user.id,
            "user_name": user.user_name,
            "isAdmin": permission_set.is_admin,
            "permissions": permission_set.permissions,
        }
        logger.info("Session issued for user %s", user.id)
        return self.issuer.issue(data)

    def authenticate(self, token: str | None) -> dict[str, Any]:
        """Verify an access token and return its payload, or raise Unauthorized."""
        result = self.codec.verify(token)
        if not result.ok:
            raise Unauthorized("Authentication required.")
        return result.payload

    # ------------------------------------------------------------------
    # OAuth linking
    # ------------------------------------------------------------------

    def sign_up_with_google(self, identity: ExternalIdentity | None) -> dict[str, Any]:
        if identity is None:
            raise Unauthorized("Not found user from google!")
        return self._link_external(
            identity,
            LoginType.GOOGLE,
            match_key=identity.email,
            user_name=_display_name(identity),
        )

    def sign_up_with_github(self, identity: ExternalIdentity | None) -> dict[str, Any]:
        if identity is None:
            raise Unauthorized("Not found user from github!")
        return self._link_external(
            identity,
            LoginType.GITHUB,
            match_key=identity.email or identity.username,
            user_name=identity.username or _display_name(identity),
            # Accounts created without a verified email are only reachable by handle.
            fallback_identifier=identity.username if identity.email is None else None,
        )

    def _link_external(
        self,
        identity: ExternalIdentity,
        provider: LoginType,
        match_key: str | None,
        user_name: str | None,
        fallback_identifier: str | None = None,
    ) -> dict[str, Any]:
        existing = None
        try:
            if match_key:
                existing = self.store.find_by_email_and_login_type(match_key, provider)
            if existing is None and fallback_identifier:
                existing = self.store.find_by_identifier(fallback_identifier, provider)
        except SQLAlchemyError as exc:
            logger.error("OAuth account lookup failed: %s", type(exc).__name__)
            raise Unauthorized() from exc

        if existing is not None:
            logger.info("%s identity linked to existing user %s", provider.value, existing.id)
            return self._issue_session(existing)

        if not user_name:
            raise Unauthorized(f"Not found user from {provider.value.lower()}!")
        logger.info("No %s-linked account found; creating one", provider.value)
        return self.sign_up(
            SignUpData(
                user_name=user_name,
                email=identity.email,
                first_name=identity.first_name,
                last_name=identity.last_name,
                image_url=identity.picture_url,
                password=None,
                login_type=provider,
            )
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(
        self,
        email: str | None = None,
        phone_number: str | None = None,
        redirect_to: str | None = None,
    ) -> dict[str, str]:
        """Notify the user and return {"code_reset": <signed {user_id}>}.

        Notification is fire-and-forget: the notifier queues it and this
        method returns without waiting for delivery.
        """
        if not email and not phone_number:
            raise BadRequest("Email or phone number is required")
        try:
            user = self.store.find_by_email_or_phone(email, phone_number)
        except SQLAlchemyError as exc:
            logger.error("Reset lookup failed: %s", type(exc).__name__)
            raise Unauthorized("Not found user") from exc
        if user is None:
            raise Unauthorized("Not found user")

        if email and user.email:
            self.notifier.send_reset_password(user.email, redirect_to)
        else:
            self.notifier.send_sms(user.phone_number)

        code_reset = self.codec.sign(
            {"user_id": user.id},
            expire_seconds=RESET_CODE_EXPIRE_SECONDS,
            secret_key=self._reset_secret,
        )
        logger.info("Reset code issued for user %s", user.id)
        return {"code_reset": code_reset}

    def reset_password(self, code_reset: str, password: str) -> dict[str, Any]:
        """Redeem a reset code. Malformed, foreign or expired codes raise BadRequest."""
        result = self.codec.verify(code_reset, secret_key=self._reset_secret)
        if not result.ok or "user_id" not in result.payload:
            logger.info("Reset code rejected (%s)", result.error.value if result.error else "no user_id")
            raise BadRequest("Reset password failed")

        user_id = result.payload["user_id"]
        try:
            hashed_password = hash_password(password)
        except ValueError as exc:
            raise BadRequest("Password is too long") from exc
        try:
            updated = self.store.update_password(user_id, hashed_password)
        except SQLAlchemyError as exc:
            logger.error("Password update failed for user %s: %s", user_id, type(exc).__name__)
            raise BadRequest("Reset password failed") from exc
        if not updated:
            raise BadRequest("Reset password failed")

        logger.info("Password reset for user %s", user_id)
        return {"user_id": user_id, "updated": True}

    # ------------------------------------------------------------------
    # Redirect webpages
    # ------------------------------------------------------------------

    def get_webpage_redirect(self, webpage_key: str | None) -> dict[str, str] | None:
        if not webpage_key:
            return None
        try:
            webpage = self.store.get_webpage(webpage_key)
        except SQLAlchemyError as exc:
            logger.error("Webpage lookup failed: %s", type(exc).__name__)
            return None
        if webpage is None:
            return None
        return {"webpage_url": webpage.url}


def _display_name(identity: ExternalIdentity) -> str | None:
    name = " ".join(part for part in (identity.first_name, identity.last_name) if part)
    return name or identity.email
