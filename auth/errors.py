"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure that leaves AuthService is one of these. The API layer maps
them to the shared error envelope using status_code and code; nothing else
about the failure is exposed.

Unauthorized deliberately carries one generic message for "no such user" and
"wrong password" so responses cannot be used to enumerate accounts.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Invalid credentials."


class BadRequest(AuthError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request."


class DuplicateUser(BadRequest):
    code = "duplicate_user"
    default_message = "Information has been registered!"


class CreationFailed(BadRequest):
    code = "creation_failed"
    default_message = "Sign up failed"
