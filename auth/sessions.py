"""
auth/sessions.py -- Access/refresh token pair issuance.

Both tokens are signed over the same payload; only the expiry differs. Nothing
is persisted: a token is valid as long as its signature and exp check out.
"""

from __future__ import annotations

from typing import Any

from auth.tokens import TokenCodec


class SessionIssuer:
    def __init__(self, codec: TokenCodec, refresh_expire_seconds: int) -> None:
        self.codec = codec
        self.refresh_expire_seconds = refresh_expire_seconds

    def issue(self, user_data: dict[str, Any]) -> dict[str, Any]:
        """Return {"access_token", "refresh_token", **user_data}.

        user_data is the public session payload (user_id, user_name, isAdmin,
        permissions). It must never contain a password hash.
        """
        access_token = self.codec.sign(user_data)
        refresh_token = self.codec.sign(user_data, expire_seconds=self.refresh_expire_seconds)
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            **user_data,
        }
