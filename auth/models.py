"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these classes; the service does the work.

Layer rule: no imports from api/, mail/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class LoginType(str, Enum):
    """How an account authenticates. OAuth accounts may have no usable password."""

    ACCOUNT = "ACCOUNT"
    GOOGLE = "GOOGLE"
    GITHUB = "GITHUB"


@dataclass
class User:
    """A local account.

    user_name, email and phone_number are all accepted as sign-in identifiers.
    Sign-up refuses to create a record when any of the three is already taken.

    hashed_password is None only for rows created outside the sign-up path;
    OAuth sign-ups get a random, never-disclosed password.
    """

    user_name: str
    login_type: LoginType = LoginType.ACCOUNT
    id: int | None = None
    email: str | None = None
    phone_number: str | None = None
    hashed_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None
    date_of_birth: str | None = None  # ISO 8601 date
    role_id: int | None = None
    created_at: str | None = None


@dataclass
class Permission:
    key: str
    name: str = ""
    description: str = ""
    router: str = ""
    id: int | None = None


@dataclass
class Group:
    name: str
    permissions: list[Permission] = field(default_factory=list)
    id: int | None = None


@dataclass
class Role:
    """A user's single role.

    is_all_permissions marks an administrator role. The groups list is still
    loaded for such roles but callers must not rely on it being exhaustive.
    """

    name: str
    is_all_permissions: bool = False
    groups: list[Group] = field(default_factory=list)
    id: int | None = None


@dataclass
class ExternalIdentity:
    """Profile returned by an OAuth provider after it verified the user.

    Never persisted as-is; only used to find or create a local User.
    username is the provider handle (GitHub login); Google leaves it None.
    """

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    picture_url: str | None = None
    username: str | None = None


@dataclass
class Webpage:
    """Named front-end destination resolved after authentication."""

    key: str
    url: str
    name: str = ""
    description: str = ""
    id: int | None = None
