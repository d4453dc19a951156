"""
auth/permissions.py -- Effective permission set from the role graph.

A user has at most one Role. A Role is linked to Groups, each Group grants
Permissions. aggregate_permissions() walks that graph once and is independent
of how the store fetched it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from auth.models import Role


@dataclass
class PermissionSet:
    is_admin: bool = False
    permissions: list[str] = field(default_factory=list)


def aggregate_permissions(role: Role | None) -> PermissionSet:
    """Return the admin flag and the deduplicated permission keys for role.

    Keys keep first-seen order. A missing role, or one without groups, gives an
    empty set. For an all-permissions role the key list is informational only:
    consumers should check is_admin first.
    """
    if role is None:
        return PermissionSet()

    seen: set[str] = set()
    keys: list[str] = []
    for group in role.groups:
        for permission in group.permissions:
            if permission.key not in seen:
                seen.add(permission.key)
                keys.append(permission.key)
    return PermissionSet(is_admin=bool(role.is_all_permissions), permissions=keys)


def has_permission(session: dict, key: str) -> bool:
    """Check a verified session payload for a permission key. Admins pass every check."""
    if session.get("isAdmin"):
        return True
    return key in session.get("permissions", [])
