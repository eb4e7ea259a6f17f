"""Capability levels and per-repository permission tables."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from .auth.models import AuthOutcome


class Permission(Enum):
    """Ordered capability level: NONE < READ < WRITE."""

    NONE = "none"
    READ = "read"
    WRITE = "write"

    def is_permitted(self, required: "Permission") -> bool:
        """Return True if holding this level satisfies ``required``."""
        if required is Permission.WRITE:
            return self is Permission.WRITE
        if required is Permission.READ:
            return self in (Permission.READ, Permission.WRITE)
        return True


def is_sufficient(actual: Permission, required: Permission) -> bool:
    return actual.is_permitted(required)


@dataclass(frozen=True)
class PermissionEntry:
    """One configured permission line of a repository."""

    permission: Permission
    username: str | None = None
    anonymous: bool = False

    def __post_init__(self) -> None:
        if not self.anonymous and not self.username:
            raise ValueError("Permission entries must name a user unless anonymous")


class PermissionTable:
    """Maps usernames to capability levels, plus the anonymous default.

    Built once from the ordered configuration entries. If several entries are
    marked anonymous the last one wins.
    """

    def __init__(
        self,
        entries: Iterable[PermissionEntry],
        default_anonymous: Permission = Permission.READ,
    ):
        users: dict[str, Permission] = {}
        anonymous = default_anonymous
        for entry in entries:
            if entry.anonymous:
                anonymous = entry.permission
            elif entry.username is not None:
                users[entry.username] = entry.permission

        self._users: Mapping[str, Permission] = MappingProxyType(users)
        self.anonymous = anonymous

    def capability_for(self, outcome: AuthOutcome) -> Permission | None:
        """Capability held by an authentication outcome.

        Returns None for an authenticated user without an entry; such users
        are treated as presenting invalid credentials, not as holding NONE.
        """
        if outcome.is_anonymous:
            return self.anonymous
        return self._users.get(outcome.username or "")
