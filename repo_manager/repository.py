"""File repositories, path sandboxing and the repository registry."""

import os
from types import MappingProxyType
from typing import Protocol

import structlog

from .auth.models import AuthBackend, AuthOutcome
from .exceptions import (
    MISMATCH_MESSAGE,
    AuthenticationError,
    ForbiddenError,
    PathEscapeError,
    UnauthenticatedError,
)
from .permissions import Permission, PermissionTable

logger = structlog.get_logger()


def strip_parent_prefix(raw: str) -> str:
    """Clean raw client input and drop one leading ``../`` segment.

    This is a sanitizing pre-pass only; ``resolve_path`` still performs the
    containment check on its result.
    """
    cleaned = os.path.normpath(raw) if raw else "."
    if cleaned == os.pardir:
        return "."
    if cleaned.startswith(os.pardir + os.sep):
        return cleaned[len(os.pardir + os.sep) :]
    return cleaned


def is_within(root: str, path: str) -> bool:
    """Component-wise prefix test; both paths must be absolute and normalized."""
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        return False


class RepositoryProvider(Protocol):
    """Protocol for repositories served over HTTP."""

    name: str
    root: str

    def resolve_path(self, relative: str) -> str:
        ...

    def ensure_real_path(self, resolved: str) -> str:
        ...

    async def authorize(
        self, username: str | None, password: str | None, required: Permission
    ) -> AuthOutcome:
        ...


class FileRepository(RepositoryProvider):
    """A named directory served with its own permission table."""

    def __init__(
        self,
        name: str,
        root: str,
        permissions: PermissionTable,
        auth_backend: AuthBackend,
        follow_symlinks_outside_root: bool = False,
    ):
        """Initialize a file repository.

        Args:
            name: Repository name as used in request URLs
            root: Root directory; made absolute and normalized
            permissions: Permission table of this repository
            auth_backend: Backend used to authenticate credentials
            follow_symlinks_outside_root: Serve symlinks whose target lies
                                          outside the root
        """
        self.name = name
        self.root = os.path.normpath(os.path.abspath(root))
        self.permissions = permissions
        self.auth_backend = auth_backend
        self.follow_symlinks_outside_root = follow_symlinks_outside_root

    def __repr__(self) -> str:
        return f"FileRepository(name={self.name!r}, root={self.root!r})"

    def resolve_path(self, relative: str) -> str:
        """Map a client path to an absolute path inside the root.

        Normalization is lexical; the filesystem is not consulted.

        Raises:
            PathEscapeError: If the normalized path leaves the root
        """
        if "\x00" in relative:
            raise PathEscapeError()

        full_path = os.path.normpath(os.path.join(self.root, relative))
        if not is_within(self.root, full_path):
            logger.error(
                "Path escapes repository root", repository=self.name, path=relative
            )
            raise PathEscapeError()
        return full_path

    def ensure_real_path(self, resolved: str) -> str:
        """Re-check a resolved path after following symlinks on disk.

        Returns ``resolved`` unchanged when it is safe to open.

        Raises:
            PathEscapeError: If a symlink leads outside the real root
        """
        if self.follow_symlinks_outside_root:
            return resolved

        real_root = os.path.realpath(self.root)
        real_path = os.path.realpath(resolved)
        if not is_within(real_root, real_path):
            logger.error(
                "Symlink target outside repository root",
                repository=self.name,
                path=os.path.relpath(resolved, self.root),
            )
            raise PathEscapeError()
        return resolved

    async def authorize(
        self, username: str | None, password: str | None, required: Permission
    ) -> AuthOutcome:
        """Authenticate credentials and check them against ``required``.

        Raises:
            UnauthenticatedError: Credentials missing or not accepted, or the
                                  user has no entry in this repository
            ForbiddenError: The identity lacks the required capability
        """
        try:
            outcome = await self.auth_backend.authenticate(username, password)
        except AuthenticationError as e:
            raise UnauthenticatedError(e.message) from e

        capability = self.permissions.capability_for(outcome)
        if capability is None:
            logger.warning(
                "Authenticated user has no permission entry",
                repository=self.name,
                username=outcome.username,
            )
            raise UnauthenticatedError(MISMATCH_MESSAGE)

        if not capability.is_permitted(required):
            logger.info(
                "Access denied",
                repository=self.name,
                user=str(outcome),
                capability=capability.value,
                required=required.value,
            )
            if outcome.is_anonymous:
                raise ForbiddenError("Anonymous user not permitted!")
            raise ForbiddenError("User not permitted!")

        return outcome


class RepositoryRegistry:
    """Immutable mapping of repository names to repositories."""

    def __init__(self, repositories: dict[str, RepositoryProvider]):
        self._repositories = MappingProxyType(dict(repositories))

    def get_repository(self, name: str) -> RepositoryProvider | None:
        return self._repositories.get(name)

    def __len__(self) -> int:
        return len(self._repositories)
