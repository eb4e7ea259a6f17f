"""Authentication models and types."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AuthOutcome:
    """Result of authentication: anonymous, or authenticated as a user."""

    username: str | None = None

    @classmethod
    def anonymous(cls) -> "AuthOutcome":
        return cls(None)

    @classmethod
    def authenticated(cls, username: str) -> "AuthOutcome":
        if not username:
            raise ValueError("Authenticated outcomes require a username")
        return cls(username)

    @property
    def is_anonymous(self) -> bool:
        return self.username is None

    def __str__(self) -> str:
        return self.username if self.username is not None else "anonymous"


@dataclass(frozen=True)
class BasicCredentials:
    """Username and password decoded from an HTTP Basic header."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicCredentials(username={self.username!r}, password='***')"


class AuthBackend(Protocol):
    """Protocol for authentication backends."""

    async def authenticate(
        self, username: str | None, password: str | None
    ) -> AuthOutcome:
        """Authenticate a username/password pair.

        Raises:
            MissingCredentialError: username given without a password
            CredentialMismatchError: credentials could not be accepted
        """
        ...
