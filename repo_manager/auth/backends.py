"""Authentication backends for the repository manager."""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import structlog

from ..exceptions import CredentialMismatchError, MissingCredentialError
from .models import AuthBackend, AuthOutcome
from .passwords import Credential, PasswordVerifier, VerifyResult

logger = structlog.get_logger()


class NoAuthBackend(AuthBackend):
    """No authentication backend for development."""

    async def authenticate(
        self, username: str | None, password: str | None
    ) -> AuthOutcome:
        """Treat every request as anonymous, ignoring any credentials.

        Args:
            username: Ignored
            password: Ignored

        Returns:
            The anonymous outcome
        """
        return AuthOutcome.anonymous()


class StaticCredentialsBackend(AuthBackend):
    """Table-driven backend over credentials loaded from configuration."""

    def __init__(self, credentials: Iterable[Credential], verifier: PasswordVerifier):
        """Initialize the backend.

        Args:
            credentials: Stored user credentials; a later entry for the same
                         username replaces an earlier one
            verifier: Shared password verifier
        """
        table = {credential.username: credential for credential in credentials}
        self._credentials: Mapping[str, Credential] = MappingProxyType(table)
        self.verifier = verifier

    async def authenticate(
        self, username: str | None, password: str | None
    ) -> AuthOutcome:
        """Authenticate a username/password pair.

        Args:
            username: Username from the request, if any
            password: Password from the request, if any

        Returns:
            Anonymous outcome when no username is given, else the
            authenticated user

        Raises:
            MissingCredentialError: If a username is given without a password
            CredentialMismatchError: Unknown user, wrong password or a
                                     verification failure
        """
        if username is None:
            return AuthOutcome.anonymous()

        if password is None:
            raise MissingCredentialError()

        credential = self._credentials.get(username)
        if credential is None:
            logger.warning("Authentication failed - unknown user", username=username)
            raise CredentialMismatchError()

        result = await self.verifier.averify(credential, password)
        if result is VerifyResult.MATCH:
            logger.debug("Authentication successful", username=username)
            return AuthOutcome.authenticated(username)

        logger.warning(
            "Authentication failed",
            username=username,
            reason="verification error" if result is VerifyResult.ERROR else "wrong password",
        )
        raise CredentialMismatchError()
