"""Exception hierarchy for the repository manager.

Request-time errors carry a stable, client-safe ``message`` and the HTTP
status the server maps them to. Details worth logging stay in the logs.
"""

MISMATCH_MESSAGE = "Username or password mismatch!"
MISSING_PASSWORD_MESSAGE = "No password given!"
INVALID_PATH_MESSAGE = "Invalid path!"


class RepoManagerError(Exception):
    """Base exception for repository manager errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(RepoManagerError):
    """Configuration could not be loaded. Fatal at startup."""

    pass


class VerifierBusyError(RepoManagerError):
    """Too many password verifications are pending."""

    status_code = 503

    def __init__(self, message: str = "Server busy, try again later"):
        super().__init__(message)


class AuthenticationError(RepoManagerError):
    """Credentials were presented but could not be accepted."""

    status_code = 401


class MissingCredentialError(AuthenticationError):
    """A username was given without a password."""

    def __init__(self, message: str = MISSING_PASSWORD_MESSAGE):
        super().__init__(message)


class CredentialMismatchError(AuthenticationError):
    """Unknown user, wrong password or failed verification.

    All of these share one message so usernames cannot be enumerated.
    """

    def __init__(self, message: str = MISMATCH_MESSAGE):
        super().__init__(message)


class AuthorizationError(RepoManagerError):
    """Base for failures of ``FileRepository.authorize``."""

    pass


class UnauthenticatedError(AuthorizationError):
    status_code = 401


class ForbiddenError(AuthorizationError):
    status_code = 403


class PathEscapeError(RepoManagerError):
    """A resolved path would leave the repository root."""

    status_code = 400

    def __init__(self, message: str = INVALID_PATH_MESSAGE):
        super().__init__(message)
