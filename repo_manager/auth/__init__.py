from enum import Enum

from .backends import NoAuthBackend, StaticCredentialsBackend
from .models import AuthBackend, AuthOutcome, BasicCredentials
from .passwords import Credential, HashScheme, PasswordVerifier, VerifyResult


class AuthMode(Enum):
    NONE = "none"
    ACTIVE = "active"


__all__ = [
    "AuthBackend",
    "AuthMode",
    "AuthOutcome",
    "BasicCredentials",
    "Credential",
    "HashScheme",
    "NoAuthBackend",
    "PasswordVerifier",
    "StaticCredentialsBackend",
    "VerifyResult",
]
