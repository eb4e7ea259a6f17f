"""Password verification across the supported hash schemes."""

import asyncio
import hmac
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

import bcrypt
import structlog
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from blake3 import blake3

from ..exceptions import VerifierBusyError

logger = structlog.get_logger()

BLAKE3_DIGEST_SIZE = 32

_argon2_hasher = PasswordHasher()


class HashScheme(Enum):
    """Hash scheme of a stored password."""

    BCRYPT = "bcrypt"
    ARGON2 = "argon2"
    BLAKE3 = "blake3"

    @property
    def is_blocking(self) -> bool:
        """Whether verification is slow enough to need the worker pool."""
        return self is not HashScheme.BLAKE3


class VerifyResult(Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    ERROR = "error"


def parse_blake3_digest(encoded: str) -> bytes:
    """Parse a hex encoded blake3 digest.

    Raises:
        ValueError: If the value is not 64 hex characters
    """
    try:
        digest = bytes.fromhex(encoded.strip())
    except ValueError as e:
        raise ValueError(f"Invalid blake3 digest encoding: {e}") from None
    if len(digest) != BLAKE3_DIGEST_SIZE:
        raise ValueError(
            f"Invalid blake3 digest length: expected {BLAKE3_DIGEST_SIZE} bytes, got {len(digest)}"
        )
    return digest


@dataclass(frozen=True)
class Credential:
    """Stored credential of a user. ``secret`` is never a plaintext password."""

    username: str
    secret: str
    scheme: HashScheme = HashScheme.BCRYPT
    digest: bytes | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.scheme is HashScheme.BLAKE3:
            object.__setattr__(self, "digest", parse_blake3_digest(self.secret))

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, scheme={self.scheme.value})"


class PasswordVerifier:
    """Checks plaintext passwords against stored credentials.

    bcrypt and argon2 verification is CPU bound and runs on a bounded thread
    pool so a slow hash cannot stall the event loop. At most ``max_pending``
    verifications may be queued or running; beyond that ``averify`` raises
    VerifierBusyError. ``max_pending=0`` disables the limit. A job keeps its
    slot until it completes, also when the awaiting request is cancelled.
    """

    def __init__(self, max_workers: int = 4, max_pending: int = 64):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if max_pending < 0:
            raise ValueError("max_pending must not be negative")
        self.max_workers = max_workers
        self.max_pending = max_pending
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="password-verify"
        )
        self._pending = 0

    @property
    def pending(self) -> int:
        return self._pending

    def verify(self, credential: Credential, plaintext: str) -> VerifyResult:
        """Verify synchronously. Failures of the primitive map to ERROR."""
        try:
            if credential.scheme is HashScheme.BCRYPT:
                matched = bcrypt.checkpw(
                    plaintext.encode("utf-8"), credential.secret.encode("utf-8")
                )
            elif credential.scheme is HashScheme.ARGON2:
                matched = _verify_argon2(credential.secret, plaintext)
            else:
                if credential.digest is None:
                    raise ValueError("blake3 credential has no parsed digest")
                matched = hmac.compare_digest(
                    blake3(plaintext.encode("utf-8")).digest(), credential.digest
                )
        except (ValueError, TypeError, VerificationError, InvalidHashError) as e:
            logger.error(
                "Could not verify password",
                username=credential.username,
                scheme=credential.scheme.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return VerifyResult.ERROR

        return VerifyResult.MATCH if matched else VerifyResult.NO_MATCH

    async def averify(self, credential: Credential, plaintext: str) -> VerifyResult:
        """Verify without blocking the event loop."""
        if not credential.scheme.is_blocking:
            return self.verify(credential, plaintext)

        if self.max_pending and self._pending >= self.max_pending:
            logger.warning(
                "Password verification queue full",
                pending=self._pending,
                max_pending=self.max_pending,
            )
            raise VerifierBusyError()

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, self.verify, credential, plaintext)
        self._pending += 1
        # The slot is held until the job finishes, even if the caller is cancelled
        future.add_done_callback(self._release)
        return await asyncio.shield(future)

    def _release(self, future: "asyncio.Future[VerifyResult]") -> None:
        self._pending -= 1

    def shutdown(self) -> None:
        """Stop the worker pool. Running verifications finish in the background."""
        self._executor.shutdown(wait=False)


def _verify_argon2(encoded: str, plaintext: str) -> bool:
    try:
        return _argon2_hasher.verify(encoded, plaintext)
    except VerifyMismatchError:
        return False
