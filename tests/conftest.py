"""Shared fixtures: real credentials for each hash scheme."""

from collections.abc import Iterator

import bcrypt
import pytest
from argon2 import PasswordHasher
from blake3 import blake3

from repo_manager.auth.passwords import Credential, HashScheme, PasswordVerifier

PASSWORDS = {
    "alice": "correct horse",
    "bob": "battery staple",
    "carol": "tr0ub4dor&3",
}

# Cheap parameters; the stored hash carries them, verification needs no tuning
_fast_argon2 = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


def bcrypt_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode()


def argon2_hash(password: str) -> str:
    return _fast_argon2.hash(password)


def blake3_hash(password: str) -> str:
    return blake3(password.encode()).hexdigest()


@pytest.fixture(scope="session")
def credentials() -> dict[str, Credential]:
    """alice uses bcrypt, bob argon2, carol blake3."""
    return {
        "alice": Credential(
            "alice", bcrypt_hash(PASSWORDS["alice"]), HashScheme.BCRYPT
        ),
        "bob": Credential("bob", argon2_hash(PASSWORDS["bob"]), HashScheme.ARGON2),
        "carol": Credential(
            "carol", blake3_hash(PASSWORDS["carol"]), HashScheme.BLAKE3
        ),
    }


@pytest.fixture
def verifier() -> Iterator[PasswordVerifier]:
    verifier = PasswordVerifier(max_workers=2, max_pending=8)
    yield verifier
    verifier.shutdown()
