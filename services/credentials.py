"""Password hashing backed by argon2id."""

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Return a PHC-encoded argon2id hash; every call draws a fresh salt."""
    return _hasher.hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    """Check ``password`` against ``stored_hash``. Malformed hashes never match."""
    if not isinstance(stored_hash, str) or not stored_hash:
        return False
    try:
        return _hasher.verify(stored_hash, password)
    except (VerificationError, InvalidHashError):
        return False
