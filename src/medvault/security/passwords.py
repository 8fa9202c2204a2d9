"""Account password hashing with Argon2id (argon2-cffi defaults)."""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError


_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Return an encoded Argon2id hash (salt and parameters included)."""
    return _hasher.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Check ``password`` against a stored hash; malformed hashes count as a mismatch."""
    try:
        return _hasher.verify(hashed, password)
    except (VerificationError, InvalidHashError):
        return False


def needs_rehash(hashed: str) -> bool:
    return _hasher.check_needs_rehash(hashed)
