"""Password hashing using bcrypt.

Hash Format:
    Standard modular crypt format produced by bcrypt, e.g.
    "$2b$10$<22 char salt><31 char digest>". The cost factor is embedded in
    the hash, so hashes created with an older BCRYPT_ROUNDS keep verifying
    after the setting is raised.

Limits:
    bcrypt only consumes the first 72 bytes of its input. Longer passwords
    are truncated explicitly so hashing and verification agree.
"""

from __future__ import annotations

import bcrypt

from . import config

# =============================================================================
# Configuration
# =============================================================================

MAX_PASSWORD_BYTES: int = 72
"""bcrypt ignores input beyond this many bytes."""


# =============================================================================
# Credential Functions
# =============================================================================


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:MAX_PASSWORD_BYTES]


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with a fresh salt.

    Args:
        password: Plaintext password.
        rounds: bcrypt cost factor, defaults to config.BCRYPT_ROUNDS.

    Returns:
        Self-describing bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=rounds or config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_encode(password), salt).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash.

    bcrypt.checkpw compares in constant time.

    Args:
        password: Plaintext password provided by the user.
        password_hash: Hash previously returned by hash_password.

    Returns:
        True if the password matches. False for a mismatch or a malformed hash.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        return False
