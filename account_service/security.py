"""Password hashing helpers.

Thin wrappers around :class:`passlib.context.CryptContext` configured for
Argon2. A stored value that passlib cannot identify verifies as ``False``
rather than raising, so a corrupt row reads like a wrong password.
"""

from __future__ import annotations

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def get_password_hash(password: str) -> str:
    """Return a salted hash for ``password``."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check ``plain_password`` against ``hashed_password``."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def is_password_hash(value: str) -> bool:
    """True if ``value`` is a hash produced by :data:`pwd_context`."""
    return pwd_context.identify(value) is not None
