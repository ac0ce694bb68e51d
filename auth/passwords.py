"""
auth/passwords.py -- Credential vault: one-way password hashing with bcrypt.

Security design decisions:
  bcrypt directly (no passlib wrapper). Its cost factor makes brute force of
  low-entropy secrets expensive, the salt is generated per call and embedded
  in the hash string, and checkpw() compares in constant time.

  72-byte limit: bcrypt only looks at the first 72 bytes of its input. Older
  releases silently truncate, newer ones raise. We reject long input
  explicitly in hash_password() so two passwords sharing a 72-byte prefix can
  never collide. verify_password() treats over-length input as a plain
  mismatch -- no stored hash can have come from it.

  DUMMY_HASH: login always runs bcrypt, against this hash when the email is
  unknown, so response time does not reveal whether an account exists.

Plaintext passwords are never logged or stored. Nothing in this module logs.
"""

from __future__ import annotations

import bcrypt

from core.errors import CredentialError

BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises CredentialError if the password exceeds bcrypt's 72-byte input
    limit or the primitive fails.
    """
    raw = plain.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        raise CredentialError(f"Password exceeds bcrypt's {BCRYPT_MAX_BYTES}-byte limit.")
    try:
        return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")
    except ValueError as exc:
        raise CredentialError("Password could not be hashed.") from exc


# Computed once at import so the first unknown-email login is not measurably
# faster or slower than later ones.
DUMMY_HASH: str = hash_password("identitygate_timing_dummy")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A wrong password returns False. CredentialError is raised only when the
    stored hash itself is malformed.
    """
    raw = plain.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        # Still pay for one bcrypt round so the rejection is not a timing signal.
        bcrypt.checkpw(raw[:BCRYPT_MAX_BYTES], DUMMY_HASH.encode("utf-8"))
        return False
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError as exc:
        raise CredentialError("Stored password hash is malformed.") from exc
