"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service do the work.

Layer rule: no imports from api/, challenges/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Identity:
    """A registered account.

    email is the login name and is matched exactly as stored (case-sensitive).
    password_hash is a bcrypt hash string set once at registration; the
    plaintext is never kept anywhere.

    is_verified flips from False to True exactly once, after the emailed code
    is confirmed. Identities are never deleted by IdentityGate.
    """

    email: str
    password_hash: str
    id: int | None = None
    is_verified: bool = False
    created_at: str | None = None
