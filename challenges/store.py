"""
challenges/store.py -- In-memory store of active one-time codes.

Holds at most one active challenge per email with an absolute expiry, and
consumes a challenge the moment it matches. Built once per process (FastAPI
lifespan) and passed to the service; there is no module-level map.

Per-email state machine:
    NONE -> ACTIVE -> {CONSUMED, EXPIRED}
    ACTIVE -> ACTIVE            (issue() supersedes the previous code)

Concurrency:
  One threading.Lock guards the whole map. issue() (supersede) and verify()
  (match-and-consume) are each a single critical section, so two concurrent
  verifications of the same valid code can never both report MATCHED, and a
  verify racing an issue sees either the old code or the new one, never a
  mix. Code generation happens before the lock is taken.

Expiry:
  Evaluated lazily on access against an injected monotonic clock. An expired
  entry reads exactly like a missing one and is evicted on the spot.
  purge_expired() trims the map in bulk; it is memory hygiene only.

Usage:
    store = ChallengeStore(ttl_seconds=600)
    code = store.issue("alice@example.com")
    store.verify("alice@example.com", code)   # VerifyResult.MATCHED
    store.verify("alice@example.com", code)   # VerifyResult.NOT_FOUND
"""

from __future__ import annotations

import hmac
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from challenges.generator import CodeGenerator
from core.redact import mask_email

logger = logging.getLogger("identitygate.challenges")

_DEFAULT_TTL = 10 * 60  # 10 minutes in seconds


class VerifyResult(str, Enum):
    MATCHED = "matched"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"


@dataclass
class Challenge:
    email: str
    code: str
    expires_at: float  # clock() reading, not wall time
    attempts: int = 0


class ChallengeStore:
    """Lock-guarded map of email -> active Challenge.

    Args:
        ttl_seconds:  Validity window of each issued code.
        max_attempts: Mismatches allowed before the code is discarded.
                      0 disables the limit (retry until expiry).
        generator:    Zero-argument callable returning a code string.
        clock:        Zero-argument callable returning seconds; defaults to
                      time.monotonic so wall-clock jumps cannot extend a code.
    """

    def __init__(
        self,
        ttl_seconds: float = _DEFAULT_TTL,
        max_attempts: int = 0,
        generator: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._generate = generator or CodeGenerator()
        self._clock = clock
        self._active: dict[str, Challenge] = {}
        self._lock = threading.Lock()

    def draw(self) -> str:
        """Return a fresh code from the generator without installing it.

        Lets a caller obtain the code before committing other state, then
        hand it to issue(). Raises EntropyError from the generator.
        """
        return self._generate()

    def issue(self, email: str, code: str | None = None) -> str:
        """Install a code as the only active challenge for email and return it.

        With code=None a fresh one is drawn; otherwise the given code (from
        draw()) is installed as is. Any previous unconsumed code for the same
        email stops matching. Raises EntropyError (from the generator) without
        touching the map.
        """
        if code is None:
            code = self._generate()
        with self._lock:
            superseded = email in self._active
            self._active[email] = Challenge(email=email, code=code, expires_at=self._clock() + self.ttl_seconds)
        if superseded:
            logger.info("Challenge re-issued for %s; previous code superseded", mask_email(email))
        return code

    def verify(self, email: str, submitted: str) -> VerifyResult:
        """Check submitted against the active challenge for email.

        MATCHED consumes the challenge before returning. MISMATCH leaves it
        active unless max_attempts is reached. NOT_FOUND covers never
        issued, already consumed, expired, and exhausted -- callers must not
        tell these apart.
        """
        with self._lock:
            challenge = self._active.get(email)
            if challenge is None:
                return VerifyResult.NOT_FOUND
            if self._clock() >= challenge.expires_at:
                del self._active[email]
                return VerifyResult.NOT_FOUND
            if hmac.compare_digest(challenge.code.encode("utf-8"), submitted.encode("utf-8")):
                del self._active[email]
                return VerifyResult.MATCHED
            challenge.attempts += 1
            exhausted = 0 < self.max_attempts <= challenge.attempts
            if exhausted:
                del self._active[email]
        if exhausted:
            logger.warning("Challenge for %s discarded after %d wrong codes", mask_email(email), self.max_attempts)
        return VerifyResult.MISMATCH

    def purge_expired(self) -> int:
        """Delete every expired challenge. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [email for email, c in self._active.items() if now >= c.expires_at]
            for email in expired:
                del self._active[email]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)

    def close(self) -> None:
        with self._lock:
            self._active.clear()
