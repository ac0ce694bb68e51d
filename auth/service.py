"""
auth/service.py -- Registration, code verification, and login orchestration.

IdentityService wires the credential vault, the challenge store, the
identity directory, the notifier and the session issuer together. Every
collaborator is constructed once at startup and passed in. Its only state
is the set of emails whose code matched but whose verified flag is still
being written.

Flows:
  register:  draw code -> hash -> persist -> install code -> deliver (background)
  verify:    match-and-consume code -> mark verified (background)
  login:     lookup -> bcrypt (always) -> token

Error policy:
  Caller mistakes raise CallerError subclasses that carry no detail an
  attacker could use. Internal faults (CredentialError, EntropyError,
  SigningError, PersistenceError) propagate unchanged and abort the
  operation. Background failures are logged by the dispatcher only.

Layer rule: no imports from api/. FastAPI knows about this module, not the
other way around.
"""

from __future__ import annotations

import logging
import threading

from auth.models import Identity
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.store import IdentityStore
from auth.tokens import create_access_token
from challenges.store import ChallengeStore, VerifyResult
from core.errors import AuthenticationError, MismatchError, NotFoundError
from core.redact import mask_email
from core.tasks import BackgroundDispatcher
from notify.mailer import Notifier

logger = logging.getLogger("identitygate.auth")


class IdentityService:
    def __init__(
        self,
        identities: IdentityStore,
        challenges: ChallengeStore,
        notifier: Notifier,
        dispatcher: BackgroundDispatcher,
        require_verification: bool = True,
    ) -> None:
        self.identities = identities
        self.challenges = challenges
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.require_verification = require_verification
        # Emails whose code matched but whose is_verified write has not landed.
        self._verified_pending: set[str] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> Identity:
        """Create an unverified identity and email it a one-time code.

        Raises IdentityExistsError for a taken email. The response does not
        wait for delivery, and a delivery failure does not fail registration.

        The code is drawn before the insert, so an EntropyError leaves no
        identity behind. It is installed only after the insert succeeds, so a
        duplicate registration never replaces the existing account's code.
        """
        code = self.challenges.draw()
        identity = Identity(email=email, password_hash=hash_password(password))
        identity.id = self.identities.create_identity(identity)
        logger.info("Identity %d registered for %s", identity.id, mask_email(email))
        self._send_code(email, code)
        return identity

    def resend_code(self, email: str) -> bool:
        """Supersede the active code for an unverified identity and send a new one.

        Returns True if a code was issued. Unknown and already-verified emails
        return False; the route answers the same way in every case.
        """
        identity = self.identities.get_by_email(email)
        if identity is None or self.is_verified(identity):
            return False
        self._send_code(email)
        return True

    def _send_code(self, email: str, code: str | None = None) -> None:
        code = self.challenges.issue(email, code)
        self.dispatcher.submit(f"deliver code to {mask_email(email)}", self.notifier.send, email, code)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_code(self, email: str, code: str) -> None:
        """Consume a matching code and mark the identity verified.

        Raises NotFoundError (no active code) or MismatchError (wrong code).
        On success the directory write is handed to the background pool; the
        consumed challenge is what makes the verification final. Until the
        write lands the email sits in _verified_pending, which login consults.
        """
        result = self.challenges.verify(email, code)
        if result is VerifyResult.NOT_FOUND:
            raise NotFoundError("No active code for this email.")
        if result is VerifyResult.MISMATCH:
            raise MismatchError("Code does not match.")
        logger.info("Code confirmed for %s", mask_email(email))
        with self._pending_lock:
            self._verified_pending.add(email)
        self.dispatcher.submit(f"mark {mask_email(email)} verified", self._mark_verified, email)

    def _mark_verified(self, email: str) -> None:
        # A failed write raises before the discard, so the email stays
        # verified for this process and the dispatcher logs the failure.
        if not self.identities.mark_verified(email):
            logger.warning("Verified flag unchanged for %s (missing or already verified)", mask_email(email))
        with self._pending_lock:
            self._verified_pending.discard(email)

    def is_verified(self, identity: Identity) -> bool:
        """True if the directory says so or a matched code is still being recorded."""
        if identity.is_verified:
            return True
        with self._pending_lock:
            return identity.email in self._verified_pending

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> Identity:
        """Check credentials with timing equalization.

        Always runs bcrypt whether or not the email exists:
        - Unknown email: bcrypt runs against DUMMY_HASH (same cost as real check)
        - Wrong password: bcrypt runs against the real hash (same cost)

        Raises AuthenticationError for every caller-side failure.
        """
        identity = self.identities.get_by_email(email)
        if identity is None:
            # Equalize timing -- do NOT return early before running bcrypt
            verify_password(password, DUMMY_HASH)
            raise AuthenticationError("Invalid email or password.")
        if not verify_password(password, identity.password_hash):
            raise AuthenticationError("Invalid email or password.")
        if self.require_verification and not self.is_verified(identity):
            raise AuthenticationError("Invalid email or password.")
        return identity

    def login(self, email: str, password: str) -> str:
        """Authenticate and return a signed session token for the identity's email."""
        identity = self.authenticate(email, password)
        token = create_access_token(identity.email)
        logger.info("Session issued for identity %d", identity.id)
        return token
