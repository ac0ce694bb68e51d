"""
tests/test_service.py -- Unit tests for auth/service.py (IdentityService).

Exercises the orchestration against a real IdentityStore (shared-memory
SQLite), a real ChallengeStore, a real BackgroundDispatcher and the
RecordingNotifier from conftest. dispatcher.flush() makes the background
delivery and verified-flag write observable.

Covers:
  - Register -> code delivered -> verify -> login (happy path)
  - Wrong code, reused code, never-issued code
  - Resend supersedes; resend for unknown/verified emails is a no-op
  - Login failures (unknown email, wrong password, unverified) are uniform
  - Login right after a matched code, before the verified flag is written
  - A failed code draw leaves no identity behind
  - Delivery failure and verified-flag write failure stay in the background
"""

from __future__ import annotations

import logging
import threading
from itertools import cycle
from unittest.mock import patch

import pytest

from auth.passwords import DUMMY_HASH
from auth.service import IdentityService
from auth.tokens import validate_token
from challenges.store import ChallengeStore
from core.errors import (
    AuthenticationError,
    EntropyError,
    IdentityExistsError,
    MismatchError,
    NotFoundError,
    PersistenceError,
)


def _fixed(*codes: str):
    """Generator returning the given codes in order, repeating."""
    it = cycle(codes)
    return lambda: next(it)


def _verified(service: IdentityService, notifier, email: str, password: str = "s3cret-pass") -> None:
    service.register(email, password)
    service.dispatcher.flush(timeout=5)
    service.verify_code(email, notifier.last_code(email))
    service.dispatcher.flush(timeout=5)


class TestRegister:
    def test_register_delivers_code(self, service: IdentityService, notifier) -> None:
        identity = service.register("alice@example.com", "s3cret-pass")
        assert identity.id is not None
        assert identity.is_verified is False
        service.dispatcher.flush(timeout=5)
        code = notifier.last_code("alice@example.com")
        assert len(code) == 5 and code.isdigit()

    def test_password_is_hashed(self, service: IdentityService) -> None:
        service.register("alice@example.com", "s3cret-pass")
        stored = service.identities.get_by_email("alice@example.com")
        assert stored.password_hash != "s3cret-pass"
        assert stored.password_hash.startswith("$2")

    def test_duplicate_email(self, service: IdentityService) -> None:
        service.register("alice@example.com", "s3cret-pass")
        with pytest.raises(IdentityExistsError):
            service.register("alice@example.com", "other-pass")

    def test_delivery_failure_does_not_fail_registration(
        self, service: IdentityService, notifier, caplog: pytest.LogCaptureFixture
    ) -> None:
        notifier.fail = True
        with caplog.at_level(logging.ERROR, logger="identitygate.tasks"):
            identity = service.register("bob@example.com", "s3cret-pass")
            service.dispatcher.flush(timeout=5)
        assert identity.id is not None
        assert any("deliver code" in r.getMessage() for r in caplog.records)
        # The raw address is masked in the log line.
        assert all("bob@example.com" not in r.getMessage() for r in caplog.records)

    def test_entropy_failure_leaves_no_identity(self, identity_store, notifier, dispatcher) -> None:
        """A failed code draw aborts registration before anything is persisted."""
        calls = {"n": 0}

        def flaky() -> str:
            calls["n"] += 1
            if calls["n"] == 1:
                raise EntropyError("no entropy")
            return "48213"

        svc = IdentityService(identity_store, ChallengeStore(generator=flaky), notifier, dispatcher)
        with pytest.raises(EntropyError):
            svc.register("carol@example.com", "s3cret-pass")
        dispatcher.flush(timeout=5)
        assert notifier.sent == []
        assert identity_store.get_by_email("carol@example.com") is None

        # A retry succeeds instead of colliding with a half-registered account.
        svc.register("carol@example.com", "s3cret-pass")
        dispatcher.flush(timeout=5)
        assert notifier.last_code("carol@example.com") == "48213"

    def test_duplicate_keeps_existing_code(self, identity_store, notifier, dispatcher) -> None:
        svc = IdentityService(identity_store, ChallengeStore(generator=_fixed("11111", "22222")), notifier, dispatcher)
        svc.register("carol@example.com", "s3cret-pass")
        with pytest.raises(IdentityExistsError):
            svc.register("carol@example.com", "other-pass")
        svc.verify_code("carol@example.com", "11111")


class TestVerifyCode:
    def test_happy_path_marks_verified(self, service: IdentityService, notifier) -> None:
        _verified(service, notifier, "alice@example.com")
        assert service.identities.get_by_email("alice@example.com").is_verified is True

    def test_wrong_code_then_right_code(self, identity_store, notifier, dispatcher) -> None:
        svc = IdentityService(identity_store, ChallengeStore(generator=lambda: "73210"), notifier, dispatcher)
        svc.register("carol@example.com", "s3cret-pass")
        with pytest.raises(MismatchError):
            svc.verify_code("carol@example.com", "00000")
        svc.verify_code("carol@example.com", "73210")

    def test_code_is_single_use(self, service: IdentityService, notifier) -> None:
        service.register("alice@example.com", "s3cret-pass")
        service.dispatcher.flush(timeout=5)
        code = notifier.last_code("alice@example.com")
        service.verify_code("alice@example.com", code)
        with pytest.raises(NotFoundError):
            service.verify_code("alice@example.com", code)

    def test_never_issued(self, service: IdentityService) -> None:
        with pytest.raises(NotFoundError):
            service.verify_code("nobody@example.com", "12345")

    def test_mark_verified_failure_is_isolated(
        self, service: IdentityService, notifier, caplog: pytest.LogCaptureFixture
    ) -> None:
        service.register("dave@example.com", "s3cret-pass")
        service.dispatcher.flush(timeout=5)
        code = notifier.last_code("dave@example.com")
        with patch.object(service.identities, "mark_verified", side_effect=PersistenceError("locked")):
            with caplog.at_level(logging.ERROR, logger="identitygate.tasks"):
                service.verify_code("dave@example.com", code)  # does not raise
                service.dispatcher.flush(timeout=5)
        assert any("verified" in r.getMessage() for r in caplog.records)
        # The code was consumed even though the flag write failed.
        with pytest.raises(NotFoundError):
            service.verify_code("dave@example.com", code)


class TestResend:
    def test_resend_supersedes(self, identity_store, notifier, dispatcher) -> None:
        svc = IdentityService(identity_store, ChallengeStore(generator=_fixed("11111", "22222")), notifier, dispatcher)
        svc.register("erin@example.com", "s3cret-pass")
        assert svc.resend_code("erin@example.com") is True
        dispatcher.flush(timeout=5)
        assert sorted(c for e, c in notifier.sent if e == "erin@example.com") == ["11111", "22222"]
        with pytest.raises(MismatchError):
            svc.verify_code("erin@example.com", "11111")
        svc.verify_code("erin@example.com", "22222")

    def test_resend_unknown_email(self, service: IdentityService, notifier) -> None:
        assert service.resend_code("ghost@example.com") is False
        service.dispatcher.flush(timeout=5)
        assert notifier.sent == []

    def test_resend_verified_email(self, service: IdentityService, notifier) -> None:
        _verified(service, notifier, "frank@example.com")
        sent_before = len(notifier.sent)
        assert service.resend_code("frank@example.com") is False
        service.dispatcher.flush(timeout=5)
        assert len(notifier.sent) == sent_before


class TestLogin:
    def test_login_returns_token_for_email(self, service: IdentityService, notifier) -> None:
        _verified(service, notifier, "alice@example.com")
        token = service.login("alice@example.com", "s3cret-pass")
        assert validate_token(token) == "alice@example.com"

    def test_wrong_password(self, service: IdentityService, notifier) -> None:
        _verified(service, notifier, "alice@example.com")
        with pytest.raises(AuthenticationError):
            service.login("alice@example.com", "wrong-pass")

    def test_unknown_email_runs_bcrypt(self, service: IdentityService) -> None:
        with patch("auth.service.verify_password", return_value=False) as vp:
            with pytest.raises(AuthenticationError):
                service.login("ghost@example.com", "whatever")
        vp.assert_called_once_with("whatever", DUMMY_HASH)

    def test_unverified_refused(self, service: IdentityService) -> None:
        service.register("gina@example.com", "s3cret-pass")
        with pytest.raises(AuthenticationError):
            service.login("gina@example.com", "s3cret-pass")

    def test_unverified_allowed_when_not_required(self, identity_store, notifier, dispatcher) -> None:
        svc = IdentityService(identity_store, ChallengeStore(), notifier, dispatcher, require_verification=False)
        svc.register("gina@example.com", "s3cret-pass")
        assert validate_token(svc.login("gina@example.com", "s3cret-pass")) == "gina@example.com"

    def test_failures_are_indistinguishable(self, service: IdentityService, notifier) -> None:
        _verified(service, notifier, "alice@example.com")
        service.register("gina@example.com", "s3cret-pass")
        messages = set()
        for email, pw in [
            ("ghost@example.com", "s3cret-pass"),
            ("alice@example.com", "wrong-pass"),
            ("gina@example.com", "s3cret-pass"),
        ]:
            with pytest.raises(AuthenticationError) as excinfo:
                service.login(email, pw)
            messages.add(str(excinfo.value))
        assert len(messages) == 1


class TestLoginWhileFlagPending:
    """A matched code counts as verified before the background flag write lands."""

    def test_login_immediately_after_code(self, identity_store, notifier, dispatcher) -> None:
        svc = IdentityService(identity_store, ChallengeStore(generator=_fixed("12345")), notifier, dispatcher)
        svc.register("race@example.com", "s3cret-pass")
        release = threading.Event()
        real_mark_verified = identity_store.mark_verified

        def slow_mark_verified(email: str) -> bool:
            release.wait(timeout=5)
            return real_mark_verified(email)

        with patch.object(identity_store, "mark_verified", side_effect=slow_mark_verified):
            svc.verify_code("race@example.com", "12345")
            try:
                # No flush: the directory still says unverified.
                assert identity_store.get_by_email("race@example.com").is_verified is False
                token = svc.login("race@example.com", "s3cret-pass")
                assert svc.resend_code("race@example.com") is False
            finally:
                release.set()
            dispatcher.flush(timeout=5)

        assert validate_token(token) == "race@example.com"
        assert identity_store.get_by_email("race@example.com").is_verified is True
        assert validate_token(svc.login("race@example.com", "s3cret-pass")) == "race@example.com"

    def test_failed_flag_write_still_allows_login(self, identity_store, notifier, dispatcher) -> None:
        svc = IdentityService(identity_store, ChallengeStore(generator=_fixed("12345")), notifier, dispatcher)
        svc.register("locked@example.com", "s3cret-pass")
        with patch.object(identity_store, "mark_verified", side_effect=PersistenceError("locked")):
            svc.verify_code("locked@example.com", "12345")
            dispatcher.flush(timeout=5)
        assert validate_token(svc.login("locked@example.com", "s3cret-pass")) == "locked@example.com"
