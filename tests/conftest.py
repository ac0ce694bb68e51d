"""
tests/conftest.py -- Shared test fixtures for IdentityGate.

This module provides:
  - RecordingNotifier: captures (email, code) pairs instead of sending mail
  - clock: FakeClock fixture, a manually advanced monotonic clock
  - make_identity_store(): isolated named shared-memory SQLite directory
  - service: IdentityService wired to test doubles (unit level)
  - api_client: TestClient running the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because background tasks and TestClient route handlers run on other
threads. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any api/auth/core import: DEBUG so
get_settings() auto-generates SECRET_KEY, ALLOWED_HOSTS so TestClient's
"testserver" host passes TrustedHostMiddleware, and generous rate limits so
the suite never trips slowapi.
"""

from __future__ import annotations

import asyncio
import os
import threading
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import IdentityService
from auth.store import IdentityStore
from challenges.store import ChallengeStore
from core.tasks import BackgroundDispatcher

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Notifier that remembers every code it was asked to deliver.

    Set fail=True to make send() raise, simulating an SMTP outage.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False
        self._lock = threading.Lock()

    def send(self, destination: str, code: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        with self._lock:
            self.sent.append((destination, code))

    def last_code(self, email: str) -> str:
        with self._lock:
            codes = [c for e, c in self.sent if e == email]
        assert codes, f"no code was delivered to {email}"
        return codes[-1]


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_identity_store(db_suffix: str | None = None) -> IdentityStore:
    """Create an isolated named shared-memory SQLite identity store.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't share
                   state. A random one is used when omitted.
    """
    name = db_suffix or uuid.uuid4().hex
    return IdentityStore(db_url=f"sqlite:///file:test_identity_{name}?mode=memory&cache=shared&uri=true")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity_store() -> Generator[IdentityStore, None, None]:
    store = make_identity_store()
    yield store
    store.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher() -> Generator[BackgroundDispatcher, None, None]:
    d = BackgroundDispatcher(max_workers=2)
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def service(identity_store, notifier, dispatcher) -> IdentityService:
    """IdentityService with a real directory, real challenge store, recording notifier."""
    return IdentityService(
        identities=identity_store,
        challenges=ChallengeStore(ttl_seconds=600),
        notifier=notifier,
        dispatcher=dispatcher,
        require_verification=True,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: IdentityService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service and its collaborators into app.state so
    TestClient routes see isolated test stores and the recording notifier.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity_store = service.identities
        app.state.challenge_store = service.challenges
        app.state.dispatcher = service.dispatcher
        app.state.identity_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, IdentityService, RecordingNotifier], None, None]:
    """Yield (client, service, notifier) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, real bcrypt and real JWTs, but isolated stores.
    Module-scoped for speed: tests must use their own email addresses.
    """
    identity_store = make_identity_store()
    notifier = RecordingNotifier()
    dispatcher = BackgroundDispatcher(max_workers=2)
    svc = IdentityService(
        identities=identity_store,
        challenges=ChallengeStore(ttl_seconds=600),
        notifier=notifier,
        dispatcher=dispatcher,
        require_verification=True,
    )

    app.router.lifespan_context = _patch_lifespan(svc)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, svc, notifier

    dispatcher.shutdown(wait=True)
    identity_store.close()
