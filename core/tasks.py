"""
core/tasks.py -- Fire-and-forget background work on a thread pool.

Registration hands email delivery to this pool, and a matched code hands the
directory's mark_verified() write to it. In both cases the HTTP response must
not wait for the work and must not fail because of it.

Rules every submitted task lives by:
  - Exceptions are captured by a done-callback and logged with traceback.
    They are never re-raised into the request that submitted the task.
  - Tasks receive plain values (email, code), never Request/Response objects,
    so nothing can write to a response after it has been sent.

flush() exists for orderly shutdown and for tests that need to observe the
side effects of background work deterministically.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger("identitygate.tasks")


class BackgroundDispatcher:
    """Thread-pool wrapper that runs detached tasks and logs their failures.

    Usage:
        dispatcher = BackgroundDispatcher(max_workers=4)
        dispatcher.submit("send code", notifier.send, email, code)
        dispatcher.shutdown()
    """

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "identitygate-bg") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._pending: set[Future] = set()
        self._idle = threading.Condition()

    def submit(self, description: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule fn(*args, **kwargs) and return immediately.

        description is used only in the failure log line. Keep it free of
        secrets -- it is written verbatim.
        """
        with self._idle:
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending.add(future)
        future.add_done_callback(lambda f: self._on_done(description, f))
        return future

    def _on_done(self, description: str, future: Future) -> None:
        try:
            if future.cancelled():
                logger.warning("Background task cancelled: %s", description)
                return
            exc = future.exception()
            if exc is not None:
                logger.error("Background task failed: %s", description, exc_info=exc)
        finally:
            # Removed only after logging so flush() callers see the log line.
            with self._idle:
                self._pending.discard(future)
                self._idle.notify_all()

    @property
    def pending(self) -> int:
        with self._idle:
            return len(self._pending)

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every task submitted so far has finished and been logged.

        Returns True if all finished within timeout, False otherwise.
        """
        with self._idle:
            snapshot = set(self._pending)
            return self._idle.wait_for(lambda: not (self._pending & snapshot), timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
