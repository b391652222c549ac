"""Coordinated shutdown of a service and its worker threads."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

DoneFunc = Callable[[], None]
Worker = Callable[[DoneFunc, threading.Event], None]


class SafeClose:
    """Shutdown coordinator.

    Workers started with :meth:`attach` watch the close signal and call
    their ``done`` callback when finished. :meth:`wait_closed` returns only
    after the close signal was sent and every attached worker is done.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._idle = threading.Condition()
        self._pending = 0
        self._err: Optional[BaseException] = None

    def wait_closed(self, timeout: Optional[float] = None) -> None:
        """Block until closed and all workers are done.

        Raises the error given to :meth:`send_close_signal`, if any, and
        TimeoutError if ``timeout`` seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        if not self._closed.wait(timeout):
            raise TimeoutError("close signal was not received in time")
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        with self._idle:
            if not self._idle.wait_for(lambda: self._pending == 0, remaining):
                raise TimeoutError("attached workers did not finish in time")
        if self._err is not None:
            raise self._err

    def send_close_signal(self, err: Optional[BaseException] = None) -> None:
        """Send the close signal; only the first call has any effect."""
        with self._lock:
            if not self._closed.is_set():
                self._err = err
                self._closed.set()

    def receive_close_signal(self) -> threading.Event:
        """Return the event that is set once the close signal is sent."""
        return self._closed

    def attach(self, f: Worker) -> None:
        """Run ``f(done, close_signal)`` in a thread; skipped if already closed."""
        with self._lock:
            if self._closed.is_set():
                return
            with self._idle:
                self._pending += 1
            thread = threading.Thread(
                target=f, args=(self._make_done(), self._closed), daemon=True
            )
            thread.start()

    def _make_done(self) -> DoneFunc:
        called = threading.Event()
        guard = threading.Lock()

        def done() -> None:
            with guard:
                if called.is_set():
                    return
                called.set()
            with self._idle:
                self._pending -= 1
                self._idle.notify_all()

        return done