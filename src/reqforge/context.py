"""Cancellation tokens and per-call time budgets."""

from __future__ import annotations

import math
import threading
import time
from typing import Callable

import httpx

from .exceptions import DeadlineExceeded, RequestCancelled

_TIMEOUT_KEYS = ("connect", "read", "write", "pool")


class RequestContext:
    """Cancellation signal with an optional deadline, shared across threads.

    ``deadline`` is expressed on the ``time.monotonic()`` clock; ``timeout`` is a
    convenience that sets it relative to now. When both are given the earlier
    one wins.
    """

    def __init__(self, *, timeout: float | None = None, deadline: float | None = None) -> None:
        if timeout is not None:
            if timeout < 0:
                raise ValueError("timeout must be non-negative")
            relative = time.monotonic() + timeout
            deadline = relative if deadline is None else min(deadline, relative)
        self._deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        callback()
        return lambda: None

    def _discard(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_done(self) -> None:
        if self.cancelled:
            raise RequestCancelled("request context was cancelled")
        if self.expired:
            raise DeadlineExceeded("request context deadline exceeded")


class Deadline:
    """Time budget for one call, spanning every redirect hop.

    Combines the client's overall request timeout (if any) with the deadline of
    the attached ``RequestContext`` (if any).
    """

    def __init__(self, request_timeout: float | None = None, context: RequestContext | None = None) -> None:
        self._expires_at = time.monotonic() + request_timeout if request_timeout else None
        self.context = context

    def remaining(self) -> float | None:
        budgets = []
        if self._expires_at is not None:
            budgets.append(self._expires_at - time.monotonic())
        if self.context is not None and self.context.deadline is not None:
            budgets.append(self.context.deadline - time.monotonic())
        if not budgets:
            return None
        return max(0.0, min(budgets))

    def check(self) -> None:
        if self.context is not None:
            self.context.raise_if_done()

    def apply(self, request: httpx.Request) -> None:
        """Clamp every httpx timeout on ``request`` to the remaining budget."""
        remaining = self.remaining()
        if remaining is None:
            return
        if remaining <= 0:
            raise httpx.TimeoutException("Overall request timeout exceeded.", request=request)
        current = request.extensions.get("timeout") or {}
        clamped = {}
        for key in _TIMEOUT_KEYS:
            value = current.get(key)
            clamped[key] = remaining if value is None or math.isinf(value) else min(value, remaining)
        request.extensions = {**request.extensions, "timeout": clamped}

    def translate(self, exc: httpx.TimeoutException) -> BaseException:
        """Report a timeout caused by the context deadline as ``DeadlineExceeded``."""
        if self.context is not None and self.context.expired:
            return DeadlineExceeded("request context deadline exceeded", cause=exc)
        return exc
