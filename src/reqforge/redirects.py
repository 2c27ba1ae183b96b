"""Redirect following with a hop limit and cross-host header stripping."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass

import httpx

from .config import ClientDefaults, resolve_defaults
from .context import Deadline
from .exceptions import DeadlineExceeded, RedirectLimitExceeded
from .request_options import RequestOptions
from .security import is_cross_host, sanitize_headers

logger = logging.getLogger("reqforge.redirects")


@dataclass(frozen=True)
class RedirectPolicy:
    """How many redirects to follow and which headers never cross hosts.

    With ``follow=False`` the first redirect response is returned as is; its
    ``next_request`` lets the caller inspect the target before continuing.
    """

    limit: int
    follow: bool = True
    sensitive_headers: frozenset[str] = frozenset()

    @classmethod
    def from_options(cls, options: RequestOptions, defaults: ClientDefaults | None = None) -> "RedirectPolicy":
        defaults = resolve_defaults(defaults)
        limit = defaults.redirect_limit if options.redirect_limit is None else options.redirect_limit
        names = defaults.sensitive_headers if options.sensitive_headers is None else options.sensitive_headers
        return cls(
            limit=limit,
            follow=options.follow_redirects,
            sensitive_headers=frozenset(name.lower() for name in names),
        )

    def prepare(self, next_request: httpx.Request, previous: httpx.Request) -> httpx.Request:
        """Adjust the redirect request httpx built from ``previous``."""
        if is_cross_host(previous.url, next_request.url):
            stripped = sorted({name for name in next_request.headers if name.lower() in self.sensitive_headers})
            for name in stripped:
                del next_request.headers[name]
            if stripped:
                logger.debug("stripped %s before redirect to %s", ", ".join(stripped), next_request.url.host)
        else:
            # httpx rebuilds Cookie from the client jar; keep explicitly attached cookies on the same host.
            cookie = previous.headers.get("Cookie")
            if cookie and "Cookie" not in next_request.headers:
                next_request.headers["Cookie"] = cookie
        return next_request

    def check(self, history: list[httpx.Response], next_request: httpx.Request) -> None:
        if len(history) >= self.limit:
            raise RedirectLimitExceeded(
                f"Exceeded maximum allowed redirects ({self.limit}).",
                request=next_request,
                limit=self.limit,
            )


def _log_send(request: httpx.Request, hop: int) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "sending %s %s (hop %d) headers=%s",
            request.method,
            request.url,
            hop,
            sanitize_headers(dict(request.headers)),
        )


def _send_in_thread(client: httpx.Client, request: httpx.Request) -> Future[httpx.Response]:
    future: Future[httpx.Response] = Future()

    def run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(client.send(request, follow_redirects=False))
        except BaseException as exc:
            future.set_exception(exc)

    threading.Thread(target=run, name="reqforge-send", daemon=True).start()
    return future


def _close_late_response(future: Future[httpx.Response]) -> None:
    if future.exception() is None:
        future.result().close()


def _send_hop(client: httpx.Client, request: httpx.Request, deadline: Deadline) -> httpx.Response:
    """Send one hop, giving up as soon as the request context is cancelled or expires.

    With a context attached the blocking send runs on a worker thread. An
    abandoned hop keeps running there; its response is closed when it arrives.
    """
    context = deadline.context
    if context is None:
        return client.send(request, follow_redirects=False)

    wake = threading.Event()
    unregister = context.add_callback(wake.set)
    future = _send_in_thread(client, request)
    future.add_done_callback(lambda _: wake.set())
    try:
        wake.wait(context.remaining())
    finally:
        unregister()
    if future.done():
        return future.result()

    future.add_done_callback(_close_late_response)
    logger.debug("abandoning in-flight %s %s", request.method, request.url)
    context.raise_if_done()
    raise DeadlineExceeded("request context deadline exceeded")


def _discard_if_done(response: httpx.Response, deadline: Deadline) -> None:
    if deadline.context is not None and deadline.context.done:
        response.close()
        deadline.check()


def send_with_redirects(
    client: httpx.Client,
    request: httpx.Request,
    policy: RedirectPolicy,
    deadline: Deadline,
) -> httpx.Response:
    history: list[httpx.Response] = []
    while True:
        deadline.check()
        deadline.apply(request)
        _log_send(request, len(history))
        try:
            response = _send_hop(client, request, deadline)
        except httpx.TimeoutException as exc:
            translated = deadline.translate(exc)
            if translated is exc:
                raise
            raise translated from exc
        _discard_if_done(response, deadline)
        response.history = list(history)

        next_request = response.next_request
        if next_request is None or not policy.follow:
            return response
        if len(history) >= policy.limit:
            response.close()
            policy.check(history, next_request)
        history.append(response)
        request = policy.prepare(next_request, request)


async def asend_with_redirects(
    client: httpx.AsyncClient,
    request: httpx.Request,
    policy: RedirectPolicy,
    deadline: Deadline,
) -> httpx.Response:
    history: list[httpx.Response] = []
    while True:
        deadline.check()
        deadline.apply(request)
        _log_send(request, len(history))
        try:
            response = await client.send(request, follow_redirects=False)
        except httpx.TimeoutException as exc:
            translated = deadline.translate(exc)
            if translated is exc:
                raise
            raise translated from exc
        if deadline.context is not None and deadline.context.done:
            await response.aclose()
            deadline.check()
        response.history = list(history)

        next_request = response.next_request
        if next_request is None or not policy.follow:
            return response
        if len(history) >= policy.limit:
            await response.aclose()
            policy.check(history, next_request)
        history.append(response)
        request = policy.prepare(next_request, request)
