"""Synchronous and asynchronous request entry points."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Coroutine

import httpx

from .config import ClientDefaults, resolve_defaults
from .context import Deadline, RequestContext
from .encoding import EncodedBody, encode_body, release_uploads
from .exceptions import DeadlineExceeded, InvalidURLError
from .mutator import apply_cookies, apply_headers
from .query import merge_params, merge_query_object
from .redirects import RedirectPolicy, asend_with_redirects, send_with_redirects
from .request_options import RequestOptions, resolve_request_options, select_body
from .transport import build_async_client, build_client, needs_custom_client

logger = logging.getLogger("reqforge")


@dataclass
class PreparedRequest:
    """A fully mutated request, ready to send, plus what governs sending it."""

    request: httpx.Request
    body: EncodedBody
    policy: RedirectPolicy
    deadline: Deadline


def finalize_url(url: str, options: RequestOptions) -> str:
    """Merge ``params`` (replacing) or else ``query_object`` (appending) into ``url``."""
    if options.params:
        return merge_params(url, options.params)
    if options.query_object is not None:
        return merge_query_object(url, options.query_object)
    return url


def _buffer_for_async(content: Any) -> Any:
    if content is None or isinstance(content, (bytes, str)) or hasattr(content, "__aiter__"):
        return content
    if hasattr(content, "read"):
        return content.read()
    return b"".join(content)


def prepare_request(
    method: str,
    url: str,
    options: RequestOptions,
    client: httpx.Client | httpx.AsyncClient,
    *,
    request_timeout: float | None = None,
    defaults: ClientDefaults | None = None,
) -> PreparedRequest:
    """Build the request and apply every mutation up to and including the hook.

    Raises construction errors before anything is sent; upload streams the body
    still owns are closed when construction fails.
    """
    method = method.upper()
    selected = select_body(options)
    try:
        url = finalize_url(url, options)
    except BaseException:
        release_uploads(selected)
        raise
    body = encode_body(method, selected)
    try:
        if isinstance(client, httpx.AsyncClient):
            body.content = _buffer_for_async(body.content)
        try:
            request = client.build_request(method, url, content=body.content)
        except httpx.InvalidURL as exc:
            raise InvalidURLError(f"invalid URL {url!r}: {exc}", url=url, cause=exc) from exc
        apply_headers(request, options, defaults)
        # The encoded body type overrides a caller header; raw bodies leave it alone.
        if body.content_type:
            request.headers["Content-Type"] = body.content_type
        apply_cookies(request, options)
        policy = RedirectPolicy.from_options(options, defaults)
        deadline = Deadline(request_timeout, options.context)

        if options.before_request is not None:
            options.before_request(request)
    except BaseException:
        body.close()
        raise
    return PreparedRequest(request=request, body=body, policy=policy, deadline=deadline)


def _owned_request_timeout(options: RequestOptions, defaults: ClientDefaults) -> float | None:
    if options.http_client is None and needs_custom_client(options):
        return options.request_timeout or defaults.request_timeout
    return None


def _client_kind(options: RequestOptions, owned: bool) -> str:
    if options.http_client is not None:
        return "caller-supplied"
    return "bespoke" if owned else "shared default"


def _execute(
    method: str,
    url: str,
    options: RequestOptions,
    client: httpx.Client,
    *,
    request_timeout: float | None,
    defaults: ClientDefaults,
) -> httpx.Response:
    prepared = prepare_request(method, url, options, client, request_timeout=request_timeout, defaults=defaults)
    try:
        return send_with_redirects(client, prepared.request, prepared.policy, prepared.deadline)
    finally:
        prepared.body.close()


def request(
    method: str,
    url: str,
    options: RequestOptions | None = None,
    *,
    defaults: ClientDefaults | None = None,
) -> httpx.Response:
    """Build a client and request from ``options``, send it, and return the read response."""
    options = resolve_request_options(options)
    defaults = resolve_defaults(defaults)
    client = build_client(options, defaults)
    owned = options.http_client is None and needs_custom_client(options)
    logger.debug("%s %s using %s client", method.upper(), url, _client_kind(options, owned))
    try:
        return _execute(
            method,
            url,
            options,
            client,
            request_timeout=_owned_request_timeout(options, defaults),
            defaults=defaults,
        )
    finally:
        if owned:
            client.close()


def request_with_client(
    method: str,
    url: str,
    options: RequestOptions | None,
    client: httpx.Client,
    *,
    defaults: ClientDefaults | None = None,
) -> httpx.Response:
    """Like ``request`` but always sends with ``client``; transport fields are ignored."""
    return _execute(
        method,
        url,
        resolve_request_options(options),
        client,
        request_timeout=None,
        defaults=resolve_defaults(defaults),
    )


def get(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("GET", url, options, defaults=defaults)


def post(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("POST", url, options, defaults=defaults)


def put(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("PUT", url, options, defaults=defaults)


def patch(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("PATCH", url, options, defaults=defaults)


def delete(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("DELETE", url, options, defaults=defaults)


def head(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("HEAD", url, options, defaults=defaults)


def options(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return request("OPTIONS", url, options, defaults=defaults)


async def _race_context(send: Coroutine[Any, Any, httpx.Response], context: RequestContext) -> httpx.Response:
    """Await ``send`` unless ``context`` is cancelled or expires first."""
    loop = asyncio.get_running_loop()
    signalled = asyncio.Event()
    unregister = context.add_callback(lambda: loop.call_soon_threadsafe(signalled.set))
    task = asyncio.ensure_future(send)
    waiter = asyncio.ensure_future(signalled.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=context.remaining(),
            return_when=asyncio.FIRST_COMPLETED,
        )
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.wait({task})
        context.raise_if_done()
        raise DeadlineExceeded("request context deadline exceeded")
    finally:
        unregister()
        waiter.cancel()
        if not task.done():
            task.cancel()


async def _aexecute(
    method: str,
    url: str,
    options: RequestOptions,
    client: httpx.AsyncClient,
    *,
    request_timeout: float | None,
    defaults: ClientDefaults,
) -> httpx.Response:
    prepared = prepare_request(method, url, options, client, request_timeout=request_timeout, defaults=defaults)
    try:
        send = asend_with_redirects(client, prepared.request, prepared.policy, prepared.deadline)
        if options.context is None:
            return await send
        return await _race_context(send, options.context)
    finally:
        prepared.body.close()


async def arequest(
    method: str,
    url: str,
    options: RequestOptions | None = None,
    *,
    defaults: ClientDefaults | None = None,
) -> httpx.Response:
    """Async ``request``; cancelling the attached context aborts the call promptly."""
    options = resolve_request_options(options)
    defaults = resolve_defaults(defaults)
    client = build_async_client(options, defaults)
    owned = options.http_client is None
    try:
        return await _aexecute(
            method,
            url,
            options,
            client,
            request_timeout=_owned_request_timeout(options, defaults),
            defaults=defaults,
        )
    finally:
        if owned:
            await client.aclose()


async def arequest_with_client(
    method: str,
    url: str,
    options: RequestOptions | None,
    client: httpx.AsyncClient,
    *,
    defaults: ClientDefaults | None = None,
) -> httpx.Response:
    return await _aexecute(
        method,
        url,
        resolve_request_options(options),
        client,
        request_timeout=None,
        defaults=resolve_defaults(defaults),
    )


async def aget(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("GET", url, options, defaults=defaults)


async def apost(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("POST", url, options, defaults=defaults)


async def aput(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("PUT", url, options, defaults=defaults)


async def apatch(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("PATCH", url, options, defaults=defaults)


async def adelete(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("DELETE", url, options, defaults=defaults)


async def ahead(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("HEAD", url, options, defaults=defaults)


async def aoptions(url: str, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> httpx.Response:
    return await arequest("OPTIONS", url, options, defaults=defaults)


_SESSION_IDENTITY = ("user_agent", "host", "auth")


class _BaseSession:
    def __init__(self, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> None:
        base = resolve_request_options(options)
        # Sessions always keep cookies between calls.
        self.options = dataclasses.replace(base, use_cookie_jar=True)
        self.defaults = resolve_defaults(defaults)
        self._owns_client = base.http_client is None

    def _options(self, options: RequestOptions | None) -> RequestOptions:
        """Per-call options, inheriting the session's identity.

        Unset ``user_agent``, ``host`` and ``auth`` come from the session; headers
        are layered over the session's and cookies follow the session's own.
        """
        if options is None:
            return self.options
        base = self.options
        inherited: dict[str, Any] = {
            name: getattr(base, name) for name in _SESSION_IDENTITY if getattr(options, name) is None
        }
        if base.headers:
            inherited["headers"] = {**base.headers, **(options.headers or {})}
        if base.cookies:
            inherited["cookies"] = [*base.cookies, *(options.cookies or ())]
        if base.is_ajax:
            inherited["is_ajax"] = True
        return dataclasses.replace(options, **inherited)


class Session(_BaseSession):
    """Reuses one client, built from the session's options, for every call."""

    def __init__(self, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> None:
        super().__init__(options, defaults=defaults)
        self.client = build_client(self.options, self.defaults)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def request(self, method: str, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return request_with_client(method, url, self._options(options), self.client, defaults=self.defaults)

    def get(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("GET", url, options)

    def post(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("POST", url, options)

    def put(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("PUT", url, options)

    def patch(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("PATCH", url, options)

    def delete(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("DELETE", url, options)

    def head(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("HEAD", url, options)

    def options(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return self.request("OPTIONS", url, options)


class AsyncSession(_BaseSession):
    """Async counterpart of ``Session``."""

    def __init__(self, options: RequestOptions | None = None, *, defaults: ClientDefaults | None = None) -> None:
        super().__init__(options, defaults=defaults)
        self.client = build_async_client(self.options, self.defaults)

    async def __aenter__(self) -> "AsyncSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def request(self, method: str, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await arequest_with_client(method, url, self._options(options), self.client, defaults=self.defaults)

    async def get(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("GET", url, options)

    async def post(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("POST", url, options)

    async def put(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("PUT", url, options)

    async def patch(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("PATCH", url, options)

    async def delete(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("DELETE", url, options)

    async def head(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("HEAD", url, options)

    async def options(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        return await self.request("OPTIONS", url, options)
