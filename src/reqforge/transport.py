"""Building (or reusing) the httpx client a request is sent with."""

from __future__ import annotations

import functools
import logging
import socket
from dataclasses import dataclass, field
from http.cookiejar import CookieJar
from typing import Any, Mapping
from urllib.parse import urlsplit
from urllib.request import getproxies, proxy_bypass_environment

import httpx

from .config import ClientDefaults, resolve_defaults
from .request_options import RequestOptions
from .security import discarding_cookie_jar, new_cookie_jar

logger = logging.getLogger("reqforge.transport")

_PROXIED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class TransportSettings:
    """Fully resolved transport policy for a bespoke client."""

    verify: bool
    timeout: httpx.Timeout
    request_timeout: float | None
    keep_alive: float
    local_address: str | None
    proxy_mounts: Mapping[str, str | None] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)


def custom_client_reasons(options: RequestOptions) -> list[str]:
    checks = (
        ("insecure_skip_verify", options.insecure_skip_verify),
        ("disable_compression", options.disable_compression),
        ("proxies", bool(options.proxies)),
        ("tls_handshake_timeout", bool(options.tls_handshake_timeout)),
        ("dial_timeout", bool(options.dial_timeout)),
        ("dial_keep_alive", bool(options.dial_keep_alive)),
        ("cookies", bool(options.cookies)),
        ("cookie_jar", options.jar_enabled),
        ("request_timeout", bool(options.request_timeout)),
        ("local_addr", options.local_addr is not None),
    )
    return [name for name, wanted in checks if wanted]


def needs_custom_client(options: RequestOptions) -> bool:
    """True when any transport or session policy differs from the defaults."""
    return bool(custom_client_reasons(options))


def environment_proxies() -> dict[str, str]:
    """Proxy URLs from ``*_PROXY`` environment variables, keyed by scheme."""
    proxies: dict[str, str] = {}
    for scheme, url in getproxies().items():
        if scheme == "no" or not url:
            continue
        proxies[scheme] = url if "://" in url else f"http://{url}"
    return proxies


def _no_proxy_patterns(scheme: str) -> dict[str, None]:
    raw = getproxies().get("no", "")
    patterns: dict[str, None] = {}
    for host in (entry.strip() for entry in raw.split(",")):
        if not host:
            continue
        if host == "*":
            return {f"{scheme}://": None}
        host = host.lstrip(".")
        if ":" in host and not host.startswith("["):
            patterns[f"{scheme}://[{host}]"] = None
        else:
            patterns[f"{scheme}://*{host}"] = None
    return patterns


def resolve_proxy(options: RequestOptions, url: str | httpx.URL) -> str | None:
    """Proxy URL that applies to ``url``, or ``None`` for a direct connection.

    An entry in ``options.proxies`` for the URL's scheme wins; any other case
    falls back to the environment, even when ``options.proxies`` only covers
    other schemes.
    """
    parts = urlsplit(str(url))
    explicit = options.proxies or {}
    if parts.scheme in explicit:
        return str(explicit[parts.scheme])
    if parts.hostname and proxy_bypass_environment(parts.hostname):
        return None
    env = environment_proxies()
    return env.get(parts.scheme) or env.get("all")


def proxy_mounts(options: RequestOptions) -> dict[str, str | None]:
    """httpx mount patterns mapped to a proxy URL (``None`` = go direct)."""
    explicit = {scheme: str(url) for scheme, url in (options.proxies or {}).items()}
    env = environment_proxies()
    mounts: dict[str, str | None] = {}
    for scheme in _PROXIED_SCHEMES:
        if scheme in explicit:
            continue
        proxy = env.get(scheme) or env.get("all")
        if proxy:
            mounts[f"{scheme}://"] = proxy
            mounts.update(_no_proxy_patterns(scheme))
    for scheme, proxy in explicit.items():
        mounts[f"{scheme}://"] = proxy
    return mounts


def transport_settings(options: RequestOptions, defaults: ClientDefaults | None = None) -> TransportSettings:
    defaults = resolve_defaults(defaults)
    tls_handshake = options.tls_handshake_timeout or defaults.tls_handshake_timeout
    dial = options.dial_timeout or defaults.dial_timeout
    request_timeout = options.request_timeout or defaults.request_timeout
    # httpx's connect phase covers both the TCP dial and the TLS handshake.
    timeout = httpx.Timeout(request_timeout, connect=dial + tls_handshake)
    headers = {"Accept-Encoding": "identity"} if options.disable_compression else {}
    return TransportSettings(
        verify=not options.insecure_skip_verify,
        timeout=timeout,
        request_timeout=request_timeout,
        keep_alive=options.dial_keep_alive or defaults.dial_keep_alive,
        local_address=options.local_addr,
        proxy_mounts=proxy_mounts(options),
        headers=headers,
    )


def _socket_options(keep_alive: float) -> list[tuple[int, int, int]]:
    seconds = max(1, int(keep_alive))
    socket_options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, "TCP_KEEPIDLE"):
        socket_options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, seconds))
    if hasattr(socket, "TCP_KEEPINTVL"):
        socket_options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, seconds))
    return socket_options


def _transport_kwargs(settings: TransportSettings, proxy: str | None = None) -> dict[str, Any]:
    return {
        "verify": settings.verify,
        "limits": httpx.Limits(max_connections=100, max_keepalive_connections=20, keepalive_expiry=settings.keep_alive),
        "local_address": settings.local_address,
        "socket_options": _socket_options(settings.keep_alive),
        "proxy": proxy,
    }


def build_cookie_jar(options: RequestOptions) -> CookieJar:
    if not options.jar_enabled:
        return discarding_cookie_jar()
    if isinstance(options.cookie_jar, httpx.Cookies):
        return options.cookie_jar.jar
    if options.cookie_jar is not None:
        return options.cookie_jar
    return new_cookie_jar()


def _client_kwargs(options: RequestOptions, settings: TransportSettings) -> dict[str, Any]:
    return {
        # httpx adopts a CookieJar as-is but copies httpx.Cookies into a plain jar.
        "cookies": build_cookie_jar(options),
        "timeout": settings.timeout,
        "headers": dict(settings.headers),
        "follow_redirects": False,
        "trust_env": False,
    }


def _sync_client(options: RequestOptions, settings: TransportSettings) -> httpx.Client:
    mounts: dict[str, httpx.BaseTransport | None] = {
        pattern: None if proxy is None else httpx.HTTPTransport(**_transport_kwargs(settings, proxy))
        for pattern, proxy in settings.proxy_mounts.items()
    }
    return httpx.Client(
        transport=httpx.HTTPTransport(**_transport_kwargs(settings)),
        mounts=mounts,
        **_client_kwargs(options, settings),
    )


def _async_client(options: RequestOptions, settings: TransportSettings) -> httpx.AsyncClient:
    mounts: dict[str, httpx.AsyncBaseTransport | None] = {
        pattern: None if proxy is None else httpx.AsyncHTTPTransport(**_transport_kwargs(settings, proxy))
        for pattern, proxy in settings.proxy_mounts.items()
    }
    return httpx.AsyncClient(
        transport=httpx.AsyncHTTPTransport(**_transport_kwargs(settings)),
        mounts=mounts,
        **_client_kwargs(options, settings),
    )


def default_settings(defaults: ClientDefaults) -> TransportSettings:
    """Settings of the shared default client: no overall timeout, env proxies."""
    return TransportSettings(
        verify=True,
        timeout=httpx.Timeout(None, connect=defaults.dial_timeout + defaults.tls_handshake_timeout),
        request_timeout=None,
        keep_alive=defaults.dial_keep_alive,
        local_address=None,
        proxy_mounts=proxy_mounts(RequestOptions()),
    )


@functools.lru_cache(maxsize=None)
def default_client(defaults: ClientDefaults) -> httpx.Client:
    """The process-wide client reused whenever no special policy is requested."""
    return _sync_client(RequestOptions(), default_settings(defaults))


def build_client(options: RequestOptions, defaults: ClientDefaults | None = None) -> httpx.Client:
    """Return ``options.http_client``, the shared default client, or a bespoke one."""
    if options.http_client is not None:
        if not isinstance(options.http_client, httpx.Client):
            raise TypeError("http_client must be an httpx.Client for synchronous requests")
        return options.http_client
    if not needs_custom_client(options):
        return default_client(resolve_defaults(defaults))
    logger.debug("building client for %s", ", ".join(custom_client_reasons(options)))
    return _sync_client(options, transport_settings(options, defaults))


def build_async_client(options: RequestOptions, defaults: ClientDefaults | None = None) -> httpx.AsyncClient:
    """Async counterpart of ``build_client``.

    Async clients are bound to the running event loop, so instead of a shared
    default client each call without special policy gets a client with the
    default settings.
    """
    if options.http_client is not None:
        if not isinstance(options.http_client, httpx.AsyncClient):
            raise TypeError("http_client must be an httpx.AsyncClient for asynchronous requests")
        return options.http_client
    if not needs_custom_client(options):
        return _async_client(options, default_settings(resolve_defaults(defaults)))
    logger.debug("building async client for %s", ", ".join(custom_client_reasons(options)))
    return _async_client(options, transport_settings(options, defaults))
