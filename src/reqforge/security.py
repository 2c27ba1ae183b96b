"""Header redaction, cross-host checks and the public-suffix cookie policy."""

from __future__ import annotations

import functools
from http.cookiejar import Cookie, CookieJar, DefaultCookiePolicy
from typing import Mapping
from urllib.request import Request as _CookieRequest

import httpx
from publicsuffixlist import PublicSuffixList

SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "www-authenticate",
    "cookie",
    "set-cookie",
    "x-api-key",
}


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return headers with sensitive values redacted for logging."""
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def is_cross_host(previous: httpx.URL, target: httpx.URL) -> bool:
    """True when a redirect moves to a different host."""
    return previous.host.lower() != target.host.lower()


@functools.lru_cache(maxsize=1)
def _public_suffixes() -> PublicSuffixList:
    return PublicSuffixList()


class PublicSuffixCookiePolicy(DefaultCookiePolicy):
    """Cookie policy that refuses cookies scoped to a public suffix.

    A response from ``shop.example.co.uk`` may set a cookie for
    ``example.co.uk`` but never for ``co.uk``; that would leak the cookie to
    every site under the suffix.
    """

    def set_ok_domain(self, cookie: Cookie, request: _CookieRequest) -> bool:
        if cookie.domain_specified:
            domain = cookie.domain.lstrip(".").lower()
            host = (request.host or "").split(":", 1)[0].lower()
            if domain != host and _public_suffixes().is_public(domain):
                return False
        return super().set_ok_domain(cookie, request)


def new_cookie_jar() -> CookieJar:
    return CookieJar(policy=PublicSuffixCookiePolicy())


def discarding_cookie_jar() -> CookieJar:
    """A jar that neither stores nor returns cookies."""
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))
