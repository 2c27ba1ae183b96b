"""Header, auth and cookie mutations applied to a built request."""

from __future__ import annotations

import base64
import logging
import re
from http.cookiejar import Cookie

import httpx

from .config import ClientDefaults, resolve_defaults
from .request_options import CookieItem, RequestOptions

logger = logging.getLogger("reqforge.mutator")

AJAX_HEADER = ("X-Requested-With", "XMLHttpRequest")
_COOKIE_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+\Z")


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def apply_headers(request: httpx.Request, options: RequestOptions, defaults: ClientDefaults | None = None) -> None:
    """Apply caller headers, user agent, host override, basic auth and the ajax marker."""
    defaults = resolve_defaults(defaults)
    for key, value in (options.headers or {}).items():
        request.headers[str(key)] = str(value)

    request.headers["User-Agent"] = options.user_agent or defaults.user_agent

    if options.host:
        request.headers["Host"] = options.host

    if options.auth is not None:
        username, password = options.auth
        request.headers["Authorization"] = basic_auth_header(username, password)

    if options.is_ajax:
        name, value = AJAX_HEADER
        request.headers[name] = value


def _cookie_pair(cookie: CookieItem) -> tuple[str, str]:
    if isinstance(cookie, Cookie):
        return cookie.name, cookie.value or ""
    name, value = cookie
    return name, value


def _valid_cookie_value_char(char: str) -> bool:
    return " " <= char < "\x7f" and char not in '";\\'


def _sanitize_cookie_value(value: str) -> str:
    """Drop characters not allowed in a cookie value; quote it when it has spaces or commas."""
    cleaned = "".join(char for char in value if _valid_cookie_value_char(char))
    if cleaned != value:
        logger.debug("dropped invalid characters from cookie value")
    if " " in cleaned or "," in cleaned:
        return f'"{cleaned}"'
    return cleaned


def add_cookie(request: httpx.Request, name: str, value: str) -> None:
    """Append one ``name=value`` pair to the request's ``Cookie`` header.

    A name that is not an HTTP token is skipped. Bytes a cookie value may not
    carry (controls, ``"``, ``;`` and ``\\``) are dropped.
    """
    if not _COOKIE_NAME.match(name):
        logger.debug("skipping cookie with invalid name %r", name)
        return
    pair = f"{name}={_sanitize_cookie_value(value)}"
    existing = request.headers.get("Cookie")
    request.headers["Cookie"] = f"{existing}; {pair}" if existing else pair


def apply_cookies(request: httpx.Request, options: RequestOptions) -> None:
    for cookie in options.cookies or ():
        add_cookie(request, *_cookie_pair(cookie))
