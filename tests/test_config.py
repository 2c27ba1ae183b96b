from __future__ import annotations

import httpx
import pytest
from pydantic import ValidationError

from reqforge import ClientDefaults, RequestOptions, __version__, get
from reqforge.config import DEFAULTS, resolve_defaults
from reqforge.exceptions import RedirectLimitExceeded


def test_library_defaults() -> None:
    defaults = ClientDefaults()
    assert defaults.user_agent == f"reqforge/{__version__}"
    assert defaults.redirect_limit == 30
    assert defaults.tls_handshake_timeout == 10.0
    assert defaults.dial_timeout == 30.0
    assert defaults.dial_keep_alive == 30.0
    assert defaults.request_timeout == 90.0
    assert defaults.sensitive_headers == frozenset({"Authorization", "Proxy-Authorization", "WWW-Authenticate"})
    assert resolve_defaults(None) is DEFAULTS


def test_defaults_are_frozen_and_hashable() -> None:
    defaults = ClientDefaults()
    with pytest.raises(ValidationError):
        defaults.redirect_limit = 5  # type: ignore[misc]
    assert hash(defaults) == hash(ClientDefaults())


def test_from_env_reads_prefixed_variables() -> None:
    environ = {
        "REQFORGE_REQUEST_TIMEOUT": "15",
        "REQFORGE_REDIRECT_LIMIT": "4",
        "REQFORGE_SENSITIVE_HEADERS": "Authorization, X-Api-Key",
        "REQFORGE_USER_AGENT": "   ",
        "UNRELATED": "1",
    }

    defaults = ClientDefaults.from_env(environ=environ)

    assert defaults.request_timeout == 15.0
    assert defaults.redirect_limit == 4
    assert defaults.sensitive_headers == frozenset({"Authorization", "X-Api-Key"})
    assert defaults.user_agent == f"reqforge/{__version__}"


def test_from_env_custom_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MYAPP_USER_AGENT", "myapp/3")
    assert ClientDefaults.from_env(prefix="MYAPP_").user_agent == "myapp/3"


@pytest.mark.parametrize(
    "environ",
    [
        {"REQFORGE_REQUEST_TIMEOUT": "soon"},
        {"REQFORGE_REDIRECT_LIMIT": "-1"},
        {"REQFORGE_DIAL_TIMEOUT": "0"},
    ],
)
def test_from_env_rejects_invalid_values(environ: dict[str, str]) -> None:
    with pytest.raises(ValidationError):
        ClientDefaults.from_env(environ=environ)


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        ClientDefaults(retries=3)  # type: ignore[call-arg]


def test_custom_defaults_flow_into_requests() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(302, headers={"Location": "/again"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    defaults = ClientDefaults(user_agent="tuned/1", redirect_limit=1)

    with pytest.raises(RedirectLimitExceeded):
        get("http://example.com/", RequestOptions(http_client=client), defaults=defaults)

    assert len(seen) == 2
    assert seen[0].headers["User-Agent"] == "tuned/1"
