"""Named library defaults, threaded explicitly into the client builder."""

from __future__ import annotations

import os
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._version import __version__

DEFAULT_ENV_PREFIX = "REQFORGE_"


class ClientDefaults(BaseModel):
    """Fallback values used whenever a request leaves a policy field unset.

    Instances are immutable and hashable, so one shared default client can be
    cached per distinct set of defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_agent: str = f"reqforge/{__version__}"
    redirect_limit: int = Field(default=30, ge=0)
    tls_handshake_timeout: float = Field(default=10.0, gt=0)
    dial_timeout: float = Field(default=30.0, gt=0)
    dial_keep_alive: float = Field(default=30.0, gt=0)
    request_timeout: float = Field(default=90.0, gt=0)
    sensitive_headers: frozenset[str] = frozenset(
        {"Authorization", "Proxy-Authorization", "WWW-Authenticate"}
    )

    @field_validator("user_agent")
    @classmethod
    def _user_agent_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("user_agent must not be blank")
        return value

    @field_validator("sensitive_headers", mode="before")
    @classmethod
    def _split_header_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            return frozenset(name.strip() for name in value.split(",") if name.strip())
        return value

    @classmethod
    def from_env(
        cls,
        prefix: str = DEFAULT_ENV_PREFIX,
        environ: Mapping[str, str] | None = None,
    ) -> "ClientDefaults":
        """Build defaults from ``<prefix><FIELD>`` environment variables.

        ``REQFORGE_REQUEST_TIMEOUT=15`` overrides ``request_timeout``;
        ``REQFORGE_SENSITIVE_HEADERS`` takes a comma-separated list.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is not None and raw.strip():
                overrides[name] = raw.strip()
        return cls(**overrides)


DEFAULTS = ClientDefaults()


def resolve_defaults(defaults: ClientDefaults | None) -> ClientDefaults:
    return defaults or DEFAULTS
