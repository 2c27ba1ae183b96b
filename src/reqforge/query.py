"""Merging explicit parameters and structured query objects into URLs."""

from __future__ import annotations

import dataclasses
import enum
import re
from datetime import date, datetime, time
from typing import Any, Iterator, Mapping
from urllib.parse import SplitResult, quote_plus, unquote_plus, urlsplit, urlunsplit

from pydantic import BaseModel

from .exceptions import EncodingError, InvalidURLError

QueryValues = dict[str, list[str]]

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def parse_url(url: str) -> SplitResult:
    if _CONTROL_CHARS.search(url):
        raise InvalidURLError(f"invalid control character in URL {url!r}", url=url)
    try:
        parts = urlsplit(url)
        parts.port  # raises on a non-numeric or out of range port
    except ValueError as exc:
        raise InvalidURLError(f"invalid URL {url!r}: {exc}", url=url, cause=exc) from exc
    return parts


def parse_query(raw_query: str) -> QueryValues:
    """Parse a raw query into an insertion-ordered multimap."""
    values: QueryValues = {}
    if not raw_query:
        return values
    if ";" in raw_query:
        raise InvalidURLError(f"invalid semicolon separator in query {raw_query!r}")
    for pair in raw_query.split("&"):
        if not pair:
            continue
        if _BAD_ESCAPE.search(pair):
            raise InvalidURLError(f"invalid URL escape in query {pair!r}")
        key, _, value = pair.partition("=")
        values.setdefault(unquote_plus(key), []).append(unquote_plus(value))
    return values


def encode_query(values: Mapping[str, list[str]]) -> str:
    """Encode ``values`` sorted by key; repeated values keep their order."""
    return "&".join(
        f"{quote_plus(key, safe='')}={quote_plus(value, safe='')}"
        for key in sorted(values)
        for value in values[key]
    )


def _with_query(parts: SplitResult, values: QueryValues) -> str:
    return urlunsplit((parts.scheme, parts.netloc, parts.path, encode_query(values), parts.fragment))


def merge_params(url: str, params: Mapping[str, str]) -> str:
    """Set each of ``params`` on ``url``, replacing values already present."""
    parts = parse_url(url)
    values = parse_query(parts.query)
    for key, value in params.items():
        values[key] = [value]
    return _with_query(parts, values)


def merge_query_object(url: str, obj: Any) -> str:
    """Append every value encoded from ``obj`` to the query of ``url``."""
    parts = parse_url(url)
    values = parse_query(parts.query)
    for key, encoded in encode_query_object(obj).items():
        values.setdefault(key, []).extend(encoded)
    return _with_query(parts, values)


def encode_query_object(obj: Any) -> QueryValues:
    """Encode a pydantic model, dataclass or mapping into query values.

    Pydantic fields are named by alias. Dataclass fields may be renamed or
    skipped through ``field(metadata={"query": "name,omitempty"})`` /
    ``{"query": "-"}``.
    """
    if isinstance(obj, BaseModel):
        items: Iterator[tuple[str, Any]] = iter(
            obj.model_dump(mode="json", by_alias=True, exclude_none=True).items()
        )
    elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        items = _dataclass_items(obj)
    elif isinstance(obj, Mapping):
        items = iter(obj.items())
    else:
        raise EncodingError(f"cannot encode {type(obj).__name__} as a query", format="query")

    values: QueryValues = {}
    for key, value in items:
        _add_values(values, str(key), value)
    return values


def _dataclass_items(obj: Any) -> Iterator[tuple[str, Any]]:
    for item in dataclasses.fields(obj):
        tag = item.metadata.get("query", "")
        if tag == "-":
            continue
        name, _, flags = tag.partition(",")
        value = getattr(obj, item.name)
        if "omitempty" in flags.split(",") and not value:
            continue
        yield name or item.name, value


def _add_values(values: QueryValues, key: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, Mapping):
        for sub_key, sub_value in value.items():
            _add_values(values, f"{key}[{sub_key}]", sub_value)
        return
    if isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            if isinstance(item, (list, tuple, set, frozenset, Mapping)):
                raise EncodingError(f"nested collections are not supported for query key {key!r}", format="query")
            if item is not None:
                values.setdefault(key, []).append(_scalar(item))
        return
    values.setdefault(key, []).append(_scalar(value))


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, enum.Enum):
        return _scalar(value.value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode()
    return str(value)
