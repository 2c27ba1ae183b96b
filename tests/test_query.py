from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import pytest
from pydantic import BaseModel, ConfigDict, Field

from reqforge.exceptions import EncodingError, InvalidURLError
from reqforge.query import encode_query, encode_query_object, merge_params, merge_query_object, parse_query


@dataclass
class Filter:
    tags: list[str] = field(default_factory=list, metadata={"query": "tag"})
    limit: int = field(default=0, metadata={"query": "limit,omitempty"})
    secret: str = field(default="hidden", metadata={"query": "-"})
    active: bool = True


class Search(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(alias="q")
    since: datetime | None = None
    page: int | None = None


def test_merge_params_replaces_named_key_and_keeps_others() -> None:
    assert merge_params("http://x/?a=0&b=2", {"a": "1"}) == "http://x/?a=1&b=2"


def test_merge_params_adds_query_to_bare_url() -> None:
    assert merge_params("https://api.example.com/items", {"page": "2"}) == "https://api.example.com/items?page=2"


def test_merge_params_sorts_and_escapes() -> None:
    merged = merge_params("http://x/p", {"z": "a b", "a": "x&y", "m": "é"})
    assert merged == "http://x/p?a=x%26y&m=%C3%A9&z=a+b"


def test_merge_params_preserves_fragment() -> None:
    assert merge_params("http://x/p?a=1#frag", {"b": "2"}) == "http://x/p?a=1&b=2#frag"


def test_merge_query_object_appends_repeated_values() -> None:
    merged = merge_query_object("http://x/?tag=x", Filter(tags=["y", "z"]))
    assert merged == "http://x/?active=true&tag=x&tag=y&tag=z"


def test_encode_dataclass_honours_query_metadata() -> None:
    assert encode_query_object(Filter(tags=["a", "b"])) == {"tag": ["a", "b"], "active": ["true"]}
    assert encode_query_object(Filter(limit=5, active=False)) == {"limit": ["5"], "active": ["false"]}


def test_encode_pydantic_model_uses_aliases_and_skips_none() -> None:
    values = encode_query_object(Search(q="hello world", since=datetime(2024, 1, 2, 3, 4, 5)))
    assert values == {"q": ["hello world"], "since": ["2024-01-02T03:04:05"]}


def test_encode_mapping_with_nested_mapping() -> None:
    assert encode_query_object({"user": {"name": "ann"}, "ids": [1, 2]}) == {
        "user[name]": ["ann"],
        "ids": ["1", "2"],
    }


def test_encode_rejects_unsupported_object() -> None:
    with pytest.raises(EncodingError):
        encode_query_object(42)


@pytest.mark.parametrize(
    "url",
    [
        "http://[::1",
        "http://example.com:port/",
        "http://example.com/\x00",
        "http://example.com/?a=%zz",
        "http://example.com/?a=1;b=2",
    ],
)
def test_malformed_urls_and_queries_are_rejected(url: str) -> None:
    with pytest.raises(InvalidURLError):
        merge_params(url, {"a": "1"})


def test_parse_query_keeps_blank_values_and_order() -> None:
    assert parse_query("b=2&a=&b=3&flag") == {"b": ["2", "3"], "a": [""], "flag": [""]}


def test_encode_query_is_deterministic() -> None:
    values = {"b": ["2"], "a": ["1", "0"]}
    assert encode_query(values) == encode_query(dict(reversed(list(values.items())))) == "a=1&a=0&b=2"
