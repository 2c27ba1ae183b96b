from __future__ import annotations

import io
import json
from dataclasses import dataclass

import pytest
from lxml import etree
from pydantic import BaseModel

from reqforge.encoding import (
    FORM_CONTENT_TYPE,
    encode_body,
    encode_multipart,
    marshal_json,
    marshal_xml,
)
from reqforge.exceptions import EncodingError, FileUploadError
from reqforge.multipart import escape_quotes
from reqforge.request_options import (
    FileUpload,
    FileUploadBody,
    FormBody,
    JSONBody,
    NoBody,
    RawBody,
    RequestOptions,
    XMLBody,
    select_body,
)


class Person(BaseModel):
    name: str
    age: int
    nickname: str | None = None


@dataclass
class Order:
    id: int
    paid: bool


class BrokenStream(io.BytesIO):
    def read(self, *args: object) -> bytes:
        raise OSError("disk went away")


def _upload(name: str = "a.txt", content: bytes = b"hello", **kwargs: str) -> FileUpload:
    return FileUpload(file_name=name, file_contents=io.BytesIO(content), **kwargs)


def test_select_body_follows_precedence_order() -> None:
    fields = {
        "request_body": b"raw",
        "json": {"a": 1},
        "xml": "<a/>",
        "files": [_upload()],
        "data": {"k": "v"},
    }
    expected = [RawBody, JSONBody, XMLBody, FileUploadBody, FormBody]
    for index, kind in enumerate(expected):
        remaining = dict(list(fields.items())[index:])
        assert isinstance(select_body(RequestOptions(**remaining)), kind)
    assert isinstance(select_body(RequestOptions()), NoBody)


def test_explicit_body_variant_wins() -> None:
    options = RequestOptions(body=FormBody({"a": "1"}), json={"ignored": True})
    assert select_body(options) == FormBody({"a": "1"})


def test_file_upload_body_carries_form_data() -> None:
    upload = _upload()
    body = select_body(RequestOptions(files=[upload], data={"k": "v"}))
    assert body == FileUploadBody((upload,), {"k": "v"})


def test_raw_body_has_no_content_type() -> None:
    encoded = encode_body("POST", RawBody(b"payload"))
    assert encoded.content == b"payload"
    assert encoded.content_type is None


def test_raw_file_object_is_read_in_chunks() -> None:
    stream = io.BytesIO(b"line1\nline2\nline3\n")
    encoded = encode_body("POST", RawBody(stream))
    assert list(encoded.content) == [b"line1\nline2\nline3\n"]
    assert encoded.content_type is None


def test_no_body() -> None:
    encoded = encode_body("GET", NoBody())
    assert encoded.content is None
    assert encoded.content_type is None


def test_form_body_is_sorted_and_deterministic() -> None:
    data = {"b": "2", "a": "1 2", "c": "x/y"}
    first = encode_body("POST", FormBody(data))
    second = encode_body("POST", FormBody(dict(reversed(list(data.items())))))
    assert first.content == second.content == b"a=1+2&b=2&c=x%2Fy"
    assert first.content_type == FORM_CONTENT_TYPE


@pytest.mark.parametrize("payload", ['{"pre": "encoded"}', b'{"pre": "encoded"}'])
def test_textual_json_passes_through(payload: str | bytes) -> None:
    assert marshal_json(payload) == b'{"pre": "encoded"}'


def test_json_payload_round_trips() -> None:
    payload = {"name": "ann", "tags": ["a", "b"], "nested": {"n": 1.5}}
    encoded = encode_body("POST", JSONBody(payload))
    assert encoded.content_type == "application/json"
    assert json.loads(encoded.content) == payload


def test_json_marshals_models_and_dataclasses() -> None:
    assert json.loads(marshal_json(Person(name="ann", age=3))) == {"name": "ann", "age": 3, "nickname": None}
    assert json.loads(marshal_json([Order(id=1, paid=True)])) == [{"id": 1, "paid": True}]


@pytest.mark.parametrize("payload", [object(), {"value": float("nan")}])
def test_json_marshal_failure_is_encoding_error(payload: object) -> None:
    with pytest.raises(EncodingError) as excinfo:
        marshal_json(payload)
    assert excinfo.value.format == "json"


def test_textual_xml_passes_through() -> None:
    assert marshal_xml("<note>hi</note>") == b"<note>hi</note>"
    encoded = encode_body("POST", XMLBody(b"<note/>"))
    assert encoded.content == b"<note/>"
    assert encoded.content_type == "application/xml"


def test_xml_model_round_trips() -> None:
    root = etree.fromstring(marshal_xml(Person(name="ann", age=3)))
    assert root.tag == "Person"
    assert root.findtext("name") == "ann"
    assert root.findtext("age") == "3"
    assert root.find("nickname") is None


def test_xml_mapping_uses_single_key_as_root() -> None:
    root = etree.fromstring(marshal_xml({"order": {"id": 7, "item": ["a", "b"], "paid": False}}))
    assert root.tag == "order"
    assert [item.text for item in root.findall("item")] == ["a", "b"]
    assert root.findtext("paid") == "false"


def test_xml_dataclass_uses_class_name() -> None:
    root = etree.fromstring(marshal_xml(Order(id=1, paid=True)))
    assert root.tag == "Order"
    assert root.findtext("paid") == "true"


@pytest.mark.parametrize("payload", [{"a": 1, "b": 2}, {"1bad": "x"}, 42])
def test_xml_marshal_failure_is_encoding_error(payload: object) -> None:
    with pytest.raises(EncodingError) as excinfo:
        marshal_xml(payload)
    assert excinfo.value.format == "xml"


def test_escape_quotes_escapes_backslash_first() -> None:
    assert escape_quotes('a"b\\c') == 'a\\"b\\\\c'


def test_multipart_single_unnamed_file() -> None:
    upload = _upload()
    encoded = encode_multipart([upload], boundary="testboundary")
    assert encoded.content == (
        b"--testboundary\r\n"
        b'Content-Disposition: form-data; name="file"; filename="a.txt"\r\n'
        b"Content-Type: application/octet-stream\r\n"
        b"\r\n"
        b"hello"
        b"\r\n--testboundary--\r\n"
    )
    assert encoded.content_type == "multipart/form-data; boundary=testboundary"
    assert upload.file_contents.closed


def test_multipart_numbers_multiple_unnamed_files_in_order() -> None:
    named = _upload("c.txt", b"3", field_name="avatar")
    encoded = encode_multipart([_upload("a.txt", b"1"), _upload("b.txt", b"2"), named], boundary="b0")
    content = encoded.content
    assert content.index(b'name="file1"; filename="a.txt"') < content.index(b'name="file2"; filename="b.txt"')
    assert b'name="avatar"; filename="c.txt"' in content
    assert b'name="file3"' not in content


def test_multipart_with_mime_uses_custom_part_header() -> None:
    upload = FileUpload(file_contents=io.BytesIO(b"\x89PNG"), field_name='pic"1', file_mime="image/png")
    encoded = encode_multipart([upload], boundary="b0")
    assert b'Content-Disposition: form-data; name="pic\\"1"; filename="filename"\r\n' in encoded.content
    assert b"Content-Type: image/png\r\n" in encoded.content


def test_multipart_appends_plain_fields_after_files() -> None:
    encoded = encode_multipart([_upload()], {"title": "report"}, boundary="b0")
    content = encoded.content
    assert content.index(b'filename="a.txt"') < content.index(b'name="title"\r\n\r\nreport')
    assert content.endswith(b"\r\n--b0--\r\n")


def test_multipart_missing_contents_closes_other_streams() -> None:
    first = _upload()
    last = _upload("c.txt")
    with pytest.raises(FileUploadError) as excinfo:
        encode_multipart([first, FileUpload(file_name="b.txt"), last])
    assert excinfo.value.field_name == "file2"
    assert first.file_contents.closed
    assert last.file_contents.closed


def test_multipart_copy_error_is_surfaced_and_stream_closed() -> None:
    stream = BrokenStream(b"data")
    with pytest.raises(FileUploadError) as excinfo:
        encode_multipart([FileUpload(file_name="a.txt", file_contents=stream)])
    assert isinstance(excinfo.value.cause, OSError)
    assert stream.closed


def test_non_post_upload_streams_first_file_only() -> None:
    first = _upload("photo.png", b"png-bytes")
    second = _upload("other.txt")
    encoded = encode_body("PUT", FileUploadBody([first, second]))
    assert encoded.content_type == "image/png"
    assert not first.file_contents.closed
    assert b"".join(encoded.content) == b"png-bytes"
    assert first.file_contents.closed
    assert second.file_contents.closed


def test_non_post_upload_without_contents_fails() -> None:
    extra = _upload("b.txt")
    with pytest.raises(FileUploadError):
        encode_body("PATCH", FileUploadBody([FileUpload(file_name="a.txt"), extra]))
    assert extra.file_contents.closed


def test_unused_upload_stream_is_closed_by_close() -> None:
    upload = _upload("a.bin")
    encoded = encode_body("PUT", FileUploadBody([upload]))
    encoded.close()
    assert upload.file_contents.closed
