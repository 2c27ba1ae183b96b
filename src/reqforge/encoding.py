"""Turning the selected body variant into wire content and a content type."""

from __future__ import annotations

import dataclasses
import json
import logging
import mimetypes
import shutil
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import IO, Any, Iterable, Iterator, Mapping, Sequence

from lxml import etree
from pydantic import BaseModel

from .exceptions import EncodingError, FileUploadError
from .multipart import MultipartWriter, escape_quotes
from .query import encode_query
from .request_options import (
    Body,
    FileUpload,
    FileUploadBody,
    FormBody,
    JSONBody,
    NoBody,
    RawBody,
    XMLBody,
)

logger = logging.getLogger("reqforge.encoding")

CHUNK_SIZE = 64 * 1024

JSON_CONTENT_TYPE = "application/json"
XML_CONTENT_TYPE = "application/xml"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass
class EncodedBody:
    """Wire content plus the ``Content-Type`` it implies (``None`` = leave unset).

    ``streams`` lists upload streams the body still owns; ``close`` releases
    them when the request is abandoned before they were consumed.
    """

    content: Any = None
    content_type: str | None = None
    streams: list[IO[bytes]] = field(default_factory=list)

    def close(self) -> None:
        for stream in self.streams:
            _close_once(stream)


def encode_body(method: str, body: Body) -> EncodedBody:
    if isinstance(body, RawBody):
        return EncodedBody(content=_raw_content(body.content))
    if isinstance(body, JSONBody):
        return EncodedBody(content=marshal_json(body.payload), content_type=JSON_CONTENT_TYPE)
    if isinstance(body, XMLBody):
        return EncodedBody(content=marshal_xml(body.payload), content_type=XML_CONTENT_TYPE)
    if isinstance(body, FileUploadBody):
        if method.upper() == "POST":
            return encode_multipart(body.files, body.data)
        return encode_single_upload(method, body.files)
    if isinstance(body, FormBody):
        return EncodedBody(content=encode_form(body.data).encode("ascii"), content_type=FORM_CONTENT_TYPE)
    if isinstance(body, NoBody):
        return EncodedBody()
    raise TypeError(f"unknown body variant {type(body).__name__}")


def encode_form(data: Mapping[str, str]) -> str:
    return encode_query({key: [value] for key, value in data.items()})


def _raw_content(content: Any) -> Any:
    if isinstance(content, (bytes, str)):
        return content
    # File objects are iterable too, but line by line.
    if hasattr(content, "read"):
        return _iter_chunks(content)
    if isinstance(content, Iterable):
        return content
    raise TypeError(f"unsupported request_body type {type(content).__name__}")


def _iter_chunks(stream: IO[bytes]) -> Iterator[bytes]:
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


def _iter_and_close(stream: IO[bytes]) -> Iterator[bytes]:
    try:
        yield from _iter_chunks(stream)
    finally:
        _close_once(stream)


def _close_once(stream: IO[bytes]) -> None:
    if not getattr(stream, "closed", False):
        stream.close()


# JSON


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def marshal_json(payload: Any) -> bytes:
    """Serialize ``payload``; text and bytes are taken as already-encoded JSON."""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    try:
        if isinstance(payload, BaseModel):
            return payload.model_dump_json(by_alias=True).encode("utf-8")
        return json.dumps(
            payload,
            default=_json_default,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"cannot encode JSON body: {exc}", format="json", cause=exc) from exc


# XML


def marshal_xml(payload: Any) -> bytes:
    """Serialize ``payload``; text and bytes are taken as already-encoded XML.

    Objects may provide ``to_xml()``. Pydantic models and dataclasses become an
    element named after ``__xml_tag__`` or their class; a single-key mapping
    uses its key as the root element.
    """
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    try:
        if hasattr(payload, "to_xml"):
            return marshal_xml(payload.to_xml())
        if isinstance(payload, etree._Element):
            return etree.tostring(payload, encoding="utf-8")
        return etree.tostring(_xml_root(payload), encoding="utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"cannot encode XML body: {exc}", format="xml", cause=exc) from exc


def _xml_root(payload: Any) -> etree._Element:
    if isinstance(payload, BaseModel):
        tag = getattr(type(payload), "__xml_tag__", None) or type(payload).__name__
        value: Any = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    elif dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        tag = getattr(type(payload), "__xml_tag__", None) or type(payload).__name__
        value = dataclasses.asdict(payload)
    elif isinstance(payload, Mapping):
        if len(payload) != 1:
            raise ValueError("a mapping XML payload needs exactly one root key")
        tag, value = next(iter(payload.items()))
    else:
        raise TypeError(f"unsupported XML payload type {type(payload).__name__}")
    root = etree.Element(str(tag))
    _fill_element(root, value)
    return root


def _fill_element(element: etree._Element, value: Any) -> None:
    if isinstance(value, Mapping):
        for key, child_value in value.items():
            if child_value is None:
                continue
            items = child_value if isinstance(child_value, (list, tuple)) else [child_value]
            for item in items:
                _fill_element(etree.SubElement(element, str(key)), item)
        return
    if isinstance(value, (list, tuple)):
        raise ValueError(f"list value for <{element.tag}> needs an enclosing field name")
    if isinstance(value, bool):
        element.text = "true" if value else "false"
    elif isinstance(value, (datetime, date, time)):
        element.text = value.isoformat()
    else:
        element.text = str(value)


# File uploads


def _field_name(upload: FileUpload, index: int, total: int) -> str:
    if upload.field_name:
        return upload.field_name
    return "file" if total == 1 else f"file{index + 1}"


def _copy_upload(upload: FileUpload, sink: IO[bytes], field_name: str) -> None:
    stream = upload.file_contents
    try:
        shutil.copyfileobj(stream, sink, CHUNK_SIZE)
    except OSError as exc:
        _close_once(stream)
        raise FileUploadError(f"copying upload {field_name!r} failed: {exc}", field_name=field_name, cause=exc) from exc
    try:
        stream.close()
    except OSError as exc:
        raise FileUploadError(f"closing upload {field_name!r} failed: {exc}", field_name=field_name, cause=exc) from exc


def encode_multipart(
    files: Sequence[FileUpload],
    data: Mapping[str, str] | None = None,
    *,
    boundary: str | None = None,
) -> EncodedBody:
    """Build a ``multipart/form-data`` body: files first, then plain fields."""
    writer = MultipartWriter(boundary=boundary)
    try:
        for index, upload in enumerate(files):
            field_name = _field_name(upload, index, len(files))
            if upload.file_contents is None:
                raise FileUploadError(f"upload {field_name!r} has no file contents", field_name=field_name)
            if upload.file_mime:
                file_name = upload.file_name or "filename"
                sink = writer.create_part(
                    {
                        "Content-Disposition": (
                            f'form-data; name="{escape_quotes(field_name)}"; filename="{escape_quotes(file_name)}"'
                        ),
                        "Content-Type": upload.file_mime,
                    }
                )
            else:
                sink = writer.create_form_file(field_name, upload.file_name)
            _copy_upload(upload, sink, field_name)

        for key, value in (data or {}).items():
            writer.write_field(key, value)
        writer.close()
    except ValueError as exc:
        raise FileUploadError(f"cannot finalize multipart body: {exc}", cause=exc) from exc
    finally:
        for upload in files:
            if upload.file_contents is not None:
                _close_once(upload.file_contents)

    return EncodedBody(content=writer.buffer.getvalue(), content_type=writer.form_data_content_type())


def encode_single_upload(method: str, files: Sequence[FileUpload]) -> EncodedBody:
    """Stream the first upload as the raw body of a non-POST request."""
    upload, ignored = files[0], files[1:]
    for extra in ignored:
        if extra.file_contents is not None:
            _close_once(extra.file_contents)
    if upload.file_contents is None:
        raise FileUploadError("upload has no file contents", field_name=upload.field_name or "file")
    if ignored:
        logger.debug("%s uploads send only the first file; closed %d more", method.upper(), len(ignored))
    content_type, _ = mimetypes.guess_type(upload.file_name)
    return EncodedBody(
        content=_iter_and_close(upload.file_contents),
        content_type=content_type,
        streams=[upload.file_contents],
    )


def release_uploads(body: Body) -> None:
    """Close upload streams of a body that will never be encoded."""
    if isinstance(body, FileUploadBody):
        for upload in body.files:
            if upload.file_contents is not None:
                _close_once(upload.file_contents)
