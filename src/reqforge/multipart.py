"""A minimal ``multipart/form-data`` writer."""

from __future__ import annotations

import io
import re
import secrets
from typing import IO, Mapping

_QUOTE_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"'})
_BOUNDARY_SAFE = re.compile(r"^[0-9A-Za-z'()+_,\-./:=?]{1,70}$")


def escape_quotes(value: str) -> str:
    """Escape backslashes, then double quotes, for a quoted header parameter."""
    return value.translate(_QUOTE_ESCAPES)


class MultipartWriter:
    """Writes boundary-delimited parts into a binary buffer.

    Parts must be written in order: ``create_part`` returns a sink that stays
    valid until the next part is started or the writer is closed.
    """

    def __init__(self, buffer: IO[bytes] | None = None, *, boundary: str | None = None) -> None:
        self.buffer = buffer if buffer is not None else io.BytesIO()
        self.boundary = boundary or secrets.token_hex(30)
        if not _BOUNDARY_SAFE.match(self.boundary):
            raise ValueError(f"invalid multipart boundary {self.boundary!r}")
        self._parts = 0
        self._closed = False

    def form_data_content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def create_part(self, headers: Mapping[str, str]) -> IO[bytes]:
        if self._closed:
            raise ValueError("multipart writer is closed")
        lead = b"\r\n--" if self._parts else b"--"
        self.buffer.write(lead + self.boundary.encode("ascii") + b"\r\n")
        for name in sorted(headers):
            self.buffer.write(f"{name}: {headers[name]}\r\n".encode("utf-8"))
        self.buffer.write(b"\r\n")
        self._parts += 1
        return self.buffer

    def create_form_file(self, field_name: str, file_name: str) -> IO[bytes]:
        return self.create_part(
            {
                "Content-Disposition": (
                    f'form-data; name="{escape_quotes(field_name)}"; filename="{escape_quotes(file_name)}"'
                ),
                "Content-Type": "application/octet-stream",
            }
        )

    def write_field(self, field_name: str, value: str) -> None:
        sink = self.create_part({"Content-Disposition": f'form-data; name="{escape_quotes(field_name)}"'})
        sink.write(value.encode("utf-8"))

    def close(self) -> None:
        """Write the closing boundary; the writer accepts no more parts."""
        if self._closed:
            return
        lead = b"\r\n--" if self._parts else b"--"
        self.buffer.write(lead + self.boundary.encode("ascii") + b"--\r\n")
        self._closed = True
