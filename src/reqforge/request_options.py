"""Per-call request options and the body variants they resolve to."""

from __future__ import annotations

import glob
import os
from dataclasses import dataclass, field
from http.cookiejar import Cookie, CookieJar
from typing import IO, Any, Callable, Iterable, Mapping, Sequence, Union

import httpx

from .context import RequestContext
from .exceptions import ReqforgeValidationError

RawContent = Union[bytes, str, Iterable[bytes], IO[bytes]]
CookieItem = Union[tuple[str, str], Cookie]
BeforeRequestHook = Callable[[httpx.Request], None]


@dataclass
class FileUpload:
    """A single file destined for an upload body.

    The content stream is owned by the upload: it is read once and closed by
    the body encoder.
    """

    file_name: str = ""
    file_contents: IO[bytes] | None = None
    field_name: str = ""
    file_mime: str = ""

    @classmethod
    def from_path(cls, path: str | os.PathLike[str], *, field_name: str = "", file_mime: str = "") -> "FileUpload":
        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise ReqforgeValidationError(f"cannot open upload file {os.fspath(path)!r}", cause=exc) from exc
        return cls(
            file_name=os.path.basename(os.fspath(path)),
            file_contents=handle,
            field_name=field_name,
            file_mime=file_mime,
        )


def file_uploads_from_glob(pattern: str) -> list[FileUpload]:
    """Open every regular file matching ``pattern`` as an upload, sorted by path."""
    paths = sorted(p for p in glob.glob(pattern) if os.path.isfile(p))
    if not paths:
        raise ReqforgeValidationError(f"no files match {pattern!r}")
    uploads: list[FileUpload] = []
    try:
        for path in paths:
            uploads.append(FileUpload.from_path(path))
    except ReqforgeValidationError:
        for upload in uploads:
            if upload.file_contents is not None:
                upload.file_contents.close()
        raise
    return uploads


@dataclass(frozen=True)
class RawBody:
    content: RawContent


@dataclass(frozen=True)
class JSONBody:
    payload: Any


@dataclass(frozen=True)
class XMLBody:
    payload: Any


@dataclass(frozen=True)
class FileUploadBody:
    files: Sequence[FileUpload]
    data: Mapping[str, str] | None = None


@dataclass(frozen=True)
class FormBody:
    data: Mapping[str, str]


@dataclass(frozen=True)
class NoBody:
    pass


Body = Union[RawBody, JSONBody, XMLBody, FileUploadBody, FormBody, NoBody]


@dataclass(frozen=True)
class RequestOptions:
    """Everything a single call may configure.

    Only one body is ever sent. ``body`` is authoritative when set; otherwise the
    first populated field wins in this order: ``request_body``, ``json``,
    ``xml``, ``files``, ``data``. Populating several is allowed and resolved by
    that order, not rejected.

    Timeouts are seconds; ``None`` or ``0`` means "use the library default".
    Transport fields are ignored when ``http_client`` is given.
    """

    # body
    body: Body | None = None
    request_body: RawContent | None = None
    json: Any | None = None
    xml: Any | None = None
    files: Sequence[FileUpload] | None = None
    data: Mapping[str, str] | None = None

    # query
    params: Mapping[str, str] | None = None
    query_object: Any | None = None

    # identity
    headers: Mapping[str, str] | None = None
    user_agent: str | None = None
    host: str | None = None
    auth: tuple[str, str] | None = None
    is_ajax: bool = False
    cookies: Sequence[CookieItem] | None = None

    # transport policy
    insecure_skip_verify: bool = False
    disable_compression: bool = False
    proxies: Mapping[str, str] | None = None
    tls_handshake_timeout: float | None = None
    dial_timeout: float | None = None
    dial_keep_alive: float | None = None
    request_timeout: float | None = None
    local_addr: str | None = None

    # session policy
    use_cookie_jar: bool = False
    cookie_jar: CookieJar | httpx.Cookies | None = None
    http_client: httpx.Client | httpx.AsyncClient | None = None
    redirect_limit: int | None = None
    follow_redirects: bool = True
    sensitive_headers: frozenset[str] | None = None

    # extensibility
    context: RequestContext | None = None
    before_request: BeforeRequestHook | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.auth is not None:
            if len(self.auth) != 2 or not all(isinstance(part, str) for part in self.auth):
                raise ReqforgeValidationError("auth must be a (username, password) pair")
        for name in ("tls_handshake_timeout", "dial_timeout", "dial_keep_alive", "request_timeout"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ReqforgeValidationError(f"{name} must be non-negative")
        if self.redirect_limit is not None and self.redirect_limit < 0:
            raise ReqforgeValidationError("redirect_limit must be non-negative")
        if self.before_request is not None and not callable(self.before_request):
            raise ReqforgeValidationError("before_request must be callable")

    @property
    def jar_enabled(self) -> bool:
        # An explicit jar always opts in, whatever use_cookie_jar says.
        return self.use_cookie_jar or self.cookie_jar is not None


def select_body(options: RequestOptions) -> Body:
    """Resolve the single body variant ``options`` describes."""
    if options.body is not None:
        return options.body
    if options.request_body is not None:
        return RawBody(options.request_body)
    if options.json is not None:
        return JSONBody(options.json)
    if options.xml is not None:
        return XMLBody(options.xml)
    if options.files:
        return FileUploadBody(tuple(options.files), options.data)
    if options.data is not None:
        return FormBody(options.data)
    return NoBody()


def resolve_request_options(options: RequestOptions | None) -> RequestOptions:
    return options or RequestOptions()
