"""Declarative HTTP requests resolved into configured httpx clients."""

from ._version import __version__
from .client import (
    AsyncSession,
    Session,
    adelete,
    aget,
    ahead,
    aoptions,
    apatch,
    apost,
    aput,
    arequest,
    arequest_with_client,
    delete,
    get,
    head,
    options,
    patch,
    post,
    put,
    request,
    request_with_client,
)
from .config import ClientDefaults
from .context import RequestContext
from .exceptions import (
    DeadlineExceeded,
    EncodingError,
    FileUploadError,
    HookRejectedError,
    InvalidURLError,
    RedirectLimitExceeded,
    ReqforgeConstructionError,
    ReqforgeError,
    ReqforgeValidationError,
    RequestCancelled,
)
from .request_options import (
    FileUpload,
    FileUploadBody,
    FormBody,
    JSONBody,
    NoBody,
    RawBody,
    RequestOptions,
    XMLBody,
    file_uploads_from_glob,
    select_body,
)
from .transport import build_client, needs_custom_client

__all__ = [
    "AsyncSession",
    "ClientDefaults",
    "DeadlineExceeded",
    "EncodingError",
    "FileUpload",
    "FileUploadBody",
    "FileUploadError",
    "FormBody",
    "HookRejectedError",
    "InvalidURLError",
    "JSONBody",
    "NoBody",
    "RawBody",
    "RedirectLimitExceeded",
    "ReqforgeConstructionError",
    "ReqforgeError",
    "ReqforgeValidationError",
    "RequestCancelled",
    "RequestContext",
    "RequestOptions",
    "Session",
    "XMLBody",
    "__version__",
    "adelete",
    "aget",
    "ahead",
    "aoptions",
    "apatch",
    "apost",
    "aput",
    "arequest",
    "arequest_with_client",
    "build_client",
    "delete",
    "file_uploads_from_glob",
    "get",
    "head",
    "needs_custom_client",
    "options",
    "patch",
    "post",
    "put",
    "request",
    "request_with_client",
    "select_body",
]
