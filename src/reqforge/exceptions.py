"""Library-specific exceptions."""

from __future__ import annotations

import httpx


class ReqforgeError(Exception):
    """Base exception for failures raised by reqforge itself."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ReqforgeValidationError(ReqforgeError, ValueError):
    """Raised when request options or defaults are invalid."""


class ReqforgeConstructionError(ReqforgeError):
    """Raised when a request cannot be built; nothing has been sent."""


class InvalidURLError(ReqforgeConstructionError):
    """Raised for malformed URLs and malformed query strings."""

    def __init__(self, message: str, *, url: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.url = url


class EncodingError(ReqforgeConstructionError):
    """Raised when a JSON or XML payload cannot be marshaled."""

    def __init__(self, message: str, *, format: str, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.format = format


class FileUploadError(ReqforgeConstructionError):
    """Raised when a file upload cannot be written into the request body."""

    def __init__(self, message: str, *, field_name: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.field_name = field_name


class HookRejectedError(ReqforgeConstructionError):
    """Raised by ``before_request`` hooks to reject the built request."""


class RequestCancelled(ReqforgeError):
    """Raised when the request context is cancelled before the call completes."""


class DeadlineExceeded(RequestCancelled):
    """Raised when the request context deadline passes before the call completes."""


class RedirectLimitExceeded(httpx.TooManyRedirects):
    """Raised when a response chain needs more redirects than the policy allows."""

    def __init__(self, message: str, *, request: httpx.Request, limit: int) -> None:
        super().__init__(message, request=request)
        self.limit = limit
