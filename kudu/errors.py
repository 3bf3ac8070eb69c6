"""Error taxonomy and the response pipeline that renders it."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Callable, Mapping

if TYPE_CHECKING:  # pragma: no cover
    from .context import Context

_LOGGER = logging.getLogger("kudu")

PROBLEM_JSON = "application/problem+json"


def status_text(code: int) -> str:
    """Return the reason phrase registered for *code*."""

    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


def is_client_error(code: int) -> bool:
    return 400 <= code < 500


def is_server_error(code: int) -> bool:
    return 500 <= code < 600


def is_error(code: int) -> bool:
    return is_client_error(code) or is_server_error(code)


class KuduError(Exception):
    """Base class for framework errors."""


class BindError(KuduError):
    """A single field could not be sourced, decoded or failed a constraint."""

    def __init__(self, field: str, reason: str, value: Any = None) -> None:
        super().__init__(f"field {field}: {reason}")
        self.field = field
        self.reason = reason
        self.value = value


@dataclass
class ValidationError:
    """Field-scoped validation failure."""

    field: str
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"field": self.field, "message": self.message}
        if self.value is not None:
            data["value"] = self.value
        return data


class ValidationErrors(KuduError):
    """Several field-level validation failures collected in one pass."""

    def __init__(self, errors: list[ValidationError]) -> None:
        super().__init__(f"{len(errors)} validation error(s)")
        self.errors = list(errors)


class CodecError(KuduError):
    """Request body could not be decoded for the selected media type."""

    def __init__(self, media_type: str, reason: str) -> None:
        super().__init__(f"cannot decode {media_type} body: {reason}")
        self.media_type = media_type
        self.reason = reason


class HTTPError(KuduError):
    """Explicit HTTP failure raised by user code."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        details: str = "",
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message or status_text(status_code))
        self.status_code = status_code
        self.message = message or status_text(status_code)
        self.details = details
        self.headers = dict(headers or {})


class ClientError(HTTPError):
    """4xx error signalled by user code."""

    def __init__(self, status_code: int = 400, message: str = "", details: str = "", headers: Mapping[str, str] | None = None) -> None:
        if not is_client_error(status_code):
            raise ValueError(f"{status_code} is not a client error status")
        super().__init__(status_code, message, details, headers)


class ServerError(HTTPError):
    """5xx error signalled by user code."""

    def __init__(self, status_code: int = 500, message: str = "", details: str = "", headers: Mapping[str, str] | None = None) -> None:
        if not is_server_error(status_code):
            raise ValueError(f"{status_code} is not a server error status")
        super().__init__(status_code, message, details, headers)


class BadRequest(ClientError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(400, message, details)


class Unauthorized(ClientError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(401, message, details)


class Forbidden(ClientError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(403, message, details)


class NotFound(ClientError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(404, message, details)


class Conflict(ClientError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(409, message, details)


class UnprocessableEntity(ClientError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(422, message, details)


class InternalServerError(ServerError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(500, message, details)


class ServiceUnavailable(ServerError):
    def __init__(self, message: str = "", details: str = "") -> None:
        super().__init__(503, message, details)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ErrorResponse:
    """Standard error payload."""

    code: int
    message: str
    details: str = ""
    timestamp: str = field(default_factory=_timestamp)
    errors: list[ValidationError] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        data["timestamp"] = self.timestamp
        if self.errors is not None:
            data["errors"] = [err.to_dict() for err in self.errors]
        return data


@dataclass
class ProblemDetail:
    """RFC 7807 problem document with free-form extension members."""

    type: str
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    timestamp: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
        }
        if self.instance:
            data["instance"] = self.instance
        if self.timestamp:
            data["timestamp"] = self.timestamp
        for key, value in self.extensions.items():
            data.setdefault(key, value)
        return data


@dataclass
class ErrorHandlerConfig:
    """Options for the problem-details error format."""

    type_prefix: str = ""
    include_instance: bool = False
    include_timestamp: bool = False
    custom_fields: dict[str, Any] = field(default_factory=dict)


ErrorHandler = Callable[["Context", int, str, "BaseException | None"], None]


def _details(message: str, err: BaseException | None) -> str:
    """Describe *err* for clients; unexpected exceptions stay opaque."""

    if err is None or not isinstance(err, KuduError):
        return ""
    text = err.details if isinstance(err, HTTPError) else str(err)
    return "" if text == message else text


def default_error_handler(
    ctx: "Context", code: int, message: str, err: BaseException | None
) -> None:
    """Write the standard ``{code, message, details, timestamp}`` payload."""

    text = status_text(code) or message
    payload = ErrorResponse(code=code, message=text)
    if isinstance(err, ValidationErrors):
        payload.message = message or "Validation failed"
        payload.errors = err.errors
    else:
        parts = [message if message != text else "", _details(message, err)]
        payload.details = ": ".join(dict.fromkeys(p for p in parts if p))
    ctx.json(code, payload.to_dict())


def _slug(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def problem_detail_error_handler(
    config: ErrorHandlerConfig | None = None,
) -> ErrorHandler:
    """Return an error handler emitting ``application/problem+json``."""

    cfg = config or ErrorHandlerConfig()

    def _handler(
        ctx: "Context", code: int, message: str, err: BaseException | None
    ) -> None:
        title = status_text(code) or "Error"
        detail = message if message and message != title else _details(title, err)
        problem = ProblemDetail(
            type=cfg.type_prefix + _slug(title) if cfg.type_prefix else "about:blank",
            title=title,
            status=code,
            detail=detail or title,
            extensions=dict(cfg.custom_fields),
        )
        if cfg.include_instance:
            problem.instance = ctx.request.path
        if cfg.include_timestamp:
            problem.timestamp = _timestamp()
        if isinstance(err, ValidationErrors):
            problem.extensions["errors"] = [e.to_dict() for e in err.errors]
        ctx.data(code, PROBLEM_JSON, ctx.app.encode_json(problem.to_dict()))

    return _handler


def classify(exc: BaseException) -> tuple[int, str]:
    """Map *exc* to the status code and message the pipeline should render."""

    if isinstance(exc, HTTPError):
        return exc.status_code, exc.message
    if isinstance(exc, ValidationErrors):
        return 422, "Validation failed"
    if isinstance(exc, (BindError, CodecError)):
        return 400, status_text(400)
    return 500, status_text(500)


__all__ = [
    "BadRequest",
    "BindError",
    "ClientError",
    "CodecError",
    "Conflict",
    "ErrorHandler",
    "ErrorHandlerConfig",
    "ErrorResponse",
    "Forbidden",
    "HTTPError",
    "InternalServerError",
    "KuduError",
    "NotFound",
    "PROBLEM_JSON",
    "ProblemDetail",
    "ServerError",
    "ServiceUnavailable",
    "Unauthorized",
    "UnprocessableEntity",
    "ValidationError",
    "ValidationErrors",
    "classify",
    "default_error_handler",
    "is_client_error",
    "is_error",
    "is_server_error",
    "problem_detail_error_handler",
    "status_text",
]
