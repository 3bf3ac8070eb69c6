"""Per-request context: accessors, attribute store and response helpers."""

from __future__ import annotations

import logging
import mimetypes
import os
from datetime import datetime
from http.cookies import SimpleCookie
from typing import TYPE_CHECKING, Any, Generic, Iterable, TypeVar

from google.protobuf.message import Message as ProtoMessage

from . import codecs
from .binder import bind as bind_record
from .decoder import encode, parse_bool
from .errors import BindError, ValidationError, ValidationErrors, status_text
from .http import Request, ResponseWriter, UploadFile
from .sse import Message, Serializer, prepare_stream
from .tags import Source, is_record, record_fields, unwrap_optional
from .validator import validate

if TYPE_CHECKING:  # pragma: no cover
    from .app import App
    from .routing import Route

T = TypeVar("T")

_CHUNK = 64 * 1024


class ContextKey(Generic[T]):
    """Typed key for the context attribute store.

    ::

        USER = ContextKey[str]("user")
        USER.set(ctx, "ada")
        USER.get(ctx)  # -> "ada"
    """

    def __init__(self, name: str, default: T | None = None) -> None:
        self.name = name
        self.default = default

    def get(self, ctx: "Context") -> T | None:
        return ctx.attributes.get(self, self.default)

    def set(self, ctx: "Context", value: T) -> None:
        ctx.attributes[self] = value

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r})"


def _media_ranges(header: str) -> list[str]:
    return [part.split(";", 1)[0].strip().lower() for part in header.split(",") if part.strip()]


class Context:
    """State carrier for one request; never shared between threads."""

    def __init__(
        self,
        app: "App",
        request: Request,
        response: ResponseWriter,
        path_params: dict[str, str] | None = None,
        route: "Route | None" = None,
    ) -> None:
        self.app = app
        self.request = request
        self.response = response
        self.path_params = dict(path_params or {})
        self.route = route
        self.attributes: dict[Any, Any] = {}

    @property
    def logger(self) -> logging.Logger:
        return self.app.logger

    # request accessors

    def param(self, name: str, default: str = "") -> str:
        return self.path_params.get(name, default)

    def param_int(self, name: str) -> int:
        value = self.path_params.get(name, "")
        try:
            return int(value)
        except ValueError as exc:
            raise BindError(name, f"invalid integer value '{value}'", value) from exc

    def query(self, name: str) -> str:
        values = self.request.query_params.get(name)
        return values[0] if values else ""

    def default_query(self, name: str, default: str) -> str:
        return self.query(name) or default

    def query_list(self, name: str) -> list[str]:
        return list(self.request.query_params.get(name, []))

    def query_map(self) -> dict[str, str]:
        return {k: v[0] for k, v in self.request.query_params.items() if v}

    def header(self, name: str) -> str:
        return self.request.headers.get(name.lower(), "")

    def headers(self) -> dict[str, str]:
        return dict(self.request.headers)

    def cookie(self, name: str, default: str = "") -> str:
        return self.request.cookies.get(name, default)

    def form(self, name: str) -> str:
        values = self.request.form().get(name)
        return values[0] if values else ""

    form_value = form

    def form_file(self, name: str) -> UploadFile | None:
        files = self.request.files().get(name)
        return files[0] if files else None

    def form_files(self, name: str) -> list[UploadFile]:
        return list(self.request.files().get(name, []))

    def real_ip(self) -> str:
        forwarded = self.header("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.header("X-Real-IP") or self.request.remote_addr

    def referer(self) -> str:
        return self.header("Referer")

    def content_type(self) -> str:
        return self.request.content_type

    def accept(self) -> list[str]:
        return _media_ranges(self.header("Accept"))

    def accept_language(self) -> list[str]:
        return _media_ranges(self.header("Accept-Language"))

    def accepts(self, *offers: str) -> str | None:
        """Return the first of *offers* the client accepts."""

        ranges = self.accept() or ["*/*"]
        for offer in offers:
            kind = offer.split("/", 1)[0]
            for accepted in ranges:
                if accepted in (offer, "*/*", f"{kind}/*"):
                    return offer
        return None

    def is_sse(self) -> bool:
        return "text/event-stream" in self.header("Accept")

    def is_websocket_upgrade(self) -> bool:
        return self.header("Upgrade").lower() == "websocket"

    # binding

    def bind(self, target: Any) -> Any:
        """Bind the request into *target* and validate the result."""

        obj = bind_record(target, self)
        validate(obj)
        return obj

    # attribute store

    def set(self, key: Any, value: Any) -> None:
        self.attributes[key] = value

    def get(self, key: Any, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def get_string(self, key: str) -> str:
        value = self.attributes.get(key)
        return value if isinstance(value, str) else ""

    def get_int(self, key: str) -> int:
        value = self.attributes.get(key)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return 0
        return 0

    def get_float(self, key: str) -> float:
        value = self.attributes.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return 0.0
        return 0.0

    def get_bool(self, key: str) -> bool:
        value = self.attributes.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return parse_bool(value)
            except ValueError:
                return False
        return False

    def get_time(self, key: str) -> datetime | None:
        value = self.attributes.get(key)
        return value if isinstance(value, datetime) else None

    # response helpers

    def set_header(self, key: str, value: str) -> None:
        self.response.set_header(key, value)

    def add_header(self, key: str, value: str) -> None:
        self.response.add_header(key, value)

    def write_status(self, code: int) -> None:
        self.response.write_header(code)

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
        path: str = "/",
        domain: str = "",
        secure: bool = False,
        http_only: bool = False,
        same_site: str = "",
    ) -> None:
        jar: SimpleCookie = SimpleCookie()
        jar[name] = value
        morsel = jar[name]
        morsel["path"] = path
        if max_age is not None:
            morsel["max-age"] = str(max_age)
        if domain:
            morsel["domain"] = domain
        if secure:
            morsel["secure"] = True
        if http_only:
            morsel["httponly"] = True
        if same_site:
            morsel["samesite"] = same_site
        self.response.add_header("Set-Cookie", morsel.OutputString())

    def data(self, code: int, content_type: str, payload: bytes) -> None:
        self.response.set_header("Content-Type", content_type)
        self.response.set_header("Content-Length", str(len(payload)))
        self.response.write_header(code)
        self.response.write(payload)

    def json(self, code: int, value: Any) -> None:
        self.data(code, codecs.JSON, self.app.encode_json(value))

    def ok(self, value: Any) -> None:
        self.json(200, value)

    def created(self, value: Any) -> None:
        self.json(201, value)

    def xml(self, code: int, value: Any) -> None:
        self.data(code, codecs.XML, codecs.encode_xml(value))

    def yaml(self, code: int, value: Any) -> None:
        self.data(code, codecs.YAML, codecs.encode_yaml(value))

    def protobuf(self, code: int, message: ProtoMessage) -> None:
        self.data(code, codecs.PROTOBUF, codecs.encode_protobuf(message))

    def text(self, code: int, value: Any) -> None:
        text = value if isinstance(value, str) else str(value)
        self.data(code, "text/plain; charset=utf-8", text.encode("utf-8"))

    string = text

    def html(self, code: int, markup: str) -> None:
        self.data(code, "text/html; charset=utf-8", markup.encode("utf-8"))

    def render(self, code: int, name: str, data: Any = None) -> None:
        """Render template *name* through the configured renderer."""

        renderer = self.app.config.renderer
        if renderer is None:
            raise RuntimeError("no renderer configured")
        self.html(code, renderer.render(name, data or {}))

    def stream(self, code: int, content_type: str, source: Iterable[bytes] | Any) -> None:
        """Write chunks from an iterable or file-like object, flushing each."""

        self.response.set_header("Content-Type", content_type)
        self.response.write_header(code)
        if hasattr(source, "read"):
            while True:
                chunk = source.read(_CHUNK)
                if not chunk:
                    break
                self.response.write(chunk)
                self.response.flush()
            return
        for chunk in source:
            self.response.write(chunk)
            self.response.flush()

    def file(self, path: str, *, disposition: str = "", filename: str = "") -> None:
        if not os.path.isfile(path):
            self.abort_not_found("file not found")
            return
        content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        if disposition:
            name = filename or os.path.basename(path)
            self.response.set_header("Content-Disposition", f'{disposition}; filename="{name}"')
        self.response.set_header("Content-Length", str(os.path.getsize(path)))
        with open(path, "rb") as handle:
            self.stream(200, content_type, handle)

    def attachment(self, path: str, filename: str = "") -> None:
        self.file(path, disposition="attachment", filename=filename)

    def inline(self, path: str, filename: str = "") -> None:
        self.file(path, disposition="inline", filename=filename)

    def redirect(self, code: int, location: str) -> None:
        self.response.set_header("Location", location)
        self.response.write_header(code)
        self.response.write(b"")

    def no_content(self) -> None:
        self.response.write_header(204)
        self.response.write(b"")

    def respond(self, output: Any, default_status: int = 200) -> None:
        """Project an output record onto the response.

        A ``status`` field sets the code, ``header``/``cookie`` tagged fields
        become headers and cookies, and the body sentinel field (or the rest of
        the record) is encoded according to ``Accept``.
        """

        if output is None:
            self.abort_internal_server_error(err=TypeError("output is None"))
            return
        status = default_status
        body: Any = output
        if is_record(type(output)):
            remaining: dict[str, Any] = {}
            body_found = False
            for plan in record_fields(type(output)):
                value = getattr(output, plan.name, None)
                header = plan.tags.source(Source.HEADER)
                cookie = plan.tags.source(Source.COOKIE)
                inner, _ = unwrap_optional(plan.type)
                if plan.name.lower() == "status" and inner is int:
                    if value:
                        status = int(value)
                elif header:
                    if value is not None and value != "":
                        self.response.set_header(header, encode(value))
                elif cookie:
                    if value is not None and value != "":
                        self.set_cookie(cookie, encode(value))
                elif plan.is_body:
                    body = value
                    body_found = True
                else:
                    remaining[plan.json_name] = value
            if not body_found:
                body = remaining
        self.negotiate(status, body)

    return_ = respond

    def negotiate(self, code: int, body: Any) -> None:
        """Encode *body* in the format requested by ``Accept``."""

        accept = self.header("Accept")
        if "xml" in accept:
            self.xml(code, body)
        elif "yaml" in accept:
            self.yaml(code, body)
        elif "application/json" in accept or "+json" in accept:
            self.json(code, body)
        elif "protobuf" in accept and isinstance(body, ProtoMessage):
            self.protobuf(code, body)
        elif "text/plain" in accept or "text/html" in accept:
            self.text(code, body if isinstance(body, str) else codecs.encode_json(body).decode("utf-8"))
        else:
            self.json(code, body)

    # server-sent events

    def send_sse(self, id: str, event: str, data: Any) -> str:
        return Message(data=data, event=event, id=id).send(self.response)

    def sse_event(self, event: str, data: Any) -> str:
        return self.send_sse("", event, data)

    def sse_stream(
        self, messages: Iterable[Message | Any], serializer: Serializer | None = None
    ) -> None:
        """Send every item of *messages* and return when the source is exhausted."""

        prepare_stream(self.response)
        for item in messages:
            message = item if isinstance(item, Message) else Message(data=item)
            if serializer is not None and message.serializer is None:
                message.serializer = serializer
            message.send(self.response)
        self.response.flush()

    # error pipeline

    def error(self, code: int, message: str) -> None:
        """Write *message* as plain text with status *code*."""

        self.response.write_header(code)
        self.response.write(message.encode("utf-8"))

    def abort_with_error(self, code: int, err: BaseException | None = None) -> None:
        self.app.handle_error(self, code, status_text(code), err)

    def abort_with_status(self, code: int, message: str = "") -> None:
        self.app.handle_error(self, code, message or status_text(code), None)

    def abort_with_json(self, code: int, payload: Any) -> None:
        self.json(code, payload)

    def abort(self, err: BaseException) -> None:
        self.app.handle_error(self, 500, status_text(500), err)

    def abort_validation_errors(
        self, errors: list[ValidationError], message: str = ""
    ) -> None:
        self.app.handle_error(self, 422, message or "Validation failed", ValidationErrors(errors))

    def __repr__(self) -> str:
        return f"<Context {self.request.method} {self.request.path}>"


STATUS_HELPERS: tuple[tuple[int, str], ...] = (
    (304, "not_modified"),
    (400, "bad_request"),
    (401, "unauthorized"),
    (402, "payment_required"),
    (403, "forbidden"),
    (404, "not_found"),
    (405, "method_not_allowed"),
    (406, "not_acceptable"),
    (407, "proxy_auth_required"),
    (408, "request_timeout"),
    (409, "conflict"),
    (410, "gone"),
    (411, "length_required"),
    (412, "precondition_failed"),
    (413, "request_entity_too_large"),
    (414, "request_uri_too_long"),
    (415, "unsupported_media_type"),
    (416, "requested_range_not_satisfiable"),
    (417, "expectation_failed"),
    (418, "teapot"),
    (421, "misdirected_request"),
    (422, "unprocessable_entity"),
    (423, "locked"),
    (424, "failed_dependency"),
    (425, "too_early"),
    (426, "upgrade_required"),
    (428, "precondition_required"),
    (429, "too_many_requests"),
    (431, "request_header_fields_too_large"),
    (451, "unavailable_for_legal_reasons"),
    (500, "internal_server_error"),
    (501, "not_implemented"),
    (502, "bad_gateway"),
    (503, "service_unavailable"),
    (504, "gateway_timeout"),
    (505, "http_version_not_supported"),
    (506, "variant_also_negotiates"),
    (507, "insufficient_storage"),
    (508, "loop_detected"),
    (510, "not_extended"),
    (511, "network_authentication_required"),
)


def _status_helpers(code: int, name: str) -> None:
    def error_helper(self: Context, payload: Any) -> None:
        self.json(code, payload)

    def abort_helper(
        self: Context, message: str = "", err: BaseException | None = None
    ) -> None:
        self.app.handle_error(self, code, message or status_text(code), err)

    error_helper.__name__ = f"error_{name}"
    error_helper.__doc__ = f"Write *payload* as JSON with status {code}."
    abort_helper.__name__ = f"abort_{name}"
    abort_helper.__doc__ = f"Render a standard {code} error through the error pipeline."
    setattr(Context, error_helper.__name__, error_helper)
    setattr(Context, abort_helper.__name__, abort_helper)


for _code, _name in STATUS_HELPERS:
    _status_helpers(_code, _name)

Context.abort_validation_error = Context.abort_unprocessable_entity  # type: ignore[attr-defined]


__all__ = ["Context", "ContextKey", "STATUS_HELPERS"]
