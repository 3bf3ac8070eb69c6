"""Populate typed records from a request.

Binding runs in two stages. The body (JSON, XML, YAML or protobuf) is
decoded first and any codec failure is remembered. Each field is then
sourced from the textual request parts in fixed precedence
(path, query, form, header, cookie), falling back to its default.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Sequence

from google.protobuf.message import Message
from pydantic import BaseModel

from .codecs import decode_body, is_zero, kind_of, new_record, structure
from .decoder import decode, is_list_type, list_item_type
from .errors import BindError, CodecError
from .http import UploadFile
from .tags import FieldPlan, Source, body_field, is_record, record_fields, unwrap_optional

if TYPE_CHECKING:  # pragma: no cover
    from .context import Context

_LOGGER = logging.getLogger("kudu")

_BODY_KINDS = ("json", "xml", "yaml", "protobuf")


def is_upload(tp: Any) -> bool:
    inner, _ = unwrap_optional(tp)
    if inner is UploadFile:
        return True
    return is_list_type(inner) and list_item_type(inner) is UploadFile


def _nonempty(values: Sequence[str] | None) -> list[str] | None:
    if not values:
        return None
    if any(v != "" for v in values):
        return list(values)
    return None


def _read(ctx: "Context", source: Source, name: str) -> list[str] | None:
    request = ctx.request
    if source is Source.PATH:
        value = ctx.path_params.get(name)
        return [value] if value else None
    if source is Source.QUERY:
        return _nonempty(request.query_params.get(name))
    if source is Source.FORM:
        if kind_of(request.content_type) not in ("form", "multipart"):
            return None
        return _nonempty(request.form().get(name))
    if source is Source.HEADER:
        value = request.headers.get(name.lower())
        return [value] if value else None
    if source is Source.COOKIE:
        value = request.cookies.get(name)
        return [value] if value else None
    return None


def _bind_upload(obj: Any, plan: FieldPlan, ctx: "Context") -> None:
    tags = plan.tags
    name = tags.source(Source.FORM_FILE) or tags.source(Source.FORM) or plan.name
    uploads = None
    if kind_of(ctx.request.content_type) == "multipart":
        uploads = ctx.request.files().get(name)
    if uploads:
        inner, _ = unwrap_optional(plan.type)
        setattr(obj, plan.name, list(uploads) if is_list_type(inner) else uploads[0])
    if tags.required and is_zero(getattr(obj, plan.name, None)):
        raise BindError(plan.name, "required")


def _bind_fields(obj: Any, cls: type, ctx: "Context", body_error: CodecError | None) -> None:
    for plan in record_fields(cls):
        tags = plan.tags
        if plan.is_body:
            if tags.required and is_zero(getattr(obj, plan.name, None)):
                raise body_error or BindError(plan.name, "required")
            continue
        if is_upload(plan.type) or tags.source(Source.FORM_FILE):
            _bind_upload(obj, plan, ctx)
            continue
        inner, optional = unwrap_optional(plan.type)
        current = getattr(obj, plan.name, None)
        if is_record(inner):
            if current is None and not optional:
                current = new_record(inner)
                setattr(obj, plan.name, current)
            if current is not None:
                _bind_fields(current, inner, ctx, body_error)
            elif tags.required:
                raise body_error or BindError(plan.name, "required")
            continue
        if is_list_type(inner) and is_record(list_item_type(inner)):
            for item in current or ():
                _bind_fields(item, list_item_type(inner), ctx, body_error)
        raw = None
        for source, wire in tags.textual_sources():
            if source is Source.FORM_FILE:
                continue
            raw = _read(ctx, source, wire)
            if raw is not None:
                break
        if raw is not None:
            setattr(obj, plan.name, decode(plan.type, raw, tags, plan.name))
        elif tags.default is not None and is_zero(current):
            setattr(obj, plan.name, decode(plan.type, tags.default, tags, plan.name))
        if tags.required and is_zero(getattr(obj, plan.name, None)):
            raise body_error or BindError(plan.name, "required")


def _merge(obj: Any, decoded: Any, cls: type) -> None:
    for plan in record_fields(cls):
        value = getattr(decoded, plan.name, None)
        if not is_zero(value):
            setattr(obj, plan.name, value)


def bind(target: Any, ctx: "Context") -> Any:
    """Bind the request carried by *ctx* into *target*.

    *target* is a record type (a fresh instance is allocated) or an
    existing record instance, which is filled in place. Pydantic models and
    protobuf messages are decoded from the body as a whole.
    """

    cls = target if isinstance(target, type) else type(target)
    request = ctx.request
    content_type = request.content_type
    kind = kind_of(content_type)
    if issubclass(cls, BaseModel):
        data = decode_body(content_type, request.body(), cls)
        return data if data is not None else structure({}, cls)
    if issubclass(cls, Message):
        message = decode_body(content_type, request.body(), cls)
        return message if message is not None else cls()
    if not is_record(cls):
        raise TypeError(f"cannot bind into {cls!r}: not a dataclass record")

    obj = new_record(cls) if isinstance(target, type) else target
    body_error: CodecError | None = None
    if kind in _BODY_KINDS:
        raw = request.body()
        plan = body_field(cls)
        try:
            if plan is not None:
                payload = decode_body(content_type, raw, plan.type)
                if payload is not None:
                    setattr(obj, plan.name, payload)
            else:
                decoded = decode_body(content_type, raw, cls)
                if decoded is not None:
                    _merge(obj, decoded, cls)
        except CodecError as exc:
            _LOGGER.debug("body decode failed: %s", exc)
            body_error = exc
    _bind_fields(obj, cls, ctx, body_error)
    return obj


__all__ = ["bind", "is_upload"]
