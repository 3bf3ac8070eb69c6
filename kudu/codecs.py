"""Body codecs: media type dispatch, payload structuring and encoders."""

from __future__ import annotations

import base64
import dataclasses
import json
import uuid
import xml.etree.ElementTree as ET
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, get_args, get_origin

import yaml
from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .decoder import base_type, decode, is_list_type, list_item_type
from .errors import BindError, CodecError, ValidationError, ValidationErrors
from .http import UploadFile, media_type
from .tags import Source, is_record, record_fields, unwrap_optional

JSON = "application/json"
XML = "application/xml"
YAML = "application/x-yaml"
PROTOBUF = "application/x-protobuf"
FORM = "application/x-www-form-urlencoded"
MULTIPART = "multipart/form-data"
TEXT = "text/plain"
HTML = "text/html"

_XML_TYPES = ("application/xml", "text/xml")
_YAML_TYPES = ("application/x-yaml", "application/yaml", "text/yaml", "text/x-yaml")
_PROTOBUF_TYPES = ("application/x-protobuf", "application/protobuf")


def kind_of(content_type: str) -> str | None:
    """Classify a ``Content-Type`` as json, xml, yaml, protobuf, form or multipart."""

    mt = media_type(content_type)
    if not mt:
        return None
    if mt == JSON or mt.endswith("+json"):
        return "json"
    if mt in _XML_TYPES or mt.endswith("+xml"):
        return "xml"
    if mt in _YAML_TYPES:
        return "yaml"
    if mt in _PROTOBUF_TYPES:
        return "protobuf"
    if mt == FORM:
        return "form"
    if mt == MULTIPART:
        return "multipart"
    return None


def zero_value(tp: Any) -> Any:
    """Return the unset value of a field of type *tp*."""

    inner, optional = unwrap_optional(tp)
    if optional:
        return None
    if is_list_type(inner):
        return []
    if get_origin(inner) is dict or inner is dict:
        return {}
    kind = base_type(inner)
    if kind is str:
        return ""
    if kind is bool:
        return False
    if kind is int:
        return 0
    if kind is float:
        return 0.0
    return None


def is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def new_record(cls: type) -> Any:
    """Allocate *cls* with every field at its unset value."""

    obj = object.__new__(cls)
    for plan in record_fields(cls):
        setattr(obj, plan.name, zero_value(plan.type))
    return obj


def _lookup(data: Mapping[str, Any], key: str) -> tuple[bool, Any]:
    if key in data:
        return True, data[key]
    lowered = key.lower()
    for candidate, value in data.items():
        if isinstance(candidate, str) and candidate.lower() == lowered:
            return True, value
    return False, None


def _loc(loc: list[Any]) -> str:
    return ".".join(str(part) for part in loc) or "body"


def _pydantic_errors(exc: PydanticValidationError, loc: list[Any]) -> ValidationErrors:
    errors = [
        ValidationError(
            field=_loc(loc + list(err.get("loc", ()))),
            message=err.get("msg", "invalid value"),
            value=err.get("input") if isinstance(err.get("input"), (str, int, float, bool)) else None,
        )
        for err in exc.errors()
    ]
    return ValidationErrors(errors)


def structure(
    data: Any,
    tp: Any,
    source: Source = Source.JSON,
    media: str = JSON,
    loc: list[Any] | None = None,
) -> Any:
    """Coerce decoded payload *data* into an instance of *tp* recursively.

    With ``source=Source.XML`` scalar leaves are text and go through the
    value decoder.
    """

    loc = list(loc or [])
    if data is None:
        return zero_value(tp)
    if tp is Any:
        return data
    inner, _ = unwrap_optional(tp)
    if isinstance(inner, type) and issubclass(inner, BaseModel):
        if isinstance(data, inner):
            return data
        try:
            return inner.model_validate(data)
        except PydanticValidationError as exc:
            raise _pydantic_errors(exc, loc) from exc
    if is_record(inner):
        if not isinstance(data, Mapping):
            raise CodecError(media, f"{_loc(loc)}: expected object, got {type(data).__name__}")
        obj = new_record(inner)
        for plan in record_fields(inner):
            if plan.is_body:
                continue
            key = plan.json_name if source is Source.JSON else plan.tags.source(source) or plan.json_name
            found, value = _lookup(data, key)
            if found:
                setattr(obj, plan.name, structure(value, plan.type, source, media, loc + [plan.name]))
        return obj
    if is_list_type(inner):
        item_type = list_item_type(inner)
        if source is Source.XML and isinstance(data, Mapping) and len(data) == 1:
            data = next(iter(data.values()))
        if not isinstance(data, list):
            if source is Source.XML:
                data = [data]
            else:
                raise CodecError(media, f"{_loc(loc)}: expected array, got {type(data).__name__}")
        return [structure(item, item_type, source, media, loc + [i]) for i, item in enumerate(data)]
    if get_origin(inner) is dict or inner is dict:
        if not isinstance(data, Mapping):
            raise CodecError(media, f"{_loc(loc)}: expected object, got {type(data).__name__}")
        args = get_args(inner)
        value_type = args[1] if len(args) == 2 else Any
        return {str(k): structure(v, value_type, source, media, loc + [k]) for k, v in data.items()}
    return _scalar(data, inner, source, media, loc)


def _scalar(data: Any, tp: Any, source: Source, media: str, loc: list[Any]) -> Any:
    kind = base_type(tp)
    if isinstance(data, str) and (source is Source.XML or kind not in (str, int, float, bool)):
        try:
            return decode(tp, data, name=_loc(loc))
        except BindError as exc:
            raise CodecError(media, f"{_loc(loc)}: {exc.reason}") from exc
    if kind is str:
        if isinstance(data, str):
            return data
        if isinstance(data, (date, datetime)) and source is Source.YAML:
            return data.isoformat()
    elif kind is bool:
        if isinstance(data, bool):
            return data
    elif kind is int:
        if isinstance(data, float) and data.is_integer():
            data = int(data)
        if isinstance(data, int) and not isinstance(data, bool):
            return decode(tp, str(data), name=_loc(loc)) if tp is not int else data
    elif kind is float:
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return float(data)
    elif kind is datetime and isinstance(data, datetime):
        return data
    elif kind is date and isinstance(data, date):
        return data
    elif isinstance(kind, type) and issubclass(kind, Enum):
        try:
            return kind(data)
        except ValueError as exc:
            raise CodecError(media, f"{_loc(loc)}: {exc}") from exc
    else:
        return data
    raise CodecError(
        media,
        f"{_loc(loc)}: cannot use {type(data).__name__} value as {getattr(kind, '__name__', kind)}",
    )


def _element_data(elem: ET.Element) -> Any:
    children = list(elem)
    if not children and not elem.attrib:
        return (elem.text or "").strip()
    data: dict[str, Any] = dict(elem.attrib)
    for child in children:
        value = _element_data(child)
        if child.tag in data:
            existing = data[child.tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                data[child.tag] = [existing, value]
        else:
            data[child.tag] = value
    return data


def loads(kind: str, raw: bytes, target: Any = None) -> Any:
    """Decode *raw* with the codec *kind* into plain data (or a message)."""

    if kind == "json":
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CodecError(JSON, str(exc)) from exc
    if kind == "xml":
        try:
            return _element_data(ET.fromstring(raw))
        except ET.ParseError as exc:
            raise CodecError(XML, str(exc)) from exc
    if kind == "yaml":
        try:
            return yaml.safe_load(raw.decode("utf-8"))
        except (UnicodeDecodeError, yaml.YAMLError) as exc:
            raise CodecError(YAML, str(exc)) from exc
    if kind == "protobuf":
        if not (isinstance(target, type) and issubclass(target, Message)):
            raise CodecError(PROTOBUF, "target does not implement protobuf Message")
        message = target()
        try:
            message.ParseFromString(raw)
        except DecodeError as exc:
            raise CodecError(PROTOBUF, str(exc)) from exc
        return message
    raise CodecError(kind, "unsupported media type")


_SOURCES = {"json": Source.JSON, "xml": Source.XML, "yaml": Source.YAML}
_MEDIA = {"json": JSON, "xml": XML, "yaml": YAML, "protobuf": PROTOBUF}


def decode_body(content_type: str, raw: bytes, target: Any) -> Any:
    """Decode *raw* according to *content_type* and structure it into *target*.

    Returns ``None`` for empty bodies and for form media types, which are
    read field by field by the binder.
    """

    kind = kind_of(content_type)
    if kind is None or kind in ("form", "multipart") or not raw:
        return None
    data = loads(kind, raw, target)
    if kind == "protobuf":
        return data
    return structure(data, target, _SOURCES[kind], _MEDIA[kind])


def to_primitive(value: Any) -> Any:
    """Convert *value* into JSON/YAML friendly builtins."""

    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Message):
        return json_format.MessageToDict(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if is_record(type(value)):
            return {
                plan.json_name: to_primitive(getattr(value, plan.name, None))
                for plan in record_fields(type(value))
            }
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return to_primitive(value.value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, UploadFile):
        return value.filename
    if isinstance(value, Mapping):
        return {str(k): to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_primitive(v) for v in value]
    return str(value)


def encode_json(value: Any) -> bytes:
    return json.dumps(to_primitive(value), separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def _xml_fill(elem: ET.Element, value: Any) -> None:
    if isinstance(value, Mapping):
        for key, item in value.items():
            if isinstance(item, list):
                for entry in item:
                    _xml_fill(ET.SubElement(elem, str(key)), entry)
            else:
                _xml_fill(ET.SubElement(elem, str(key)), item)
    elif isinstance(value, list):
        for entry in value:
            _xml_fill(ET.SubElement(elem, "item"), entry)
    elif isinstance(value, bool):
        elem.text = "true" if value else "false"
    elif value is not None:
        elem.text = str(value)


def encode_xml(value: Any, root: str | None = None) -> bytes:
    if root is None:
        root = type(value).__name__ if is_record(type(value)) else "response"
    elem = ET.Element(root)
    _xml_fill(elem, to_primitive(value))
    return ET.tostring(elem, encoding="utf-8", xml_declaration=True)


def encode_yaml(value: Any) -> bytes:
    text = yaml.safe_dump(to_primitive(value), sort_keys=False, allow_unicode=True)
    return text.encode("utf-8")


def encode_protobuf(value: Any) -> bytes:
    if not isinstance(value, Message):
        raise TypeError(f"{type(value).__name__} does not implement protobuf Message")
    return value.SerializeToString()


__all__ = [
    "FORM",
    "HTML",
    "JSON",
    "MULTIPART",
    "PROTOBUF",
    "TEXT",
    "XML",
    "YAML",
    "decode_body",
    "encode_json",
    "encode_protobuf",
    "encode_xml",
    "encode_yaml",
    "is_zero",
    "kind_of",
    "loads",
    "new_record",
    "structure",
    "to_primitive",
    "zero_value",
]
