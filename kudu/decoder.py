"""Convert textual request values into typed field values.

The same constraint routine (:func:`check_constraints`) backs both the
decoder and the post-bind validator so a field is judged identically
whichever path populated it.
"""

from __future__ import annotations

import ipaddress
import math
import re
import uuid
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, List, NewType, Sequence, get_args, get_origin
from urllib.parse import urlsplit

from .errors import BindError
from .tags import EMPTY_TAGS, TagSet, unwrap_optional

Int8 = NewType("Int8", int)
Int16 = NewType("Int16", int)
Int32 = NewType("Int32", int)
Int64 = NewType("Int64", int)
UInt8 = NewType("UInt8", int)
UInt16 = NewType("UInt16", int)
UInt32 = NewType("UInt32", int)
UInt64 = NewType("UInt64", int)
Float32 = NewType("Float32", float)
Float64 = NewType("Float64", float)

INT_BOUNDS: dict[Any, tuple[int, int]] = {
    Int8: (-(2**7), 2**7 - 1),
    Int16: (-(2**15), 2**15 - 1),
    Int32: (-(2**31), 2**31 - 1),
    Int64: (-(2**63), 2**63 - 1),
    UInt8: (0, 2**8 - 1),
    UInt16: (0, 2**16 - 1),
    UInt32: (0, 2**32 - 1),
    UInt64: (0, 2**64 - 1),
}
FLOAT32_MAX = 3.4028234663852886e38

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_EMAIL = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
_UUID = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_TIME = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)
_GO_DURATION = re.compile(r"^[-+]?((\d+(\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h))+$")
_ISO_DURATION = re.compile(
    r"^P(?!$)(\d+Y)?(\d+M)?(\d+W)?(\d+D)?(T(?=\d)(\d+H)?(\d+M)?(\d+(\.\d+)?S)?)?$"
)
_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")

FLOAT_EPSILON = 1e-9


def base_type(tp: Any) -> Any:
    """Return the builtin type behind a ``NewType`` alias."""

    return getattr(tp, "__supertype__", tp)


def is_list_type(tp: Any) -> bool:
    return get_origin(tp) in (list, List, Sequence) or tp is list


def list_item_type(tp: Any) -> Any:
    args = get_args(tp)
    return args[0] if args else str


def split_values(raw: str | Sequence[str]) -> list[str]:
    """Merge repeated values and comma lists, trimming and dropping blanks."""

    values = [raw] if isinstance(raw, str) else list(raw)
    items: list[str] = []
    for value in values:
        items.extend(part.strip() for part in value.split(","))
    return [item for item in items if item]


def parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean value '{text}'")


def parse_datetime(text: str) -> datetime:
    """Parse an RFC 3339 timestamp."""

    match = _DATE_TIME.match(text)
    if match is None:
        raise ValueError(f"invalid date-time format (expected RFC3339): {text}")
    day, clock, fraction, offset = match.groups()
    fraction = (fraction or "")[:7]
    offset = "+00:00" if offset in ("Z", "z") else offset
    return datetime.fromisoformat(f"{day}T{clock}{fraction}{offset}")


def parse_date(text: str) -> date:
    if _DATE.match(text) is None:
        raise ValueError(f"invalid date format (expected YYYY-MM-DD): {text}")
    return date.fromisoformat(text)


def _scalar(tp: Any, text: str, name: str) -> Any:
    kind = base_type(tp)
    try:
        if tp is Any or kind is str:
            return text
        if kind is bool:
            return parse_bool(text.strip())
        if kind is int:
            value = int(text.strip(), 10)
            if tp in INT_BOUNDS:
                low, high = INT_BOUNDS[tp]
                if not low <= value <= high:
                    raise ValueError(f"integer value '{text}' overflows {tp.__name__}")
            return value
        if kind is float:
            value_f = float(text.strip())
            if tp is Float32 and math.isfinite(value_f) and abs(value_f) > FLOAT32_MAX:
                raise ValueError(f"float value '{text}' overflows Float32")
            return value_f
        if kind is datetime:
            return parse_datetime(text.strip())
        if kind is date:
            return parse_date(text.strip())
        if kind is uuid.UUID:
            return uuid.UUID(text.strip())
        if isinstance(kind, type) and issubclass(kind, Enum):
            return kind(text)
    except ValueError as exc:
        raise BindError(name, str(exc), text) from exc
    raise BindError(name, f"unsupported field type {getattr(tp, '__name__', tp)}", text)


def decode(
    tp: Any,
    raw: str | Sequence[str],
    tags: TagSet = EMPTY_TAGS,
    name: str = "value",
) -> Any:
    """Decode *raw* text into *tp* and enforce the constraints in *tags*."""

    inner, _ = unwrap_optional(tp)
    if is_list_type(inner):
        item_type = list_item_type(inner)
        value: Any = [_scalar(item_type, item, name) for item in split_values(raw)]
    else:
        text = raw if isinstance(raw, str) else (raw[0] if raw else "")
        value = _scalar(inner, text, name)
    check_constraints(value, tags, name)
    return value


def _fmt(number: float | int) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


def _check_length(value: str, tags: TagSet, name: str) -> None:
    low = tags.min_length
    high = tags.max_length
    if low is None and high is None:
        # min/max double as length bounds on strings without explicit length tags
        low = None if tags.minimum is None else int(tags.minimum)
        high = None if tags.maximum is None else int(tags.maximum)
    length = len(value)
    if low is not None and length < low:
        raise BindError(
            name, f"string length {length} must be at least {low} characters", value
        )
    if high is not None and length > high:
        raise BindError(
            name, f"string length {length} must be at most {high} characters", value
        )


def _check_enum(value: Any, tags: TagSet, name: str) -> bool:
    if not tags.enum:
        return False
    text = value.value if isinstance(value, Enum) else value
    if isinstance(text, bool):
        text = "true" if text else "false"
    if str(text) not in tags.enum:
        allowed = ", ".join(tags.enum)
        raise BindError(
            name, f"value '{text}' is not one of the allowed values: [{allowed}]", value
        )
    return True


def _check_pattern(value: str, tags: TagSet, name: str) -> None:
    if tags.regex is not None and tags.regex.search(value) is None:
        raise BindError(
            name, f"value does not match pattern '{tags.pattern}': {value}", value
        )


def check_format(value: str, fmt: str) -> None:
    """Raise ``ValueError`` when *value* does not satisfy format *fmt*."""

    if fmt == "email":
        if _EMAIL.match(value) is None:
            raise ValueError(f"invalid email format: {value}")
    elif fmt == "date-time":
        parse_datetime(value)
    elif fmt == "date":
        parse_date(value)
    elif fmt == "duration":
        if _GO_DURATION.match(value) is None and _ISO_DURATION.match(value) is None:
            raise ValueError(f"invalid duration format: {value}")
    elif fmt == "uuid":
        if _UUID.match(value) is None:
            raise ValueError(f"invalid UUID format: {value}")
    elif fmt == "uri":
        parts = urlsplit(value)
        if not parts.scheme or not (parts.netloc or parts.path):
            raise ValueError(f"invalid URI: {value}")
    elif fmt == "ipv4":
        try:
            ipaddress.IPv4Address(value)
        except ValueError as exc:
            raise ValueError(f"not a valid IPv4 address: {value}") from exc
    elif fmt == "ipv6":
        try:
            ipaddress.IPv6Address(value)
        except ValueError as exc:
            raise ValueError(f"not a valid IPv6 address: {value}") from exc
    elif fmt == "hostname":
        host = value[:-1] if value.endswith(".") else value
        if len(host) > 253 or not all(
            _HOSTNAME_LABEL.match(label) for label in host.split(".")
        ):
            raise ValueError(f"invalid hostname: {value}")
    elif fmt == "regex":
        # pattern tag carries the expression, checked separately
        return
    else:
        raise ValueError(f"unsupported format: {fmt}")


def _check_string(value: str, tags: TagSet, name: str) -> None:
    _check_length(value, tags, name)
    if value == "":
        return
    matched_enum = _check_enum(value, tags, name)
    _check_pattern(value, tags, name)
    if tags.format and not matched_enum:
        try:
            check_format(value, tags.format)
        except ValueError as exc:
            raise BindError(name, str(exc), value) from exc


def _check_number(value: int | float, tags: TagSet, name: str) -> None:
    if tags.minimum is not None and value < tags.minimum:
        raise BindError(name, f"value {value} must be >= {_fmt(tags.minimum)}", value)
    if tags.maximum is not None and value > tags.maximum:
        raise BindError(name, f"value {value} must be <= {_fmt(tags.maximum)}", value)
    step = tags.multiple_of
    if step is not None:
        if isinstance(value, int) and isinstance(step, int):
            if value % step != 0:
                raise BindError(name, f"value {value} is not a multiple of {step}", value)
        else:
            remainder = math.fmod(float(value), float(step))
            if (
                abs(remainder) > FLOAT_EPSILON
                and abs(abs(remainder) - abs(float(step))) > FLOAT_EPSILON
            ):
                raise BindError(name, f"value {value} is not a multiple of {step}", value)
    _check_enum(value, tags, name)


def _check_items(value: list[Any], tags: TagSet, name: str) -> None:
    count = len(value)
    if tags.min_items is not None and count < tags.min_items:
        raise BindError(
            name, f"slice length {count} must be at least {tags.min_items} items", value
        )
    if tags.max_items is not None and count > tags.max_items:
        raise BindError(
            name, f"slice length {count} must be at most {tags.max_items} items", value
        )
    if tags.unique_items:
        seen: list[Any] = []
        for item in value:
            if item in seen:
                raise BindError(name, f"slice contains duplicate item: {item}", value)
            seen.append(item)
    for item in value:
        if isinstance(item, str):
            if item:
                _check_enum(item, tags, name)
                _check_pattern(item, tags, name)
        elif isinstance(item, (int, float)) and not isinstance(item, bool):
            _check_enum(item, tags, name)


def check_constraints(value: Any, tags: TagSet, name: str) -> None:
    """Raise :class:`BindError` when *value* violates a constraint of *tags*."""

    if value is None or not (tags.has_constraints):
        return
    if isinstance(value, (list, tuple)):
        _check_items(list(value), tags, name)
    elif isinstance(value, str):
        _check_string(value, tags, name)
    elif isinstance(value, bool):
        _check_enum(value, tags, name)
    elif isinstance(value, (int, float)):
        _check_number(value, tags, name)
    elif isinstance(value, Enum):
        _check_enum(value, tags, name)
    elif isinstance(value, timedelta):
        return


def encode(value: Any) -> str:
    """Render *value* as the text :func:`decode` accepts."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(encode(item) for item in value)
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float) and value.is_integer():
        return repr(value)
    return str(value)


__all__ = [
    "FLOAT_EPSILON",
    "Float32",
    "Float64",
    "INT_BOUNDS",
    "Int16",
    "Int32",
    "Int64",
    "Int8",
    "UInt16",
    "UInt32",
    "UInt64",
    "UInt8",
    "base_type",
    "check_constraints",
    "check_format",
    "decode",
    "encode",
    "is_list_type",
    "list_item_type",
    "parse_bool",
    "parse_date",
    "parse_datetime",
    "split_values",
]
