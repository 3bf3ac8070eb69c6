"""Field annotation vocabulary shared by binding, validation and OpenAPI.

Records are plain dataclasses. Each field may carry a :class:`TagSet`
attached through :func:`param`::

    @dataclass
    class BookInput:
        id: int = param(path="id", query="id")
        title: str = param(json="title", required=True, min_length=4)

The tag set is parsed once and cached per ``(type, field index)``.
"""

from __future__ import annotations

import dataclasses
import re
import threading
import types
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union, get_args, get_origin, get_type_hints

TAG_KEY = "kudu"


class Source(str, Enum):
    """Origin of a field value."""

    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"
    FORM = "form"
    FORM_FILE = "form-file"
    JSON = "json"
    XML = "xml"
    YAML = "yaml"


# Textual sources in the order the binder consults them.
PRECEDENCE: tuple[Source, ...] = (
    Source.PATH,
    Source.QUERY,
    Source.FORM,
    Source.HEADER,
    Source.COOKIE,
)

PARAMETER_SOURCES = frozenset({Source.PATH, Source.QUERY, Source.HEADER, Source.COOKIE})

BODY_SENTINEL = "body"

FORMATS = frozenset(
    {
        "email",
        "date",
        "date-time",
        "duration",
        "uuid",
        "uri",
        "ipv4",
        "ipv6",
        "hostname",
        "regex",
    }
)


def _number(name: str, value: Any) -> float | int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError(f"{name} must be numeric, got {value!r}")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        try:
            return float(text)
        except ValueError as exc:
            raise TypeError(f"{name} must be numeric, got {value!r}") from exc


def _count(name: str, value: Any) -> int | None:
    number = _number(name, value)
    if number is None:
        return None
    if int(number) != number or number < 0:
        raise TypeError(f"{name} must be a non-negative integer, got {value!r}")
    return int(number)


@dataclass(frozen=True)
class TagSet:
    """Immutable annotation bundle of one record field."""

    sources: tuple[tuple[Source, str], ...] = ()
    body: bool = False
    required: bool = False
    required_if: str | None = None
    default: str | None = None
    minimum: float | int | None = None
    maximum: float | int | None = None
    min_length: int | None = None
    max_length: int | None = None
    multiple_of: float | int | None = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False
    pattern: str | None = None
    enum: tuple[str, ...] = ()
    format: str | None = None
    description: str | None = None
    example: Any = None
    deprecated: bool = False
    hidden: bool = False
    regex: "re.Pattern[str] | None" = field(default=None, compare=False, repr=False)

    def source(self, source: Source) -> str | None:
        """Return the wire name declared for *source*, if any."""

        for src, name in self.sources:
            if src is source:
                return name
        return None

    def textual_sources(self) -> list[tuple[Source, str]]:
        """Return declared textual sources in precedence order."""

        declared = dict(self.sources)
        found = [(src, declared[src]) for src in PRECEDENCE if src in declared]
        if Source.FORM_FILE in declared:
            found.insert(0, (Source.FORM_FILE, declared[Source.FORM_FILE]))
        return found

    @property
    def has_constraints(self) -> bool:
        return any(
            (
                self.minimum is not None,
                self.maximum is not None,
                self.min_length is not None,
                self.max_length is not None,
                self.multiple_of is not None,
                self.min_items is not None,
                self.max_items is not None,
                self.unique_items,
                self.pattern,
                self.enum,
                self.format,
            )
        )


EMPTY_TAGS = TagSet()


def make_tagset(
    *,
    path: str | None = None,
    query: str | None = None,
    header: str | None = None,
    cookie: str | None = None,
    form: str | None = None,
    form_file: str | None = None,
    json: str | None = None,
    xml: str | None = None,
    yaml: str | None = None,
    body: bool = False,
    required: bool = False,
    required_if: str | None = None,
    default: Any = None,
    min: Any = None,
    max: Any = None,
    min_length: Any = None,
    max_length: Any = None,
    multiple_of: Any = None,
    min_items: Any = None,
    max_items: Any = None,
    unique_items: bool = False,
    pattern: str | None = None,
    enum: str | Iterable[Any] | None = None,
    format: str | None = None,
    description: str | None = None,
    example: Any = None,
    deprecated: bool = False,
    hidden: bool = False,
) -> TagSet:
    """Validate raw annotation values and build a :class:`TagSet`."""

    declared = (
        (Source.PATH, path),
        (Source.QUERY, query),
        (Source.HEADER, header),
        (Source.COOKIE, cookie),
        (Source.FORM, form),
        (Source.FORM_FILE, form_file),
        (Source.JSON, json),
        (Source.XML, xml),
        (Source.YAML, yaml),
    )
    sources = tuple((src, name) for src, name in declared if name)
    if json == BODY_SENTINEL:
        body = True
    if format is not None and format not in FORMATS:
        raise TypeError(f"unsupported format {format!r}")
    if format == "regex" and not pattern:
        raise TypeError("regex format requires a pattern")
    regex = None
    if pattern:
        try:
            regex = re.compile(pattern)
        except re.error as exc:
            raise TypeError(f"invalid pattern {pattern!r}: {exc}") from exc
    if isinstance(enum, str):
        values = tuple(part.strip() for part in enum.split(",") if part.strip())
    elif enum is not None:
        values = tuple(str(part) for part in enum)
    else:
        values = ()
    multiple = _number("multiple_of", multiple_of)
    if multiple is not None and multiple == 0:
        raise TypeError("multiple_of cannot be zero")
    return TagSet(
        sources=sources,
        body=body,
        required=required,
        required_if=required_if,
        default=None if default is None else _default_text(default),
        minimum=_number("min", min),
        maximum=_number("max", max),
        min_length=_count("min_length", min_length),
        max_length=_count("max_length", max_length),
        multiple_of=multiple,
        min_items=_count("min_items", min_items),
        max_items=_count("max_items", max_items),
        unique_items=unique_items,
        pattern=pattern,
        enum=values,
        format=format,
        description=description,
        example=example,
        deprecated=deprecated,
        hidden=hidden,
        regex=regex,
    )


def _default_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def param(*, factory: Any = None, **tags: Any) -> Any:
    """Declare a record field with binding, validation and doc annotations.

    Accepts every keyword of :func:`make_tagset`. The dataclass default is
    ``None`` (or ``factory()``); the binder fills real values.
    """

    tagset = make_tagset(**tags)
    if factory is not None:
        return dataclasses.field(default_factory=factory, metadata={TAG_KEY: tagset})
    return dataclasses.field(default=None, metadata={TAG_KEY: tagset})


@dataclass(frozen=True)
class FieldPlan:
    """Binding plan entry for one record field."""

    name: str
    type: Any
    tags: TagSet
    index: int

    @property
    def is_body(self) -> bool:
        return self.tags.body or self.name.lower() == BODY_SENTINEL

    def wire_name(self, source: Source) -> str:
        return self.tags.source(source) or self.name

    @property
    def json_name(self) -> str:
        name = self.tags.source(Source.JSON)
        if name and name != BODY_SENTINEL:
            return name
        return self.name


_PLAN_CACHE: dict[type, tuple[FieldPlan, ...]] = {}
_PLAN_LOCK = threading.Lock()


def is_record(tp: Any) -> bool:
    """Return ``True`` when *tp* is a dataclass type."""

    return isinstance(tp, type) and dataclasses.is_dataclass(tp)


def unwrap_optional(tp: Any) -> tuple[Any, bool]:
    """Return ``(inner, True)`` for ``Optional[inner]``, else ``(tp, False)``."""

    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1 and len(get_args(tp)) == 2:
            return args[0], True
    return tp, False


def record_fields(cls: type) -> tuple[FieldPlan, ...]:
    """Return the cached field plans of dataclass *cls*."""

    plans = _PLAN_CACHE.get(cls)
    if plans is not None:
        return plans
    if not is_record(cls):
        raise TypeError(f"{cls!r} is not a dataclass record")
    hints = get_type_hints(cls)
    built = tuple(
        FieldPlan(
            name=f.name,
            type=hints.get(f.name, Any),
            tags=f.metadata.get(TAG_KEY, EMPTY_TAGS),
            index=index,
        )
        for index, f in enumerate(dataclasses.fields(cls))
    )
    with _PLAN_LOCK:
        return _PLAN_CACHE.setdefault(cls, built)


def get_tagset(cls: type, name: str) -> TagSet:
    """Return the tag set of field *name* on record *cls*."""

    for plan in record_fields(cls):
        if plan.name == name:
            return plan.tags
    raise KeyError(name)


def body_field(cls: type) -> FieldPlan | None:
    """Return the body sentinel field of *cls*, if declared."""

    for plan in record_fields(cls):
        if plan.is_body:
            return plan
    return None


__all__ = [
    "BODY_SENTINEL",
    "FORMATS",
    "FieldPlan",
    "PARAMETER_SOURCES",
    "PRECEDENCE",
    "Source",
    "TagSet",
    "body_field",
    "get_tagset",
    "is_record",
    "make_tagset",
    "param",
    "record_fields",
    "unwrap_optional",
]
