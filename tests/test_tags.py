"""Field annotations and cached binding plans."""

from dataclasses import dataclass
from typing import Optional

import pytest

from kudu.tags import (
    Source,
    body_field,
    get_tagset,
    make_tagset,
    param,
    record_fields,
    unwrap_optional,
)


@dataclass
class Upload:
    id: int = param(path="id", query="id", header="X-Id", cookie="id", form="id")
    name: str = param(json="name", required=True, min_length=2, description="display name")
    note: Optional[str] = None


@dataclass
class Wrapped:
    body: Upload = param(json="body")
    trace: str = param(header="X-Trace")


def test_textual_sources_follow_precedence() -> None:
    tags = get_tagset(Upload, "id")
    assert [src for src, _ in tags.textual_sources()] == [
        Source.PATH,
        Source.QUERY,
        Source.FORM,
        Source.HEADER,
        Source.COOKIE,
    ]
    assert tags.source(Source.HEADER) == "X-Id"
    assert tags.source(Source.JSON) is None


def test_plans_are_cached_per_type() -> None:
    first = record_fields(Upload)
    assert first is record_fields(Upload)
    assert [plan.name for plan in first] == ["id", "name", "note"]
    assert first[1].json_name == "name"
    assert first[2].tags.sources == ()


def test_body_sentinel() -> None:
    plan = body_field(Wrapped)
    assert plan is not None and plan.name == "body"
    assert plan.tags.body
    assert body_field(Upload) is None


def test_enum_and_default_normalisation() -> None:
    tags = make_tagset(enum=[1, 2], default=True)
    assert tags.enum == ("1", "2")
    assert tags.default == "true"
    assert make_tagset(default=["a", "b"]).default == "a,b"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"format": "credit-card"},
        {"format": "regex"},
        {"pattern": "("},
        {"multiple_of": 0},
        {"min": "many"},
        {"min_length": -1},
    ],
)
def test_invalid_annotations_are_rejected(kwargs: dict) -> None:
    with pytest.raises(TypeError):
        make_tagset(**kwargs)


def test_unwrap_optional() -> None:
    assert unwrap_optional(Optional[int]) == (int, True)
    assert unwrap_optional(int | None) == (int, True)
    assert unwrap_optional(int) == (int, False)
