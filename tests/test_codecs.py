"""Body codecs: media type detection, structuring and encoders."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import pytest
import yaml
from google.protobuf import wrappers_pb2

from kudu import codecs, param
from kudu.errors import CodecError
from kudu.tags import Source


class Level(Enum):
    LOW = 1
    HIGH = 2


@dataclass
class Line:
    sku: str = param(json="sku", xml="SKU")
    qty: int = param(json="qty")


@dataclass
class Order:
    id: int = param(json="id")
    lines: list[Line] = param(json="lines", factory=list)
    level: Level = param(json="level")


@pytest.mark.parametrize(
    "content_type,kind",
    [
        ("application/json; charset=utf-8", "json"),
        ("application/vnd.api+json", "json"),
        ("text/xml", "xml"),
        ("application/atom+xml", "xml"),
        ("application/yaml", "yaml"),
        ("application/x-protobuf", "protobuf"),
        ("application/x-www-form-urlencoded", "form"),
        ("multipart/form-data; boundary=x", "multipart"),
        ("text/plain", None),
        ("", None),
    ],
)
def test_kind_of(content_type: str, kind: str | None) -> None:
    assert codecs.kind_of(content_type) == kind


def test_structure_json_is_strict() -> None:
    order = codecs.structure({"id": 1, "lines": [{"sku": "a", "qty": 2}], "level": 2}, Order)
    assert order.id == 1
    assert order.lines == [Line(sku="a", qty=2)]
    assert order.level is Level.HIGH
    with pytest.raises(CodecError, match="id: cannot use str value as int"):
        codecs.structure({"id": "1"}, Order)
    with pytest.raises(CodecError, match="expected array"):
        codecs.structure({"lines": {"sku": "a"}}, Order)


def test_structure_keys_are_case_insensitive() -> None:
    assert codecs.structure({"ID": 4}, Order).id == 4


def test_xml_single_item_lists_and_tag_names() -> None:
    raw = b"<Order><id>5</id><lines><Line><SKU>x</SKU><qty>3</qty></Line></lines></Order>"
    order = codecs.decode_body("application/xml", raw, Order)
    assert order.id == 5
    assert order.lines == [Line(sku="x", qty=3)]


def test_xml_bad_scalar_is_codec_error() -> None:
    with pytest.raises(CodecError):
        codecs.decode_body("application/xml", b"<Order><id>five</id></Order>", Order)
    with pytest.raises(CodecError):
        codecs.decode_body("application/xml", b"<Order>", Order)


def test_decode_body_skips_empty_and_forms() -> None:
    assert codecs.decode_body("application/json", b"", Order) is None
    assert codecs.decode_body("application/x-www-form-urlencoded", b"a=1", Order) is None
    assert codecs.decode_body("text/plain", b"hi", Order) is None


def test_protobuf_requires_message_target() -> None:
    raw = wrappers_pb2.Int32Value(value=9).SerializeToString()
    assert codecs.decode_body("application/x-protobuf", raw, wrappers_pb2.Int32Value).value == 9
    with pytest.raises(CodecError):
        codecs.decode_body("application/x-protobuf", raw, Order)
    assert codecs.encode_protobuf(wrappers_pb2.Int32Value(value=9)) == raw
    with pytest.raises(TypeError):
        codecs.encode_protobuf({"value": 9})


def test_to_primitive() -> None:
    stamp = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    ident = uuid.UUID("123e4567-e89b-12d3-a456-426614174000")
    assert codecs.to_primitive(
        {"at": stamp, "id": ident, "level": Level.LOW, "raw": b"hi", "set": (1, 2)}
    ) == {
        "at": "2024-01-02T03:04:05Z",
        "id": "123e4567-e89b-12d3-a456-426614174000",
        "level": 1,
        "raw": "aGk=",
        "set": [1, 2],
    }


def test_encoders() -> None:
    order = Order(id=1, lines=[Line(sku="a", qty=1)], level=Level.LOW)
    assert codecs.encode_json(order) == b'{"id":1,"lines":[{"sku":"a","qty":1}],"level":1}'
    assert codecs.encode_json({"name": "café"}) == '{"name":"café"}'.encode("utf-8")
    xml = codecs.encode_xml(order)
    assert xml.startswith(b"<?xml")
    assert b"<Order><id>1</id><lines><sku>a</sku><qty>1</qty></lines><level>1</level></Order>" in xml
    assert b"<response><item>1</item><item>2</item></response>" in codecs.encode_xml([1, 2])
    assert yaml.safe_load(codecs.encode_yaml(order)) == {
        "id": 1,
        "lines": [{"sku": "a", "qty": 1}],
        "level": 1,
    }


def test_zero_values() -> None:
    blank = codecs.new_record(Order)
    assert blank.id == 0 and blank.lines == [] and blank.level is None
    assert codecs.is_zero("") and codecs.is_zero(0) and codecs.is_zero([])
    assert codecs.is_zero(False) and not codecs.is_zero("0")
    assert codecs.structure(None, int, Source.JSON) == 0
