"""Multipart forms with files and plain fields."""

import io
from dataclasses import dataclass
from typing import Optional

import pytest

from kudu import App, CodecError, Context, TestClient, UploadFile, handle_in, param
from kudu.http import Request
from kudu.testclient import encode_multipart


@dataclass
class Brand:
    name: str = param(form="Name", required=True)
    tags: list[str] = param(form="Tags", factory=list)
    logo: UploadFile = param(form_file="Logo", required=True)


@dataclass
class Gallery:
    title: Optional[str] = param(form="title")
    photos: list[UploadFile] = param(form_file="photos", factory=list)


def test_file_and_fields(app: App, client: TestClient) -> None:
    seen = {}

    def create(ctx: Context, brand: Brand) -> None:
        seen["name"] = brand.name
        seen["tags"] = brand.tags
        seen["filename"] = brand.logo.filename
        seen["content"] = brand.logo.content
        seen["type"] = brand.logo.content_type
        ctx.no_content()

    app.post("/brands", handle_in(create))
    resp = client.post(
        "/brands",
        data={"Name": "x", "Tags": "a,b"},
        files={"Logo": ("logo.png", b"\x89PNG\r\n\x00data", "image/png")},
    )
    assert resp.status_code == 204
    assert seen == {
        "name": "x",
        "tags": ["a", "b"],
        "filename": "logo.png",
        "content": b"\x89PNG\r\n\x00data",
        "type": "image/png",
    }


def test_missing_file_is_400(app: App, client: TestClient) -> None:
    def create(ctx: Context, brand: Brand) -> None:  # pragma: no cover - rejected
        ctx.no_content()

    app.post("/brands", handle_in(create))
    resp = client.post("/brands", data={"Name": "x"}, files={"Other": ("a.txt", b"a")})
    assert resp.status_code == 400
    assert "logo" in resp.json()["details"]


def test_multiple_files(app: App, client: TestClient) -> None:
    def upload(ctx: Context, gallery: Gallery) -> None:
        ctx.ok({"title": gallery.title, "photos": [p.filename for p in gallery.photos]})

    app.post("/gallery", handle_in(upload))
    resp = client.post(
        "/gallery",
        data={"title": "trip"},
        files={"photos": [("a.jpg", b"1"), ("b.jpg", b"2")]},
    )
    assert resp.json() == {"title": "trip", "photos": ["a.jpg", "b.jpg"]}


def test_large_parts_spill_to_disk() -> None:
    app = App(access_log=False, max_multipart_memory=16)
    sizes = {}

    def upload(ctx: Context) -> None:
        upload = ctx.form_file("blob")
        sizes["size"] = upload.size
        sizes["len"] = len(upload.content)
        ctx.text(200, ctx.form("note"))

    app.post("/blob", upload)
    resp = TestClient(app).post(
        "/blob", data={"note": "big"}, files={"blob": ("blob.bin", b"z" * 1000)}
    )
    assert resp.text == "big"
    assert sizes == {"size": 1000, "len": 1000}


def test_context_form_accessors(app: App, client: TestClient) -> None:
    def handler(ctx: Context) -> None:
        ctx.ok({"a": ctx.form("a"), "files": [f.filename for f in ctx.form_files("f")]})

    app.post("/raw", handler)
    resp = client.post("/raw", data={"a": "1"}, files={"f": [("x.txt", "x"), ("y.txt", "y")]})
    assert resp.json() == {"a": "1", "files": ["x.txt", "y.txt"]}


class RecordingStream:
    """Wrap a body and remember the size of every read."""

    def __init__(self, data: bytes) -> None:
        self._stream = io.BytesIO(data)
        self.reads: list[int] = []

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.reads.append(len(chunk))
        return chunk


def multipart_request(fields, files, max_memory: int) -> tuple[Request, RecordingStream]:
    body, content_type = encode_multipart(fields, files)
    stream = RecordingStream(body)
    environ = {
        "REQUEST_METHOD": "POST",
        "PATH_INFO": "/upload",
        "CONTENT_TYPE": content_type,
        "CONTENT_LENGTH": str(len(body)),
        "wsgi.input": stream,
    }
    return Request(environ, max_memory), stream


def test_large_upload_is_streamed_in_chunks() -> None:
    # straddle chunk boundaries with delimiter-like bytes inside the payload
    payload = (b"\r\n--not-the-boundary\r\n" + b"q" * 4093) * 300
    request, stream = multipart_request(
        {"note": "big"}, {"blob": ("blob.bin", payload)}, max_memory=16 * 1024
    )
    upload = request.files()["blob"][0]
    assert request.form() == {"note": ["big"]}
    assert upload.size == len(payload)
    assert upload.content == payload
    assert len(payload) > 16 * 1024
    assert max(stream.reads) <= 64 * 1024
    assert len(stream.reads) > 1
    assert request.body() == b""
    request.close()


def test_form_values_are_charged_against_the_memory_cap() -> None:
    request, _ = multipart_request({"essay": "x" * 100}, {}, max_memory=64)
    with pytest.raises(CodecError, match="exceed 64 bytes"):
        request.form()


def test_oversized_form_values_are_400() -> None:
    app = App(access_log=False, max_multipart_memory=32)

    def handler(ctx: Context) -> None:  # pragma: no cover - rejected
        ctx.text(200, ctx.form("essay"))

    app.post("/essay", handler)
    resp = TestClient(app).post(
        "/essay", data={"essay": "x" * 100}, files={"f": ("f.txt", b"f")}
    )
    assert resp.status_code == 400


def test_truncated_multipart_body_is_rejected() -> None:
    body, content_type = encode_multipart({"a": "1"}, {"f": ("f.txt", b"data")})
    cut = body[: len(body) // 2]
    environ = {
        "REQUEST_METHOD": "POST",
        "CONTENT_TYPE": content_type,
        "CONTENT_LENGTH": str(len(cut)),
        "wsgi.input": io.BytesIO(cut),
    }
    request = Request(environ)
    with pytest.raises(CodecError):
        request.files()
    request.close()


def test_parts_parse_from_an_already_read_body() -> None:
    request, _ = multipart_request({"a": "1"}, {"f": ("f.txt", b"data")}, max_memory=1024)
    raw = request.body()
    assert raw
    assert request.form() == {"a": ["1"]}
    assert request.files()["f"][0].content == b"data"
    request.close()
