"""Server-Sent Events wire format."""

import re

import pytest

from kudu import App, Base64Serializer, Context, Message, TestClient, TextSerializer


def test_tick_stream(app: App, client: TestClient) -> None:
    def ticks(ctx: Context) -> None:
        for n in range(1, 4):
            ctx.sse_event("tick", {"n": n})

    app.get("/ticks", ticks)
    resp = client.get("/ticks", headers={"Accept": "text/event-stream"})
    assert resp.status_code == 200
    assert resp.headers["Content-Type"] == "text/event-stream"
    assert resp.headers["Cache-Control"] == "no-cache"
    assert resp.headers.get("Connection") is None
    pattern = "".join(
        rf"id: ([0-9a-f]{{32}})\nevent: tick\ndata: {{\"n\":{n}}}\n\n" for n in range(1, 4)
    )
    match = re.fullmatch(pattern, resp.text)
    assert match is not None, resp.text
    assert len(set(match.groups())) == 3


def test_each_message_is_flushed(app: App, client: TestClient) -> None:
    def ticks(ctx: Context) -> None:
        ctx.sse_stream(Message(data=n, event="n") for n in range(3))

    app.get("/ticks", ticks)
    resp = client.get("/ticks")
    assert len(resp.chunks) == 3


def test_message_encoding() -> None:
    message = Message(data="line one\nline two", event="note", id="7", retry=1500)
    assert message.encode() == (
        b"id: 7\nevent: note\nretry: 1500\ndata: line one\ndata: line two\n\n"
    )
    assert Message(id="1").encode() == b"id: 1\ndata: \n\n"


def test_serializers() -> None:
    assert Message(data=b"\x00\x01", id="x", serializer=Base64Serializer()).encode() == (
        b"id: x\ndata: AAE=\n\n"
    )
    assert Message(data=3.5, id="x", serializer=TextSerializer()).encode() == b"id: x\ndata: 3.5\n\n"
    with pytest.raises(TypeError):
        Base64Serializer().serialize("text")


def test_send_sse_returns_id(app: App, client: TestClient) -> None:
    ids = []

    def handler(ctx: Context) -> None:
        ids.append(ctx.send_sse("abc", "", "hi"))
        ids.append(ctx.sse_event("ping", None))

    app.get("/events", handler)
    resp = client.get("/events")
    assert ids[0] == "abc"
    assert resp.text.startswith("id: abc\ndata: hi\n\n")
    assert resp.text.endswith(f"id: {ids[1]}\nevent: ping\ndata: \n\n")
