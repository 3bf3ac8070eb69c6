"""Middleware ordering and the built-in middleware."""

import json
import logging

import pytest

from kudu import (
    App,
    BodyLimit,
    Context,
    Cors,
    Forbidden,
    HTTPError,
    NotFound,
    Recovery,
    RequestLoggerMiddleware,
    TestClient,
)
from kudu.app import run_chain
from kudu.http import Request, ResponseWriter


def recorder(name: str, events: list[str], stop: bool = False):
    def middleware(ctx: Context, call_next) -> None:
        events.append(f"{name}:in")
        if stop:
            ctx.abort_unauthorized()
        else:
            call_next()
        events.append(f"{name}:out")

    return middleware


def test_order_is_declaration_then_reverse(app: App, client: TestClient) -> None:
    events: list[str] = []

    def handler(ctx: Context) -> None:
        events.append("handler")
        ctx.no_content()

    app.use(recorder("a", events), recorder("b", events))
    api = app.group("/api", recorder("g", events))
    api.get("/x", handler, middleware=[recorder("r", events)])
    assert client.get("/api/x").status_code == 204
    assert events == ["a:in", "b:in", "g:in", "r:in", "handler", "r:out", "g:out", "b:out", "a:out"]


def test_short_circuit_keeps_exit_order(app: App, client: TestClient) -> None:
    events: list[str] = []

    def handler(ctx: Context) -> None:  # pragma: no cover - short-circuited
        events.append("handler")

    app.use(recorder("a", events), recorder("b", events, stop=True), recorder("c", events))
    app.get("/x", handler)
    assert client.get("/x").status_code == 401
    assert events == ["a:in", "b:in", "b:out", "a:out"]


def test_exception_in_middleware_still_unwinds_outer(app: App, client: TestClient) -> None:
    events: list[str] = []

    def failing(ctx: Context, call_next) -> None:
        events.append("failing:in")
        raise PermissionError("nope")

    def handler(ctx: Context) -> None:  # pragma: no cover - never reached
        events.append("handler")

    app.use(recorder("outer", events), failing)
    app.get("/x", handler)
    resp = client.get("/x")
    assert resp.status_code == 500
    assert "nope" not in resp.text
    assert events == ["outer:in", "failing:in", "outer:out"]


def test_handler_error_is_rendered_before_exit_phases(app: App, client: TestClient) -> None:
    events: list[str] = []
    seen: list[int] = []

    def outer(ctx: Context, call_next) -> None:
        call_next()
        seen.append(ctx.response.status)
        events.append("outer:out")

    def handler(ctx: Context) -> None:
        raise NotFound("no such item")

    app.use(outer, recorder("inner", events))
    app.get("/x", handler)
    resp = client.get("/x")
    assert resp.status_code == 404
    assert "no such item" in resp.text
    assert events == ["inner:in", "inner:out", "outer:out"]
    assert seen == [404]


def test_exception_in_first_middleware_is_rendered(app: App, client: TestClient) -> None:
    def failing(ctx: Context, call_next) -> None:
        raise Forbidden("closed")

    app.use(failing)
    app.get("/x", lambda ctx: ctx.no_content())
    assert client.get("/x").status_code == 403


def test_cors_preflight_and_headers() -> None:
    cors = Cors(
        allowed_origins=["https://app.example"],
        allow_methods=["GET", "POST"],
        allow_credentials=True,
        max_age=600,
    )
    app = App(access_log=False, cors=cors)

    def handler(ctx: Context) -> None:
        ctx.ok({"ok": True})

    app.post("/data", handler)
    client = TestClient(app)
    pre = client.options(
        "/data",
        headers={"Origin": "https://app.example", "Access-Control-Request-Method": "POST"},
    )
    assert pre.status_code == 204
    assert pre.headers["Access-Control-Allow-Origin"] == "https://app.example"
    assert pre.headers["Access-Control-Allow-Methods"] == "GET, POST"
    assert pre.headers["Access-Control-Allow-Credentials"] == "true"
    assert pre.headers["Access-Control-Max-Age"] == "600"
    actual = client.post("/data", {}, headers={"Origin": "https://app.example"})
    assert actual.status_code == 200
    assert actual.headers["Access-Control-Allow-Origin"] == "https://app.example"
    other = client.post("/data", {}, headers={"Origin": "https://evil.example"})
    assert other.headers.get("Access-Control-Allow-Origin") is None


def test_body_limit(app: App, client: TestClient) -> None:
    def handler(ctx: Context) -> None:
        ctx.text(200, "ok")

    app.post("/upload", handler, middleware=[BodyLimit(8)])
    assert client.post("/upload", body=b"tiny").status_code == 200
    assert client.post("/upload", body=b"far too large").status_code == 413
    with pytest.raises(ValueError):
        BodyLimit(0)


def test_recovery_renders_error(app: App, client: TestClient) -> None:
    def handler(ctx: Context) -> None:
        raise KeyError("missing")

    app.get("/x", handler, middleware=[Recovery()])
    resp = client.get("/x")
    assert resp.status_code == 500
    assert resp.json()["code"] == 500


def test_recovery_applies_exception_handlers_and_headers(app: App, client: TestClient) -> None:
    def conflict(ctx: Context, exc: Exception) -> None:
        ctx.json(409, {"error": str(exc)})

    app.add_exception_handler(LookupError, conflict)

    def missing(ctx: Context) -> None:
        raise KeyError("sku")

    def throttled(ctx: Context) -> None:
        raise HTTPError(429, "slow down", headers={"Retry-After": "3"})

    app.get("/missing", missing, middleware=[Recovery()])
    app.get("/throttled", throttled, middleware=[Recovery()])
    assert client.get("/missing").status_code == 409
    resp = client.get("/throttled")
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "3"


def test_recovery_catches_when_chain_propagates(app: App) -> None:
    def handler(ctx: Context) -> None:
        raise HTTPError(503, "maintenance", headers={"Retry-After": "60"})

    client = TestClient(app)
    captured: dict[str, object] = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)
        return lambda data: None

    environ = client._environ("GET", "/", "", {}, b"")
    request = Request(environ, app.config.max_multipart_memory)
    ctx = Context(app, request, ResponseWriter(start_response))
    run_chain(ctx, [Recovery()], handler)
    ctx.response.finish()
    assert str(captured["status"]).startswith("503")
    assert captured["headers"]["Retry-After"] == "60"


def test_request_logger_emits_json(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="kudu.request")
    app = App()

    def handler(ctx: Context) -> None:
        ctx.text(200, "ok")

    app.get("/users/{id}", handler)
    TestClient(app).get("/users/5", headers={"X-Request-ID": "req-1", "User-Agent": "pytest"})
    lines = [json.loads(r.getMessage()) for r in caplog.records if r.name == "kudu.request"]
    assert len(lines) == 1
    entry = lines[0]
    assert entry["method"] == "GET"
    assert entry["path"] == "/users/5"
    assert entry["route"] == "/users/{id}"
    assert entry["status"] == 200
    assert entry["request_id"] == "req-1"
    assert entry["user_agent"] == "pytest"


def test_request_logger_skips_event_streams(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="kudu.request")
    app = App(access_log=False)

    def handler(ctx: Context) -> None:
        ctx.sse_event("tick", 1)

    app.get("/events", handler, middleware=[RequestLoggerMiddleware()])
    TestClient(app).get("/events", headers={"Accept": "text/event-stream"})
    assert not [r for r in caplog.records if r.name == "kudu.request"]


def test_request_logger_records_rendered_error_status(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="kudu.request")
    app = App()

    def handler(ctx: Context) -> None:
        raise NotFound()

    app.get("/gone", handler)
    assert TestClient(app).get("/gone").status_code == 404
    lines = [json.loads(r.getMessage()) for r in caplog.records if r.name == "kudu.request"]
    assert [entry["status"] for entry in lines] == [404]
