"""Error payload shapes, including problem details."""

import pytest

from kudu import (
    App,
    Context,
    ErrorHandlerConfig,
    TestClient,
    ValidationError,
    problem_detail_error_handler,
)
from kudu.errors import (
    BindError,
    ClientError,
    CodecError,
    HTTPError,
    ValidationErrors,
    classify,
    is_client_error,
    is_server_error,
    status_text,
)


def not_found(ctx: Context) -> None:
    ctx.abort_not_found("Not found")


def test_problem_details() -> None:
    config = ErrorHandlerConfig(
        type_prefix="https://api.example.com/errors/",
        include_timestamp=True,
        custom_fields={"api_version": "v1"},
    )
    app = App(access_log=False, error_handler=problem_detail_error_handler(config))
    app.get("/widgets/{id}", not_found)
    resp = TestClient(app).get("/widgets/9")
    assert resp.status_code == 404
    assert resp.headers["Content-Type"] == "application/problem+json"
    body = resp.json()
    assert set(body) >= {"type", "title", "status", "detail", "timestamp", "api_version"}
    assert body["type"].startswith("https://api.example.com/errors/")
    assert body["type"] == "https://api.example.com/errors/not-found"
    assert body["status"] == 404
    assert body["title"] == "Not Found"
    assert body["detail"] == "Not found"
    assert body["api_version"] == "v1"
    assert "instance" not in body


def test_problem_details_instance_and_validation_errors() -> None:
    app = App(access_log=False).with_problem_details(ErrorHandlerConfig(include_instance=True))

    def invalid(ctx: Context) -> None:
        ctx.abort_validation_errors([ValidationError("email", "invalid email format", "x")])

    app.post("/signup", invalid)
    body = TestClient(app).post("/signup").json()
    assert body["type"] == "about:blank"
    assert body["status"] == 422
    assert body["instance"] == "/signup"
    assert body["errors"] == [{"field": "email", "message": "invalid email format", "value": "x"}]


def test_standard_validation_payload(app: App, client: TestClient) -> None:
    def invalid(ctx: Context) -> None:
        raise ValidationErrors(
            [ValidationError("a", "required"), ValidationError("b", "too long", "xxxx")]
        )

    app.post("/form", invalid)
    resp = client.post("/form")
    assert resp.status_code == 422
    body = resp.json()
    assert body["message"] == "Validation failed"
    assert body["errors"] == [
        {"field": "a", "message": "required"},
        {"field": "b", "message": "too long", "value": "xxxx"},
    ]


def test_classify() -> None:
    assert classify(HTTPError(418)) == (418, status_text(418))
    assert classify(ValidationErrors([])) == (422, "Validation failed")
    assert classify(BindError("x", "required")) == (400, "Bad Request")
    assert classify(CodecError("application/json", "bad")) == (400, "Bad Request")
    assert classify(ZeroDivisionError()) == (500, "Internal Server Error")


def test_status_predicates() -> None:
    assert is_client_error(404) and not is_client_error(500)
    assert is_server_error(503) and not is_server_error(499)
    assert status_text(999) == ""
    with pytest.raises(ValueError):
        ClientError(500)
    assert str(BindError("age", "required")) == "field age: required"
