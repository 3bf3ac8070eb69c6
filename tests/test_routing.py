"""Pattern compilation and route table lookups."""

import pytest

from kudu.routing import (
    Match,
    MethodNotAllowed,
    RouteTable,
    compile_pattern,
    join_paths,
    normalize_path,
)


def handler(ctx) -> None:  # pragma: no cover - never dispatched
    return None


def test_path_helpers() -> None:
    assert normalize_path("users//1") == "/users/1"
    assert join_paths("/api/", "/v1") == "/api/v1"
    assert join_paths("/api", "") == "/api"
    assert join_paths("", "/") == "/"


def test_compile_styles() -> None:
    brace = compile_pattern("/items/{id:int}")
    assert brace.match("/items/7") == {"id": "7"}
    assert brace.match("/items/x") is None
    assert brace.openapi_path == "/items/{id}"
    colon = compile_pattern("/users/:name")
    assert colon.match("/users/ada") == {"name": "ada"}
    assert colon.openapi_path == "/users/{name}"
    wild = compile_pattern("/static/*path")
    assert wild.match("/static/css/site.css") == {"path": "css/site.css"}
    assert compile_pattern("/files/*").params[0].name == "any"


@pytest.mark.parametrize(
    "pattern",
    [
        "/a/:id/{name}",
        "/a/{id}/{id}",
        "/a/*rest/b",
        "/a/{id:uuid}",
        "/a/{id",
    ],
)
def test_malformed_patterns(pattern: str) -> None:
    with pytest.raises(ValueError):
        compile_pattern(pattern)


def test_static_routes_win_over_parameters() -> None:
    table = RouteTable()
    dynamic = table.register("GET", "/users/{id}", handler)
    static = table.register("GET", "/users/me", handler)
    found = table.lookup("GET", "/users/me")
    assert isinstance(found, Match) and found.route is static
    found = table.lookup("GET", "/users/42")
    assert isinstance(found, Match) and found.route is dynamic


def test_method_not_allowed_lists_methods() -> None:
    table = RouteTable()
    table.register("GET", "/things", handler)
    table.register("POST", "/things", handler)
    result = table.lookup("DELETE", "/things")
    assert isinstance(result, MethodNotAllowed)
    assert result.allowed == ("GET", "HEAD", "POST")
    assert table.lookup("GET", "/nothing") is None


def test_head_falls_back_to_get() -> None:
    table = RouteTable()
    route = table.register("GET", "/ping", handler)
    found = table.lookup("HEAD", "/ping")
    assert isinstance(found, Match) and found.route is route


def test_duplicate_registration_fails() -> None:
    table = RouteTable()
    table.register("GET", "/x", handler)
    with pytest.raises(ValueError):
        table.register("get", "/x", handler)
    with pytest.raises(ValueError):
        table.register("BREW", "/x", handler)


def test_equivalent_patterns_conflict() -> None:
    table = RouteTable()
    table.register("GET", "/items/:id", handler)
    with pytest.raises(ValueError, match="conflicts with /items/:id"):
        table.register("GET", "/items/{id}", handler)
    with pytest.raises(ValueError):
        table.register("GET", "/items/{sku}", handler)
    with pytest.raises(ValueError):
        table.register("GET", "/items/{id:int}", handler)
    table.register("GET", "/items/{n:int}", handler)
    table.register("POST", "/items/{id}", handler)
    assert [r.pattern for r in table.routes()] == ["/items/:id", "/items/{n:int}", "/items/{id}"]


def test_same_shape_routes_share_methods_but_keep_param_names() -> None:
    table = RouteTable()
    table.register("GET", "/items/:id", handler)
    post = table.register("POST", "/items/{sku}", handler)
    found = table.lookup("POST", "/items/42")
    assert isinstance(found, Match) and found.route is post
    assert found.params == {"sku": "42"}
    missing = table.lookup("PUT", "/items/42")
    assert isinstance(missing, MethodNotAllowed)
    assert missing.allowed == ("GET", "HEAD", "POST")
    assert table.find("get", "/items/{id}") is table.routes()[0]


def test_disable_keeps_handler_and_bumps_revision() -> None:
    table = RouteTable()
    route = table.register("GET", "/beta", handler)
    revision = table.revision
    table.disable("GET", "/beta")
    assert table.revision > revision
    assert table.lookup("GET", "/beta") is None
    table.enable("GET", "/beta")
    found = table.lookup("GET", "/beta")
    assert isinstance(found, Match) and found.route.handler is handler
    assert route in table.routes()
    with pytest.raises(KeyError):
        table.disable("GET", "/missing")


def test_redirect_for_trailing_slash() -> None:
    table = RouteTable()
    table.register("GET", "/docs/", handler)
    table.register("GET", "/about", handler)
    assert table.redirect_for("GET", "/docs") == "/docs/"
    assert table.redirect_for("GET", "/about/") == "/about"
    assert table.redirect_for("GET", "/") is None
