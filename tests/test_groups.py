"""Route groups and declarative route definitions."""

from kudu import App, Context, RouteDefinition, TestClient, bearer_auth_scheme


def ok(ctx: Context) -> None:
    ctx.text(200, ctx.route.pattern)


def test_nested_prefixes(app: App, client: TestClient) -> None:
    api = app.group("/api")
    v1 = api.group("v1/")
    v1.get("/users", ok)
    v1.get("", ok)
    assert client.get("/api/v1/users").text == "/api/v1/users"
    assert client.get("/api/v1").text == "/api/v1"


def test_tags_security_and_deprecation_cascade(app: App) -> None:
    app.with_security_scheme("bearerAuth", bearer_auth_scheme())
    admin = app.group("/admin", tags=["admin"]).with_bearer_auth()
    legacy = admin.group("/legacy", tags=["legacy"]).deprecate()
    route = legacy.get("/report", ok, tags=["reports"])
    assert route.doc.tags == ["admin", "legacy", "reports"]
    assert route.doc.security == [{"bearerAuth": []}]
    assert route.doc.deprecated
    op = app.openapi.document()["paths"]["/admin/legacy/report"]["get"]
    assert op["tags"] == ["admin", "legacy", "reports"]
    assert op["security"] == [{"bearerAuth": []}]
    assert op["deprecated"] is True
    doc = app.openapi.document()
    assert doc["components"]["securitySchemes"]["bearerAuth"]["scheme"] == "bearer"


def test_route_security_overrides_group(app: App) -> None:
    group = app.group("/svc").with_basic_auth()
    route = group.get("/open", ok, security=[{"apiKey": []}])
    assert route.doc.security == [{"apiKey": []}]


def test_disabling_a_group_disables_children(app: App, client: TestClient) -> None:
    beta = app.group("/beta")
    inner = beta.group("/inner")
    beta.get("/a", ok)
    inner.get("/b", ok)
    beta.disable()
    assert client.get("/beta/a").status_code == 404
    assert client.get("/beta/inner/b").status_code == 404
    assert "/beta/inner/b" in app.openapi.document()["paths"]
    beta.enable()
    assert client.get("/beta/inner/b").status_code == 200


def test_register_definitions(app: App, client: TestClient) -> None:
    api = app.group("/api", tags=["api"])
    routes = app.register(
        RouteDefinition("GET", "/health", ok, operation_id="health", summary="Liveness"),
        RouteDefinition("GET", "/status", ok, group=api, hidden=True),
    )
    assert [r.pattern for r in routes] == ["/health", "/api/status"]
    assert client.get("/api/status").status_code == 200
    paths = app.openapi.document()["paths"]
    assert paths["/health"]["get"]["operationId"] == "health"
    assert paths["/health"]["get"]["summary"] == "Liveness"
    assert "/api/status" not in paths


def test_register_many_on_app_and_group(app: App, client: TestClient) -> None:
    admin = app.group("/admin")
    app.register_many([RouteDefinition("DELETE", "/cache", ok)])
    admin.register(RouteDefinition("GET", "/stats", ok))
    assert client.delete("/cache").text == "/cache"
    assert client.get("/admin/stats").text == "/admin/stats"
