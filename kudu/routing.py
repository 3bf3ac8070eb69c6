"""Route table, route groups and the path pattern compiler."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .app import App
    from .context import Context

_LOGGER = logging.getLogger("kudu")

HandlerFunc = Callable[["Context"], Any]
Middleware = Callable[["Context", Callable[[], None]], Any]

METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

PARAM_TYPES = {"string": r"[^/]+", "int": r"[0-9]+"}

_COLON = re.compile(r"^:([A-Za-z_][\w-]*)(?::(\w+))?$")
_BRACE = re.compile(r"^\{([A-Za-z_][\w-]*)(?::(\w+))?\}$")
_WILDCARD = re.compile(r"^\*([A-Za-z_][\w-]*)?$")


def normalize_path(path: str) -> str:
    """Ensure a leading slash and collapse repeated slashes."""

    if not path.startswith("/"):
        path = "/" + path
    return re.sub(r"/{2,}", "/", path)


def join_paths(base: str, path: str) -> str:
    if not path or path == "/":
        joined = base or "/"
    else:
        joined = base.rstrip("/") + "/" + path.lstrip("/")
    return normalize_path(joined)


@dataclass(frozen=True)
class PathParam:
    name: str
    type: str = "string"
    wildcard: bool = False


@dataclass(frozen=True)
class CompiledPattern:
    """A route pattern compiled to a regular expression."""

    pattern: str
    regex: "re.Pattern[str]"
    params: tuple[PathParam, ...]
    openapi_path: str
    static_segments: int
    # parameter names erased; equal shapes match the same paths
    shape: str

    @property
    def is_static(self) -> bool:
        return not self.params

    @property
    def has_wildcard(self) -> bool:
        return any(p.wildcard for p in self.params)

    def match(self, path: str) -> dict[str, str] | None:
        found = self.regex.match(path)
        if found is None:
            return None
        return {p.name: found.group(f"p{i}") for i, p in enumerate(self.params)}

    def sort_key(self) -> tuple[int, int, int]:
        return (int(self.has_wildcard), len(self.params), -self.static_segments)


def compile_pattern(pattern: str) -> CompiledPattern:
    """Compile *pattern*, raising ``ValueError`` on malformed input.

    Recognised segments: static text, ``:name``, ``{name}``, ``{name:int}``,
    ``{name:string}`` and a trailing ``*name`` or ``*`` wildcard.
    """

    pattern = normalize_path(pattern)
    segments = pattern.split("/")[1:]
    parts: list[str] = []
    docs: list[str] = []
    shape: list[str] = []
    params: list[PathParam] = []
    styles: set[str] = set()
    static = 0
    for index, segment in enumerate(segments):
        colon = _COLON.match(segment)
        brace = _BRACE.match(segment)
        wild = _WILDCARD.match(segment)
        if colon or brace:
            match = colon or brace
            assert match is not None
            styles.add("colon" if colon else "brace")
            name, kind = match.group(1), match.group(2) or "string"
            if kind not in PARAM_TYPES:
                raise ValueError(f"unsupported parameter type {kind!r} in {pattern!r}")
            param = PathParam(name, kind)
        elif wild:
            if index != len(segments) - 1:
                raise ValueError(f"wildcard must be the last segment in {pattern!r}")
            param = PathParam(wild.group(1) or "any", "string", wildcard=True)
        else:
            if any(ch in segment for ch in "{}*") or segment.startswith(":"):
                raise ValueError(f"malformed segment {segment!r} in {pattern!r}")
            parts.append(re.escape(segment))
            docs.append(segment)
            shape.append(segment)
            static += 1
            continue
        if any(p.name == param.name for p in params):
            raise ValueError(f"duplicate path parameter {param.name!r} in {pattern!r}")
        group = f"p{len(params)}"
        regex = ".*" if param.wildcard else PARAM_TYPES[param.type]
        parts.append(f"(?P<{group}>{regex})")
        docs.append(f"{{{param.name}}}")
        shape.append("*" if param.wildcard else f"{{{param.type}}}")
        params.append(param)
    if len(styles) > 1:
        raise ValueError(f"pattern {pattern!r} mixes ':name' and '{{name}}' parameters")
    return CompiledPattern(
        pattern=pattern,
        regex=re.compile("^/" + "/".join(parts) + "$"),
        params=tuple(params),
        openapi_path="/" + "/".join(docs),
        static_segments=static,
        shape="/" + "/".join(shape),
    )


@dataclass
class RouteDoc:
    """OpenAPI metadata of one route."""

    operation_id: str = ""
    summary: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    deprecated: bool = False
    hidden: bool = False
    request: Any = None
    response: Any = None
    responses: dict[int, Any] = field(default_factory=dict)
    security: list[dict[str, list[str]]] = field(default_factory=list)


class Route:
    """A registered ``(method, pattern)`` with its handler and chain."""

    def __init__(
        self,
        method: str,
        compiled: CompiledPattern,
        handler: HandlerFunc,
        middleware: Sequence[Middleware],
        group: "Group | None",
        doc: RouteDoc,
        name: str,
        table: "RouteTable",
    ) -> None:
        self.method = method
        self.compiled = compiled
        self.handler = handler
        self.middleware = tuple(middleware)
        self.group = group
        self.doc = doc
        self.name = name
        self.enabled = True
        self._table = table

    @property
    def pattern(self) -> str:
        return self.compiled.pattern

    @property
    def path(self) -> str:
        return self.compiled.pattern

    @property
    def active(self) -> bool:
        """``True`` when the route and every enclosing group are enabled."""

        return self.enabled and not (self.group is not None and self.group.disabled)

    def disable(self) -> "Route":
        self._table.set_enabled(self, False)
        return self

    def enable(self) -> "Route":
        self._table.set_enabled(self, True)
        return self

    def __repr__(self) -> str:
        state = "" if self.enabled else " disabled"
        return f"<Route {self.method} {self.pattern}{state}>"


@dataclass(frozen=True)
class Match:
    route: Route
    params: dict[str, str]


@dataclass(frozen=True)
class MethodNotAllowed:
    allowed: tuple[str, ...]


@dataclass(frozen=True)
class _Entry:
    compiled: CompiledPattern
    routes: tuple[Route, ...]


class RouteTable:
    """Registry of routes with revision tracking.

    Mutations happen under a lock and publish a fresh snapshot tuple;
    lookups read the current snapshot without locking.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._routes: list[Route] = []
        self._snapshot: tuple[_Entry, ...] = ()
        self.revision = 0

    def _publish(self) -> None:
        by_shape: dict[str, list[Route]] = {}
        compiled: dict[str, CompiledPattern] = {}
        for route in self._routes:
            by_shape.setdefault(route.compiled.shape, []).append(route)
            compiled.setdefault(route.compiled.shape, route.compiled)
        entries = [_Entry(compiled[shape], tuple(routes)) for shape, routes in by_shape.items()]
        entries.sort(key=lambda e: e.compiled.sort_key())
        self._snapshot = tuple(entries)
        self.revision += 1

    def register(
        self,
        method: str,
        pattern: str,
        handler: HandlerFunc,
        middleware: Sequence[Middleware] = (),
        group: "Group | None" = None,
        doc: RouteDoc | None = None,
        name: str = "",
    ) -> Route:
        method = method.upper()
        if method not in METHODS:
            raise ValueError(f"unsupported HTTP method {method!r}")
        compiled = compile_pattern(pattern)
        route = Route(
            method,
            compiled,
            handler,
            middleware,
            group,
            doc or RouteDoc(),
            name or getattr(handler, "__name__", ""),
            self,
        )
        with self._lock:
            for existing in self._routes:
                if existing.method != method:
                    continue
                same_doc_path = existing.compiled.openapi_path == compiled.openapi_path
                if same_doc_path or existing.compiled.shape == compiled.shape:
                    raise ValueError(
                        f"route {method} {compiled.pattern} conflicts with {existing.pattern}"
                    )
            self._routes.append(route)
            self._publish()
        _LOGGER.debug("route registered: %s %s", method, compiled.pattern)
        return route

    def set_enabled(self, route: Route, enabled: bool) -> None:
        with self._lock:
            if route.enabled != enabled:
                route.enabled = enabled
                self.revision += 1
        _LOGGER.debug("route %s %s %s", route.method, route.pattern, "enabled" if enabled else "disabled")

    def touch(self) -> None:
        """Bump the revision after a change outside the table (group flags)."""

        with self._lock:
            self.revision += 1

    def find(self, method: str, pattern: str) -> Route | None:
        shape = compile_pattern(pattern).shape
        for route in self._routes:
            if route.method == method.upper() and route.compiled.shape == shape:
                return route
        return None

    def disable(self, method: str, pattern: str) -> Route:
        route = self.find(method, pattern)
        if route is None:
            raise KeyError(f"{method} {pattern}")
        return route.disable()

    def enable(self, method: str, pattern: str) -> Route:
        route = self.find(method, pattern)
        if route is None:
            raise KeyError(f"{method} {pattern}")
        return route.enable()

    def routes(self) -> list[Route]:
        with self._lock:
            return list(self._routes)

    def lookup(self, method: str, path: str) -> Match | MethodNotAllowed | None:
        method = method.upper()
        allowed: list[str] = []
        for entry in self._snapshot:
            params = entry.compiled.match(path)
            if params is None:
                continue
            active = [r for r in entry.routes if r.active]
            for route in active:
                if route.method == method:
                    return Match(route, route.compiled.match(path) or params)
            if method == "HEAD":
                for route in active:
                    if route.method == "GET":
                        return Match(route, route.compiled.match(path) or params)
            for route in active:
                if route.method not in allowed:
                    allowed.append(route.method)
        if allowed:
            if "GET" in allowed and "HEAD" not in allowed:
                allowed.append("HEAD")
            return MethodNotAllowed(tuple(sorted(allowed)))
        return None

    def redirect_for(self, method: str, path: str) -> str | None:
        """Return the trailing-slash variant of *path* that is routable."""

        if path == "/":
            return None
        other = path[:-1] if path.endswith("/") else path + "/"
        if isinstance(self.lookup(method, other), Match):
            return other
        return None


class Registrar:
    """Verb shortcuts shared by :class:`Group` and the application."""

    def handle(
        self, method: str, path: str, handler: HandlerFunc, **options: Any
    ) -> Route:  # pragma: no cover - overridden
        raise NotImplementedError

    def get(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("GET", path, handler, **options)

    def post(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("POST", path, handler, **options)

    def put(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("PUT", path, handler, **options)

    def delete(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("DELETE", path, handler, **options)

    def patch(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("PATCH", path, handler, **options)

    def head(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("HEAD", path, handler, **options)

    def options(self, path: str, handler: HandlerFunc, **options: Any) -> Route:
        return self.handle("OPTIONS", path, handler, **options)

    def any(self, path: str, handler: HandlerFunc, **options: Any) -> list[Route]:
        """Register *handler* for every standard method."""

        return [self.handle(method, path, handler, **options) for method in METHODS]

    def route(self, method: str, path: str, **options: Any) -> Callable[[HandlerFunc], HandlerFunc]:
        """Decorator form of :meth:`handle`."""

        def decorator(fn: HandlerFunc) -> HandlerFunc:
            self.handle(method, path, fn, **options)
            return fn

        return decorator


def build_doc(
    *,
    operation_id: str = "",
    summary: str = "",
    description: str = "",
    tags: Iterable[str] = (),
    deprecated: bool = False,
    hidden: bool = False,
    request: Any = None,
    response: Any = None,
    responses: dict[int, Any] | None = None,
    security: Iterable[dict[str, list[str]]] = (),
) -> RouteDoc:
    return RouteDoc(
        operation_id=operation_id,
        summary=summary,
        description=description,
        tags=list(tags),
        deprecated=deprecated,
        hidden=hidden,
        request=request,
        response=response,
        responses=dict(responses or {}),
        security=list(security),
    )


def stamp_doc(doc: RouteDoc, handler: HandlerFunc) -> None:
    """Fill request/response types recorded on an adapted handler."""

    if doc.request is None:
        doc.request = getattr(handler, "__kudu_request__", None)
    if doc.response is None:
        doc.response = getattr(handler, "__kudu_response__", None)


class Group(Registrar):
    """Route group sharing a prefix, middleware, tags and security."""

    def __init__(
        self,
        app: "App",
        prefix: str = "",
        middleware: Sequence[Middleware] = (),
        parent: "Group | None" = None,
        *,
        tags: Iterable[str] = (),
        security: Iterable[dict[str, list[str]]] = (),
        deprecated: bool = False,
        disabled: bool = False,
    ) -> None:
        self.app = app
        self.prefix = normalize_path(prefix).rstrip("/") if prefix else ""
        self.middleware: list[Middleware] = list(middleware)
        self.parent = parent
        self.tags: list[str] = list(tags)
        self.security: list[dict[str, list[str]]] = list(security)
        self.deprecated = deprecated
        self._disabled = disabled

    @property
    def full_prefix(self) -> str:
        base = self.parent.full_prefix if self.parent is not None else ""
        return join_paths(base, self.prefix) if self.prefix else base

    @property
    def disabled(self) -> bool:
        if self._disabled:
            return True
        return self.parent.disabled if self.parent is not None else False

    def _chain(self) -> list["Group"]:
        chain: list[Group] = []
        node: Group | None = self
        while node is not None:
            chain.append(node)
            node = node.parent
        return list(reversed(chain))

    def use(self, *middleware: Middleware) -> "Group":
        self.middleware.extend(middleware)
        return self

    def group(self, prefix: str, *middleware: Middleware, **options: Any) -> "Group":
        return Group(self.app, prefix, middleware, parent=self, **options)

    def disable(self) -> "Group":
        self._disabled = True
        self.app.table.touch()
        return self

    def enable(self) -> "Group":
        self._disabled = False
        self.app.table.touch()
        return self

    def with_tags(self, *tags: str) -> "Group":
        self.tags.extend(tags)
        return self

    def with_security(self, *requirements: dict[str, list[str]]) -> "Group":
        self.security.extend(requirements)
        return self

    def with_bearer_auth(self) -> "Group":
        return self.with_security({"bearerAuth": []})

    def with_basic_auth(self) -> "Group":
        return self.with_security({"basicAuth": []})

    def deprecate(self) -> "Group":
        self.deprecated = True
        return self

    def handle(
        self,
        method: str,
        path: str,
        handler: HandlerFunc,
        *,
        middleware: Sequence[Middleware] = (),
        name: str = "",
        **doc_options: Any,
    ) -> Route:
        doc = build_doc(**doc_options)
        stamp_doc(doc, handler)
        chain = self._chain()
        tags: list[str] = []
        for node in chain:
            tags.extend(t for t in node.tags if t not in tags)
        doc.tags = tags + [t for t in doc.tags if t not in tags]
        if not doc.security:
            for node in chain:
                doc.security.extend(node.security)
        doc.deprecated = doc.deprecated or any(node.deprecated for node in chain)
        stack: list[Middleware] = []
        for node in chain:
            stack.extend(node.middleware)
        stack.extend(middleware)
        return self.app.table.register(
            method,
            join_paths(self.full_prefix, path),
            handler,
            stack,
            group=self,
            doc=doc,
            name=name,
        )

    def register(self, *definitions: "RouteDefinition") -> list[Route]:
        return [definition.register_on(self) for definition in definitions]


@dataclass
class RouteDefinition:
    """Declarative route description for bulk registration."""

    method: str
    path: str
    handler: HandlerFunc
    group: Group | None = None
    operation_id: str = ""
    summary: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    request: Any = None
    response: Any = None
    responses: dict[int, Any] = field(default_factory=dict)
    security: list[dict[str, list[str]]] = field(default_factory=list)
    middleware: list[Middleware] = field(default_factory=list)
    deprecated: bool = False
    hidden: bool = False

    def register_on(self, target: Registrar) -> Route:
        return target.handle(
            self.method,
            self.path,
            self.handler,
            middleware=self.middleware,
            operation_id=self.operation_id,
            summary=self.summary,
            description=self.description,
            tags=self.tags,
            request=self.request,
            response=self.response,
            responses=self.responses,
            security=self.security,
            deprecated=self.deprecated,
            hidden=self.hidden,
        )


def register_routes(app: "App", definitions: Iterable[RouteDefinition]) -> list[Route]:
    """Register each definition on its group, or on *app* when it has none."""

    return [
        definition.register_on(definition.group if definition.group is not None else app)
        for definition in definitions
    ]


__all__ = [
    "CompiledPattern",
    "Group",
    "HandlerFunc",
    "METHODS",
    "Match",
    "MethodNotAllowed",
    "Middleware",
    "PathParam",
    "Registrar",
    "Route",
    "RouteDefinition",
    "RouteDoc",
    "RouteTable",
    "build_doc",
    "compile_pattern",
    "join_paths",
    "normalize_path",
    "register_routes",
    "stamp_doc",
]
