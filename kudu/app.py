"""The application object: registration surface, dispatch and error pipeline."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Sequence

from . import codecs
from .config import Config, Cors
from .context import Context
from .errors import (
    ErrorHandler,
    ErrorHandlerConfig,
    HTTPError,
    classify,
    default_error_handler,
    problem_detail_error_handler,
)
from .http import Request, ResponseWriter, StartResponse
from .middleware import CORSMiddleware, RequestLoggerMiddleware
from .openapi import OpenAPISynthesizer, install_doc_routes
from .routing import (
    Group,
    HandlerFunc,
    Match,
    MethodNotAllowed,
    Middleware,
    Registrar,
    Route,
    RouteDefinition,
    RouteTable,
    build_doc,
    register_routes,
    stamp_doc,
)

ExceptionHandler = Callable[[Context, Exception], None]


def run_chain(
    ctx: Context,
    chain: Sequence[Middleware],
    handler: HandlerFunc,
    on_error: ExceptionHandler | None = None,
) -> None:
    """Invoke *chain* in order around *handler*.

    With *on_error*, an exception raised below a middleware is rendered
    before ``call_next`` returns, so every enclosing middleware still runs
    its exit phase.
    """

    def call(index: int) -> None:
        if index == len(chain):
            handler(ctx)
            return
        chain[index](ctx, lambda: call_next(index + 1))

    def call_next(index: int) -> None:
        if on_error is None:
            call(index)
            return
        try:
            call(index)
        except Exception as exc:
            on_error(ctx, exc)

    call(0)


def _not_found(ctx: Context) -> None:
    ctx.abort_not_found()


class App(Registrar):
    """A WSGI application with typed routes and a generated OpenAPI document."""

    def __init__(self, config: Config | None = None, **options: Any) -> None:
        self.config = config or Config(**options)
        self.logger = self.config.logger or logging.getLogger("kudu")
        if self.config.debug:
            self.logger.setLevel(logging.DEBUG)
        self.table = RouteTable()
        self.middleware: list[Middleware] = []
        self.exception_handlers: dict[type, ExceptionHandler] = {}
        self.openapi = OpenAPISynthesizer(self)
        request_logger = (
            self.config.logger.getChild("request") if self.config.logger is not None else None
        )
        self._access_log = RequestLoggerMiddleware(request_logger)
        self._cors = CORSMiddleware(self.config.cors) if self.config.cors else None
        install_doc_routes(self)

    # registration

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
        return self.table.register(method, path, handler, middleware, None, doc, name)

    def group(self, prefix: str, *middleware: Middleware, **options: Any) -> Group:
        return Group(self, prefix, middleware, **options)

    def register(self, *definitions: RouteDefinition) -> list[Route]:
        return register_routes(self, definitions)

    def register_many(self, definitions: Iterable[RouteDefinition]) -> list[Route]:
        return register_routes(self, definitions)

    def use(self, *middleware: Middleware) -> "App":
        self.middleware.extend(middleware)
        return self

    def routes(self) -> list[Route]:
        return self.table.routes()

    def disable(self, method: str, path: str) -> Route:
        return self.table.disable(method, path)

    def enable(self, method: str, path: str) -> Route:
        return self.table.enable(method, path)

    def add_exception_handler(self, exc_type: type[Exception], handler: ExceptionHandler) -> None:
        """Register a custom *handler* for exceptions of type *exc_type*."""

        self.exception_handlers[exc_type] = handler

    def _lookup_handler(self, exc: Exception) -> ExceptionHandler | None:
        for cls in type(exc).__mro__:
            if cls in self.exception_handlers:
                return self.exception_handlers[cls]
        return None

    # configuration helpers

    def with_error_handler(self, handler: ErrorHandler) -> "App":
        self.config.error_handler = handler
        return self

    def with_problem_details(self, config: ErrorHandlerConfig | None = None) -> "App":
        return self.with_error_handler(problem_detail_error_handler(config))

    def with_cors(self, cors: Cors) -> "App":
        self.config.cors = cors
        self._cors = CORSMiddleware(cors)
        return self

    def with_security_scheme(self, name: str, scheme: dict[str, Any]) -> "App":
        self.config.openapi.security_schemes[name] = scheme
        self.openapi.invalidate()
        return self

    def with_openapi(self, **overrides: Any) -> "App":
        """Override document metadata such as ``title`` or ``servers``."""

        for key, value in overrides.items():
            if not hasattr(self.config.openapi, key):
                raise AttributeError(f"unknown OpenAPI option {key!r}")
            setattr(self.config.openapi, key, value)
        self.openapi.invalidate()
        return self

    def encode_json(self, value: Any) -> bytes:
        return codecs.encode_json(value)

    # dispatch

    def _builtin_chain(self) -> list[Middleware]:
        chain: list[Middleware] = []
        if self.config.access_log:
            chain.append(self._access_log)
        if self._cors is not None:
            chain.append(self._cors)
        return chain

    def handle_error(
        self, ctx: Context, code: int, message: str, err: BaseException | None
    ) -> None:
        """Render an error through the configured error handler."""

        if ctx.response.committed:
            self.logger.warning(
                "cannot write %d error for %s %s: response already started",
                code,
                ctx.request.method,
                ctx.request.path,
            )
            return
        # an error replaces any status recorded before the failure
        ctx.response.status_code = 0
        handler = self.config.error_handler or default_error_handler
        handler(ctx, code, message, err)

    def handle_exception(self, ctx: Context, exc: Exception) -> None:
        """Render *exc* through a registered exception handler or the error pipeline."""

        custom = self._lookup_handler(exc)
        if custom is not None:
            custom(ctx, exc)
            return
        code, message = classify(exc)
        if code >= 500 and not isinstance(exc, HTTPError):
            self.logger.error(
                "unhandled exception in %s %s", ctx.request.method, ctx.request.path, exc_info=exc
            )
        if isinstance(exc, HTTPError):
            for key, value in exc.headers.items():
                ctx.response.set_header(key, value)
        self.handle_error(ctx, code, message, exc)

    def dispatch(self, ctx: Context) -> None:
        request = ctx.request
        result = self.table.lookup(request.method, request.path)
        if result is None and self.config.strict_slash:
            target = self.table.redirect_for(request.method, request.path)
            if target is not None:
                query = f"?{request.query_string}" if request.query_string else ""
                ctx.redirect(301, target + query)
                return
        chain = self._builtin_chain() + list(self.middleware)
        handler: HandlerFunc
        if isinstance(result, Match):
            ctx.route = result.route
            ctx.path_params = dict(result.params)
            chain.extend(result.route.middleware)
            handler = result.route.handler
        elif isinstance(result, MethodNotAllowed):
            allowed = ", ".join(result.allowed)

            def handler(ctx: Context) -> None:
                ctx.response.set_header("Allow", allowed)
                ctx.abort_method_not_allowed()

        else:
            handler = _not_found
        try:
            run_chain(ctx, chain, handler, self.handle_exception)
        except Exception as exc:
            self.handle_exception(ctx, exc)

    def __call__(self, environ: dict[str, Any], start_response: StartResponse) -> Iterable[bytes]:
        request = Request(environ, self.config.max_multipart_memory)
        writer = ResponseWriter(start_response)
        if request.method == "HEAD":
            writer.discard_body = True
        ctx = Context(self, request, writer)
        try:
            self.dispatch(ctx)
            return writer.finish()
        finally:
            request.close()

    def run(self, addr: str | None = None) -> None:
        """Serve the application until interrupted."""

        from .server import serve

        serve(self, addr)


__all__ = ["App", "ExceptionHandler", "run_chain"]
