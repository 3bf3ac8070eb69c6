"""Built-in middleware.

A middleware is any callable ``(ctx, call_next) -> None``. Calling
``call_next()`` runs the rest of the chain; not calling it short-circuits.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Callable

from .config import Cors
from .errors import classify

if TYPE_CHECKING:  # pragma: no cover
    from .context import Context

CallNext = Callable[[], None]

REQUEST_ID_KEY = "request_id"


class CORSMiddleware:
    """Apply CORS headers and answer preflight requests."""

    def __init__(self, cors: Cors) -> None:
        self.cors = cors

    def __call__(self, ctx: "Context", call_next: CallNext) -> None:
        origin = ctx.header("Origin")
        if not origin or not self.cors.allows(origin):
            call_next()
            return
        cors = self.cors
        response = ctx.response
        response.set_header("Access-Control-Allow-Origin", origin)
        response.add_header("Vary", "Origin")
        if cors.allow_credentials:
            response.set_header("Access-Control-Allow-Credentials", "true")
        if cors.allowed_headers:
            response.set_header("Access-Control-Allow-Headers", ", ".join(cors.allowed_headers))
        elif ctx.header("Access-Control-Request-Headers"):
            response.set_header(
                "Access-Control-Allow-Headers", ctx.header("Access-Control-Request-Headers")
            )
        if cors.allow_methods:
            response.set_header("Access-Control-Allow-Methods", ", ".join(cors.allow_methods))
        elif ctx.header("Access-Control-Request-Method"):
            response.set_header(
                "Access-Control-Allow-Methods", ctx.header("Access-Control-Request-Method")
            )
        if cors.expose_headers:
            response.set_header("Access-Control-Expose-Headers", ", ".join(cors.expose_headers))
        if cors.max_age > 0:
            response.set_header("Access-Control-Max-Age", str(cors.max_age))
        if ctx.request.method == "OPTIONS":
            ctx.no_content()
            return
        call_next()


class RequestLoggerMiddleware:
    """Emit one compact JSON access log line per request."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        level: int = logging.INFO,
    ) -> None:
        self.logger = logger or logging.getLogger("kudu.request")
        self.level = level

    def _ensure_request_id(self, ctx: "Context") -> str:
        request_id = ctx.get(REQUEST_ID_KEY)
        if not request_id:
            request_id = ctx.header("X-Request-ID") or uuid.uuid4().hex
            ctx.set(REQUEST_ID_KEY, request_id)
        return request_id

    def __call__(self, ctx: "Context", call_next: CallNext) -> None:
        if ctx.is_sse() or ctx.is_websocket_upgrade():
            call_next()
            return
        start = time.perf_counter()
        try:
            call_next()
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            payload = self._payload(ctx, duration_ms)
            payload["status"] = classify(exc)[0]
            payload["error"] = f"{exc.__class__.__name__}: {exc}"
            self.logger.log(self.level, json.dumps(payload, separators=(",", ":")))
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        payload = self._payload(ctx, duration_ms)
        payload["status"] = ctx.response.status
        self.logger.log(self.level, json.dumps(payload, separators=(",", ":")))

    def _payload(self, ctx: "Context", duration_ms: float) -> dict[str, object]:
        return {
            "event": "request",
            "method": ctx.request.method,
            "path": ctx.request.path,
            "route": ctx.route.pattern if ctx.route is not None else ctx.request.path,
            "duration_ms": round(duration_ms, 3),
            "client_ip": ctx.real_ip(),
            "request_id": self._ensure_request_id(ctx),
            "user_agent": ctx.header("User-Agent"),
            "referer": ctx.referer(),
        }


class BodyLimit:
    """Reject requests whose declared body exceeds *max_bytes* with 413."""

    def __init__(self, max_bytes: int) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = max_bytes

    def __call__(self, ctx: "Context", call_next: CallNext) -> None:
        length = ctx.request.content_length
        if length is not None and length > self.max_bytes:
            ctx.abort_request_entity_too_large(
                f"request body exceeds {self.max_bytes} bytes"
            )
            return
        call_next()


class Recovery:
    """Turn exceptions raised further down the chain into error responses.

    Exceptions go through :meth:`App.handle_exception`, so registered
    exception handlers and ``HTTPError`` headers apply.
    """

    def __call__(self, ctx: "Context", call_next: CallNext) -> None:
        try:
            call_next()
        except Exception as exc:
            ctx.app.handle_exception(ctx, exc)


__all__ = [
    "BodyLimit",
    "CORSMiddleware",
    "CallNext",
    "REQUEST_ID_KEY",
    "Recovery",
    "RequestLoggerMiddleware",
]
