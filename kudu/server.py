"""Threaded WSGI server used by :meth:`kudu.App.run`."""

from __future__ import annotations

import logging
import socket
import ssl
import sys
import threading
from socketserver import ThreadingMixIn
from typing import TYPE_CHECKING
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from .config import Config, TLSConfig, validate_addr

if TYPE_CHECKING:  # pragma: no cover
    from .app import App

_LOGGER = logging.getLogger("kudu.server")


class _Handler(WSGIRequestHandler):
    # socket timeout while waiting for the request line
    timeout: float | None = None
    # socket timeout once the request line has arrived
    io_timeout: float | None = None

    def parse_request(self) -> bool:
        self.connection.settimeout(self.io_timeout)
        return super().parse_request()

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        _LOGGER.debug("%s - %s", self.address_string(), format % args)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True
    allow_reuse_address = True

    def handle_error(self, request, client_address) -> None:
        exc = sys.exc_info()[1]
        if isinstance(exc, (TimeoutError, ConnectionError)):
            _LOGGER.debug("connection from %s closed: %r", client_address[0], exc)
            return
        _LOGGER.error("error handling request from %s", client_address[0], exc_info=exc)


class _IPv6Server(ThreadingWSGIServer):
    address_family = socket.AF_INET6


def tls_context(tls: TLSConfig) -> ssl.SSLContext:
    """Build a server-side TLS context, requiring client certificates if asked."""

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(tls.certfile, tls.keyfile)
    if tls.cafile:
        ctx.load_verify_locations(tls.cafile)
        ctx.verify_mode = ssl.CERT_REQUIRED if tls.client_auth else ssl.CERT_OPTIONAL
    elif tls.client_auth:
        raise ValueError("client_auth requires a cafile")
    return ctx


def make_server(app: "App", addr: str | None = None) -> ThreadingWSGIServer:
    """Bind a server for *app* without starting it."""

    config: Config = app.config
    if addr is None:
        host, port = config.listen_address()
    else:
        host, port = validate_addr(addr)
    server_cls = _IPv6Server if ":" in host else ThreadingWSGIServer
    io_timeout = max(config.read_timeout, config.write_timeout) or None
    handler = type(
        "_KuduHandler",
        (_Handler,),
        {"timeout": config.idle_timeout or io_timeout, "io_timeout": io_timeout},
    )
    httpd = server_cls((host, port), handler)
    httpd.set_app(app)
    if config.tls is not None:
        httpd.socket = tls_context(config.tls).wrap_socket(httpd.socket, server_side=True)
    return httpd


def serve(app: "App", addr: str | None = None) -> None:
    """Serve *app* in the foreground until interrupted."""

    httpd = make_server(app, addr)
    host, port = httpd.server_address[:2]
    scheme = "https" if app.config.tls is not None else "http"
    _LOGGER.info("listening on %s://%s:%s", scheme, host or "0.0.0.0", port)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        _LOGGER.info("shutting down")
    finally:
        httpd.server_close()


def serve_in_thread(app: "App", addr: str | None = None) -> ThreadingWSGIServer:
    """Start *app* on a daemon thread and return the running server."""

    httpd = make_server(app, addr)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    return httpd


__all__ = ["ThreadingWSGIServer", "make_server", "serve", "serve_in_thread", "tls_context"]
