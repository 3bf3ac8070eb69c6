"""Serving an application over a real socket."""

import json
import socket
import time
import urllib.request

from kudu import App, Context
from kudu.server import make_server, serve_in_thread


def test_serve_in_thread() -> None:
    app = App(access_log=False, addr="127.0.0.1:0", read_timeout=5)

    def hello(ctx: Context) -> None:
        ctx.ok({"hello": ctx.query("name")})

    app.get("/hello", hello)
    httpd = serve_in_thread(app)
    try:
        host, port = httpd.server_address[:2]
        with urllib.request.urlopen(f"http://{host}:{port}/hello?name=kudu", timeout=5) as resp:
            assert resp.status == 200
            assert json.loads(resp.read()) == {"hello": "kudu"}
    finally:
        httpd.shutdown()
        httpd.server_close()


def test_timeouts_reach_the_request_handler() -> None:
    app = App(
        access_log=False, addr="127.0.0.1:0", read_timeout=5, write_timeout=7, idle_timeout=2
    )
    httpd = make_server(app)
    try:
        assert httpd.RequestHandlerClass.timeout == 2
        assert httpd.RequestHandlerClass.io_timeout == 7
    finally:
        httpd.server_close()
    plain = make_server(App(access_log=False, addr="127.0.0.1:0", read_timeout=3))
    try:
        assert plain.RequestHandlerClass.timeout == 3
        assert plain.RequestHandlerClass.io_timeout == 3
    finally:
        plain.server_close()


def test_idle_connections_are_closed() -> None:
    app = App(access_log=False, addr="127.0.0.1:0", read_timeout=5, idle_timeout=0.2)
    httpd = serve_in_thread(app)
    try:
        host, port = httpd.server_address[:2]
        with socket.create_connection((host, port), timeout=5) as conn:
            started = time.monotonic()
            assert conn.recv(1) == b""
            assert time.monotonic() - started < 4
    finally:
        httpd.shutdown()
        httpd.server_close()
