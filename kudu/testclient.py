"""Simple in-memory HTTP client for kudu applications."""

from __future__ import annotations

import io
import json
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping
from urllib.parse import urlencode
from wsgiref.headers import Headers

from .app import App

FileSpec = tuple  # (filename, content) or (filename, content, content_type)


@dataclass
class Response:
    """Container for HTTP response data."""

    status_code: int
    text: str
    headers: Headers
    content: bytes
    chunks: list[bytes]

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.text)


def _as_pairs(values: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in (values or {}).items():
        if isinstance(value, (list, tuple)):
            pairs.extend((key, str(v)) for v in value)
        else:
            pairs.append((key, str(value)))
    return pairs


def encode_multipart(
    fields: Mapping[str, Any] | None, files: Mapping[str, FileSpec | list[FileSpec]]
) -> tuple[bytes, str]:
    """Return a multipart body and its ``Content-Type`` header."""

    boundary = uuid.uuid4().hex
    out = io.BytesIO()
    for name, value in _as_pairs(fields):
        out.write(f"--{boundary}\r\n".encode())
        out.write(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode())
        out.write(value.encode("utf-8"))
        out.write(b"\r\n")
    for name, spec in files.items():
        specs = spec if isinstance(spec, list) else [spec]
        for item in specs:
            filename, content = item[0], item[1]
            content_type = item[2] if len(item) > 2 else "application/octet-stream"
            if isinstance(content, str):
                content = content.encode("utf-8")
            out.write(f"--{boundary}\r\n".encode())
            out.write(
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'.encode()
            )
            out.write(f"Content-Type: {content_type}\r\n\r\n".encode())
            out.write(content)
            out.write(b"\r\n")
    out.write(f"--{boundary}--\r\n".encode())
    return out.getvalue(), f"multipart/form-data; boundary={boundary}"


class TestClient:
    """Execute requests against an ``App`` without a server."""

    __test__ = False  # prevent Pytest from treating this as a test case

    def __init__(self, app: App, base_url: str = "http://testserver") -> None:
        self.app = app
        scheme, _, host = base_url.partition("://")
        self.scheme = scheme or "http"
        self.host = host or "testserver"
        self.cookies: dict[str, str] = {}

    def _environ(
        self, method: str, path: str, query: str, headers: Mapping[str, str], body: bytes
    ) -> dict[str, Any]:
        environ: dict[str, Any] = {
            "REQUEST_METHOD": method.upper(),
            # PEP 3333 expects the path as latin-1 decoded bytes
            "PATH_INFO": path.encode("utf-8").decode("latin-1"),
            "QUERY_STRING": query,
            "SERVER_NAME": self.host,
            "SERVER_PORT": "443" if self.scheme == "https" else "80",
            "SERVER_PROTOCOL": "HTTP/1.1",
            "REMOTE_ADDR": "127.0.0.1",
            "wsgi.version": (1, 0),
            "wsgi.url_scheme": self.scheme,
            "wsgi.input": io.BytesIO(body),
            "wsgi.errors": io.StringIO(),
            "wsgi.multithread": False,
            "wsgi.multiprocess": False,
            "wsgi.run_once": False,
            "HTTP_HOST": self.host,
        }
        if body:
            environ["CONTENT_LENGTH"] = str(len(body))
        for key, value in headers.items():
            name = key.upper().replace("-", "_")
            if name == "CONTENT_TYPE":
                environ["CONTENT_TYPE"] = value
            elif name == "CONTENT_LENGTH":
                environ["CONTENT_LENGTH"] = value
            else:
                environ["HTTP_" + name] = value
        return environ

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, FileSpec | list[FileSpec]] | None = None,
        body: bytes | str | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        cookies: Mapping[str, str] | None = None,
    ) -> Response:
        """Send an HTTP request and return the response."""
        if json_body is not None and (body is not None or data is not None or files):
            raise ValueError("json_body cannot be combined with data, files or body")
        if body is not None and (data is not None or files):
            raise ValueError("body cannot be combined with data or files")
        request_headers = dict(headers or {})
        lowered = {k.lower() for k in request_headers}
        if json_body is not None:
            payload = json.dumps(json_body).encode()
            if "content-type" not in lowered:
                request_headers["Content-Type"] = "application/json"
        elif files:
            payload, content_type = encode_multipart(data, files)
            request_headers["Content-Type"] = content_type
        elif data is not None:
            payload = urlencode(_as_pairs(data)).encode()
            if "content-type" not in lowered:
                request_headers["Content-Type"] = "application/x-www-form-urlencoded"
        elif isinstance(body, str):
            payload = body.encode("utf-8")
        else:
            payload = body or b""
        jar = dict(self.cookies)
        jar.update(cookies or {})
        if jar and "cookie" not in lowered:
            request_headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in jar.items())
        path, _, inline_query = path.partition("?")
        query = "&".join(q for q in (inline_query, urlencode(_as_pairs(params))) if q)

        captured: dict[str, Any] = {}
        streamed: list[bytes] = []

        def start_response(status: str, response_headers: list[tuple[str, str]], exc_info=None):
            captured["status"] = status
            captured["headers"] = response_headers
            return streamed.append

        result: Iterable[bytes] = self.app(
            self._environ(method, path, query, request_headers, payload), start_response
        )
        try:
            chunks = streamed + [chunk for chunk in result if chunk]
        finally:
            close = getattr(result, "close", None)
            if close is not None:
                close()
        content = b"".join(chunks)
        try:
            text = content.decode()
        except UnicodeDecodeError:
            text = content.decode("latin1")
        response_headers = Headers(list(captured.get("headers", [])))
        for value in response_headers.get_all("Set-Cookie"):
            name, _, rest = value.partition("=")
            self.cookies[name.strip()] = rest.split(";", 1)[0]
        status_code = int(str(captured.get("status", "500")).split(" ", 1)[0])
        return Response(status_code, text, response_headers, content, chunks)

    def get(self, path: str, **kwargs: Any) -> Response:
        """Send a GET request."""
        return self.request("GET", path, **kwargs)

    def post(self, path: str, json_body: Any = None, **kwargs: Any) -> Response:
        """Send a POST request."""
        return self.request("POST", path, json_body=json_body, **kwargs)

    def put(self, path: str, json_body: Any = None, **kwargs: Any) -> Response:
        return self.request("PUT", path, json_body=json_body, **kwargs)

    def patch(self, path: str, json_body: Any = None, **kwargs: Any) -> Response:
        return self.request("PATCH", path, json_body=json_body, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Response:
        return self.request("DELETE", path, **kwargs)

    def head(self, path: str, **kwargs: Any) -> Response:
        """Send a HEAD request."""
        return self.request("HEAD", path, **kwargs)

    def options(self, path: str, **kwargs: Any) -> Response:
        return self.request("OPTIONS", path, **kwargs)


__all__ = ["Response", "TestClient", "encode_multipart"]
