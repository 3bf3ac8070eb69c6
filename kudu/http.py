"""WSGI request wrapper, uploaded files and the latching response writer."""

from __future__ import annotations

import io
import logging
import tempfile
from http.cookies import CookieError, SimpleCookie
from typing import IO, Any, Callable, Iterable, Mapping
from urllib.parse import parse_qs
from wsgiref.headers import Headers

from .errors import CodecError, status_text

_LOGGER = logging.getLogger("kudu")

DEFAULT_MAX_MULTIPART_MEMORY = 32 << 20

_MULTIPART = "multipart/form-data"
_CHUNK_SIZE = 64 << 10
_MAX_PART_HEADER = 16 << 10

StartResponse = Callable[..., Callable[[bytes], Any]]


def _parse_header(line: str) -> tuple[str, dict[str, str]]:
    """Split a ``Content-Type`` / ``Content-Disposition`` value into parts."""

    parts = [p.strip() for p in line.split(";") if p.strip()]
    value = parts[0].lower() if parts else ""
    params: dict[str, str] = {}
    for item in parts[1:]:
        if "=" in item:
            k, v = item.split("=", 1)
            params[k.strip().lower()] = v.strip().strip('"')
    return value, params


def media_type(content_type: str) -> str:
    """Return the bare media type of a ``Content-Type`` header."""

    return _parse_header(content_type)[0]


class UploadFile:
    """File part of a multipart request."""

    def __init__(
        self,
        filename: str,
        content_type: str,
        file: IO[bytes],
        size: int,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.filename = filename
        self.content_type = content_type
        self.file = file
        self.size = size
        self.headers = dict(headers or {})

    def read(self, size: int = -1) -> bytes:
        return self.file.read(size)

    def seek(self, offset: int) -> None:
        self.file.seek(offset)

    @property
    def content(self) -> bytes:
        """Return the whole file, leaving the cursor at the start."""

        self.file.seek(0)
        data = self.file.read()
        self.file.seek(0)
        return data

    def close(self) -> None:
        self.file.close()

    def __repr__(self) -> str:
        return f"UploadFile(filename={self.filename!r}, size={self.size})"


class _MultipartReader:
    """Incremental ``multipart/form-data`` reader over a WSGI input stream.

    Part bodies are handed to a sink in chunks; at most one read chunk plus
    a delimiter's worth of bytes is buffered at any time.
    """

    def __init__(self, stream: IO[bytes], length: int, boundary: bytes) -> None:
        self.stream = stream
        self.remaining = length
        self.delimiter = b"\r\n--" + boundary
        # the first delimiter is not preceded by CRLF
        self.buffer = bytearray(b"\r\n")

    def _fill(self) -> bool:
        if self.remaining <= 0:
            return False
        chunk = self.stream.read(min(_CHUNK_SIZE, self.remaining))
        if not chunk:
            self.remaining = 0
            return False
        self.remaining -= len(chunk)
        self.buffer += chunk
        return True

    def _need(self, size: int) -> None:
        while len(self.buffer) < size:
            if not self._fill():
                raise CodecError(_MULTIPART, "unexpected end of body")

    def start(self) -> None:
        """Skip the preamble up to the first delimiter."""

        keep = len(self.delimiter) - 1
        while True:
            index = self.buffer.find(self.delimiter)
            if index >= 0:
                del self.buffer[: index + len(self.delimiter)]
                return
            if len(self.buffer) > keep:
                del self.buffer[:-keep]
            if not self._fill():
                raise CodecError(_MULTIPART, "no parts found")

    def next_part(self) -> dict[str, str] | None:
        """Return the headers of the next part, or ``None`` after the last one."""

        self._need(2)
        if self.buffer[:2] == b"--":
            return None
        if self.buffer[:2] != b"\r\n":
            raise CodecError(_MULTIPART, "malformed delimiter")
        while True:
            end = self.buffer.find(b"\r\n\r\n")
            if end >= 0:
                break
            if len(self.buffer) > _MAX_PART_HEADER:
                raise CodecError(_MULTIPART, "part headers too large")
            if not self._fill():
                raise CodecError(_MULTIPART, "malformed part")
        head = bytes(self.buffer[2:end])
        del self.buffer[: end + 4]
        headers: dict[str, str] = {}
        for line in head.decode("utf-8", "replace").split("\r\n"):
            if ":" in line:
                key, value = line.split(":", 1)
                headers[key.strip().lower()] = value.strip()
        return headers

    def read_body(self, write: Callable[[bytes], Any], limit: int | None = None) -> int:
        """Copy the current part body to *write* and return its size.

        Raises ``CodecError`` once more than *limit* bytes have been copied.
        """

        size = 0
        keep = len(self.delimiter) - 1
        while True:
            index = self.buffer.find(self.delimiter)
            if index >= 0:
                ready, done = index, True
            else:
                ready, done = max(len(self.buffer) - keep, 0), False
            if ready:
                size += ready
                if limit is not None and size > limit:
                    raise CodecError(_MULTIPART, f"form values exceed {limit} bytes")
                write(bytes(self.buffer[:ready]))
                del self.buffer[:ready]
            if done:
                del self.buffer[: len(self.delimiter)]
                return size
            if not self._fill():
                raise CodecError(_MULTIPART, "unexpected end of body")


class Request:
    """Represent an incoming HTTP request backed by a WSGI environ."""

    def __init__(
        self,
        environ: dict[str, Any],
        max_multipart_memory: int = DEFAULT_MAX_MULTIPART_MEMORY,
    ) -> None:
        self.environ = environ
        self.method = str(environ.get("REQUEST_METHOD", "GET")).upper()
        raw_path = environ.get("PATH_INFO") or "/"
        # PEP 3333 hands the path over as latin-1 decoded bytes
        self.path = raw_path.encode("latin-1").decode("utf-8", "replace")
        self.query_string = environ.get("QUERY_STRING", "")
        self.scheme = environ.get("wsgi.url_scheme", "http")
        self.remote_addr = environ.get("REMOTE_ADDR", "")
        self.max_multipart_memory = max_multipart_memory
        headers: dict[str, str] = {}
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                headers[key[5:].replace("_", "-").lower()] = value
        if environ.get("CONTENT_TYPE"):
            headers["content-type"] = environ["CONTENT_TYPE"]
        if environ.get("CONTENT_LENGTH"):
            headers["content-length"] = environ["CONTENT_LENGTH"]
        self.headers = headers
        self.query_params: dict[str, list[str]] = parse_qs(
            self.query_string, keep_blank_values=True
        )
        self._body: bytes | None = None
        self._cookies: dict[str, str] | None = None
        self._form: dict[str, list[str]] | None = None
        self._files: dict[str, list[UploadFile]] | None = None

    @property
    def host(self) -> str:
        return self.headers.get("host") or self.environ.get("SERVER_NAME", "")

    @property
    def url(self) -> str:
        query = f"?{self.query_string}" if self.query_string else ""
        return f"{self.scheme}://{self.host}{self.path}{query}"

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def content_length(self) -> int | None:
        raw = self.headers.get("content-length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def body(self) -> bytes:
        """Return the request body, reading it once from ``wsgi.input``.

        A multipart body parsed by :meth:`form` or :meth:`files` is streamed
        into its parts and is not kept; ``body()`` then returns ``b""``.
        """

        if self._body is None:
            stream = self.environ.get("wsgi.input")
            length = self.content_length or 0
            self._body = stream.read(length) if stream is not None and length > 0 else b""
        return self._body

    @property
    def cookies(self) -> dict[str, str]:
        """Lazily parse cookies from the request headers."""

        if self._cookies is None:
            jar: SimpleCookie = SimpleCookie()
            try:
                jar.load(self.headers.get("cookie", ""))
            except CookieError:
                _LOGGER.debug("ignoring malformed cookie header")
            self._cookies = {k: morsel.value for k, morsel in jar.items()}
        return self._cookies

    def form(self) -> dict[str, list[str]]:
        """Return urlencoded or multipart form fields."""

        if self._form is None:
            self._parse_form()
        return self._form or {}

    def files(self) -> dict[str, list[UploadFile]]:
        """Return uploaded files parsed from a multipart body."""

        if self._files is None:
            self._parse_form()
        return self._files or {}

    def _parse_form(self) -> None:
        ctype, params = _parse_header(self.content_type)
        self._form = {}
        self._files = {}
        if ctype == "application/x-www-form-urlencoded":
            text = self.body().decode("utf-8", "replace")
            self._form = parse_qs(text, keep_blank_values=True)
        elif ctype == "multipart/form-data":
            boundary = params.get("boundary", "")
            if not boundary:
                raise CodecError(ctype, "missing multipart boundary")
            self._parse_multipart(boundary.encode("latin-1"))

    def _parse_multipart(self, boundary: bytes) -> None:
        assert self._form is not None and self._files is not None
        if self._body is not None:
            stream: IO[bytes] = io.BytesIO(self._body)
            length = len(self._body)
        else:
            stream = self.environ.get("wsgi.input") or io.BytesIO()
            length = self.content_length or 0
            # the body is consumed part by part below
            self._body = b""
        reader = _MultipartReader(stream, length, boundary)
        reader.start()
        budget = self.max_multipart_memory
        while True:
            part_headers = reader.next_part()
            if part_headers is None:
                break
            _, disp = _parse_header(part_headers.get("content-disposition", ""))
            name = disp.get("name", "")
            filename = disp.get("filename")
            if filename is None:
                value = bytearray()
                budget -= reader.read_body(value.extend, limit=budget)
                self._form.setdefault(name, []).append(value.decode("utf-8", "replace"))
                continue
            in_memory = max(budget, 1)
            spool = tempfile.SpooledTemporaryFile(max_size=in_memory)
            try:
                size = reader.read_body(spool.write)
            except CodecError:
                spool.close()
                raise
            spool.seek(0)
            if size <= in_memory:
                budget -= size
            upload = UploadFile(
                filename=filename,
                content_type=part_headers.get("content-type", "application/octet-stream"),
                file=spool,
                size=size,
                headers=part_headers,
            )
            self._files.setdefault(name, []).append(upload)

    def close(self) -> None:
        for uploads in (self._files or {}).values():
            for upload in uploads:
                upload.close()


def status_line(code: int) -> str:
    return f"{code} {status_text(code) or 'Unknown'}"


class ResponseWriter:
    """Accumulate a response and hand it to the WSGI server.

    Status and headers latch at the first body write or flush. Changes after
    that point are ignored and logged.
    """

    def __init__(self, start_response: StartResponse) -> None:
        self._start_response = start_response
        self._headers = Headers([])
        self._buffer: list[bytes] = []
        self._write: Callable[[bytes], Any] | None = None
        self.status_code = 0
        self.committed = False
        self.size = 0
        # HEAD responses keep their headers but drop body bytes
        self.discard_body = False

    @property
    def headers(self) -> Headers:
        return self._headers

    @property
    def status(self) -> int:
        return self.status_code or 200

    @property
    def written(self) -> bool:
        """``True`` once a status or body byte has been produced."""

        return self.committed or self.status_code != 0

    def _late(self, what: str) -> bool:
        if self.committed:
            _LOGGER.warning("%s ignored: response headers already sent", what)
            return True
        return False

    def set_header(self, key: str, value: str) -> None:
        if not self._late(f"set header {key}"):
            self._headers[key] = value

    def add_header(self, key: str, value: str) -> None:
        if not self._late(f"add header {key}"):
            self._headers.add_header(key, value)

    def setdefault_header(self, key: str, value: str) -> None:
        if not self._late(f"set header {key}"):
            self._headers.setdefault(key, value)

    def del_header(self, key: str) -> None:
        if not self._late(f"delete header {key}"):
            del self._headers[key]

    def get_header(self, key: str, default: str | None = None) -> str | None:
        return self._headers.get(key, default)

    def write_header(self, code: int) -> None:
        """Record the status code; only the first call takes effect."""

        if self.committed or self.status_code:
            _LOGGER.warning("superfluous write_header(%d) call", code)
            return
        self.status_code = code

    def _commit(self) -> None:
        if self.committed:
            return
        self.committed = True
        self._write = self._start_response(
            status_line(self.status), list(self._headers.items())
        )

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._commit()
        if data:
            if not self.discard_body:
                self._buffer.append(data)
            self.size += len(data)
        return len(data)

    def flush(self) -> None:
        """Push buffered bytes to the client immediately."""

        self._commit()
        if self._write is None:
            return
        chunks, self._buffer = self._buffer, []
        for chunk in chunks:
            self._write(chunk)

    def finish(self) -> Iterable[bytes]:
        """Commit the response and return the remaining body chunks."""

        self._commit()
        chunks, self._buffer = self._buffer, []
        return chunks


__all__ = [
    "DEFAULT_MAX_MULTIPART_MEMORY",
    "Request",
    "ResponseWriter",
    "StartResponse",
    "UploadFile",
    "media_type",
    "status_line",
]
