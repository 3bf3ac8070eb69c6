"""Server-Sent Events messages and serializers."""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from .codecs import encode_json

if TYPE_CHECKING:  # pragma: no cover
    from .http import ResponseWriter

EVENT_STREAM = "text/event-stream"


class Serializer(Protocol):
    def serialize(self, data: Any) -> str: ...


class JSONSerializer:
    """Compact JSON, the default for structured payloads."""

    def serialize(self, data: Any) -> str:
        return encode_json(data).decode("utf-8")


class TextSerializer:
    def serialize(self, data: Any) -> str:
        return str(data)


class Base64Serializer:
    def serialize(self, data: Any) -> str:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("base64 serializer requires bytes data")
        return base64.b64encode(bytes(data)).decode("ascii")


def new_event_id() -> str:
    return uuid.uuid4().hex


def prepare_stream(writer: "ResponseWriter") -> None:
    """Set the event-stream headers unless the response already has them."""

    if writer.committed:
        return
    writer.set_header("Content-Type", EVENT_STREAM)
    writer.setdefault_header("Cache-Control", "no-cache")


@dataclass
class Message:
    """One SSE message."""

    data: Any = None
    event: str = ""
    id: str = ""
    retry: int = 0
    serializer: Serializer | None = None

    def _payload(self) -> str:
        data = self.data
        if self.serializer is not None:
            return self.serializer.serialize(data)
        if isinstance(data, str):
            return data
        if isinstance(data, (bytes, bytearray)):
            return bytes(data).decode("utf-8", "replace")
        if hasattr(data, "read"):
            chunk = data.read()
            return chunk.decode("utf-8", "replace") if isinstance(chunk, bytes) else str(chunk)
        return encode_json(data).decode("utf-8")

    def encode(self) -> bytes:
        """Render the message in the event-stream line protocol."""

        if not self.id:
            self.id = new_event_id()
        lines: list[str] = []
        if self.id:
            lines.append(f"id: {self.id}\n")
        if self.event:
            lines.append(f"event: {self.event}\n")
        if self.retry > 0:
            lines.append(f"retry: {self.retry}\n")
        if self.data is None:
            lines.append("data: \n")
        else:
            lines.extend(f"data: {line}\n" for line in self._payload().split("\n"))
        lines.append("\n")
        return "".join(lines).encode("utf-8")

    def send(self, writer: "ResponseWriter") -> str:
        """Write the message to *writer*, flush, and return its id."""

        prepare_stream(writer)
        writer.write(self.encode())
        writer.flush()
        return self.id


__all__ = [
    "Base64Serializer",
    "EVENT_STREAM",
    "JSONSerializer",
    "Message",
    "Serializer",
    "TextSerializer",
    "new_event_id",
    "prepare_stream",
]
