"""Application configuration and its ``KUDU_*`` environment loader."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from .errors import ErrorHandler
from .http import DEFAULT_MAX_MULTIPART_MEMORY

DEFAULT_ADDR = ":8080"
ENV_PREFIX = "KUDU_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class Renderer(Protocol):
    def render(self, name: str, data: Any) -> str: ...


@dataclass
class Cors:
    """Cross-origin resource sharing policy."""

    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    allowed_headers: list[str] = field(default_factory=list)
    expose_headers: list[str] = field(default_factory=list)
    allow_methods: list[str] = field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = 0

    def allows(self, origin: str) -> bool:
        return any(o == "*" or o == origin for o in self.allowed_origins)


@dataclass
class TLSConfig:
    certfile: str
    keyfile: str
    cafile: str = ""
    client_auth: bool = False


@dataclass
class OpenAPIConfig:
    enabled: bool = True
    title: str = "Kudu API"
    version: str = "1.0.0"
    description: str = ""
    path_prefix: str = ""
    spec_path: str = "/openapi.json"
    docs_path: str = "/docs"
    redoc_path: str = "/redoc"
    servers: list[Any] = field(default_factory=list)
    license: Mapping[str, str] | None = None
    contact: Mapping[str, str] | None = None
    security_schemes: dict[str, dict[str, Any]] = field(default_factory=dict)


def validate_addr(addr: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address, raising ``ValueError`` if malformed.

    Accepted forms are ``:8080``, ``localhost:8080`` and ``[::1]:8080``.
    """

    if ":" not in addr:
        raise ValueError(f"invalid address {addr!r}: missing port")
    if addr.startswith("["):
        end = addr.find("]")
        if end == -1 or addr[end + 1 : end + 2] != ":":
            raise ValueError(f"invalid address {addr!r}")
        host, port_text = addr[1:end], addr[end + 2 :]
    else:
        host, port_text = addr.rsplit(":", 1)
        if ":" in host:
            raise ValueError(f"invalid address {addr!r}: IPv6 hosts need brackets")
    if not port_text.isdigit():
        raise ValueError(f"invalid address {addr!r}: port must be numeric")
    port = int(port_text)
    if not 0 <= port <= 65535:
        raise ValueError(f"invalid address {addr!r}: port out of range")
    return host, port


@dataclass
class Config:
    """Runtime settings of an application."""

    addr: str = DEFAULT_ADDR
    port: int | None = None
    read_timeout: float = 0.0
    write_timeout: float = 0.0
    idle_timeout: float = 0.0
    max_multipart_memory: int = DEFAULT_MAX_MULTIPART_MEMORY
    cors: Cors | None = None
    tls: TLSConfig | None = None
    strict_slash: bool = False
    openapi: OpenAPIConfig = field(default_factory=OpenAPIConfig)
    error_handler: ErrorHandler | None = None
    renderer: Renderer | None = None
    logger: logging.Logger | None = None
    access_log: bool = True
    debug: bool = False

    def __post_init__(self) -> None:
        validate_config(self)

    def listen_address(self) -> tuple[str, int]:
        host, port = validate_addr(self.addr)
        if self.port is not None:
            port = self.port
        return host, port

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> "Config":
        """Build a config from ``<prefix>*`` variables; *overrides* win."""

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        def raw(name: str) -> str | None:
            return env.get(prefix + name)

        if raw("ADDR") is not None:
            values["addr"] = raw("ADDR")
        if raw("PORT") is not None:
            values["port"] = _int(prefix + "PORT", raw("PORT"))
        for name in ("READ_TIMEOUT", "WRITE_TIMEOUT", "IDLE_TIMEOUT"):
            if raw(name) is not None:
                values[name.lower()] = _seconds(prefix + name, raw(name))
        if raw("MAX_MULTIPART_MEMORY") is not None:
            values["max_multipart_memory"] = _int(
                prefix + "MAX_MULTIPART_MEMORY", raw("MAX_MULTIPART_MEMORY")
            )
        if raw("STRICT_SLASH") is not None:
            values["strict_slash"] = _bool(prefix + "STRICT_SLASH", raw("STRICT_SLASH"))
        if raw("DEBUG") is not None:
            values["debug"] = _bool(prefix + "DEBUG", raw("DEBUG"))
        if raw("ACCESS_LOG") is not None:
            values["access_log"] = _bool(prefix + "ACCESS_LOG", raw("ACCESS_LOG"))
        if raw("OPENAPI_DISABLED") is not None:
            disabled = _bool(prefix + "OPENAPI_DISABLED", raw("OPENAPI_DISABLED"))
            values["openapi"] = OpenAPIConfig(enabled=not disabled)
        values.update(overrides)
        return cls(**values)


def _int(name: str, text: str | None) -> int:
    try:
        return int(str(text).strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {text!r}") from exc


def _seconds(name: str, text: str | None) -> float:
    value = str(text).strip().lower()
    scale = 1.0
    for suffix, factor in (("ms", 0.001), ("s", 1.0), ("m", 60.0), ("h", 3600.0)):
        if value.endswith(suffix):
            value, scale = value[: -len(suffix)], factor
            break
    try:
        seconds = float(value) * scale
    except ValueError as exc:
        raise ValueError(f"{name} must be a duration, got {text!r}") from exc
    if seconds < 0:
        raise ValueError(f"{name} cannot be negative")
    return seconds


def _bool(name: str, text: str | None) -> bool:
    value = str(text).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {text!r}")


def validate_config(config: Config) -> None:
    """Reject inconsistent settings.

    Raises
    ------
    ValueError
        If the address, a timeout or the multipart limit is invalid.
    """

    validate_addr(config.addr)
    if config.port is not None and not 0 <= config.port <= 65535:
        raise ValueError(f"port out of range: {config.port}")
    for name in ("read_timeout", "write_timeout", "idle_timeout"):
        if getattr(config, name) < 0:
            raise ValueError(f"{name} cannot be negative")
    if config.max_multipart_memory <= 0:
        raise ValueError("max_multipart_memory must be positive")


__all__ = [
    "Config",
    "Cors",
    "DEFAULT_ADDR",
    "OpenAPIConfig",
    "Renderer",
    "TLSConfig",
    "validate_addr",
    "validate_config",
]
