"""Kudu: a typed WSGI web framework with OpenAPI generation."""

__version__ = "0.1.0"

from .adapters import handle_in, handle_in_out, handle_out, handle_path
from .app import App
from .config import Config, Cors, OpenAPIConfig, TLSConfig
from .context import Context, ContextKey
from .decoder import (
    Float32,
    Float64,
    Int8,
    Int16,
    Int32,
    Int64,
    UInt8,
    UInt16,
    UInt32,
    UInt64,
)
from .errors import (
    BadRequest,
    BindError,
    CodecError,
    Conflict,
    ErrorHandlerConfig,
    ErrorResponse,
    Forbidden,
    HTTPError,
    InternalServerError,
    KuduError,
    NotFound,
    ProblemDetail,
    ServiceUnavailable,
    Unauthorized,
    UnprocessableEntity,
    ValidationError,
    ValidationErrors,
    default_error_handler,
    problem_detail_error_handler,
)
from .http import Request, ResponseWriter, UploadFile
from .middleware import BodyLimit, CORSMiddleware, Recovery, RequestLoggerMiddleware
from .openapi import basic_auth_scheme, bearer_auth_scheme
from .routing import Group, Route, RouteDefinition, register_routes
from .sse import Base64Serializer, JSONSerializer, Message, TextSerializer
from .tags import param
from .templates import TemplateRenderer
from .testclient import Response as TestResponse
from .testclient import TestClient

__all__ = [
    "__version__",
    "App",
    "BadRequest",
    "Base64Serializer",
    "BindError",
    "BodyLimit",
    "CORSMiddleware",
    "CodecError",
    "Config",
    "Conflict",
    "Context",
    "ContextKey",
    "Cors",
    "ErrorHandlerConfig",
    "ErrorResponse",
    "Float32",
    "Float64",
    "Forbidden",
    "Group",
    "HTTPError",
    "Int16",
    "Int32",
    "Int64",
    "Int8",
    "InternalServerError",
    "JSONSerializer",
    "KuduError",
    "Message",
    "NotFound",
    "OpenAPIConfig",
    "ProblemDetail",
    "Recovery",
    "Request",
    "RequestLoggerMiddleware",
    "ResponseWriter",
    "Route",
    "RouteDefinition",
    "ServiceUnavailable",
    "TLSConfig",
    "TemplateRenderer",
    "TestClient",
    "TestResponse",
    "TextSerializer",
    "UInt16",
    "UInt32",
    "UInt64",
    "UInt8",
    "Unauthorized",
    "UnprocessableEntity",
    "UploadFile",
    "ValidationError",
    "ValidationErrors",
    "basic_auth_scheme",
    "bearer_auth_scheme",
    "default_error_handler",
    "handle_in",
    "handle_in_out",
    "handle_out",
    "handle_path",
    "param",
    "problem_detail_error_handler",
    "register_routes",
]
