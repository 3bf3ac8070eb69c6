"""OpenAPI 3 document synthesis from the route table and field tags."""

from __future__ import annotations

import copy
import json
import logging
import threading
import uuid
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, get_args, get_origin

from google.protobuf.message import Message as ProtoMessage
from pydantic import BaseModel

from .binder import is_upload
from .codecs import FORM, JSON, MULTIPART
from .decoder import INT_BOUNDS, Float32, base_type, decode, is_list_type, list_item_type
from .errors import BindError, status_text
from .http import UploadFile
from .routing import join_paths
from .tags import (
    FieldPlan,
    Source,
    TagSet,
    is_record,
    record_fields,
    unwrap_optional,
)

if TYPE_CHECKING:  # pragma: no cover
    from .app import App
    from .context import Context
    from .routing import Route

_LOGGER = logging.getLogger("kudu")

OPENAPI_VERSION = "3.0.3"
REF_PREFIX = "#/components/schemas/"
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_PARAM_ORDER = (Source.PATH, Source.QUERY, Source.HEADER, Source.COOKIE)


def bearer_auth_scheme(bearer_format: str = "JWT") -> dict[str, Any]:
    return {"type": "http", "scheme": "bearer", "bearerFormat": bearer_format}


def basic_auth_scheme() -> dict[str, Any]:
    return {"type": "http", "scheme": "basic"}


def _is_output_meta(plan: FieldPlan) -> bool:
    tags = plan.tags
    if tags.source(Source.HEADER) or tags.source(Source.COOKIE):
        return True
    return plan.name.lower() == "status" and unwrap_optional(plan.type)[0] is int


class SchemaRegistry:
    """Collects reusable component schemas keyed by name."""

    def __init__(self) -> None:
        self.schemas: dict[str, dict[str, Any]] = {}

    def ref(self, name: str) -> dict[str, Any]:
        return {"$ref": REF_PREFIX + name}

    def schema_for(self, tp: Any) -> dict[str, Any]:
        if tp is Any or tp is None:
            return {}
        inner, optional = unwrap_optional(tp)
        schema = self._schema(inner)
        if optional and "$ref" not in schema:
            schema = {**schema, "nullable": True}
        return schema

    def _schema(self, tp: Any) -> dict[str, Any]:
        if isinstance(tp, type) and issubclass(tp, BaseModel):
            return self._pydantic(tp)
        if isinstance(tp, type) and issubclass(tp, ProtoMessage):
            return {"type": "string", "format": "binary"}
        if is_record(tp):
            return self.record(tp)
        if is_list_type(tp):
            return {"type": "array", "items": self.schema_for(list_item_type(tp))}
        if get_origin(tp) is dict or tp is dict:
            args = get_args(tp)
            values = self.schema_for(args[1]) if len(args) == 2 else {}
            return {"type": "object", "additionalProperties": values or True}
        return scalar_schema(tp)

    def _pydantic(self, model: type[BaseModel]) -> dict[str, Any]:
        name = model.__name__
        if name not in self.schemas:
            schema = model.model_json_schema(ref_template=REF_PREFIX + "{model}")
            for def_name, definition in schema.pop("$defs", {}).items():
                self.schemas.setdefault(def_name, definition)
            self.schemas[name] = schema
        return self.ref(name)

    def record(self, cls: type, *, exclude_meta: bool = False) -> dict[str, Any]:
        name = cls.__name__
        if exclude_meta:
            return self._object(cls, exclude_meta=True)
        if name not in self.schemas:
            # placeholder stops recursion on self-referencing records
            self.schemas[name] = {"type": "object"}
            self.schemas[name] = self._object(cls)
        return self.ref(name)

    def _object(self, cls: type, *, exclude_meta: bool = False) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for plan in record_fields(cls):
            if plan.tags.hidden:
                continue
            if exclude_meta and _is_output_meta(plan):
                continue
            if plan.tags.textual_sources() and not plan.tags.source(Source.JSON):
                continue
            key = plan.json_name
            properties[key] = self.field_schema(plan)
            if plan.tags.required:
                required.append(key)
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema

    def field_schema(self, plan: FieldPlan) -> dict[str, Any]:
        schema = self.schema_for(plan.type)
        if "$ref" in schema:
            if plan.tags.description:
                return {"allOf": [schema], "description": plan.tags.description}
            return schema
        return apply_tags(schema, plan.tags, plan.type)


def scalar_schema(tp: Any) -> dict[str, Any]:
    kind = base_type(tp)
    if tp in INT_BOUNDS:
        low, high = INT_BOUNDS[tp]
        schema: dict[str, Any] = {
            "type": "integer",
            "format": "int64" if high > 2**31 else "int32",
        }
        if low == 0:
            schema["minimum"] = 0
        return schema
    if tp is Float32:
        return {"type": "number", "format": "float"}
    if kind is bool:
        return {"type": "boolean"}
    if kind is int:
        return {"type": "integer"}
    if kind is float:
        return {"type": "number", "format": "double"}
    if kind is str:
        return {"type": "string"}
    if kind is datetime:
        return {"type": "string", "format": "date-time"}
    if kind is date:
        return {"type": "string", "format": "date"}
    if kind is timedelta:
        return {"type": "string", "format": "duration"}
    if kind is uuid.UUID:
        return {"type": "string", "format": "uuid"}
    if kind is UploadFile:
        return {"type": "string", "format": "binary"}
    if kind is bytes:
        return {"type": "string", "format": "byte"}
    if isinstance(kind, type) and issubclass(kind, Enum):
        return {"type": "string", "enum": [str(member.value) for member in kind]}
    return {}


def _typed(value: str, tp: Any) -> Any:
    inner, _ = unwrap_optional(tp)
    if is_list_type(inner):
        inner = list_item_type(inner)
    kind = base_type(inner)
    if kind in (int, float, bool):
        try:
            return decode(inner, value)
        except BindError:
            return value
    return value


def apply_tags(schema: dict[str, Any], tags: TagSet, tp: Any) -> dict[str, Any]:
    """Copy the constraints and docs of *tags* onto *schema*."""

    schema = dict(schema)
    is_string = schema.get("type") == "string"
    is_array = schema.get("type") == "array"
    if is_string and tags.min_length is None and tags.max_length is None:
        if tags.minimum is not None:
            schema["minLength"] = int(tags.minimum)
        if tags.maximum is not None:
            schema["maxLength"] = int(tags.maximum)
    elif not is_array and not is_string:
        if tags.minimum is not None:
            schema["minimum"] = tags.minimum
        if tags.maximum is not None:
            schema["maximum"] = tags.maximum
    if tags.min_length is not None:
        schema["minLength"] = tags.min_length
    if tags.max_length is not None:
        schema["maxLength"] = tags.max_length
    if tags.multiple_of is not None:
        schema["multipleOf"] = tags.multiple_of
    if tags.min_items is not None:
        schema["minItems"] = tags.min_items
    if tags.max_items is not None:
        schema["maxItems"] = tags.max_items
    if tags.unique_items:
        schema["uniqueItems"] = True
    target = schema
    if is_array and isinstance(schema.get("items"), dict) and (tags.pattern or tags.enum):
        # element constraints live on the item schema
        target = schema["items"] = dict(schema["items"])
    if tags.pattern:
        target["pattern"] = tags.pattern
    if tags.enum:
        target["enum"] = [_typed(v, tp) for v in tags.enum]
    if tags.format and tags.format != "regex":
        schema["format"] = tags.format
    if tags.default is not None:
        schema["default"] = (
            [_typed(v, tp) for v in tags.default.split(",") if v.strip()]
            if is_array
            else _typed(tags.default, tp)
        )
    if tags.description:
        schema["description"] = tags.description
    if tags.example is not None:
        schema["example"] = tags.example
    if tags.deprecated:
        schema["deprecated"] = True
    return schema


class OpenAPISynthesizer:
    """Builds the OpenAPI document lazily, rebuilding when routes change.

    The document and its JSON encoding are built together under a lock and
    published as one cached entry keyed by the route table revision.
    """

    def __init__(self, app: "App") -> None:
        self.app = app
        self._lock = threading.Lock()
        self._generation = 0
        self._cached: tuple[tuple[int, int], dict[str, Any], bytes] | None = None

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1

    def _current(self) -> tuple[dict[str, Any], bytes]:
        cached = self._cached
        if cached is not None and cached[0] == (self.app.table.revision, self._generation):
            return cached[1], cached[2]
        with self._lock:
            key = (self.app.table.revision, self._generation)
            cached = self._cached
            if cached is None or cached[0] != key:
                doc = self._build()
                data = json.dumps(doc, separators=(",", ":")).encode("utf-8")
                cached = (key, doc, data)
                self._cached = cached
                _LOGGER.debug("openapi document rebuilt at revision %d", key[0])
            return cached[1], cached[2]

    def document(self) -> dict[str, Any]:
        """Return a private copy of the current document."""

        return copy.deepcopy(self._current()[0])

    def to_json(self) -> bytes:
        return self._current()[1]

    def _build(self) -> dict[str, Any]:
        cfg = self.app.config.openapi
        registry = SchemaRegistry()
        paths: dict[str, dict[str, Any]] = {}
        tags: list[str] = []
        for route in self.app.table.routes():
            if route.doc.hidden:
                continue
            operation = self.operation(route, registry)
            for tag in operation.get("tags", ()):
                if tag not in tags:
                    tags.append(tag)
            paths.setdefault(route.compiled.openapi_path, {})[route.method.lower()] = operation
        info: dict[str, Any] = {"title": cfg.title, "version": cfg.version}
        if cfg.description:
            info["description"] = cfg.description
        if cfg.license:
            info["license"] = dict(cfg.license)
        if cfg.contact:
            info["contact"] = dict(cfg.contact)
        doc: dict[str, Any] = {"openapi": OPENAPI_VERSION, "info": info}
        if cfg.servers:
            doc["servers"] = [
                {"url": server} if isinstance(server, str) else dict(server)
                for server in cfg.servers
            ]
        doc["paths"] = paths
        components: dict[str, Any] = {}
        if registry.schemas:
            components["schemas"] = registry.schemas
        if cfg.security_schemes:
            components["securitySchemes"] = dict(cfg.security_schemes)
        if components:
            doc["components"] = components
        if tags:
            doc["tags"] = [{"name": tag} for tag in tags]
        return doc

    def operation(self, route: "Route", registry: SchemaRegistry) -> dict[str, Any]:
        doc = route.doc
        op: dict[str, Any] = {}
        if doc.operation_id:
            op["operationId"] = doc.operation_id
        if doc.summary:
            op["summary"] = doc.summary
        if doc.description:
            op["description"] = doc.description
        if doc.tags:
            op["tags"] = list(doc.tags)
        if doc.deprecated:
            op["deprecated"] = True
        parameters = self._parameters(route, doc.request, registry)
        if parameters:
            op["parameters"] = parameters
        body = self._request_body(route.method, doc.request, registry)
        if body is not None:
            op["requestBody"] = body
        op["responses"] = self._responses(route.method, doc.response, doc.responses, registry)
        if doc.security:
            op["security"] = [dict(req) for req in doc.security]
        return op

    def _parameters(self, route: "Route", request: Any, registry: SchemaRegistry) -> list[dict[str, Any]]:
        params: list[dict[str, Any]] = []
        seen: set[tuple[str, str]] = set()
        if is_record(request):
            self._collect_parameters(request, registry, params, seen)
        implicit = [
            {
                "name": path_param.name,
                "in": "path",
                "required": True,
                "schema": {"type": "integer" if path_param.type == "int" else "string"},
            }
            for path_param in route.compiled.params
            if ("path", path_param.name) not in seen
        ]
        return implicit + params

    def _collect_parameters(
        self,
        cls: type,
        registry: SchemaRegistry,
        params: list[dict[str, Any]],
        seen: set[tuple[str, str]],
    ) -> None:
        for plan in record_fields(cls):
            tags = plan.tags
            if tags.hidden or plan.is_body:
                continue
            inner, _ = unwrap_optional(plan.type)
            if is_record(inner) and not tags.sources:
                self._collect_parameters(inner, registry, params, seen)
                continue
            for source in _PARAM_ORDER:
                name = tags.source(source)
                if not name or (source.value, name) in seen:
                    continue
                seen.add((source.value, name))
                param: dict[str, Any] = {
                    "name": name,
                    "in": source.value,
                    "required": source is Source.PATH or tags.required,
                    "schema": registry.field_schema(plan),
                }
                if tags.description:
                    param["description"] = tags.description
                if tags.deprecated:
                    param["deprecated"] = True
                if tags.example is not None:
                    param["example"] = tags.example
                params.append(param)

    def _request_body(self, method: str, request: Any, registry: SchemaRegistry) -> dict[str, Any] | None:
        if request is None:
            return None
        if isinstance(request, type) and issubclass(request, (BaseModel, ProtoMessage)):
            return {"required": True, "content": {JSON: {"schema": registry.schema_for(request)}}}
        if not is_record(request):
            return None
        for plan in record_fields(request):
            if plan.is_body:
                inner, _ = unwrap_optional(plan.type)
                media = _form_media(inner) if is_record(inner) else None
                if media is not None:
                    schema = _form_schema(inner, registry)
                else:
                    media = JSON
                    schema = registry.schema_for(plan.type)
                body: dict[str, Any] = {"content": {media: {"schema": schema}}}
                if plan.tags.required:
                    body["required"] = True
                if plan.tags.description:
                    body["description"] = plan.tags.description
                return body
        media = _form_media(request)
        if media is not None:
            schema = _form_schema(request, registry)
            return {"required": "required" in schema, "content": {media: {"schema": schema}}}
        if method not in _BODY_METHODS:
            return None
        schema = registry._object(request)
        if not schema["properties"]:
            return None
        return {"required": "required" in schema, "content": {JSON: {"schema": schema}}}

    def _responses(
        self,
        method: str,
        response: Any,
        extra: dict[int, Any],
        registry: SchemaRegistry,
    ) -> dict[str, Any]:
        responses: dict[str, Any] = {}
        status = "201" if method == "POST" else "200"
        if response is not None:
            entry: dict[str, Any] = {"description": "Successful response"}
            schema, headers, has_status = self._output(response, registry)
            if has_status:
                status = "200"
            if schema:
                entry["content"] = {JSON: {"schema": schema}}
            if headers:
                entry["headers"] = headers
            responses[status] = entry
        elif not extra:
            responses[status] = {"description": "Successful response"}
        for code, value in sorted(extra.items()):
            if isinstance(value, str):
                responses[str(code)] = {"description": value}
            else:
                responses[str(code)] = {
                    "description": _status_description(code),
                    "content": {JSON: {"schema": registry.schema_for(value)}},
                }
        return responses

    def _output(self, response: Any, registry: SchemaRegistry) -> tuple[dict[str, Any], dict[str, Any], bool]:
        if not is_record(response):
            return registry.schema_for(response), {}, False
        headers: dict[str, Any] = {}
        has_status = False
        body_plan: FieldPlan | None = None
        for plan in record_fields(response):
            header = plan.tags.source(Source.HEADER)
            if header:
                headers[header] = {"schema": registry.field_schema(plan)}
                if plan.tags.description:
                    headers[header]["description"] = plan.tags.description
            elif plan.name.lower() == "status" and unwrap_optional(plan.type)[0] is int:
                has_status = True
            elif plan.is_body:
                body_plan = plan
        if body_plan is not None:
            return registry.schema_for(body_plan.type), headers, has_status
        if headers or has_status:
            return registry.record(response, exclude_meta=True), headers, has_status
        return registry.schema_for(response), headers, has_status


def _status_description(code: int) -> str:
    return status_text(code) or "Response"


def _form_media(cls: type) -> str | None:
    has_form = False
    for plan in record_fields(cls):
        if is_upload(plan.type) or plan.tags.source(Source.FORM_FILE):
            return MULTIPART
        if plan.tags.source(Source.FORM):
            has_form = True
    return FORM if has_form else None


def _form_schema(cls: type, registry: SchemaRegistry) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for plan in record_fields(cls):
        tags = plan.tags
        name = tags.source(Source.FORM_FILE) or tags.source(Source.FORM)
        if not name and not is_upload(plan.type):
            continue
        name = name or plan.name
        properties[name] = registry.field_schema(plan)
        if tags.required:
            required.append(name)
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


SWAGGER_HTML = """<!DOCTYPE html>
<html>
<head>
<title>{title}</title>
<link rel="stylesheet" href="https://unpkg.com/swagger-ui-dist/swagger-ui.css">
</head>
<body>
<div id="swagger-ui"></div>
<script src="https://unpkg.com/swagger-ui-dist/swagger-ui-bundle.js"></script>
<script>
SwaggerUIBundle({{url: "{spec_url}", dom_id: "#swagger-ui"}});
</script>
</body>
</html>"""

REDOC_HTML = """<!DOCTYPE html>
<html>
<head>
<title>{title}</title>
<script src="https://unpkg.com/redoc@next/bundles/redoc.standalone.js"></script>
</head>
<body>
<redoc spec-url="{spec_url}"></redoc>
</body>
</html>"""


def install_doc_routes(app: "App") -> None:
    """Register the hidden document, Swagger UI and ReDoc endpoints."""

    cfg = app.config.openapi
    if not cfg.enabled:
        return
    spec_url = join_paths(cfg.path_prefix, cfg.spec_path)

    def serve_spec(ctx: "Context") -> None:
        ctx.data(200, JSON, app.openapi.to_json())

    def serve_swagger(ctx: "Context") -> None:
        ctx.html(200, SWAGGER_HTML.format(title=cfg.title, spec_url=spec_url))

    def serve_redoc(ctx: "Context") -> None:
        ctx.html(200, REDOC_HTML.format(title=cfg.title, spec_url=spec_url))

    app.get(spec_url, serve_spec, hidden=True)
    if cfg.docs_path:
        app.get(join_paths(cfg.path_prefix, cfg.docs_path), serve_swagger, hidden=True)
    if cfg.redoc_path:
        app.get(join_paths(cfg.path_prefix, cfg.redoc_path), serve_redoc, hidden=True)


__all__ = [
    "OPENAPI_VERSION",
    "OpenAPISynthesizer",
    "REDOC_HTML",
    "SWAGGER_HTML",
    "SchemaRegistry",
    "apply_tags",
    "basic_auth_scheme",
    "bearer_auth_scheme",
    "install_doc_routes",
    "scalar_schema",
]
