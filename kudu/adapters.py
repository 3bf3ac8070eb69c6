"""Wrap typed user functions into plain ``(ctx) -> None`` handlers.

::

    def create_book(ctx: Context, book: BookInput) -> BookOutput: ...

    app.post("/books", handle_in_out(create_book))

The wrapped handler binds and validates the input record, calls the user
function and projects the returned record onto the response. The input and
output types are recorded on the handler for the OpenAPI document.
"""

from __future__ import annotations

import functools
import inspect
from typing import TYPE_CHECKING, Any, Callable, get_type_hints

from .tags import Source, is_record, record_fields, unwrap_optional

if TYPE_CHECKING:  # pragma: no cover
    from .context import Context


def _hints(fn: Callable[..., Any]) -> dict[str, Any]:
    try:
        return get_type_hints(fn)
    except NameError as exc:
        raise TypeError(f"cannot resolve annotations of {fn.__qualname__}: {exc}") from exc


def input_type(fn: Callable[..., Any]) -> Any:
    """Return the annotated type of the second parameter of *fn*."""

    params = list(inspect.signature(fn).parameters.values())
    if len(params) < 2:
        raise TypeError(f"{fn.__qualname__} must accept (ctx, input)")
    annotation = _hints(fn).get(params[1].name)
    if annotation is None:
        raise TypeError(f"{fn.__qualname__}: input parameter {params[1].name!r} needs a type annotation")
    return unwrap_optional(annotation)[0]


def output_type(fn: Callable[..., Any]) -> Any:
    annotation = _hints(fn).get("return")
    if annotation is None or annotation is type(None):
        return None
    return unwrap_optional(annotation)[0]


def _finish(fn: Callable[..., Any], handler: Callable[["Context"], None], request: Any, response: Any) -> Callable[["Context"], None]:
    functools.update_wrapper(handler, fn)
    handler.__kudu_request__ = request  # type: ignore[attr-defined]
    handler.__kudu_response__ = response  # type: ignore[attr-defined]
    return handler


def _write_output(ctx: "Context", output: Any) -> None:
    if ctx.response.written:
        return
    default = 201 if ctx.request.method == "POST" else 200
    ctx.respond(output, default_status=default)


def handle_in(fn: Callable[["Context", Any], Any]) -> Callable[["Context"], None]:
    """Adapt ``fn(ctx, input) -> None``."""

    in_type = input_type(fn)

    def handler(ctx: "Context") -> None:
        fn(ctx, ctx.bind(in_type))

    return _finish(fn, handler, in_type, None)


def handle_in_out(fn: Callable[["Context", Any], Any]) -> Callable[["Context"], None]:
    """Adapt ``fn(ctx, input) -> output``."""

    in_type = input_type(fn)

    def handler(ctx: "Context") -> None:
        _write_output(ctx, fn(ctx, ctx.bind(in_type)))

    return _finish(fn, handler, in_type, output_type(fn))


def handle_out(fn: Callable[["Context"], Any]) -> Callable[["Context"], None]:
    """Adapt ``fn(ctx) -> output``; no input is bound."""

    def handler(ctx: "Context") -> None:
        _write_output(ctx, fn(ctx))

    return _finish(fn, handler, None, output_type(fn))


def handle_path(fn: Callable[["Context", Any], Any]) -> Callable[["Context"], None]:
    """Adapt ``fn(ctx, input)`` where every input field comes from the path.

    Returns an output when *fn* does.
    """

    in_type = input_type(fn)
    if not is_record(in_type):
        raise TypeError(f"{fn.__qualname__}: path input must be a dataclass record")
    for plan in record_fields(in_type):
        if plan.tags.source(Source.PATH) is None:
            raise TypeError(f"{in_type.__name__}.{plan.name} is not bound from the path")
    out_type = output_type(fn)

    def handler(ctx: "Context") -> None:
        result = fn(ctx, ctx.bind(in_type))
        if out_type is not None:
            _write_output(ctx, result)

    return _finish(fn, handler, in_type, out_type)


__all__ = ["handle_in", "handle_in_out", "handle_out", "handle_path", "input_type", "output_type"]
