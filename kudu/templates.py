"""Lightweight file-based template renderer."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping


class TemplateRenderer:
    """Render templates stored on disk using ``str.format``.

    Plug an instance into ``Config.renderer`` to enable ``ctx.render``.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def render(self, name: str, data: Mapping[str, Any] | None = None, **context: Any) -> str:
        """Return template *name* formatted with *data* and *context*."""
        path = (self.directory / name).resolve()
        if self.directory.resolve() not in path.parents:
            raise ValueError(f"template {name!r} escapes {self.directory}")
        values = dict(data or {})
        values.update(context)
        return path.read_text(encoding="utf8").format(**values)


__all__ = ["TemplateRenderer"]
