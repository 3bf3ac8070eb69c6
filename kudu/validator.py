"""Post-bind validation of records."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from .codecs import is_zero
from .decoder import check_constraints
from .errors import BindError, ValidationError, ValidationErrors
from .tags import is_record, record_fields


def _walk(obj: Any, prefix: str, errors: list[ValidationError] | None) -> None:
    if isinstance(obj, BaseModel):
        return
    for plan in record_fields(type(obj)):
        name = f"{prefix}{plan.name}"
        value = getattr(obj, plan.name, None)
        tags = plan.tags
        try:
            required = tags.required
            if tags.required_if and not is_zero(getattr(obj, tags.required_if, None)):
                required = True
            if required and is_zero(value):
                reason = (
                    f"required when {tags.required_if} is set"
                    if tags.required_if and not tags.required
                    else "required"
                )
                raise BindError(name, reason, None)
            check_constraints(value, tags, name)
        except BindError as exc:
            if errors is None:
                raise
            errors.append(ValidationError(field=exc.field, message=exc.reason, value=_plain(exc.value)))
            continue
        if value is not None and is_record(type(value)):
            _walk(value, f"{name}.", errors)
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if is_record(type(item)):
                    _walk(item, f"{name}[{index}].", errors)


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return str(value)


def validate(obj: Any, *, collect: bool = False) -> None:
    """Check *obj* against the constraints declared on its fields.

    Fail-fast mode raises the first :class:`BindError`. With
    ``collect=True`` every failure is gathered into one
    :class:`ValidationErrors`.
    """

    if obj is None or isinstance(obj, BaseModel) or not is_record(type(obj)):
        return
    if not collect:
        _walk(obj, "", None)
        return
    errors: list[ValidationError] = []
    _walk(obj, "", errors)
    if errors:
        raise ValidationErrors(errors)


__all__ = ["validate"]
