"""Typed extraction of query parameters and JSON body data.

Populates dataclass instances from request data, converting values to
the annotated field types. Used by the binding plan when a handler
parameter's annotation is a dataclass.

Resolution rules (by HTTP method):

- **GET / HEAD**: extract from query string
- **POST / PUT / PATCH / DELETE**: extract from the JSON body

Supported scalar types: ``str``, ``int``, ``float``, ``bool``,
``Decimal``, ``UUID``, ``datetime``, ``date`` and ``Enum`` subclasses,
plus ``X | None`` of any of them. Missing keys use the dataclass field
default. Conversion failures raise ``ValueError``; binding reports them
as 400 Bad Request.
"""

from __future__ import annotations

import dataclasses
import types
import typing
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

SCALAR_TYPES: frozenset[type] = frozenset(
    {str, int, float, bool, Decimal, UUID, datetime, date}
)

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def is_extractable_dataclass(annotation: Any) -> bool:
    """Return True if *annotation* is a user-defined dataclass type.

    Excludes perch's own dataclass types (``Request``, results, etc.)
    which should never be auto-extracted from query/body data.
    """
    if not isinstance(annotation, type) or not dataclasses.is_dataclass(annotation):
        return False

    # Exclude perch's internal dataclass types by module prefix
    module = getattr(annotation, "__module__", "") or ""
    return not module.startswith("perch.")


def is_scalar(annotation: Any) -> bool:
    """Whether values of *annotation* can come from a single string."""
    return annotation in SCALAR_TYPES or (
        isinstance(annotation, type) and issubclass(annotation, Enum)
    )


def unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Split ``X | None`` into ``(X, True)``. Other annotations pass through."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(annotation)) == 2:
            return args[0], True
    return annotation, False


def extract_dataclass[T](cls: type[T], data: Mapping[str, Any]) -> T:
    """Create a dataclass instance from a mapping (query params or JSON).

    For each field in *cls*, looks up the field name in *data*. If found,
    converts the value to the field's annotated type. If missing, the
    field default applies.

    Args:
        cls: A dataclass type to instantiate.
        data: A mapping of string keys to values (query params or parsed
            JSON).

    Returns:
        A new instance of *cls* populated from *data*.

    Raises:
        ValueError: A value could not be converted, or a field without a
            default is missing.
    """
    hints = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}

    for f in dataclasses.fields(cls):
        if not f.init:
            continue
        if f.name not in data:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                msg = f"missing field {f.name!r}"
                raise ValueError(msg)
            continue

        target_type, nullable = unwrap_optional(hints.get(f.name, Any))
        raw = data[f.name]
        if raw is None and nullable:
            kwargs[f.name] = None
            continue
        try:
            kwargs[f.name] = convert(raw, target_type)
        except ValueError as exc:
            msg = f"field {f.name!r}: {exc}"
            raise ValueError(msg) from exc

    return cls(**kwargs)


def convert(value: Any, target_type: Any) -> Any:
    """Convert *value* to *target_type*. Raises ``ValueError`` on failure.

    Unknown target types return *value* unchanged.
    """
    if target_type is Any:
        return value

    if target_type is str:
        return value if isinstance(value, str) else str(value)

    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        msg = f"{value!r} is not a boolean"
        raise ValueError(msg)

    if target_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                pass
        msg = f"{value!r} is not an integer"
        raise ValueError(msg)

    if target_type is float:
        if isinstance(value, bool):
            msg = f"{value!r} is not a number"
            raise ValueError(msg)
        try:
            return float(value)
        except (TypeError, ValueError):
            msg = f"{value!r} is not a number"
            raise ValueError(msg) from None

    if target_type is Decimal:
        try:
            return value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation:
            msg = f"{value!r} is not a decimal"
            raise ValueError(msg) from None

    if target_type is UUID:
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            msg = f"{value!r} is not a UUID"
            raise ValueError(msg) from None

    if target_type is datetime or target_type is date:
        if isinstance(value, target_type):
            return value
        try:
            return target_type.fromisoformat(str(value))
        except ValueError:
            msg = f"{value!r} is not an ISO 8601 {target_type.__name__}"
            raise ValueError(msg) from None

    if isinstance(target_type, type) and issubclass(target_type, Enum):
        try:
            return target_type(value)
        except ValueError:
            msg = f"{value!r} is not one of {[m.value for m in target_type]}"
            raise ValueError(msg) from None

    if is_extractable_dataclass(target_type):
        if not isinstance(value, Mapping):
            msg = f"expected an object for {target_type.__name__}"
            raise ValueError(msg)
        return extract_dataclass(target_type, value)

    # Unknown type: return raw value
    return value
