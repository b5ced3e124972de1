"""Route constraints: validate and coerce captured path segments.

A constraint is any callable that takes the raw segment text and returns
the coerced value, raising ``ConstraintRejected`` (or ``ValueError``) when
the text does not fit::

    "/users/{id:int}"              -> id bound as int
    "/files/{name:minlength(3)}"   -> name bound as str, at least 3 chars
    "/rooms/{n:int:range(1,10)}"   -> n bound as int between 1 and 10

Constraint *factories* build constraints from the string arguments in the
template. They run when the route compiles, so bad arguments fail at
startup, never at request time.
"""

from __future__ import annotations

import math
import re
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from perch.errors import ConstraintRejected, RouteCompileError


class Constraint(Protocol):
    """Validate-and-coerce capability for one path segment."""

    def __call__(self, raw: str) -> Any: ...


type ConstraintFactory = Callable[..., Constraint]


@dataclass(frozen=True, slots=True)
class ConstraintCall:
    """A constraint name plus its template arguments.

    ``range(1,10)`` parses to ``ConstraintCall("range", ("1", "10"))``.
    """

    name: str
    args: tuple[str, ...] = ()

    def __str__(self) -> str:
        if self.args:
            return f"{self.name}({','.join(self.args)})"
        return self.name


_CALL_RE = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?:\((?P<args>.*)\))?$", re.DOTALL)


def parse_constraint(text: str) -> ConstraintCall:
    """Parse ``name`` or ``name(arg1,arg2)`` into a ``ConstraintCall``.

    Raises ``ValueError`` for malformed text.
    """
    m = _CALL_RE.match(text.strip())
    if m is None:
        msg = f"malformed constraint {text!r}"
        raise ValueError(msg)
    args = m.group("args")
    if args is None:
        return ConstraintCall(m.group("name").lower())
    return ConstraintCall(m.group("name").lower(), tuple(a.strip() for a in args.split(",")))


# -- Argument helpers --


def _expect_args(name: str, args: tuple[str, ...], *counts: int) -> None:
    if len(args) not in counts:
        expected = " or ".join(str(c) for c in counts)
        msg = f"constraint {name!r} takes {expected} argument(s), got {len(args)}"
        raise ValueError(msg)


def _int_arg(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        msg = f"constraint {name!r} expects integer arguments, got {value!r}"
        raise ValueError(msg) from None


def _reject(name: str, raw: str) -> ConstraintRejected:
    return ConstraintRejected(f"{raw!r} does not satisfy {name}")


# -- Typed constraints --

_INT_RE = re.compile(r"[+-]?\d+", re.ASCII)


def _parse_int(name: str, raw: str) -> int:
    if not _INT_RE.fullmatch(raw):
        raise _reject(name, raw)
    return int(raw)


def int_constraint(*args: str) -> Constraint:
    _expect_args("int", args, 0)

    def check(raw: str) -> int:
        return _parse_int("int", raw)

    return check


def bool_constraint(*args: str) -> Constraint:
    _expect_args("bool", args, 0)

    def check(raw: str) -> bool:
        lowered = raw.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        raise _reject("bool", raw)

    return check


def decimal_constraint(*args: str) -> Constraint:
    _expect_args("decimal", args, 0)

    def check(raw: str) -> Decimal:
        try:
            value = Decimal(raw)
        except InvalidOperation:
            raise _reject("decimal", raw) from None
        if not value.is_finite():
            raise _reject("decimal", raw)
        return value

    return check


def float_constraint(*args: str) -> Constraint:
    _expect_args("float", args, 0)

    def check(raw: str) -> float:
        try:
            value = float(raw)
        except ValueError:
            raise _reject("float", raw) from None
        if not math.isfinite(value):
            raise _reject("float", raw)
        return value

    return check


def guid_constraint(*args: str) -> Constraint:
    _expect_args("guid", args, 0)

    def check(raw: str) -> uuid.UUID:
        try:
            return uuid.UUID(raw)
        except ValueError:
            raise _reject("guid", raw) from None

    return check


def datetime_constraint(*args: str) -> Constraint:
    _expect_args("datetime", args, 0)

    def check(raw: str) -> datetime:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            raise _reject("datetime", raw) from None

    return check


# -- String shape constraints --


def length_constraint(*args: str) -> Constraint:
    _expect_args("length", args, 1, 2)
    bounds = [_int_arg("length", a) for a in args]
    low, high = (bounds[0], bounds[0]) if len(bounds) == 1 else (bounds[0], bounds[1])
    if low < 0 or high < low:
        msg = f"constraint 'length' has invalid bounds {low}..{high}"
        raise ValueError(msg)

    def check(raw: str) -> str:
        if not low <= len(raw) <= high:
            raise _reject(f"length({','.join(args)})", raw)
        return raw

    return check


def minlength_constraint(*args: str) -> Constraint:
    _expect_args("minlength", args, 1)
    low = _int_arg("minlength", args[0])

    def check(raw: str) -> str:
        if len(raw) < low:
            raise _reject(f"minlength({low})", raw)
        return raw

    return check


def maxlength_constraint(*args: str) -> Constraint:
    _expect_args("maxlength", args, 1)
    high = _int_arg("maxlength", args[0])

    def check(raw: str) -> str:
        if len(raw) > high:
            raise _reject(f"maxlength({high})", raw)
        return raw

    return check


def alpha_constraint(*args: str) -> Constraint:
    _expect_args("alpha", args, 0)

    def check(raw: str) -> str:
        if not (raw.isascii() and raw.isalpha()):
            raise _reject("alpha", raw)
        return raw

    return check


def regex_constraint(*args: str) -> Constraint:
    if not args:
        msg = "constraint 'regex' takes an expression argument"
        raise ValueError(msg)
    # Commas inside the expression were split by the parser; put them back.
    expression = ",".join(args)
    try:
        compiled = re.compile(expression, re.IGNORECASE)
    except re.error as exc:
        msg = f"constraint 'regex' has an invalid expression {expression!r}: {exc}"
        raise ValueError(msg) from None

    def check(raw: str) -> str:
        if compiled.search(raw) is None:
            raise _reject(f"regex({expression})", raw)
        return raw

    return check


def required_constraint(*args: str) -> Constraint:
    _expect_args("required", args, 0)

    def check(raw: str) -> str:
        if not raw:
            raise _reject("required", raw)
        return raw

    return check


# -- Numeric value constraints --


def min_constraint(*args: str) -> Constraint:
    _expect_args("min", args, 1)
    low = _int_arg("min", args[0])

    def check(raw: str) -> int:
        value = _parse_int(f"min({low})", raw)
        if value < low:
            raise _reject(f"min({low})", raw)
        return value

    return check


def max_constraint(*args: str) -> Constraint:
    _expect_args("max", args, 1)
    high = _int_arg("max", args[0])

    def check(raw: str) -> int:
        value = _parse_int(f"max({high})", raw)
        if value > high:
            raise _reject(f"max({high})", raw)
        return value

    return check


def range_constraint(*args: str) -> Constraint:
    _expect_args("range", args, 2)
    low, high = _int_arg("range", args[0]), _int_arg("range", args[1])
    if high < low:
        msg = f"constraint 'range' has invalid bounds {low}..{high}"
        raise ValueError(msg)

    def check(raw: str) -> int:
        value = _parse_int(f"range({low},{high})", raw)
        if not low <= value <= high:
            raise _reject(f"range({low},{high})", raw)
        return value

    return check


BUILTIN_CONSTRAINTS: dict[str, ConstraintFactory] = {
    "int": int_constraint,
    "long": int_constraint,
    "bool": bool_constraint,
    "decimal": decimal_constraint,
    "float": float_constraint,
    "double": float_constraint,
    "guid": guid_constraint,
    "uuid": guid_constraint,
    "datetime": datetime_constraint,
    "length": length_constraint,
    "minlength": minlength_constraint,
    "maxlength": maxlength_constraint,
    "min": min_constraint,
    "max": max_constraint,
    "range": range_constraint,
    "alpha": alpha_constraint,
    "regex": regex_constraint,
    "required": required_constraint,
}


class ConstraintRegistry:
    """Named constraint factories, built-ins included.

    Custom constraints register exactly like the built-ins::

        def even(*args: str) -> Constraint:
            def check(raw: str) -> int:
                value = int(raw)
                if value % 2:
                    raise ConstraintRejected(raw)
                return value
            return check

        registry.register("even", even)
        # "/pairs/{n:even}"
    """

    __slots__ = ("_factories",)

    def __init__(self, factories: dict[str, ConstraintFactory] | None = None) -> None:
        self._factories: dict[str, ConstraintFactory] = dict(
            BUILTIN_CONSTRAINTS if factories is None else factories
        )

    def register(self, name: str, factory: ConstraintFactory) -> None:
        """Register (or replace) a constraint factory under *name*."""
        self._factories[name.lower()] = factory

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._factories

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._factories)

    def build(self, call: ConstraintCall, template: str = "") -> Constraint:
        """Build the constraint for *call*, validating its arguments.

        Raises ``RouteCompileError`` for unknown names or bad arguments.
        """
        factory = self._factories.get(call.name)
        if factory is None:
            raise RouteCompileError(template, f"unknown constraint {call.name!r}")
        try:
            return factory(*call.args)
        except (TypeError, ValueError) as exc:
            raise RouteCompileError(template, str(exc)) from None

    def evaluate(self, call: ConstraintCall, raw: str) -> Any:
        """Build and apply a single constraint. Raises ``ConstraintRejected``."""
        return apply_constraints((self.build(call),), raw)

    def copy(self) -> ConstraintRegistry:
        return ConstraintRegistry(self._factories)


def apply_constraints(constraints: Iterable[Constraint], raw: str) -> Any:
    """Run *constraints* in order against *raw*.

    Each constraint sees the raw text. The first rejection stops the
    chain. The result is the first typed (non-``str``) conversion the
    chain produced, or *raw* when every constraint only validated.
    """
    value: Any = raw
    typed = False
    for constraint in constraints:
        try:
            converted = constraint(raw)
        except ConstraintRejected:
            raise
        except (TypeError, ValueError) as exc:
            raise ConstraintRejected(str(exc)) from None
        if not typed and not isinstance(converted, str):
            value = converted
            typed = True
    return value
