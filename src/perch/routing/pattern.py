"""Route templates: parsing, matching and specificity.

A template is split on ``/`` into literal and parameter segments::

    "/users"                 -> [literal "users"]
    "/users/{id:int}"        -> [literal "users", param id (int)]
    "/search/{query?}"       -> [literal "search", optional param query]
    "/pages/{page:int=1}"    -> [literal "pages", optional param page, default 1]
    "/files/{*path}"         -> [literal "files", catch-all param path]

Parameters always fill a whole segment. Optional parameters may only be
followed by other optional parameters or the catch-all, and the catch-all
must come last.

Matching a path returns the bound values together with a ``Specificity``
used to rank competing routes.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from perch.errors import ConstraintRejected, RouteCompileError
from perch.routing.constraints import (
    Constraint,
    ConstraintRegistry,
    ConstraintCall,
    apply_constraints,
    parse_constraint,
)

LITERAL_WEIGHT = 4
CONSTRAINED_WEIGHT = 3
PARAM_WEIGHT = 2
CATCH_ALL_WEIGHT = 1

# RFC 3986 pchar delimiters that need no escaping inside a path segment
_SEGMENT_SAFE = ":@!$&'()*+,;="

_DEFAULT_REGISTRY = ConstraintRegistry()


class _Absent:
    """Marker for an optional parameter the path did not supply."""

    __slots__ = ()
    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = object.__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()
"""Bound to optional parameters omitted from the path. Falsy, never ``""``."""


@dataclass(frozen=True, slots=True)
class Segment:
    """A parsed segment of a route template.

    Literal:   ``users``        (is_param=False)
    Param:     ``{id}``         (is_param=True, name="id")
    Typed:     ``{id:int}``     (constraints=(int,))
    Optional:  ``{q?}``         (optional=True)
    Catch-all: ``{*path}``      (catch_all=True)
    """

    value: str
    is_param: bool = False
    name: str | None = None
    optional: bool = False
    default: Any = ABSENT
    constraints: tuple[ConstraintCall, ...] = ()
    catch_all: bool = False
    checks: tuple[Constraint, ...] = field(default=(), compare=False, repr=False)

    @property
    def weight(self) -> int:
        if not self.is_param:
            return LITERAL_WEIGHT
        if self.catch_all:
            return CATCH_ALL_WEIGHT
        if self.constraints:
            return CONSTRAINED_WEIGHT
        return PARAM_WEIGHT


@dataclass(frozen=True, slots=True, order=True)
class Specificity:
    """Ranking of one pattern against one path. Higher wins.

    ``weights`` holds one weight per consumed path segment (literal 4,
    constrained parameter 3, parameter 2, catch-all 1), compared left to
    right. ``filled`` is minus the number of optional segments the path
    left out. ``closed`` is 1 for patterns without a catch-all.
    """

    weights: tuple[int, ...]
    filled: int = 0
    closed: int = 1


@dataclass(frozen=True, slots=True)
class PatternMatch:
    """Values bound by a successful match.

    ``values`` holds constraint-coerced values (or ``ABSENT`` / defaults),
    ``raw_values`` the path text each parameter captured.
    """

    values: dict[str, Any]
    raw_values: dict[str, str]
    specificity: Specificity


@dataclass(frozen=True, slots=True)
class RoutePattern:
    """A compiled route template."""

    template: str
    segments: tuple[Segment, ...]
    case_sensitive: bool = False
    shapes: frozenset[tuple[Any, ...]] = field(default=frozenset(), compare=False, repr=False)

    @property
    def param_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.segments if s.is_param and s.name)

    def param(self, name: str) -> Segment | None:
        """Return the parameter segment called *name*, if any."""
        for seg in self.segments:
            if seg.is_param and seg.name == name:
                return seg
        return None

    def match(self, path: str) -> PatternMatch | None:
        """Match *path* against this pattern.

        Returns ``None`` when a literal differs, the segment count does
        not fit, or a constraint rejects a captured value.
        """
        parts = split_path(path)
        total = len(parts)
        values: dict[str, Any] = {}
        raw_values: dict[str, str] = {}
        weights: list[int] = []
        omitted = 0
        index = 0

        for seg in self.segments:
            if seg.catch_all:
                rest = parts[index:]
                if not rest:
                    values[seg.name or ""] = seg.default
                    omitted += 1
                    continue
                raw = "/".join(rest)
                try:
                    values[seg.name or ""] = apply_constraints(seg.checks, raw)
                except ConstraintRejected:
                    return None
                raw_values[seg.name or ""] = raw
                weights.extend([CATCH_ALL_WEIGHT] * len(rest))
                index = total
                continue

            if index >= total:
                if seg.optional:
                    values[seg.name or ""] = seg.default
                    omitted += 1
                    continue
                return None

            part = parts[index]
            if not seg.is_param:
                if self.case_sensitive:
                    if part != seg.value:
                        return None
                elif part.casefold() != seg.value.casefold():
                    return None
            else:
                try:
                    values[seg.name or ""] = apply_constraints(seg.checks, part)
                except ConstraintRejected:
                    return None
                raw_values[seg.name or ""] = part
            weights.append(seg.weight)
            index += 1

        if index < total:
            return None

        closed = 0 if self.segments and self.segments[-1].catch_all else 1
        return PatternMatch(
            values=values,
            raw_values=raw_values,
            specificity=Specificity(tuple(weights), -omitted, closed),
        )

    def format(self, values: Mapping[str, Any] | None = None, /, **kwargs: Any) -> str:
        """Build a concrete path by substituting parameter values.

        Omitted optional parameters are left out of the path. Raises
        ``KeyError`` when a required parameter has no value.

        Values are percent-encoded where a path segment requires it;
        ``match`` expects the decoded path an ASGI server puts in
        ``scope["path"]``, so non-ASCII values round-trip through that
        decoding.
        """
        merged = {**(values or {}), **kwargs}
        parts: list[str] = []
        for seg in self.segments:
            if not seg.is_param:
                parts.append(seg.value)
                continue
            value = merged.get(seg.name or "", ABSENT)
            if value is ABSENT or value is None:
                if seg.optional or seg.catch_all:
                    break
                raise KeyError(seg.name)
            text = _format_value(value)
            safe = _SEGMENT_SAFE + "/" if seg.catch_all else _SEGMENT_SAFE
            parts.append(quote(text, safe=safe))
        return "/" + "/".join(parts)

    def __str__(self) -> str:
        return self.template


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def split_path(path: str) -> list[str]:
    """Split a request path into its non-empty segments."""
    return [p for p in path.strip("/").split("/") if p]


def join_templates(*templates: str) -> str:
    """Concatenate template fragments outer to inner into one template."""
    parts: list[str] = []
    for template in templates:
        parts.extend(p for p in template.strip("/").split("/") if p)
    return "/" + "/".join(parts)


def _split_top_level(text: str, sep: str) -> list[str]:
    """Split *text* on *sep*, ignoring separators inside parentheses."""
    pieces: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(text):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif ch == sep and depth == 0:
            pieces.append(text[start:i])
            start = i + 1
    pieces.append(text[start:])
    return pieces


def _parse_param(
    part: str,
    template: str,
    registry: ConstraintRegistry,
) -> Segment:
    inner = part[1:-1].strip()
    if not inner:
        raise RouteCompileError(template, f"empty parameter in segment {part!r}")

    catch_all = inner.startswith("*")
    inner = inner.lstrip("*")

    optional = False
    if inner.endswith("?"):
        optional = True
        inner = inner[:-1]

    default_text: str | None = None
    pieces = _split_top_level(inner, "=")
    if len(pieces) > 2:
        raise RouteCompileError(template, f"multiple default values in {part!r}")
    if len(pieces) == 2:
        inner, default_text = pieces
        if optional:
            raise RouteCompileError(template, f"{part!r} cannot be both optional and defaulted")

    name, *constraint_texts = _split_top_level(inner, ":")
    name = name.strip()
    if not name.isidentifier():
        raise RouteCompileError(template, f"invalid parameter name {name!r}")

    calls: list[ConstraintCall] = []
    for text in constraint_texts:
        try:
            calls.append(parse_constraint(text))
        except ValueError as exc:
            raise RouteCompileError(template, str(exc)) from None
    checks = tuple(registry.build(call, template) for call in calls)

    default: Any = ABSENT
    if default_text is not None:
        try:
            default = apply_constraints(checks, default_text)
        except ConstraintRejected as exc:
            raise RouteCompileError(
                template, f"default value for {name!r} is rejected: {exc}"
            ) from None

    return Segment(
        value=part,
        is_param=True,
        name=name,
        optional=optional or default_text is not None or catch_all,
        default=default,
        constraints=tuple(calls),
        catch_all=catch_all,
        checks=checks,
    )


def parse_template(
    template: str,
    registry: ConstraintRegistry | None = None,
) -> tuple[Segment, ...]:
    """Parse a template into segments, enforcing the structural rules.

    Raises ``RouteCompileError`` on malformed templates.
    """
    registry = registry or _DEFAULT_REGISTRY
    segments: list[Segment] = []
    seen: set[str] = set()

    for part in template.strip("/").split("/"):
        if not part:
            continue
        if part.startswith("<") and part.endswith(">"):
            msg = f"use {{param}} for path parameters, not <param> (got {part!r})"
            raise RouteCompileError(template, msg)
        if part.startswith("{") and part.endswith("}"):
            seg = _parse_param(part, template, registry)
            if seg.name in seen:
                raise RouteCompileError(template, f"duplicate parameter name {seg.name!r}")
            seen.add(seg.name or "")
        elif "{" in part or "}" in part:
            msg = f"a parameter must fill a whole segment (got {part!r})"
            raise RouteCompileError(template, msg)
        else:
            seg = Segment(value=part)

        if segments and segments[-1].catch_all:
            raise RouteCompileError(template, "a catch-all parameter must be the last segment")
        if segments and segments[-1].optional and not seg.optional:
            msg = f"segment {part!r} cannot follow an optional parameter"
            raise RouteCompileError(template, msg)
        segments.append(seg)

    return tuple(segments)


def _shapes(segments: tuple[Segment, ...], case_sensitive: bool) -> frozenset[tuple[Any, ...]]:
    """Every specificity shape a pattern can produce.

    Two patterns that share a shape can tie on some path, so the route
    table refuses to register both for the same method.
    """

    def token(seg: Segment) -> tuple[int, str | None]:
        if seg.is_param:
            return (seg.weight, None)
        return (LITERAL_WEIGHT, seg.value if case_sensitive else seg.value.casefold())

    fixed = [s for s in segments if not s.catch_all]
    has_catch_all = len(fixed) != len(segments)
    closed = 0 if has_catch_all else 1
    required = sum(1 for s in fixed if not s.optional)
    tokens = tuple(token(s) for s in fixed)

    def variants() -> Iterator[tuple[Any, ...]]:
        for consumed in range(required, len(fixed) + 1):
            omitted = len(fixed) - consumed + (1 if has_catch_all else 0)
            yield (tokens[:consumed], -omitted, closed)
        if has_catch_all:
            yield ((*tokens, (CATCH_ALL_WEIGHT, "*")), 0, closed)

    return frozenset(variants())


def compile_pattern(
    template: str,
    *,
    registry: ConstraintRegistry | None = None,
    case_sensitive: bool = False,
) -> RoutePattern:
    """Compile *template* into a ``RoutePattern``.

    Raises ``RouteCompileError`` for duplicate parameter names, unknown
    constraints, malformed constraint arguments, a misplaced catch-all or
    a required segment after an optional one.
    """
    segments = parse_template(template, registry)
    return RoutePattern(
        template=join_templates(template),
        segments=segments,
        case_sensitive=case_sensitive,
        shapes=_shapes(segments, case_sensitive),
    )
