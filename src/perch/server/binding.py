"""Handler parameter binding.

``build_binding_plan`` inspects a handler's signature once, when the route
is registered, and records where each parameter comes from. Per request,
``BindingPlan.bind`` only follows the plan.

Resolution order:

1. ``InvocationContext`` (by annotation, or the name ``ctx`` / ``context``)
2. ``Request`` (by annotation, or the name ``request``)
3. Route values (by name, converted to the annotation)
4. JSON body (dataclass, ``dict`` or ``list`` annotation). On GET/HEAD a
   dataclass is filled from the query string instead, and ``list[X]`` of
   scalars collects every value sent for the name
5. Query string (scalar or unannotated parameters, by name)
6. Service providers (any other annotation, via ``app.provide()``)

Missing required values and failed conversions raise ``BadRequest``.
"""

import enum
import inspect
import typing
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from perch._internal.invoke import invoke
from perch.context import InvocationContext
from perch.errors import BadRequest, ConfigurationError
from perch.extraction import (
    convert,
    extract_dataclass,
    is_extractable_dataclass,
    is_scalar,
    unwrap_optional,
)
from perch.filters.protocol import Filter, Next
from perch.http.request import Request
from perch.routing.pattern import ABSENT, RoutePattern

_EMPTY = inspect.Parameter.empty
_QUERY_METHODS = frozenset({"GET", "HEAD"})
_CONTEXT_NAMES = frozenset({"ctx", "context"})


class Source(enum.Enum):
    CONTEXT = "context"
    REQUEST = "request"
    ROUTE = "route"
    BODY = "body"
    QUERY = "query"
    SERVICE = "service"


@dataclass(frozen=True, slots=True)
class ParamBinding:
    """Where one handler parameter comes from.

    ``annotation`` is the declared type with ``| None`` removed
    (``nullable`` records whether it was there); ``Any`` when unannotated.
    """

    name: str
    source: Source
    annotation: Any = Any
    nullable: bool = False
    default: Any = _EMPTY

    @property
    def has_default(self) -> bool:
        return self.default is not _EMPTY

    def fallback(self, missing: str) -> Any:
        """Value for a missing input: default, ``None`` if nullable, else 400."""
        if self.has_default:
            return self.default
        if self.nullable:
            return None
        raise BadRequest(missing)


@dataclass(frozen=True, slots=True)
class BindingPlan:
    """The validated parameter list of one handler."""

    handler: Callable[..., Any]
    params: tuple[ParamBinding, ...]

    @property
    def services(self) -> tuple[Any, ...]:
        """Annotations that must be satisfied by providers."""
        return tuple(p.annotation for p in self.params if p.source is Source.SERVICE)

    def check_providers(self, providers: Mapping[Any, Any], route: object) -> None:
        """Raise ``ConfigurationError`` for a service type nobody provides."""
        for param in self.params:
            if param.source is Source.SERVICE and param.annotation not in providers:
                name = getattr(param.annotation, "__name__", repr(param.annotation))
                msg = (
                    f"Handler for {route} needs {param.name}: {name}, but no provider "
                    f"is registered. Call app.provide({name}, factory)."
                )
                raise ConfigurationError(msg)

    async def bind(
        self,
        ctx: InvocationContext,
        providers: Mapping[Any, Callable[..., Any]] | None = None,
    ) -> dict[str, Any]:
        """Build the handler's keyword arguments for one request."""
        request = ctx.request
        arguments: dict[str, Any] = {}
        body: Any = ABSENT

        for param in self.params:
            match param.source:
                case Source.CONTEXT:
                    arguments[param.name] = ctx
                case Source.REQUEST:
                    arguments[param.name] = request
                case Source.ROUTE:
                    arguments[param.name] = _bind_route_value(param, ctx)
                case Source.QUERY:
                    arguments[param.name] = _bind_query_value(param, request)
                case Source.BODY:
                    if request.method in _QUERY_METHODS and _is_scalar_list(param.annotation):
                        arguments[param.name] = _bind_query_list(param, request)
                        continue
                    if is_extractable_dataclass(param.annotation) and (
                        request.method in _QUERY_METHODS
                    ):
                        arguments[param.name] = _extract(param, request.query)
                        continue
                    if body is ABSENT:
                        body = _read_json(request)
                    arguments[param.name] = _bind_body(param, body)
                case Source.SERVICE:
                    factory = (providers or {})[param.annotation]
                    arguments[param.name] = await invoke(factory)

        return arguments


def _bind_route_value(param: ParamBinding, ctx: InvocationContext) -> Any:
    value = ctx.route_values.get(param.name, ABSENT)
    if value is ABSENT:
        return param.default if param.has_default else None
    try:
        return convert(value, param.annotation)
    except ValueError as exc:
        msg = f"Route value {param.name!r}: {exc}"
        raise BadRequest(msg) from exc


def _bind_query_value(param: ParamBinding, request: Request) -> Any:
    raw = request.query.get(param.name)
    if raw is None:
        return param.fallback(f"Missing required query parameter {param.name!r}")
    try:
        return convert(raw, param.annotation)
    except ValueError as exc:
        msg = f"Query parameter {param.name!r}: {exc}"
        raise BadRequest(msg) from exc


def _bind_query_list(param: ParamBinding, request: Request) -> list[Any]:
    values = request.query.get_list(param.name)
    if not values:
        return param.fallback(f"Missing required query parameter {param.name!r}")
    (item_type,) = typing.get_args(param.annotation) or (Any,)
    try:
        return [convert(value, item_type) for value in values]
    except ValueError as exc:
        msg = f"Query parameter {param.name!r}: {exc}"
        raise BadRequest(msg) from exc


def _read_json(request: Request) -> Any:
    if not request.body:
        return None
    try:
        return request.json()
    except ValueError as exc:
        msg = "Request body is not valid JSON"
        raise BadRequest(msg) from exc


def _extract(param: ParamBinding, data: Any) -> Any:
    if not isinstance(data, Mapping):
        msg = f"Expected a JSON object for {param.name!r}"
        raise BadRequest(msg)
    try:
        return extract_dataclass(param.annotation, data)
    except (TypeError, ValueError) as exc:
        msg = f"Invalid {param.name!r}: {exc}"
        raise BadRequest(msg) from exc


def _bind_body(param: ParamBinding, body: Any) -> Any:
    if body is None:
        return param.fallback("Missing request body")
    if is_extractable_dataclass(param.annotation):
        return _extract(param, body)
    expected = typing.get_origin(param.annotation) or param.annotation
    if isinstance(expected, type) and not isinstance(body, expected):
        msg = f"Expected a JSON {expected.__name__} for {param.name!r}"
        raise BadRequest(msg)
    return body


def _is_scalar_list(annotation: Any) -> bool:
    if (typing.get_origin(annotation) or annotation) is not list:
        return False
    args = typing.get_args(annotation)
    return not args or args[0] is Any or is_scalar(args[0])


def _is_body_type(annotation: Any) -> bool:
    if is_extractable_dataclass(annotation):
        return True
    origin = typing.get_origin(annotation) or annotation
    return origin in (dict, list)


def _classify(
    name: str, annotation: Any, route_params: Iterable[str]
) -> Source:
    if annotation is InvocationContext or (annotation is Any and name in _CONTEXT_NAMES):
        return Source.CONTEXT
    if annotation is Request or (annotation is Any and name == "request"):
        return Source.REQUEST
    if name in route_params:
        return Source.ROUTE
    if _is_body_type(annotation):
        return Source.BODY
    if annotation is Any or is_scalar(annotation):
        return Source.QUERY
    return Source.SERVICE


def build_binding_plan(handler: Callable[..., Any], pattern: RoutePattern) -> BindingPlan:
    """Inspect *handler* and decide where each parameter comes from.

    Raises ``ConfigurationError`` for parameters that cannot be passed by
    keyword, or whose annotation cannot be resolved.
    """
    try:
        sig = inspect.signature(handler, eval_str=True)
    except (NameError, TypeError, ValueError) as exc:
        msg = f"Cannot inspect handler {handler!r}: {exc}"
        raise ConfigurationError(msg) from exc

    route_params = pattern.param_names
    params: list[ParamBinding] = []
    for name, param in sig.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if param.kind is param.POSITIONAL_ONLY:
            msg = f"Handler parameter {name!r} of {handler!r} is positional-only"
            raise ConfigurationError(msg)
        declared = Any if param.annotation is _EMPTY else param.annotation
        annotation, nullable = unwrap_optional(declared)
        params.append(
            ParamBinding(
                name=name,
                source=_classify(name, annotation, route_params),
                annotation=annotation,
                nullable=nullable,
                default=param.default,
            )
        )
    return BindingPlan(handler=handler, params=tuple(params))


def binding_filter(
    plan: BindingPlan, providers: Mapping[Any, Callable[..., Any]] | None = None
) -> Filter:
    """The pipeline stage that fills ``ctx.arguments`` before any other filter."""

    async def bind_arguments(ctx: InvocationContext, next: Next) -> Any:
        ctx.arguments = await plan.bind(ctx, providers)
        return await next(ctx)

    return bind_arguments
