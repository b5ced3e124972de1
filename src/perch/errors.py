"""Perch exception hierarchy.

Shared across the route table, groups, the filter pipeline and the ASGI
handler so every module raises and catches the same types.

Registration errors (``RouteCompileError``, ``AmbiguousRouteError``,
``RouteTableSealed``) surface at startup. ``HTTPError`` subclasses are
raised at request time and mapped to problem responses.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any


class PerchError(Exception):
    """Base for all perch-specific errors."""


class ConfigurationError(PerchError):
    """Raised when app configuration is invalid.

    Typically raised while sealing the app, before the first request.
    """


class RouteCompileError(ConfigurationError):
    """A route template or one of its constraints is malformed."""

    def __init__(self, template: str, reason: str) -> None:
        self.template = template
        self.reason = reason
        super().__init__(f"Invalid route template {template!r}: {reason}")


class AmbiguousRouteError(ConfigurationError):
    """A new route ties with an existing one for the same method.

    Two routes tie when their patterns have the same shape (same literals
    and the same parameter kinds in the same positions).
    """

    def __init__(self, existing: str, template: str, methods: Iterable[str]) -> None:
        self.existing = existing
        self.template = template
        self.methods = frozenset(methods)
        method_list = ", ".join(sorted(self.methods))
        super().__init__(
            f"Route {template!r} ({method_list}) is ambiguous with "
            f"already registered route {existing!r}"
        )


class RouteTableSealed(PerchError, RuntimeError):
    """Raised when routes, groups or filters change after sealing."""

    def __init__(self, detail: str = "") -> None:
        msg = (
            "Cannot modify routes after the app has started serving requests. "
            "Register routes, groups and filters before the first request."
        )
        super().__init__(f"{msg} {detail}".strip())


class ConstraintRejected(ValueError):
    """A path segment failed a route constraint.

    Never reaches the caller: the candidate route simply does not match.
    """


@dataclass(frozen=True, slots=True)
class HTTPError(PerchError):
    """An error that maps directly to an HTTP status code.

    Raised by handlers, filters or parameter binding. The ASGI handler
    catches these and turns them into problem responses, unless an
    ``@app.error()`` handler is registered for the status or type.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class BadRequest(HTTPError):  # noqa: N818
    """400: a handler argument could not be bound."""

    def __init__(self, detail: str = "Bad Request") -> None:
        super().__init__(status=400, detail=detail)


class Unauthorized(HTTPError):  # noqa: N818
    """401: the request carries no usable credentials."""

    def __init__(self, detail: str = "Unauthorized", challenge: str = "") -> None:
        headers = (("WWW-Authenticate", challenge),) if challenge else ()
        super().__init__(status=401, detail=detail, headers=headers)


class Forbidden(HTTPError):  # noqa: N818
    """403: an authorization policy denied the request."""

    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(status=403, detail=detail)


class NotFound(HTTPError):  # noqa: N818
    """404: no route matched the request path."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818
    """405: a route matches the path but not the HTTP method.

    Includes an ``Allow`` header listing the valid methods.
    """

    def __init__(self, allowed: frozenset[str], detail: str = "") -> None:
        allow_value = ", ".join(sorted(allowed))
        default_detail = f"Method not allowed. Allowed methods: {allow_value}"
        super().__init__(
            status=405,
            detail=detail or default_detail,
            headers=(("Allow", allow_value),),
        )


class PayloadTooLarge(HTTPError):  # noqa: N818
    """413: the request body exceeds ``AppConfig.max_content_length``."""

    def __init__(self, limit: int) -> None:
        super().__init__(status=413, detail=f"Request body exceeds {limit} bytes")


class HandlerFault(PerchError):
    """An unhandled failure inside a filter or handler.

    Wraps the original exception together with the route it happened on,
    so error handlers and logs can tell which endpoint failed.
    """

    def __init__(self, cause: BaseException, route: Any = None) -> None:
        self.cause = cause
        self.route = route
        where = f" in {route}" if route is not None else ""
        super().__init__(f"{type(cause).__name__}{where}: {cause}")
