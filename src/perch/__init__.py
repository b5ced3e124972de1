"""Perch: a minimal-API routing core for ASGI.

Route templates with typed constraints, route groups with shared
prefixes, filters and authorization, typed results, and an endpoint
filter pipeline.

Basic usage::

    from perch import App, ok

    app = App()

    @app.get("/hello/{name:alpha?}")
    def hello(name: str | None):
        return ok({"hello": name or "world"})

Serve it with any ASGI server::

    uvicorn module:app
"""

__version__ = "0.1.0"
__all__ = [
    "ABSENT",
    "App",
    "AppConfig",
    "BadRequest",
    "ConfigurationError",
    "Content",
    "FileResult",
    "Filter",
    "Forbidden",
    "HTTPError",
    "InvocationContext",
    "MethodNotAllowed",
    "Next",
    "NotFound",
    "PerchError",
    "Problem",
    "Redirect",
    "Request",
    "Response",
    "RouteGroup",
    "Status",
    "Unauthorized",
    "accepted",
    "bad_request",
    "conflict",
    "created",
    "file",
    "forbidden",
    "get_context",
    "json",
    "local_redirect",
    "no_content",
    "not_found",
    "ok",
    "problem",
    "redirect",
    "status_code",
    "text",
    "unauthorized",
    "unprocessable_entity",
    "validation_problem",
]

_RESULT_NAMES = frozenset(
    {
        "Content",
        "FileResult",
        "Problem",
        "Redirect",
        "Status",
        "accepted",
        "bad_request",
        "conflict",
        "created",
        "file",
        "forbidden",
        "json",
        "local_redirect",
        "no_content",
        "not_found",
        "ok",
        "problem",
        "redirect",
        "status_code",
        "text",
        "unauthorized",
        "unprocessable_entity",
        "validation_problem",
    }
)

_ERROR_NAMES = frozenset(
    {
        "BadRequest",
        "ConfigurationError",
        "Forbidden",
        "HTTPError",
        "MethodNotAllowed",
        "NotFound",
        "PerchError",
        "Unauthorized",
    }
)


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import perch`` fast while providing a clean top-level API.
    """
    if name == "App":
        from perch.app import App

        return App

    if name == "AppConfig":
        from perch.config import AppConfig

        return AppConfig

    if name == "Request":
        from perch.http.request import Request

        return Request

    if name == "Response":
        from perch.http.response import Response

        return Response

    if name == "RouteGroup":
        from perch.routing.group import RouteGroup

        return RouteGroup

    if name == "ABSENT":
        from perch.routing.pattern import ABSENT

        return ABSENT

    if name in _RESULT_NAMES:
        from perch.http import results as _results

        return getattr(_results, name)

    if name in ("Filter", "Next"):
        from perch.filters import protocol as _filters

        return getattr(_filters, name)

    if name in ("InvocationContext", "get_context"):
        from perch import context as _ctx

        return getattr(_ctx, name)

    if name in _ERROR_NAMES:
        from perch import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
