"""Error handling pipeline for perch requests.

Maps HTTPError exceptions and unexpected failures to problem responses,
using registered error handlers or the default problem body.
"""

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

from perch.config import AppConfig
from perch.errors import HandlerFault, HTTPError
from perch.http.request import Request
from perch.http.response import AnyResponse
from perch.http.results import Problem
from perch.server.negotiation import problem_response, to_response

logger = logging.getLogger("perch.server")

type ErrorHandlers = Mapping[int | type, Callable[..., Any]]


async def call_error_handler(
    handler: Callable[..., Any],
    request: Request,
    exc: BaseException,
    config: AppConfig,
) -> AnyResponse:
    """Invoke a user-registered error handler with introspected arguments.

    Error handlers may accept zero, one (request), or two (request, exc) args.
    Supports both sync and async error handlers. The return value goes
    through ``to_response`` like any handler result.
    """
    sig = inspect.signature(handler)
    params = list(sig.parameters.values())

    if len(params) >= 2:
        result = handler(request, exc)
    elif len(params) == 1:
        result = handler(request)
    else:
        result = handler()

    if inspect.isawaitable(result):
        result = await result

    return to_response(result, problem_type_base=config.problem_type_base)


def _lookup(error_handlers: ErrorHandlers, exc: BaseException) -> Callable[..., Any] | None:
    """Most specific registered exception type first, by MRO."""
    for cls in type(exc).__mro__:
        handler = error_handlers.get(cls)
        if handler is not None:
            return handler
    return None


async def handle_http_error(
    exc: HTTPError,
    request: Request,
    error_handlers: ErrorHandlers,
    config: AppConfig,
) -> AnyResponse:
    """Map an HTTPError to a response using registered error handlers."""
    logger.debug("%d %s %s: %s", exc.status, request.method, request.path, exc.detail)

    # Try exact exception type, then status code
    handler = error_handlers.get(type(exc)) or error_handlers.get(exc.status)
    if handler is not None:
        response = await call_error_handler(handler, request, exc, config)
        # Preserve the HTTP status from the exception unless the handler
        # explicitly chose its own status
        if response.status == 200:
            response = response.with_status(exc.status)
        # Headers carried by the error are kept unless the handler set them
        present = {name.lower() for name, _ in response.headers}
        missing = {name: value for name, value in exc.headers if name.lower() not in present}
        return response.with_headers(missing) if missing else response

    return problem_response(
        Problem(
            status=exc.status,
            detail=exc.detail or None,
            instance=request.path,
            headers=exc.headers,
        ),
        type_base=config.problem_type_base,
    )


async def handle_internal_error(
    exc: BaseException,
    request: Request,
    error_handlers: ErrorHandlers,
    config: AppConfig,
) -> AnyResponse:
    """Handle unexpected exceptions as 500 errors.

    Handlers registered for ``HandlerFault`` receive the wrapper with the
    failing route; all others receive the original exception.
    """
    cause = exc.cause if isinstance(exc, HandlerFault) else exc
    logger.exception("500 %s %s", request.method, request.path, exc_info=cause)

    handler = _lookup(error_handlers, cause)
    target: BaseException = cause
    if handler is None and isinstance(exc, HandlerFault):
        handler = error_handlers.get(HandlerFault)
        target = exc
    if handler is None:
        handler = error_handlers.get(500)
    if handler is not None:
        response = await call_error_handler(handler, request, target, config)
        if response.status == 200:
            response = response.with_status(500)
        return response

    detail = None
    extensions: dict[str, Any] = {}
    if config.show_exception_details:
        detail = f"{type(cause).__name__}: {cause}"
        if isinstance(exc, HandlerFault) and exc.route is not None:
            extensions["route"] = str(exc.route)
    return problem_response(
        Problem(status=500, detail=detail, instance=request.path, extensions=extensions),
        type_base=config.problem_type_base,
    )
