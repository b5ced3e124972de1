"""ASGI handler: translates ASGI scope/messages to perch types.

The only component that touches raw ASGI directly, together with the
sender. Reads the request body, resolves the route, runs the route's
compiled filter chain under a cancel scope and sends the response back
through ASGI send().

Cancellation:
    While the chain runs, a monitor task keeps reading ``receive()``.
    An ``http.disconnect`` marks the context cancelled and cancels the
    chain; nothing is sent. ``AppConfig.request_timeout`` bounds the
    chain with ``anyio.move_on_after``; a timed out request gets a 504
    problem response.
"""

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import anyio

from perch._internal.asgi import Receive, Scope, Send
from perch._internal.invoke import invoke
from perch.config import AppConfig
from perch.context import InvocationContext, context_var
from perch.errors import (
    ConfigurationError,
    HandlerFault,
    HTTPError,
    MethodNotAllowed,
    NotFound,
    PayloadTooLarge,
)
from perch.filters.builtin import Authorizer, authorization_filter
from perch.filters.pipeline import build_pipeline, endpoint_stage
from perch.filters.protocol import Filter, Next
from perch.http.request import Request
from perch.http.response import AnyResponse, FileResponse
from perch.http.results import Problem
from perch.routing.route import NoRoute, RouteEntry, RouteMatch, WrongMethod
from perch.routing.router import RouteTable
from perch.server.binding import binding_filter, build_binding_plan
from perch.server.errors import ErrorHandlers, handle_http_error, handle_internal_error
from perch.server.events import EventSink, RequestEvent
from perch.server.negotiation import problem_response, to_response
from perch.server.sender import send_any, send_response

logger = logging.getLogger("perch.server")


class _ClientDisconnected(Exception):
    """The client went away before the request body was complete."""


def compile_chain(
    entry: RouteEntry,
    *,
    authorizer: Authorizer | None = None,
    providers: Mapping[Any, Callable[..., Any]] | None = None,
) -> Next:
    """Build the pipeline for one route. Called once per route at seal time.

    Stage order: authorization (when required), argument binding, group
    filters outer to inner, the route's own filters, the handler.
    """
    metadata = entry.effective_metadata()
    plan = entry.binding or build_binding_plan(entry.handler, entry.pattern)
    plan.check_providers(providers or {}, entry)

    stages: list[Filter] = []
    if metadata.requires_authorization:
        if authorizer is None:
            msg = (
                f"Route {entry} requires authorization but the app has no "
                "authorizer. Pass App(authorizer=...)."
            )
            raise ConfigurationError(msg)
        stages.append(authorization_filter(metadata.authorization, authorizer))
    stages.append(binding_filter(plan, providers))
    stages.extend(entry.effective_filters())
    return build_pipeline(stages, endpoint_stage(entry.handler))


async def read_body(receive: Receive, limit: int) -> bytes:
    """Read the complete request body, at most *limit* bytes."""
    chunks: list[bytes] = []
    size = 0
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            raise _ClientDisconnected
        if message["type"] != "http.request":
            continue
        chunk = message.get("body", b"")
        size += len(chunk)
        if size > limit:
            raise PayloadTooLarge(limit)
        chunks.append(chunk)
        if not message.get("more_body", False):
            return b"".join(chunks)


async def run_chain(
    chain: Next,
    ctx: InvocationContext,
    receive: Receive,
    timeout: float | None,
) -> tuple[Any, str]:
    """Run *chain* under the disconnect monitor and the request deadline.

    Returns ``(result, outcome)`` where outcome is ``"completed"``,
    ``"timeout"`` or ``"disconnected"``. Exceptions from the chain are
    re-raised: ``HTTPError`` as is, anything else wrapped in
    ``HandlerFault``.
    """
    result: Any = None
    error: Exception | None = None
    timed_out = False

    async with anyio.create_task_group() as tg:

        async def monitor_disconnect() -> None:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    ctx.cancelled = True
                    tg.cancel_scope.cancel()
                    return

        tg.start_soon(monitor_disconnect)
        try:
            with anyio.move_on_after(timeout) as deadline:
                result = await chain(ctx)
            if deadline.cancelled_caught:
                timed_out = True
                ctx.cancelled = True
        except Exception as exc:
            error = exc
        finally:
            tg.cancel_scope.cancel()

    if timed_out:
        return None, "timeout"
    if ctx.cancelled:
        return None, "disconnected"
    if error is not None:
        if isinstance(error, HTTPError):
            raise error
        raise HandlerFault(error, ctx.entry) from error
    return result, "completed"


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    table: RouteTable,
    error_handlers: ErrorHandlers,
    config: AppConfig,
    event_sink: EventSink | None = None,
) -> None:
    """Process a single HTTP request through the full pipeline."""
    if scope["type"] != "http":
        return

    started = time.perf_counter()
    request = Request.from_asgi(scope)
    route: str | None = None
    outcome = "completed"
    response: AnyResponse | None = None

    try:
        declared = request.content_length
        if declared is not None and declared > config.max_content_length:
            raise PayloadTooLarge(config.max_content_length)
        request = Request.from_asgi(scope, await read_body(receive, config.max_content_length))

        resolution = table.resolve(request.method, request.path)
        match resolution:
            case NoRoute():
                raise NotFound(f"No route matches {request.path}")
            case WrongMethod(allowed=allowed):
                raise MethodNotAllowed(allowed)
            case RouteMatch(entry=entry):
                route = entry.template
                request = request.with_route_values(resolution.values)
                ctx = InvocationContext(
                    request=request,
                    entry=entry,
                    route_values=dict(resolution.values),
                    raw_values=dict(resolution.raw_values),
                    problem_type_base=config.problem_type_base,
                )
                token = context_var.set(ctx)
                try:
                    result, outcome = await run_chain(
                        table.chain(entry), ctx, receive, config.request_timeout
                    )
                finally:
                    context_var.reset(token)

                if outcome == "timeout":
                    logger.warning(
                        "Request %s %s exceeded %ss", request.method, request.path,
                        config.request_timeout,
                    )
                    response = problem_response(
                        Problem(
                            status=504,
                            detail=f"Request exceeded {config.request_timeout}s",
                            instance=request.path,
                        ),
                        type_base=config.problem_type_base,
                    )
                elif outcome == "completed":
                    response = to_response(result, problem_type_base=config.problem_type_base)
    except _ClientDisconnected:
        outcome = "disconnected"
    except HTTPError as exc:
        response = await handle_http_error(exc, request, error_handlers, config)
    except Exception as exc:
        outcome = "error"
        response = await handle_internal_error(exc, request, error_handlers, config)

    if outcome == "disconnected":
        logger.info("Client disconnected: %s %s", request.method, request.path)
    elif response is not None:
        response, failed = await _send(response, request, send, error_handlers, config)
        if failed:
            outcome = "error"

    if event_sink is not None:
        event = RequestEvent(
            method=request.method,
            path=request.path,
            status=response.status if response is not None else None,
            duration=time.perf_counter() - started,
            outcome=outcome,
            route=route,
        )
        try:
            await invoke(event_sink.emit, event)
        except Exception:
            logger.exception("Event sink failed for %s %s", request.method, request.path)


async def _send(
    response: AnyResponse,
    request: Request,
    send: Send,
    error_handlers: ErrorHandlers,
    config: AppConfig,
) -> tuple[AnyResponse, bool]:
    """Send *response* and return what actually went out.

    A failure before the status line is sent is replaced by an error
    response: a file that vanished becomes a 404, anything else goes
    through the 500 handling. A failure after the status line can only
    be logged. The flag reports whether writing failed with a server error.
    """
    response_started = False

    async def tracked(message: dict[str, Any]) -> None:
        nonlocal response_started
        if message["type"] == "http.response.start":
            response_started = True
        await send(message)

    try:
        await send_any(response, tracked)
    except Exception as exc:
        if response_started:
            logger.exception("Response failed after start: %s %s", request.method, request.path)
            return response, True
        if isinstance(exc, FileNotFoundError) and isinstance(response, FileResponse):
            logger.warning(
                "File not found for %s %s: %s", request.method, request.path, response.path
            )
            fallback = problem_response(
                Problem(status=404, detail="File not found", instance=request.path),
                type_base=config.problem_type_base,
            )
            failed = False
        else:
            fallback = await handle_internal_error(exc, request, error_handlers, config)
            failed = True
        try:
            await send_any(fallback, tracked)
        except Exception:
            logger.exception("Error response failed for %s %s", request.method, request.path)
            if not response_started:
                fallback = problem_response(
                    Problem(status=500, instance=request.path),
                    type_base=config.problem_type_base,
                )
                await send_response(fallback, send)
            failed = True
        return fallback, failed
    return response, False
