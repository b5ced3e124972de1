"""Per-request invocation state.

``InvocationContext`` is created for every request that resolves to a
route and dropped once the response is written. Filters read and write it;
the handler receives its ``arguments``.

``context_var`` holds the current context for code that has no direct
reference to it (providers, helpers called from handlers).

Thread safety:
    ``ContextVar`` is task-local under asyncio/anyio. Each request runs in
    its own task, so no locks are needed.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from perch.http.request import Request
    from perch.routing.route import RouteEntry


@dataclass(slots=True, eq=False)
class InvocationContext:
    """Mutable state for one request on its way through the pipeline.

    Attributes:
        request: The incoming request.
        entry: The route the request resolved to.
        route_values: Constraint-coerced route parameters (``ABSENT`` for
            omitted optional ones).
        raw_values: Path text captured for each parameter.
        arguments: Handler keyword arguments, bound before the first
            filter runs. Filters may inspect or replace them.
        result: The in-flight result. Set whenever a stage returns.
        items: Free-form per-request storage for filters.
        cancelled: Set when the client disconnects or the deadline passes.
        problem_type_base: ``type`` URI for problem bodies built by filters.
    """

    request: Request
    entry: RouteEntry
    route_values: dict[str, Any] = field(default_factory=dict)
    raw_values: dict[str, str] = field(default_factory=dict)
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    items: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    problem_type_base: str = "about:blank"

    def get_argument(self, name: str, default: Any = None) -> Any:
        return self.arguments.get(name, default)

    def __repr__(self) -> str:
        return f"<InvocationContext {self.request.method} {self.request.path} -> {self.entry}>"


context_var: ContextVar[InvocationContext] = ContextVar("perch_context")
"""The current invocation context. Set by the ASGI handler before dispatch."""


def get_context() -> InvocationContext:
    """Return the current invocation context.

    Raises ``LookupError`` if called outside a routed request.
    """
    return context_var.get()
