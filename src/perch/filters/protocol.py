"""Filter protocol and Next type alias.

A filter is any callable matching::

    async def my_filter(ctx: InvocationContext, next: Next) -> Any: ...

No base class required. The framework checks the shape, not the lineage.

``next`` runs the rest of the chain and returns its result: a result
object, a ``Response`` or a plain value. A filter may transform that
result, or return its own without calling ``next`` to short-circuit
every stage below it, the handler included.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from perch.context import InvocationContext

# The next stage in the filter chain
type Next = Callable[[InvocationContext], Awaitable[Any]]


class Filter(Protocol):
    """Protocol for perch filters.

    Accepts both functions and callable objects::

        # Function filter
        async def timing(ctx: InvocationContext, next: Next) -> Any:
            start = time.monotonic()
            result = await next(ctx)
            ctx.items["elapsed"] = time.monotonic() - start
            return result

        # Class filter
        class RequireHeader:
            def __init__(self, name: str) -> None:
                self.name = name

            async def __call__(self, ctx: InvocationContext, next: Next) -> Any:
                if self.name not in ctx.request.headers:
                    return bad_request(f"missing {self.name}")
                return await next(ctx)
    """

    async def __call__(self, ctx: InvocationContext, next: Next) -> Any: ...
