"""Filter chain composition.

``build_pipeline`` folds a list of filters around a terminal stage into
a single ``Next`` callable. The chain is built once per route when the
route table seals and reused for every request; per-request state lives
only in the ``InvocationContext`` passed through it.

Ordering for filters ``[A, B, C]`` around handler ``H``::

    A-before, B-before, C-before, H, C-after, B-after, A-after
"""

from collections.abc import Callable, Sequence
from typing import Any

from perch._internal.invoke import invoke
from perch.context import InvocationContext
from perch.filters.protocol import Filter, Next


def endpoint_stage(handler: Callable[..., Any]) -> Next:
    """The innermost stage: call the handler with the bound arguments."""

    async def call_handler(ctx: InvocationContext) -> Any:
        result = await invoke(handler, **ctx.arguments)
        ctx.result = result
        return result

    return call_handler


def build_pipeline(filters: Sequence[Filter], terminal: Next) -> Next:
    """Wrap *terminal* in *filters*, first filter outermost."""
    chain = terminal
    for flt in reversed(filters):
        downstream = chain

        async def stage(
            ctx: InvocationContext,
            _filter: Filter = flt,
            _next: Next = downstream,
        ) -> Any:
            result = await invoke(_filter, ctx, _next)
            ctx.result = result
            return result

        chain = stage
    return chain
