"""Filters: Protocol-based, no inheritance required.

A filter is any callable matching:
    async def f(ctx: InvocationContext, next: Next) -> Any

Built-in filters:
    ResponseCache -- Serve repeated GET responses from a CacheStore
    MemoryCacheStore -- In-process LRU store for ResponseCache
"""

from perch.filters.builtin import CacheStore, MemoryCacheStore, ResponseCache
from perch.filters.protocol import Filter, Next

__all__ = [
    "CacheStore",
    "Filter",
    "MemoryCacheStore",
    "Next",
    "ResponseCache",
]
