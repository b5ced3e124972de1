"""Built-in filters: authorization and response caching.

``authorization_filter`` is installed by the app as the outermost stage
of every route whose effective metadata requires authorization. The
decision itself belongs to the app's authorizer::

    async def authorizer(request: Request, policy: str | None) -> bool:
        token = request.headers.get("authorization")
        if token is None:
            raise Unauthorized(challenge="Bearer")
        return policy is None or policy in scopes_for(token)

    app = App(authorizer=authorizer)

``ResponseCache`` keeps successful GET responses in an injected store::

    cache = ResponseCache(MemoryCacheStore(), ttl=30)
    app.group("/catalog").add_filter(cache)
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from perch._internal.invoke import invoke
from perch.context import InvocationContext
from perch.errors import Forbidden
from perch.filters.protocol import Filter, Next
from perch.http.request import Request
from perch.http.response import Response
from perch.server.negotiation import to_response

type Authorizer = Callable[[Request, str | None], bool | Awaitable[bool]]


def authorization_filter(policies: Iterable[str | None], authorizer: Authorizer) -> Filter:
    """Check every policy in order; the first denial raises ``Forbidden``.

    ``None`` stands for the authorizer's default policy. The authorizer
    may raise an ``HTTPError`` itself (``Unauthorized`` for a missing
    credential, for instance).
    """
    required = tuple(dict.fromkeys(policies))

    async def authorize(ctx: InvocationContext, next: Next) -> Any:
        for policy in required:
            if not await invoke(authorizer, ctx.request, policy):
                label = policy or "default"
                raise Forbidden(f"Authorization policy {label!r} denied the request")
        return await next(ctx)

    return authorize


# ---------------------------------------------------------------------------
# Response caching
# ---------------------------------------------------------------------------


class CacheStore(Protocol):
    """Storage behind ``ResponseCache``. Methods may be sync or async."""

    def get(self, key: str) -> Response | None | Awaitable[Response | None]: ...

    def set(self, key: str, response: Response, ttl: float) -> None | Awaitable[None]: ...


class MemoryCacheStore:
    """In-process LRU store with per-entry expiry.

    Thread-safe: a Lock guards the entry map, so one store can be shared
    by every worker thread of a free-threaded server.
    """

    __slots__ = ("_clock", "_entries", "_lock", "max_entries")

    def __init__(
        self,
        max_entries: int = 1024,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Response]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Response | None:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires, response = item
            if expires <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return response

    def set(self, key: str, response: Response, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl, response)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def default_cache_key(request: Request) -> str:
    return f"{request.method} {request.url}"


class ResponseCache:
    """Serve repeated requests from a ``CacheStore``.

    Only buffered 200 responses to cacheable methods are stored. Hits skip
    every stage below this filter, the handler included, and carry
    ``X-Cache: HIT``.
    """

    __slots__ = ("key", "methods", "store", "ttl")

    def __init__(
        self,
        store: CacheStore,
        *,
        ttl: float = 60.0,
        methods: Iterable[str] = ("GET", "HEAD"),
        key: Callable[[Request], str] = default_cache_key,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self.methods = frozenset(m.upper() for m in methods)
        self.key = key

    async def __call__(self, ctx: InvocationContext, next: Next) -> Any:
        if ctx.request.method not in self.methods:
            return await next(ctx)

        cache_key = self.key(ctx.request)
        cached = await invoke(self.store.get, cache_key)
        if cached is not None:
            return cached.with_header("X-Cache", "HIT")

        result = await next(ctx)
        response = to_response(result, problem_type_base=ctx.problem_type_base)
        if isinstance(response, Response) and response.status == 200:
            await invoke(self.store.set, cache_key, response, self.ttl)
            return response.with_header("X-Cache", "MISS")
        return result
