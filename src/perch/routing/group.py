"""Route groups: shared prefix, filters and metadata for a set of routes.

A group does not own its routes. Each route keeps a back-reference to the
group it was registered through and reads the group chain (outer to inner)
for filters and metadata. Those reads happen when the route table seals,
so a filter added to a group after its routes were registered still
applies to them. Once sealed, groups can no longer change.

Usage::

    api = app.group("/api").with_tags("api")
    v1 = api.group("/v1").add_filter(audit)
    v1.require_authorization("products:read")

    @v1.get("/products/{id:int}", name="product")
    async def product(id: int): ...

    # GET /api/v1/products/42 runs audit, then product(id=42)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, Self

from perch._internal.types import Handler
from perch.routing.pattern import RoutePattern, join_templates
from perch.routing.route import RouteEntry, RouteMetadata

if TYPE_CHECKING:
    from perch.filters.protocol import Filter
    from perch.routing.router import RouteTable
    from perch.server.binding import BindingPlan

type RouteDecorator = Callable[[Handler], Handler]
type Binder = Callable[[Callable[..., Any], RoutePattern], BindingPlan]


class RouteGroup:
    """A prefix plus inherited filters and metadata.

    Every configuration method returns the group itself for chaining.
    """

    __slots__ = ("_binder", "_filters", "_metadata", "_parent", "_prefix", "_table")

    def __init__(
        self,
        table: RouteTable,
        prefix: str = "",
        parent: RouteGroup | None = None,
        *,
        binder: Binder | None = None,
    ) -> None:
        self._table = table
        self._prefix = join_templates(prefix)
        self._parent = parent
        self._binder = binder
        self._filters: list[Filter] = []
        self._metadata = RouteMetadata()
        # Fail fast on a malformed prefix, before any route uses it.
        table.compile(self.full_prefix)

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def parent(self) -> RouteGroup | None:
        return self._parent

    @property
    def full_prefix(self) -> str:
        """Parent prefixes outer to inner, then this group's prefix."""
        if self._parent is None:
            return self._prefix
        return join_templates(self._parent.full_prefix, self._prefix)

    @property
    def filters(self) -> tuple[Filter, ...]:
        return tuple(self._filters)

    @property
    def metadata(self) -> RouteMetadata:
        return self._metadata

    # -- Nesting --

    def group(self, prefix: str) -> RouteGroup:
        """Create a nested group under this one."""
        self._table.check_not_sealed()
        return RouteGroup(self._table, prefix, parent=self, binder=self._binder)

    def lineage(self) -> list[RouteGroup]:
        """This group and its ancestors, outermost first."""
        chain: list[RouteGroup] = []
        node: RouteGroup | None = self
        while node is not None:
            chain.append(node)
            node = node._parent
        chain.reverse()
        return chain

    # -- Registration --

    def route(
        self,
        methods: str | Iterable[str],
        pattern: str,
        handler: Callable[..., Any],
        *,
        filters: Iterable[Filter] = (),
        name: str | None = None,
        tags: Iterable[str] = (),
        authorize: bool | str | Iterable[str] = False,
        allow_anonymous: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> RouteEntry:
        """Register *handler* under this group's prefix.

        The effective path is the group chain's prefixes followed by
        *pattern*; *filters* run after every group filter. *authorize*
        adds policies for this route only: ``True`` for the default
        policy, or one or more policy names.
        """
        self._table.check_not_sealed()
        compiled = self._table.compile(join_templates(self.full_prefix, pattern))
        binding = self._binder(handler, compiled) if self._binder is not None else None
        route_metadata = RouteMetadata(
            name=name,
            tags=tuple(tags),
            authorization=_policies(authorize),
            allow_anonymous=allow_anonymous,
            items=dict(metadata or {}),
        )
        return self._table.register(
            methods,
            compiled,
            handler,
            filters,
            route_metadata,
            group=self,
            binding=binding,
        )

    def _decorator(
        self, methods: str | Iterable[str], pattern: str, **options: Any
    ) -> RouteDecorator:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.route(methods, pattern, func, **options)
            return func

        return decorator

    def get(self, pattern: str, **options: Any) -> RouteDecorator:
        """Register a GET handler via decorator."""
        return self._decorator("GET", pattern, **options)

    def post(self, pattern: str, **options: Any) -> RouteDecorator:
        """Register a POST handler via decorator."""
        return self._decorator("POST", pattern, **options)

    def put(self, pattern: str, **options: Any) -> RouteDecorator:
        """Register a PUT handler via decorator."""
        return self._decorator("PUT", pattern, **options)

    def patch(self, pattern: str, **options: Any) -> RouteDecorator:
        """Register a PATCH handler via decorator."""
        return self._decorator("PATCH", pattern, **options)

    def delete(self, pattern: str, **options: Any) -> RouteDecorator:
        """Register a DELETE handler via decorator."""
        return self._decorator("DELETE", pattern, **options)

    def methods(
        self, methods: Iterable[str], pattern: str, **options: Any
    ) -> RouteDecorator:
        """Register one handler for several methods via decorator."""
        return self._decorator(tuple(methods), pattern, **options)

    # -- Shared configuration --

    def add_filter(self, filter: Filter) -> Self:  # noqa: A002
        """Run *filter* for every route in this group and its subgroups."""
        self._table.check_not_sealed()
        self._filters.append(filter)
        return self

    use = add_filter

    def require_authorization(self, *policies: str) -> Self:
        """Require the authorizer to accept *policies* (default policy if none)."""
        self._table.check_not_sealed()
        required: tuple[str | None, ...] = policies or (None,)
        self._metadata = self._metadata.merged(RouteMetadata(authorization=required))
        return self

    def allow_anonymous(self) -> Self:
        """Skip every authorization requirement inherited by this group."""
        self._table.check_not_sealed()
        self._metadata = self._metadata.merged(RouteMetadata(allow_anonymous=True))
        return self

    def with_tags(self, *tags: str) -> Self:
        self._table.check_not_sealed()
        self._metadata = self._metadata.merged(RouteMetadata(tags=tags))
        return self

    def with_metadata(self, **items: Any) -> Self:
        self._table.check_not_sealed()
        self._metadata = self._metadata.merged(RouteMetadata(items=items))
        return self

    # -- Effective configuration --

    def effective_filters(self) -> tuple[Filter, ...]:
        """Filters of every group in the chain, outermost first."""
        return tuple(f for group in self.lineage() for f in group._filters)

    def effective_metadata(self) -> RouteMetadata:
        """Metadata of every group in the chain, merged outer to inner."""
        merged = RouteMetadata()
        for group in self.lineage():
            merged = merged.merged(group._metadata)
        return merged

    def __repr__(self) -> str:
        return f"RouteGroup({self.full_prefix!r})"


def _policies(authorize: bool | str | Iterable[str]) -> tuple[str | None, ...]:
    if authorize is True:
        return (None,)
    if authorize is False:
        return ()
    if isinstance(authorize, str):
        return (authorize,)
    return tuple(authorize)
