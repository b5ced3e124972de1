"""Route table: registration, ambiguity checks and resolution.

Routes are registered during setup. Registration fails immediately on a
malformed template or on a route that could tie with an existing one for
the same method. Sealing freezes the table and compiles one filter chain
per route; after that the table is read-only and safe to share between
concurrent requests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from perch.errors import AmbiguousRouteError, ConfigurationError, RouteTableSealed
from perch.routing.constraints import ConstraintRegistry
from perch.routing.pattern import RoutePattern, compile_pattern
from perch.routing.route import (
    NoRoute,
    Resolution,
    RouteEntry,
    RouteMatch,
    RouteMetadata,
    WrongMethod,
)

if TYPE_CHECKING:
    from perch.filters.protocol import Filter
    from perch.routing.group import RouteGroup
    from perch.server.binding import BindingPlan

logger = logging.getLogger("perch.routing")


def normalize_methods(methods: str | Iterable[str]) -> frozenset[str]:
    """Upper-case one method or a collection of methods."""
    if isinstance(methods, str):
        methods = [methods]
    normalized = frozenset(m.strip().upper() for m in methods if m and m.strip())
    if not normalized:
        msg = "A route needs at least one HTTP method."
        raise ConfigurationError(msg)
    return normalized


class RouteTable:
    """Append-only route table with specificity-ranked resolution.

    Usage::

        table = RouteTable()
        table.register("GET", "/users/{id:int}", get_user)
        table.register("GET", "/users/me", get_me)
        table.seal()

        match = table.resolve("GET", "/users/42")    # RouteMatch, id=42
        table.resolve("GET", "/users/me")            # literal beats {id:int}
        table.resolve("POST", "/users/42")           # WrongMethod(allowed={"GET"})
        table.resolve("GET", "/nope")                # NoRoute
    """

    __slots__ = ("_case_sensitive", "_chains", "_entries", "_names", "_registry", "_sealed")

    def __init__(
        self,
        *,
        registry: ConstraintRegistry | None = None,
        case_sensitive: bool = False,
    ) -> None:
        self._registry = registry or ConstraintRegistry()
        self._case_sensitive = case_sensitive
        self._entries: list[RouteEntry] = []
        self._names: dict[str, RouteEntry] = {}
        self._chains: dict[int, Any] = {}
        self._sealed = False

    @property
    def registry(self) -> ConstraintRegistry:
        return self._registry

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def routes(self) -> tuple[RouteEntry, ...]:
        """All registered routes, in registration order."""
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def compile(self, template: str) -> RoutePattern:
        """Compile *template* with this table's constraints and case policy."""
        return compile_pattern(
            template,
            registry=self._registry,
            case_sensitive=self._case_sensitive,
        )

    def register(
        self,
        methods: str | Iterable[str],
        pattern: str | RoutePattern,
        handler: Callable[..., Any],
        filters: Iterable[Filter] = (),
        metadata: RouteMetadata | None = None,
        *,
        group: RouteGroup | None = None,
        binding: BindingPlan | None = None,
    ) -> RouteEntry:
        """Add a route. Must be called before ``seal()``.

        Raises ``RouteCompileError`` for a malformed template,
        ``AmbiguousRouteError`` when the route could tie with an existing
        one for a shared method, and ``RouteTableSealed`` after sealing.

        The ambiguity check compares segment shapes only. Constraints are
        not consulted, so ``/users/{id:int}`` and ``/users/{name:alpha}``
        conflict even though no path matches both; give such routes
        distinct literal segments or methods.
        """
        self.check_not_sealed()

        method_set = normalize_methods(methods)
        compiled = self.compile(pattern) if isinstance(pattern, str) else pattern
        metadata = metadata or RouteMetadata()

        for existing in self._entries:
            if existing.methods & method_set and existing.pattern.shapes & compiled.shapes:
                raise AmbiguousRouteError(
                    existing.template,
                    compiled.template,
                    existing.methods & method_set,
                )

        if metadata.name is not None and metadata.name in self._names:
            msg = (
                f"Route name {metadata.name!r} is already used by "
                f"{self._names[metadata.name]}."
            )
            raise ConfigurationError(msg)

        entry = RouteEntry(
            methods=method_set,
            pattern=compiled,
            handler=handler,
            filters=tuple(filters),
            metadata=metadata,
            group=group,
            binding=binding,
        )
        self._entries.append(entry)
        if metadata.name is not None:
            self._names[metadata.name] = entry
        logger.debug("Registered route %s", entry)
        return entry

    def seal(self, build_chain: Callable[[RouteEntry], Any] | None = None) -> None:
        """Freeze the table. No more routes can be added.

        When *build_chain* is given it is called once per route and the
        result is kept as that route's compiled pipeline (see ``chain``).
        Sealing twice is a no-op.
        """
        if self._sealed:
            return
        if build_chain is not None:
            for entry in self._entries:
                self._chains[id(entry)] = build_chain(entry)
        self._sealed = True
        logger.debug("Route table sealed with %d route(s)", len(self._entries))

    def chain(self, entry: RouteEntry) -> Any:
        """Return the pipeline compiled for *entry* at seal time."""
        return self._chains[id(entry)]

    def check_not_sealed(self, detail: str = "") -> None:
        if self._sealed:
            raise RouteTableSealed(detail)

    def resolve(self, method: str, path: str) -> Resolution:
        """Resolve a request to a route.

        Every pattern is tried against the path regardless of method so
        that "no such path" (``NoRoute``) and "path exists, wrong method"
        (``WrongMethod``) stay distinct. Among routes for the request
        method, the highest ``Specificity`` wins. Registration rejects
        routes that could tie, so the winner is unique.
        """
        method = method.upper()
        best: RouteMatch | None = None
        allowed: set[str] = set()

        for entry in self._entries:
            matched = entry.pattern.match(path)
            if matched is None:
                continue
            allowed.update(entry.methods)
            if method not in entry.methods:
                continue
            if best is None or matched.specificity > best.specificity:
                best = RouteMatch(
                    entry=entry,
                    values=matched.values,
                    raw_values=matched.raw_values,
                    specificity=matched.specificity,
                )

        if best is not None:
            return best
        if allowed:
            return WrongMethod(method=method, path=path, allowed=frozenset(allowed))
        return NoRoute(method=method, path=path)

    def find(self, name: str) -> RouteEntry:
        """Return the route registered under *name*. Raises ``KeyError``."""
        try:
            return self._names[name]
        except KeyError:
            msg = f"No route named {name!r}"
            raise KeyError(msg) from None

    def url_for(self, name: str, values: Mapping[str, Any] | None = None, /, **kwargs: Any) -> str:
        """Build the path of the route called *name* from parameter values."""
        return self.find(name).pattern.format(values, **kwargs)
