"""RouteEntry, RouteMetadata and the resolution outcome types."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from perch.routing.pattern import RoutePattern, Specificity

if TYPE_CHECKING:
    from perch.filters.protocol import Filter
    from perch.routing.group import RouteGroup
    from perch.server.binding import BindingPlan


@dataclass(frozen=True, slots=True)
class RouteMetadata:
    """Descriptive data attached to a route or a group.

    ``authorization`` lists policy names (``None`` is the authorizer's
    default policy). ``allow_anonymous`` drops every inherited policy.
    """

    name: str | None = None
    tags: tuple[str, ...] = ()
    authorization: tuple[str | None, ...] = ()
    allow_anonymous: bool = False
    items: Mapping[str, Any] = field(default_factory=dict)

    def merged(self, inner: RouteMetadata) -> RouteMetadata:
        """Combine outer (``self``) and inner metadata. Inner wins on conflicts."""
        tags = tuple(dict.fromkeys((*self.tags, *inner.tags)))
        return RouteMetadata(
            name=inner.name or self.name,
            tags=tags,
            authorization=(*self.authorization, *inner.authorization),
            allow_anonymous=self.allow_anonymous or inner.allow_anonymous,
            items={**self.items, **inner.items},
        )

    @property
    def requires_authorization(self) -> bool:
        return bool(self.authorization) and not self.allow_anonymous


@dataclass(frozen=True, slots=True, eq=False)
class RouteEntry:
    """A registered route. Immutable once the route table accepts it.

    Group-level filters and metadata are read through ``group`` so that
    group changes made before sealing reach routes registered earlier.
    """

    methods: frozenset[str]
    pattern: RoutePattern
    handler: Callable[..., Any]
    filters: tuple[Filter, ...] = ()
    metadata: RouteMetadata = field(default_factory=RouteMetadata)
    group: RouteGroup | None = field(default=None, repr=False)
    binding: BindingPlan | None = field(default=None, repr=False)

    @property
    def template(self) -> str:
        return self.pattern.template

    @property
    def name(self) -> str | None:
        return self.metadata.name

    def effective_filters(self) -> tuple[Filter, ...]:
        """Group filters outer to inner, then the route's own filters."""
        if self.group is None:
            return self.filters
        return (*self.group.effective_filters(), *self.filters)

    def effective_metadata(self) -> RouteMetadata:
        """Group metadata outer to inner, merged with the route's own."""
        if self.group is None:
            return self.metadata
        return self.group.effective_metadata().merged(self.metadata)

    def __str__(self) -> str:
        return f"{'|'.join(sorted(self.methods))} {self.template}"


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful resolution."""

    entry: RouteEntry
    values: dict[str, Any]
    raw_values: dict[str, str]
    specificity: Specificity


@dataclass(frozen=True, slots=True)
class NoRoute:
    """No registered pattern matches the path (404)."""

    method: str
    path: str


@dataclass(frozen=True, slots=True)
class WrongMethod:
    """The path matches, but not for this method (405)."""

    method: str
    path: str
    allowed: frozenset[str]


type Resolution = RouteMatch | NoRoute | WrongMethod
