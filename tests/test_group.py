"""Tests for perch.routing.group: prefixes, inherited filters and metadata."""

import pytest

from perch.errors import RouteCompileError, RouteTableSealed
from perch.routing.group import RouteGroup
from perch.routing.route import RouteMatch, RouteMetadata
from perch.routing.router import RouteTable


async def audit(ctx, next):
    return await next(ctx)


async def timing(ctx, next):
    return await next(ctx)


async def local(ctx, next):
    return await next(ctx)


def handler() -> str:
    return "ok"


@pytest.fixture
def table() -> RouteTable:
    return RouteTable()


@pytest.fixture
def root(table: RouteTable) -> RouteGroup:
    return RouteGroup(table)


class TestPrefixes:
    def test_nested_prefixes_concatenate(self, root: RouteGroup) -> None:
        v1 = root.group("/api").group("v1/")
        assert v1.full_prefix == "/api/v1"
        entry = v1.route("GET", "/users/{id:int}", handler)
        assert entry.template == "/api/v1/users/{id:int}"

    def test_empty_route_pattern_maps_to_prefix(self, root: RouteGroup) -> None:
        entry = root.group("/health").route("GET", "", handler)
        assert entry.template == "/health"

    def test_prefix_parameters(self, table: RouteTable, root: RouteGroup) -> None:
        tenant = root.group("/tenants/{tenant}")
        tenant.route("GET", "/users", handler)
        match = table.resolve("GET", "/tenants/acme/users")
        assert isinstance(match, RouteMatch)
        assert match.values == {"tenant": "acme"}

    def test_malformed_prefix_fails_immediately(self, root: RouteGroup) -> None:
        with pytest.raises(RouteCompileError):
            root.group("/bad/{id:nope}")

    def test_lineage(self, root: RouteGroup) -> None:
        api = root.group("/api")
        v1 = api.group("/v1")
        assert v1.lineage() == [root, api, v1]
        assert v1.parent is api
        assert repr(v1) == "RouteGroup('/api/v1')"


class TestFilters:
    def test_group_filters_outer_to_inner_then_route(self, root: RouteGroup) -> None:
        api = root.group("/api").add_filter(audit)
        v1 = api.group("/v1").add_filter(timing)
        entry = v1.route("GET", "/x", handler, filters=[local])
        assert entry.effective_filters() == (audit, timing, local)

    def test_filter_added_after_registration_still_applies(self, root: RouteGroup) -> None:
        api = root.group("/api")
        entry = api.route("GET", "/x", handler)
        api.add_filter(audit)
        assert entry.effective_filters() == (audit,)

    def test_sibling_groups_are_isolated(self, root: RouteGroup) -> None:
        first = root.group("/a").add_filter(audit)
        second = root.group("/b")
        entry = second.route("GET", "/x", handler)
        assert entry.effective_filters() == ()
        assert first.filters == (audit,)

    def test_use_is_an_alias(self, root: RouteGroup) -> None:
        group = root.group("/a").use(audit)
        assert group.filters == (audit,)


class TestMetadata:
    def test_tags_merge_without_duplicates(self, root: RouteGroup) -> None:
        api = root.group("/api").with_tags("api")
        entry = api.group("/v1").with_tags("v1", "api").route(
            "GET", "/x", handler, tags=["items"]
        )
        assert entry.effective_metadata().tags == ("api", "v1", "items")

    def test_inner_items_win(self, root: RouteGroup) -> None:
        api = root.group("/api").with_metadata(owner="core", tier=1)
        entry = api.route("GET", "/x", handler, metadata={"tier": 2})
        assert entry.effective_metadata().items == {"owner": "core", "tier": 2}

    def test_authorization_accumulates(self, root: RouteGroup) -> None:
        api = root.group("/api").require_authorization()
        admin = api.group("/admin").require_authorization("admin")
        entry = admin.route("GET", "/x", handler, authorize="audit")
        metadata = entry.effective_metadata()
        assert metadata.authorization == (None, "admin", "audit")
        assert metadata.requires_authorization

    def test_allow_anonymous_overrides_group_requirement(self, root: RouteGroup) -> None:
        api = root.group("/api").require_authorization("users")
        entry = api.route("GET", "/login", handler, allow_anonymous=True)
        assert not entry.effective_metadata().requires_authorization

    def test_authorize_flag_forms(self, root: RouteGroup) -> None:
        a = root.route("GET", "/a", handler, authorize=True)
        b = root.route("GET", "/b", handler, authorize=["x", "y"])
        c = root.route("GET", "/c", handler)
        assert a.metadata.authorization == (None,)
        assert b.metadata.authorization == ("x", "y")
        assert c.metadata.authorization == ()

    def test_route_name(self, table: RouteTable, root: RouteGroup) -> None:
        root.group("/users").route("GET", "/{id:int}", handler, name="user")
        assert table.url_for("user", id=3) == "/users/3"

    def test_metadata_merge(self) -> None:
        outer = RouteMetadata(name="outer", tags=("a",))
        inner = RouteMetadata(tags=("b",), allow_anonymous=True)
        merged = outer.merged(inner)
        assert merged.name == "outer"
        assert merged.tags == ("a", "b")
        assert merged.allow_anonymous


class TestDecorators:
    def test_verb_decorators(self, table: RouteTable, root: RouteGroup) -> None:
        items = root.group("/items")

        @items.get("/")
        def list_items() -> str:
            return "list"

        @items.post("/")
        def create_item() -> str:
            return "create"

        @items.methods(["PUT", "PATCH"], "/{id}")
        def change_item(id: str) -> str:
            return id

        assert list_items() == "list"
        methods = {m for entry in table.routes for m in entry.methods}
        assert methods == {"GET", "POST", "PUT", "PATCH"}


class TestSealing:
    def test_changes_after_seal_are_rejected(self, table: RouteTable, root: RouteGroup) -> None:
        api = root.group("/api")
        table.seal()
        with pytest.raises(RouteTableSealed):
            api.add_filter(audit)
        with pytest.raises(RouteTableSealed):
            api.group("/v2")
        with pytest.raises(RouteTableSealed):
            api.with_tags("late")
        with pytest.raises(RouteTableSealed):
            api.route("GET", "/late", handler)

    def test_binder_runs_at_registration(self, table: RouteTable) -> None:
        seen: list[str] = []

        def binder(func, pattern):
            seen.append(pattern.template)
            return None

        group = RouteGroup(table, "/api", binder=binder)
        group.group("/v1").route("GET", "/x", handler)
        assert seen == ["/api/v1/x"]
