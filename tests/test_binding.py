"""Tests for handler parameter binding and typed extraction."""

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

import pytest

from perch.context import InvocationContext
from perch.errors import BadRequest, ConfigurationError
from perch.extraction import convert, extract_dataclass, is_scalar, unwrap_optional
from perch.http.headers import Headers
from perch.http.query import QueryParams
from perch.http.request import Request
from perch.routing.pattern import ABSENT, compile_pattern
from perch.routing.router import RouteTable
from perch.server.binding import Source, build_binding_plan


class Level(Enum):
    LOW = "low"
    HIGH = "high"


@dataclass
class Filters:
    page: int = 1
    level: Level | None = None


@dataclass
class NewItem:
    name: str
    price: Decimal
    tags: list[str] = field(default_factory=list)


class Clock:
    def today(self) -> date:
        return date(2024, 1, 1)


def _plan(handler, template: str = "/"):
    return build_binding_plan(handler, compile_pattern(template))


def _ctx(
    handler,
    *,
    method: str = "GET",
    route_values: dict | None = None,
    query: bytes = b"",
    body: bytes = b"",
) -> InvocationContext:
    request = Request(
        method=method,
        path="/",
        headers=Headers([(b"content-type", b"application/json")]),
        query=QueryParams(query),
        body=body,
    )
    entry = RouteTable().register(method, "/", handler)
    return InvocationContext(request=request, entry=entry, route_values=dict(route_values or {}))


class TestClassification:
    def test_sources(self) -> None:
        def handler(
            ctx: InvocationContext,
            request: Request,
            id: int,
            item: NewItem,
            payload: dict,
            q: str,
            anything,
            clock: Clock,
        ): ...

        plan = _plan(handler, "/items/{id:int}")
        sources = {p.name: p.source for p in plan.params}
        assert sources == {
            "ctx": Source.CONTEXT,
            "request": Source.REQUEST,
            "id": Source.ROUTE,
            "item": Source.BODY,
            "payload": Source.BODY,
            "q": Source.QUERY,
            "anything": Source.QUERY,
            "clock": Source.SERVICE,
        }
        assert plan.services == (Clock,)

    def test_context_and_request_by_name(self) -> None:
        plan = _plan(lambda ctx, request: None)
        assert [p.source for p in plan.params] == [Source.CONTEXT, Source.REQUEST]

    def test_optional_annotation_is_nullable(self) -> None:
        def handler(q: int | None = None): ...

        (param,) = _plan(handler).params
        assert param.annotation is int
        assert param.nullable

    def test_varargs_are_skipped(self) -> None:
        def handler(*args, **kwargs): ...

        assert _plan(handler).params == ()

    def test_positional_only_is_rejected(self) -> None:
        def handler(a, /): ...

        with pytest.raises(ConfigurationError, match="positional-only"):
            _plan(handler)

    def test_unresolvable_annotation(self) -> None:
        def handler(a: "Missing"): ...  # noqa: F821

        with pytest.raises(ConfigurationError, match="Cannot inspect"):
            _plan(handler)

    def test_missing_provider(self) -> None:
        def handler(clock: Clock): ...

        plan = _plan(handler)
        with pytest.raises(ConfigurationError, match="app.provide"):
            plan.check_providers({}, "GET /")
        plan.check_providers({Clock: Clock}, "GET /")


class TestBind:
    async def test_route_values_are_converted(self) -> None:
        def handler(id: int, slug: str): ...

        plan = _plan(handler, "/{id}/{slug}")
        args = await plan.bind(_ctx(handler, route_values={"id": "5", "slug": "x"}))
        assert args == {"id": 5, "slug": "x"}

    async def test_typed_route_value_kept(self) -> None:
        def handler(id: int): ...

        plan = _plan(handler, "/{id:int}")
        args = await plan.bind(_ctx(handler, route_values={"id": 5}))
        assert args == {"id": 5}

    async def test_absent_route_value_uses_default(self) -> None:
        def handler(q: str = "all", page: int | None = None): ...

        plan = _plan(handler, "/{q?}/{page?}")
        args = await plan.bind(_ctx(handler, route_values={"q": ABSENT, "page": ABSENT}))
        assert args == {"q": "all", "page": None}

    async def test_bad_route_value_conversion(self) -> None:
        def handler(id: int): ...

        plan = _plan(handler, "/{id}")
        with pytest.raises(BadRequest, match="'id'"):
            await plan.bind(_ctx(handler, route_values={"id": "x"}))

    async def test_query_values(self) -> None:
        def handler(page: int, level: Level, verbose: bool = False): ...

        plan = _plan(handler)
        args = await plan.bind(_ctx(handler, query=b"page=2&level=high&verbose=yes"))
        assert args == {"page": 2, "level": Level.HIGH, "verbose": True}

    async def test_missing_required_query(self) -> None:
        def handler(page: int): ...

        with pytest.raises(BadRequest, match="Missing required query parameter 'page'"):
            await _plan(handler).bind(_ctx(handler))

    async def test_optional_query_defaults_to_none(self) -> None:
        def handler(q: str | None): ...

        assert await _plan(handler).bind(_ctx(handler)) == {"q": None}

    async def test_bad_query_value(self) -> None:
        def handler(page: int): ...

        with pytest.raises(BadRequest):
            await _plan(handler).bind(_ctx(handler, query=b"page=two"))

    async def test_dataclass_from_json_body(self) -> None:
        def handler(item: NewItem): ...

        ctx = _ctx(handler, method="POST", body=b'{"name": "Pen", "price": 1.5, "tags": ["a"]}')
        args = await _plan(handler).bind(ctx)
        assert args == {"item": NewItem("Pen", Decimal("1.5"), ["a"])}

    async def test_dataclass_from_query_on_get(self) -> None:
        def handler(filters: Filters): ...

        args = await _plan(handler).bind(_ctx(handler, query=b"page=3&level=low"))
        assert args == {"filters": Filters(page=3, level=Level.LOW)}

    async def test_list_from_repeated_query_keys_on_get(self) -> None:
        def handler(ids: list[int], tags: list[str] | None = None): ...

        args = await _plan(handler).bind(_ctx(handler, query=b"ids=3&ids=1&ids=2"))
        assert args == {"ids": [3, 1, 2], "tags": None}

    async def test_bad_list_item_from_query(self) -> None:
        def handler(ids: list[int]): ...

        with pytest.raises(BadRequest, match="Query parameter 'ids'"):
            await _plan(handler).bind(_ctx(handler, query=b"ids=1&ids=x"))

    async def test_missing_list_from_query(self) -> None:
        def handler(ids: list[int]): ...

        with pytest.raises(BadRequest, match="Missing required query parameter 'ids'"):
            await _plan(handler).bind(_ctx(handler))

    async def test_scalar_list_from_json_body_on_post(self) -> None:
        def handler(ids: list[int]): ...

        ctx = _ctx(handler, method="POST", query=b"ids=9", body=b"[1, 2]")
        assert await _plan(handler).bind(ctx) == {"ids": [1, 2]}

    async def test_dict_body(self) -> None:
        def handler(payload: dict): ...

        ctx = _ctx(handler, method="POST", body=b'{"a": 1}')
        assert await _plan(handler).bind(ctx) == {"payload": {"a": 1}}

    async def test_body_of_wrong_shape(self) -> None:
        def handler(payload: list): ...

        ctx = _ctx(handler, method="POST", body=b'{"a": 1}')
        with pytest.raises(BadRequest, match="Expected a JSON list"):
            await _plan(handler).bind(ctx)

    async def test_malformed_json(self) -> None:
        def handler(item: NewItem): ...

        ctx = _ctx(handler, method="POST", body=b"{oops")
        with pytest.raises(BadRequest, match="not valid JSON"):
            await _plan(handler).bind(ctx)

    async def test_missing_body(self) -> None:
        def handler(item: NewItem): ...

        with pytest.raises(BadRequest, match="Missing request body"):
            await _plan(handler).bind(_ctx(handler, method="POST"))

    async def test_missing_field(self) -> None:
        def handler(item: NewItem): ...

        ctx = _ctx(handler, method="POST", body=b'{"name": "Pen"}')
        with pytest.raises(BadRequest, match="missing field 'price'"):
            await _plan(handler).bind(ctx)

    async def test_body_is_parsed_once_for_two_params(self) -> None:
        def handler(item: NewItem, raw: dict): ...

        ctx = _ctx(handler, method="PUT", body=b'{"name": "Pen", "price": "2"}')
        args = await _plan(handler).bind(ctx)
        assert args["item"].price == Decimal("2")
        assert args["raw"] == {"name": "Pen", "price": "2"}

    async def test_services_sync_and_async(self) -> None:
        def handler(clock: Clock, count: "Counter"): ...

        async def make_counter() -> "Counter":
            return Counter(3)

        clock = Clock()
        args = await _plan(handler).bind(
            _ctx(handler), {Clock: lambda: clock, Counter: make_counter}
        )
        assert args["clock"] is clock
        assert args["count"] == Counter(3)

    async def test_context_and_request(self) -> None:
        def handler(ctx, request): ...

        ctx = _ctx(handler)
        args = await _plan(handler).bind(ctx)
        assert args["ctx"] is ctx
        assert args["request"] is ctx.request


@dataclass
class Counter:
    value: int


class TestConvert:
    @pytest.mark.parametrize(
        ("value", "target", "expected"),
        [
            ("7", int, 7),
            ("1.5", float, 1.5),
            ("off", bool, False),
            ("9.90", Decimal, Decimal("9.90")),
            ("2024-02-03", date, date(2024, 2, 3)),
            (str(uuid.UUID(int=5)), uuid.UUID, uuid.UUID(int=5)),
            (5, str, "5"),
            ("x", object, "x"),
        ],
    )
    def test_conversions(self, value, target, expected) -> None:
        assert convert(value, target) == expected

    @pytest.mark.parametrize(
        ("value", "target"),
        [("x", int), (True, int), ("maybe", bool), (True, float), ("x", Decimal), ("x", Level)],
    )
    def test_failures(self, value, target) -> None:
        with pytest.raises(ValueError):
            convert(value, target)

    def test_nested_dataclass(self) -> None:
        @dataclass
        class Order:
            item: NewItem

        order = extract_dataclass(Order, {"item": {"name": "A", "price": "1"}})
        assert order.item == NewItem("A", Decimal("1"))

    def test_nullable_field_accepts_null(self) -> None:
        assert extract_dataclass(Filters, {"level": None}) == Filters()

    def test_helpers(self) -> None:
        assert unwrap_optional(int | None) == (int, True)
        assert unwrap_optional(int | str) == (int | str, False)
        assert is_scalar(Level)
        assert not is_scalar(Clock)
