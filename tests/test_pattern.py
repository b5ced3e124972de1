"""Tests for perch.routing.pattern: template parsing, matching and ranking."""

import uuid
from datetime import datetime
from decimal import Decimal
from urllib.parse import unquote

import pytest

from perch.errors import RouteCompileError
from perch.routing.pattern import (
    ABSENT,
    Specificity,
    compile_pattern,
    join_templates,
    split_path,
)


class TestParseTemplate:
    def test_literal_segments(self) -> None:
        pattern = compile_pattern("/api/users")
        assert [s.value for s in pattern.segments] == ["api", "users"]
        assert pattern.param_names == ()

    def test_typed_parameter(self) -> None:
        pattern = compile_pattern("/users/{id:int}")
        seg = pattern.param("id")
        assert seg is not None
        assert seg.is_param
        assert [c.name for c in seg.constraints] == ["int"]

    def test_optional_and_default(self) -> None:
        pattern = compile_pattern("/pages/{page:int=1}/{sort?}")
        page = pattern.param("page")
        sort = pattern.param("sort")
        assert page is not None and page.optional and page.default == 1
        assert sort is not None and sort.optional and sort.default is ABSENT

    def test_template_is_normalized(self) -> None:
        assert compile_pattern("users//{id}/").template == "/users/{id}"

    def test_constraint_arguments_may_contain_colons(self) -> None:
        pattern = compile_pattern("/t/{at:regex(^\\d+:\\d+$)}")
        seg = pattern.param("at")
        assert seg is not None
        assert seg.constraints[0].name == "regex"

    @pytest.mark.parametrize(
        ("template", "message"),
        [
            ("/a/{id}/{id}", "duplicate parameter"),
            ("/a/{id:nope}", "unknown constraint"),
            ("/a/{id:range(1)}", "argument"),
            ("/a/{*rest}/b", "catch-all"),
            ("/a/{x?}/b", "cannot follow an optional"),
            ("/a/{x=1?}", "both optional and defaulted"),
            ("/a/pre{x}", "whole segment"),
            ("/a/{}", "empty parameter"),
            ("/a/{1x}", "invalid parameter name"),
            ("/a/{x:int=abc}", "default value"),
        ],
    )
    def test_malformed_templates(self, template: str, message: str) -> None:
        with pytest.raises(RouteCompileError, match=message) as exc_info:
            compile_pattern(template)
        assert exc_info.value.template == template

    def test_angle_bracket_params_are_rejected(self) -> None:
        with pytest.raises(RouteCompileError, match="use \\{param\\}"):
            compile_pattern("/users/<id>")


class TestMatch:
    def test_literal_match_is_case_insensitive(self) -> None:
        pattern = compile_pattern("/Users")
        assert pattern.match("/users") is not None
        assert pattern.match("/USERS/") is not None

    def test_case_sensitive_literal(self) -> None:
        pattern = compile_pattern("/Users", case_sensitive=True)
        assert pattern.match("/Users") is not None
        assert pattern.match("/users") is None

    def test_typed_value_and_raw_text(self) -> None:
        m = compile_pattern("/users/{id:int}").match("/users/42")
        assert m is not None
        assert m.values == {"id": 42}
        assert m.raw_values == {"id": "42"}

    def test_constraint_rejection_is_no_match(self) -> None:
        assert compile_pattern("/users/{id:int}").match("/users/abc") is None

    def test_segment_count_mismatch(self) -> None:
        pattern = compile_pattern("/users/{id}")
        assert pattern.match("/users") is None
        assert pattern.match("/users/1/posts") is None

    def test_optional_omitted_binds_absent(self) -> None:
        m = compile_pattern("/search/{q?}").match("/search")
        assert m is not None
        assert m.values["q"] is ABSENT
        assert "q" not in m.raw_values
        assert m.specificity.filled == -1

    def test_default_used_when_omitted(self) -> None:
        m = compile_pattern("/pages/{page:int=1}").match("/pages")
        assert m is not None
        assert m.values == {"page": 1}

    def test_catch_all_captures_rest(self) -> None:
        m = compile_pattern("/files/{*path}").match("/files/a/b/c.txt")
        assert m is not None
        assert m.values == {"path": "a/b/c.txt"}
        assert m.specificity == Specificity((4, 1, 1, 1), 0, 0)

    def test_catch_all_may_be_empty(self) -> None:
        m = compile_pattern("/files/{*path}").match("/files")
        assert m is not None
        assert m.values["path"] is ABSENT
        assert m.specificity == Specificity((4,), -1, 0)

    def test_root(self) -> None:
        m = compile_pattern("/").match("/")
        assert m is not None
        assert m.specificity == Specificity(())


class TestSpecificity:
    def _rank(self, template: str, path: str) -> Specificity:
        m = compile_pattern(template).match(path)
        assert m is not None
        return m.specificity

    def test_literal_beats_parameter(self) -> None:
        assert self._rank("/users/me", "/users/me") > self._rank("/users/{id}", "/users/me")

    def test_constrained_beats_plain_parameter(self) -> None:
        assert self._rank("/users/{id:int}", "/users/1") > self._rank("/users/{id}", "/users/1")

    def test_parameter_beats_catch_all(self) -> None:
        assert self._rank("/users/{id}", "/users/1") > self._rank("/users/{*rest}", "/users/1")

    def test_filled_optional_beats_omitted(self) -> None:
        assert self._rank("/a/{b}", "/a/x") > self._rank("/a/{b}/{c?}", "/a/x")

    def test_leftmost_segment_decides(self) -> None:
        assert self._rank("/a/{x}", "/a/b") > self._rank("/{x}/b", "/a/b")


class TestShapes:
    def test_identical_shapes_for_renamed_params(self) -> None:
        assert compile_pattern("/u/{id}").shapes == compile_pattern("/u/{name}").shapes

    def test_literals_distinguish_shapes(self) -> None:
        first = compile_pattern("/u/me").shapes
        second = compile_pattern("/u/you").shapes
        assert not first & second

    def test_optional_overlaps_required_parameter(self) -> None:
        assert compile_pattern("/a/{b?}").shapes & compile_pattern("/a/{c}").shapes

    def test_omitted_optional_ranks_below_shorter_route(self) -> None:
        assert not compile_pattern("/a/{b?}").shapes & compile_pattern("/a").shapes


class TestFormat:
    def test_substitutes_values(self) -> None:
        pattern = compile_pattern("/users/{id:int}/posts/{slug}")
        assert pattern.format(id=7, slug="hello world") == "/users/7/posts/hello%20world"

    def test_mapping_and_keywords(self) -> None:
        pattern = compile_pattern("/users/{id}")
        assert pattern.format({"id": 1}) == "/users/1"
        assert pattern.format({"id": 1}, id=2) == "/users/2"

    def test_stops_at_absent_optional(self) -> None:
        pattern = compile_pattern("/search/{q?}/{page?}")
        assert pattern.format() == "/search"
        assert pattern.format(q="x") == "/search/x"

    def test_catch_all_keeps_slashes(self) -> None:
        assert compile_pattern("/files/{*path}").format(path="a/b c") == "/files/a/b%20c"

    def test_missing_required_value(self) -> None:
        with pytest.raises(KeyError):
            compile_pattern("/users/{id}").format()

    def test_bool_values(self) -> None:
        assert compile_pattern("/flags/{on:bool}").format(on=True) == "/flags/true"


class TestRoundTrip:
    @pytest.mark.parametrize(
        ("template", "values"),
        [
            (
                "/users/{id:int}/on/{day:datetime}",
                {"id": 42, "day": datetime(2026, 10, 18, 9, 30)},
            ),
            ("/flags/{on:bool}", {"on": False}),
            (
                "/orders/{ref:guid}",
                {"ref": uuid.UUID("12345678-1234-5678-1234-567812345678")},
            ),
            ("/prices/{amount:decimal}", {"amount": Decimal("9.95")}),
            ("/pages/{page:int=1}", {"page": 7}),
            ("/search/{q?}", {"q": "cats"}),
            ("/files/{*path}", {"path": "docs/2026/notes.txt"}),
            ("/at/{when}", {"when": "a:b@c+d"}),
        ],
    )
    def test_format_then_match_returns_values(self, template: str, values: dict) -> None:
        pattern = compile_pattern(template)
        m = pattern.match(pattern.format(values))
        assert m is not None
        assert m.values == values

    @pytest.mark.parametrize(
        ("template", "expected"),
        [
            ("/search/{q?}", {"q": ABSENT}),
            ("/pages/{page:int=1}", {"page": 1}),
            ("/files/{*path}", {"path": ABSENT}),
        ],
    )
    def test_omitted_values_round_trip(self, template: str, expected: dict) -> None:
        pattern = compile_pattern(template)
        m = pattern.match(pattern.format())
        assert m is not None
        assert m.values == expected

    def test_non_ascii_round_trips_through_decoded_path(self) -> None:
        pattern = compile_pattern("/drinks/{name}/{*rest}")
        path = pattern.format(name="café au lait", rest="größe/groß")
        assert path == "/drinks/caf%C3%A9%20au%20lait/gr%C3%B6%C3%9Fe/gro%C3%9F"
        m = pattern.match(unquote(path))
        assert m is not None
        assert m.values == {"name": "café au lait", "rest": "größe/groß"}


class TestHelpers:
    def test_split_path(self) -> None:
        assert split_path("/a//b/") == ["a", "b"]
        assert split_path("/") == []

    def test_join_templates(self) -> None:
        assert join_templates("/api/", "", "/users/", "{id}") == "/api/users/{id}"
        assert join_templates("", "") == "/"
