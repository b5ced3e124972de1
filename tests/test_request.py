"""Tests for perch.http.request, headers and query parameters."""

import pytest

from perch.http.headers import Headers
from perch.http.query import QueryParams
from perch.http.request import Request


class TestHeaders:
    def test_case_insensitive_lookup(self) -> None:
        headers = Headers([(b"Content-Type", b"text/plain")])
        assert headers["content-type"] == "text/plain"
        assert headers.get("CONTENT-TYPE") == "text/plain"
        assert "Content-Type" in headers

    def test_missing(self) -> None:
        headers = Headers()
        assert headers.get("x-missing") is None
        assert headers.get("x-missing", "d") == "d"
        with pytest.raises(KeyError):
            headers["x-missing"]
        assert 42 not in headers

    def test_repeated_header_keeps_first_value(self) -> None:
        headers = Headers(((b"accept", b"text/html"), (b"Accept", b"application/json")))
        assert headers["accept"] == "text/html"
        assert list(headers) == ["accept"]
        assert len(headers) == 1


class TestQueryParams:
    def test_parsing(self) -> None:
        query = QueryParams(b"q=cats&page=2&tag=a&tag=b&empty=")
        assert query["q"] == "cats"
        assert query.get_list("tag") == ["a", "b"]
        assert query.get("empty") == ""
        assert query.get("missing", "x") == "x"
        assert len(query) == 4

    def test_percent_decoding(self) -> None:
        assert QueryParams(b"name=hello%20world&plus=a+b")["name"] == "hello world"
        assert QueryParams(b"plus=a+b")["plus"] == "a b"

    def test_raw(self) -> None:
        assert QueryParams(b"a=1").raw == b"a=1"


class TestRequest:
    def _scope(self, **overrides):
        scope = {
            "type": "http",
            "method": "post",
            "path": "/items",
            "query_string": b"sort=name",
            "headers": [(b"content-type", b"application/json"), (b"content-length", b"13")],
            "http_version": "1.1",
            "server": ("testserver", 80),
            "client": ("127.0.0.1", 5000),
        }
        scope.update(overrides)
        return scope

    def test_from_asgi(self) -> None:
        request = Request.from_asgi(self._scope(), b'{"name": "x"}')
        assert request.method == "POST"
        assert request.path == "/items"
        assert request.query["sort"] == "name"
        assert request.server == ("testserver", 80)
        assert request.client == ("127.0.0.1", 5000)
        assert request.url == "/items?sort=name"

    def test_body_helpers(self) -> None:
        request = Request.from_asgi(self._scope(), b'{"name": "x"}')
        assert request.is_json
        assert request.content_type == "application/json"
        assert request.content_length == 13
        assert request.text() == '{"name": "x"}'
        assert request.json() == {"name": "x"}

    def test_malformed_json_raises_value_error(self) -> None:
        request = Request.from_asgi(self._scope(), b"{nope")
        with pytest.raises(ValueError):
            request.json()

    def test_bad_content_length(self) -> None:
        request = Request.from_asgi(self._scope(headers=[(b"content-length", b"abc")]))
        assert request.content_length is None
        assert not request.is_json

    def test_url_without_query(self) -> None:
        assert Request(method="GET", path="/a").url == "/a"

    def test_with_route_values_copies(self) -> None:
        request = Request(method="GET", path="/users/1")
        bound = request.with_route_values({"id": 1})
        assert bound.route_values == {"id": 1}
        assert request.route_values == {}
        assert bound.path == request.path
