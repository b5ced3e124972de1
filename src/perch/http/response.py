"""Wire-level responses with a chainable .with_*() transformation API.

Each transformation returns a new object. Immutable by convention,
built incrementally by design. Handlers usually return result objects
(``perch.http.results``) or plain values; ``to_response`` turns those into
one of the three types below, and the sender writes them to ASGI.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncIterable, Iterable, Mapping
from dataclasses import dataclass, replace
from os import PathLike
from typing import Any, Self


class _Chainable:
    """Shared ``.with_*()`` helpers. Subclasses are frozen dataclasses."""

    __slots__ = ()

    status: int
    headers: tuple[tuple[str, str], ...]

    def with_status(self, status: int) -> Self:
        """Return a copy with a different status code."""
        return replace(self, status=status)  # type: ignore[type-var]

    def with_header(self, name: str, value: str) -> Self:
        """Return a copy with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))  # type: ignore[type-var]

    def with_headers(self, headers: Mapping[str, str]) -> Self:
        """Return a copy with additional headers."""
        return replace(self, headers=(*self.headers, *headers.items()))  # type: ignore[type-var]

    def header(self, name: str) -> str | None:
        """Return the first value of header *name*, if set."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True, slots=True)
class Response(_Chainable):
    """A fully buffered HTTP response.

    ``content_type=None`` sends no ``Content-Type`` header (empty bodies).
    """

    body: str | bytes = b""
    status: int = 200
    content_type: str | None = "text/plain; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes."""
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def text(self) -> str:
        """Body as string."""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body

    @property
    def json(self) -> Any:
        """Body parsed as JSON."""
        return json_module.loads(self.body_bytes)


@dataclass(frozen=True, slots=True)
class StreamingResponse(_Chainable):
    """A response whose body is produced chunk by chunk.

    Headers are sent immediately, then each chunk as an ASGI body message
    with ``more_body=True``.
    """

    chunks: Iterable[str | bytes] | AsyncIterable[str | bytes]
    status: int = 200
    content_type: str | None = "application/octet-stream"
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class FileResponse(_Chainable):
    """A file on disk, streamed in ``chunk_size`` pieces by the sender."""

    path: str | PathLike[str]
    status: int = 200
    content_type: str | None = "application/octet-stream"
    headers: tuple[tuple[str, str], ...] = ()
    chunk_size: int = 64 * 1024


type AnyResponse = Response | StreamingResponse | FileResponse
