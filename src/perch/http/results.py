"""Typed results: what handlers and filters return.

A closed set of outcome variants. ``to_response`` (``perch.server.negotiation``)
maps each one to status, headers and body the same way every time, so
filters can inspect and replace results without knowing about ASGI.

The lower-case helpers build the common cases::

    @app.get("/products/{id:int}")
    async def product(id: int, store: ProductStore):
        item = await store.get(id)
        if item is None:
            return not_found()
        return ok(item)
"""

from collections.abc import AsyncIterable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from os import PathLike
from typing import Any, Self


class _ResultBase:
    __slots__ = ()

    headers: tuple[tuple[str, str], ...]

    def with_header(self, name: str, value: str) -> Self:
        """Return a copy with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))  # type: ignore[type-var]


@dataclass(frozen=True, slots=True)
class Status(_ResultBase):
    """A bare status code with no body."""

    status: int = 200
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class Content(_ResultBase):
    """A body with a status code.

    ``str`` bodies are sent as text, ``bytes`` as-is, anything else as
    JSON. ``content_type`` overrides the inferred type.
    """

    body: Any = None
    status: int = 200
    content_type: str | None = None
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class Redirect(_ResultBase):
    """Redirect to *location*.

    ===========  ===============  ======
    permanent    preserve_method  status
    ===========  ===============  ======
    False        False            302
    True         False            301
    False        True             307
    True         True             308
    ===========  ===============  ======
    """

    location: str
    permanent: bool = False
    preserve_method: bool = False
    headers: tuple[tuple[str, str], ...] = ()

    @property
    def status(self) -> int:
        if self.permanent:
            return 308 if self.preserve_method else 301
        return 307 if self.preserve_method else 302


@dataclass(frozen=True, slots=True)
class FileResult(_ResultBase):
    """File content: a path on disk, bytes, or an iterable of byte chunks.

    Paths are streamed from disk. ``download_name`` adds a
    ``Content-Disposition: attachment`` header. The content type is
    guessed from the file or download name when not given.
    """

    source: str | PathLike[str] | bytes | Iterable[bytes] | AsyncIterable[bytes]
    content_type: str | None = None
    download_name: str | None = None
    status: int = 200
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class Problem(_ResultBase):
    """RFC 9457 problem details, sent as ``application/problem+json``.

    ``errors`` maps field names to validation messages. ``extensions``
    adds arbitrary members to the body.
    """

    status: int = 500
    title: str | None = None
    detail: str | None = None
    type: str | None = None
    instance: str | None = None
    errors: Mapping[str, Sequence[str]] | None = None
    extensions: Mapping[str, Any] = field(default_factory=dict)
    headers: tuple[tuple[str, str], ...] = ()

    def to_dict(self, type_base: str = "about:blank") -> dict[str, Any]:
        """The JSON body. Unset ``type`` and ``title`` get defaults."""
        body: dict[str, Any] = {
            "type": self.type or type_base,
            "title": self.title or _reason(self.status),
            "status": self.status,
        }
        if self.detail is not None:
            body["detail"] = self.detail
        if self.instance is not None:
            body["instance"] = self.instance
        if self.errors is not None:
            body["errors"] = {key: list(msgs) for key, msgs in self.errors.items()}
        for key, value in self.extensions.items():
            body.setdefault(key, value)
        return body


type Result = Status | Content | Redirect | FileResult | Problem


def _reason(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"


def _body_or_status(value: Any, status: int) -> Content | Status:
    if value is None:
        return Status(status)
    return Content(value, status)


# -- Factory helpers --


def ok(value: Any = None) -> Content | Status:
    """200, with *value* as the body when given."""
    return _body_or_status(value, 200)


def created(location: str | None = None, value: Any = None) -> Content | Status:
    """201, with an optional ``Location`` header and body."""
    result = _body_or_status(value, 201)
    if location is not None:
        result = result.with_header("Location", location)
    return result


def accepted(location: str | None = None, value: Any = None) -> Content | Status:
    """202, with an optional ``Location`` header and body."""
    result = _body_or_status(value, 202)
    if location is not None:
        result = result.with_header("Location", location)
    return result


def no_content() -> Status:
    return Status(204)


def bad_request(value: Any = None) -> Content | Status:
    return _body_or_status(value, 400)


def unauthorized() -> Status:
    return Status(401)


def forbidden() -> Status:
    return Status(403)


def not_found(value: Any = None) -> Content | Status:
    return _body_or_status(value, 404)


def conflict(value: Any = None) -> Content | Status:
    return _body_or_status(value, 409)


def unprocessable_entity(value: Any = None) -> Content | Status:
    return _body_or_status(value, 422)


def status_code(status: int) -> Status:
    return Status(status)


def text(content: str, content_type: str = "text/plain; charset=utf-8", status: int = 200) -> Content:
    return Content(content, status, content_type)


def json(data: Any, status: int = 200) -> Content:
    """Serialize *data* as JSON, even when it is a ``str``."""
    return Content(data, status, "application/json")


def redirect(url: str, *, permanent: bool = False, preserve_method: bool = False) -> Redirect:
    return Redirect(url, permanent, preserve_method)


def local_redirect(
    url: str, *, permanent: bool = False, preserve_method: bool = False
) -> Redirect:
    """Redirect to a path on this site. Raises ``ValueError`` for any other URL."""
    if not url.startswith("/") or url.startswith(("//", "/\\")):
        msg = f"Local redirect target must be a site-relative path, got {url!r}"
        raise ValueError(msg)
    return Redirect(url, permanent, preserve_method)


def file(
    source: str | PathLike[str] | bytes | Iterable[bytes] | AsyncIterable[bytes],
    content_type: str | None = None,
    download_name: str | None = None,
) -> FileResult:
    return FileResult(source, content_type, download_name)


def problem(
    detail: str | None = None,
    *,
    status: int = 500,
    title: str | None = None,
    type: str | None = None,  # noqa: A002
    instance: str | None = None,
    extensions: Mapping[str, Any] | None = None,
) -> Problem:
    return Problem(
        status=status,
        title=title,
        detail=detail,
        type=type,
        instance=instance,
        extensions=dict(extensions or {}),
    )


def validation_problem(
    errors: Mapping[str, Sequence[str]],
    *,
    detail: str | None = None,
    title: str = "One or more validation errors occurred.",
    status: int = 400,
) -> Problem:
    """400 problem listing per-field validation messages."""
    return Problem(status=status, title=title, detail=detail, errors=errors)
