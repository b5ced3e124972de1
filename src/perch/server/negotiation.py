"""Content negotiation: maps return values to Response objects.

``to_response`` inspects whatever a handler or filter returned and
produces the wire-level response. isinstance-based dispatch, no magic,
fully predictable.
"""

import dataclasses
import json as json_module
import mimetypes
from collections.abc import AsyncIterable
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from os import PathLike, fspath
from pathlib import PurePath
from typing import Any
from urllib.parse import quote
from uuid import UUID

from perch.http.response import AnyResponse, FileResponse, Response, StreamingResponse
from perch.http.results import Content, FileResult, Problem, Redirect, Status
from perch.routing.pattern import ABSENT

JSON_CONTENT_TYPE = "application/json"
PROBLEM_CONTENT_TYPE = "application/problem+json"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
BINARY_CONTENT_TYPE = "application/octet-stream"

# Reserved URL characters and existing escapes stay as they are in Location
_LOCATION_SAFE = ":/?#[]@!$&'()*+,;=%~"


def _json_default(value: Any) -> Any:
    if value is ABSENT:
        return None
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal, PurePath)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def dumps_json(value: Any) -> bytes:
    """Encode *value* as compact UTF-8 JSON.

    Dataclasses, dates, UUIDs, decimals, enums and sets are converted;
    anything else that ``json`` cannot encode raises ``TypeError``.
    """
    return json_module.dumps(
        value, default=_json_default, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def encode_location(location: str) -> str:
    """Percent-encode the non-ASCII parts of a redirect target."""
    return quote(location, safe=_LOCATION_SAFE)


def content_disposition(filename: str) -> str:
    """Build an ``attachment`` disposition for *filename*.

    Non-ASCII names get an RFC 6266 ``filename*`` parameter next to an
    ASCII fallback, so the header always encodes as latin-1.
    """
    fallback = filename.encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace("\\", "\\\\").replace('"', '\\"')
    value = f'attachment; filename="{fallback}"'
    if not filename.isascii():
        value += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return value


def _guess_type(name: str | None) -> str:
    if name:
        guessed, _ = mimetypes.guess_type(name)
        if guessed:
            return guessed
    return BINARY_CONTENT_TYPE


def _content_response(value: Content) -> Response:
    body = value.body
    if body is None:
        return Response(b"", value.status, value.content_type, value.headers)
    if value.content_type is not None and "json" in value.content_type:
        return Response(dumps_json(body), value.status, value.content_type, value.headers)
    match body:
        case str():
            content_type = value.content_type or TEXT_CONTENT_TYPE
            return Response(body, value.status, content_type, value.headers)
        case bytes() | bytearray():
            content_type = value.content_type or BINARY_CONTENT_TYPE
            return Response(bytes(body), value.status, content_type, value.headers)
        case _:
            content_type = value.content_type or JSON_CONTENT_TYPE
            return Response(dumps_json(body), value.status, content_type, value.headers)


def _file_response(value: FileResult) -> AnyResponse:
    headers = value.headers
    if value.download_name is not None:
        headers = (
            ("Content-Disposition", content_disposition(value.download_name)),
            *headers,
        )
    source = value.source
    if isinstance(source, (str, PathLike)):
        path = fspath(source)
        content_type = value.content_type or _guess_type(value.download_name or path)
        return FileResponse(path, value.status, content_type, headers)
    content_type = value.content_type or _guess_type(value.download_name)
    if isinstance(source, (bytes, bytearray)):
        return Response(bytes(source), value.status, content_type, headers)
    return StreamingResponse(source, value.status, content_type, headers)


def problem_response(value: Problem, *, type_base: str = "about:blank") -> Response:
    """Serialize a ``Problem`` with ``application/problem+json``."""
    return Response(
        dumps_json(value.to_dict(type_base)),
        value.status,
        PROBLEM_CONTENT_TYPE,
        value.headers,
    )


def to_response(value: Any, *, problem_type_base: str = "about:blank") -> AnyResponse:
    """Convert a handler's or filter's return value to a response.

    Dispatch order:

    1. ``Response`` / ``StreamingResponse`` / ``FileResponse`` -> pass through
    2. ``Status``       -> status and headers, empty body
    3. ``Content``      -> body by type (text, bytes or JSON)
    4. ``Redirect``     -> 301/302/307/308 with ``Location``
    5. ``FileResult``   -> file stream, bytes or chunk stream
    6. ``Problem``      -> ``application/problem+json``
    7. ``None``         -> 200, empty body
    8. ``str``          -> 200, text/plain
    9. ``bytes``        -> 200, application/octet-stream
    10. ``(value, int)`` / ``(value, int, dict)`` -> convert value,
        override status (and add headers)
    11. anything else   -> 200, application/json
    """
    match value:
        case Response() | StreamingResponse() | FileResponse():
            return value
        case Status():
            return Response(b"", value.status, None, value.headers)
        case Content():
            return _content_response(value)
        case Redirect():
            location = ("Location", encode_location(value.location))
            return Response(b"", value.status, None, (location, *value.headers))
        case FileResult():
            return _file_response(value)
        case Problem():
            return problem_response(value, type_base=problem_type_base)
        case None:
            return Response(b"", 200, None)
        case str():
            return Response(value, 200, TEXT_CONTENT_TYPE)
        case bytes() | bytearray():
            return Response(bytes(value), 200, BINARY_CONTENT_TYPE)
        case (body, int() as status) if isinstance(value, tuple):
            return to_response(body, problem_type_base=problem_type_base).with_status(status)
        case (body, int() as status, dict() as headers) if isinstance(value, tuple):
            return (
                to_response(body, problem_type_base=problem_type_base)
                .with_status(status)
                .with_headers(headers)
            )
        case _ if isinstance(value, AsyncIterable) and not isinstance(value, (dict, list)):
            return StreamingResponse(value, 200, BINARY_CONTENT_TYPE)
        case _:
            return Response(dumps_json(value), 200, JSON_CONTENT_TYPE)

