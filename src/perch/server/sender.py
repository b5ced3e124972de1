"""ASGI response sending: translates perch response types to ASGI messages.

Handles single-body responses, chunked streaming responses and files
streamed from disk.
"""

import logging
from collections.abc import AsyncIterable

import anyio

from perch._internal.asgi import Send
from perch.http.response import AnyResponse, FileResponse, Response, StreamingResponse

logger = logging.getLogger("perch.server")


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


def _raw_headers(
    content_type: str | None, headers: tuple[tuple[str, str], ...]
) -> list[tuple[bytes, bytes]]:
    raw: list[tuple[bytes, bytes]] = []
    if content_type is not None:
        raw.append((b"content-type", content_type.encode("latin-1")))
    for name, value in headers:
        raw.append((name.lower().encode("latin-1"), value.encode("latin-1")))
    return raw


async def send_response(response: Response, send: Send) -> None:
    """Translate a perch Response into ASGI send() calls."""
    raw_headers = _raw_headers(response.content_type, response.headers)

    body = response.body_bytes if _body_allowed(response.status) else b""

    raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))

    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": body,
        }
    )


async def send_streaming_response(response: StreamingResponse, send: Send) -> None:
    """Send a streaming response via chunked transfer encoding.

    Sends headers immediately, then each chunk as an ASGI body
    message with ``more_body=True``. Closes with an empty body.
    A failure mid-stream is logged and the stream is closed early;
    the status line has already gone out, so there is nothing else to do.
    """
    raw_headers = _raw_headers(response.content_type, response.headers)
    raw_headers.append((b"transfer-encoding", b"chunked"))

    # No content-length: chunked transfer encoding signals body boundaries
    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )

    async def send_chunk(chunk: str | bytes) -> None:
        if not chunk:
            return
        body = chunk.encode("utf-8") if isinstance(chunk, str) else chunk
        await send({"type": "http.response.body", "body": body, "more_body": True})

    try:
        if isinstance(response.chunks, AsyncIterable):
            async for chunk in response.chunks:
                await send_chunk(chunk)
        else:
            for chunk in response.chunks:
                await send_chunk(chunk)
    except Exception:
        logger.exception("Streaming response failed mid-stream")

    # Close the stream
    await send(
        {
            "type": "http.response.body",
            "body": b"",
            "more_body": False,
        }
    )


async def send_file_response(response: FileResponse, send: Send) -> None:
    """Stream a file from disk in ``chunk_size`` pieces.

    The file is opened before the status line is sent, so a missing file
    raises ``FileNotFoundError`` to the caller instead of truncating a
    response that already started.
    """
    path = anyio.Path(response.path)
    size = (await path.stat()).st_size
    raw_headers = _raw_headers(response.content_type, response.headers)
    include_body = _body_allowed(response.status)
    raw_headers.append(
        (b"content-length", str(size if include_body else 0).encode("latin-1"))
    )

    async with await anyio.open_file(path, "rb") as handle:
        await send(
            {
                "type": "http.response.start",
                "status": response.status,
                "headers": raw_headers,
            }
        )
        if include_body:
            while chunk := await handle.read(response.chunk_size):
                await send({"type": "http.response.body", "body": chunk, "more_body": True})

    await send({"type": "http.response.body", "body": b"", "more_body": False})


async def send_any(response: AnyResponse, send: Send) -> None:
    """Dispatch on the response type."""
    match response:
        case StreamingResponse():
            await send_streaming_response(response, send)
        case FileResponse():
            await send_file_response(response, send)
        case _:
            await send_response(response, send)
