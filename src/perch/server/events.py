"""Request events: one structured record per handled request.

The ASGI handler emits a ``RequestEvent`` to the app's event sink once the
response is written (or the request is abandoned). The sink is opaque to
perch: anything with an ``emit(event)`` method works, sync or async.

Free-threading safety:
    - RequestEvent is a frozen dataclass (immutable, safe to share)
    - LoggingEventSink holds no mutable state
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class RequestEvent:
    """What happened to one request.

    ``outcome`` is ``"completed"``, ``"error"`` (a 5xx produced by an
    unhandled exception), ``"timeout"`` or ``"disconnected"``. ``status``
    is ``None`` when nothing was sent. ``route`` is the matched template,
    ``None`` when the request did not resolve.
    """

    method: str
    path: str
    status: int | None
    duration: float
    outcome: str = "completed"
    route: str | None = None
    timestamp: float = field(default_factory=time.time)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class EventSink(Protocol):
    def emit(self, event: RequestEvent) -> Any: ...


class LoggingEventSink:
    """Write one access-log line per request to the ``perch.access`` logger."""

    __slots__ = ("_logger",)

    def __init__(self, logger_name: str = "perch.access") -> None:
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: RequestEvent) -> None:
        level = logging.INFO
        if event.outcome in ("error", "timeout"):
            level = logging.WARNING
        self._logger.log(
            level,
            "%s %s %s %s %.1fms [%s]",
            event.method,
            event.path,
            event.status if event.status is not None else "-",
            event.outcome,
            event.duration * 1000,
            event.route or "-",
        )
