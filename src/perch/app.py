"""Perch application class.

Mutable during setup (route registration, groups, filters, providers).
Frozen when the first request or the lifespan startup arrives, or when
``app.seal()`` is called.
"""

import inspect
import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from perch._internal.asgi import Receive, Scope, Send
from perch._internal.types import ErrorHandler, Handler, Provider
from perch.config import AppConfig
from perch.errors import RouteTableSealed
from perch.filters.builtin import Authorizer
from perch.filters.protocol import Filter
from perch.routing.constraints import ConstraintFactory
from perch.routing.group import RouteDecorator, RouteGroup
from perch.routing.route import RouteEntry
from perch.routing.router import RouteTable
from perch.server.binding import build_binding_plan
from perch.server.events import EventSink, LoggingEventSink
from perch.server.handler import compile_chain, handle_request

logger = logging.getLogger("perch.app")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class App:
    """The perch application.

    Mutable during setup (route registration, groups, filters, providers).
    Frozen at runtime when ``__call__()`` is first invoked.

    Usage::

        app = App()
        products = app.group("/products").with_tags("products")

        @products.get("/{id:int}", name="product")
        async def product(id: int, store: ProductStore):
            item = await store.get(id)
            return ok(item) if item else not_found()

    Thread safety:
        The setup phase is single-threaded (decorators at import time).
        The freeze transition uses a Lock + double-check to ensure exactly
        one thread seals the route table, even when several ASGI workers
        call ``__call__()`` concurrently on first request.
    """

    __slots__ = (
        "_authorizer",
        "_error_handlers",
        "_event_sink",
        "_freeze_lock",
        "_frozen",
        "_providers",
        "_root",
        "_shutdown_hooks",
        "_startup_hooks",
        "_table",
        "config",
    )

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        authorizer: Authorizer | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.config: AppConfig = config or AppConfig()
        self._authorizer = authorizer
        self._event_sink: EventSink = event_sink or LoggingEventSink()
        self._table = RouteTable(case_sensitive=self.config.case_sensitive_paths)
        self._root = RouteGroup(self._table, binder=build_binding_plan)
        self._error_handlers: dict[int | type, ErrorHandler] = {}
        self._providers: dict[Any, Provider] = {}
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()

    # -- Route registration --

    @property
    def routes(self) -> tuple[RouteEntry, ...]:
        return self._table.routes

    @property
    def route_table(self) -> RouteTable:
        return self._table

    def group(self, prefix: str) -> RouteGroup:
        """Create a top-level route group."""
        self._check_not_frozen()
        return self._root.group(prefix)

    def map(
        self,
        methods: str | Iterable[str],
        pattern: str,
        handler: Handler,
        **options: Any,
    ) -> RouteEntry:
        """Register *handler* for *methods* and return the route entry.

        Accepts the same options as ``RouteGroup.route()``: ``filters``,
        ``name``, ``tags``, ``authorize``, ``allow_anonymous`` and
        ``metadata``.
        """
        self._check_not_frozen()
        return self._root.route(methods, pattern, handler, **options)

    def route(
        self,
        pattern: str,
        *,
        methods: Iterable[str] | None = None,
        **options: Any,
    ) -> RouteDecorator:
        """Register a route handler via decorator. Methods default to ``["GET"]``."""

        def decorator(func: Handler) -> Handler:
            self.map(tuple(methods or ("GET",)), pattern, func, **options)
            return func

        return decorator

    def get(self, pattern: str, **options: Any) -> RouteDecorator:
        return self.route(pattern, methods=("GET",), **options)

    def post(self, pattern: str, **options: Any) -> RouteDecorator:
        return self.route(pattern, methods=("POST",), **options)

    def put(self, pattern: str, **options: Any) -> RouteDecorator:
        return self.route(pattern, methods=("PUT",), **options)

    def patch(self, pattern: str, **options: Any) -> RouteDecorator:
        return self.route(pattern, methods=("PATCH",), **options)

    def delete(self, pattern: str, **options: Any) -> RouteDecorator:
        return self.route(pattern, methods=("DELETE",), **options)

    def url_for(self, name: str, /, **values: Any) -> str:
        """Build the path of the route registered as *name*."""
        return self._table.url_for(name, values)

    # -- Filters --

    def add_filter(self, filter: Filter) -> None:  # noqa: A002
        """Add a filter that runs for every route, outside all group filters."""
        self._check_not_frozen()
        self._root.add_filter(filter)

    # -- Constraints --

    def add_constraint(self, name: str, factory: ConstraintFactory) -> None:
        """Register a route constraint usable as ``{param:name(args)}``.

        Must be called before any route that uses it is registered.
        """
        self._check_not_frozen()
        self._table.registry.register(name, factory)

    # -- Service injection --

    def provide(self, annotation: Any, factory: Provider) -> None:
        """Register a provider factory for handler parameter injection.

        When a handler parameter's type annotation matches *annotation*,
        perch calls *factory* (with no arguments, sync or async) and
        injects the result::

            app.provide(ProductStore, lambda: store)

            @app.get("/products")
            async def products(store: ProductStore): ...
        """
        self._check_not_frozen()
        self._providers[annotation] = factory

    # -- Error handlers --

    def error(
        self,
        code_or_exception: int | type[BaseException],
    ) -> Callable[[ErrorHandler], ErrorHandler]:
        """Register an error handler via decorator."""

        def decorator(func: ErrorHandler) -> ErrorHandler:
            self._check_not_frozen()
            self._error_handlers[code_or_exception] = func
            return func

        return decorator

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator."""
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    async def startup(self) -> None:
        """Seal the app and run the startup hooks."""
        self._ensure_frozen()
        for hook in self._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def shutdown(self) -> None:
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    # -- Logging --

    def configure_logging(self) -> None:
        """Apply ``config.log_level`` to the ``perch`` logger.

        Adds a stream handler when the logger has none, so output appears
        without further setup. Existing handlers are left alone.
        """
        perch_logger = logging.getLogger("perch")
        level = "DEBUG" if self.config.debug else self.config.log_level.upper()
        perch_logger.setLevel(level)
        if not perch_logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            perch_logger.addHandler(handler)

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point.

        Handles the lifespan scope directly, then delegates HTTP scopes to
        the request handler pipeline.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        self._ensure_frozen()

        await handle_request(
            scope,
            receive,
            send,
            table=self._table,
            error_handlers=self._error_handlers,
            config=self.config,
            event_sink=self._event_sink,
        )

    async def _handle_lifespan(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Run the ASGI lifespan protocol.

        Seals the app at startup (before the first HTTP request), then
        runs registered startup/shutdown hooks and signals completion
        back to the server.
        """
        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    await self.startup()
                    await send({"type": "lifespan.startup.complete"})
                except Exception as exc:
                    logger.exception("Startup failed")
                    await send(
                        {
                            "type": "lifespan.startup.failed",
                            "message": str(exc),
                        }
                    )
                    return

            elif msg_type == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Freeze --

    @property
    def frozen(self) -> bool:
        return self._frozen

    def seal(self) -> None:
        """Freeze the app now instead of on the first request.

        Compiles every route's filter chain and validates providers and
        authorization requirements. Raises ``ConfigurationError`` when
        something is missing.
        """
        self._ensure_frozen()

    def _ensure_frozen(self) -> None:
        """Thread-safe freeze with double-check locking.

        Multiple ASGI worker threads could call __call__() concurrently on
        first request. This pattern ensures exactly one thread seals.
        """
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Compile the app into its frozen runtime state.

        MUST only be called while holding _freeze_lock.
        """
        providers = dict(self._providers)
        self._table.seal(
            lambda entry: compile_chain(
                entry, authorizer=self._authorizer, providers=providers
            )
        )
        self._frozen = True
        logger.debug("App sealed with %d route(s)", len(self._table))

    def _check_not_frozen(self) -> None:
        if self._frozen:
            raise RouteTableSealed(
                "Register routes, groups, filters and providers before the first request."
            )
