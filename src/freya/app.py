"""
Main Freya application class.
The central component that ties all framework features together.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import fields
from typing import Any

from freya.asgi import ASGIAdapter
from freya.config import Settings
from freya.context import HTTPContext
from freya.dispatcher import Dispatcher
from freya.errors import ErrorClassifier
from freya.lifespan import Lifespan
from freya.middleware.base import GLOBAL_PREFIX, MiddlewareEntry, Pipeline
from freya.routing import Route, RouteBuilder, Router, RouteTable, normalize_template
from freya.types import ErrorHandler, Handler, LifespanHandler, Receive, Scope, Send, TemplateRenderer

logger = logging.getLogger("freya.app")

_SETTING_NAMES = frozenset(item.name for item in fields(Settings))


def _setting_key(key: str) -> str:
    """``"json spaces"`` -> ``"json_spaces"``."""
    return key.strip().lower().replace(" ", "_").replace("-", "_")


class Freya:
    """
    The Freya application.

    Acts as a builder: routes, middleware and error handlers are registered
    during setup, then :meth:`build` freezes them into an immutable
    :class:`~freya.dispatcher.Dispatcher`. Registering anything after that
    raises ``RuntimeError``.

    Usage:
        app = Freya()

        @app.get("/users/:id")
        def show_user(request, response, next):
            response.json({"id": request.params["id"]})

        # Run with: uvicorn main:app
    """

    def __init__(self, settings: Settings | None = None, **overrides: Any) -> None:
        if settings is None:
            settings = Settings.from_env(**overrides)
        elif overrides:
            settings = settings.with_changes(**overrides)
        self.settings = settings

        self._router = Router()
        self._middleware: list[MiddlewareEntry] = []
        self._error_handlers: list[ErrorHandler] = []
        self._extra_settings: dict[str, Any] = {}
        self._dispatcher: Dispatcher | None = None
        self._build_lock = threading.Lock()

        self.lifespan = Lifespan()
        self.state = self.lifespan.state
        self.views: TemplateRenderer | None = None
        self._asgi = ASGIAdapter(self)

    # -------------------------------------------------------------------------
    # ASGI Interface
    # -------------------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI application entry point."""
        await self._asgi(scope, receive, send)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    @property
    def production(self) -> bool:
        return self.settings.production

    @property
    def built(self) -> bool:
        return self._dispatcher is not None

    def set(self, key: str, value: Any) -> "Freya":
        """Set a setting; unknown keys are kept as free-form application settings."""
        name = _setting_key(key)
        if name in _SETTING_NAMES:
            if self.built:
                raise RuntimeError("Settings are frozen once the application is built")
            self.settings = self.settings.with_changes(**{name: value})
        else:
            self._extra_settings[name] = value
        return self

    def get_setting(self, key: str, default: Any = None) -> Any:
        name = _setting_key(key)
        if name in _SETTING_NAMES:
            return getattr(self.settings, name)
        return self._extra_settings.get(name, default)

    def enable(self, key: str) -> "Freya":
        return self.set(key, True)

    def disable(self, key: str) -> "Freya":
        return self.set(key, False)

    def enabled(self, key: str) -> bool:
        return bool(self.get_setting(key))

    def disabled(self, key: str) -> bool:
        return not self.enabled(key)

    def use_templates(self, directory: str | None = None, **options: Any) -> TemplateRenderer:
        """Install a Jinja2 :class:`~freya.templating.TemplateEngine` as ``views``."""
        from freya.templating import TemplateEngine

        engine = TemplateEngine(directory or self.settings.views, **options)
        engine.add_global("app", self)
        self.views = engine
        return engine

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _ensure_mutable(self) -> None:
        if self.built:
            raise RuntimeError("Cannot register routes or middleware after the application is built")

    @property
    def routes(self) -> list[Route]:
        """Get all registered routes."""
        return self._router.routes

    @property
    def middleware(self) -> list[MiddlewareEntry]:
        return list(self._middleware)

    def route(self, method: str, path: str, *handlers: Handler, name: str | None = None) -> Any:
        """
        Register a route.

        With handlers, registers them and returns the app for chaining;
        without, returns a decorator.
        """
        self._ensure_mutable()
        result = self._router.route(method, path, *handlers, name=name)
        return self if handlers else result

    def get(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("GET", path, *handlers, name=name)

    def post(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("POST", path, *handlers, name=name)

    def put(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("PUT", path, *handlers, name=name)

    def patch(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("PATCH", path, *handlers, name=name)

    def delete(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("DELETE", path, *handlers, name=name)

    def options(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("OPTIONS", path, *handlers, name=name)

    def head(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("HEAD", path, *handlers, name=name)

    def all(self, path: str, *handlers: Handler, name: str | None = None) -> Any:
        return self.route("ALL", path, *handlers, name=name)

    def route_path(self, path: str) -> RouteBuilder:
        self._ensure_mutable()
        return self._router.route_path(path)

    def router(self, prefix: str = "") -> Router:
        """Create a standalone router to :meth:`mount` later."""
        return Router(prefix)

    def mount(self, prefix: str, router: Router) -> "Freya":
        """
        Copy a router's middleware and routes under *prefix*.

        Router-wide middleware becomes scoped to *prefix*; routes keep their
        order and names.
        """
        self._ensure_mutable()
        prefix = normalize_template(prefix)
        base = "" if prefix == "/" else prefix

        router_base = f"{base}{router.prefix}"
        for entry in router.middleware:
            scope = router_base or GLOBAL_PREFIX
            if entry.path_prefix not in (None, GLOBAL_PREFIX):
                scope = f"{router_base}{entry.path_prefix}"
            self._add_middleware(scope, entry.handler)

        for route in router.routes:
            self._router.register(
                route.method,
                normalize_template(f"{base}{route.path}"),
                *route.handlers,
                name=route.name,
            )
        return self

    def url_for(self, name: str, **path_params: Any) -> str:
        """Generate the path of a named route."""
        return self._router.build_table().url_for(name, **path_params)

    # -------------------------------------------------------------------------
    # Middleware and errors
    # -------------------------------------------------------------------------

    def use(self, path_or_handler: str | Handler, handler: Handler | None = None) -> "Freya":
        """
        Register middleware, globally or for a path prefix:

            app.use(RequestLoggingMiddleware())
            app.use("/admin", require_auth)
        """
        self._ensure_mutable()
        if isinstance(path_or_handler, str):
            if handler is None:
                raise TypeError("use() with a path requires a handler")
            self._add_middleware(path_or_handler, handler)
        else:
            self._add_middleware(GLOBAL_PREFIX, path_or_handler)
        return self

    def _add_middleware(self, prefix: str, handler: Handler) -> None:
        if prefix != GLOBAL_PREFIX:
            prefix = normalize_template(prefix)
            if prefix == "/":
                prefix = GLOBAL_PREFIX
        self._middleware.append(MiddlewareEntry(prefix, handler))

    def error_handler(self, handler: ErrorHandler) -> ErrorHandler:
        """
        Register ``handler(error, request, response, stack)``.

        Handlers run before the built-in error rendering; one that sends a
        response ends error handling. Usable as a decorator.
        """
        self._ensure_mutable()
        self._error_handlers.append(handler)
        return handler

    # -------------------------------------------------------------------------
    # Lifespan
    # -------------------------------------------------------------------------

    def on_startup(self, handler: LifespanHandler) -> LifespanHandler:
        """Decorator to register a startup handler."""
        return self.lifespan.on_startup(handler)

    def on_shutdown(self, handler: LifespanHandler) -> LifespanHandler:
        """Decorator to register a shutdown handler."""
        return self.lifespan.on_shutdown(handler)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def build(self) -> Dispatcher:
        """Freeze registration and return the dispatcher. Idempotent."""
        with self._build_lock:
            if self._dispatcher is None:
                self._dispatcher = Dispatcher(
                    routes=RouteTable(self._router.routes),
                    pipeline=Pipeline(self._middleware),
                    classifier=ErrorClassifier(self._error_handlers, production=self.production),
                    app=self,
                    trust_proxy=self.settings.trust_proxy,
                )
                logger.info(
                    "Application built: %d route(s), %d middleware, env=%s",
                    len(self._dispatcher.routes),
                    len(self._dispatcher.pipeline),
                    self.settings.env,
                )
            return self._dispatcher

    def handle(self, context: HTTPContext) -> HTTPContext:
        """Dispatch one request context synchronously."""
        return self.build().dispatch(context)

    def simulate(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | str = b"",
        query_string: str = "",
    ) -> HTTPContext:
        """
        Dispatch a synthetic request; handy in tests.

        A query string may also be given inline: ``simulate("GET", "/a?b=1")``.
        """
        if "?" in path and not query_string:
            path, query_string = path.split("?", 1)
        if isinstance(body, str):
            body = body.encode("utf-8")
        context = HTTPContext.from_raw(
            method=method,
            path=path,
            query_string=query_string,
            headers=headers,
            body=body,
            client=("127.0.0.1", 0),
        )
        return self.handle(context)

    def run(
        self,
        host: str | None = None,
        port: int | None = None,
        reload: bool = False,
        workers: int = 1,
        log_level: str = "info",
        on_listen: Callable[[str, int], Any] | None = None,
    ) -> None:
        """
        Run the application using uvicorn.

        Args:
            host: Host to bind to (defaults to ``settings.host``).
            port: Port to bind to (defaults to ``settings.port``).
            reload: Enable auto-reload.
            workers: Number of worker processes.
            log_level: Logging level.
            on_listen: Called with ``(host, port)`` before serving starts.
        """
        import uvicorn

        host = host or self.settings.host
        port = port or self.settings.port
        if on_listen is not None:
            on_listen(host, port)

        uvicorn.run(
            self,
            host=host,
            port=port,
            reload=reload,
            workers=workers,
            log_level=log_level,
        )
