"""
Routing system for Freya framework.

Route templates use ``/``-separated segments. A segment starting with ``:``
captures exactly one path segment under that name; ``*`` captures the rest of
the path (slashes included) under the ``"*"`` key.

Lookup is a linear scan in registration order. Order is part of the routing
contract: a generic ``/users/:id`` registered before ``/users/me`` shadows it.
"""

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from freya.exceptions import RoutingError
from freya.middleware.base import MiddlewareEntry
from freya.types import Handler

# Method value that matches every request method
ALL_METHODS: str = "ALL"

# Key under which a wildcard capture is exposed
WILDCARD_KEY: str = "*"
WILDCARD_ALIAS: str = "wildcard"

# ":name" parameters and the "*" wildcard
_TOKEN_PATTERN: re.Pattern[str] = re.compile(r":(\w+)|\*")


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    """
    Matcher compiled from a route template.

    ``slots`` lists, for each regex group, the parameter name it fills
    (``"*"`` for a wildcard group).
    """

    template: str
    regex: re.Pattern[str]
    param_names: tuple[str, ...]
    slots: tuple[str, ...]
    has_wildcard: bool

    def match(self, path: str) -> dict[str, str] | None:
        """Return captured parameters, or None if *path* does not match."""
        found = self.regex.match(path)
        if found is None:
            return None

        params: dict[str, str] = {}
        for slot, value in zip(self.slots, found.groups()):
            if slot == WILDCARD_KEY:
                params[WILDCARD_KEY] = value
                params[WILDCARD_ALIAS] = value
            else:
                params[slot] = value
        return params


def compile_pattern(template: str) -> CompiledPattern:
    """
    Compile a route template into a matcher.

    Never rejects a template; literal text is escaped so that characters
    such as ``.`` or ``+`` match themselves.
    """
    regex_parts: list[str] = ["^"]
    param_names: list[str] = []
    slots: list[str] = []
    position = 0

    for token in _TOKEN_PATTERN.finditer(template):
        regex_parts.append(re.escape(template[position:token.start()]))
        name = token.group(1)
        if name:
            param_names.append(name)
            slots.append(name)
            regex_parts.append("([^/]+)")
        else:
            slots.append(WILDCARD_KEY)
            regex_parts.append("(.*)")
        position = token.end()

    regex_parts.append(re.escape(template[position:]))
    regex_parts.append("$")

    return CompiledPattern(
        template=template,
        regex=re.compile("".join(regex_parts)),
        param_names=tuple(param_names),
        slots=tuple(slots),
        has_wildcard=WILDCARD_KEY in slots,
    )


def normalize_template(path: str) -> str:
    """Collapse duplicate slashes and strip a trailing slash (except for ``/``)."""
    path = re.sub(r"/{2,}", "/", path or "/")
    if not path.startswith("/"):
        path = f"/{path}"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


@dataclass(frozen=True, slots=True)
class Route:
    """A registered route: method, template and its local handler chain."""

    method: str
    path: str
    handlers: tuple[Handler, ...]
    name: str | None = None
    pattern: CompiledPattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.handlers:
            raise RoutingError(f"Route {self.method} {self.path} has no handlers")
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "pattern", compile_pattern(self.path))

    @property
    def param_names(self) -> tuple[str, ...]:
        return self.pattern.param_names

    @property
    def has_wildcard(self) -> bool:
        return self.pattern.has_wildcard

    def match(self, path: str, method: str) -> dict[str, str] | None:
        """Match a method and a normalized, decoded path."""
        if self.method != ALL_METHODS and self.method != method:
            return None
        return self.pattern.match(path)


def match_route(route: Route, path: str, method: str) -> dict[str, str] | None:
    """Functional form of :meth:`Route.match`."""
    return route.match(path, method.upper())


class RouteTable:
    """
    Immutable, ordered collection of routes consulted after the pipeline.

    Produced by :meth:`Router.build_table`; read-only during dispatch and
    therefore safe to share between threads.
    """

    __slots__ = ("_routes",)

    def __init__(self, routes: Iterable[Route] = ()) -> None:
        self._routes: tuple[Route, ...] = tuple(routes)

    @property
    def routes(self) -> tuple[Route, ...]:
        return self._routes

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def lookup(self, method: str, path: str) -> tuple[Route, dict[str, str]] | None:
        """
        First route, in registration order, matching *method* and *path*.

        ``HEAD`` falls back to ``GET`` routes when no route answers ``HEAD``.
        """
        method = method.upper()
        for route in self._routes:
            params = route.match(path, method)
            if params is not None:
                return route, params

        if method == "HEAD":
            return self.lookup("GET", path)
        return None

    def url_for(self, name: str, **path_params: Any) -> str:
        """Build the path of a named route."""
        for route in self._routes:
            if route.name != name:
                continue

            def substitute(token: re.Match[str]) -> str:
                key = token.group(1) or WILDCARD_KEY
                if key not in path_params:
                    raise RoutingError(f"Missing parameter '{key}' for route '{name}'")
                return str(path_params[key])

            return _TOKEN_PATTERN.sub(substitute, route.path)

        raise RoutingError(f"No route named '{name}'")


class Router:
    """
    Route and middleware builder.

    Used directly for modular route groups (mounted with
    :meth:`freya.app.Freya.mount`) and internally by the application.
    """

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix.rstrip("/")
        self._routes: list[Route] = []
        self._middleware: list[MiddlewareEntry] = []

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    @property
    def middleware(self) -> list[MiddlewareEntry]:
        return list(self._middleware)

    def build_table(self) -> RouteTable:
        return RouteTable(self._routes)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        method: str,
        path: str,
        *handlers: Handler,
        name: str | None = None,
    ) -> Route:
        """Append a route. Later registrations never shadow earlier ones."""
        full_path = normalize_template(f"{self._prefix}{path}")
        route = Route(method=method, path=full_path, handlers=tuple(handlers), name=name)
        self._routes.append(route)
        return route

    def add_route(
        self,
        path: str,
        handler: Handler,
        methods: list[str] | None = None,
        name: str | None = None,
    ) -> list[Route]:
        """Register one handler for several methods."""
        return [
            self.register(method, path, handler, name=name)
            for method in (methods or ["GET"])
        ]

    def use(self, path_or_handler: str | Handler, handler: Handler | None = None) -> "Router":
        """
        Add router-level middleware.

        Without a path the middleware covers the whole router (its mount
        prefix once mounted).
        """
        if isinstance(path_or_handler, str):
            if handler is None:
                raise RoutingError("use() with a path requires a handler")
            self._middleware.append(MiddlewareEntry(path_or_handler, handler))
        else:
            self._middleware.append(MiddlewareEntry(None, path_or_handler))
        return self

    def route(
        self,
        method: str,
        path: str,
        *handlers: Handler,
        name: str | None = None,
    ) -> Any:
        """
        Register *handlers* for *method* and *path*.

        With no handlers, return a decorator instead:

            @router.route("GET", "/items")
            def list_items(request, response, next): ...
        """
        if handlers:
            self.register(method, path, *handlers, name=name)
            return self

        def decorator(handler: Handler) -> Handler:
            self.register(method, path, handler, name=name)
            return handler
        return decorator

    # Method shortcuts
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
        return self.route(ALL_METHODS, path, *handlers, name=name)

    def route_path(self, path: str) -> "RouteBuilder":
        """Chain several methods on one path: ``router.route_path("/x").get(h).post(h2)``."""
        return RouteBuilder(self, path)


class RouteBuilder:
    """Chained route definition for a single path."""

    def __init__(self, router: Router, path: str) -> None:
        self._router = router
        self._path = path

    def _add(self, method: str, handlers: tuple[Handler, ...]) -> "RouteBuilder":
        self._router.register(method, self._path, *handlers)
        return self

    def get(self, *handlers: Handler) -> "RouteBuilder":
        return self._add("GET", handlers)

    def post(self, *handlers: Handler) -> "RouteBuilder":
        return self._add("POST", handlers)

    def put(self, *handlers: Handler) -> "RouteBuilder":
        return self._add("PUT", handlers)

    def patch(self, *handlers: Handler) -> "RouteBuilder":
        return self._add("PATCH", handlers)

    def delete(self, *handlers: Handler) -> "RouteBuilder":
        return self._add("DELETE", handlers)

    def all(self, *handlers: Handler) -> "RouteBuilder":
        return self._add(ALL_METHODS, handlers)


