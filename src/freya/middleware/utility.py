"""
Small general-purpose middleware: method override, response timing and favicon.
"""

import os
import time
from collections.abc import Mapping

from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

OVERRIDABLE_METHODS: frozenset[str] = frozenset({"PUT", "PATCH", "DELETE"})


class MethodOverrideMiddleware(Middleware):
    """
    Let HTML forms issue PUT, PATCH and DELETE.

    A POST request is rerouted when the override header, a form field or a
    query parameter names one of :data:`OVERRIDABLE_METHODS`.
    """

    def __init__(
        self,
        header_name: str = "x-http-method-override",
        field_name: str = "_method",
    ) -> None:
        self._header_name = header_name
        self._field_name = field_name

    def process(self, request: Request, response: Response, next: Next) -> None:
        if request.method == "POST":
            override = request.get_header(self._header_name) or self._from_body(request)
            if not override:
                value = request.get_query(self._field_name)
                override = value if isinstance(value, str) else None
            if override and override.upper() in OVERRIDABLE_METHODS:
                request.method = override.upper()
        next()

    def _from_body(self, request: Request) -> str | None:
        if not request.content_type_is("form", "multipart", "json"):
            return None
        body = request.parsed_body
        if isinstance(body, Mapping):
            value = body.get(self._field_name)
            return value if isinstance(value, str) else None
        return None


class ResponseTimeMiddleware(Middleware):
    """Add the time spent handling the request as a response header."""

    def __init__(self, header_name: str = "X-Response-Time", digits: int = 3, suffix: str = "ms") -> None:
        self._header_name = header_name
        self._digits = digits
        self._suffix = suffix

    def process(self, request: Request, response: Response, next: Next) -> None:
        start = time.perf_counter()

        def add_header(res: Response) -> None:
            elapsed = (time.perf_counter() - start) * 1000
            res.set_header(self._header_name, f"{elapsed:.{self._digits}f}{self._suffix}")

        response.before_send(add_header)
        next()


class FaviconMiddleware(Middleware):
    """
    Answer ``/favicon.ico`` from a file, or with 204 when there is none.

    The icon is read once and kept in memory.
    """

    def __init__(self, path: str | None = None, max_age: int = 86400) -> None:
        self._path = path
        self._max_age = max_age
        self._icon: bytes | None = None

    def process(self, request: Request, response: Response, next: Next) -> None:
        if request.path != "/favicon.ico" or request.method not in ("GET", "HEAD"):
            return next()

        icon = self._load()
        if icon is None:
            response.status(204).send(b"")
            return
        response.cache(public=True, max_age=self._max_age)
        response.type("image/x-icon").send(icon)

    def _load(self) -> bytes | None:
        if self._icon is None and self._path and os.path.isfile(self._path):
            with open(self._path, "rb") as f:
                self._icon = f.read()
        return self._icon
