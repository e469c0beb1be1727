"""
CORS (Cross-Origin Resource Sharing) middleware.
"""

import re as _re
from collections.abc import Callable
from typing import Any

from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

DEFAULT_METHODS: list[str] = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]


class CORSMiddleware(Middleware):
    """
    Cross-Origin Resource Sharing (CORS) middleware.
    Answers preflight requests and adds CORS headers to the rest.

    Security features:
      - Wildcard subdomain matching (e.g. ``*.example.com``).
      - Regex-based origin matching via ``allow_origin_regex``.
      - A callable ``allow_origin`` for dynamic decisions.
      - ``Vary: Origin`` whenever the allowed origin is reflected.
      - Blocks ``allow_credentials=True`` with a bare ``*`` origin
        (violates the CORS spec and is rejected by browsers).

    Requests without an ``Origin`` header are same-origin and pass through
    untouched. With ``allow_headers=None`` the preflight mirrors
    ``Access-Control-Request-Headers``.
    """

    def __init__(
        self,
        allow_origins: list[str] | None = None,
        allow_methods: list[str] | None = None,
        allow_headers: list[str] | None = None,
        allow_credentials: bool = False,
        expose_headers: list[str] | None = None,
        max_age: int = 86400,
        allow_origin_regex: str | None = None,
        allow_origin: Callable[[str], bool] | None = None,
        preflight_continue: bool = False,
        options_success_status: int = 204,
    ) -> None:
        self.allow_origins = allow_origins if allow_origins is not None else ["*"]
        self.allow_methods = allow_methods or DEFAULT_METHODS
        self.allow_headers = allow_headers
        self.allow_credentials = allow_credentials
        self.expose_headers = expose_headers or []
        self.max_age = max_age
        self.preflight_continue = preflight_continue
        self.options_success_status = options_success_status
        self._allow_origin = allow_origin

        # Compile optional regex
        self._origin_regex: _re.Pattern[str] | None = (
            _re.compile(allow_origin_regex) if allow_origin_regex else None
        )

        # Pre-compute wildcard subdomain patterns (e.g. "*.example.com")
        self._wildcard_origins: list[str] = [
            o[1:]  # strip leading "*", keep ".example.com"
            for o in self.allow_origins
            if o.startswith("*.") and len(o) > 2
        ]

        self._allow_all = "*" in self.allow_origins and not self._wildcard_origins

        # Spec violation guard: credentials + bare wildcard
        if self.allow_credentials and self._allow_all and not (self._origin_regex or self._allow_origin):
            raise ValueError(
                "allow_credentials=True cannot be used with allow_origins=['*']. "
                "Specify explicit origins or use allow_origin_regex."
            )

    def process(self, request: Request, response: Response, next: Next) -> Any:
        origin = request.get_header("origin")

        # No Origin header: same-origin request
        if not origin:
            return next()

        allowed = self._allowed_origin_value(origin)
        if allowed is None:
            return next()

        response.set_header("Access-Control-Allow-Origin", allowed)
        if allowed != "*":
            response.vary("Origin")
        if self.allow_credentials:
            response.set_header("Access-Control-Allow-Credentials", "true")
        if self.expose_headers:
            response.set_header("Access-Control-Expose-Headers", ", ".join(self.expose_headers))

        preflight = (
            request.method == "OPTIONS"
            and request.has_header("access-control-request-method")
        )
        if not preflight:
            return next()

        response.set_header("Access-Control-Allow-Methods", ", ".join(self.allow_methods))
        if self.allow_headers is not None:
            response.set_header("Access-Control-Allow-Headers", ", ".join(self.allow_headers))
        else:
            requested = request.get_header("access-control-request-headers")
            if requested:
                response.set_header("Access-Control-Allow-Headers", requested)
                response.vary("Access-Control-Request-Headers")
        response.set_header("Access-Control-Max-Age", str(self.max_age))

        if self.preflight_continue:
            return next()
        response.status(self.options_success_status).send(b"")

    def _allowed_origin_value(self, origin: str) -> str | None:
        """Value for Access-Control-Allow-Origin, or None if *origin* is refused."""
        if self._allow_all and not self.allow_credentials:
            return "*"
        if self._is_origin_allowed(origin):
            return origin
        return None

    def _is_origin_allowed(self, origin: str) -> bool:
        """Check if *origin* is allowed by list, wildcard subdomain, regex or callable."""
        if self._allow_all:
            return True
        if origin in self.allow_origins:
            return True
        # Wildcard subdomain: *.example.com  matches  foo.example.com
        for suffix in self._wildcard_origins:
            if origin.endswith(suffix):
                return True
        # Regex fallback
        if self._origin_regex and self._origin_regex.fullmatch(origin):
            return True
        if self._allow_origin is not None:
            return bool(self._allow_origin(origin))
        return False
