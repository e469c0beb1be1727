"""
CSRF (Cross-Site Request Forgery) protection middleware.
"""

import hashlib
import hmac
import secrets
from collections.abc import Mapping

from freya.config import validate_secret_key
from freya.cookies import CookieOptions
from freya.exceptions import Forbidden
from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

# HTTP methods that are considered "safe" (read-only) and exempt from CSRF checks
SAFE_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

# Default cookie / header / form field names
DEFAULT_COOKIE_NAME: str = "freya_csrf"
DEFAULT_HEADER_NAME: str = "x-csrf-token"
DEFAULT_FORM_FIELD: str = "_csrf_token"
DEFAULT_TOKEN_LENGTH: int = 32

# Key under which the current token is exposed in request.state
STATE_KEY: str = "csrf_token"


class CSRFMiddleware(Middleware):
    """
    CSRF protection middleware (double-submit cookie).

    For every request, ensures a CSRF token cookie is set. Tokens are
    HMAC-signed with *secret_key*; a cookie whose signature does not
    verify is replaced by a fresh token. For
    state-mutating methods (POST, PUT, PATCH, DELETE) the token submitted
    via header or form field must match the cookie value (constant-time
    comparison); otherwise :class:`~freya.exceptions.Forbidden` is raised.

    Usage:
        app.use(CSRFMiddleware(secret_key="your-secret-key"))

    Clients must:
        1. Read the CSRF cookie value (JavaScript-readable by default).
        2. Submit it back as the ``X-CSRF-Token`` header or as the
           ``_csrf_token`` form field on every mutating request.
    """

    def __init__(
        self,
        secret_key: str,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        header_name: str = DEFAULT_HEADER_NAME,
        form_field: str = DEFAULT_FORM_FIELD,
        token_length: int = DEFAULT_TOKEN_LENGTH,
        safe_methods: frozenset[str] = SAFE_METHODS,
        exclude_paths: list[str] | None = None,
        cookie_options: CookieOptions | None = None,
    ) -> None:
        validate_secret_key(secret_key)
        self._secret_key = secret_key.encode()
        self._cookie_name = cookie_name
        self._header_name = header_name
        self._form_field = form_field
        self._token_length = token_length
        self._safe_methods = safe_methods
        self._exclude_paths = exclude_paths or []
        # CSRF cookie must be readable by JS
        self._cookie_options = cookie_options or CookieOptions(
            httponly=False,
            samesite="Lax",
            secure=True,
            path="/",
        )

    def generate_token(self) -> str:
        """Generate a new random CSRF token, signed with the secret key."""
        nonce = secrets.token_urlsafe(self._token_length)
        return f"{nonce}.{self._sign(nonce)}"

    def verify_token(self, token: str) -> bool:
        """True if *token* was issued with this secret key."""
        nonce, sep, signature = token.rpartition(".")
        if not sep or not nonce:
            return False
        return hmac.compare_digest(self._sign(nonce).encode(), signature.encode())

    def _sign(self, nonce: str) -> str:
        return hmac.new(self._secret_key, nonce.encode(), hashlib.sha256).hexdigest()

    def process(self, request: Request, response: Response, next: Next) -> None:
        # Skip excluded paths
        if any(request.path.startswith(p) for p in self._exclude_paths):
            return next()

        cookie_token = request.get_cookie(self._cookie_name)
        issued = not cookie_token or not self.verify_token(cookie_token)
        if issued:
            cookie_token = self.generate_token()

        # Expose current CSRF token so handlers and templates can read it
        request.state[STATE_KEY] = cookie_token

        if request.method not in self._safe_methods:
            submitted = request.get_header(self._header_name) or self._get_form_token(request)
            if issued or not submitted or not self._tokens_match(cookie_token, submitted):
                raise Forbidden("CSRF token missing or invalid")

        response.set_cookie(self._cookie_name, cookie_token, self._cookie_options)
        next()

    @staticmethod
    def _tokens_match(expected: str, submitted: str) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(expected.encode(), submitted.encode())

    def _get_form_token(self, request: Request) -> str | None:
        """Try to extract the CSRF token from a form body."""
        if not request.content_type_is("form", "multipart"):
            return None
        body = request.parsed_body
        if not isinstance(body, Mapping):
            return None
        value = body.get(self._form_field)
        if isinstance(value, list):
            return value[0] if value else None
        return value
