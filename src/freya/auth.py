"""
Authentication system for Freya framework.
Provides pluggable authentication backends and user management.
"""
import jwt

import base64
import hmac
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from freya.exceptions import Forbidden, Unauthorized
from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Handler, Next


@dataclass
class User:
    """User representation for authentication."""

    id: str
    username: str | None = None
    email: str | None = None
    is_authenticated: bool = True
    is_active: bool = True
    roles: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.id

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def has_role(self, *roles: str) -> bool:
        """True if the user holds any of *roles*."""
        return any(role in self.roles for role in roles)


@dataclass
class AnonymousUser:
    """Anonymous user for unauthenticated requests."""

    id: str = ""
    username: str | None = None
    email: str | None = None
    is_authenticated: bool = False
    is_active: bool = False
    roles: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> None:
        """Anonymous users have no identity."""
        return None

    def has_scope(self, scope: str) -> bool:
        return False

    def has_role(self, *roles: str) -> bool:
        return False


AnyUser = User | AnonymousUser


def _split_authorization(request: Request, scheme: str) -> str | None:
    """Credentials from ``Authorization: <scheme> <credentials>``, or None."""
    auth_header = request.get_header("authorization")
    if not auth_header:
        return None
    try:
        given, credentials = auth_header.split(" ", 1)
    except ValueError:
        return None
    if given.lower() != scheme.lower():
        return None
    return credentials.strip() or None


class AuthBackend(ABC):
    """
    Abstract authentication backend.

    Implements the Strategy pattern for pluggable authentication.
    """

    # Value of WWW-Authenticate on 401 responses, if any
    challenge: str | None = None

    @abstractmethod
    def authenticate(self, request: Request) -> AnyUser:
        """
        Authenticate a request and return a User or AnonymousUser.

        Args:
            request: The incoming request.

        Returns:
            User if authenticated, AnonymousUser otherwise.
        """
        ...


class BasicAuthBackend(AuthBackend):
    """
    HTTP Basic authentication backend.

    Checks credentials against a ``users`` mapping (username -> password)
    or a ``verify_credentials(username, password)`` callable returning a
    User, ``True`` or None.
    """

    def __init__(
        self,
        users: Mapping[str, str] | None = None,
        verify_credentials: Callable[[str, str], Any] | None = None,
        realm: str = "Restricted",
    ) -> None:
        self._users = dict(users or {})
        self._verify_credentials = verify_credentials
        self.challenge = f'Basic realm="{realm}"'

    def authenticate(self, request: Request) -> AnyUser:
        credentials = _split_authorization(request, "basic")
        if credentials is None:
            return AnonymousUser()

        try:
            decoded = base64.b64decode(credentials, validate=True).decode("utf-8")
            username, password = decoded.split(":", 1)
        except (ValueError, UnicodeDecodeError):
            return AnonymousUser()
        if not username:
            return AnonymousUser()

        if self._verify_credentials is not None:
            result = self._verify_credentials(username, password)
            if isinstance(result, User):
                return result
            if result is True:
                return User(id=username, username=username)
            return AnonymousUser()

        expected = self._users.get(username)
        if expected is not None and hmac.compare_digest(expected.encode(), password.encode()):
            return User(id=username, username=username)
        return AnonymousUser()


class BearerAuthBackend(AuthBackend):
    """
    Opaque bearer token backend.
    Expects Authorization header with "Bearer <token>" format.
    """

    def __init__(
        self,
        verify_token: Callable[[str], User | None],
        token_prefix: str = "Bearer",
    ) -> None:
        self._verify_token = verify_token
        self._token_prefix = token_prefix
        self.challenge = token_prefix

    def authenticate(self, request: Request) -> AnyUser:
        token = _split_authorization(request, self._token_prefix)
        if token is None:
            return AnonymousUser()
        return self._verify_token(token) or AnonymousUser()


class APIKeyAuthBackend(AuthBackend):
    """
    API key backend.

    The key is read from a header, then from a query parameter. ``keys``
    is either a collection of valid keys or a mapping of key -> User.
    """

    def __init__(
        self,
        keys: Iterable[str] | Mapping[str, User] | None = None,
        validate: Callable[[str], User | None] | None = None,
        header_name: str = "x-api-key",
        query_name: str | None = "api_key",
    ) -> None:
        if isinstance(keys, Mapping):
            self._keys: dict[str, User | None] = dict(keys)
        else:
            self._keys = {key: None for key in keys or ()}
        self._validate = validate
        self._header_name = header_name
        self._query_name = query_name

    def _extract(self, request: Request) -> str | None:
        api_key = request.get_header(self._header_name)
        if not api_key and self._query_name:
            value = request.get_query(self._query_name)
            api_key = value if isinstance(value, str) else None
        return api_key or None

    def authenticate(self, request: Request) -> AnyUser:
        api_key = self._extract(request)
        if api_key is None:
            return AnonymousUser()

        if self._validate is not None:
            return self._validate(api_key) or AnonymousUser()

        for known, user in self._keys.items():
            if hmac.compare_digest(known.encode(), api_key.encode()):
                return user or User(id=f"apikey:{known[:6]}", data={"api_key": True})
        return AnonymousUser()


class JWTAuthBackend(AuthBackend):
    """
    JWT-based authentication backend (PyJWT).

    The ``sub`` claim becomes the user id; ``username``, ``roles`` and
    ``scopes`` claims are copied when present. Expired or otherwise
    invalid tokens authenticate as anonymous.
    """

    challenge = "Bearer"

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        token_prefix: str = "Bearer",
        audience: str | None = None,
        issuer: str | None = None,
        load_user: Callable[[dict[str, Any]], User | None] | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._token_prefix = token_prefix
        self._audience = audience
        self._issuer = issuer
        self._load_user = load_user

    def create_token(self, subject: str, expires_in: int = 3600, **claims: Any) -> str:
        """Issue a signed token for *subject*."""
        now = int(time.time())
        payload: dict[str, Any] = {"sub": subject, "iat": now, "exp": now + expires_in, **claims}
        if self._audience:
            payload["aud"] = self._audience
        if self._issuer:
            payload["iss"] = self._issuer
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: str) -> dict[str, Any] | None:
        """Verified claims of *token*, or None."""
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    def authenticate(self, request: Request) -> AnyUser:
        token = _split_authorization(request, self._token_prefix)
        if token is None:
            return AnonymousUser()

        payload = self.decode(token)
        if payload is None or "sub" not in payload:
            return AnonymousUser()

        if self._load_user is not None:
            return self._load_user(payload) or AnonymousUser()
        return User(
            id=str(payload["sub"]),
            username=payload.get("username"),
            roles=list(payload.get("roles", [])),
            scopes=list(payload.get("scopes", [])),
            data=payload,
        )


class SessionAuthBackend(AuthBackend):
    """
    Session-based authentication backend.
    Retrieves the user id from the session (requires SessionMiddleware).
    """

    def __init__(
        self,
        session_key: str = "user_id",
        load_user: Callable[[str], User | None] | None = None,
    ) -> None:
        self._session_key = session_key
        self._load_user = load_user

    def authenticate(self, request: Request) -> AnyUser:
        session = request.session
        if not session:
            return AnonymousUser()

        user_id = session.get(self._session_key)
        if not user_id:
            return AnonymousUser()

        if self._load_user is not None:
            return self._load_user(user_id) or AnonymousUser()
        return User(id=str(user_id))


class AuthMiddleware(Middleware):
    """
    Authentication middleware.
    Attaches a user to each request.

    Backends are tried in order; the first one returning an authenticated
    user wins. With ``required=True`` an anonymous request raises
    :class:`~freya.exceptions.Unauthorized`.
    """

    def __init__(
        self,
        backend: AuthBackend | list[AuthBackend],
        required: bool = False,
        exclude_paths: list[str] | None = None,
        message: str = "Authentication required",
    ) -> None:
        self.backends = backend if isinstance(backend, list) else [backend]
        self.required = required
        self.exclude_paths = exclude_paths or []
        self.message = message

    def process(self, request: Request, response: Response, next: Next) -> None:
        # Skip authentication for excluded paths
        if any(request.path.startswith(p) for p in self.exclude_paths):
            request.user = AnonymousUser()
            return next()

        user: AnyUser = AnonymousUser()
        for backend in self.backends:
            user = backend.authenticate(request)
            if user.is_authenticated:
                break
        request.user = user

        if self.required and not user.is_authenticated:
            raise Unauthorized(self.message, headers=self._challenge_headers())
        next()

    def _challenge_headers(self) -> dict[str, str] | None:
        challenges = [b.challenge for b in self.backends if b.challenge]
        if not challenges:
            return None
        return {"WWW-Authenticate": ", ".join(challenges)}


def _current_user(request: Request) -> AnyUser:
    user = request.user
    if user is None or not getattr(user, "is_authenticated", False):
        raise Unauthorized("Authentication required")
    return user


def require_auth() -> Handler:
    """
    Route stage that requires an authenticated user.
    Raises Unauthorized if the user is not authenticated.

        app.get("/me", require_auth(), profile)
    """
    def check(request: Request, response: Response, next: Next) -> None:
        _current_user(request)
        next()

    return check


def require_roles(*roles: str) -> Handler:
    """Route stage requiring any one of *roles*; raises Forbidden otherwise."""
    def check(request: Request, response: Response, next: Next) -> None:
        user = _current_user(request)
        if not user.has_role(*roles):
            raise Forbidden("Insufficient permissions")
        next()

    return check


def require_scopes(*required_scopes: str) -> Handler:
    """Route stage requiring every one of *required_scopes*."""
    def check(request: Request, response: Response, next: Next) -> None:
        user = _current_user(request)
        for scope in required_scopes:
            if not user.has_scope(scope):
                raise Forbidden(f"Missing required scope: {scope}")
        next()

    return check


def require_permission(predicate: Callable[[Request], bool], message: str = "Access denied") -> Handler:
    """Route stage that raises Forbidden unless ``predicate(request)`` holds."""
    def check(request: Request, response: Response, next: Next) -> None:
        if not predicate(request):
            raise Forbidden(message)
        next()

    return check
