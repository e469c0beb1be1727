"""
Freya framework exceptions.

Two failure shapes are understood by the dispatcher's error classifier:
``ValidationError`` (always 422, carries a field -> messages map) and
``HTTPException`` (explicit status, message and machine-readable code).
Anything else raised by a handler is treated as an unclassified 500.
"""

from http import HTTPStatus
from typing import Any


def status_text(status_code: int) -> str:
    """Reason phrase for a status code, ``"Unknown"`` if not registered."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


class FreyaException(Exception):
    """Base exception for all Freya framework errors."""

    def __init__(self, message: str = "An error occurred") -> None:
        self.message = message
        super().__init__(self.message)


class HTTPException(FreyaException):
    """Structured HTTP failure with a status, a message and an error code."""

    def __init__(
        self,
        status_code: int = 500,
        detail: str | None = None,
        code: str = "HTTP_ERROR",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail if detail is not None else status_text(status_code)
        self.code = code
        self.headers = headers or {}
        super().__init__(self.detail)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.detail!r}, code={self.code!r})"


class BadRequest(HTTPException):
    """400 Bad Request."""

    def __init__(self, detail: str = "Bad Request") -> None:
        super().__init__(400, detail, "BAD_REQUEST")


class Unauthorized(HTTPException):
    """401 Unauthorized."""

    def __init__(
        self,
        detail: str = "Unauthorized",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(401, detail, "UNAUTHORIZED", headers)


class Forbidden(HTTPException):
    """403 Forbidden."""

    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(403, detail, "FORBIDDEN")


class NotFound(HTTPException):
    """404 Not Found."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(404, detail, "NOT_FOUND")


class MethodNotAllowed(HTTPException):
    """405 Method Not Allowed."""

    def __init__(self, detail: str = "Method Not Allowed") -> None:
        super().__init__(405, detail, "METHOD_NOT_ALLOWED")


class Conflict(HTTPException):
    """409 Conflict."""

    def __init__(self, detail: str = "Conflict") -> None:
        super().__init__(409, detail, "CONFLICT")


class PayloadTooLarge(HTTPException):
    """413 Payload Too Large."""

    def __init__(self, detail: str = "Payload Too Large") -> None:
        super().__init__(413, detail, "PAYLOAD_TOO_LARGE")


class Unprocessable(HTTPException):
    """422 Unprocessable Entity (without field details)."""

    def __init__(self, detail: str = "Unprocessable Entity") -> None:
        super().__init__(422, detail, "UNPROCESSABLE")


class TooManyRequests(HTTPException):
    """429 Too Many Requests (rate limit exceeded)."""

    def __init__(
        self,
        detail: str = "Too Many Requests",
        retry_after: int | None = None,
    ) -> None:
        headers: dict[str, str] = {}
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        super().__init__(429, detail, "RATE_LIMITED", headers)


class InternalServerError(HTTPException):
    """500 Internal Server Error."""

    def __init__(self, detail: str = "Internal Server Error") -> None:
        super().__init__(500, detail, "INTERNAL_ERROR")


class ValidationError(FreyaException):
    """
    Validation failure raised by the request validators.

    ``errors`` maps a field name to the list of messages for that field.
    """

    status_code: int = 422
    code: str = "VALIDATION_ERROR"

    def __init__(self, errors: dict[str, list[str]] | None = None) -> None:
        self.errors: dict[str, list[str]] = errors or {}
        super().__init__("Validation failed")

    def __str__(self) -> str:
        parts = [f"{name}: {', '.join(msgs)}" for name, msgs in self.errors.items()]
        return "ValidationError: " + "; ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {name: list(msgs) for name, msgs in self.errors.items()}


class SessionError(FreyaException):
    """Session-related errors."""
    pass


class CookieError(FreyaException):
    """Cookie-related errors."""
    pass


class AuthenticationError(FreyaException):
    """Authentication-related errors."""
    pass


class RoutingError(FreyaException):
    """Routing-related errors."""
    pass
