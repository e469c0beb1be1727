"""
Helpers for building request contexts and ASGI scope / receive / send in tests.
"""

import json
from collections.abc import Callable, Awaitable
from typing import Any

from freya.context import HTTPContext


def make_context(
    method: str = "GET",
    path: str = "/",
    headers: dict[str, str] | None = None,
    query_string: str = "",
    body: bytes = b"",
    client: tuple[str, int] | None = ("127.0.0.1", 12345),
) -> HTTPContext:
    """Build an inbound HTTPContext."""
    return HTTPContext.from_raw(
        method=method,
        path=path,
        query_string=query_string,
        headers=headers,
        body=body,
        client=client,
    )


def response_header(context: HTTPContext, name: str) -> str | None:
    """First value of a response header on a dispatched context."""
    for key, value in context.response_headers:
        if key.lower() == name.lower():
            return value
    return None


def response_headers(context: HTTPContext, name: str) -> list[str]:
    return [value for key, value in context.response_headers if key.lower() == name.lower()]


def response_json(context: HTTPContext) -> Any:
    return json.loads(context.response_body)


def make_scope(
    method: str = "GET",
    path: str = "/",
    headers: dict[str, str] | None = None,
    query_string: str = "",
    scope_type: str = "http",
    extras: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a minimal ASGI scope dict."""
    raw_headers: list[tuple[bytes, bytes]] = []
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    scope: dict[str, Any] = {
        "type": scope_type,
        "method": method,
        "path": path,
        "query_string": query_string.encode("utf-8"),
        "headers": raw_headers,
        "client": ("127.0.0.1", 12345),
        "scheme": "http",
    }
    if extras:
        scope.update(extras)
    return scope


def make_receive(body: bytes = b"", chunks: list[bytes] | None = None) -> Callable[[], Awaitable[dict[str, Any]]]:
    """Create an ASGI receive callable that yields the body (optionally in chunks)."""
    pending = list(chunks) if chunks is not None else [body]

    async def receive() -> dict[str, Any]:
        if pending:
            chunk = pending.pop(0)
            return {"type": "http.request", "body": chunk, "more_body": bool(pending)}
        return {"type": "http.disconnect"}

    return receive


class ResponseCapture:
    """Captures ASGI send() messages for assertions."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []
        self.status: int = 0
        self.headers: dict[str, str] = {}
        self.raw_headers: list[tuple[bytes, bytes]] = []
        self.body: bytes = b""

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)
        if message["type"] == "http.response.start":
            self.status = message.get("status", 0)
            self.raw_headers = list(message.get("headers", []))
            for name, value in self.raw_headers:
                self.headers[name.decode("latin-1").lower()] = value.decode("latin-1")
        elif message["type"] == "http.response.body":
            self.body += message.get("body", b"")


# ---------------------------------------------------------------------------
# Multipart test helpers
# ---------------------------------------------------------------------------


def build_multipart_body(
    boundary: str,
    parts: list[dict[str, Any]],
) -> bytes:
    """
    Build a multipart/form-data body for testing.

    Args:
        boundary: The multipart boundary string
        parts: List of dicts with keys:
            - name: field name
            - data: field value (str or bytes)
            - filename: (optional) filename for file uploads
            - content_type: (optional) Content-Type for file uploads
    """
    lines: list[bytes] = []

    for part in parts:
        lines.append(f"--{boundary}".encode())

        if "filename" in part:
            disposition = f'Content-Disposition: form-data; name="{part["name"]}"; filename="{part["filename"]}"'
        else:
            disposition = f'Content-Disposition: form-data; name="{part["name"]}"'
        lines.append(disposition.encode())

        if "content_type" in part:
            lines.append(f'Content-Type: {part["content_type"]}'.encode())

        lines.append(b"")

        data = part["data"]
        lines.append(data.encode() if isinstance(data, str) else data)

    lines.append(f"--{boundary}--".encode())

    return b"\r\n".join(lines) + b"\r\n"
