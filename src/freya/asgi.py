"""
ASGI transport for Freya framework.

Buffers the request body, builds an :class:`~freya.context.HTTPContext`,
runs the synchronous dispatcher in a worker thread and writes the finished
response back. Also speaks the ASGI lifespan protocol.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from freya.context import HTTPContext
from freya.exceptions import PayloadTooLarge
from freya.types import Message, Receive, Scope, Send

if TYPE_CHECKING:
    from freya.app import Freya

logger = logging.getLogger("freya.asgi")


def _decode_headers(raw_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    """Lower-cased header map; repeated headers are joined."""
    headers: dict[str, str] = {}
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        if name in headers:
            separator = "; " if name == "cookie" else ", "
            headers[name] = f"{headers[name]}{separator}{value}"
        else:
            headers[name] = value
    return headers


def _raw_path(scope: Scope) -> str:
    raw_path = scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    # ASGI "path" is already decoded; the dispatcher decodes once more
    return scope.get("path", "/").replace("%", "%25")


async def read_body(receive: Receive, headers: dict[str, str], max_body_size: int) -> bytes:
    """
    Read the full request body.

    Raises:
        PayloadTooLarge: If the body exceeds *max_body_size* (0 disables the check).
    """
    too_large = f"Request body too large. Maximum allowed: {max_body_size} bytes"

    # Early rejection via Content-Length header
    declared = headers.get("content-length")
    if max_body_size > 0 and declared and declared.isdigit() and int(declared) > max_body_size:
        raise PayloadTooLarge(too_large)

    chunks: list[bytes] = []
    total_size = 0
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunk = message.get("body", b"")
        if chunk:
            total_size += len(chunk)
            if max_body_size > 0 and total_size > max_body_size:
                raise PayloadTooLarge(too_large)
            chunks.append(chunk)
        if not message.get("more_body", False):
            break

    return b"".join(chunks)


class ASGIAdapter:
    """
    ASGI application wrapping a :class:`~freya.app.Freya` instance.

    Tracks in-flight HTTP requests and drains them on shutdown before
    running the shutdown hooks.
    """

    # Maximum seconds to wait for in-flight requests to finish
    DEFAULT_SHUTDOWN_TIMEOUT: float = 30.0

    def __init__(self, app: "Freya", shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        self.app = app
        self._shutdown_timeout = shutdown_timeout
        self._inflight = 0
        self._inflight_zero = asyncio.Event()
        self._inflight_zero.set()

    @property
    def inflight_requests(self) -> int:
        return self._inflight

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
        elif scope["type"] == "http":
            self._inflight += 1
            self._inflight_zero.clear()
            try:
                await self._handle_http(scope, receive, send)
            finally:
                self._inflight -= 1
                if self._inflight == 0:
                    self._inflight_zero.set()
        elif scope["type"] == "websocket":
            # Not supported: refuse the handshake
            await send({"type": "websocket.close", "code": 1003})
        else:
            raise RuntimeError(f"Unsupported ASGI scope type: {scope['type']}")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        dispatcher = self.app.build()
        headers = _decode_headers(scope.get("headers", []))
        client = scope.get("client")
        context = HTTPContext.from_raw(
            method=scope.get("method", "GET"),
            path=_raw_path(scope),
            query_string=scope.get("query_string", b"").decode("latin-1"),
            headers=headers,
            client=(client[0], client[1]) if client else None,
            scheme=scope.get("scheme", "http"),
        )

        try:
            context.body = await read_body(receive, headers, self.app.settings.max_body_size)
        except PayloadTooLarge as exc:
            await asyncio.to_thread(dispatcher.reject, context, exc)
        else:
            await asyncio.to_thread(dispatcher.dispatch, context)

        await send({
            "type": "http.response.start",
            "status": context.status,
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in context.response_headers
            ],
        })
        await send({
            "type": "http.response.body",
            "body": context.response_body,
        })

    # ------------------------------------------------------------------
    # Lifespan protocol
    # ------------------------------------------------------------------

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message: Message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    self.app.build()
                    await self.app.lifespan.startup()
                except Exception as exc:
                    logger.exception("Application startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif message["type"] == "lifespan.shutdown":
                await self._drain_requests()
                try:
                    await self.app.lifespan.shutdown()
                except Exception as exc:
                    logger.exception("Application shutdown failed")
                    await send({"type": "lifespan.shutdown.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _drain_requests(self) -> None:
        """Wait for in-flight requests to finish, with a timeout."""
        if self._inflight == 0:
            return

        logger.info(
            "Waiting for %d in-flight request(s) to finish (timeout=%ds)...",
            self._inflight,
            self._shutdown_timeout,
        )
        try:
            await asyncio.wait_for(self._inflight_zero.wait(), timeout=self._shutdown_timeout)
            logger.info("All in-flight requests completed.")
        except asyncio.TimeoutError:
            logger.warning(
                "Shutdown timeout reached with %d request(s) still in-flight. "
                "Proceeding with shutdown.",
                self._inflight,
            )
