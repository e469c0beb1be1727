"""
Lifespan management for Freya framework.
Startup and shutdown hooks run by the ASGI transport.
"""

import inspect
import logging
from typing import Any

from freya.types import LifespanHandler

logger = logging.getLogger("freya.lifespan")


async def _call(handler: LifespanHandler) -> None:
    result = handler()
    if inspect.isawaitable(result):
        await result


class Lifespan:
    """
    Startup/shutdown hook registry.

    Hooks may be plain functions or coroutine functions:

        @app.on_startup
        def open_pool():
            app.state["pool"] = make_pool()
    """

    def __init__(self) -> None:
        self._startup_handlers: list[LifespanHandler] = []
        self._shutdown_handlers: list[LifespanHandler] = []
        self.state: dict[str, Any] = {}
        self.started = False

    def on_startup(self, handler: LifespanHandler) -> LifespanHandler:
        """Decorator to register a startup handler."""
        self._startup_handlers.append(handler)
        return handler

    def on_shutdown(self, handler: LifespanHandler) -> LifespanHandler:
        """Decorator to register a shutdown handler."""
        self._shutdown_handlers.append(handler)
        return handler

    async def startup(self) -> None:
        """Run all startup handlers in registration order."""
        for handler in self._startup_handlers:
            await _call(handler)
        self.started = True
        logger.info("Application startup complete")

    async def shutdown(self) -> None:
        """Run all shutdown handlers in reverse order."""
        for handler in reversed(self._shutdown_handlers):
            await _call(handler)
        self.started = False
        logger.info("Application shutdown complete")
