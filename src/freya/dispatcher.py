"""
Request dispatcher for Freya framework.

One dispatch walks a fixed state machine::

    NORMALIZING -> RUNNING_MIDDLEWARE -> MATCHING_ROUTE -> RUNNING_HANDLERS -> FINALIZED
                          \\_______________ ERROR_HANDLING ______________/

Every middleware and handler is one *stage*. A stage advances by calling
its continuation, fails by raising or calling ``next(error)``, and ends
processing by doing neither. The dispatcher checks ``response.sent`` after
every stage and stops as soon as it is set, even if ``next`` was also
called. Chaining is an explicit loop, so pipeline length never adds call
depth.
"""

import logging
from enum import Enum
from typing import Any
from urllib.parse import unquote

from freya.context import HTTPContext
from freya.errors import ErrorClassifier, wants_html
from freya.middleware.base import Pipeline
from freya.request import Request
from freya.response import Response
from freya.routing import RouteTable
from freya.types import Handler

logger = logging.getLogger("freya.dispatch")

NOT_FOUND_MESSAGE: str = "The requested resource was not found"


class DispatchState(Enum):
    NORMALIZING = "normalizing"
    RUNNING_MIDDLEWARE = "running_middleware"
    MATCHING_ROUTE = "matching_route"
    RUNNING_HANDLERS = "running_handlers"
    ERROR_HANDLING = "error_handling"
    FINALIZED = "finalized"


def normalize_path(path: str) -> str:
    """Percent-decode *path* and strip one trailing slash; ``/`` stays ``/``."""
    path = unquote(path or "/")
    if not path.startswith("/"):
        path = f"/{path}"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


class Continuation:
    """
    The ``next`` callable handed to one stage.

    Records whether it was called and with which error. Only the first call
    counts; calls after the stage has returned are ignored.
    """

    __slots__ = ("_label", "called", "error", "_closed")

    def __init__(self, label: str) -> None:
        self._label = label
        self.called = False
        self.error: BaseException | None = None
        self._closed = False

    def __call__(self, error: BaseException | None = None) -> None:
        if self._closed:
            logger.warning("next() called by %s after it returned; ignored", self._label)
            return
        if self.called:
            logger.warning("next() called more than once by %s; ignored", self._label)
            return
        self.called = True
        self.error = error

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return f"<Continuation {self._label} called={self.called}>"


def _stage_label(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or type(handler).__name__


class DispatchRun:
    """State of a single dispatch. Never shared between requests."""

    def __init__(self, dispatcher: "Dispatcher", context: HTTPContext) -> None:
        self.dispatcher = dispatcher
        self.context = context
        self.state = DispatchState.NORMALIZING
        self.transitions: list[DispatchState] = [DispatchState.NORMALIZING]

        path = normalize_path(context.path)
        self.request = Request(
            context,
            app=dispatcher.app,
            path=path,
            trust_proxy=dispatcher.trust_proxy,
        )
        self.response = Response(self.request, app=dispatcher.app)
        self.request.response = self.response

    def _enter(self, state: DispatchState) -> None:
        self.state = state
        self.transitions.append(state)

    def run(self) -> HTTPContext:
        try:
            self._pipeline()
        except Exception as exc:
            self.fail(exc)

        self._finalize()
        return self.context

    def reject(self, error: BaseException) -> HTTPContext:
        self.fail(error)
        self._finalize()
        return self.context

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _pipeline(self) -> None:
        request = self.request
        self._enter(DispatchState.RUNNING_MIDDLEWARE)
        for entry in self.dispatcher.pipeline.matching(request.path):
            base_path = None if entry.is_global else entry.path_prefix
            if not self.run_stage(entry.handler, base_path=base_path):
                return

        self._enter(DispatchState.MATCHING_ROUTE)
        found = self.dispatcher.routes.lookup(request.method, request.path)
        if found is None:
            self._not_found()
            return

        route, params = found
        request.params = params
        self._enter(DispatchState.RUNNING_HANDLERS)
        for handler in route.handlers:
            if not self.run_stage(handler, coerce=True):
                return

    def run_stage(
        self,
        handler: Handler,
        base_path: str | None = None,
        coerce: bool = False,
    ) -> bool:
        """Run one middleware or handler; True if the dispatch should advance."""
        request, response = self.request, self.response
        label = _stage_label(handler)
        next_ = Continuation(label)
        previous_base = request.base_path
        if base_path is not None:
            request.base_path = base_path

        raised: Exception | None = None
        result: Any = None
        try:
            result = handler(request, response, next_)
        except Exception as exc:
            raised = exc
        finally:
            request.base_path = previous_base
            next_.close()

        if raised is not None:
            self.fail(raised)
            return False
        if next_.error is not None:
            self.fail(next_.error)
            return False

        if coerce and result is not None and not response.sent:
            self._send_result(result)

        if response.sent:
            return False
        if not next_.called:
            logger.warning(
                "%s %s: %s neither sent a response nor called next()",
                request.method, request.path, label,
            )
            return False
        return True

    def _send_result(self, result: Any) -> None:
        """Send a handler's return value."""
        if isinstance(result, (dict, list)):
            self.response.json(result)
        elif isinstance(result, str):
            self.response.html(result)
        elif isinstance(result, (bytes, bytearray)):
            self.response.send(bytes(result))

    def _not_found(self) -> None:
        request, response = self.request, self.response
        if wants_html(request):
            response.error_page(404, NOT_FOUND_MESSAGE)
        else:
            response.status(404).json({
                "error": "Not Found",
                "message": NOT_FOUND_MESSAGE,
                "path": request.path,
            })

    # ------------------------------------------------------------------
    # Errors and finalization
    # ------------------------------------------------------------------

    def fail(self, error: BaseException) -> None:
        self._enter(DispatchState.ERROR_HANDLING)
        try:
            self.dispatcher.classifier.handle(error, self.request, self.response)
        except Exception:
            logger.exception("Error classifier failed for %s %s", self.request.method, self.request.path)

        if not self.response.sent:
            self._fallback()

    def _fallback(self) -> None:
        # Bypasses everything that could fail again
        response = self.response
        response.remove_header("Content-Type").remove_header("Content-Disposition")
        response.status(500).type("text").send("Internal Server Error")

    def _finalize(self) -> None:
        response = self.response
        if not response.sent:
            try:
                response.send()
            except Exception as exc:
                self.fail(exc)

        body = response.body
        if self.request.method == "HEAD":
            body = b""

        self.context.status = response.status_code
        self.context.response_headers = response.headers
        self.context.response_body = body
        self._enter(DispatchState.FINALIZED)


class Dispatcher:
    """
    Dispatches requests against an immutable route table and pipeline.

    Safe to call from several threads at once: all per-request state lives
    in the :class:`DispatchRun` created for each call.
    """

    def __init__(
        self,
        routes: RouteTable,
        pipeline: Pipeline,
        classifier: ErrorClassifier | None = None,
        app: Any = None,
        trust_proxy: bool = True,
    ) -> None:
        self.routes = routes
        self.pipeline = pipeline
        self.classifier = classifier or ErrorClassifier()
        self.app = app
        self.trust_proxy = trust_proxy

    def dispatch(self, context: HTTPContext) -> HTTPContext:
        """Process one request; fills ``status``, ``response_headers`` and ``response_body``."""
        return DispatchRun(self, context).run()

    __call__ = dispatch

    def reject(self, context: HTTPContext, error: BaseException) -> HTTPContext:
        """Answer a request that failed before dispatch (e.g. an oversized body)."""
        return DispatchRun(self, context).reject(error)
