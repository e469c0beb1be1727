"""
Error classification and rendering.

The dispatcher hands every failure to :class:`ErrorClassifier`, which writes
the outcome straight into the response: application error handlers first,
then validation failures (422), structured HTTP failures, and finally
anything else as a 500.
"""

import html
import logging
import traceback
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from freya.exceptions import HTTPException, ValidationError, status_text
from freya.types import ErrorHandler

if TYPE_CHECKING:
    from freya.request import Request
    from freya.response import Response

logger = logging.getLogger("freya.errors")

_METHOD_COLORS: dict[str, str] = {
    "GET": "#22c55e",
    "POST": "#3b82f6",
    "PUT": "#f59e0b",
    "DELETE": "#ef4444",
    "PATCH": "#a855f7",
}


# ---------------------------------------------------------------------------
# JSON envelopes
# ---------------------------------------------------------------------------


def json_error(
    status: int,
    message: str,
    code: str | None = None,
    details: Any = None,
) -> dict[str, Any]:
    """``{"error": {"status", "message", "code"[, "details"]}}``."""
    error: dict[str, Any] = {
        "status": status,
        "message": message,
        "code": code or "HTTP_ERROR",
    }
    if details is not None:
        error["details"] = details
    return {"error": error}


def json_validation_error(errors: Mapping[str, Sequence[str]]) -> dict[str, Any]:
    return json_error(422, "Validation failed", "VALIDATION_ERROR", {
        name: list(messages) for name, messages in errors.items()
    })


def wants_html(request: "Request | None") -> bool:
    """True when the client prefers an HTML page over a JSON body."""
    return request is not None and request.accepts("html", "json") == "html"


def format_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


# ---------------------------------------------------------------------------
# HTML error page
# ---------------------------------------------------------------------------


def _esc(text: Any) -> str:
    return html.escape(str(text), quote=True)


def _render_stack(stack: str | None) -> str:
    if not stack:
        return '<span class="stack-line">No stack trace available</span>'
    lines = [
        f'<span class="stack-line">{_esc(line)}</span>'
        for line in stack.splitlines()
        if line.strip()
    ]
    return "\n".join(lines)


def render_error_page(
    status: int,
    message: str | None = None,
    stack: str | None = None,
    request: "Request | None" = None,
    production: bool = False,
) -> str:
    """
    Render a self-contained HTML error page.

    Uses plain f-strings so that a broken template engine cannot prevent
    error reporting. In production the stack trace and request details are
    left out.
    """
    reason = status_text(status)
    message = message or reason
    method = request.method if request is not None else "GET"
    path = request.path if request is not None else "/"
    request_id = (request.id if request is not None else None) or "-"
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    color = _METHOD_COLORS.get(method, "#f59e0b")

    if production:
        details = '<p class="hint">Something went wrong. Please try again later.</p>'
    else:
        details = f"""
        <section class="panel">
            <h2>Request</h2>
            <p><span class="method" style="background:{color}">{_esc(method)}</span>
               <code>{_esc(path)}</code></p>
            <p>Request ID: <code>{_esc(request_id)}</code> &middot; {timestamp}</p>
        </section>
        <section class="panel">
            <h2>Stack trace</h2>
            <pre class="stack">{_render_stack(stack)}</pre>
        </section>"""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Error {status} - {_esc(reason)}</title>
    <style>
        * {{ box-sizing: border-box; margin: 0; padding: 0; }}
        body {{ font-family: ui-monospace, Consolas, monospace; background: #09090b;
               color: #fafafa; line-height: 1.6; }}
        .container {{ max-width: 900px; margin: 0 auto; padding: 40px 20px; }}
        header {{ background: linear-gradient(135deg, #ef4444 0%, #b91c1c 100%);
                 padding: 32px; border-radius: 12px 12px 0 0; }}
        header h1 {{ font-size: 1.5rem; }}
        .status {{ display: inline-block; background: rgba(255,255,255,0.2);
                  padding: 4px 12px; border-radius: 999px; margin-bottom: 8px; }}
        .panel, .hint {{ background: #18181b; border: 1px solid #27272a; padding: 24px; }}
        .panel h2 {{ font-size: 1rem; color: #a1a1aa; margin-bottom: 12px; }}
        .method {{ color: #09090b; padding: 2px 8px; border-radius: 4px; font-weight: bold; }}
        .stack {{ white-space: pre-wrap; font-size: 0.85rem; color: #d4d4d8; }}
        .stack-line {{ display: block; }}
    </style>
</head>
<body>
    <div class="container">
        <header>
            <span class="status">{status} {_esc(reason)}</span>
            <h1>{_esc(message)}</h1>
        </header>
        {details}
    </div>
</body>
</html>"""


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class ErrorClassifier:
    """
    Turns a failure into a response.

    Application handlers (``fn(error, request, response, stack)``) run
    first, in registration order; the first that sends a response wins and a
    handler that raises is logged and skipped. The built-in rules follow.
    """

    def __init__(
        self,
        handlers: Sequence[ErrorHandler] = (),
        production: bool = False,
    ) -> None:
        self._handlers: tuple[ErrorHandler, ...] = tuple(handlers)
        self.production = production

    def handle(self, error: BaseException, request: "Request", response: "Response") -> None:
        if response.sent:
            logger.warning(
                "Error after response was sent for %s %s: %r",
                request.method, request.path, error,
            )
            return

        stack = format_stack(error)

        for handler in self._handlers:
            try:
                handler(error, request, response, stack)
            except Exception:
                logger.exception("Error handler %r failed", handler)
                continue
            if response.sent:
                return

        if isinstance(error, ValidationError):
            self._validation(error, request, response)
        elif isinstance(error, HTTPException):
            self._http(error, request, response, stack)
        else:
            self._unclassified(error, request, response, stack)

    __call__ = handle

    def _validation(self, error: ValidationError, request: "Request", response: "Response") -> None:
        logger.warning(
            "request_id=%s %s %s validation failed: %s",
            request.id or "-", request.method, request.path, error,
        )
        response.validation_error(error.errors)

    def _http(
        self,
        error: HTTPException,
        request: "Request",
        response: "Response",
        stack: str,
    ) -> None:
        # Client errors at warning, server errors with the traceback
        if error.status_code >= 500:
            logger.error(
                "request_id=%s status=%d detail=%s",
                request.id or "-", error.status_code, error.detail,
                exc_info=error,
            )
        else:
            logger.warning(
                "request_id=%s status=%d detail=%s",
                request.id or "-", error.status_code, error.detail,
            )

        response.set_headers(error.headers)
        if wants_html(request):
            response.error_page(error.status_code, error.detail, stack, production=self.production)
        else:
            response.status(error.status_code).json(
                json_error(error.status_code, error.detail, error.code)
            )

    def _unclassified(
        self,
        error: BaseException,
        request: "Request",
        response: "Response",
        stack: str,
    ) -> None:
        logger.error(
            "Unhandled exception request_id=%s %s %s: %s",
            request.id or "-", request.method, request.path, error,
            exc_info=error,
        )

        if self.production:
            message = "Internal Server Error"
        else:
            message = str(error) or type(error).__name__

        if wants_html(request):
            response.error_page(500, message, stack, production=self.production)
        elif self.production:
            response.status(500).json(json_error(500, message, "INTERNAL_ERROR"))
        else:
            payload = json_error(500, message, "INTERNAL_ERROR")
            payload["error"]["stack"] = stack
            response.status(500).json(payload)
