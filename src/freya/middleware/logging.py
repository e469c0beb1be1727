"""
Request logging middleware.
"""

import logging
import re
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

# Predefined line formats
FORMATS: dict[str, str] = {
    "combined": (
        ':remote-addr - - [:date] ":method :url HTTP/:http-version" '
        ':status :content-length ":referrer" ":user-agent"'
    ),
    "common": ':remote-addr - - [:date] ":method :url HTTP/:http-version" :status :content-length',
    "dev": ":method :path :status :response-time ms - :content-length",
    "short": ":remote-addr :method :url :status :response-time ms - :content-length",
    "tiny": ":method :url :status :response-time ms",
}

_TOKEN = re.compile(r":(res\[[\w-]+\]|[a-z][\w-]*)")

_RESET = "\033[0m"
_METHOD_COLORS: dict[str, str] = {
    "GET": "\033[32m",
    "POST": "\033[34m",
    "PUT": "\033[33m",
    "DELETE": "\033[31m",
    "PATCH": "\033[35m",
    "OPTIONS": "\033[36m",
    "HEAD": "\033[2m",
}


def _status_color(status: int) -> str:
    if status >= 500:
        return "\033[31m"
    if status >= 400:
        return "\033[33m"
    if status >= 300:
        return "\033[36m"
    return "\033[32m"


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


class RequestLoggingMiddleware(Middleware):
    """
    Request logging middleware.
    Logs one line per request through Python's standard logging module,
    when the response is sent.

    ``format`` is a preset name (``dev``, ``tiny``, ``short``, ``common``,
    ``combined``) or a custom string of ``:token`` placeholders.
    """

    def __init__(
        self,
        format: str = "dev",
        logger: Any = None,
        log_level: int | None = None,
        skip: Callable[[Request, Response], bool] | None = None,
        immediate: bool = False,
        colors: bool = False,
    ) -> None:
        self._format = FORMATS.get(format, format)
        self._logger = logger or logging.getLogger("freya.access")
        self._log_level = log_level or logging.INFO
        self._skip = skip
        self._immediate = immediate
        self._colors = colors

    def process(self, request: Request, response: Response, next: Next) -> None:
        if self._skip is not None and self._skip(request, response):
            return next()

        start_time = time.perf_counter()
        started_at = datetime.now(timezone.utc)

        if self._immediate:
            self._logger.log(self._log_level, "%s", self.format_line(request, None, 0.0, started_at))
            return next()

        def log_request(res: Response) -> None:
            duration = (time.perf_counter() - start_time) * 1000
            self._logger.log(self._log_level, "%s", self.format_line(request, res, duration, started_at))

        response.before_send(log_request)
        next()

    def format_line(
        self,
        request: Request,
        response: Response | None,
        duration_ms: float,
        started_at: datetime,
    ) -> str:
        status = response.status_code if response is not None else 0
        size = len(response.body) if response is not None else 0
        method = request.method
        status_text = str(status) if response is not None else "-"

        if self._colors:
            method = f"{_METHOD_COLORS.get(method, '')}{method}{_RESET}"
            if response is not None:
                status_text = f"{_status_color(status)}{status_text}{_RESET}"

        values: dict[str, str] = {
            "method": method,
            "path": request.path,
            "url": request.original_url,
            "status": status_text,
            "response-time": f"{duration_ms:.2f}",
            "content-length": format_bytes(size),
            "date": started_at.strftime("%d/%b/%Y:%H:%M:%S +0000"),
            "ip": request.ip,
            "remote-addr": request.ip,
            "user-agent": request.get_header("user-agent") or "-",
            "referrer": request.get_header("referer") or "-",
            "http-version": "1.1",
            "request-id": request.id or "-",
        }

        def substitute(token: re.Match[str]) -> str:
            name = token.group(1)
            if name.startswith("res[") and response is not None:
                return response.get_header(name[4:-1]) or "-"
            return values.get(name, token.group(0))

        return _TOKEN.sub(substitute, self._format)
