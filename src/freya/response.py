"""
Response handling for Freya framework.

A :class:`Response` accumulates status, headers, cookies and body until
:meth:`Response.send` flips its one-way ``sent`` latch. After that every
mutator is a no-op, so the first writer wins.
"""

import json
import mimetypes
import os
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from email.utils import format_datetime, formatdate
from functools import wraps
from urllib.parse import quote
from typing import TYPE_CHECKING, Any, TypeVar

from freya.cookies import EPOCH_EXPIRES, CookieOptions, format_set_cookie
from freya.errors import json_error, json_validation_error, render_error_page
from freya.exceptions import Forbidden, NotFound

if TYPE_CHECKING:
    from freya.request import Request

# Content types behind the type() shorthands
CONTENT_TYPES: dict[str, str] = {
    "json": "application/json; charset=utf-8",
    "html": "text/html; charset=utf-8",
    "text": "text/plain; charset=utf-8",
    "xml": "application/xml; charset=utf-8",
}

DEFAULT_CONTENT_TYPE: str = CONTENT_TYPES["text"]

# Characters left unescaped in redirect targets
URL_SAFE: str = ":/?#[]@!$&'()*+,;=%~"

BeforeSendHook = Callable[["Response"], Any]
_F = TypeVar("_F", bound=Callable[..., "Response"])


def header_value(name: str, value: Any) -> str:
    """
    Coerce a header value to str and check it can go on the wire.

    Raises ValueError for CR/LF (header injection) and for characters
    outside latin-1.
    """
    text = str(value)
    if "\r" in text or "\n" in text:
        raise ValueError(f"Header {name!r} contains a line break")
    try:
        text.encode("latin-1")
    except UnicodeEncodeError as exc:
        raise ValueError(f"Header {name!r} is not latin-1 encodable") from exc
    return text


def _unless_sent(method: _F) -> _F:
    """Turn *method* into a no-op returning self once the response is sent."""

    @wraps(method)
    def wrapper(self: "Response", *args: Any, **kwargs: Any) -> "Response":
        if self.sent:
            return self
        return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


def guess_content_type(path: str) -> str:
    """Content type for a file name, ``application/octet-stream`` if unknown."""
    media_type, _encoding = mimetypes.guess_type(path)
    if media_type is None:
        return "application/octet-stream"
    if media_type.startswith("text/") or media_type in ("application/json", "application/javascript"):
        return f"{media_type}; charset=utf-8"
    return media_type


def http_date(value: float | datetime | str) -> str:
    """Format a unix timestamp or datetime as an HTTP date."""
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return format_datetime(value, usegmt=True)
    return formatdate(value, usegmt=True)


class Response:
    """
    Mutable response accumulator.

    All mutators return ``self`` for chaining:

        response.status(201).set_header("X-Id", "7").json({"ok": True})
    """

    def __init__(self, request: "Request | None" = None, app: Any = None) -> None:
        self.request = request
        self.app = app
        self.locals: dict[str, Any] = {}
        self.body: bytes = b""
        self._status: int = 200
        self._headers: list[tuple[str, str]] = []
        self._cookies: dict[str, str] = {}
        self._before_send: list[BeforeSendHook] = []
        self._sent = False

    def __repr__(self) -> str:
        return f"<Response {self._status} sent={self._sent}>"

    @property
    def sent(self) -> bool:
        """One-way latch: True once :meth:`send` has completed."""
        return self._sent

    @property
    def status_code(self) -> int:
        return self._status

    @property
    def headers(self) -> list[tuple[str, str]]:
        """Header pairs in insertion order (a copy)."""
        return list(self._headers)

    @property
    def production(self) -> bool:
        return bool(self.app is not None and self.app.production)

    # ------------------------------------------------------------------
    # Status and headers
    # ------------------------------------------------------------------

    @_unless_sent
    def status(self, code: int) -> "Response":
        """Set the status code."""
        if not 100 <= int(code) <= 999:
            raise ValueError(f"Invalid status code: {code}")
        self._status = int(code)
        return self

    @_unless_sent
    def set_header(self, name: str, value: str) -> "Response":
        """Set a header, replacing every existing value."""
        text = header_value(name, value)
        lowered = name.lower()
        self._headers = [(k, v) for k, v in self._headers if k.lower() != lowered]
        self._headers.append((name, text))
        return self

    @_unless_sent
    def append_header(self, name: str, value: str | Iterable[str]) -> "Response":
        """Add one or more values without touching the existing ones."""
        values = [value] if isinstance(value, str) else list(value)
        self._headers.extend((name, header_value(name, v)) for v in values)
        return self

    @_unless_sent
    def remove_header(self, name: str) -> "Response":
        lowered = name.lower()
        self._headers = [(k, v) for k, v in self._headers if k.lower() != lowered]
        return self

    @_unless_sent
    def set_headers(self, headers: Mapping[str, str]) -> "Response":
        for name, value in headers.items():
            self.set_header(name, value)
        return self

    def get_header(self, name: str, default: str | None = None) -> str | None:
        """First value of a header (case-insensitive)."""
        lowered = name.lower()
        for key, value in self._headers:
            if key.lower() == lowered:
                return value
        return default

    def get_header_values(self, name: str) -> list[str]:
        lowered = name.lower()
        return [value for key, value in self._headers if key.lower() == lowered]

    def has_header(self, name: str) -> bool:
        return self.get_header(name) is not None

    @_unless_sent
    def type(self, content_type: str) -> "Response":
        """
        Set Content-Type.

        Accepts the ``json``/``html``/``text``/``xml`` shorthands, a file
        extension (``"png"``, ``".css"``) or a full MIME string.
        """
        if content_type in CONTENT_TYPES:
            content_type = CONTENT_TYPES[content_type]
        elif "/" not in content_type:
            content_type = guess_content_type(f"file.{content_type.lstrip('.')}")
        return self.set_header("Content-Type", content_type)

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    @_unless_sent
    def set_cookie(
        self,
        name: str,
        value: str,
        options: CookieOptions | None = None,
    ) -> "Response":
        """Queue a cookie; written as ``Set-Cookie`` when the response is sent."""
        self._cookies[name] = format_set_cookie(name, value, options)
        return self

    @_unless_sent
    def clear_cookie(self, name: str, options: CookieOptions | None = None) -> "Response":
        """Expire a cookie on the client."""
        options = (options or CookieOptions()).with_changes(max_age=0, expires=EPOCH_EXPIRES)
        return self.set_cookie(name, "", options)

    @property
    def pending_cookies(self) -> dict[str, str]:
        return dict(self._cookies)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def before_send(self, callback: BeforeSendHook) -> "Response":
        """Register *callback(response)* to run right before the response is sent."""
        if not self._sent:
            self._before_send.append(callback)
        return self

    def send(self, body: Any = None) -> "Response":
        """
        Finalize the response.

        ``dict``/``list`` bodies are sent as JSON, ``str`` bodies are encoded
        as UTF-8. Pending cookies are flushed into ``Set-Cookie`` headers.
        Calling ``send`` again is a no-op.
        """
        if self._sent:
            return self
        if isinstance(body, (dict, list)):
            return self.json(body)

        if body is None:
            payload = b""
        elif isinstance(body, (bytes, bytearray, memoryview)):
            payload = bytes(body)
        else:
            payload = str(body).encode("utf-8")
        self.body = payload

        # Hooks see the final body and may still change headers and cookies
        hooks, self._before_send = self._before_send, []
        for hook in hooks:
            hook(self)
            if self._sent:
                return self
        payload = self.body

        if not self.has_header("content-type"):
            self.set_header("Content-Type", DEFAULT_CONTENT_TYPE)
        for cookie in self._cookies.values():
            self._headers.append(("Set-Cookie", cookie))
        self.set_header("Content-Length", str(len(payload)))

        self.body = payload
        self._sent = True
        return self

    @_unless_sent
    def json(self, data: Any) -> "Response":
        """Send *data* serialized as JSON."""
        indent = self.app.settings.json_spaces if self.app is not None else None
        payload = json.dumps(
            data,
            ensure_ascii=False,
            allow_nan=False,
            indent=indent,
            separators=(",", ":") if indent is None else None,
        )
        return self.type("json").send(payload)

    @_unless_sent
    def html(self, content: str) -> "Response":
        return self.type("html").send(content)

    @_unless_sent
    def text(self, content: str) -> "Response":
        return self.type("text").send(content)

    @_unless_sent
    def xml(self, content: str) -> "Response":
        return self.type("xml").send(content)

    @_unless_sent
    def redirect(self, url: str, status: int = 302) -> "Response":
        """Set ``Location`` and send an empty body."""
        return self.status(status).set_header("Location", quote(url, safe=URL_SAFE)).send(b"")

    @_unless_sent
    def back(self, fallback: str = "/") -> "Response":
        """Redirect to the Referer, or *fallback*."""
        referer = self.request.get_header("referer") if self.request is not None else None
        return self.redirect(referer or fallback)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @_unless_sent
    def send_file(self, path: str, root: str | None = None) -> "Response":
        """
        Send a file's bytes with a content type derived from its extension.

        With *root*, *path* is resolved relative to it and must stay inside
        it (symlinks included), otherwise :class:`~freya.exceptions.Forbidden`
        is raised. A missing file raises :class:`~freya.exceptions.NotFound`.
        """
        if root is not None:
            resolved_root = os.path.realpath(root)
            resolved = os.path.realpath(os.path.join(resolved_root, path.lstrip("/\\")))
            if resolved != resolved_root and not resolved.startswith(resolved_root + os.sep):
                raise Forbidden("Path resolves outside the allowed directory")
        else:
            resolved = os.path.realpath(path)

        if not os.path.isfile(resolved):
            raise NotFound("File not found")

        with open(resolved, "rb") as f:
            content = f.read()

        if not self.has_header("content-type"):
            self.set_header("Content-Type", guess_content_type(resolved))
        if not self.has_header("last-modified"):
            self.last_modified(os.stat(resolved).st_mtime)
        return self.send(content)

    def _disposition(self, kind: str, path: str, filename: str | None) -> str:
        name = filename or os.path.basename(path) or "download"
        name = name.replace("\r", "").replace("\n", "")
        fallback = name.encode("ascii", "replace").decode("ascii")
        fallback = fallback.replace("\\", "\\\\").replace('"', '\\"')
        if name.isascii():
            return f'{kind}; filename="{fallback}"'
        # RFC 5987 extended value for non-ASCII names
        return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"

    @_unless_sent
    def download(self, path: str, filename: str | None = None, root: str | None = None) -> "Response":
        """Send a file as an attachment."""
        self.set_header("Content-Disposition", self._disposition("attachment", path, filename))
        return self.send_file(path, root=root)

    @_unless_sent
    def inline(self, path: str, filename: str | None = None, root: str | None = None) -> "Response":
        """Send a file for in-browser display."""
        self.set_header("Content-Disposition", self._disposition("inline", path, filename))
        return self.send_file(path, root=root)

    # ------------------------------------------------------------------
    # Content negotiation and errors
    # ------------------------------------------------------------------

    @_unless_sent
    def format(self, handlers: Mapping[str, Callable[["Response"], Any]]) -> "Response":
        """
        Run the handler matching the request's Accept header.

        Keys are MIME types or shorthands; ``"default"`` is the fallback.
        Without a match or a default the response is 406.
        """
        self.vary("Accept")
        candidates = [key for key in handlers if key != "default"]
        chosen = self.request.accepts(*candidates) if self.request is not None and candidates else None

        if chosen is not None:
            handlers[chosen](self)
        elif "default" in handlers:
            handlers["default"](self)
        else:
            self.status(406).text("Not Acceptable")
        return self

    @_unless_sent
    def validation_error(self, errors: Mapping[str, list[str]]) -> "Response":
        return self.status(422).json(json_validation_error(errors))

    @_unless_sent
    def error_page(
        self,
        status: int,
        message: str,
        stack: str | None = None,
        production: bool | None = None,
    ) -> "Response":
        """Send the HTML error page; *production* defaults to the app environment."""
        page = render_error_page(
            status=status,
            message=message,
            stack=stack,
            request=self.request,
            production=self.production if production is None else production,
        )
        return self.status(status).html(page)

    @_unless_sent
    def error(self, status: int, message: str, code: str | None = None) -> "Response":
        """Send the JSON error envelope."""
        return self.status(status).json(json_error(status, message, code))

    # ------------------------------------------------------------------
    # Caching headers
    # ------------------------------------------------------------------

    @_unless_sent
    def cache(
        self,
        directive: str | None = None,
        *,
        public: bool = False,
        private: bool = False,
        no_cache: bool = False,
        no_store: bool = False,
        max_age: int | None = None,
        s_maxage: int | None = None,
        must_revalidate: bool = False,
        immutable: bool = False,
    ) -> "Response":
        """Set Cache-Control from a raw directive string or keyword flags."""
        if directive is not None:
            return self.set_header("Cache-Control", directive)

        parts: list[str] = []
        if public:
            parts.append("public")
        if private:
            parts.append("private")
        if no_cache:
            parts.append("no-cache")
        if no_store:
            parts.append("no-store")
        if max_age is not None:
            parts.append(f"max-age={max_age}")
        if s_maxage is not None:
            parts.append(f"s-maxage={s_maxage}")
        if must_revalidate:
            parts.append("must-revalidate")
        if immutable:
            parts.append("immutable")
        return self.set_header("Cache-Control", ", ".join(parts))

    @_unless_sent
    def no_cache(self) -> "Response":
        return self.cache("no-store, no-cache, must-revalidate, proxy-revalidate")

    @_unless_sent
    def etag(self, tag: str, weak: bool = False) -> "Response":
        value = f'"{tag}"'
        return self.set_header("ETag", f"W/{value}" if weak else value)

    @_unless_sent
    def last_modified(self, value: float | datetime | str) -> "Response":
        return self.set_header("Last-Modified", http_date(value))

    @_unless_sent
    def vary(self, *fields: str) -> "Response":
        """Add fields to Vary, skipping ones already present."""
        current = [f.strip() for f in (self.get_header("vary") or "").split(",") if f.strip()]
        if "*" in current:
            return self
        known = {f.lower() for f in current}
        for name in fields:
            if name.lower() not in known:
                current.append(name)
                known.add(name.lower())
        return self.set_header("Vary", ", ".join(current))

    @_unless_sent
    def links(self, links: Mapping[str, str]) -> "Response":
        """Extend the Link header from a ``{rel: url}`` mapping."""
        parts = [f'<{url}>; rel="{rel}"' for rel, url in links.items()]
        existing = self.get_header("link")
        if existing:
            parts.insert(0, existing)
        return self.set_header("Link", ", ".join(parts))

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    @_unless_sent
    def render(self, name: str, data: Mapping[str, Any] | None = None) -> "Response":
        """Render a template with ``locals`` merged with *data* and send it as HTML."""
        views = self.app.views if self.app is not None else None
        if views is None:
            raise RuntimeError("No view engine configured; set app.views first")

        context = {**self.locals, **(data or {})}
        return self.html(views.render(name, context))
