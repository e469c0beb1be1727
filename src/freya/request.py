"""
Request handling for Freya framework.
Read-mostly view over one incoming request with lazy, memoized body parsing.
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from functools import cached_property
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from freya.context import HTTPContext, parse_query_string
from freya.cookies import parse_cookies
from freya.exceptions import BadRequest, ValidationError
from freya.multipart import UploadFile, parse_multipart
from freya.types import State, Validator

if TYPE_CHECKING:
    from freya.response import Response

# Shorthand names accepted by accepts() and content_type_is()
MIME_SHORTHANDS: dict[str, str] = {
    "json": "application/json",
    "html": "text/html",
    "text": "text/plain",
    "xml": "application/xml",
    "form": "application/x-www-form-urlencoded",
    "urlencoded": "application/x-www-form-urlencoded",
    "multipart": "multipart/form-data",
}

_RANGE_SPEC: re.Pattern[str] = re.compile(r"^\s*(\d*)\s*-\s*(\d*)\s*$")

_MISSING: Any = object()


@dataclass(frozen=True, slots=True)
class ByteRange:
    """Inclusive byte range ``start``..``end``."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True, slots=True)
class _AcceptEntry:
    media_type: str
    quality: float

    def score(self, full_type: str) -> tuple[float, int] | None:
        """``(quality, specificity)`` if this entry covers *full_type*."""
        if self.media_type == full_type:
            return self.quality, 2
        main, _, _sub = full_type.partition("/")
        if self.media_type == f"{main}/*":
            return self.quality, 1
        if self.media_type == "*/*":
            return self.quality, 0
        return None


def _parse_accept(header: str) -> list[_AcceptEntry]:
    entries: list[_AcceptEntry] = []
    for item in header.split(","):
        media_type, *params = (piece.strip() for piece in item.split(";"))
        if not media_type:
            continue
        quality = 1.0
        for param in params:
            key, _, value = param.partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        entries.append(_AcceptEntry(media_type.lower(), quality))
    return entries


def expand_mime(name: str) -> str:
    """``"json"`` -> ``"application/json"``; full types pass through lower-cased."""
    return MIME_SHORTHANDS.get(name, name).lower()


class Request:
    """
    HTTP Request wrapper.

    Built by the dispatcher from an :class:`~freya.context.HTTPContext`.
    Route parameters are attached after the route lookup; collaborators
    (sessions, auth, request ids) fill ``session``, ``user`` and ``id``.
    Arbitrary per-request data belongs in ``state``.
    """

    def __init__(
        self,
        context: HTTPContext,
        app: Any = None,
        path: str | None = None,
        trust_proxy: bool = True,
    ) -> None:
        self._context = context
        self.app = app
        self.method: str = context.method.upper()
        self.path: str = path if path is not None else context.path
        self.headers: dict[str, str] = {
            name.lower(): value for name, value in context.headers.items()
        }
        self.query: Mapping[str, str | list[str]] = context.query
        self.params: dict[str, str] = {}
        self.body: bytes = context.body
        self.base_path: str = ""
        self.state: State = {}
        self._trust_proxy = trust_proxy
        self._parsed_body: Any = _MISSING

        # Filled in by collaborators
        self.session: Any = None
        self.session_id: str | None = None
        self.user: Any = None
        self.id: str | None = None
        self.response: "Response | None" = None

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"

    # ------------------------------------------------------------------
    # Derived fields
    # ------------------------------------------------------------------

    @property
    def client(self) -> tuple[str, int] | None:
        """Client address as (host, port) tuple."""
        return self._context.client

    @cached_property
    def ip(self) -> str:
        """Client IP, honouring proxy headers when the proxy is trusted."""
        if self._trust_proxy:
            forwarded = self.headers.get("x-forwarded-for")
            if forwarded:
                first = forwarded.split(",", 1)[0].strip()
                if first:
                    return first
            real_ip = self.headers.get("x-real-ip")
            if real_ip:
                return real_ip.strip()
        if self.client:
            return self.client[0]
        return "127.0.0.1"

    @property
    def protocol(self) -> str:
        """``http`` or ``https``."""
        if self._trust_proxy:
            forwarded = self.headers.get("x-forwarded-proto")
            if forwarded:
                return forwarded.split(",", 1)[0].strip().lower()
        return self._context.scheme or "http"

    scheme = protocol

    @property
    def host(self) -> str:
        """Host header value, port included."""
        return self.headers.get("host", "localhost")

    @property
    def hostname(self) -> str:
        """Host name without the port."""
        host = self.host
        if host.startswith("["):
            return host.split("]", 1)[0] + "]"
        return host.split(":", 1)[0]

    @property
    def secure(self) -> bool:
        return self.protocol == "https"

    @property
    def xhr(self) -> bool:
        return self.headers.get("x-requested-with", "").lower() == "xmlhttprequest"

    @property
    def content_type(self) -> str:
        """Content-Type header value."""
        return self.headers.get("content-type", "")

    @property
    def content_length(self) -> int | None:
        """Content-Length header value."""
        length = self.headers.get("content-length")
        try:
            return int(length) if length else None
        except ValueError:
            return None

    @property
    def original_path(self) -> str:
        """Path as received, before decoding and trailing-slash normalization."""
        return self._context.path or "/"

    @property
    def original_url(self) -> str:
        """Path plus query string, as received."""
        path = self.original_path
        query_string = self._context.query_string or urlencode(self.query, doseq=True)
        return f"{path}?{query_string}" if query_string else path

    @property
    def url(self) -> str:
        """Full URL."""
        return f"{self.protocol}://{self.host}{self.original_url}"

    # ------------------------------------------------------------------
    # Headers, query and cookies
    # ------------------------------------------------------------------

    def get_header(self, name: str, default: str | None = None) -> str | None:
        """Get a specific header value (case-insensitive)."""
        return self.headers.get(name.lower(), default)

    def has_header(self, name: str) -> bool:
        return name.lower() in self.headers

    def get_query(self, name: str, default: str | None = None) -> str | None:
        """Get a specific query parameter; the first value if repeated."""
        value = self.query.get(name, default)
        if isinstance(value, list):
            return value[0] if value else default
        return value

    @cached_property
    def cookies(self) -> Mapping[str, str]:
        """Request cookies."""
        return parse_cookies(self.headers.get("cookie", ""))

    def get_cookie(self, name: str, default: str | None = None) -> str | None:
        """Get a specific cookie value."""
        return self.cookies.get(name, default)

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------

    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")

    @cached_property
    def _json(self) -> tuple[Any, BadRequest | None]:
        # (value, error); a parse failure is memoized like a success
        if not self.body.strip():
            return None, None
        try:
            return json.loads(self.body), None
        except (ValueError, UnicodeDecodeError) as exc:
            error = BadRequest("Invalid JSON body")
            error.__cause__ = exc
            return None, error

    def json(self) -> Any:
        """
        Parse body as JSON.

        An empty body yields ``None``; a malformed one raises
        :class:`~freya.exceptions.BadRequest`.
        """
        value, error = self._json
        if error is not None:
            raise error
        return value

    @cached_property
    def _form(self) -> Mapping[str, str | list[str]]:
        if self.content_type_is("multipart"):
            fields, _files = self.multipart()
            return fields
        return parse_query_string(self.text())

    def form(self) -> Mapping[str, str | list[str]]:
        """Parse body as form data (URL-encoded or multipart)."""
        return self._form

    @cached_property
    def _multipart(self) -> tuple[dict[str, str | list[str]], list[UploadFile]]:
        boundary = self._extract_boundary()
        if boundary is None:
            return {}, []
        return parse_multipart(self.body, boundary)

    def multipart(self) -> tuple[dict[str, str | list[str]], list[UploadFile]]:
        """
        Parse a ``multipart/form-data`` body.

        Returns ``(form_fields, files)`` where *files* is a list of
        :class:`~freya.multipart.UploadFile` instances.
        """
        return self._multipart

    def files(self) -> list[UploadFile]:
        """Convenience: return only the file uploads from a multipart body."""
        _fields, file_list = self.multipart()
        return file_list

    def _extract_boundary(self) -> str | None:
        """Extract the multipart boundary from the Content-Type header."""
        for part in self.content_type.split(";"):
            part = part.strip()
            if part.lower().startswith("boundary="):
                return part.split("=", 1)[1].strip('"')
        return None

    @property
    def parsed_body(self) -> Any:
        """
        Body parsed according to its content type.

        Set by :class:`~freya.middleware.bodyparser.BodyParserMiddleware`
        when installed; otherwise computed on first access.
        """
        if self._parsed_body is _MISSING:
            if self.content_type_is("json"):
                self._parsed_body = self.json()
            elif self.content_type_is("form", "multipart"):
                self._parsed_body = self.form()
            else:
                self._parsed_body = {}
        return self._parsed_body

    @parsed_body.setter
    def parsed_body(self, value: Any) -> None:
        self._parsed_body = value

    def param(self, name: str, default: Any = None) -> Any:
        """Look *name* up in route params, then the query, then the parsed body."""
        if name in self.params:
            return self.params[name]
        if name in self.query:
            return self.query[name]
        body = self.parsed_body
        if isinstance(body, Mapping) and name in body:
            return body[name]
        return default

    # ------------------------------------------------------------------
    # Content negotiation
    # ------------------------------------------------------------------

    def accepts(self, *types: str) -> str | None:
        """
        Best match for the Accept header among *types*.

        Candidates are ranked by quality, then by how specific the matching
        Accept entry is (``text/html`` beats ``text/*`` beats ``*/*``), then
        by the order given. A missing Accept header accepts anything.
        """
        entries = _parse_accept(self.headers.get("accept") or "*/*")
        best: tuple[float, int] | None = None
        chosen: str | None = None

        for candidate in types:
            full_type = expand_mime(candidate)
            scores = [s for entry in entries if (s := entry.score(full_type)) is not None]
            if not scores:
                continue
            # The most specific entry decides the quality
            quality, specificity = max(scores, key=lambda s: s[1])
            if quality <= 0:
                continue
            if best is None or (quality, specificity) > best:
                best = (quality, specificity)
                chosen = candidate

        return chosen

    def content_type_is(self, *types: str) -> str | None:
        """The first of *types* matching the request Content-Type, or None."""
        media_type = self.content_type.split(";", 1)[0].strip().lower()
        if not media_type:
            return None

        main, _, sub = media_type.partition("/")
        for candidate in types:
            full_type = expand_mime(candidate)
            if full_type == media_type:
                return candidate
            if full_type == f"{main}/*":
                return candidate
            # application/vnd.api+json is json
            if full_type == "application/json" and sub.endswith("+json"):
                return candidate
        return None

    def range(self, size: int) -> list[ByteRange] | None:
        """
        Parse the Range header against a resource of *size* bytes.

        Returns None when the header is absent, malformed, not in bytes,
        when no range is satisfiable, or when ranges overlap.
        """
        header = self.headers.get("range")
        if not header:
            return None

        unit, _, spec = header.partition("=")
        if unit.strip().lower() != "bytes" or not spec:
            return None

        ranges: list[ByteRange] = []
        for part in spec.split(","):
            found = _RANGE_SPEC.match(part)
            if found is None:
                return None
            start_str, end_str = found.groups()

            if start_str:
                start = int(start_str)
                end = int(end_str) if end_str else size - 1
                if end_str and end < start:
                    return None
                end = min(end, size - 1)
            elif end_str:
                # Suffix range: "-500" is the last 500 bytes
                suffix = int(end_str)
                if suffix == 0:
                    continue
                start = max(size - suffix, 0)
                end = size - 1
            else:
                return None

            if start >= size:
                continue
            ranges.append(ByteRange(start, end))

        if not ranges:
            return None

        ordered = sorted(ranges, key=lambda r: r.start)
        for previous, current in zip(ordered, ordered[1:]):
            if current.start <= previous.end:
                return None

        return ranges

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _run_validator(self, schema: Validator, data: Any) -> dict[str, Any]:
        ok, sanitized, errors = schema.validate(data)
        if not ok:
            raise ValidationError(errors)
        return sanitized

    def validate(self, schema: Validator) -> dict[str, Any]:
        """Validate the parsed body; raises ValidationError on failure."""
        return self._run_validator(schema, self.parsed_body)

    def validate_query(self, schema: Validator) -> dict[str, Any]:
        return self._run_validator(schema, dict(self.query))

    def validate_params(self, schema: Validator) -> dict[str, Any]:
        return self._run_validator(schema, dict(self.params))

    # ------------------------------------------------------------------
    # Caching
    # ------------------------------------------------------------------

    @property
    def fresh(self) -> bool:
        """
        True when the client's cached copy is still valid.

        Compares ``If-None-Match`` / ``If-Modified-Since`` with the ``ETag``
        and ``Last-Modified`` already set on the response.
        """
        if self.method not in ("GET", "HEAD") or self.response is None:
            return False

        status = self.response.status_code
        if not (200 <= status < 300 or status == 304):
            return False

        if_none_match = self.headers.get("if-none-match")
        if_modified_since = self.headers.get("if-modified-since")
        if not if_none_match and not if_modified_since:
            return False
        if "no-cache" in self.headers.get("cache-control", ""):
            return False

        if if_none_match and if_none_match.strip() != "*":
            etag = self.response.get_header("etag")
            if not etag:
                return False
            wanted = {tag.strip().removeprefix("W/") for tag in if_none_match.split(",")}
            if etag.removeprefix("W/") not in wanted:
                return False

        if if_modified_since:
            last_modified = self.response.get_header("last-modified")
            if not last_modified:
                return False
            try:
                if parsedate_to_datetime(last_modified) > parsedate_to_datetime(if_modified_since):
                    return False
            except (TypeError, ValueError):
                return False

        return True

    @property
    def stale(self) -> bool:
        return not self.fresh
