"""
Body parsing middleware.

Parses JSON, URL-encoded, text and raw bodies up front and stores the
result on ``request.parsed_body``.
"""

import json
import re
from typing import Any
from urllib.parse import unquote_plus

from freya.exceptions import BadRequest, PayloadTooLarge
from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

DEFAULT_LIMIT: int = 1024 * 1024  # 1MB

_SIZE = re.compile(r"^(\d+)\s*([a-z]*)$")
_UNITS: dict[str, int] = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
}

# Bracket segments of an extended form key: "user[name]" -> ["name"]
_KEY_PART = re.compile(r"\[([^\]]*)\]")


def parse_size(size: int | str | None, default: int = DEFAULT_LIMIT) -> int:
    """Parse ``"100kb"``-style sizes into a byte count."""
    if isinstance(size, int):
        return size
    if not isinstance(size, str):
        return default
    found = _SIZE.match(size.strip().lower())
    if found is None:
        return default
    number, unit = found.groups()
    return int(number) * _UNITS.get(unit, 1)


def _assign(target: dict[str, Any], key: str, value: str) -> None:
    """Store *value* under an extended key such as ``a[b][]``."""
    base, _, rest = key.partition("[")
    if not rest:
        target[key] = value
        return

    parts = [base, *_KEY_PART.findall("[" + rest)]
    current: Any = target
    for part, following in zip(parts, parts[1:]):
        if isinstance(current, list):
            child: Any = [] if following == "" else {}
            current.append(child)
            current = child
            continue
        if part not in current or not isinstance(current[part], (dict, list)):
            current[part] = [] if following == "" else {}
        current = current[part]

    last = parts[-1]
    if isinstance(current, list):
        current.append(value)
    elif last == "":
        current.setdefault(last, []).append(value)
    else:
        current[last] = value


def parse_urlencoded(body: str, extended: bool = True) -> dict[str, Any]:
    """
    Parse an ``application/x-www-form-urlencoded`` body.

    With *extended*, bracketed keys build nested structures
    (``user[name]=a`` -> ``{"user": {"name": "a"}}``, ``tags[]=x`` ->
    ``{"tags": ["x"]}``). Without it, keys are kept verbatim and the last
    value wins.
    """
    parsed: dict[str, Any] = {}
    for pair in body.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        if not key:
            continue
        key = unquote_plus(key)
        value = unquote_plus(value)
        if extended:
            _assign(parsed, key, value)
        else:
            parsed[key] = value
    return parsed


class BodyParserMiddleware(Middleware):
    """
    Parse request bodies before the route handlers run.

    ``types`` selects the parsers to enable, out of ``json``,
    ``urlencoded``, ``text`` and ``raw``. Bodies larger than ``limit``
    raise :class:`~freya.exceptions.PayloadTooLarge`; malformed JSON (or,
    with ``strict``, a JSON scalar) raises
    :class:`~freya.exceptions.BadRequest`.

    Usage:
        app.use(BodyParserMiddleware(limit="100kb"))
    """

    def __init__(
        self,
        types: tuple[str, ...] = ("json", "urlencoded"),
        limit: int | str = DEFAULT_LIMIT,
        strict: bool = True,
        extended: bool = True,
        raw_type: str = "application/octet-stream",
        text_type: str = "text/plain",
    ) -> None:
        unknown = set(types) - {"json", "urlencoded", "text", "raw"}
        if unknown:
            raise ValueError(f"Unknown body parser type(s): {', '.join(sorted(unknown))}")
        self._types = types
        self.limit = parse_size(limit)
        self._strict = strict
        self._extended = extended
        self._raw_type = raw_type
        self._text_type = text_type

    def process(self, request: Request, response: Response, next: Next) -> None:
        kind = self._match(request)
        if kind is None:
            return next()

        if len(request.body) > self.limit:
            raise PayloadTooLarge(f"Request body exceeds {self.limit} bytes")

        if kind == "json":
            request.parsed_body = self._parse_json(request.body)
        elif kind == "urlencoded":
            request.parsed_body = parse_urlencoded(request.text(), self._extended)
        elif kind == "text":
            request.parsed_body = request.text()
        else:
            request.parsed_body = request.body
        next()

    def _match(self, request: Request) -> str | None:
        for kind in self._types:
            if kind == "json" and request.content_type_is("json"):
                return kind
            if kind == "urlencoded" and request.content_type_is("urlencoded"):
                return kind
            if kind == "text" and request.content_type_is(self._text_type):
                return kind
            if kind == "raw" and (self._raw_type == "*" or request.content_type_is(self._raw_type)):
                return kind
        return None

    def _parse_json(self, body: bytes) -> Any:
        if not body.strip():
            return {}
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise BadRequest(f"Invalid JSON: {exc}") from exc
        if self._strict and not isinstance(data, (dict, list)):
            raise BadRequest("JSON must be an object or array")
        return data
