"""
Cookie handling for Freya framework.

Serialization of ``Set-Cookie`` values, parsing of the request ``Cookie``
header, and HMAC signing used by the session middleware.
"""

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass, replace
from email.utils import formatdate
from typing import Any
from urllib.parse import quote, unquote

# Characters left unescaped in cookie names and values
_COOKIE_SAFE: str = "!#$&'()*+-./:<>?@[]^_`{|}~"

# Expires value used when clearing cookies
EPOCH_EXPIRES: str = "Thu, 01 Jan 1970 00:00:00 GMT"


@dataclass(frozen=True, slots=True)
class CookieOptions:
    """Cookie attributes (Immutable Value Object)."""

    max_age: int | None = None  # In seconds
    expires: str | int | float | None = None  # HTTP date or unix timestamp
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = True
    samesite: str | None = "Lax"  # "Strict", "Lax" or "None"

    def with_changes(self, **changes: Any) -> "CookieOptions":
        return replace(self, **changes)

    def to_header_string(self) -> str:
        """Render attributes in ``Max-Age; Expires; Path; Domain; Secure; HttpOnly; SameSite`` order."""
        parts: list[str] = []

        if self.max_age is not None:
            parts.append(f"Max-Age={self.max_age}")
        if self.expires is not None:
            parts.append(f"Expires={_format_expires(self.expires)}")
        parts.append(f"Path={self.path or '/'}")
        if self.domain:
            parts.append(f"Domain={self.domain}")
        if self.secure:
            parts.append("Secure")
        if self.httponly:
            parts.append("HttpOnly")
        if self.samesite:
            parts.append(f"SameSite={self.samesite.capitalize()}")

        return "; ".join(parts)


def _format_expires(expires: str | int | float) -> str:
    if isinstance(expires, (int, float)):
        return formatdate(expires, usegmt=True)
    return expires


def format_set_cookie(
    name: str,
    value: str,
    options: CookieOptions | None = None,
) -> str:
    """Format a ``Set-Cookie`` header value."""
    options = options or CookieOptions()
    cookie = f"{quote(name, safe=_COOKIE_SAFE)}={quote(str(value), safe=_COOKIE_SAFE)}"
    return f"{cookie}; {options.to_header_string()}"


def parse_cookies(cookie_header: str) -> dict[str, str]:
    """Parse a ``Cookie`` header string into a dictionary."""
    cookies: dict[str, str] = {}

    if not cookie_header:
        return cookies

    for item in cookie_header.split(";"):
        item = item.strip()
        if "=" not in item:
            continue
        key, _, value = item.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        cookies[unquote(key.strip())] = unquote(value)

    return cookies


class SecureCookie:
    """
    HMAC-SHA256 signer for cookie values.

    Signed values have the shape ``timestamp:value:signature``; the timestamp
    lets ``unsign`` enforce a maximum age.
    """

    def __init__(self, secret_key: str | bytes) -> None:
        if isinstance(secret_key, str):
            secret_key = secret_key.encode("utf-8")
        self._secret_key = secret_key

    def sign(self, value: str) -> str:
        """Sign a value and return the signed string."""
        payload = f"{int(time.time())}:{value}"
        return f"{payload}:{self._create_signature(payload)}"

    def unsign(
        self,
        signed_value: str,
        max_age: int | None = None,
    ) -> str | None:
        """
        Verify signature and return original value.
        Returns None if signature is invalid or expired.
        """
        parts = signed_value.rsplit(":", 2)
        if len(parts) != 3:
            return None

        timestamp_str, value, signature = parts
        expected = self._create_signature(f"{timestamp_str}:{value}")
        if not hmac.compare_digest(signature, expected):
            return None

        if max_age is not None:
            try:
                issued = int(timestamp_str)
            except ValueError:
                return None
            if time.time() - issued > max_age:
                return None

        return value

    def encode_value(self, data: Any) -> str:
        """Encode data to a signed base64 string."""
        raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
        return self.sign(base64.urlsafe_b64encode(raw).decode("ascii"))

    def decode_value(
        self,
        encoded_value: str,
        max_age: int | None = None,
    ) -> Any | None:
        """Decode and verify a signed value. Returns None if invalid."""
        unsigned = self.unsign(encoded_value, max_age)
        if unsigned is None:
            return None

        try:
            raw = base64.urlsafe_b64decode(unsigned.encode("ascii"))
            return json.loads(raw.decode("utf-8"))
        except (ValueError, TypeError):
            return None

    def _create_signature(self, value: str) -> str:
        digest = hmac.new(self._secret_key, value.encode("utf-8"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    @staticmethod
    def generate_secret_key(length: int = 32) -> str:
        """Generate a cryptographically secure secret key."""
        return secrets.token_urlsafe(length)
