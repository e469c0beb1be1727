"""
Transport boundary for Freya.

``HTTPContext`` is the bundle a host transport hands to the dispatcher for one
request, and the place the dispatcher leaves the finished response.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import parse_qs


@dataclass(slots=True)
class HTTPContext:
    """
    One request/response exchange.

    The inbound fields are read-only for the core. The outbound fields are
    populated exactly once, when the dispatcher finalizes the response.
    """

    method: str = "GET"
    path: str = "/"
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str | list[str]] = field(default_factory=dict)
    body: bytes = b""
    client: tuple[str, int] | None = None
    scheme: str = "http"
    query_string: str = ""

    # Outbound
    status: int = 0
    response_headers: list[tuple[str, str]] = field(default_factory=list)
    response_body: bytes = b""

    @classmethod
    def from_raw(
        cls,
        method: str,
        path: str,
        query_string: str = "",
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
        client: tuple[str, int] | None = None,
        scheme: str = "http",
    ) -> "HTTPContext":
        """Build a context from an unparsed query string."""
        return cls(
            method=method.upper(),
            path=path or "/",
            headers=dict(headers or {}),
            query=parse_query_string(query_string),
            body=body,
            client=client,
            scheme=scheme,
            query_string=query_string,
        )


def parse_query_string(query_string: str) -> dict[str, str | list[str]]:
    """Parse ``a=1&b=2&b=3`` into ``{"a": "1", "b": ["2", "3"]}``."""
    params: dict[str, str | list[str]] = {}
    for key, values in parse_qs(query_string, keep_blank_values=True).items():
        params[key] = values[0] if len(values) == 1 else values
    return params
