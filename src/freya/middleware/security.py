"""
Security headers and request id middleware.
"""

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

CSPDirectives = Mapping[str, str | list[str]]
PermissionsFeatures = Mapping[str, bool | str | list[str]]


def build_csp(directives: CSPDirectives) -> str:
    """``{"default-src": ["'self'"]}`` -> ``"default-src 'self'"``."""
    parts = []
    for directive, value in directives.items():
        if isinstance(value, list):
            value = " ".join(value)
        parts.append(f"{directive} {value}")
    return "; ".join(parts)


def build_permissions_policy(features: PermissionsFeatures) -> str:
    """``{"camera": False, "geolocation": ["self"]}`` -> ``"camera=(), geolocation=(self)"``."""
    parts = []
    for feature, value in features.items():
        if value is True:
            rendered = "*"
        elif value is False:
            rendered = "()"
        elif isinstance(value, list):
            rendered = "(" + " ".join(value) + ")"
        else:
            rendered = value
        parts.append(f"{feature}={rendered}")
    return ", ".join(parts)


@dataclass(frozen=True, slots=True)
class HSTSOptions:
    max_age: int = 31_536_000  # 1 year
    include_subdomains: bool = False
    preload: bool = False
    # Only send the header over HTTPS
    secure_only: bool = False

    def header_value(self) -> str:
        value = f"max-age={self.max_age}"
        if self.include_subdomains:
            value += "; includeSubDomains"
        if self.preload:
            value += "; preload"
        return value


class SecurityHeadersMiddleware(Middleware):
    """
    Set common security headers on every response.

    Enabled by default: ``X-Content-Type-Options: nosniff``,
    ``X-Frame-Options: SAMEORIGIN``, ``X-XSS-Protection``,
    ``X-Download-Options`` and removal of ``X-Powered-By``. HSTS, CSP,
    referrer and permissions policies are opt-in.

    Usage:
        app.use(SecurityHeadersMiddleware(
            hsts=HSTSOptions(include_subdomains=True),
            content_security_policy={"default-src": ["'self'"]},
        ))
    """

    def __init__(
        self,
        no_sniff: bool = True,
        frameguard: str | bool = "SAMEORIGIN",
        xss_filter: bool = True,
        ie_no_open: bool = True,
        dns_prefetch: bool | None = None,
        hsts: HSTSOptions | bool | None = None,
        content_security_policy: CSPDirectives | str | None = None,
        csp_report_only: bool = False,
        referrer_policy: str | None = None,
        permissions_policy: PermissionsFeatures | str | None = None,
        cross_domain: str | None = None,
        hide_powered_by: bool = True,
    ) -> None:
        headers: list[tuple[str, str]] = []
        if no_sniff:
            headers.append(("X-Content-Type-Options", "nosniff"))
        if frameguard:
            headers.append(("X-Frame-Options", "SAMEORIGIN" if frameguard is True else frameguard))
        if xss_filter:
            headers.append(("X-XSS-Protection", "1; mode=block"))
        if ie_no_open:
            headers.append(("X-Download-Options", "noopen"))
        if dns_prefetch is not None:
            headers.append(("X-DNS-Prefetch-Control", "on" if dns_prefetch else "off"))
        if content_security_policy:
            csp = (
                content_security_policy
                if isinstance(content_security_policy, str)
                else build_csp(content_security_policy)
            )
            name = "Content-Security-Policy-Report-Only" if csp_report_only else "Content-Security-Policy"
            headers.append((name, csp))
        if referrer_policy:
            headers.append(("Referrer-Policy", referrer_policy))
        if permissions_policy:
            policy = (
                permissions_policy
                if isinstance(permissions_policy, str)
                else build_permissions_policy(permissions_policy)
            )
            headers.append(("Permissions-Policy", policy))
        if cross_domain:
            headers.append(("X-Permitted-Cross-Domain-Policies", cross_domain))

        self._headers = headers
        self._hsts = HSTSOptions() if hsts is True else (hsts or None)
        self._hide_powered_by = hide_powered_by

    def process(self, request: Request, response: Response, next: Next) -> None:
        for name, value in self._headers:
            response.set_header(name, value)
        if self._hsts is not None and (request.secure or not self._hsts.secure_only):
            response.set_header("Strict-Transport-Security", self._hsts.header_value())
        if self._hide_powered_by:
            response.remove_header("X-Powered-By")
        next()


def _new_request_id() -> str:
    return str(uuid.uuid4())


class RequestIdMiddleware(Middleware):
    """
    Tag each request with an id.

    Reuses the incoming ``X-Request-ID`` header when ``trust_header`` is
    set, otherwise generates a UUID4. The id is stored on ``request.id``
    and echoed in the response header.
    """

    def __init__(
        self,
        header_name: str = "X-Request-ID",
        generator: Callable[[], str] = _new_request_id,
        trust_header: bool = True,
    ) -> None:
        self._header_name = header_name
        self._generator = generator
        self._trust_header = trust_header

    def process(self, request: Request, response: Response, next: Next) -> None:
        incoming = request.get_header(self._header_name) if self._trust_header else None
        request.id = incoming or self._generator()
        response.set_header(self._header_name, request.id)
        next()
