"""
Type definitions for the Freya framework.
"""

from collections.abc import Awaitable, Callable, Mapping, MutableMapping
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

if TYPE_CHECKING:
    from freya.request import Request
    from freya.response import Response

# ASGI Types (transport boundary only)
Scope: TypeAlias = MutableMapping[str, Any]
Message: TypeAlias = MutableMapping[str, Any]
Receive: TypeAlias = Callable[[], Awaitable[Message]]
Send: TypeAlias = Callable[[Message], Awaitable[None]]

# Dispatch Types
Next: TypeAlias = Callable[..., None]
Handler: TypeAlias = Callable[["Request", "Response", Next], Any]
ErrorHandler: TypeAlias = Callable[[BaseException, "Request", "Response", str], Any]
LifespanHandler: TypeAlias = Callable[[], Any]

# State Types
State: TypeAlias = MutableMapping[str, Any]
Headers: TypeAlias = Mapping[str, str]
QueryParams: TypeAlias = Mapping[str, str | list[str]]
FormData: TypeAlias = Mapping[str, str | list[str]]
JSONData: TypeAlias = dict[str, Any] | list[Any] | str | int | float | bool | None


class TemplateRenderer(Protocol):
    """Anything that can turn a template name and a context into a string."""

    def render(self, name: str, context: Mapping[str, Any]) -> str: ...


class Validator(Protocol):
    """Validation collaborator contract."""

    def validate(self, data: Any) -> tuple[bool, dict[str, Any], dict[str, list[str]]]: ...


class Authenticatable(Protocol):
    """Protocol for objects that can be authenticated."""

    @property
    def is_authenticated(self) -> bool: ...

    @property
    def identity(self) -> str | None: ...
