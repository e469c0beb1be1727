"""
Base middleware classes for Freya framework.

A middleware is any callable ``(request, response, next)``. It advances the
pipeline by calling ``next()``, reports a failure with ``next(error)``, or
ends processing by sending the response and not calling ``next`` at all.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from freya.types import Handler, Next

if TYPE_CHECKING:
    from freya.request import Request
    from freya.response import Response

# Prefix value of global middleware
GLOBAL_PREFIX: str = "*"


class Middleware(ABC):
    """
    Abstract base for class-based middleware.

    Subclasses implement :meth:`process`; instances are registered with
    ``app.use(instance)`` like plain functions.
    """

    def __call__(self, request: "Request", response: "Response", next: Next) -> Any:
        return self.process(request, response, next)

    @abstractmethod
    def process(self, request: "Request", response: "Response", next: Next) -> Any:
        """Process the request. Must be implemented by subclasses."""
        ...


@dataclass(frozen=True, slots=True)
class MiddlewareEntry:
    """
    A middleware registration: the path prefix it is scoped to and its handler.

    ``path_prefix`` is ``"*"`` for global middleware. ``None`` is only used
    inside a :class:`~freya.routing.Router` to mean "the router's mount point".
    """

    path_prefix: str | None
    handler: Handler

    @property
    def is_global(self) -> bool:
        return self.path_prefix == GLOBAL_PREFIX

    def matches(self, path: str) -> bool:
        """True when this entry applies to *path*."""
        if self.path_prefix is None or self.is_global:
            return True
        return path.startswith(self.path_prefix)


class Pipeline:
    """
    Immutable, ordered middleware pipeline.

    Registration order is dispatch order; every matching entry runs in
    turn unless one of them short-circuits.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[MiddlewareEntry] = ()) -> None:
        self._entries: tuple[MiddlewareEntry, ...] = tuple(entries)

    @property
    def entries(self) -> tuple[MiddlewareEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MiddlewareEntry]:
        return iter(self._entries)

    def matching(self, path: str) -> Iterator[MiddlewareEntry]:
        """Entries applicable to *path*, in dispatch order."""
        return (entry for entry in self._entries if entry.matches(path))
