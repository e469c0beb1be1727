"""
Template rendering for Freya framework, backed by Jinja2.

``response.render(name, data)`` goes through the application's ``views``
engine. Rendering errors are not caught here; they reach the error
classifier as unclassified failures.
"""

import os
from collections.abc import Callable, Mapping
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape


class TemplateEngine:
    """Jinja2 environment rooted at a template directory."""

    def __init__(
        self,
        directory: str = "views",
        extension: str = ".html",
        cache_size: int = 400,
        auto_reload: bool = True,
    ) -> None:
        self.directory = directory
        self.extension = extension if not extension or extension.startswith(".") else f".{extension}"
        self.env = Environment(
            loader=FileSystemLoader(directory),
            autoescape=select_autoescape(["html", "htm", "xml"]),
            cache_size=cache_size,
            auto_reload=auto_reload,
        )
        self.env.filters["truncate_text"] = truncate_text

    def template_name(self, name: str) -> str:
        """``"users/show"`` -> ``"users/show.html"``."""
        _root, ext = os.path.splitext(name)
        return name if ext or not self.extension else f"{name}{self.extension}"

    def render(self, name: str, context: Mapping[str, Any]) -> str:
        template = self.env.get_template(self.template_name(name))
        return template.render(**context)

    def render_string(self, source: str, context: Mapping[str, Any] | None = None) -> str:
        return self.env.from_string(source).render(**(context or {}))

    def add_filter(self, name: str, func: Callable[..., Any]) -> None:
        self.env.filters[name] = func

    def add_global(self, name: str, value: Any) -> None:
        self.env.globals[name] = value

    def clear_cache(self) -> None:
        if self.env.cache is not None:
            self.env.cache.clear()


def truncate_text(value: str, length: int = 100, suffix: str = "...") -> str:
    if len(value) <= length:
        return value
    return value[:length] + suffix
