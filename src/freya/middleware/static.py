"""
Static file serving middleware.
"""

import html
import os
from typing import Any, Literal
from urllib.parse import quote

from freya.exceptions import Forbidden, NotFound
from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response, guess_content_type
from freya.types import Next

DotfilesPolicy = Literal["ignore", "allow", "deny"]


def relative_path(request: Request) -> str:
    """
    Decoded request path below the mount point.

    Keeps the trailing slash the client sent, which tells a directory
    request apart from a file request.
    """
    path = request.path
    if request.base_path and path.startswith(request.base_path):
        path = path[len(request.base_path):]
    if not path.startswith("/"):
        path = "/" + path
    if request.original_path.endswith("/") and not path.endswith("/"):
        path += "/"
    return path


class StaticFilesMiddleware(Middleware):
    """
    Serve files below ``root`` for GET and HEAD requests.

    Paths are resolved relative to the mount point (``request.base_path``)
    and must stay inside ``root`` after symlinks are resolved; anything
    else falls through to ``next()``. Responses carry ``ETag``,
    ``Last-Modified`` and ``Accept-Ranges``; conditional requests get a
    304 and a single byte range gets a 206.

    Usage:
        app.use("/assets", StaticFilesMiddleware("public"))
    """

    def __init__(
        self,
        root: str,
        index: str | None = "index.html",
        dotfiles: DotfilesPolicy = "ignore",
        etag: bool = True,
        last_modified: bool = True,
        max_age: int = 0,
        immutable: bool = False,
        redirect: bool = True,
        extensions: list[str] | None = None,
        fallthrough: bool = True,
    ) -> None:
        if dotfiles not in ("ignore", "allow", "deny"):
            raise ValueError(f"Invalid dotfiles policy: {dotfiles!r}")
        self.root = os.path.realpath(root)
        self._index = index
        self._dotfiles = dotfiles
        self._etag = etag
        self._last_modified = last_modified
        self._max_age = max_age
        self._immutable = immutable
        self._redirect = redirect
        self._extensions = extensions or []
        self._fallthrough = fallthrough

    def process(self, request: Request, response: Response, next: Next) -> None:
        if request.method not in ("GET", "HEAD"):
            return next()

        path = relative_path(request)
        if "\x00" in path or ".." in path.split("/"):
            return next()

        name = path.rstrip("/").rsplit("/", 1)[-1]
        if name.startswith("."):
            if self._dotfiles == "deny":
                raise Forbidden()
            if self._dotfiles == "ignore":
                return next()

        filepath = self._resolve(path)
        if filepath is None:
            return next()

        if os.path.isdir(filepath):
            if self._redirect and not path.endswith("/"):
                response.redirect(quote(request.base_path + path + "/"), 301)
                return
            if self._index is None:
                return next()
            filepath = os.path.join(filepath, self._index)

        filepath = self._with_extension(filepath)
        if not os.path.isfile(filepath):
            if not self._fallthrough:
                raise NotFound("File not found")
            return next()

        self._serve(filepath, request, response)

    def _resolve(self, path: str) -> str | None:
        """Absolute path for *path* below the root, or None if it escapes."""
        resolved = os.path.realpath(os.path.join(self.root, path.lstrip("/")))
        if resolved != self.root and not resolved.startswith(self.root + os.sep):
            return None
        return resolved

    def _with_extension(self, filepath: str) -> str:
        if os.path.exists(filepath):
            return filepath
        for ext in self._extensions:
            candidate = f"{filepath}.{ext.lstrip('.')}"
            if os.path.isfile(candidate) and self._resolve(os.path.relpath(candidate, self.root)):
                return candidate
        return filepath

    def _serve(self, filepath: str, request: Request, response: Response) -> None:
        stat = os.stat(filepath)
        response.set_header("Content-Type", guess_content_type(filepath))
        response.set_header("Accept-Ranges", "bytes")

        if self._max_age > 0:
            response.cache(public=True, max_age=self._max_age, immutable=self._immutable)
        if self._last_modified:
            response.last_modified(stat.st_mtime)
        if self._etag:
            response.etag(f"{stat.st_size:x}-{int(stat.st_mtime):x}", weak=True)

        if request.fresh:
            response.status(304).send(b"")
            return

        with open(filepath, "rb") as f:
            content = f.read()

        if request.has_header("range"):
            ranges = request.range(len(content))
            if ranges is None:
                response.set_header("Content-Range", f"bytes */{len(content)}")
                response.status(416).type("text").send("Range Not Satisfiable")
                return
            if len(ranges) == 1:
                byte_range = ranges[0]
                response.status(206)
                response.set_header(
                    "Content-Range",
                    f"bytes {byte_range.start}-{byte_range.end}/{len(content)}",
                )
                response.send(content[byte_range.start:byte_range.end + 1])
                return

        response.send(content)


def directory_listing(title: str, entries: list[tuple[str, bool]], show_parent: bool) -> str:
    """Render an HTML index for *entries* (``(name, is_dir)`` pairs)."""
    ordered = sorted(entries, key=lambda e: (not e[1], e[0]))
    items = []
    if show_parent:
        items.append('<li><a href="../">../</a></li>')
    for name, is_dir in ordered:
        label = html.escape(name + ("/" if is_dir else ""))
        css = "dir" if is_dir else "file"
        items.append(f'<li><a href="{label}" class="{css}">{label}</a></li>')

    safe_title = html.escape(title)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Index of {safe_title}</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 40px; background: #f5f5f5; }}
h1 {{ color: #333; border-bottom: 1px solid #ddd; padding-bottom: 10px; }}
ul {{ list-style: none; padding: 0; }}
li {{ padding: 8px 0; border-bottom: 1px solid #eee; }}
a {{ color: #0066cc; text-decoration: none; }}
.dir {{ font-weight: bold; }}
</style>
</head>
<body>
<h1>Index of {safe_title}</h1>
<ul>
{chr(10).join(items)}
</ul>
</body>
</html>"""


class DirectoryIndexMiddleware(StaticFilesMiddleware):
    """
    Static files plus an HTML listing for directories without an index file.
    """

    def __init__(self, root: str, show_hidden: bool = False, **options: Any) -> None:
        options.setdefault("index", None)
        super().__init__(root, **options)
        self._show_hidden = show_hidden

    def process(self, request: Request, response: Response, next: Next) -> None:
        if request.method in ("GET", "HEAD"):
            path = relative_path(request)
            directory = None if ".." in path.split("/") else self._resolve(path)
            if directory is not None and os.path.isdir(directory) and path.endswith("/"):
                names = [
                    entry
                    for entry in os.listdir(directory)
                    if self._show_hidden or not entry.startswith(".")
                ]
                entries = [(entry, os.path.isdir(os.path.join(directory, entry))) for entry in names]
                response.html(directory_listing(request.path, entries, show_parent=path != "/"))
                return
        super().process(request, response, next)
