"""
Session management for Freya framework.
Provides server-side session storage with signed cookie tokens.
"""

import json
import os
import re
import secrets
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, MutableMapping
from dataclasses import dataclass, field
from typing import Any

from freya.config import validate_secret_key
from freya.cookies import CookieOptions, SecureCookie
from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

FLASH_KEY: str = "_flash"


@dataclass
class SessionData:
    """Session data container with metadata."""

    data: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    accessed_at: float = field(default_factory=time.time)
    modified: bool = False


class Session(MutableMapping[str, Any]):
    """
    Dict-like access to the data of one session.

    ``regenerate()`` and ``destroy()`` only record the intent; the session
    middleware applies it when the response is sent.
    """

    def __init__(self, session_data: SessionData, is_new: bool = False) -> None:
        self._session_data = session_data
        self._is_new = is_new
        self.regenerated = False
        self.destroyed = False

    def __getitem__(self, key: str) -> Any:
        return self._session_data.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._session_data.data[key] = value
        self._session_data.modified = True

    def __delitem__(self, key: str) -> None:
        del self._session_data.data[key]
        self._session_data.modified = True

    def __iter__(self) -> Iterator[str]:
        return iter(self._session_data.data)

    def __len__(self) -> int:
        return len(self._session_data.data)

    def __contains__(self, key: object) -> bool:
        return key in self._session_data.data

    @property
    def data(self) -> SessionData:
        return self._session_data

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def is_modified(self) -> bool:
        return self._session_data.modified

    def clear(self) -> None:
        self._session_data.data.clear()
        self._session_data.modified = True

    def flash(self, key: str, value: Any) -> None:
        """Queue a flash message under *key* (read once, on a later request)."""
        flash_data = self._session_data.data.setdefault(FLASH_KEY, {})
        flash_data.setdefault(key, []).append(value)
        self._session_data.modified = True

    def get_flash(self, key: str, default: Any = None) -> Any:
        """Get and remove the flash messages stored under *key*."""
        flash_data = self._session_data.data.get(FLASH_KEY, {})
        if key not in flash_data:
            return default
        value = flash_data.pop(key)
        if not flash_data:
            self._session_data.data.pop(FLASH_KEY, None)
        self._session_data.modified = True
        return value

    def regenerate(self) -> None:
        """Move the data to a fresh session id (e.g. after login)."""
        self.regenerated = True
        self._session_data.modified = True

    def destroy(self) -> None:
        """Delete the session and expire its cookie."""
        self._session_data.data.clear()
        self.destroyed = True


class SessionBackend(ABC):
    """Abstract session storage backend."""

    @abstractmethod
    def load(self, session_id: str) -> SessionData | None:
        """Load session data for the given session ID."""
        ...

    @abstractmethod
    def save(self, session_id: str, data: SessionData) -> None:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    def cleanup(self, max_age: int) -> None:
        """Drop sessions not accessed for *max_age* seconds."""
        ...


class InMemorySessionBackend(SessionBackend):
    """
    In-memory session storage.
    Suitable for development and single-process deployments.

    Warning: Sessions are lost on restart and not shared across workers.
    Use FileSessionBackend or a custom backend for production.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionData] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> SessionData | None:
        with self._lock:
            data = self._sessions.get(session_id)
            if data:
                data.accessed_at = time.time()
            return data

    def save(self, session_id: str, data: SessionData) -> None:
        with self._lock:
            self._sessions[session_id] = data

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def cleanup(self, max_age: int) -> None:
        current_time = time.time()
        with self._lock:
            expired = [
                sid for sid, data in self._sessions.items()
                if current_time - data.accessed_at > max_age
            ]
            for sid in expired:
                del self._sessions[sid]

    def __len__(self) -> int:
        return len(self._sessions)


class FileSessionBackend(SessionBackend):
    """
    File-system session storage.

    Each session is stored as a JSON file in a configurable directory.
    Sessions survive restarts and are shareable across workers that
    can access the same directory.

    Uses atomic writes (write-to-temp then rename) to prevent
    corruption from concurrent requests.
    """

    def __init__(self, directory: str = ".freya_sessions") -> None:
        self._directory = os.path.abspath(directory)
        os.makedirs(self._directory, exist_ok=True)

    def _path_for(self, session_id: str) -> str:
        # Sanitise session_id to prevent directory traversal
        safe_id = re.sub(r"[^a-zA-Z0-9_\-]", "", session_id)
        if not safe_id:
            raise ValueError("Invalid session id")
        return os.path.join(self._directory, f"{safe_id}.json")

    @staticmethod
    def _serialise(data: SessionData) -> str:
        return json.dumps({
            "data": data.data,
            "created_at": data.created_at,
            "accessed_at": data.accessed_at,
        })

    @staticmethod
    def _deserialise(raw: str) -> SessionData:
        obj = json.loads(raw)
        return SessionData(
            data=obj["data"],
            created_at=obj["created_at"],
            accessed_at=obj["accessed_at"],
        )

    def load(self, session_id: str) -> SessionData | None:
        path = self._path_for(session_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = self._deserialise(f.read())
        except (OSError, ValueError, KeyError):
            return None
        data.accessed_at = time.time()
        self.save(session_id, data)
        return data

    def save(self, session_id: str, data: SessionData) -> None:
        path = self._path_for(session_id)
        fd, tmp_path = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self._serialise(data))
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, session_id: str) -> None:
        try:
            os.unlink(self._path_for(session_id))
        except FileNotFoundError:
            pass

    def cleanup(self, max_age: int) -> None:
        current_time = time.time()
        try:
            entries = os.listdir(self._directory)
        except OSError:
            return
        for filename in entries:
            if not filename.endswith(".json"):
                continue
            path = os.path.join(self._directory, filename)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = self._deserialise(f.read())
                if current_time - data.accessed_at > max_age:
                    os.unlink(path)
            except (OSError, ValueError, KeyError):
                continue


class SessionMiddleware(Middleware):
    """
    Load the session named by a signed cookie and persist it on send.

    Sets ``request.session`` (a :class:`Session`) and ``request.session_id``.
    New sessions are only stored once they hold data, unless
    ``save_uninitialized`` is set. With ``rolling`` the cookie is re-issued
    on every response.

    Usage:
        app.use(SessionMiddleware(secret_key="change-me-please-16+"))
    """

    def __init__(
        self,
        secret_key: str,
        cookie_name: str = "freya_session",
        max_age: int = 86400 * 14,  # 14 days
        backend: SessionBackend | None = None,
        cookie_options: CookieOptions | None = None,
        rolling: bool = False,
        save_uninitialized: bool = False,
    ) -> None:
        validate_secret_key(secret_key)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.backend = backend or InMemorySessionBackend()
        self.cookie_options = cookie_options or CookieOptions(max_age=max_age)
        self.rolling = rolling
        self.save_uninitialized = save_uninitialized
        self._secure_cookie = SecureCookie(secret_key)

    def process(self, request: Request, response: Response, next: Next) -> None:
        session_id = self._get_session_id(request)
        session_data = self.backend.load(session_id) if session_id else None

        is_new = session_data is None
        if session_id is None or session_data is None:
            session_id = self._generate_session_id()
            session_data = SessionData()

        session = Session(session_data, is_new=is_new)
        request.session = session
        request.session_id = session_id

        def persist(res: Response) -> None:
            self._persist(request, res, session, session_id)

        response.before_send(persist)
        next()

    def _persist(self, request: Request, response: Response, session: Session, session_id: str) -> None:
        if session.destroyed:
            self.backend.delete(session_id)
            response.clear_cookie(self.cookie_name, self.cookie_options)
            return

        if session.regenerated:
            self.backend.delete(session_id)
            session_id = self._generate_session_id()
            request.session_id = session_id

        store = session.is_modified or (session.is_new and self.save_uninitialized)
        if store:
            session.data.modified = False
            self.backend.save(session_id, session.data)

        if store or self.rolling or session.regenerated:
            response.set_cookie(
                self.cookie_name,
                self._secure_cookie.sign(session_id),
                self.cookie_options,
            )

    def _get_session_id(self, request: Request) -> str | None:
        """Extract and verify the session ID from the cookie."""
        signed_id = request.get_cookie(self.cookie_name)
        if not signed_id:
            return None
        return self._secure_cookie.unsign(signed_id, self.max_age)

    def _generate_session_id(self) -> str:
        return secrets.token_urlsafe(32)
