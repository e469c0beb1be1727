"""
Application settings for Freya framework.

Defaults live on the :class:`Settings` dataclass; :meth:`Settings.from_env`
overlays ``FREYA_*`` environment variables.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

# Minimum recommended secret key length (in characters)
MIN_SECRET_KEY_LENGTH: int = 16

ENV_PREFIX: str = "FREYA_"

# Default maximum request body size: 1 MB
DEFAULT_MAX_BODY_SIZE: int = 1_048_576

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(slots=True)
class Settings:
    """Runtime settings of one application."""

    env: str = "development"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    trust_proxy: bool = True
    json_spaces: int | None = None
    views: str = "views"
    max_body_size: int = DEFAULT_MAX_BODY_SIZE
    secret_key: str | None = None

    def __post_init__(self) -> None:
        validate_secret_key(self.secret_key)

    @property
    def production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "Settings":
        """
        Build settings from ``FREYA_ENV``, ``FREYA_PORT``, ... variables.

        Keyword *overrides* win over the environment.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for item in fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{item.name.upper()}")
            if raw is not None:
                values[item.name] = _coerce(item.name, raw)

        values.update(overrides)
        return cls(**values)

    def with_changes(self, **changes: Any) -> "Settings":
        return replace(self, **changes)


def _coerce(name: str, raw: str) -> Any:
    if name in ("debug", "trust_proxy"):
        return raw.strip().lower() in _TRUE_VALUES
    if name in ("port", "max_body_size"):
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}") from None
    if name == "json_spaces":
        return int(raw) if raw.strip() else None
    return raw


def validate_secret_key(secret_key: str | None) -> None:
    """Reject secret keys too short to sign cookies safely."""
    if secret_key is not None and len(secret_key) < MIN_SECRET_KEY_LENGTH:
        raise ValueError(
            f"secret_key must be at least {MIN_SECRET_KEY_LENGTH} characters. "
            f"Use a cryptographically random value in production."
        )
