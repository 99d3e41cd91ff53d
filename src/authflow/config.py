"""Client configuration from arguments, environment variables and ``.env`` files."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from authflow.models.errors import ConfigurationError

ENV_PREFIX = "AUTHFLOW_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_scope(value: str) -> tuple[str, ...]:
    return tuple(part for part in re.split(r"[\s,]+", value) if part)


@dataclass(frozen=True)
class ClientConfig:
    """Settings for one OAuth client.

    Nothing here is process-wide: callers build a config and pass its
    values to the orchestrator.
    """

    authorize_url: str | None = None
    token_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str = "http://127.0.0.1:8080/callback"
    scope: tuple[str, ...] = ()
    use_pkce: bool = True
    use_basic_auth: bool = False
    access_type: str | None = None
    token_path: Path | None = None
    timeout: float = 300.0

    @classmethod
    def from_env(
        cls,
        prefix: str = ENV_PREFIX,
        env_file: str | os.PathLike[str] | None = None,
        **overrides: Any,
    ) -> ClientConfig:
        """Build a config from ``<prefix><FIELD>`` environment variables.

        A ``.env`` file (``env_file``, or the nearest one above the working
        directory) is loaded first (without overriding variables that
        are already set). Keyword overrides that are not None win over the
        environment.

        Raises:
            ConfigurationError: If a value cannot be converted
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))

        values: dict[str, Any] = {}
        for field in fields(cls):
            raw = os.environ.get(f"{prefix}{field.name.upper()}")
            if raw is None or raw == "":
                continue
            values[field.name] = cls._convert(field.name, raw)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @staticmethod
    def _convert(name: str, raw: str) -> Any:
        if name in ("use_pkce", "use_basic_auth"):
            return _parse_bool(name, raw)
        if name == "scope":
            return _parse_scope(raw)
        if name == "token_path":
            return Path(raw).expanduser()
        if name == "timeout":
            try:
                return float(raw)
            except ValueError as e:
                raise ConfigurationError(f"timeout must be a number, got {raw!r}") from e
        return raw

    def require(self, *names: str) -> None:
        """Raise ConfigurationError naming every missing setting in ``names``."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            listed = ", ".join(f"{ENV_PREFIX}{name.upper()}" for name in missing)
            raise ConfigurationError(f"Missing required configuration: {listed}")
