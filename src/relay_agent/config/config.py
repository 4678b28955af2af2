"""Layered configuration loader."""

import json
import os
from pathlib import Path
from typing import Any, Mapping

from rich.console import Console

from relay_agent.errors import ConfigError

from .defaults import DEFAULT_CONFIG

_console = Console(stderr=True)

ENV_PREFIX = "RELAY_AGENT_"


class Config:
    """
    Layered settings loader.
    Precedence: set() overrides > environment > project file > global file > defaults
    """

    def __init__(
        self,
        global_path: Path | None = None,
        project_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config: dict[str, Any] = {}
        self.global_path = global_path or Path.home() / ".relay_agent" / "config.json"
        self.project_path = project_path or Path.cwd() / ".relay_agent.json"
        self._load_defaults()
        self._load_file(self.global_path)
        self._load_file(self.project_path)
        self._load_env(os.environ if environ is None else environ)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Config":
        """Defaults plus the given values, ignoring files and the environment."""
        config = cls.__new__(cls)
        config._config = dict(DEFAULT_CONFIG)
        config._config.update(values)
        config.global_path = None
        config.project_path = None
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Override a value for this process."""
        self._config[key] = value

    def __getitem__(self, key: str) -> Any:
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        return key in self._config

    def _load_defaults(self) -> None:
        self._config.update(DEFAULT_CONFIG)

    def _load_file(self, path: Path) -> None:
        """Merge a JSON settings file if it exists.

        An unreadable or malformed file is reported and skipped. A file whose
        top level is not an object is a configuration error.
        """
        if not path.exists():
            return
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            _console.print(f"[yellow]Ignoring config file {path}: {e}[/yellow]")
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        self._config.update(data)

    def _load_env(self, environ: Mapping[str, str]) -> None:
        """Load RELAY_AGENT_* environment variables."""
        for key, value in environ.items():
            if key.startswith(ENV_PREFIX):
                config_key = key[len(ENV_PREFIX):].lower()
                self._config[config_key] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse an environment value into the closest type."""
        # Boolean
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        # Integer
        try:
            return int(value)
        except ValueError:
            pass

        # Float
        try:
            return float(value)
        except ValueError:
            pass

        # JSON list / object (e.g. RELAY_AGENT_RETRYABLE_ERRORS)
        if value[:1] in ("[", "{"):
            try:
                return json.loads(value)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in environment value: {value!r}") from e

        # String
        return value

    def to_dict(self) -> dict[str, Any]:
        """Return a copy of all settings."""
        return self._config.copy()
