"""
Configuration file loading.

Loads hubsync.yaml (plus an optional hubsync.{env}.yaml overlay) from a project
directory.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from hubsync.config.resolver import resolve_config
from hubsync.exceptions import ConfigurationError

CONFIG_FILENAME = "hubsync.yaml"

DEFAULTS: dict[str, Any] = {
    "state_dir": ".hubsync",
    "store": {"path": ".hubsync/local.duckdb"},
    "remote": {"root": "/hubsync", "inbox": "inbox", "snapshot": "master_data.json"},
    "http": {"timeout": 60},
    "admin": "Admin",
}


class Config:
    """hubsync configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any], project_dir: Path | None = None):
        self.data = data
        self.project_dir = project_dir or Path.cwd()

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if "." in key:
            if key not in self:
                raise KeyError(f"Config key '{key}' not found")
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value, self.project_dir)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def resolve_path(self, key: str) -> Path:
        """Resolve a path-valued setting relative to the project directory."""
        raw = self.get(key)
        if raw is None:
            raise ConfigurationError(f"Configuration key '{key}' is not set")
        path = Path(str(raw)).expanduser()
        return path if path.is_absolute() else self.project_dir / path

    @property
    def state_dir(self) -> Path:
        return self.resolve_path("state_dir")

    @property
    def store_path(self) -> str:
        raw = str(self.get("store.path", ":memory:"))
        if raw == ":memory:":
            return raw
        return str(self.resolve_path("store.path"))

    @property
    def remote_root(self) -> str:
        return "/" + str(self.get("remote.root", "/hubsync")).strip("/")

    @property
    def snapshot_path(self) -> str:
        return f"{self.remote_root}/{str(self.get('remote.snapshot', 'master_data.json')).strip('/')}"

    @property
    def inbox_path(self) -> str:
        return f"{self.remote_root}/{str(self.get('remote.inbox', 'inbox')).strip('/')}"

    @property
    def http_timeout(self) -> float:
        return float(self.get("http.timeout", 60))

    def validate(self) -> None:
        """Validate configuration structure."""
        errors = []
        for section in ("store", "remote", "http", "logging"):
            value = self.data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Configuration '{section}' must be a mapping, got {type(value).__name__}")
        try:
            if self.http_timeout <= 0:
                errors.append("Configuration 'http.timeout' must be positive")
        except (TypeError, ValueError):
            errors.append(f"Configuration 'http.timeout' must be a number, got {self.get('http.timeout')!r}")
        if errors:
            raise ConfigurationError("\n".join(errors))


def load_config(project_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load hubsync configuration.

    A missing hubsync.yaml is not an error: the defaults describe a usable
    local-only installation. The optional hubsync.{env}.yaml overrides the base.

    Args:
        project_path: Path to project root (default: current directory)
        env: Environment name (dev, staging, prod)

    Returns:
        Validated Config instance
    """
    if project_path is None:
        project_path = Path.cwd()

    config_data: dict[str, Any] = {}
    _merge_dict(config_data, _deep_copy(DEFAULTS))

    base_config_path = project_path / CONFIG_FILENAME
    if base_config_path.exists():
        _merge_dict(config_data, _read_yaml(base_config_path))

    if env:
        env_config_path = project_path / f"hubsync.{env}.yaml"
        if env_config_path.exists():
            _merge_dict(config_data, _read_yaml(env_config_path))

    config = Config(resolve_config(config_data, env or "dev"), project_path)
    config.validate()
    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        raise ConfigurationError(
            f"Error parsing {path.name}{where}: {e}\n"
            f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes"
        ) from e
    except PermissionError as e:
        raise ConfigurationError(f"Permission denied reading {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping, got {type(data).__name__}")
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value


def _deep_copy(data: dict) -> dict:
    return {k: _deep_copy(v) if isinstance(v, dict) else v for k, v in data.items()}
