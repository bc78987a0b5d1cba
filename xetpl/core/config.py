"""
xetpl Configuration Management
==============================

Layered configuration with dot notation access.

Configuration Loading Priority (highest to lowest):
1. Runtime overrides
2. Environment variables (XETPL_*)
3. config/{env}.py (environment-specific)
4. config/app.py (base configuration)
5. Default values

Environment variables name a section and a key separated by the first
underscore: ``XETPL_TEMPLATE_MAX_INCLUDE_DEPTH=8`` sets
``template.max_include_depth``.

Example:
    # config/app.py
    config = {
        "template": {
            "root": "/srv/app",
            "strict": False,
        },
        "cache": {
            "backend": "memory",
        },
    }

    config = Config.load("config")
    root = config.get("template.root")
"""

from __future__ import annotations

import copy
import importlib.util
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar, Union

import orjson

T = TypeVar("T")

ENV_PREFIX = "XETPL_"

DEFAULTS: Dict[str, Any] = {
    "template": {
        "root": ".",
        "web_root": "",
        "compiled_dir": "files/cache/template_compiled",
        "extension": ".html",
        "strict": True,
        "max_include_depth": 16,
        "debug": False,
    },
    "cache": {
        "backend": "file",
        "max_size": 100,
    },
    "forms": {
        "csrf": False,
        "csrf_field": "_csrf_token",
    },
    "csrf": {
        "secret_key": None,
        "token_lifetime": 3600,
    },
    "log": {
        "level": "WARNING",
        "format": "text",
    },
}


@dataclass
class ConfigSource:
    """Represents a configuration source with priority."""
    name: str
    data: Dict[str, Any]
    priority: int = 0


class Config:
    """
    Compiler configuration container.

    Values are nested dicts addressed with dot notation; later sources
    with a higher priority override earlier ones key by key.

    Example:
        config = Config()
        config.set("template.strict", False)

        config.get("template.strict")          # False
        config.get_int("cache.max_size")       # 100
        config.get("template.missing", "x")    # "x"
    """

    def __init__(self, defaults: bool = True) -> None:
        self._sources: List[ConfigSource] = []
        self._cache: Dict[str, Any] = {}
        self._merged: Dict[str, Any] = {}
        self._dirty = True

        if defaults:
            self.add_source("defaults", copy.deepcopy(DEFAULTS), priority=0)

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        env: bool = True,
    ) -> "Config":
        """
        Build a configuration from a directory or file plus the environment.

        Args:
            config_path: Config directory (app.py and {XETPL_ENV}.py) or a
                single Python config file
            env: Whether to apply XETPL_* environment overrides
        """
        config = cls()
        if config_path is not None:
            path = Path(config_path)
            if path.is_dir():
                config.load_from_path(path)
            elif path.is_file():
                config.add_source(path.name, config._load_python_config(path), priority=10)
            else:
                raise FileNotFoundError(f"Config path not found: {path}")
        if env:
            config._load_env_overrides()
        return config

    def load_from_path(self, config_path: Path) -> None:
        """
        Load configuration from a directory.

        Loads:
        - app.py (base configuration)
        - {XETPL_ENV}.py (environment-specific)
        """
        if not config_path.exists():
            return

        base_config = config_path / "app.py"
        if base_config.exists():
            self.add_source("app", self._load_python_config(base_config), priority=10)

        env = os.getenv("XETPL_ENV", "development")
        env_config = config_path / f"{env}.py"
        if env_config.exists():
            self.add_source(f"env:{env}", self._load_python_config(env_config), priority=20)

    def _load_python_config(self, path: Path) -> Dict[str, Any]:
        """Load configuration from Python file."""
        spec = importlib.util.spec_from_file_location("xetpl_config", path)
        if spec is None or spec.loader is None:
            return {}

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        # A 'config' dict, or every public module-level name
        if hasattr(module, "config"):
            return module.config

        return {
            key: value
            for key, value in vars(module).items()
            if not key.startswith("_")
        }

    def _load_env_overrides(self) -> None:
        """Load overrides from XETPL_* environment variables."""
        overrides: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX) or key == "XETPL_ENV":
                continue
            section, _, name = key[len(ENV_PREFIX):].lower().partition("_")
            if not name:
                continue
            overrides[f"{section}.{name}"] = self._parse_env_value(value)

        if overrides:
            self.add_source("env_vars", self._unflatten(overrides), priority=100)

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        # JSON (for complex values)
        if value.startswith(("{", "[")):
            try:
                return orjson.loads(value)
            except orjson.JSONDecodeError:
                pass

        return value

    def _unflatten(self, flat: Dict[str, Any]) -> Dict[str, Any]:
        """Convert flat dot-notation keys to nested dict."""
        result: Dict[str, Any] = {}

        for key, value in flat.items():
            parts = key.split(".")
            current = result

            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = value

        return result

    def add_source(
        self,
        name: str,
        data: Dict[str, Any],
        priority: int = 0,
    ) -> None:
        """Add a configuration source."""
        self._sources.append(ConfigSource(name=name, data=data, priority=priority))
        self._dirty = True
        self._cache.clear()

    def _merge(self) -> None:
        """Merge all sources into single configuration."""
        if not self._dirty:
            return

        # Lower priority first, so higher overrides
        self._merged = {}
        for source in sorted(self._sources, key=lambda s: s.priority):
            self._deep_merge(self._merged, copy.deepcopy(source.data))

        self._dirty = False
        self._cache.clear()

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: T = None) -> Union[Any, T]:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., "template.strict")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._cache:
            return self._cache[key]

        self._merge()

        current: Any = self._merged
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]

        self._cache[key] = current
        return current

    def get_int(self, key: str, default: int = 0) -> int:
        """Get configuration value as integer."""
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get configuration value as float."""
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get configuration value as boolean."""
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "on", "1")
        return bool(value)

    def set(self, key: str, value: Any) -> None:
        """
        Set a runtime configuration value.

        Runtime values have the highest priority.
        """
        runtime_source = next((s for s in self._sources if s.name == "runtime"), None)
        if runtime_source is None:
            runtime_source = ConfigSource(name="runtime", data={}, priority=1000)
            self._sources.append(runtime_source)

        parts = key.split(".")
        current = runtime_source.data
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

        self._dirty = True
        self._cache.clear()

    def has(self, key: str) -> bool:
        """Check if configuration key exists."""
        return self.get(key) is not None

    def all(self) -> Dict[str, Any]:
        """Get all configuration as dict."""
        self._merge()
        return copy.deepcopy(self._merged)

    def section(self, prefix: str) -> Dict[str, Any]:
        """Get all values under a prefix."""
        value = self.get(prefix)
        if isinstance(value, dict):
            return value.copy()
        return {}

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: str) -> bool:
        return self.has(key)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace the global configuration, None to reset it."""
    global _config
    _config = config
