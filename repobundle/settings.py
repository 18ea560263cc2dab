"""
Settings for repobundle.

Loads configuration from environment variables, optionally layered over a
YAML file named by REPOBUNDLE_CONFIG. Settings are memoized process-wide;
call reset_settings() to make the next load observe the current environment.
"""
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_INDEX_URL = "https://pypi.org"
DEFAULT_BOOTSTRAP_PACKAGE = "pip"
DEFAULT_HTTP_TIMEOUT = 60.0

# YAML key -> environment variable
_ENV_KEYS = {
    'index_url': "REPOBUNDLE_INDEX_URL",
    'bootstrap_package': "REPOBUNDLE_BOOTSTRAP_PACKAGE",
    'python': "REPOBUNDLE_PYTHON",
    'http_timeout': "REPOBUNDLE_HTTP_TIMEOUT",
}


class ToolSettings:
    """Configuration for driving pip and the package index."""

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX_URL,
        bootstrap_package: str = DEFAULT_BOOTSTRAP_PACKAGE,
        python: Optional[str] = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT
    ):
        if not index_url:
            raise ValueError("index_url must not be empty")
        if not bootstrap_package:
            raise ValueError("bootstrap_package must not be empty")

        self.index_url = index_url.rstrip('/')
        self.bootstrap_package = bootstrap_package
        self.python = python or sys.executable

        try:
            self.http_timeout = float(http_timeout)
        except (TypeError, ValueError):
            raise ValueError(f"http_timeout must be a number, got {http_timeout!r}")
        if self.http_timeout <= 0:
            raise ValueError(f"http_timeout must be positive, got {self.http_timeout}")

    @property
    def simple_index_url(self) -> str:
        """URL of the PEP 503 simple index pip installs from."""
        return f"{self.index_url}/simple"

    def pip_command(self) -> list:
        """Base command line for invoking pip."""
        return [self.python, "-m", "pip"]

    @classmethod
    def from_yaml(cls, yaml_path: Path, environ: Optional[Dict[str, str]] = None) -> 'ToolSettings':
        """
        Load settings from a YAML file, with environment overrides applied.

        Raises:
            FileNotFoundError: If the YAML file doesn't exist
            ValueError: If the file is not a mapping or holds unknown keys
        """
        if not yaml_path.exists():
            raise FileNotFoundError(f"Settings file not found: {yaml_path}")

        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {yaml_path}")

        unknown = sorted(set(data) - set(_ENV_KEYS))
        if unknown:
            raise ValueError(f"Unknown keys in {yaml_path}: {', '.join(unknown)}")

        return cls.from_env(environ, base=data)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, base: Optional[Dict[str, Any]] = None) -> 'ToolSettings':
        """Build settings from environment variables over optional base values."""
        if environ is None:
            environ = os.environ

        values = dict(base or {})
        for key, env_name in _ENV_KEYS.items():
            if environ.get(env_name):
                values[key] = environ[env_name]

        return cls(**values)


@lru_cache(maxsize=1)
def load_settings() -> ToolSettings:
    """Get memoized process-wide settings."""
    config_path = os.getenv("REPOBUNDLE_CONFIG")
    if config_path:
        return ToolSettings.from_yaml(Path(config_path).expanduser())
    return ToolSettings.from_env()


def reset_settings() -> None:
    """Forget memoized settings so the next load re-reads the environment."""
    load_settings.cache_clear()
