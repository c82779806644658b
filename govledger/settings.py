"""ConfigManager — environment profiles and typed runtime settings."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from govledger import config

logger = logging.getLogger(__name__)

# All known configuration keys with defaults
_CONFIG_KEYS: dict[str, dict[str, Any]] = {
    "GOVLEDGER_ENV": {"default": "development", "description": "Environment profile"},
    "GOVLEDGER_LOG_LEVEL": {"default": "INFO", "description": "Logging level"},
    "GOVLEDGER_GIT_BINARY": {"default": "git", "description": "git executable"},
    "GOVLEDGER_MAX_WORKERS": {
        "default": config.DEFAULT_MAX_WORKERS,
        "description": "Threads in the blocking worker pool",
    },
    "GOVLEDGER_FETCH_JOBS": {
        "default": config.DEFAULT_FETCH_JOBS,
        "description": "Parallel jobs for fetch --all",
    },
    "GOVLEDGER_GC_AGGRESSIVE": {"default": "true", "description": "Run gc with --aggressive"},
    "GOVLEDGER_COMMITTER_NAME": {
        "default": config.DEFAULT_COMMITTER_NAME,
        "description": "Identity for repository-level commits",
    },
    "GOVLEDGER_COMMITTER_EMAIL": {
        "default": config.DEFAULT_COMMITTER_EMAIL,
        "description": "E-mail for repository-level commits",
    },
}

_PROFILES: dict[str, dict[str, str]] = {
    "development": {
        "GOVLEDGER_ENV": "development",
        "GOVLEDGER_LOG_LEVEL": "DEBUG",
    },
    "production": {
        "GOVLEDGER_ENV": "production",
        "GOVLEDGER_LOG_LEVEL": "WARNING",
    },
    "testing": {
        "GOVLEDGER_ENV": "testing",
        "GOVLEDGER_LOG_LEVEL": "DEBUG",
        "GOVLEDGER_GC_AGGRESSIVE": "false",
        "GOVLEDGER_MAX_WORKERS": "2",
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Typed view of the merged configuration."""

    env: str = "development"
    log_level: str = "INFO"
    git_binary: str = "git"
    max_workers: int = Field(default=config.DEFAULT_MAX_WORKERS, ge=1)
    fetch_jobs: int = Field(default=config.DEFAULT_FETCH_JOBS, ge=1)
    gc_aggressive: bool = True
    committer_name: str = config.DEFAULT_COMMITTER_NAME
    committer_email: str = config.DEFAULT_COMMITTER_EMAIL

    @classmethod
    def from_config(cls, values: dict[str, str]) -> Settings:
        """Build settings from a flat ``GOVLEDGER_*`` dict."""
        return cls(
            env=values["GOVLEDGER_ENV"],
            log_level=values["GOVLEDGER_LOG_LEVEL"].upper(),
            git_binary=values["GOVLEDGER_GIT_BINARY"],
            max_workers=int(values["GOVLEDGER_MAX_WORKERS"]),
            fetch_jobs=int(values["GOVLEDGER_FETCH_JOBS"]),
            gc_aggressive=values["GOVLEDGER_GC_AGGRESSIVE"].strip().lower() in _TRUE_VALUES,
            committer_name=values["GOVLEDGER_COMMITTER_NAME"],
            committer_email=values["GOVLEDGER_COMMITTER_EMAIL"],
        )


class ConfigManager:
    """Load govledger configuration across environments."""

    def load_config(self, project_path: str | Path | None = None) -> dict[str, str]:
        """Load merged config: defaults -> profile -> config.json -> .env -> env vars.

        Returns a flat dict of configuration values.
        """
        config_values: dict[str, str] = {}

        # 1. Defaults
        for key, info in _CONFIG_KEYS.items():
            config_values[key] = str(info["default"])

        # 2. Profile overrides
        env_name = os.environ.get("GOVLEDGER_ENV", config_values["GOVLEDGER_ENV"])
        config_values.update(_PROFILES.get(env_name, {}))

        if project_path is not None:
            root = Path(project_path)

            # 3. .govledger/config.json
            config_json = root / ".govledger" / "config.json"
            if config_json.is_file():
                try:
                    data = json.loads(config_json.read_text(encoding="utf-8"))
                    for k, v in data.items():
                        config_values[k] = str(v)
                except (json.JSONDecodeError, OSError):
                    logger.debug("Could not read %s", config_json, exc_info=True)

            # 4. .env file
            env_file = root / ".env"
            if env_file.is_file():
                for line in env_file.read_text(encoding="utf-8").splitlines():
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" in line:
                        k, v = line.split("=", 1)
                        config_values[k.strip()] = v.strip()

        # 5. Environment variables override all
        for key in _CONFIG_KEYS:
            env_val = os.environ.get(key)
            if env_val is not None:
                config_values[key] = env_val

        return config_values

    def load_settings(self, project_path: str | Path | None = None) -> Settings:
        """Return the merged configuration as :class:`Settings`."""
        return Settings.from_config(self.load_config(project_path))


def configure_logging(settings: Settings) -> None:
    """Apply the configured level to the ``govledger`` logger.

    Handlers are left to the host application.
    """
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        logger.warning("Unknown log level %r, keeping INFO", settings.log_level)
        level = logging.INFO
    logging.getLogger("govledger").setLevel(level)
