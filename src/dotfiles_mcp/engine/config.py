"""Top-level dotfiles configuration (dotfiles.yaml).

The configuration tells the resolution engines where the variable and job
indexes live and carries a few global settings.

Configuration file location priority:
1. Explicit path passed to ConfigLoader
2. DOTFILES_CONFIG environment variable
3. Search list: ./dotfiles.yaml, ./dotfiles.yml, ./.dotfiles.yaml, ./.dotfiles.yml,
   ~/.dotfiles/dotfiles.yaml, ~/.dotfiles/dotfiles.yml,
   ~/.config/dotfiles/dotfiles.yaml, ~/.config/dotfiles/dotfiles.yml
4. Built-in defaults (if no config file found)

Example config file:
```yaml
metadata:
  name: "My Dotfiles"
  version: "1.0.0"

paths:
  variables_dir: variables
  variables_index: index.yaml
  jobs_dir: jobs
  jobs_index: index.yaml

settings:
  log_level: info
  create_backups: true
  strict_templates: false
```

Relative directories are resolved against the base path, which is the
directory holding the config file (or the current directory when running on
defaults).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DOTFILES_CONFIG"

CONFIG_FILE_NAMES = ("dotfiles.yaml", "dotfiles.yml", ".dotfiles.yaml", ".dotfiles.yml")

# ===========================================================================
# Configuration Models
# ===========================================================================


class Metadata(BaseModel):
    """Information about the dotfiles repository."""

    name: str = Field(default="My Dotfiles", description="Repository display name")
    version: str = Field(default="1.0.0")
    author: str = Field(default="User")
    description: str = Field(default="Personal dotfiles configuration")
    repository: str = Field(default="", description="Upstream repository URL")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("metadata.name is required")
        return v


class PathsConfig(BaseModel):
    """Directory layout, relative to the base path unless absolute."""

    variables_dir: str = Field(default="variables", description="Variables directory")
    variables_index: str = Field(default="index.yaml", description="Variables index file name")
    jobs_dir: str = Field(default="jobs", description="Jobs directory")
    jobs_index: str = Field(default="index.yaml", description="Jobs index file name")
    files_dir: str = Field(default="files", description="Files used by copy/symlink actions")
    scripts_dir: str = Field(default="scripts", description="Scripts used by run_command")
    backup_dir: str = Field(default="~/.dotfiles-backup", description="Backup directory")

    @field_validator("variables_dir", "variables_index", "jobs_dir", "jobs_index")
    @classmethod
    def validate_required(cls, v: str, info: ValidationInfo) -> str:
        if not v.strip():
            raise ValueError(f"paths.{info.field_name} is required")
        return v


class Settings(BaseModel):
    """Global settings."""

    log_level: str = Field(default="info", description="Log level for the CLI/server")
    dry_run: bool = Field(default=False, description="Plan only, never execute")
    create_backups: bool = Field(default=True, description="Back up files before replacing")
    auto_update: bool = Field(default=False, description="Pull the repository before applying")
    strict_templates: bool = Field(
        default=False, description="Fail on undefined variables while rendering variables"
    )


class DotfilesConfig(BaseModel):
    """Complete dotfiles.yaml configuration."""

    metadata: Metadata = Field(default_factory=Metadata)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    settings: Settings = Field(default_factory=Settings)

    def _resolve(self, base_path: str | Path, directory: str) -> Path:
        path = Path(directory).expanduser()
        if path.is_absolute():
            return path
        return Path(base_path).resolve() / path

    def variables_path(self, base_path: str | Path) -> Path:
        return self._resolve(base_path, self.paths.variables_dir)

    def variables_index_path(self, base_path: str | Path) -> Path:
        return self.variables_path(base_path) / self.paths.variables_index

    def jobs_path(self, base_path: str | Path) -> Path:
        return self._resolve(base_path, self.paths.jobs_dir)

    def jobs_index_path(self, base_path: str | Path) -> Path:
        return self.jobs_path(base_path) / self.paths.jobs_index

    def files_path(self, base_path: str | Path) -> Path:
        return self._resolve(base_path, self.paths.files_dir)

    def scripts_path(self, base_path: str | Path) -> Path:
        return self._resolve(base_path, self.paths.scripts_dir)

    def backup_path(self, base_path: str | Path) -> Path:
        return self._resolve(base_path, self.paths.backup_dir)


# ===========================================================================
# Loader
# ===========================================================================


def search_paths(cwd: Path | None = None, home: Path | None = None) -> list[Path]:
    """Candidate config files, in order of preference."""
    cwd = cwd or Path.cwd()
    home = home or Path.home()
    candidates = [cwd / name for name in CONFIG_FILE_NAMES]
    for directory in (home / ".dotfiles", home / ".config" / "dotfiles"):
        candidates.extend(directory / name for name in CONFIG_FILE_NAMES[:2])
    return candidates


class ConfigLoader:
    """Loader for dotfiles.yaml.

    Usage:
        ```python
        loader = ConfigLoader()
        config = loader.load_config()
        base = loader.base_path  # directory of the file that was loaded
        ```

    The loaded config is cached; call load_config() once per process.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        cwd: Path | None = None,
        home: Path | None = None,
    ):
        """Initialize config loader.

        Args:
            config_path: Explicit path to config file (optional)
            cwd: Directory searched first (default: current directory)
            home: Home directory used by the search list (default: ~)
        """
        self._config: DotfilesConfig | None = None
        self._explicit_path = Path(config_path).expanduser() if config_path else None
        self._cwd = cwd or Path.cwd()
        self._home = home or Path.home()
        self.config_path: Path | None = None

    @property
    def base_path(self) -> Path:
        """Directory of the loaded config file, or the search directory on defaults."""
        if self.config_path is not None:
            return self.config_path.resolve().parent
        return self._cwd.resolve()

    def get_config_path(self) -> Path | None:
        """Determine config file path using priority order.

        Returns:
            Path to config file, or None when running on defaults

        Raises:
            ConfigError: If an explicit or DOTFILES_CONFIG path does not exist
        """
        # Priority 1: Explicit path
        if self._explicit_path:
            if self._explicit_path.is_file():
                return self._explicit_path
            raise ConfigError(f"config file does not exist: {self._explicit_path}")

        # Priority 2: Environment variable
        env_path_str = os.getenv(CONFIG_ENV_VAR)
        if env_path_str:
            env_path = Path(env_path_str).expanduser()
            if env_path.is_file():
                return env_path
            raise ConfigError(f"{CONFIG_ENV_VAR} path does not exist: {env_path}")

        # Priority 3: Search list
        for candidate in search_paths(self._cwd, self._home):
            if candidate.is_file():
                return candidate

        return None

    def load_config(self) -> DotfilesConfig:
        """Load and validate configuration.

        Returns:
            Validated DotfilesConfig (defaults when no file is found)

        Raises:
            ConfigError: If the config file is missing, unreadable or invalid
        """
        if self._config is not None:
            return self._config

        config_path = self.get_config_path()
        self.config_path = config_path

        if config_path is None:
            logger.info("No dotfiles.yaml found, using built-in defaults")
            self._config = DotfilesConfig()
            return self._config

        logger.info(f"Loading dotfiles config from: {config_path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}") from e

        if raw_config is None:
            raw_config = {}
        if not isinstance(raw_config, dict):
            raise ConfigError(f"Config file must contain a YAML dictionary: {config_path}")

        # Null sections fall back to their defaults
        raw_config = {key: value for key, value in raw_config.items() if value is not None}

        try:
            config = DotfilesConfig(**raw_config)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

        logger.info(
            f"Loaded dotfiles config '{config.metadata.name}': "
            f"variables={config.paths.variables_dir}, jobs={config.paths.jobs_dir}"
        )
        self._config = config
        return config
