"""Typed configuration models for known job actions.

Tasks stay dict-shaped inside the resolution engines. Executors convert a
task's config into the model of its action with :func:`validate_task` before
acting on it, so a misspelled or mistyped field fails before any side effect.

The catalog also decides how a bare scalar is normalized:

    ensure_dir: "~/.config"        ->  {"path": "~/.config"}
    install_package: "git"         ->  {"name": "git"}
    some_custom_action: "x"        ->  {"value": "x"}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ActionValidationError

if TYPE_CHECKING:
    from .jobs import Task

DEFAULT_SCALAR_FIELD = "value"


class ActionConfig(BaseModel):
    """Base for action configs; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class EnsureDirConfig(ActionConfig):
    path: str = Field(description="Directory to create")
    mode: str | int | None = Field(default=None, description="Permissions, e.g. '0755'")


class EnsureFileConfig(ActionConfig):
    path: str = Field(description="File to create")
    content: str | None = Field(default=None, description="Inline content")
    content_source: str | None = Field(
        default=None, description="File under files_dir to take content from"
    )
    render: bool = Field(default=False, description="Render content_source as a template")
    mode: str | int | None = Field(default=None, description="Permissions, e.g. '0644'")


class CopyConfig(ActionConfig):
    src: str = Field(description="Source file")
    dst: str = Field(description="Destination path")
    mode: str | int | None = None


class SymlinkConfig(ActionConfig):
    src: str = Field(description="Link target")
    dst: str = Field(description="Link location")
    backup: bool = Field(default=True, description="Back up an existing file at dst")


class RunCommandConfig(ActionConfig):
    name: str = Field(description="Display name")
    command: str = Field(description="Command executed when the check fails")
    when: str | None = Field(default=None, description="Check command; success skips the task")
    shell: str | None = Field(default=None, description="bash, zsh, sh, powershell or cmd")
    workdir: str | None = None
    env: dict[str, str] = Field(default_factory=dict)


class PackageConfig(ActionConfig):
    name: str = Field(description="Package name")
    state: str = Field(default="present", description="present or absent")
    managers: dict[str, str] = Field(
        default_factory=dict, description="Manager-specific package names"
    )
    prefer: list[str] = Field(default_factory=list, description="Preferred manager order")
    only: list[str] = Field(default_factory=list, description="Allowed managers (no fallback)")
    check_system_wide: bool = False


class ManagePackagesConfig(ActionConfig):
    packages: list[str | PackageConfig] = Field(description="Packages to manage")


class AddRepoConfig(ActionConfig):
    name: str = Field(description="Repository name")
    url: str | None = None
    key: str | None = Field(default=None, description="Signing key URL")
    only: list[str] = Field(default_factory=list)
    prefer: list[str] = Field(default_factory=list)


class GenericActionConfig(BaseModel):
    """Config of an action this catalog does not know; any fields are kept."""

    model_config = ConfigDict(extra="allow", frozen=True)


@dataclass(frozen=True)
class ActionSpec:
    model: type[BaseModel]
    scalar_field: str = DEFAULT_SCALAR_FIELD


ACTION_CATALOG: dict[str, ActionSpec] = {
    "ensure_dir": ActionSpec(EnsureDirConfig, "path"),
    "ensure_file": ActionSpec(EnsureFileConfig, "path"),
    "copy": ActionSpec(CopyConfig),
    "symlink": ActionSpec(SymlinkConfig),
    "run_command": ActionSpec(RunCommandConfig),
    "install_package": ActionSpec(PackageConfig, "name"),
    "install": ActionSpec(PackageConfig, "name"),
    "uninstall_package": ActionSpec(PackageConfig, "name"),
    "manage_packages": ActionSpec(ManagePackagesConfig),
    "add_repo": ActionSpec(AddRepoConfig, "name"),
}


def scalar_field(action: str) -> str:
    """Config key a bare scalar is stored under for this action."""
    spec = ACTION_CATALOG.get(action)
    return spec.scalar_field if spec else DEFAULT_SCALAR_FIELD


def validate_action_config(action: str, config: dict[str, Any], task_id: str = "") -> BaseModel:
    """Convert a config dict into the typed model of its action.

    Raises:
        ActionValidationError: If the config does not fit the model
    """
    spec = ACTION_CATALOG.get(action)
    model = spec.model if spec else GenericActionConfig
    try:
        return model.model_validate(config)
    except ValidationError as e:
        raise ActionValidationError(task_id or action, action, str(e)) from e


def validate_task(task: Task) -> BaseModel:
    """Convert a task's config into the typed model of its action."""
    return validate_action_config(task.action, dict(task.config), task.id)
