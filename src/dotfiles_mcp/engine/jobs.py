"""
Job resolution: an ordered, platform-filtered task list from a job index.

Example jobs/index.yaml:
    imports:
      - shell.yaml
      - path: "{{ Platform.OS }}.yaml"
        condition: 'Platform.OS != "windows"'

    ensure_dir:
      - "~/.config"
      - path: "~/.local/bin"
        mode: "0755"

    install_package: git

    symlink:
      src: "files/vimrc"
      dst: "~/.vimrc"
      condition: 'Platform.OS == "linux"'

Every top-level key except ``imports`` is an action. Its value is a scalar
(one task), a list (one task per item) or a mapping (one task). Action keys
are processed in lexicographic order and imports before local actions, so
the ``order`` of each task is stable across runs.
"""

import copy
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .actions import scalar_field
from .config import DotfilesConfig
from .documents import load_document
from .exceptions import ConditionEvaluationError, UnsupportedShapeError
from .imports import ImportChain, ImportResolver, normalize_imports
from .templating import TemplatingEngine

logger = logging.getLogger(__name__)

IMPORTS_KEY = "imports"
CONDITION_KEY = "condition"

Scalar = str | int | float | bool


class Task(BaseModel):
    """
    One normalized unit of declared work.

    Tasks are immutable once produced: fields cannot be reassigned and the
    top-level keys of ``config`` are a read-only mapping. Executors that need a
    mutable payload convert it with :func:`validate_task` or ``dict(task.config)``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Display identifier")
    action: str = Field(description="Action key, e.g. 'symlink'")
    config: Mapping[str, Any] = Field(description="Action payload, without the condition")
    condition: str = Field(default="", description="Condition gating the task (empty: always)")
    source: str = Field(default="", description="Defining file, relative to the dotfiles root")
    order: int = Field(description="Position over the whole import tree (1-based)")

    @field_validator("config", mode="after")
    @classmethod
    def _freeze_config(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_serializer("config")
    def _dump_config(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)


def _shape_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__


class JobParser:
    """
    Parses a job index and its imports into Task records.

    The order counter spans every file reached from one index; create a new
    parser (or call parse_jobs_index again, which resets it) per run.
    """

    def __init__(
        self,
        config: DotfilesConfig,
        base_path: str | Path,
        engine: TemplatingEngine | None = None,
        file_exists: Callable[[Path], bool] | None = None,
    ):
        self.config = config
        self.base_path = Path(base_path).resolve()
        self.engine = engine or TemplatingEngine(self.base_path)
        self.resolver = ImportResolver(self.engine, file_exists)
        self.order_counter = 0
        self.chain = ImportChain()
        self._current_source = ""

    @property
    def jobs_dir(self) -> Path:
        return self.config.jobs_path(self.base_path)

    def parse_jobs_index(self, index_path: str | Path, variables: dict[str, Any]) -> list[Task]:
        """
        Parse an index file and everything it imports, unfiltered.

        Args:
            index_path: Job index file
            variables: Resolved variables used for import paths and conditions

        Returns:
            Tasks in order (imports first, then local actions by key)
        """
        self.order_counter = 0
        self.chain = ImportChain()
        return self._parse_file(Path(index_path), variables)

    def _parse_file(self, path: Path, variables: dict[str, Any]) -> list[Task]:
        with self.chain.entered(path):
            document = load_document(path)
            data = document.data

            tasks: list[Task] = []
            for import_file in normalize_imports(data.get(IMPORTS_KEY), path):
                import_path = self.resolver.resolve(import_file, variables, self.jobs_dir)
                if import_path is None:
                    continue
                logger.debug(f"Importing jobs from {import_path}")
                tasks.extend(self._parse_file(import_path, variables))

            # Restore after imports, which set their own source
            self._current_source = self._relative_source(path)
            actions = {key: value for key, value in data.items() if key != IMPORTS_KEY}
            tasks.extend(self.parse_jobs_config(actions))
            return tasks

    def parse_jobs_config(self, actions: dict[str, Any]) -> list[Task]:
        """Normalize a mapping of action keys into tasks, in key order."""
        tasks = []
        for action_key in sorted(actions, key=str):
            tasks.extend(self._parse_action(str(action_key), actions[action_key]))
        return tasks

    def _parse_action(self, action: str, value: Any) -> list[Task]:
        if isinstance(value, Scalar):
            return [self._make_task(action, {scalar_field(action): value})]

        if isinstance(value, dict):
            return [self._make_task(action, copy.deepcopy(value))]

        if isinstance(value, list):
            tasks = []
            for index, item in enumerate(value):
                if isinstance(item, Scalar):
                    tasks.append(self._make_task(action, {scalar_field(action): item}))
                elif isinstance(item, dict):
                    tasks.append(self._make_task(action, copy.deepcopy(item)))
                else:
                    raise UnsupportedShapeError(
                        action,
                        f"list item #{index + 1} is {_shape_name(item)}",
                        self._current_source,
                    )
            return tasks

        raise UnsupportedShapeError(action, _shape_name(value), self._current_source)

    def _make_task(self, action: str, config: dict[str, Any]) -> Task:
        self.order_counter += 1
        task_id = self._task_id(action, config)
        condition = self._extract_condition(config)
        return Task(
            id=task_id,
            action=action,
            config=config,
            condition=condition,
            source=self._current_source,
            order=self.order_counter,
        )

    def _task_id(self, action: str, config: dict[str, Any]) -> str:
        for key in ("name", "path", "value"):
            if isinstance(config.get(key), str):
                return f"{action}: {config[key]}"

        src, dst = config.get("src"), config.get("dst")
        if isinstance(src, str) and isinstance(dst, str):
            return f"{action}: {src} -> {dst}"

        packages = config.get("packages")
        if isinstance(packages, list) and packages:
            return f"{action}: {len(packages)} packages"

        return f"{action}_{self.order_counter}"

    @staticmethod
    def _extract_condition(config: dict[str, Any]) -> str:
        if CONDITION_KEY not in config:
            return ""

        condition = config.pop(CONDITION_KEY)
        if condition is None:
            return ""
        if isinstance(condition, bool):
            return "true" if condition else "false"
        if not isinstance(condition, str):
            raise ConditionEvaluationError(
                str(condition), f"condition must be a string, got {type(condition).__name__}"
            )
        return condition

    def _relative_source(self, path: Path) -> str:
        try:
            return str(path.resolve().relative_to(self.base_path))
        except ValueError:
            return path.name


def filter_tasks(
    tasks: list[Task], variables: dict[str, Any], engine: TemplatingEngine
) -> list[Task]:
    """
    Drop tasks whose condition evaluates false.

    Raises:
        ConditionEvaluationError: If any condition is invalid; the whole run aborts
    """
    kept = []
    for task in tasks:
        if task.condition:
            try:
                include = engine.evaluate_condition(task.condition, variables)
            except ConditionEvaluationError as e:
                raise ConditionEvaluationError(
                    e.condition, f"{e.reason} (task '{task.id}' in {task.source})"
                ) from e
            if not include:
                logger.debug(f"Skipping task {task.id}: condition is false ({task.condition})")
                continue
        kept.append(task)
    return kept


def load_tasks(
    config: DotfilesConfig,
    base_path: str | Path,
    variables: dict[str, Any],
    engine: TemplatingEngine | None = None,
    file_exists: Callable[[Path], bool] | None = None,
) -> list[Task]:
    """
    Load, normalize and filter the tasks of a dotfiles directory.

    A missing job index yields no tasks.

    Raises:
        ImportNotFoundError, StructuralParseError, CircularImportError,
        UnsupportedShapeError, ConditionEvaluationError, TemplateRenderError
    """
    parser = JobParser(config, base_path, engine, file_exists)
    index_path = config.jobs_index_path(parser.base_path)
    if not parser.resolver.file_exists(index_path):
        logger.info(f"No jobs index at {index_path}, nothing to plan")
        return []

    tasks = parser.parse_jobs_index(index_path, variables)
    kept = filter_tasks(tasks, variables, parser.engine)
    logger.info(f"Planned {len(kept)} task(s), {len(tasks) - len(kept)} skipped by condition")
    return kept
