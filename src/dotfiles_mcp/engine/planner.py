"""Resolution driver: variables first, then tasks against those variables."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import DotfilesConfig
from .jobs import Task, load_tasks
from .platform import PlatformProbe, VariableLoadOptions
from .templating import TemplatingEngine
from .variables import VariableLoader, VariableSource

logger = logging.getLogger(__name__)


@dataclass
class ResolutionPlan:
    """Everything an executor needs from one resolution run."""

    variables: dict[str, Any]
    tasks: list[Task]
    sources: list[VariableSource] = field(default_factory=list)


def resolve_plan(
    config: DotfilesConfig,
    base_path: str | Path,
    options: VariableLoadOptions | None = None,
    probe: PlatformProbe | None = None,
    file_exists: Callable[[Path], bool] | None = None,
) -> ResolutionPlan:
    """
    Run one full resolution pass.

    A fresh TemplatingEngine (and with it a fresh expression cache) is built
    for every call, so concurrent calls share no state.

    Raises:
        DotfilesError: Any resolution error; there is no partial plan
    """
    engine = TemplatingEngine(base_path, strict=config.settings.strict_templates)

    loader = VariableLoader(config, base_path, engine=engine, probe=probe, file_exists=file_exists)
    variables = loader.load_all_variables(options)

    tasks = load_tasks(config, base_path, variables, engine=engine, file_exists=file_exists)

    logger.info(
        f"Resolution complete: {len(variables)} top-level variables, {len(tasks)} tasks, "
        f"{engine.cache.compile_count} conditions compiled"
    )
    return ResolutionPlan(
        variables=variables, tasks=tasks, sources=loader.get_variable_sources()
    )
