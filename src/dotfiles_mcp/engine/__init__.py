"""Dotfiles resolution engine.

This package turns a tree of YAML documents into one conflict-free variable
map and an ordered, platform-filtered task list, before anything is executed.

Key Components:

- TemplatingEngine: Condition evaluation and Jinja2 rendering over one context
- ExpressionCache: Compiled conditions, owned by one engine (one per run)
- ImportChain / ImportResolver: Shared import discipline and cycle guard
- VariableMerger: Conflict-detecting deep merge with per-key provenance
- VariableLoader: Variable index + conditional imports -> rendered variables
- JobParser / load_tasks: Job index + conditional imports -> filtered Tasks
- validate_task: Typed per-action config at the executor boundary
- ConfigLoader / DotfilesConfig: dotfiles.yaml discovery and validation
- resolve_plan: Driver running variables, then tasks

Architecture:
- Single-threaded recursive descent per run
- Every resolution error is fatal (no partial plans)
- Only placeholder import paths and false conditions are skipped silently
"""

from .actions import ACTION_CATALOG, scalar_field, validate_action_config, validate_task
from .config import ConfigLoader, DotfilesConfig
from .documents import YamlDocument, load_document, parse_document
from .exceptions import (
    ActionValidationError,
    CircularImportError,
    ConditionEvaluationError,
    ConfigError,
    DotfilesError,
    ImportNotFoundError,
    StructuralParseError,
    TemplateRenderError,
    UnsupportedShapeError,
    VariableConflictError,
)
from .imports import ImportChain, ImportContext, ImportFile, ImportResolver, normalize_imports
from .jobs import JobParser, Task, filter_tasks, load_tasks
from .merge import VariableMerger, deep_merge, values_equal
from .planner import ResolutionPlan, resolve_plan
from .platform import (
    LocalPlatformProbe,
    PlatformProbe,
    VariableLoadOptions,
    build_template_context,
)
from .templating import ExpressionCache, TemplatingEngine
from .variables import (
    VariableLoader,
    VariableSource,
    get_variable,
    lookup_variable,
    set_variable,
)

__all__ = [
    # Templating
    "ExpressionCache",
    "TemplatingEngine",
    # Documents and imports
    "YamlDocument",
    "load_document",
    "parse_document",
    "ImportChain",
    "ImportContext",
    "ImportFile",
    "ImportResolver",
    "normalize_imports",
    # Variables
    "VariableMerger",
    "deep_merge",
    "values_equal",
    "VariableLoader",
    "VariableSource",
    "get_variable",
    "lookup_variable",
    "set_variable",
    # Jobs
    "JobParser",
    "Task",
    "filter_tasks",
    "load_tasks",
    "ACTION_CATALOG",
    "scalar_field",
    "validate_action_config",
    "validate_task",
    # Platform and configuration
    "LocalPlatformProbe",
    "PlatformProbe",
    "VariableLoadOptions",
    "build_template_context",
    "ConfigLoader",
    "DotfilesConfig",
    # Driver
    "ResolutionPlan",
    "resolve_plan",
    # Errors
    "DotfilesError",
    "StructuralParseError",
    "ImportNotFoundError",
    "CircularImportError",
    "VariableConflictError",
    "ConditionEvaluationError",
    "TemplateRenderError",
    "UnsupportedShapeError",
    "ActionValidationError",
    "ConfigError",
]
