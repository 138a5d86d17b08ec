"""
Variable resolution: one conflict-free variable map from an index plus imports.

Resolution steps (VariableLoader.load_all_variables):
1. Build the fact context (Platform, Env, User) once per run
2. Read ``<variables_dir>/<variables_index>``; a missing index yields facts only
3. Follow the index imports in declared order (render path, skip on
   unresolved placeholders, condition gate, cycle guard, load, inline overrides)
4. Merge the index's own ``variables`` block last
5. Render every string leaf against facts + the raw merged tree (single pass)
6. Add fact keys that the tree does not define

Example variables/index.yaml:
    imports:
      - common.yaml
      - path: "os/{{ Platform.OS }}.yaml"
      - path: ci.yaml
        condition: 'Env.CI == "true"'

    variables:
      user:
        name: "Jane"
      greeting: "hello {{ user.name }}"

Imported files are a plain variables tree, or index-shaped (``imports`` and
``variables`` keys) in which case they are processed recursively.
"""

import copy
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .config import DotfilesConfig
from .documents import KeyPath, YamlDocument, load_document
from .exceptions import StructuralParseError
from .imports import ImportContext, ImportFile, ImportResolver, normalize_imports
from .merge import VariableMerger
from .platform import LocalPlatformProbe, PlatformProbe, VariableLoadOptions, build_template_context
from .templating import TemplatingEngine

logger = logging.getLogger(__name__)

INDEX_KEYS = frozenset({"imports", "variables"})


class VariableSource(BaseModel):
    """Provenance record tying a variable key to the file and line that defined it."""

    key: str = Field(description="Top-level key, or dotted path in traces")
    raw_value: Any = Field(default=None, description="Value as written in the file")
    processed_value: Any = Field(default=None, description="Value after template rendering")
    source: str = Field(description="File that defined the value")
    line: int = Field(default=0, description="1-based line of the key (0 when unknown)")


# =============================================================================
# Dotted-key helpers
# =============================================================================


def lookup_variable(key: str, variables: Any) -> tuple[bool, Any]:
    """
    Walk a dotted key through nested maps (and list indexes).

    Returns:
        (found, value)
    """
    current = variables
    for part in key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return False, None
    return True, current


def get_variable(key: str, variables: dict[str, Any], default: Any = None) -> Any:
    """Get a variable by dotted key (e.g. "user.name")."""
    found, value = lookup_variable(key, variables)
    return value if found else default


def set_variable(key: str, value: Any, variables: dict[str, Any]) -> None:
    """Set a variable by dotted key, creating (or replacing non-map) parents."""
    parts = key.split(".")
    current = variables
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _is_index_shaped(data: dict[str, Any]) -> bool:
    return "imports" in data or set(data) == {"variables"}


# =============================================================================
# Loader
# =============================================================================


class VariableLoader:
    """
    Resolves the variables tree of one dotfiles directory.

    One loader performs one resolution at a time; load_all_variables() resets
    all state so the loader can be reused for a later run.

    Example:
        loader = VariableLoader(config, base_path)
        variables = loader.load_all_variables(VariableLoadOptions(platform="linux"))
        loader.trace_variable("user.email")
    """

    def __init__(
        self,
        config: DotfilesConfig,
        base_path: str | Path,
        engine: TemplatingEngine | None = None,
        probe: PlatformProbe | None = None,
        file_exists: Callable[[Path], bool] | None = None,
    ):
        """
        Initialize variable loader.

        Args:
            config: Loaded dotfiles configuration
            base_path: Dotfiles root directory
            engine: Templating engine (default: a new engine honoring strict_templates)
            probe: Source of platform facts (default: LocalPlatformProbe)
            file_exists: Existence predicate for imports (default: Path.is_file)
        """
        self.config = config
        self.base_path = Path(base_path).resolve()
        self.engine = engine or TemplatingEngine(
            self.base_path, strict=config.settings.strict_templates
        )
        self.probe = probe or LocalPlatformProbe()
        self.resolver = ImportResolver(self.engine, file_exists)

        self.sources: list[VariableSource] = []
        self.template_context: dict[str, Any] = {}
        self._merger = VariableMerger(base_path=self.base_path)
        self._context = ImportContext(base_path=self.base_path)
        self._documents: dict[str, tuple[YamlDocument, KeyPath]] = {}

    @property
    def variables_dir(self) -> Path:
        return self.config.variables_path(self.base_path)

    def load_all_variables(self, options: VariableLoadOptions | None = None) -> dict[str, Any]:
        """
        Resolve the full variable map.

        Args:
            options: Fact overrides (platform, arch, shell, hostname, env, home)

        Returns:
            Rendered variable tree plus the Platform/Env/User facts

        Raises:
            ImportNotFoundError, StructuralParseError, CircularImportError,
            VariableConflictError, TemplateRenderError, ConditionEvaluationError
        """
        self.sources = []
        self._documents = {}
        self._merger = VariableMerger(base_path=self.base_path)
        self._context = ImportContext(base_path=self.base_path, variables=self._merger.tree)
        self.template_context = build_template_context(self.probe, options)

        index_path = self.config.variables_index_path(self.base_path)
        if not self.resolver.file_exists(index_path):
            logger.info(f"No variables index at {index_path}, using platform facts only")
            return copy.deepcopy(self.template_context)

        self._load_file(index_path, is_index=True)

        processed = self._render_tree(self._merger.tree)
        for source in self.sources:
            found, value = lookup_variable(source.key, processed)
            if found:
                source.processed_value = value

        for key, value in self.template_context.items():
            if key not in processed:
                processed[key] = copy.deepcopy(value)

        logger.info(
            f"Resolved {len(self._merger.tree)} variables from {len(self._documents)} file(s)"
        )
        return processed

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _load_file(self, path: Path, is_index: bool = False) -> None:
        with self._context.chain.entered(path):
            document = load_document(path)
            data = document.data

            if not (is_index or _is_index_shaped(data)):
                self._add_variables(data, path, document, ())
                return

            extra = sorted(str(key) for key in data if key not in INDEX_KEYS)
            if extra:
                raise StructuralParseError(
                    path,
                    f"unexpected top-level keys {', '.join(extra)}; "
                    "index files only accept 'imports' and 'variables'",
                )

            for import_file in normalize_imports(data.get("imports"), path):
                self._process_import(import_file)

            variables = data.get("variables")
            if variables is None:
                return
            if not isinstance(variables, dict):
                raise StructuralParseError(
                    path, f"'variables' must be a mapping, got {type(variables).__name__}"
                )
            self._add_variables(variables, path, document, ("variables",))

    def _process_import(self, import_file: ImportFile) -> None:
        path = self.resolver.resolve(import_file, self.template_context, self.variables_dir)
        if path is None:
            return

        logger.debug(f"Importing variables from {path}")
        self._load_file(path)

        if import_file.variables:
            self._add_variables(import_file.variables, path, None, ())

    def _add_variables(
        self,
        variables: dict[str, Any],
        source: Path,
        document: YamlDocument | None,
        prefix: KeyPath,
    ) -> None:
        source_name = str(source)
        if document is not None:
            self._documents[source_name] = (document, prefix)

        for key, value in variables.items():
            line = document.line_of(*prefix, str(key)) if document is not None else 0
            self.sources.append(
                VariableSource(
                    key=str(key), raw_value=copy.deepcopy(value), source=source_name, line=line
                )
            )

        self._merger.merge(variables, source_name)

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def _render_tree(self, variables: dict[str, Any]) -> dict[str, Any]:
        # The raw tree wins over facts on key clashes
        context = {**self.template_context, **variables}
        return {key: self._render_value(value, context, str(key)) for key, value in variables.items()}

    def _render_value(self, value: Any, context: dict[str, Any], dotted: str) -> Any:
        if isinstance(value, str):
            name = self._display_name(self._merger.origin_of(dotted))
            return self.engine.render_string(value, context, name=f"{name}: {dotted}")
        if isinstance(value, dict):
            return {
                key: self._render_value(item, context, f"{dotted}.{key}")
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._render_value(item, context, dotted) for item in value]
        return value

    def _display_name(self, source: str) -> str:
        try:
            return str(Path(source).relative_to(self.base_path))
        except ValueError:
            return source

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_variable_sources(self) -> list[VariableSource]:
        """All provenance records, sorted by source file."""
        return sorted(self.sources, key=lambda s: s.source)

    def trace_variable(self, key: str) -> list[VariableSource]:
        """
        Find every file and line that contributed to a variable.

        Args:
            key: Top-level name or dotted path (e.g. "user.email")

        Returns:
            One record per contributing source; for dotted paths only the
            sources whose raw value contains the path are returned, with the
            nested raw/processed values and the line of the nested key
        """
        parts = key.split(".")
        root, nested = parts[0], parts[1:]

        traces = []
        for source in self.sources:
            if source.key != root:
                continue
            if not nested:
                traces.append(source.model_copy(deep=True))
                continue

            found, raw_value = lookup_variable(".".join(nested), source.raw_value)
            if not found:
                continue
            _, processed_value = lookup_variable(".".join(nested), source.processed_value)

            traces.append(
                VariableSource(
                    key=key,
                    raw_value=raw_value,
                    processed_value=processed_value,
                    source=source.source,
                    line=self._nested_line(source, parts),
                )
            )
        return traces

    def _nested_line(self, source: VariableSource, parts: list[str]) -> int:
        entry = self._documents.get(source.source)
        if entry is None:
            return source.line
        document, prefix = entry
        return document.line_of(*prefix, *parts) or source.line
