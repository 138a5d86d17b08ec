"""
Import declarations and the cycle guard shared by both resolution engines.

Both the variable index and the job index accept an ``imports`` list whose
entries are either a bare path string or an object:

    imports:
      - "common.yaml"
      - path: "{{ Platform.OS }}.yaml"
        condition: 'Platform.OS != "windows"'
        variables:
          editor: vim

Resolution of one entry (ImportResolver.resolve):
1. Render the path template (undefined references stay as ``{{ ... }}``)
2. Skip silently if placeholders remain
3. Skip if a condition is present and evaluates false
4. Resolve relative paths against the engine's directory
5. Require the file to exist (ImportNotFoundError otherwise)

The caller then enters the resolved path on the ImportChain for the duration
of the recursive load.
"""

import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import CircularImportError, ImportNotFoundError, StructuralParseError
from .templating import TemplatingEngine

logger = logging.getLogger(__name__)


class ImportFile(BaseModel):
    """One normalized import declaration."""

    path: str = Field(description="Path template, relative to the engine directory unless absolute")
    condition: str = Field(default="", description="Condition gating the import (empty: always)")
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Inline variables merged after the imported file"
    )

    @field_validator("condition", mode="before")
    @classmethod
    def _condition_to_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return value

    @field_validator("variables", mode="before")
    @classmethod
    def _variables_default(cls, value: Any) -> Any:
        return {} if value is None else value


def normalize_imports(raw: Any, source: str | Path) -> list[ImportFile]:
    """
    Normalize an ``imports`` value into ImportFile records.

    Args:
        raw: The value of the ``imports`` key (None means no imports)
        source: File the list came from, for error messages

    Returns:
        ImportFile list in declared order

    Raises:
        StructuralParseError: If the list or one of its entries has the wrong shape
    """
    if raw is None:
        return []

    if not isinstance(raw, list):
        raise StructuralParseError(source, f"'imports' must be a list, got {type(raw).__name__}")

    imports = []
    for index, item in enumerate(raw):
        if isinstance(item, str):
            imports.append(ImportFile(path=item))
        elif isinstance(item, dict):
            try:
                imports.append(ImportFile.model_validate(item))
            except ValidationError as e:
                raise StructuralParseError(source, f"invalid import #{index + 1}: {e}") from e
        else:
            raise StructuralParseError(
                source,
                f"import #{index + 1} must be a path or an object, got {type(item).__name__}",
            )
    return imports


class ImportChain:
    """
    Stack of absolute paths currently open during one resolution run.

    Entries are only acquired through :meth:`entered`, which releases them on
    every exit path, so a failed import never poisons its siblings.

    Example:
        chain = ImportChain()
        with chain.entered(path):
            load(path)  # nested imports re-enter the same chain
    """

    def __init__(self) -> None:
        self._stack: list[str] = []

    @contextmanager
    def entered(self, path: str | Path) -> Iterator[str]:
        """
        Hold path on the chain for the duration of the block.

        Raises:
            CircularImportError: If path is already on the chain
        """
        key = os.path.abspath(path)
        if key in self._stack:
            raise CircularImportError(key, self._stack)

        self._stack.append(key)
        try:
            yield key
        finally:
            self._stack.pop()

    @property
    def paths(self) -> list[str]:
        return list(self._stack)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and os.path.abspath(path) in self._stack

    def __len__(self) -> int:
        return len(self._stack)


@dataclass
class ImportContext:
    """State of one top-level resolution call."""

    base_path: Path
    chain: ImportChain = field(default_factory=ImportChain)
    variables: dict[str, Any] = field(default_factory=dict)


class ImportResolver:
    """Turns an ImportFile into an existing file path, or None when skipped."""

    def __init__(
        self,
        engine: TemplatingEngine,
        file_exists: Callable[[Path], bool] | None = None,
    ):
        self.engine = engine
        self.file_exists = file_exists or Path.is_file

    def resolve(
        self, import_file: ImportFile, context: dict[str, Any], relative_to: Path
    ) -> Path | None:
        """
        Resolve one import against a context.

        Args:
            import_file: Normalized import declaration
            context: Variables the path and condition are evaluated against
            relative_to: Directory relative paths are joined to

        Returns:
            Path of the file to load, or None when the import is skipped

        Raises:
            ImportNotFoundError: If the resolved file does not exist
            ConditionEvaluationError: If the condition is invalid
            TemplateRenderError: If the path template is invalid
        """
        rendered = self.engine.render_path(import_file.path, context)
        if self.engine.has_unresolved_placeholders(rendered):
            logger.debug(f"Skipping import with unresolved placeholders: {import_file.path}")
            return None

        if import_file.condition and not self.engine.evaluate_condition(
            import_file.condition, context
        ):
            logger.debug(f"Skipping import {rendered}: condition is false ({import_file.condition})")
            return None

        path = Path(rendered).expanduser()
        if not path.is_absolute():
            path = relative_to / path

        if not self.file_exists(path):
            raise ImportNotFoundError(import_file.path, path)

        return path
