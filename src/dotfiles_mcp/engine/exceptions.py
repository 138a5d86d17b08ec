"""Resolution errors for the variable and job engines.

Every error in this module is fatal to the current resolution run. There is no
partial variable map or task list: acting on a half-resolved configuration
could overwrite the wrong files. The only designed fall-throughs are import
paths with unresolved placeholders and conditions that evaluate to false, and
neither of those raises.

Hierarchy:
    DotfilesError
    ├── StructuralParseError      (malformed YAML document)
    ├── ImportNotFoundError       (declared import does not exist)
    ├── CircularImportError       (path reappears in the active import chain)
    ├── VariableConflictError     (same dotted key, different non-map values)
    ├── ConditionEvaluationError  (compile/run/type-check failure)
    ├── TemplateRenderError       (syntax/runtime failure while rendering)
    ├── UnsupportedShapeError     (action value is not scalar/list/object)
    ├── ActionValidationError     (task config does not fit its action model)
    └── ConfigError               (dotfiles.yaml could not be loaded)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any


class DotfilesError(Exception):
    """Base class for all resolution errors."""


class StructuralParseError(DotfilesError):
    """A document could not be parsed or has the wrong top-level shape."""

    def __init__(self, path: str | Path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to parse {self.path}: {reason}")


class ImportNotFoundError(DotfilesError):
    """A declared import does not resolve to an existing file."""

    def __init__(self, declared: str, resolved: str | Path):
        self.declared = declared
        self.resolved = str(resolved)
        super().__init__(f"Import file does not exist: {declared} (resolved to {self.resolved})")


class CircularImportError(DotfilesError):
    """
    An absolute path reappeared in the active import chain.

    Attributes:
        path: The path that closed the cycle
        chain: The import chain at the moment of detection (outermost first)
    """

    def __init__(self, path: str, chain: list[str]):
        self.path = path
        self.chain = list(chain)
        super().__init__(f"Circular import detected: {' -> '.join(self.chain + [path])}")

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"CircularImportError(path={self.path!r}, depth={len(self.chain)})"


class VariableConflictError(DotfilesError):
    """
    Two sources define the same dotted key with unequal non-map values.

    The plain message (``str(err)``) is a one-liner suitable for logs. Operator
    facing output should use :meth:`pretty_print`, which lays out both
    definitions side by side with fix suggestions.

    Attributes:
        variable: Dotted key of the conflicting leaf (e.g. "user.email")
        existing_value: Value already present in the merged tree
        new_value: Value the new source tried to set
        existing_source: File that defined existing_value
        new_source: File that defined new_value
        base_path: Directory used to shorten both source paths
    """

    def __init__(
        self,
        variable: str,
        existing_value: Any,
        new_value: Any,
        existing_source: str,
        new_source: str,
        base_path: str | Path | None = None,
    ):
        self.variable = variable
        self.existing_value = existing_value
        self.new_value = new_value
        self.existing_source = existing_source
        self.new_source = new_source
        self.base_path = str(base_path) if base_path else ""
        super().__init__(
            f"variable conflict: '{variable}' has different values in "
            f"{self.relative_path(existing_source)} and {self.relative_path(new_source)}"
        )

    def relative_path(self, source: str) -> str:
        """Shorten a source path against base_path, falling back to the file name."""
        if self.base_path:
            try:
                return os.path.relpath(source, self.base_path)
            except ValueError:
                # Different drives on Windows
                pass
        return os.path.basename(source) or source

    def pretty_print(self) -> str:
        """Return a formatted, multi-line description of the conflict."""
        lines = [
            "",
            "VARIABLE CONFLICT DETECTED",
            "=" * 50,
            "",
            f"Variable: {self.variable}",
            "",
            "Conflicting definitions found:",
            "",
            f"  File: {self.relative_path(self.existing_source)}",
            f"  Value: {self.existing_value!r}",
            "",
            f"  File: {self.relative_path(self.new_source)}",
            f"  Value: {self.new_value!r}",
            "",
            "To fix this conflict:",
            "  1. Remove the duplicate definition from one of the files, OR",
            "  2. Use different variable names for different purposes, OR",
            "  3. Move one definition to a more specific scope",
            "",
            "Note: Variables must have the same value when defined in multiple files",
        ]
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return (
            f"VariableConflictError(variable={self.variable!r}, "
            f"existing={self.existing_value!r}, new={self.new_value!r})"
        )


class ConditionEvaluationError(DotfilesError):
    """A condition failed to compile, failed to run, or did not yield a boolean."""

    def __init__(self, condition: str, reason: str):
        self.condition = condition
        self.reason = reason
        super().__init__(f"Condition '{condition}' failed: {reason}")


class TemplateRenderError(DotfilesError):
    """
    A template failed to parse or render.

    The message embeds the surrounding source lines so an operator can see
    exactly where rendering broke:

        template error in 'variables/ssh.yaml: ssh_config':
          unexpected '}'

        Context:
            1: Host github.com
        →   2:   User {{ git.user }
            3:   IdentityFile ~/.ssh/id_ed25519

        Common fixes:
          • Check for unmatched template brackets {{ }} or {% %}

    Attributes:
        template_name: File path, "<source>: <dotted key>" or "<inline template>"
        reason: Message of the underlying Jinja2 error
        line: 1-based failing line, or None when not recoverable
        column: 1-based failing column, or None when not recoverable
        context: The formatted context block (empty when line is unknown)
    """

    def __init__(
        self,
        template_name: str,
        reason: str,
        line: int | None = None,
        column: int | None = None,
        context: str = "",
        hints: list[str] | None = None,
    ):
        self.template_name = template_name
        self.reason = reason
        self.line = line
        self.column = column
        self.context = context
        self.hints = list(hints or [])

        parts = [f"template error in '{template_name}':", f"  {reason}"]
        if context:
            parts.extend(["", "Context:", context.rstrip("\n")])
        if self.hints:
            parts.extend(["", "Common fixes:"])
            parts.extend(f"  • {hint}" for hint in self.hints)
        super().__init__("\n".join(parts))


class UnsupportedShapeError(DotfilesError):
    """An action's value is not a scalar, list, or object."""

    def __init__(self, action: str, shape: str, source: str = ""):
        self.action = action
        self.shape = shape
        self.source = source
        location = f" in {source}" if source else ""
        super().__init__(f"Unsupported value type for action '{action}'{location}: {shape}")


class ActionValidationError(DotfilesError):
    """A task's config does not satisfy the typed model of its action."""

    def __init__(self, task_id: str, action: str, reason: str):
        self.task_id = task_id
        self.action = action
        self.reason = reason
        super().__init__(f"Invalid config for task '{task_id}' ({action}): {reason}")


class ConfigError(DotfilesError):
    """The top-level dotfiles configuration could not be loaded."""
