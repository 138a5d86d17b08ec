"""Shared formatting utilities for MCP tool responses.

Markdown output is for humans reading tool results; the JSON forms returned
by the tools are for programmatic access.
"""

import json
from typing import Any

from .engine import DotfilesError, Task, VariableConflictError, VariableSource

FACT_KEYS = ("Platform", "Env", "User")

# =============================================================================
# Markdown Formatting Utilities
# =============================================================================


def _inline(value: Any) -> str:
    return json.dumps(value, default=str)


def format_variables_markdown(variables: dict[str, Any]) -> str:
    """Format a resolved variable map as markdown.

    Args:
        variables: Resolved variables (top-level keys become sections)

    Returns:
        Markdown with one bullet per leaf, keyed by dotted path
    """
    if not variables:
        return "No variables defined"

    lines = [f"## Variables ({len(variables)})", ""]

    def walk(value: Any, prefix: str) -> None:
        if isinstance(value, dict) and value:
            for key, item in value.items():
                walk(item, f"{prefix}.{key}")
        else:
            lines.append(f"- **{prefix}**: `{_inline(value)}`")

    for key in sorted(variables):
        walk(variables[key], key)
    return "\n".join(lines)


def format_trace_markdown(key: str, sources: list[VariableSource]) -> str:
    """Format the provenance of one variable as markdown."""
    if not sources:
        return f"Variable '{key}' is not defined in any variables file"

    lines = [f"# Trace: {key}", ""]
    for source in sources:
        location = f"{source.source}:{source.line}" if source.line else source.source
        lines.append(f"- **{location}**")
        lines.append(f"  - raw: `{_inline(source.raw_value)}`")
        if source.processed_value != source.raw_value:
            lines.append(f"  - rendered: `{_inline(source.processed_value)}`")
    return "\n".join(lines)


def format_plan_markdown(tasks: list[Task]) -> str:
    """Format a planned task list as markdown, in execution order."""
    if not tasks:
        return "No tasks planned"

    lines = [f"## Planned Tasks ({len(tasks)})", ""]
    for task in tasks:
        line = f"{task.order}. **{task.id}** ({task.action})"
        if task.source:
            line += f" - {task.source}"
        if task.condition:
            line += f" - when `{task.condition}`"
        lines.append(line)
    return "\n".join(lines)


# =============================================================================
# Error Formatting
# =============================================================================


def format_failure(error: DotfilesError) -> dict[str, Any]:
    """Build the standard failure response for a resolution error.

    Conflict errors carry their operator-facing rendering in ``details``.
    """
    response: dict[str, Any] = {
        "status": "failure",
        "error": str(error),
        "error_type": type(error).__name__,
    }
    if isinstance(error, VariableConflictError):
        response["details"] = error.pretty_print()
    return response


def strip_facts(variables: dict[str, Any]) -> dict[str, Any]:
    """Remove the Platform/Env/User fact keys from a resolved variable map."""
    return {key: value for key, value in variables.items() if key not in FACT_KEYS}
