"""MCP tool implementations for dotfiles resolution.

All tools are read-only: they resolve the configured dotfiles directory and
report variables, provenance and the planned task list. Nothing is executed.

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Async functions for all tools
- Clear docstrings (become tool descriptions)
"""

from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContextType
from .engine import (
    ActionValidationError,
    DotfilesError,
    TemplatingEngine,
    VariableLoadOptions,
    lookup_variable,
    validate_task,
)
from .formatting import (
    format_failure,
    format_plan_markdown,
    format_trace_markdown,
    format_variables_markdown,
    strip_facts,
)
from .server import mcp

READ_ONLY = ToolAnnotations(
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
)

PlatformOverride = Annotated[
    str, Field(description="Override Platform.OS (e.g. linux, darwin, windows)", max_length=50)
]
HostnameOverride = Annotated[str, Field(description="Override Platform.Hostname", max_length=255)]


def _options(platform: str, hostname: str) -> VariableLoadOptions:
    return VariableLoadOptions(platform=platform, hostname=hostname)


# =============================================================================
# Variable Tools
# =============================================================================


@mcp.tool(annotations=READ_ONLY.model_copy(update={"title": "List Variables"}))
async def list_variables(
    include_facts: Annotated[
        bool,
        Field(description="Include the Platform, Env and User fact maps"),
    ] = False,
    platform: PlatformOverride = "",
    hostname: HostnameOverride = "",
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """List resolved variables. Optional: include_facts, platform, hostname, format."""
    app_ctx = ctx.request_context.lifespan_context
    loader = app_ctx.create_variable_loader()

    try:
        variables = loader.load_all_variables(_options(platform, hostname))
    except DotfilesError as e:
        return format_failure(e)

    if not include_facts:
        variables = strip_facts(variables)

    if format == "markdown":
        return format_variables_markdown(variables)
    return {"status": "success", "variables": variables}


@mcp.tool(annotations=READ_ONLY.model_copy(update={"title": "Get Variable"}))
async def get_variable(
    key: Annotated[
        str,
        Field(description="Dotted variable key, e.g. user.email", min_length=1, max_length=500),
    ],
    platform: PlatformOverride = "",
    hostname: HostnameOverride = "",
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Get one resolved variable by dotted key. Required: key."""
    app_ctx = ctx.request_context.lifespan_context
    loader = app_ctx.create_variable_loader()

    try:
        variables = loader.load_all_variables(_options(platform, hostname))
    except DotfilesError as e:
        return format_failure(e)

    found, value = lookup_variable(key, variables)
    if not found:
        return {"status": "failure", "error": f"Variable '{key}' is not defined", "key": key}
    return {"status": "success", "key": key, "value": value}


@mcp.tool(annotations=READ_ONLY.model_copy(update={"title": "Trace Variable"}))
async def trace_variable(
    key: Annotated[
        str,
        Field(description="Dotted variable key to trace", min_length=1, max_length=500),
    ],
    platform: PlatformOverride = "",
    hostname: HostnameOverride = "",
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Show every file and line that defines a variable. Required: key."""
    app_ctx = ctx.request_context.lifespan_context
    loader = app_ctx.create_variable_loader()

    try:
        loader.load_all_variables(_options(platform, hostname))
    except DotfilesError as e:
        return format_failure(e)

    sources = loader.trace_variable(key)
    if format == "markdown":
        return format_trace_markdown(key, sources)
    return {
        "status": "success",
        "key": key,
        "sources": [source.model_dump() for source in sources],
    }


# =============================================================================
# Planning Tools
# =============================================================================


@mcp.tool(annotations=READ_ONLY.model_copy(update={"title": "Plan Tasks"}))
async def plan_tasks(
    platform: PlatformOverride = "",
    hostname: HostnameOverride = "",
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Resolve the ordered, condition-filtered task list. Optional: platform, hostname, format."""
    app_ctx = ctx.request_context.lifespan_context

    try:
        plan = app_ctx.resolve(_options(platform, hostname))
    except DotfilesError as e:
        return format_failure(e)

    if format == "markdown":
        return format_plan_markdown(plan.tasks)
    return {
        "status": "success",
        "total_tasks": len(plan.tasks),
        "tasks": [task.model_dump() for task in plan.tasks],
    }


@mcp.tool(annotations=READ_ONLY.model_copy(update={"title": "Validate Dotfiles"}))
async def validate_dotfiles(
    platform: PlatformOverride = "",
    hostname: HostnameOverride = "",
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Resolve everything and type-check each planned task without executing it."""
    app_ctx = ctx.request_context.lifespan_context

    try:
        plan = app_ctx.resolve(_options(platform, hostname))
    except DotfilesError as e:
        return {"valid": False, "errors": [str(e)], **format_failure(e)}

    errors: list[str] = []
    for task in plan.tasks:
        try:
            validate_task(task)
        except ActionValidationError as e:
            errors.append(str(e))

    return {
        "valid": not errors,
        "errors": errors,
        "variables": len(strip_facts(plan.variables)),
        "tasks": len(plan.tasks),
        "actions_used": sorted({task.action for task in plan.tasks}),
    }


@mcp.tool(annotations=READ_ONLY.model_copy(update={"title": "Templating Help"}))
async def templating_help() -> str:
    """Describe condition and template syntax. No parameters."""
    return TemplatingEngine().syntax_help()
