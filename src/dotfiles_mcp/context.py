"""Shared context types for MCP server.

This module contains context types used across server and tools modules,
separated to avoid circular imports.
"""

from dataclasses import dataclass, field
from pathlib import Path

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import (
    ConfigLoader,
    DotfilesConfig,
    LocalPlatformProbe,
    PlatformProbe,
    ResolutionPlan,
    VariableLoader,
    VariableLoadOptions,
    resolve_plan,
)


@dataclass
class AppContext:
    """Application context containing shared resources for MCP tools.

    Created once during server startup. Only the configuration is shared;
    every tool call runs its own resolution with a fresh templating engine.
    """

    config_loader: ConfigLoader
    config: DotfilesConfig
    base_path: Path
    probe: PlatformProbe = field(default_factory=LocalPlatformProbe)

    def create_variable_loader(self) -> VariableLoader:
        """Create a VariableLoader for the configured dotfiles directory."""
        return VariableLoader(self.config, self.base_path, probe=self.probe)

    def resolve(self, options: VariableLoadOptions | None = None) -> ResolutionPlan:
        """Run one full resolution pass (variables, then tasks)."""
        return resolve_plan(self.config, self.base_path, options=options, probe=self.probe)


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
