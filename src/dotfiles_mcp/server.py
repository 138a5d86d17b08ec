"""FastMCP server initialization for dotfiles-mcp.

This module initializes the MCP server and loads the dotfiles configuration
via lifespan context. All tool implementations are in the tools module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization
- Context injection for tool access to shared resources
- FastMCP server with stdio transport
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import ConfigLoader

logger = logging.getLogger(__name__)

# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


def create_app_context() -> AppContext:
    """Load the dotfiles configuration and build the AppContext.

    Environment Variables:
        DOTFILES_CONFIG: Explicit path to dotfiles.yaml
        DOTFILES_DIR: Dotfiles root (default: directory of the config file)

    Raises:
        ConfigError: If the configuration cannot be loaded
    """
    config_loader = ConfigLoader()
    config = config_loader.load_config()

    base_path = config_loader.base_path
    dotfiles_dir = os.getenv("DOTFILES_DIR", "").strip()
    if dotfiles_dir:
        base_path = Path(dotfiles_dir).expanduser().resolve()
        if not base_path.is_dir():
            logger.warning(f"DOTFILES_DIR is not a directory: {base_path}")

    logger.info(f"Dotfiles root: {base_path}")
    logger.info(f"  Variables index: {config.variables_index_path(base_path)}")
    logger.info(f"  Jobs index: {config.jobs_index_path(base_path)}")

    return AppContext(config_loader=config_loader, config=config, base_path=base_path)


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle.

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with the loaded configuration
    """
    logger.info("Initializing MCP server resources...")
    app_context = create_app_context()

    try:
        yield app_context
    finally:
        # Nothing to release: resolution state lives only for one tool call
        logger.info("Shutting down MCP server...")


# Initialize MCP server with lifespan management
mcp = FastMCP("dotfiles_mcp", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def main() -> None:
    """Entry point for running the MCP server.

    This function is called when the server is run directly via:
    - python -m dotfiles_mcp
    - dotfiles-mcp (console script)

    Defaults to stdio transport for MCP protocol communication.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("DOTFILES_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid DOTFILES_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    # Configure logging to stderr (stdout carries the MCP protocol)
    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


__all__ = ["mcp", "main", "AppContext", "AppContextType", "create_app_context"]
