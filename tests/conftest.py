"""Shared test configuration for dotfiles-mcp tests.

Provides:
- A tmp_path based dotfiles tree builder
- A fixed fake platform probe
- Default configuration and load options isolated from the host environment
"""

from collections.abc import Iterator

import pytest
from test_utils import DotfilesTree, FakePlatformProbe

from dotfiles_mcp.engine import DotfilesConfig, TemplatingEngine, VariableLoadOptions


@pytest.fixture(autouse=True)
def isolate_config_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep DOTFILES_* variables of the developer's shell out of the tests."""
    for name in ("DOTFILES_CONFIG", "DOTFILES_DIR", "DOTFILES_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def tree(tmp_path) -> DotfilesTree:
    """Empty dotfiles directory."""
    return DotfilesTree(tmp_path)


@pytest.fixture
def probe() -> FakePlatformProbe:
    """Linux/amd64 host named testhost."""
    return FakePlatformProbe()


@pytest.fixture
def config() -> DotfilesConfig:
    """Built-in default configuration (variables/ and jobs/ directories)."""
    return DotfilesConfig()


@pytest.fixture
def options() -> VariableLoadOptions:
    """Load options with an empty environment and a fixed home directory."""
    return VariableLoadOptions(environment={}, home="/home/tester")


@pytest.fixture
def engine(tmp_path) -> TemplatingEngine:
    """Templating engine rooted at the test directory."""
    return TemplatingEngine(base_path=tmp_path)
