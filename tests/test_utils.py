"""Shared test utilities for the dotfiles-mcp test suite.

Provides:
- DotfilesTree: writes a dotfiles directory (variables/, jobs/) under tmp_path
- FakePlatformProbe: fixed platform facts so tests never depend on the host
"""

import textwrap
from pathlib import Path
from typing import Any

DEFAULT_FACTS: dict[str, Any] = {
    "OS": "linux",
    "Arch": "amd64",
    "Shell": "bash",
    "Hostname": "testhost",
    "Distro": "Ubuntu",
    "IsRoot": False,
    "IsElevated": False,
    "Tags": ["docker", "dev"],
}


class FakePlatformProbe:
    """Platform probe returning fixed facts."""

    def __init__(self, **overrides: Any):
        self.facts = {**DEFAULT_FACTS, **overrides}
        self.calls = 0

    def probe(self) -> dict[str, Any]:
        self.calls += 1
        return dict(self.facts)


class DotfilesTree:
    """Helper for laying out a dotfiles directory in a test."""

    def __init__(self, root: Path):
        self.root = root

    def write(self, relative: str, content: str) -> Path:
        """Write dedented content to root/relative, creating parents."""
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
        return path

    def variables(self, content: str, name: str = "index.yaml") -> Path:
        return self.write(f"variables/{name}", content)

    def jobs(self, content: str, name: str = "index.yaml") -> Path:
        return self.write(f"jobs/{name}", content)
