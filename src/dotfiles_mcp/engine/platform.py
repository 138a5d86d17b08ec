"""
Platform facts and the shared template context.

The resolution engines only need a map of facts; how they are gathered is up
to the PlatformProbe passed in. LocalPlatformProbe is a small default built on
the standard library.
"""

import getpass
import os
import platform
import shutil
import socket
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

# platform.machine() values mapped to the architecture names used in conditions
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "armv7l": "arm",
}

_LINUX_PACKAGE_MANAGERS = {
    "apt": ("apt", "apt-get"),
    "dnf": ("dnf",),
    "yum": ("yum",),
    "pacman": ("pacman",),
    "zypper": ("zypper",),
    "apk": ("apk",),
}
_DARWIN_PACKAGE_MANAGERS = {"homebrew": ("brew",), "macports": ("port",)}
_WINDOWS_PACKAGE_MANAGERS = {"chocolatey": ("choco",), "winget": ("winget",), "scoop": ("scoop",)}


class PlatformProbe(Protocol):
    """Supplies a map-shaped snapshot of host facts."""

    def probe(self) -> dict[str, Any]:
        """Return at least OS, Arch, Shell and Hostname."""
        ...


class LocalPlatformProbe:
    """Probe the running host."""

    def probe(self) -> dict[str, Any]:
        os_name = platform.system().lower() or "unknown"
        is_root = os_name != "windows" and hasattr(os, "geteuid") and os.geteuid() == 0
        return {
            "OS": os_name,
            "Arch": _ARCH_ALIASES.get(platform.machine().lower(), platform.machine().lower()),
            "Shell": detect_shell(os_name),
            "Hostname": socket.gethostname(),
            "Distro": detect_distro(os_name),
            "IsRoot": is_root,
            "IsElevated": is_root,
            "PackageManagers": detect_package_managers(os_name),
        }


def detect_shell(os_name: str) -> str:
    """Name of the user's shell from SHELL, falling back to the OS default."""
    shell = os.environ.get("SHELL", "")
    if shell:
        return shell.rsplit("/", 1)[-1]
    if os.environ.get("PSModulePath"):
        return "powershell"
    return {"windows": "cmd", "darwin": "zsh"}.get(os_name, "bash")


def detect_distro(os_name: str) -> str:
    if os_name == "darwin":
        return "macOS"
    if os_name == "windows":
        return "Windows"
    if os_name != "linux":
        return os_name

    try:
        release = platform.freedesktop_os_release()
    except OSError:
        return "unknown"
    return release.get("NAME", "unknown")


def detect_package_managers(os_name: str) -> list[str]:
    table = {
        "linux": _LINUX_PACKAGE_MANAGERS,
        "darwin": _DARWIN_PACKAGE_MANAGERS,
        "windows": _WINDOWS_PACKAGE_MANAGERS,
    }.get(os_name, {})
    return [name for name, commands in table.items() if any(shutil.which(c) for c in commands)]


class VariableLoadOptions(BaseModel):
    """
    Per-run overrides of the probed facts.

    Empty strings and None mean "use the probe / the process".
    """

    platform: str = Field(default="", description="Override Platform.OS")
    arch: str = Field(default="", description="Override Platform.Arch")
    shell: str = Field(default="", description="Override Platform.Shell")
    hostname: str = Field(default="", description="Override Platform.Hostname")
    environment: dict[str, str] | None = Field(
        default=None, description="Environment map used instead of os.environ"
    )
    home: str | None = Field(default=None, description="Home directory used instead of ~")


def build_template_context(
    probe: PlatformProbe, options: VariableLoadOptions | None = None
) -> dict[str, Any]:
    """
    Build the fact context shared by conditions and templates.

    Returns:
        {"Platform": {...}, "Env": {...}, "User": {"Home": ..., "Name": ...}}
    """
    options = options or VariableLoadOptions()

    facts = dict(probe.probe())
    overrides = {
        "OS": options.platform,
        "Arch": options.arch,
        "Shell": options.shell,
        "Hostname": options.hostname,
    }
    facts.update({key: value for key, value in overrides.items() if value})

    if options.environment is not None:
        environment = dict(options.environment)
    else:
        environment = dict(os.environ)

    home = options.home if options.home is not None else str(Path.home())
    try:
        user_name = getpass.getuser()
    except (OSError, KeyError):
        user_name = environment.get("USER", "")

    return {
        "Platform": facts,
        "Env": environment,
        "User": {"Home": home, "Name": user_name},
    }
