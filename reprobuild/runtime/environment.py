# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Host environment inspection.

Checks the interpreter version and works out which target triple the host
itself is. The smoke check only runs binaries built for the host triple.
"""

import platform
import sys
from typing import NamedTuple, Optional

MINIMUM_PYTHON_MAJOR = 3
MINIMUM_PYTHON_MINOR = 11

_MACHINE_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}

_SYSTEM_SUFFIXES = {
    "Linux": "unknown-linux-gnu",
    "Darwin": "apple-darwin",
    "Windows": "pc-windows-msvc",
}


class SystemInfo(NamedTuple):
    """Snapshot of the current system environment."""

    python_version: str
    platform: str
    architecture: str
    hostname: str
    host_triple: Optional[str]


def get_python_version() -> tuple[int, int, int]:
    """Return the current Python version as a (major, minor, micro) tuple."""
    return sys.version_info[:3]


def check_minimum_python() -> None:
    """
    Verify we're running Python 3.11+.

    tomllib and the union syntax used throughout need 3.11. Failing here
    beats a confusing ImportError halfway through a build.

    Raises:
        RuntimeError: If Python version is below 3.11.
    """
    major, minor, _ = get_python_version()
    if major < MINIMUM_PYTHON_MAJOR or (
        major == MINIMUM_PYTHON_MAJOR and minor < MINIMUM_PYTHON_MINOR
    ):
        raise RuntimeError(
            f"reprobuild requires Python >= {MINIMUM_PYTHON_MAJOR}.{MINIMUM_PYTHON_MINOR}, "
            f"but you're running {major}.{minor}. Please upgrade."
        )


def detect_host_triple(system: str | None = None, machine: str | None = None) -> str | None:
    """
    Map the host OS and CPU onto one of the known target triples.

    Returns None for hosts that don't correspond to any release target.
    """
    system = system if system is not None else platform.system()
    machine = machine if machine is not None else platform.machine()
    arch = _MACHINE_ALIASES.get(machine.lower())
    suffix = _SYSTEM_SUFFIXES.get(system)
    if arch is None or suffix is None:
        return None
    return f"{arch}-{suffix}"


def get_system_info() -> SystemInfo:
    """Collect basic system information for logging and diagnostics."""
    return SystemInfo(
        python_version=platform.python_version(),
        platform=platform.system(),
        architecture=platform.machine(),
        hostname=platform.node(),
        host_triple=detect_host_triple(),
    )
