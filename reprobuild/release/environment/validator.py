# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Pre-flight environment validation.

Before a build starts, check that the tools the plan will invoke are on
PATH and that there is room for the run directory. Fail early with a clear
list instead of a missing-binary error halfway through a release.

Which tools are required depends on the plan:
- binary plans need docker with buildx
- desktop plans need node, pnpm and cargo, plus docker when some triple may
  fall back to the container
- Linux canonicalization uses rpmbuild, mksquashfs and zstd. These are
  reported but not required, since a bundle without rpm or AppImage
  output never calls them.

`compare` and `verify` need none of this.
"""

import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from reprobuild.build.errors import BuildError
from reprobuild.logging.logger import get_logger
from reprobuild.plan.platform import PlatformFamily, classify_triple
from reprobuild.plan.resolver import BuildKind, BuildPlan
from reprobuild.utils.process import CommandRunner

_logger: logging.Logger = get_logger(__name__)

MIN_PYTHON_MAJOR: int = 3
MIN_PYTHON_MINOR: int = 11
MIN_DISK_SPACE_BYTES: int = 5 * 1_073_741_824  # 5 GB

_CANONICALIZATION_TOOLS: tuple[str, ...] = ("rpmbuild", "mksquashfs", "zstd")


@dataclass(frozen=True)
class EnvironmentCheck:
    """Result of a single environment check."""

    name: str
    passed: bool
    message: str
    value: str


def check_python_version() -> EnvironmentCheck:
    """Verify Python >= 3.11."""
    major, minor, micro = sys.version_info[:3]
    version_str = f"{major}.{minor}.{micro}"
    passed = (major, minor) >= (MIN_PYTHON_MAJOR, MIN_PYTHON_MINOR)
    if passed:
        msg = f"Python {version_str} meets minimum {MIN_PYTHON_MAJOR}.{MIN_PYTHON_MINOR}"
    else:
        msg = f"Python {version_str} does NOT meet minimum {MIN_PYTHON_MAJOR}.{MIN_PYTHON_MINOR}"
    return EnvironmentCheck(name="python_version", passed=passed, message=msg, value=version_str)


def check_tool(runner: CommandRunner, tool: str, required: bool = True) -> EnvironmentCheck:
    """Look a tool up on PATH. A missing optional tool still passes."""
    location = runner.which(tool)
    if location is not None:
        return EnvironmentCheck(name=f"tool:{tool}", passed=True, message=f"{tool} found", value=location)
    if required:
        return EnvironmentCheck(
            name=f"tool:{tool}", passed=False, message=f"{tool} not found on PATH", value="missing"
        )
    return EnvironmentCheck(
        name=f"tool:{tool}",
        passed=True,
        message=f"{tool} not found, steps that need it will fail",
        value="missing",
    )


def check_buildx(runner: CommandRunner) -> EnvironmentCheck:
    """docker is present, but is the buildx plugin?"""
    result = runner.run(["docker", "buildx", "version"])
    if result.success:
        version = result.stdout.strip().splitlines()[0] if result.stdout.strip() else "unknown"
        return EnvironmentCheck(name="docker_buildx", passed=True, message="buildx available", value=version)
    return EnvironmentCheck(
        name="docker_buildx",
        passed=False,
        message=f"docker buildx unavailable (exit code {result.exit_code})",
        value="missing",
    )


def check_disk_space(path: Path | None = None) -> EnvironmentCheck:
    """
    Check available disk space at the given path.

    Args:
        path: Directory to check. Defaults to current working directory.
    """
    check_path = path or Path.cwd()
    try:
        usage = shutil.disk_usage(str(check_path))
    except OSError as err:
        return EnvironmentCheck(
            name="disk_space",
            passed=False,
            message=f"Cannot check disk space: {err}",
            value="error",
        )

    free_gb = usage.free / (1024**3)
    minimum_gb = MIN_DISK_SPACE_BYTES / (1024**3)
    passed = usage.free >= MIN_DISK_SPACE_BYTES
    if passed:
        msg = f"{free_gb:.1f} GB free (minimum {minimum_gb:.0f} GB)"
    else:
        msg = f"Only {free_gb:.1f} GB free, need at least {minimum_gb:.0f} GB"
    return EnvironmentCheck(name="disk_space", passed=passed, message=msg, value=f"{free_gb:.1f}GB")


def validate_environment(
    plan: BuildPlan,
    runner: CommandRunner,
    check_path: Path | None = None,
    canonicalize: bool = True,
) -> list[EnvironmentCheck]:
    """
    Run every pre-flight check the plan calls for.

    Returns a list of check results. Callers should inspect the `passed`
    field of each check to decide whether to proceed.

    Args:
        plan: The plan about to be built.
        runner: Used for PATH lookups and the buildx availability check.
        check_path: Optional path for disk space check.
        canonicalize: Whether Linux canonicalization is enabled.

    Returns:
        List of EnvironmentCheck results, one per check.
    """
    checks = [check_python_version()]

    needs_docker = plan.build_kind is BuildKind.BINARY or plan.requires_container_fallback
    if plan.build_kind is BuildKind.DESKTOP_BUNDLE:
        checks += [check_tool(runner, tool) for tool in ("node", "pnpm", "cargo")]
    if needs_docker:
        docker = check_tool(runner, "docker")
        checks.append(docker)
        if docker.passed:
            checks.append(check_buildx(runner))

    has_linux = any(classify_triple(t) is PlatformFamily.LINUX for t in plan.triples)
    if plan.build_kind is BuildKind.DESKTOP_BUNDLE and canonicalize and has_linux:
        checks += [check_tool(runner, tool, required=False) for tool in _CANONICALIZATION_TOOLS]

    checks.append(check_disk_space(check_path))

    passed_count = sum(1 for c in checks if c.passed)
    for check in checks:
        log_fn = _logger.info if check.passed else _logger.error
        log_fn(
            "Environment check",
            extra={"check": check.name, "passed": check.passed, "check_message": check.message},
        )
    _logger.info(
        "Environment validation complete",
        extra={"passed": passed_count, "failed": len(checks) - passed_count},
    )
    return checks


def require_environment(checks: list[EnvironmentCheck]) -> None:
    """
    Raises:
        BuildError: Listing every failed check.
    """
    failed = [c for c in checks if not c.passed]
    if failed:
        details = "; ".join(f"{c.name}: {c.message}" for c in failed)
        raise BuildError(f"Environment pre-flight failed: {details}")
