# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Subprocess runner for external tools.

Every external tool (docker, cargo, pnpm, rpmbuild, mksquashfs, git ...) is
invoked through a CommandRunner. The runner does the same thing every time:
run the argv list, capture everything, measure the elapsed time and return a
structured result. It never uses shell=True.

Build code takes a runner as a constructor argument. Tests pass in a fake
that records invocations and returns canned results, so no test needs a
container runtime installed.
"""

import os
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from reprobuild.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external tool invocation."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stdout and stderr joined, for pattern matching and diagnostics."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner:
    """Runs argv lists with subprocess.run and captures the result."""

    def run(
        self,
        argv: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        `env` entries are layered over the current process environment, so
        callers only pass what they want to pin.

        A missing executable is reported as exit code 127 and a timeout as
        exit code -1 with `timed_out` set. Neither raises, so callers gate on
        `success` in one place.
        """
        argv_tuple = tuple(str(part) for part in argv)
        full_env = None
        if env is not None:
            full_env = dict(os.environ)
            full_env.update(env)

        start = time.monotonic()
        try:
            completed = subprocess.run(
                list(argv_tuple),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout_seconds,
                cwd=str(cwd) if cwd is not None else None,
                env=full_env,
                check=False,
            )
        except subprocess.TimeoutExpired:
            elapsed = time.monotonic() - start
            logger.warning(
                "Command timed out",
                extra={"argv0": argv_tuple[0], "timeout_seconds": timeout_seconds},
            )
            return CommandResult(
                argv=argv_tuple,
                exit_code=-1,
                stdout="",
                stderr=f"{argv_tuple[0]} timed out after {timeout_seconds}s",
                elapsed_seconds=elapsed,
                timed_out=True,
            )
        except FileNotFoundError:
            elapsed = time.monotonic() - start
            logger.error("Executable not found", extra={"argv0": argv_tuple[0]})
            return CommandResult(
                argv=argv_tuple,
                exit_code=127,
                stdout="",
                stderr=f"{argv_tuple[0]}: executable not found",
                elapsed_seconds=elapsed,
            )

        elapsed = time.monotonic() - start
        logger.debug(
            "Command finished",
            extra={
                "argv0": argv_tuple[0],
                "exit_code": completed.returncode,
                "elapsed_seconds": round(elapsed, 3),
            },
        )
        return CommandResult(
            argv=argv_tuple,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            elapsed_seconds=elapsed,
        )

    def which(self, tool: str) -> str | None:
        """Locate an executable on PATH."""
        return shutil.which(tool)
