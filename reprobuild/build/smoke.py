# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Optional post-build smoke check.

Binaries built for the host's own triple are run once with `--version`
under a timeout. The outcome is logged and never fails the run. Every other
binary is skipped, since it can't execute here.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from reprobuild.logging.logger import get_logger
from reprobuild.release.manifests.manifest import ArtifactRecord
from reprobuild.utils.process import CommandRunner

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class SmokeResult:
    binary_name: str
    triple: str
    passed: bool
    detail: str


def smoke_check(
    records: list[ArtifactRecord],
    run_dir: Path,
    host_triple: str | None,
    runner: CommandRunner,
    timeout_seconds: int = 10,
) -> list[SmokeResult]:
    """Run `--version` on every executable artifact built for `host_triple`."""
    results: list[SmokeResult] = []
    if host_triple is None:
        _logger.info("Smoke check skipped, host triple unknown")
        return results

    for record in records:
        if record.triple != host_triple:
            continue
        path = run_dir / record.relative_path
        if not path.is_file() or not os.access(path, os.X_OK):
            continue

        result = runner.run([str(path), "--version"], timeout_seconds=timeout_seconds)
        if result.timed_out:
            detail = f"timed out after {timeout_seconds}s"
        elif result.success:
            detail = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
        else:
            detail = f"exit code {result.exit_code}"

        smoke = SmokeResult(record.binary_name, record.triple, result.success, detail)
        results.append(smoke)
        log = _logger.info if smoke.passed else _logger.warning
        log(
            "Smoke check",
            extra={"bin": smoke.binary_name, "triple": smoke.triple, "passed": smoke.passed, "detail": detail},
        )
    return results
