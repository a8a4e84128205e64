# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Single-run verification: is one run directory complete and intact?

This is the check to run on a downloaded release before comparing it with
a local rebuild. It doesn't say anything about reproducibility. It only
confirms the run is internally consistent:

- the manifest exists and parses
- every key is unique
- every field is populated
- every artifact file exists inside the run directory
- every declared hash matches the file on disk

Read-only.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from reprobuild.logging.logger import get_logger
from reprobuild.release.manifests.manifest import (
    Manifest,
    ManifestError,
    empty_fields,
    load_manifest,
)
from reprobuild.utils.hashing import compute_sha256
from reprobuild.utils.paths import resolve_within

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class VerificationReport:
    """Complete outcome of a run verification."""

    is_valid: bool
    run_dir: str
    checks_passed: list[str] = field(default_factory=list)
    checks_failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _check_files_present(run_dir: Path, manifest: Manifest) -> list[str]:
    errors = []
    for record in manifest.artifacts:
        try:
            path = resolve_within(run_dir, record.relative_path)
        except ValueError as err:
            errors.append(f"Artifact {record.binary_name} ({record.triple}): {err}")
            continue
        if not path.is_file():
            errors.append(f"Missing artifact file: {record.relative_path}")
    return errors


def _check_hashes(run_dir: Path, manifest: Manifest) -> list[str]:
    errors = []
    for record in manifest.artifacts:
        try:
            path = resolve_within(run_dir, record.relative_path)
        except ValueError:
            continue
        if not path.is_file():
            continue
        actual = compute_sha256(path)
        if actual != record.content_hash.lower():
            errors.append(
                f"Hash mismatch for {record.relative_path}: "
                f"declared {record.content_hash or '<empty>'}, actual {actual}"
            )
    return errors


def verify_run(run_dir: Path) -> VerificationReport:
    """
    Run every check on a run directory.

    Checks after a failed manifest load are not attempted, since there is
    nothing to check them against.

    Args:
        run_dir: The run directory to verify.

    Returns:
        VerificationReport with complete pass/fail details.
    """
    if not run_dir.is_dir():
        return VerificationReport(
            is_valid=False,
            run_dir=str(run_dir),
            checks_failed=["directory_exists"],
            errors=[f"Run directory not found: {run_dir}"],
        )

    passed: list[str] = []
    failed: list[str] = []
    all_errors: list[str] = []

    try:
        manifest = load_manifest(run_dir)
    except (FileNotFoundError, ManifestError) as err:
        manifest = None
        failed.append("manifest_valid")
        all_errors.append(str(err))
    else:
        passed.append("manifest_valid")

    if manifest is not None:
        checks = (
            ("fields_populated", empty_fields(manifest)),
            ("files_present", _check_files_present(run_dir, manifest)),
            ("hashes_match", _check_hashes(run_dir, manifest)),
        )
        for name, errors in checks:
            if errors:
                failed.append(name)
                all_errors.extend(errors)
            else:
                passed.append(name)

    is_valid = not failed
    if is_valid:
        _logger.info(
            "Run verification passed",
            extra={"run_dir": str(run_dir), "checks_passed": len(passed)},
        )
    else:
        _logger.error(
            "Run verification FAILED",
            extra={
                "run_dir": str(run_dir),
                "checks_passed": len(passed),
                "checks_failed": len(failed),
                "errors": all_errors,
            },
        )

    return VerificationReport(
        is_valid=is_valid,
        run_dir=str(run_dir),
        checks_passed=passed,
        checks_failed=failed,
        errors=all_errors,
    )
