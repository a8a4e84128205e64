# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Manifest-based reproducibility comparison of two run directories.

The comparator trusts neither manifest. For every artifact key it checks
provenance first (source, dependency lock, toolchain), then recomputes both
files' hashes. A declared hash that doesn't match its own file is reported
separately from two builds that differ, since the first means a manifest is
wrong and the second means the build isn't reproducible.

Key sets may differ in one direction only. The run with fewer keys ("small")
must be a subset of the other ("large"). Keys missing from the large run are
a structural failure. Keys only the large run has are listed for information.
A small run with no keys at all is a structural failure too.
This lets a partial rebuild be checked against a full release.

Layers per key, stopping at the key's first failure:
  a. source name and version equal              -> DIFF_METADATA
  b. dependency lock hash present and equal     -> DIFF_METADATA
  c. toolchain identity present and equal       -> DIFF_METADATA
  d. both files present, each matches its own
     declared hash                              -> FAIL_MISSING_FILE / FAIL_MANIFEST_HASH
  e. the two recomputed hashes are equal        -> FAIL_CROSS_RUN_HASH

Every key is evaluated. Nothing is written into either run directory.
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from reprobuild.logging.logger import get_logger
from reprobuild.release.manifests.manifest import ArtifactKey, ArtifactRecord, load_manifest
from reprobuild.utils.filesystem import atomic_write
from reprobuild.utils.hashing import compute_sha256
from reprobuild.utils.paths import is_within, resolve_within

_logger: logging.Logger = get_logger(__name__)

RUN_A = "run_a"
RUN_B = "run_b"


class Verdict(str, enum.Enum):
    OK = "OK"
    DIFF_METADATA = "DIFF_METADATA"
    FAIL_MISSING_FILE = "FAIL_MISSING_FILE"
    FAIL_MANIFEST_HASH = "FAIL_MANIFEST_HASH"
    FAIL_CROSS_RUN_HASH = "FAIL_CROSS_RUN_HASH"


class Layer(str, enum.Enum):
    SOURCE = "a:source"
    DEPENDENCY_LOCK = "b:dependency_lock"
    TOOLCHAIN = "c:toolchain"
    FILE_HASH = "d:file_hash"
    CROSS_RUN = "e:cross_run"


@dataclass(frozen=True)
class KeyVerdict:
    """Outcome for one artifact key. `layer` is None when the key passed."""

    key: ArtifactKey
    verdict: Verdict
    layer: Layer | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.verdict is Verdict.OK

    def to_json_dict(self) -> dict[str, Any]:
        package, triple, binary_name = self.key
        return {
            "package": package,
            "target": triple,
            "bin": binary_name,
            "verdict": self.verdict.value,
            "layer": self.layer.value if self.layer is not None else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ComparisonReport:
    """
    Everything one comparison found.

    An empty small run is a structural failure, never a vacuous pass.

    Attributes:
        run_a: First run directory, as given.
        run_b: Second run directory, as given.
        small_run: Which argument (RUN_A or RUN_B) had fewer keys.
        missing_keys: Small-run keys absent from the large run. Non-empty
            means a structural failure and no per-key verdicts.
        extra_keys: Keys only the large run has. Informational.
        verdicts: Per-key results in sorted key order.
    """

    run_a: str
    run_b: str
    small_run: str
    missing_keys: tuple[ArtifactKey, ...] = ()
    extra_keys: tuple[ArtifactKey, ...] = ()
    verdicts: tuple[KeyVerdict, ...] = field(default_factory=tuple)

    @property
    def small_run_empty(self) -> bool:
        """The small run recorded no artifacts, so there was nothing to compare."""
        return not self.missing_keys and not self.verdicts

    @property
    def structural_failure(self) -> bool:
        return bool(self.missing_keys) or self.small_run_empty

    @property
    def passed(self) -> bool:
        return not self.structural_failure and all(v.ok for v in self.verdicts)

    @property
    def failures(self) -> list[KeyVerdict]:
        return [v for v in self.verdicts if not v.ok]

    def verdict_for(self, key: ArtifactKey) -> KeyVerdict | None:
        for verdict in self.verdicts:
            if verdict.key == key:
                return verdict
        return None

    def to_json_dict(self) -> dict[str, Any]:
        def keys(values: tuple[ArtifactKey, ...]) -> list[dict[str, str]]:
            return [{"package": p, "target": t, "bin": b} for p, t, b in values]

        return {
            "run_a": self.run_a,
            "run_b": self.run_b,
            "small_run": self.small_run,
            "passed": self.passed,
            "structural_failure": self.structural_failure,
            "small_run_empty": self.small_run_empty,
            "missing_keys": keys(self.missing_keys),
            "extra_keys": keys(self.extra_keys),
            "verdicts": [v.to_json_dict() for v in self.verdicts],
        }


def _format_key(key: ArtifactKey) -> str:
    package, triple, binary_name = key
    return f"(package={package}, target={triple}, bin={binary_name})"


def _artifact_path(run_dir: Path, record: ArtifactRecord) -> Path | None:
    """The record's file inside its run directory, or None if absent or escaping."""
    try:
        path = resolve_within(run_dir, record.relative_path)
    except ValueError:
        return None
    return path if path.is_file() else None


def _compare_key(
    key: ArtifactKey,
    a: ArtifactRecord,
    b: ArtifactRecord,
    dir_a: Path,
    dir_b: Path,
) -> KeyVerdict:
    if a.source_name != b.source_name or a.source_version != b.source_version:
        return KeyVerdict(
            key,
            Verdict.DIFF_METADATA,
            Layer.SOURCE,
            f"{RUN_A} {a.source_name}@{a.source_version} != {RUN_B} {b.source_name}@{b.source_version}",
        )

    if not a.dependency_lock_hash or not b.dependency_lock_hash:
        return KeyVerdict(key, Verdict.DIFF_METADATA, Layer.DEPENDENCY_LOCK, "dependency lock hash is empty")
    if a.dependency_lock_hash != b.dependency_lock_hash:
        return KeyVerdict(
            key,
            Verdict.DIFF_METADATA,
            Layer.DEPENDENCY_LOCK,
            f"{RUN_A} {a.dependency_lock_hash} != {RUN_B} {b.dependency_lock_hash}",
        )

    if not a.toolchain_identity or not b.toolchain_identity:
        return KeyVerdict(key, Verdict.DIFF_METADATA, Layer.TOOLCHAIN, "toolchain identity is empty")
    if a.toolchain_identity != b.toolchain_identity:
        return KeyVerdict(
            key,
            Verdict.DIFF_METADATA,
            Layer.TOOLCHAIN,
            f"{RUN_A} {a.toolchain_identity} != {RUN_B} {b.toolchain_identity}",
        )

    path_a = _artifact_path(dir_a, a)
    path_b = _artifact_path(dir_b, b)
    missing = [
        f"{label}: {record.relative_path}"
        for label, path, record in ((RUN_A, path_a, a), (RUN_B, path_b, b))
        if path is None
    ]
    if missing:
        return KeyVerdict(key, Verdict.FAIL_MISSING_FILE, Layer.FILE_HASH, "; ".join(missing))

    actual_a = compute_sha256(path_a)
    actual_b = compute_sha256(path_b)
    lied = [
        f"{label} declares {record.content_hash or '<empty>'} but file hashes to {actual}"
        for label, actual, record in ((RUN_A, actual_a, a), (RUN_B, actual_b, b))
        if actual != record.content_hash.lower()
    ]
    if lied:
        return KeyVerdict(key, Verdict.FAIL_MANIFEST_HASH, Layer.FILE_HASH, "; ".join(lied))

    if actual_a != actual_b:
        return KeyVerdict(
            key,
            Verdict.FAIL_CROSS_RUN_HASH,
            Layer.CROSS_RUN,
            f"{RUN_A} {actual_a} != {RUN_B} {actual_b}",
        )

    return KeyVerdict(key, Verdict.OK)


def compare_runs(run_a: Path, run_b: Path) -> ComparisonReport:
    """
    Compare two run directories artifact by artifact.

    Args:
        run_a: First run directory.
        run_b: Second run directory.

    Returns:
        The full report. Mismatches are reported, not raised.

    Raises:
        FileNotFoundError: If either run has no manifest.
        ManifestError: If either manifest is malformed or has duplicate keys.
    """
    index_a = load_manifest(run_a).index()
    index_b = load_manifest(run_b).index()

    if len(index_a) <= len(index_b):
        small_label, small, large = RUN_A, index_a, index_b
    else:
        small_label, small, large = RUN_B, index_b, index_a

    missing = tuple(sorted(set(small) - set(large)))
    extra = tuple(sorted(set(large) - set(small)))

    if not small:
        _logger.error(
            "Smaller run has no artifacts to compare",
            extra={"small_run": small_label, "extra": len(extra)},
        )
        return ComparisonReport(
            run_a=str(run_a),
            run_b=str(run_b),
            small_run=small_label,
            extra_keys=extra,
        )

    if missing:
        _logger.error(
            "Run key sets are incompatible",
            extra={
                "small_run": small_label,
                "missing": [_format_key(key) for key in missing],
            },
        )
        return ComparisonReport(
            run_a=str(run_a),
            run_b=str(run_b),
            small_run=small_label,
            missing_keys=missing,
            extra_keys=extra,
        )

    verdicts = []
    for key in sorted(small):
        verdict = _compare_key(key, index_a[key], index_b[key], run_a, run_b)
        verdicts.append(verdict)
        if verdict.ok:
            _logger.info("Artifact reproducible", extra={"key": _format_key(key), "verdict": verdict.verdict.value})
        else:
            _logger.error(
                "Artifact comparison failed",
                extra={
                    "key": _format_key(key),
                    "verdict": verdict.verdict.value,
                    "layer": verdict.layer.value if verdict.layer else None,
                    "detail": verdict.detail,
                },
            )

    for key in extra:
        _logger.info("Extra artifact in larger run", extra={"key": _format_key(key)})

    report = ComparisonReport(
        run_a=str(run_a),
        run_b=str(run_b),
        small_run=small_label,
        extra_keys=extra,
        verdicts=tuple(verdicts),
    )
    _logger.info(
        "Comparison finished",
        extra={
            "passed": report.passed,
            "compared": len(verdicts),
            "failed": len(report.failures),
            "extra": len(extra),
        },
    )
    return report


def write_report(report: ComparisonReport, path: Path) -> Path:
    """
    Write the report as JSON.

    Raises:
        ValueError: If `path` is inside one of the compared run directories.
    """
    for run_dir in (Path(report.run_a), Path(report.run_b)):
        if is_within(path, run_dir):
            raise ValueError(f"Refusing to write a report inside run directory {run_dir}")
    atomic_write(path, json.dumps(report.to_json_dict(), indent=2, sort_keys=True) + "\n")
    return path
