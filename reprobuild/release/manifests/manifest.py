# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Run manifests: the record of what one build run produced.

Each run directory holds exactly one manifest.json:

    {
      "build": {"target": ..., "profile": ..., "run_id": ..., "timestamp": ...},
      "artifacts": [
        {"package": ..., "target": <triple>, "bin": ..., "bin_path": ...,
         "sha256": ..., "crate": ..., "version": ..., "crate_lock_sha256": ...,
         "rust_digest": ...},
        ...
      ]
    }

Every artifact record traces a file back to its source unit, its version,
the fingerprint of its dependency lock and the toolchain that built it. A
record is identified by (package, triple, binary_name) and that key is
unique within a manifest.

Writing is strict: every field must be filled in, records are sorted into a
fixed order so execution order never shows up in the bytes, and an existing
manifest is never overwritten. Loading is lenient about empty provenance
values because judging those is the comparator's job. It is strict about
structure and key uniqueness.
"""

import json
import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from reprobuild.logging.logger import get_logger
from reprobuild.utils.filesystem import atomic_write

_logger: logging.Logger = get_logger(__name__)

MANIFEST_FILENAME = "manifest.json"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ArtifactKey = tuple[str, str, str]


class ManifestError(ValueError):
    """A manifest is structurally invalid, incomplete, or would be overwritten."""


# Attribute name -> JSON field name.
_RECORD_FIELD_NAMES: dict[str, str] = {
    "package": "package",
    "triple": "target",
    "binary_name": "bin",
    "relative_path": "bin_path",
    "content_hash": "sha256",
    "source_name": "crate",
    "source_version": "version",
    "dependency_lock_hash": "crate_lock_sha256",
    "toolchain_identity": "rust_digest",
}

_KEY_JSON_FIELDS: tuple[str, ...] = ("package", "target", "bin")
_BUILD_FIELDS: tuple[str, ...] = ("target", "profile", "run_id", "timestamp")


@dataclass(frozen=True)
class ArtifactRecord:
    """One produced file and its provenance."""

    package: str
    triple: str
    binary_name: str
    relative_path: str
    content_hash: str
    source_name: str
    source_version: str
    dependency_lock_hash: str
    toolchain_identity: str

    @property
    def key(self) -> ArtifactKey:
        return (self.package, self.triple, self.binary_name)

    def to_json_dict(self) -> dict[str, str]:
        return {
            json_name: getattr(self, attr) for attr, json_name in _RECORD_FIELD_NAMES.items()
        }

    @classmethod
    def from_json_dict(cls, data: dict[str, Any], index: int = 0) -> "ArtifactRecord":
        """
        Parse one artifact entry.

        Key fields must be non-empty strings. Every other field is coerced to
        a string and may be empty.

        Raises:
            ManifestError: If the entry isn't an object or lacks a key field.
        """
        if not isinstance(data, dict):
            raise ManifestError(f"Artifact entry {index} is not an object")

        for json_name in _KEY_JSON_FIELDS:
            value = data.get(json_name)
            if not isinstance(value, str) or not value:
                raise ManifestError(f"Artifact entry {index} is missing key field '{json_name}'")

        values: dict[str, str] = {}
        for attr, json_name in _RECORD_FIELD_NAMES.items():
            raw = data.get(json_name)
            values[attr] = "" if raw is None else str(raw)
        return cls(**values)


@dataclass(frozen=True)
class Manifest:
    """The full contents of one run's manifest.json."""

    target: str
    profile: str
    run_id: str
    timestamp: str
    artifacts: tuple[ArtifactRecord, ...] = ()

    def in_canonical_order(self) -> "Manifest":
        """Copy with records in canonical (triple, package, binary_name) order."""
        ordered = tuple(
            sorted(self.artifacts, key=lambda r: (r.triple, r.package, r.binary_name))
        )
        return Manifest(self.target, self.profile, self.run_id, self.timestamp, ordered)

    def index(self) -> dict[ArtifactKey, ArtifactRecord]:
        """
        Map each key to its record.

        Raises:
            ManifestError: If two records share a key.
        """
        indexed: dict[ArtifactKey, ArtifactRecord] = {}
        for record in self.artifacts:
            if record.key in indexed:
                package, triple, binary_name = record.key
                raise ManifestError(
                    f"Duplicate artifact key (package={package}, target={triple}, bin={binary_name})"
                )
            indexed[record.key] = record
        return indexed

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "build": {
                "target": self.target,
                "profile": self.profile,
                "run_id": self.run_id,
                "timestamp": self.timestamp,
            },
            "artifacts": [record.to_json_dict() for record in self.artifacts],
        }


def utc_timestamp(now: datetime | None = None) -> str:
    """UTC timestamp in the manifest's fixed second-resolution format."""
    moment = now or datetime.now(tz=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def create_manifest(
    target: str,
    profile: str,
    run_id: str,
    artifacts: list[ArtifactRecord] | tuple[ArtifactRecord, ...],
    timestamp: str | None = None,
) -> Manifest:
    """
    Assemble a manifest for a finished run, records already in canonical order.

    Raises:
        ManifestError: If two records share a key.
    """
    manifest = Manifest(
        target=target,
        profile=profile,
        run_id=run_id,
        timestamp=timestamp or utc_timestamp(),
        artifacts=tuple(artifacts),
    ).in_canonical_order()
    manifest.index()
    return manifest


def empty_fields(manifest: Manifest) -> list[str]:
    """Describe every empty build or artifact field, in document order."""
    problems = [
        f"Manifest build field '{name}' is empty"
        for name in _BUILD_FIELDS
        if not getattr(manifest, name)
    ]
    for record in manifest.artifacts:
        for field_info in fields(record):
            if not getattr(record, field_info.name):
                package, triple, binary_name = record.key
                problems.append(
                    f"Artifact (package={package}, target={triple}, bin={binary_name}) "
                    f"has empty field '{_RECORD_FIELD_NAMES[field_info.name]}'"
                )
    return problems


def _check_complete(manifest: Manifest) -> None:
    problems = empty_fields(manifest)
    if problems:
        raise ManifestError(problems[0])


def serialize_manifest(manifest: Manifest) -> str:
    """Canonical JSON text for a manifest."""
    return json.dumps(manifest.in_canonical_order().to_json_dict(), indent=2, sort_keys=True) + "\n"


def write_manifest(manifest: Manifest, run_dir: Path) -> Path:
    """
    Serialize a manifest into `<run_dir>/manifest.json`, once.

    Args:
        manifest: The manifest to write.
        run_dir: The run directory.

    Returns:
        Path of the written manifest.

    Raises:
        ManifestError: If a field is empty or a key is duplicated.
        FileExistsError: If the run directory already has a manifest.
    """
    _check_complete(manifest)
    manifest.index()

    path = run_dir / MANIFEST_FILENAME
    if path.exists():
        raise FileExistsError(f"Manifest already exists: {path}")

    atomic_write(path, serialize_manifest(manifest), exclusive=True)

    _logger.info(
        "Manifest written",
        extra={
            "path": str(path),
            "run_id": manifest.run_id,
            "artifacts": len(manifest.artifacts),
        },
    )
    return path


def load_manifest(path: Path) -> Manifest:
    """
    Load a manifest from a file or from a run directory.

    Args:
        path: A manifest.json path, or a run directory containing one.

    Returns:
        Parsed Manifest with records in file order.

    Raises:
        FileNotFoundError: If the manifest doesn't exist.
        ManifestError: On invalid JSON, a wrong shape, a missing key field,
            or a duplicate key.
    """
    if path.is_dir():
        path = path / MANIFEST_FILENAME
    if not path.is_file():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as err:
        raise ManifestError(f"Manifest {path} is not valid JSON: {err}") from err

    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {path} must be a JSON object")

    build = data.get("build", {})
    artifacts = data.get("artifacts")
    if not isinstance(build, dict):
        raise ManifestError(f"Manifest {path} has a non-object 'build' section")
    if not isinstance(artifacts, list):
        raise ManifestError(f"Manifest {path} is missing the 'artifacts' list")

    manifest = Manifest(
        target=str(build.get("target", "")),
        profile=str(build.get("profile", "")),
        run_id=str(build.get("run_id", "")),
        timestamp=str(build.get("timestamp", "")),
        artifacts=tuple(
            ArtifactRecord.from_json_dict(entry, index) for index, entry in enumerate(artifacts)
        ),
    )
    manifest.index()

    _logger.debug(
        "Manifest loaded",
        extra={"path": str(path), "run_id": manifest.run_id, "artifacts": len(manifest.artifacts)},
    )
    return manifest
