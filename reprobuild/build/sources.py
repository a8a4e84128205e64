# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Source unit metadata: name, version and dependency lock fingerprint.

A source unit is a crate directory under the project root. Its version is
read straight from Cargo.toml. When the crate inherits its version from a
workspace (`version.workspace = true`), the nearest ancestor manifest with a
`[workspace.package]` table supplies it.
"""

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from reprobuild.build.errors import SourceError
from reprobuild.logging.logger import get_logger
from reprobuild.utils.hashing import compute_sha256, compute_sha256_concat

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceUnit:
    """Provenance fields recorded for every artifact built from this unit."""

    name: str
    directory: Path
    version: str
    lock_hash: str


def _load_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as err:
        raise SourceError(f"Cannot parse {path}: {err}") from err


def _workspace_version(crate_dir: Path, stop_at: Path) -> str | None:
    """Walk up from the crate looking for `[workspace.package] version`."""
    stop = stop_at.resolve()
    current = crate_dir.resolve().parent
    while True:
        manifest = current / "Cargo.toml"
        if manifest.is_file():
            data = _load_toml(manifest)
            version = data.get("workspace", {}).get("package", {}).get("version")
            if isinstance(version, str):
                return version
        if current == stop or current == current.parent:
            return None
        current = current.parent


def read_crate_version(cargo_toml: Path, project_root: Path) -> str:
    """
    Read `[package] version` from a Cargo manifest.

    Raises:
        SourceError: If the manifest has no usable version.
    """
    data = _load_toml(cargo_toml)
    package = data.get("package", {})
    version = package.get("version")

    if isinstance(version, dict) and version.get("workspace") is True:
        version = _workspace_version(cargo_toml.parent, project_root)

    if not isinstance(version, str) or not version:
        raise SourceError(f"Could not get version from {cargo_toml}")
    return version


def resolve_source_unit(project_root: Path, source_name: str) -> SourceUnit:
    """
    Resolve a crate directory into a SourceUnit.

    Both Cargo.toml and Cargo.lock must exist. The lock file is what pins
    every dependency, so a crate without one cannot be built reproducibly.

    Raises:
        SourceError: If either file is missing or the version can't be read.
    """
    crate_dir = project_root / source_name
    cargo_toml = crate_dir / "Cargo.toml"
    cargo_lock = crate_dir / "Cargo.lock"

    if not cargo_lock.is_file():
        raise SourceError(f"Cargo.lock not found at crate {source_name}")
    if not cargo_toml.is_file():
        raise SourceError(f"Missing {cargo_toml} to read version")

    unit = SourceUnit(
        name=source_name,
        directory=crate_dir,
        version=read_crate_version(cargo_toml, project_root),
        lock_hash=compute_sha256(cargo_lock),
    )
    _logger.debug(
        "Source unit resolved",
        extra={"source": source_name, "version": unit.version},
    )
    return unit


def resolve_desktop_source(project_root: Path, source_name: str) -> SourceUnit:
    """
    Resolve the desktop application's sources.

    The lock fingerprint covers the Rust lock followed by the frontend
    package lock, since both feed into the bundle.

    Raises:
        SourceError: If any of the three input files is missing.
    """
    app_dir = project_root / source_name
    cargo_toml = app_dir / "Cargo.toml"
    cargo_lock = app_dir / "Cargo.lock"
    frontend_lock = app_dir.parent / "pnpm-lock.yaml"

    for required in (cargo_toml, cargo_lock, frontend_lock):
        if not required.is_file():
            raise SourceError(f"Missing {required}")

    return SourceUnit(
        name=source_name,
        directory=app_dir,
        version=read_crate_version(cargo_toml, project_root),
        lock_hash=compute_sha256_concat([cargo_lock, frontend_lock]),
    )
