# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Host-side reproducibility inputs.

Container builds are pinned by image digest. Native macOS bundling can't be,
because Apple's toolchain only runs on the host. Two things take the place
of a digest there:

  - a host toolchain identity: SHA-256 over the version output of every
    tool involved, recorded as `host-toolchain-<sha>`
  - pinned versions from the digest lock file. The build refuses to start
    when any host tool differs from its pin.

This module also decides the source date epoch that every timestamp in a
desktop build is pinned to.
"""

import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from reprobuild.build.errors import BuildError, HostToolchainMismatchError
from reprobuild.logging.logger import get_logger
from reprobuild.utils.hashing import compute_sha256_bytes
from reprobuild.utils.process import CommandRunner

_logger: logging.Logger = get_logger(__name__)

DEFAULT_SOURCE_DATE_EPOCH = 1704067200  # 2024-01-01T00:00:00Z
HOST_IDENTITY_PREFIX = "host-toolchain-"

# Version commands whose combined output forms the host identity, in order.
_IDENTITY_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("rustc", "-Vv"),
    ("cargo", "-V"),
    ("node", "--version"),
    ("pnpm", "--version"),
    ("clang", "--version"),
    ("xcodebuild", "-version"),
    ("xcrun", "--show-sdk-version"),
)


def _second_word(text: str) -> str:
    parts = text.split()
    return parts[1] if len(parts) > 1 else ""


def _strip_v(text: str) -> str:
    value = text.strip()
    return value[1:] if value.startswith("v") else value


def _apple_clang(text: str) -> str:
    match = re.search(r"^Apple clang version ([0-9.]+)", text, re.MULTILINE)
    return match.group(1) if match else ""


def _xcode(text: str) -> str:
    match = re.search(r"^Xcode (\S+)", text, re.MULTILINE)
    return match.group(1) if match else ""


@dataclass(frozen=True)
class _PinnedTool:
    pin: str
    label: str
    argv: tuple[str, ...]
    extract: Callable[[str], str]


# Pin key (as stored by DigestRegistry.host_pins) -> how to read the host value.
_PINNED_TOOLS: tuple[_PinnedTool, ...] = (
    _PinnedTool("rustc", "rustc", ("rustc", "-V"), _second_word),
    _PinnedTool("cargo", "cargo", ("cargo", "-V"), _second_word),
    _PinnedTool("node", "node", ("node", "--version"), _strip_v),
    _PinnedTool("pnpm", "pnpm", ("pnpm", "--version"), str.strip),
    _PinnedTool(
        "tauri_cli",
        "tauri-cli",
        (
            "node",
            "-e",
            'try{process.stdout.write(require("@tauri-apps/cli/package.json").version||"")}'
            'catch(_){process.stdout.write("")}',
        ),
        str.strip,
    ),
    _PinnedTool("clang", "apple-clang", ("clang", "--version"), _apple_clang),
    _PinnedTool("xcode", "xcode", ("xcodebuild", "-version"), _xcode),
    _PinnedTool("sdk", "macOS SDK", ("xcrun", "--show-sdk-version"), str.strip),
)


@dataclass(frozen=True)
class HostToolchainSnapshot:
    """Versions of the host tools used for native bundling."""

    versions: dict[str, str] = field(default_factory=dict)
    identity_sha256: str = ""

    @property
    def identity(self) -> str:
        return f"{HOST_IDENTITY_PREFIX}{self.identity_sha256}"


def host_toolchain_identity(runner: CommandRunner) -> str:
    """
    SHA-256 over the concatenated version output of the host toolchain.

    Tools that are missing contribute nothing, so the identity of a Linux
    host without Xcode is still stable from run to run.
    """
    chunks: list[str] = []
    for argv in _IDENTITY_COMMANDS:
        result = runner.run(list(argv))
        if result.success:
            chunks.append(result.stdout)
    return compute_sha256_bytes("".join(chunks).encode("utf-8"))


def snapshot_host_toolchain(runner: CommandRunner, app_dir: Path | None = None) -> HostToolchainSnapshot:
    """Read every pinned tool's version from the host and compute the identity."""
    versions: dict[str, str] = {}
    for tool in _PINNED_TOOLS:
        result = runner.run(list(tool.argv), cwd=app_dir)
        versions[tool.pin] = tool.extract(result.stdout) if result.success else ""
    return HostToolchainSnapshot(versions=versions, identity_sha256=host_toolchain_identity(runner))


def enforce_host_pins(snapshot: HostToolchainSnapshot, pins: Mapping[str, str]) -> None:
    """
    Require every pinned host tool to match exactly.

    Raises:
        BuildError: If a pin is missing from the lock file.
        HostToolchainMismatchError: On the first tool whose version differs.
    """
    for tool in _PINNED_TOOLS:
        expected = pins.get(tool.pin, "")
        if not expected:
            raise BuildError(
                f"Missing MACOS_HOST_{tool.pin.upper()}_VERSION pin. Native macOS "
                "bundling requires pinned host tool versions."
            )
        actual = snapshot.versions.get(tool.pin, "")
        if actual != expected:
            raise HostToolchainMismatchError(tool.label, expected, actual or "<unavailable>")
    _logger.info("Host toolchain matches pinned versions", extra={"tools": len(_PINNED_TOOLS)})


def resolve_source_date_epoch(
    project_root: Path,
    runner: CommandRunner,
    configured: int | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """
    Pick the timestamp every build output is pinned to.

    Order: explicit config, then $SOURCE_DATE_EPOCH, then the last commit
    time of the source tree, then a fixed default.

    Raises:
        BuildError: If $SOURCE_DATE_EPOCH is set but isn't a non-negative integer.
    """
    if configured is not None:
        return configured

    env = os.environ if environ is None else environ
    from_env = env.get("SOURCE_DATE_EPOCH", "")
    if from_env:
        if not from_env.isdigit():
            raise BuildError(f"Invalid SOURCE_DATE_EPOCH value: {from_env}")
        return int(from_env)

    result = runner.run(["git", "-C", str(project_root), "log", "-1", "--pretty=%ct"])
    commit_time = result.stdout.strip() if result.success else ""
    if commit_time.isdigit():
        return int(commit_time)

    _logger.info(
        "Using default source date epoch",
        extra={"source_date_epoch": DEFAULT_SOURCE_DATE_EPOCH},
    )
    return DEFAULT_SOURCE_DATE_EPOCH
