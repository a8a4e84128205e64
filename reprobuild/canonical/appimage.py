# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Deterministic rebuild of AppImages.

The AppImage's squashfs payload is regenerated from its AppDir. Entries are
staged in sorted order with pinned timestamps, mksquashfs runs on a single
processor with an explicit sort file and forced root ownership, and the
image is appended to the original runtime.

Two fields in the runtime depend on the payload, and both are patched:
  - bytes 8..16 hold the payload offset (the runtime size) as a u64 LE
  - the last 16 bytes of the runtime hold an image id, which is set to the
    first 16 bytes of the payload's SHA-256

The result is checked for a valid superblock at the runtime boundary before
it replaces the original file.
"""

import hashlib
import logging
import struct
from pathlib import Path

from reprobuild.canonical.squashfs import find_payload_offset, parse_superblock
from reprobuild.canonical.tree import iter_sorted, normalize_mtimes, stage_sorted_copy
from reprobuild.logging.logger import get_logger
from reprobuild.utils.filesystem import atomic_write_bytes
from reprobuild.utils.process import CommandResult, CommandRunner

_logger: logging.Logger = get_logger(__name__)

_OFFSET_FIELD_POSITION = 8
_IMAGE_ID_LENGTH = 16
_SORT_PRIORITY_START = 32000
_SORT_PRIORITY_FLOOR = -32000


class AppImageError(RuntimeError):
    """The AppImage can't be split, rebuilt, or validated."""

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        self.result = result
        super().__init__(message)


def build_sort_file(staged: Path) -> str:
    """
    mksquashfs sort file: every path in sorted order with descending priority.

    Priorities start at 32000 and stop decreasing at -32000.
    """
    lines = []
    priority = _SORT_PRIORITY_START
    for entry in iter_sorted(staged):
        lines.append(f"{entry.relative_to(staged).as_posix()} {priority}")
        if priority > _SORT_PRIORITY_FLOOR:
            priority -= 1
    return "\n".join(lines) + ("\n" if lines else "")


def patch_runtime(runtime: bytes, payload: bytes) -> bytes:
    """
    Write the payload offset and image id into a copy of the runtime.

    Raises:
        AppImageError: If the runtime is too small to hold either field.
    """
    size = len(runtime)
    if size < max(_OFFSET_FIELD_POSITION + 8, _IMAGE_ID_LENGTH):
        raise AppImageError(f"AppImage runtime is only {size} bytes")

    patched = bytearray(runtime)
    struct.pack_into("<Q", patched, _OFFSET_FIELD_POSITION, size)
    image_id = hashlib.sha256(payload).digest()[:_IMAGE_ID_LENGTH]
    patched[size - _IMAGE_ID_LENGTH : size] = image_id
    return bytes(patched)


def mksquashfs_argv(staged: Path, output: Path, sort_file: Path) -> list[str]:
    return [
        "mksquashfs",
        str(staged),
        str(output),
        "-noappend",
        "-all-root",
        "-root-owned",
        "-force-uid",
        "0",
        "-force-gid",
        "0",
        "-processors",
        "1",
        "-no-duplicates",
        "-no-fragments",
        "-sort",
        str(sort_file),
        "-quiet",
    ]


def rebuild_appimage(
    appimage_path: Path,
    appdir: Path,
    epoch: int,
    work_dir: Path,
    runner: CommandRunner,
) -> CommandResult:
    """
    Replace `appimage_path` with a deterministic rebuild from `appdir`.

    Args:
        appimage_path: The bundler's AppImage. Its runtime is reused.
        appdir: The AppDir the bundler packed.
        epoch: Source date epoch.
        work_dir: Empty scratch directory.
        runner: Runs mksquashfs.

    Returns:
        The mksquashfs invocation result, for diagnostics.

    Raises:
        AppImageError: If no payload boundary is found, mksquashfs fails,
            or the rebuilt image doesn't validate.
    """
    original = appimage_path.read_bytes()
    runtime_size = find_payload_offset(original)
    if runtime_size is None:
        raise AppImageError(f"No valid squashfs payload found in {appimage_path.name}")
    runtime = original[:runtime_size]

    staged = work_dir / "appdir.staged"
    normalize_mtimes(appdir, epoch)
    stage_sorted_copy(appdir, staged)
    normalize_mtimes(staged, epoch)

    sort_file = work_dir / "squashfs.sort"
    sort_file.write_text(build_sort_file(staged), encoding="utf-8")

    payload_path = work_dir / "payload.squashfs"
    result = runner.run(
        mksquashfs_argv(staged, payload_path, sort_file),
        env={"SOURCE_DATE_EPOCH": str(epoch), "TZ": "UTC", "LC_ALL": "C"},
    )
    if not result.success:
        raise AppImageError(
            f"mksquashfs exited with {result.exit_code}: {result.output.strip()[-2000:]}", result
        )
    if not payload_path.is_file() or payload_path.stat().st_size == 0:
        raise AppImageError("mksquashfs produced an empty payload", result)

    payload = payload_path.read_bytes()
    rebuilt = patch_runtime(runtime, payload) + payload

    if parse_superblock(rebuilt, runtime_size) is None:
        raise AppImageError(f"Rebuilt {appimage_path.name} has no valid payload at {runtime_size}")

    atomic_write_bytes(appimage_path, rebuilt)
    appimage_path.chmod(0o755)

    _logger.info(
        "Rebuilt AppImage",
        extra={
            "appimage": appimage_path.name,
            "runtime_size": runtime_size,
            "payload_bytes": len(payload),
        },
    )
    return result
