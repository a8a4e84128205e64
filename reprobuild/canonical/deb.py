# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Deterministic rewrite of .deb packages.

Bundlers copy source mtimes and build-host ownership into the control and
data tarballs, and pick whatever compressor they like. This module unpacks
both tarballs, pins every timestamp to the source date epoch, and repacks
them as sorted, root-owned, gzip -9 tarballs with no gzip timestamp. The
outer archive is reassembled in a fixed member order with zeroed headers.

The extracted payload (control fields and data tree) is kept on a DebPayload
so that the rpm step can rebuild its package from exactly the same files.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from reprobuild.canonical.archive import ArMember, build_ar, read_ar
from reprobuild.canonical.tree import deterministic_tar_gz, normalize_mtimes, safe_extract_tar
from reprobuild.logging.logger import get_logger
from reprobuild.utils.filesystem import atomic_write_bytes
from reprobuild.utils.process import CommandRunner

_logger: logging.Logger = get_logger(__name__)

DEBIAN_BINARY = b"2.0\n"
_TARBALL_PATTERN = re.compile(r"^(control|data)\.tar(\.(gz|xz|bz2|zst))?$")


class DebFormatError(ValueError):
    """The .deb doesn't have the expected members or can't be unpacked."""


@dataclass(frozen=True)
class DebPayload:
    """A canonicalized .deb and the trees it was rebuilt from."""

    deb_path: Path
    control_dir: Path
    data_dir: Path
    control_fields: dict[str, str]


def parse_control_fields(text: str) -> dict[str, str]:
    """
    Parse a Debian control paragraph.

    Continuation lines (leading whitespace) are appended to the previous
    field with a newline. A lone "." continuation means an empty line.
    """
    fields: dict[str, str] = {}
    current: str | None = None
    for line in text.splitlines():
        if not line.strip():
            if fields:
                break
            continue
        if line[0] in (" ", "\t") and current is not None:
            continuation = line.strip()
            fields[current] += "\n" + ("" if continuation == "." else continuation)
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        current = key.strip()
        fields[current] = value.strip()
    return fields


def _decompress_zstd(data: bytes, scratch: Path, runner: CommandRunner) -> bytes:
    # tarfile can't read zstd on every supported interpreter, so use the CLI.
    compressed = scratch.with_suffix(".zst")
    compressed.write_bytes(data)
    result = runner.run(["zstd", "-d", "-q", "-f", "-o", str(scratch), str(compressed)])
    if not result.success:
        raise DebFormatError(f"zstd decompression failed: {result.output.strip()}")
    return scratch.read_bytes()


def _extract_member(
    member: ArMember, destination: Path, work_dir: Path, runner: CommandRunner
) -> None:
    data = member.data
    if member.name.endswith(".zst"):
        data = _decompress_zstd(data, work_dir / f"{member.name}.raw", runner)
    safe_extract_tar(data, destination)


def canonicalize_deb(
    deb_path: Path,
    epoch: int,
    work_dir: Path,
    runner: CommandRunner,
) -> DebPayload:
    """
    Rewrite a .deb in place into its canonical byte layout.

    Args:
        deb_path: The package to rewrite.
        epoch: Timestamp applied to every archive entry.
        work_dir: Empty scratch directory. The extracted trees stay here for
            later steps.
        runner: Used only for zstd-compressed members.

    Returns:
        The payload the package was rebuilt from.

    Raises:
        DebFormatError: If the control or data member is missing.
        ArchiveFormatError: If the outer archive is malformed.
        UnsafeArchiveError: If a member would extract outside the work dir.
    """
    members = read_ar(deb_path)
    tarballs: dict[str, ArMember] = {}
    for member in members:
        match = _TARBALL_PATTERN.match(member.name)
        if match:
            tarballs.setdefault(match.group(1), member)

    for required in ("control", "data"):
        if required not in tarballs:
            raise DebFormatError(f"{deb_path.name} has no {required}.tar member")

    control_dir = work_dir / "control"
    data_dir = work_dir / "data"
    _extract_member(tarballs["control"], control_dir, work_dir, runner)
    _extract_member(tarballs["data"], data_dir, work_dir, runner)

    normalize_mtimes(control_dir, epoch)
    normalize_mtimes(data_dir, epoch)

    rebuilt = build_ar(
        [
            ArMember("debian-binary", DEBIAN_BINARY),
            ArMember("control.tar.gz", deterministic_tar_gz(control_dir, epoch)),
            ArMember("data.tar.gz", deterministic_tar_gz(data_dir, epoch)),
        ]
    )
    mode = deb_path.stat().st_mode
    atomic_write_bytes(deb_path, rebuilt)
    deb_path.chmod(mode & 0o7777)

    control_file = control_dir / "control"
    control_fields = (
        parse_control_fields(control_file.read_text(encoding="utf-8", errors="replace"))
        if control_file.is_file()
        else {}
    )

    _logger.info(
        "Canonicalized deb",
        extra={
            "deb": deb_path.name,
            "package": control_fields.get("Package", ""),
            "version": control_fields.get("Version", ""),
        },
    )
    return DebPayload(
        deb_path=deb_path,
        control_dir=control_dir,
        data_dir=data_dir,
        control_fields=control_fields,
    )

