# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Reader and deterministic writer for Unix `ar` archives.

A .deb is an `ar` archive with three members. Reading is done here in pure
Python, and so is writing, in the same deterministic mode as `ar D`: every
member gets mtime 0, uid/gid 0 and mode 644. Member order is exactly the
order given by the caller.

Format: an 8-byte global magic, then per member a 60-byte ASCII header
(name 16, mtime 12, uid 6, gid 6, mode 8, size 10, terminator 2) followed by
the data, padded with a newline to an even length.
"""

from dataclasses import dataclass
from pathlib import Path

AR_MAGIC = b"!<arch>\n"
_HEADER_SIZE = 60
_HEADER_TERMINATOR = b"`\n"


class ArchiveFormatError(ValueError):
    """The bytes are not a well-formed `ar` archive this module can handle."""


@dataclass(frozen=True)
class ArMember:
    name: str
    data: bytes


def read_ar(path: Path) -> list[ArMember]:
    """
    Parse an `ar` archive into its members, in archive order.

    GNU long-name tables and BSD `#1/` names are not used by .deb files and
    are rejected.

    Raises:
        ArchiveFormatError: On a bad magic, a truncated member, or an
            unsupported member name.
    """
    blob = path.read_bytes()
    if not blob.startswith(AR_MAGIC):
        raise ArchiveFormatError(f"{path} is not an ar archive")

    members: list[ArMember] = []
    offset = len(AR_MAGIC)
    while offset < len(blob):
        header = blob[offset : offset + _HEADER_SIZE]
        if len(header) < _HEADER_SIZE:
            raise ArchiveFormatError(f"{path}: truncated member header at offset {offset}")
        if header[58:60] != _HEADER_TERMINATOR:
            raise ArchiveFormatError(f"{path}: bad member header terminator at offset {offset}")

        raw_name = header[0:16].decode("ascii").rstrip(" ")
        if raw_name.startswith("#1/") or raw_name in ("/", "//"):
            raise ArchiveFormatError(f"{path}: unsupported member name '{raw_name}'")
        name = raw_name[:-1] if raw_name.endswith("/") else raw_name

        try:
            size = int(header[48:58].decode("ascii").strip())
        except ValueError as err:
            raise ArchiveFormatError(f"{path}: bad size field for '{name}'") from err

        start = offset + _HEADER_SIZE
        end = start + size
        if end > len(blob):
            raise ArchiveFormatError(f"{path}: member '{name}' is truncated")
        members.append(ArMember(name=name, data=blob[start:end]))

        offset = end + (size % 2)

    return members


def _member_header(name: str, size: int) -> bytes:
    encoded_name = f"{name}/".encode("ascii")
    if len(encoded_name) > 16:
        raise ArchiveFormatError(f"member name '{name}' is too long for an ar header")
    header = (
        encoded_name.ljust(16)
        + b"0".ljust(12)
        + b"0".ljust(6)
        + b"0".ljust(6)
        + b"644".ljust(8)
        + str(size).encode("ascii").ljust(10)
        + _HEADER_TERMINATOR
    )
    return header


def build_ar(members: list[ArMember]) -> bytes:
    """Serialize members into deterministic `ar` bytes, in the given order."""
    parts = [AR_MAGIC]
    for member in members:
        parts.append(_member_header(member.name, len(member.data)))
        parts.append(member.data)
        if len(member.data) % 2:
            parts.append(b"\n")
    return b"".join(parts)


def write_ar(path: Path, members: list[ArMember]) -> None:
    path.write_bytes(build_ar(members))
