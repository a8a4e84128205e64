# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Minimal squashfs v4 superblock parsing.

An AppImage is an ELF runtime followed by a squashfs image. The runtime
itself may contain the bytes "hsqs", so finding the payload means scanning
for the magic and accepting the first offset where a complete, sane
superblock starts.
"""

import struct
from dataclasses import dataclass

SQUASHFS_MAGIC = b"hsqs"
SUPERBLOCK_SIZE = 96

# magic, inodes, mkfs_time, block_size, fragments, compressor, block_log,
# flags, id_count, major, minor, root_inode, bytes_used
_SUPERBLOCK_STRUCT = struct.Struct("<4sIIIIHHHHHHQQ")

_KNOWN_COMPRESSORS = {1, 2, 3, 4, 5, 6}
_MIN_BLOCK_LOG = 12
_MAX_BLOCK_LOG = 20


@dataclass(frozen=True)
class Superblock:
    inode_count: int
    mkfs_time: int
    block_size: int
    block_log: int
    compressor: int
    version_major: int
    version_minor: int
    bytes_used: int


def parse_superblock(data: bytes, offset: int = 0) -> Superblock | None:
    """
    Parse and sanity-check a superblock at `offset`.

    Returns None unless the magic matches, the version is 4.0, the block
    size agrees with block_log, the compressor id is known, and the image
    fits inside `data`.
    """
    if offset < 0 or offset + SUPERBLOCK_SIZE > len(data):
        return None
    fields = _SUPERBLOCK_STRUCT.unpack_from(data, offset)
    (
        magic,
        inode_count,
        mkfs_time,
        block_size,
        _fragments,
        compressor,
        block_log,
        _flags,
        _id_count,
        major,
        minor,
        _root_inode,
        bytes_used,
    ) = fields

    if magic != SQUASHFS_MAGIC or major != 4 or minor != 0:
        return None
    if not _MIN_BLOCK_LOG <= block_log <= _MAX_BLOCK_LOG or block_size != 1 << block_log:
        return None
    if compressor not in _KNOWN_COMPRESSORS:
        return None
    if bytes_used < SUPERBLOCK_SIZE or offset + bytes_used > len(data):
        return None

    return Superblock(
        inode_count=inode_count,
        mkfs_time=mkfs_time,
        block_size=block_size,
        block_log=block_log,
        compressor=compressor,
        version_major=major,
        version_minor=minor,
        bytes_used=bytes_used,
    )


def find_payload_offset(data: bytes) -> int | None:
    """Offset of the first valid squashfs superblock, or None."""
    offset = data.find(SQUASHFS_MAGIC)
    while offset != -1:
        if parse_superblock(data, offset) is not None:
            return offset
        offset = data.find(SQUASHFS_MAGIC, offset + 1)
    return None
