# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Hashing utilities for reprobuild.

Every artifact record carries a SHA-256 of the final bytes on disk, and
dependency lock files are fingerprinted the same way. All hashes are
lowercase hex.
"""

import hashlib
from collections.abc import Iterable
from pathlib import Path

HASH_ALGORITHM = "sha256"
HASH_BUFFER_SIZE = 65536  # 64 KiB


def compute_sha256(file_path: Path) -> str:
    """
    Compute the SHA-256 hex digest of a file.

    Reads in 64 KiB chunks so multi-hundred-megabyte installers never
    have to fit in memory.

    Args:
        file_path: Path to the file to hash.

    Returns:
        Lowercase hex string of the SHA-256 digest.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        OSError: If the file can't be read.
    """
    hasher = hashlib.sha256()
    _update_from_file(hasher, file_path)
    return hasher.hexdigest()


def compute_sha256_bytes(data: bytes) -> str:
    """Compute the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_sha256_concat(file_paths: Iterable[Path]) -> str:
    """
    Hash several files as one byte stream, in the order given.

    Used for fingerprints that span more than one lock file (the Cargo lock
    followed by the frontend package lock).
    """
    hasher = hashlib.sha256()
    for file_path in file_paths:
        _update_from_file(hasher, file_path)
    return hasher.hexdigest()


def verify_checksum(file_path: Path, expected_hash: str) -> bool:
    """
    Check whether a file's SHA-256 matches the expected hash.

    Returns:
        True if the hash matches, False otherwise.
    """
    actual_hash = compute_sha256(file_path)
    return actual_hash == expected_hash.lower()


def _update_from_file(hasher: "hashlib._Hash", file_path: Path) -> None:
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(HASH_BUFFER_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
