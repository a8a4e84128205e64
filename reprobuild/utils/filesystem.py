# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Safe filesystem operations for reprobuild.

Rules for anything that ends up in a run directory:
  - writes are atomic (no half-written manifest or artifact on failure)
  - a failed run leaves nothing behind that could be mistaken for a result

Atomic writes go to a temporary file in the same directory as the target,
which is then renamed into place. Rename on the same filesystem is atomic on
POSIX, so a crash leaves a stray temp file instead of a corrupted target.
"""

import os
import shutil
import tempfile
from pathlib import Path

_TMP_PREFIX = ".reprobuild_tmp_"


def atomic_write(
    target_path: Path,
    content: str,
    encoding: str = "utf-8",
    exclusive: bool = False,
) -> None:
    """
    Write text to a file atomically.

    Args:
        target_path: Where the final file should end up.
        content: The string content to write.
        encoding: Text encoding to use.
        exclusive: Refuse to replace an existing target. The final step uses
                   a hard link instead of a rename, so the check and the
                   write cannot race.

    Raises:
        FileExistsError: If exclusive is set and the target already exists.
        OSError: If the write or rename fails.
    """
    atomic_write_bytes(target_path, content.encode(encoding), exclusive=exclusive)


def atomic_write_bytes(target_path: Path, data: bytes, exclusive: bool = False) -> None:
    """
    Write binary data to a file atomically. Same approach as atomic_write.

    Raises:
        FileExistsError: If exclusive is set and the target already exists.
        OSError: If the write or rename fails.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=str(target_path.parent),
        prefix=_TMP_PREFIX,
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        temp_fd.write(data)
        temp_fd.flush()
        os.fsync(temp_fd.fileno())
        temp_fd.close()
        if exclusive:
            os.link(temp_path, target_path)
            temp_path.unlink()
        else:
            temp_path.replace(target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def copy_file(source: Path, destination: Path) -> Path:
    """
    Copy a file, creating parent directories, keeping the permission bits.

    Returns:
        The destination path.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)
    return destination


def remove_tree(path: Path) -> bool:
    """
    Delete a directory tree if it exists. Returns whether anything was removed.

    Raises:
        OSError: If the tree exists but can't be removed.
    """
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False
