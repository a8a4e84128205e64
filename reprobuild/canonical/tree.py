# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Filesystem tree helpers shared by the canonicalization steps.

A canonical archive only depends on the tree it was built from, so every
step follows the same pattern. Extract safely, pin every timestamp to the
source date epoch, then walk the tree in sorted name order when writing it
back out. Ownership is always root (uid/gid 0, no names).
"""

import gzip
import io
import os
import shutil
import stat
import tarfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path


class UnsafeArchiveError(ValueError):
    """An archive member would land outside the extraction directory."""


def _is_safe_member(member: tarfile.TarInfo, extract_dir: Path) -> bool:
    """
    Reject absolute paths, `..` components, links that resolve outside the
    extraction directory, and device or fifo entries.
    """
    name = member.name
    if name.startswith("/") or name.startswith("\\"):
        return False
    if ".." in name.split("/"):
        return False

    root = extract_dir.resolve()
    resolved = (extract_dir / name).resolve()
    if resolved != root and root not in resolved.parents:
        return False

    if member.issym():
        link_target = member.linkname
        if link_target.startswith("/"):
            # Absolute symlinks are common in packages and are never followed here.
            return True
        target = (extract_dir / name).parent / link_target
        resolved_target = target.resolve()
        return resolved_target == root or root in resolved_target.parents

    if member.islnk():
        linked = (extract_dir / member.linkname).resolve()
        return root in linked.parents

    return member.isfile() or member.isdir()


def safe_extract_tar(archive_bytes: bytes, extract_dir: Path) -> int:
    """
    Extract a (possibly compressed) tar stream into `extract_dir`.

    Compression is auto-detected (gzip, xz, bzip2 or none). Returns the number
    of regular files extracted.

    Raises:
        UnsafeArchiveError: If any member fails the safety check. Nothing is
            extracted in that case.
        tarfile.TarError: If the stream is not a readable tar archive.
    """
    extract_dir.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(archive_bytes), mode="r:*") as tar:
        members = tar.getmembers()
        unsafe = [m.name for m in members if not _is_safe_member(m, extract_dir)]
        if unsafe:
            raise UnsafeArchiveError(f"Unsafe archive members: {', '.join(unsafe[:5])}")
        tar.extractall(path=extract_dir, members=members, filter="fully_trusted")
    return sum(1 for m in members if m.isfile())


def iter_sorted(root: Path) -> Iterator[Path]:
    """
    Depth-first walk yielding every entry under `root`, siblings in byte order.

    Directories are yielded before their contents. Symlinks are yielded but
    never followed.
    """
    entries = sorted(root.iterdir(), key=lambda p: os.fsencode(p.name))
    for entry in entries:
        yield entry
        if entry.is_dir() and not entry.is_symlink():
            yield from iter_sorted(entry)


def normalize_mtimes(root: Path, epoch: int) -> None:
    """
    Set the mtime and atime of every entry under (and including) `root`.

    Directories are touched after their contents, because writing a child
    updates the parent's mtime.
    """
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames + dirnames:
            os.utime(os.path.join(dirpath, name), (epoch, epoch), follow_symlinks=False)
        os.utime(dirpath, (epoch, epoch), follow_symlinks=False)


def stage_sorted_copy(source: Path, destination: Path) -> None:
    """
    Copy a tree into a fresh directory, creating entries in sorted order.

    Modes and symlinks are preserved. Timestamps are not: the caller
    normalizes them afterwards.
    """
    destination.mkdir(parents=True, exist_ok=False)
    for entry in iter_sorted(source):
        target = destination / entry.relative_to(source)
        if entry.is_symlink():
            os.symlink(os.readlink(entry), target)
        elif entry.is_dir():
            target.mkdir()
            shutil.copymode(entry, target)
        else:
            shutil.copyfile(entry, target)
            shutil.copymode(entry, target)


def _canonical_tarinfo(tar: tarfile.TarFile, path: Path, arcname: str, epoch: int) -> tarfile.TarInfo:
    info = tar.gettarinfo(str(path), arcname=arcname)
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = epoch
    # Keep permission bits and file type only.
    info.mode = stat.S_IMODE(info.mode)
    return info


def deterministic_tar_gz(root: Path, epoch: int) -> bytes:
    """
    Archive a tree as a gzip-compressed tar whose bytes depend only on the tree.

    Entries are named `./`, `./usr`, `./usr/bin/...` in sorted order, owned
    by root, timestamped with `epoch`. The gzip header carries no filename
    and a zero timestamp.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as tar:
        tar.addfile(_canonical_tarinfo(tar, root, "./", epoch))
        for entry in iter_sorted(root):
            arcname = "./" + entry.relative_to(root).as_posix()
            info = _canonical_tarinfo(tar, entry, arcname, epoch)
            if info.isreg():
                with open(entry, "rb") as f:
                    tar.addfile(info, f)
            else:
                tar.addfile(info)

    compressed = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=compressed, compresslevel=9, mtime=0) as gz:
        gz.write(buffer.getvalue())
    return compressed.getvalue()


@dataclass(frozen=True)
class TreeStats:
    """Summary of a tree, written to diagnostics before and after rewriting."""

    file_count: int
    dir_count: int
    total_bytes: int
    min_mtime: int | None
    max_mtime: int | None


def tree_stats(root: Path) -> TreeStats:
    files = dirs = total = 0
    mtimes: list[int] = []
    for entry in iter_sorted(root):
        info = entry.lstat()
        mtimes.append(int(info.st_mtime))
        if entry.is_dir() and not entry.is_symlink():
            dirs += 1
        else:
            files += 1
            total += info.st_size
    return TreeStats(
        file_count=files,
        dir_count=dirs,
        total_bytes=total,
        min_mtime=min(mtimes) if mtimes else None,
        max_mtime=max(mtimes) if mtimes else None,
    )
