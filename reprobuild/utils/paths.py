# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Path utilities for reprobuild.

Run directories hold relative paths that come from manifests, and a manifest
may have been produced by someone else. Any relative path read from disk goes
through `resolve_within` before it is opened.
"""

from pathlib import Path


def ensure_directory(path: Path) -> Path:
    """
    Create a directory (and parents) if it doesn't exist. Returns the path for chaining.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_within(target: Path, root: Path) -> bool:
    """True if `target` resolves to a location inside `root` (or is `root`)."""
    resolved_target = target.resolve()
    resolved_root = root.resolve()
    return resolved_target == resolved_root or resolved_root in resolved_target.parents


def resolve_within(root: Path, relative: str) -> Path:
    """
    Join a relative path onto `root` and make sure it doesn't escape.

    Absolute paths and `..` tricks are rejected after resolution, so
    symlinks pointing outside the root are caught too.

    Args:
        root: The directory the path must stay inside.
        relative: A relative path, typically read from a manifest.

    Returns:
        The resolved absolute path.

    Raises:
        ValueError: If the path is absolute or escapes `root`.
    """
    if not relative or Path(relative).is_absolute():
        raise ValueError(f"Path '{relative}' must be a non-empty relative path")

    candidate = root / relative
    if not is_within(candidate, root):
        raise ValueError(
            f"Path '{relative}' resolves to '{candidate.resolve()}' which is outside "
            f"'{root.resolve()}'. This is not allowed."
        )
    return candidate.resolve()
