# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""Tests for path containment checks applied to manifest-relative paths."""

from pathlib import Path

import pytest

from reprobuild.utils.paths import ensure_directory, is_within, resolve_within


class TestEnsureDirectory:
    def test_creates_nested_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "c"
        assert ensure_directory(target) == target
        assert target.is_dir()

    def test_existing_directory_is_fine(self, tmp_path: Path) -> None:
        assert ensure_directory(tmp_path) == tmp_path


class TestIsWithin:
    def test_child_is_within_root(self, tmp_path: Path) -> None:
        assert is_within(tmp_path / "x" / "y", tmp_path)

    def test_root_is_within_itself(self, tmp_path: Path) -> None:
        assert is_within(tmp_path, tmp_path)

    def test_sibling_is_not_within(self, tmp_path: Path) -> None:
        assert not is_within(tmp_path.parent / "elsewhere", tmp_path)


class TestResolveWithin:
    def test_relative_path_resolves_under_root(self, tmp_path: Path) -> None:
        resolved = resolve_within(tmp_path, "artifacts/x86_64-unknown-linux-gnu/tool")
        assert resolved == (tmp_path / "artifacts" / "x86_64-unknown-linux-gnu" / "tool").resolve()

    def test_parent_traversal_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="outside"):
            resolve_within(tmp_path, "../escape")

    def test_absolute_path_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="relative"):
            resolve_within(tmp_path, "/etc/passwd")

    def test_empty_path_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            resolve_within(tmp_path, "")

    def test_symlink_escaping_root_is_rejected(self, tmp_path: Path) -> None:
        root = tmp_path / "run"
        root.mkdir()
        outside = tmp_path / "outside"
        outside.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)

        with pytest.raises(ValueError, match="outside"):
            resolve_within(root, "link/file")
