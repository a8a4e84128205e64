# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""Tests for the closed triple classification table."""

import pytest

from reprobuild.build.errors import PlanError, UnknownTripleError
from reprobuild.plan.platform import PlatformFamily, classify_triple, known_triples, triple_info


class TestClassifyTriple:
    @pytest.mark.parametrize(
        ("triple", "family"),
        [
            ("x86_64-unknown-linux-gnu", PlatformFamily.LINUX),
            ("aarch64-unknown-linux-gnu", PlatformFamily.LINUX),
            ("x86_64-apple-darwin", PlatformFamily.MACOS_X64),
            ("aarch64-apple-darwin", PlatformFamily.MACOS_ARM64),
            ("x86_64-pc-windows-msvc", PlatformFamily.WINDOWS),
            ("aarch64-pc-windows-msvc", PlatformFamily.WINDOWS),
        ],
    )
    def test_known_triples(self, triple: str, family: PlatformFamily) -> None:
        assert classify_triple(triple) is family

    def test_unknown_triple_raises(self) -> None:
        with pytest.raises(UnknownTripleError) as excinfo:
            classify_triple("riscv64gc-unknown-linux-gnu")
        assert excinfo.value.triple == "riscv64gc-unknown-linux-gnu"

    def test_unknown_triple_is_a_plan_error(self) -> None:
        with pytest.raises(PlanError):
            triple_info("x86_64-unknown-freebsd")

    def test_table_has_six_entries(self) -> None:
        assert len(known_triples()) == 6


class TestFamilyProperties:
    def test_macos_is_host_only(self) -> None:
        assert PlatformFamily.MACOS_ARM64.host_only
        assert not PlatformFamily.LINUX.host_only
        assert PlatformFamily.MACOS_X64.container_bundles == ()

    def test_bundle_preferences(self) -> None:
        assert PlatformFamily.LINUX.bundle_preference == ("appimage", "deb", "rpm")
        assert PlatformFamily.WINDOWS.bundle_preference[0] == "nsis"
        assert PlatformFamily.MACOS_X64.bundle_preference[0] == "app"

    def test_container_runner(self) -> None:
        assert PlatformFamily.WINDOWS.container_runner == "cargo-xwin"
        assert PlatformFamily.LINUX.container_runner == "cargo"


class TestTripleInfo:
    def test_arm_linux_uses_arm_container(self) -> None:
        info = triple_info("aarch64-unknown-linux-gnu")
        assert info.container_platform == "linux/arm64"
        assert info.container_toolchain_triple == "aarch64-unknown-linux-gnu"
        assert info.rpm_arch == "aarch64"

    def test_windows_cross_compiles_from_amd64(self) -> None:
        info = triple_info("aarch64-pc-windows-msvc")
        assert info.container_platform == "linux/amd64"
        assert info.container_toolchain_triple == "x86_64-unknown-linux-gnu"
        assert info.executable_suffix == ".exe"

    def test_linux_has_no_executable_suffix(self) -> None:
        assert triple_info("x86_64-unknown-linux-gnu").executable_suffix == ""
