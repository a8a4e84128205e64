# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Closed classification of target triples into platform families.

Every decision that depends on the operating system goes through
`classify_triple`. That covers bundle formats, whether the host must do the
bundling, and which container platform and bundle runner to use. The table
is closed. A triple that isn't listed raises UnknownTripleError rather than
falling through to a default that happens to look like Linux.
"""

import enum
from dataclasses import dataclass

from reprobuild.build.errors import UnknownTripleError


class PlatformFamily(enum.Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    MACOS_X64 = "macos-x64"
    MACOS_ARM64 = "macos-arm64"

    @property
    def host_only(self) -> bool:
        """macOS bundles can only be produced on a macOS host."""
        return self in (PlatformFamily.MACOS_X64, PlatformFamily.MACOS_ARM64)

    @property
    def is_macos(self) -> bool:
        return self.host_only

    @property
    def bundle_preference(self) -> tuple[str, ...]:
        """Bundle formats to try, most preferred first."""
        return _BUNDLE_PREFERENCE[self]

    @property
    def container_bundles(self) -> tuple[str, ...]:
        """Formats the pinned bundling container produces for this family."""
        return _CONTAINER_BUNDLES[self]

    @property
    def container_runner(self) -> str:
        """Cargo front-end used inside the bundling container."""
        return "cargo-xwin" if self is PlatformFamily.WINDOWS else "cargo"


_BUNDLE_PREFERENCE: dict[PlatformFamily, tuple[str, ...]] = {
    PlatformFamily.LINUX: ("appimage", "deb", "rpm"),
    PlatformFamily.WINDOWS: ("nsis", "msi"),
    PlatformFamily.MACOS_X64: ("app", "dmg"),
    PlatformFamily.MACOS_ARM64: ("app", "dmg"),
}

_CONTAINER_BUNDLES: dict[PlatformFamily, tuple[str, ...]] = {
    PlatformFamily.LINUX: ("appimage", "deb", "rpm"),
    PlatformFamily.WINDOWS: ("nsis",),
    PlatformFamily.MACOS_X64: (),
    PlatformFamily.MACOS_ARM64: (),
}


@dataclass(frozen=True)
class TripleInfo:
    """Everything the build needs to know about one target triple."""

    triple: str
    family: PlatformFamily
    arch: str

    @property
    def container_platform(self) -> str:
        """
        Docker platform for container bundling.

        Windows targets are cross-compiled from an amd64 Linux image.
        """
        if self.family is PlatformFamily.LINUX and self.arch == "aarch64":
            return "linux/arm64"
        return "linux/amd64"

    @property
    def container_toolchain_triple(self) -> str:
        """The Linux triple whose toolchain digest pins the bundling container."""
        if self.container_platform == "linux/arm64":
            return "aarch64-unknown-linux-gnu"
        return "x86_64-unknown-linux-gnu"

    @property
    def rpm_arch(self) -> str:
        return "aarch64" if self.arch == "aarch64" else "x86_64"

    @property
    def executable_suffix(self) -> str:
        return ".exe" if self.family is PlatformFamily.WINDOWS else ""


_KNOWN_TRIPLES: dict[str, TripleInfo] = {
    info.triple: info
    for info in (
        TripleInfo("x86_64-unknown-linux-gnu", PlatformFamily.LINUX, "x86_64"),
        TripleInfo("aarch64-unknown-linux-gnu", PlatformFamily.LINUX, "aarch64"),
        TripleInfo("x86_64-apple-darwin", PlatformFamily.MACOS_X64, "x86_64"),
        TripleInfo("aarch64-apple-darwin", PlatformFamily.MACOS_ARM64, "aarch64"),
        TripleInfo("x86_64-pc-windows-msvc", PlatformFamily.WINDOWS, "x86_64"),
        TripleInfo("aarch64-pc-windows-msvc", PlatformFamily.WINDOWS, "aarch64"),
    )
}


def triple_info(triple: str) -> TripleInfo:
    """
    Look up a triple in the closed table.

    Raises:
        UnknownTripleError: If the triple is not one of the known six.
    """
    try:
        return _KNOWN_TRIPLES[triple]
    except KeyError:
        raise UnknownTripleError(triple) from None


def classify_triple(triple: str) -> PlatformFamily:
    """Return the platform family of a known triple."""
    return triple_info(triple).family


def known_triples() -> tuple[str, ...]:
    return tuple(_KNOWN_TRIPLES)
