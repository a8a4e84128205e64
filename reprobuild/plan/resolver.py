# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Plan resolver: (target, profile) -> BuildPlan.

The table below is the complete set of buildable combinations. Anything not
in it is rejected before a single tool is invoked. Triples and packages are
kept in the order they are listed here, which is also the order the executor
builds them in.
"""

import enum
import logging
from dataclasses import dataclass

from reprobuild.build.errors import PlanError
from reprobuild.logging.logger import get_logger
from reprobuild.plan.platform import triple_info
from reprobuild.plan.policy import package_policy

_logger: logging.Logger = get_logger(__name__)

_AARCH64_LINUX = "aarch64-unknown-linux-gnu"
_X86_64_LINUX = "x86_64-unknown-linux-gnu"
_X86_64_MACOS = "x86_64-apple-darwin"
_AARCH64_MACOS = "aarch64-apple-darwin"
_X86_64_WINDOWS = "x86_64-pc-windows-msvc"
_AARCH64_WINDOWS = "aarch64-pc-windows-msvc"


class BuildKind(enum.Enum):
    BINARY = "binary"
    DESKTOP_BUNDLE = "desktop_bundle"


@dataclass(frozen=True)
class BuildPlan:
    """
    An immutable description of one build run.

    `requires_container_fallback` only applies to desktop-bundle plans. It is
    true when at least one triple may be bundled in a container instead of on
    its own host OS. Binary plans always build in the pinned container.
    """

    target: str
    profile: str
    triples: tuple[str, ...]
    packages: tuple[str, ...]
    build_kind: BuildKind
    requires_container_fallback: bool

    @property
    def needs_container_builder(self) -> bool:
        return self.build_kind is BuildKind.BINARY or self.requires_container_fallback

    def as_log_fields(self) -> dict[str, object]:
        return {
            "target": self.target,
            "profile": self.profile,
            "triples": list(self.triples),
            "packages": list(self.packages),
            "build_kind": self.build_kind.value,
            "requires_container_fallback": self.requires_container_fallback,
        }


_BINARY_TABLE: dict[str, tuple[tuple[str, ...], dict[str, tuple[str, ...]]]] = {
    "raspberry": (
        (_AARCH64_LINUX,),
        {
            "all": ("update", "reset", "raspberry_camera_hub", "config_tool"),
            "core": ("raspberry_camera_hub", "reset", "update"),
            "camerahub": ("raspberry_camera_hub",),
            "motion_ai_cli": ("motion_ai_cli",),
        },
    ),
    "server": (
        (_X86_64_LINUX,),
        {"server": ("server",)},
    ),
    "ipcamera": (
        (_X86_64_LINUX, _AARCH64_LINUX),
        {
            "all": ("ip_camera_hub", "config_tool", "server"),
            "camerahub": ("ip_camera_hub",),
        },
    ),
    "all": (
        (_AARCH64_LINUX, _X86_64_LINUX),
        {
            "all": (
                "update",
                "reset",
                "raspberry_camera_hub",
                "ip_camera_hub",
                "config_tool",
                "server",
            ),
            "release": ("update", "raspberry_camera_hub", "config_tool", "server"),
        },
    ),
}

_DESKTOP_TARGET = "deploy"
_DESKTOP_PACKAGES: tuple[str, ...] = ("deploy_tool",)

_DESKTOP_PROFILES: dict[str, tuple[str, ...]] = {
    "all": (
        _X86_64_LINUX,
        _AARCH64_LINUX,
        _X86_64_MACOS,
        _AARCH64_MACOS,
        _X86_64_WINDOWS,
        _AARCH64_WINDOWS,
    ),
    "linux": (_X86_64_LINUX, _AARCH64_LINUX),
    "macos": (_X86_64_MACOS, _AARCH64_MACOS),
    "windows": (_X86_64_WINDOWS, _AARCH64_WINDOWS),
    "linux-x64": (_X86_64_LINUX,),
    "linux-arm64": (_AARCH64_LINUX,),
    "macos-x64": (_X86_64_MACOS,),
    "macos-arm64": (_AARCH64_MACOS,),
    "windows-x64": (_X86_64_WINDOWS,),
    "windows-arm64": (_AARCH64_WINDOWS,),
}


def available_targets() -> dict[str, tuple[str, ...]]:
    """Every target with its valid profiles, for help output and error messages."""
    targets = {name: tuple(profiles) for name, (_, profiles) in _BINARY_TABLE.items()}
    targets[_DESKTOP_TARGET] = tuple(_DESKTOP_PROFILES)
    return targets


def resolve_build_plan(target: str, profile: str) -> BuildPlan:
    """
    Resolve a (target, profile) pair into a BuildPlan.

    Args:
        target: Product line, e.g. "raspberry", "ipcamera", "deploy".
        profile: Package selection within the target, e.g. "all", "core".

    Returns:
        A frozen BuildPlan.

    Raises:
        PlanError: If the target is unknown or the profile isn't valid for it.
    """
    if target == _DESKTOP_TARGET:
        triples = _DESKTOP_PROFILES.get(profile)
        if triples is None:
            raise PlanError(
                f"Profile '{profile}' not valid for {target} "
                f"(valid: {', '.join(_DESKTOP_PROFILES)})"
            )
        packages = _DESKTOP_PACKAGES
        build_kind = BuildKind.DESKTOP_BUNDLE
    elif target in _BINARY_TABLE:
        triples, profiles = _BINARY_TABLE[target]
        if profile not in profiles:
            raise PlanError(
                f"Profile '{profile}' not valid for {target} "
                f"(valid: {', '.join(profiles)})"
            )
        packages = profiles[profile]
        build_kind = BuildKind.BINARY
    else:
        raise PlanError(
            f"Unknown target '{target}' (valid: {', '.join(available_targets())})"
        )

    # Validates the table itself: every triple classifies and every package has a policy.
    infos = [triple_info(triple) for triple in triples]
    for package in packages:
        package_policy(package)

    requires_container = build_kind is BuildKind.DESKTOP_BUNDLE and any(
        not info.family.host_only for info in infos
    )

    plan = BuildPlan(
        target=target,
        profile=profile,
        triples=tuple(triples),
        packages=tuple(packages),
        build_kind=build_kind,
        requires_container_fallback=requires_container,
    )
    _logger.info("Plan resolved", extra=plan.as_log_fields())
    return plan
