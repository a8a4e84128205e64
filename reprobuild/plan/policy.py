# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Per-package build policy.

Most packages are a source directory of the same name, built with default
features, and named `<prefix>-<source>`. A few are not. For example, the
Raspberry Pi camera hub and the IP camera hub are the same crate built with
different feature sets. The differences live in this table rather than in
conditionals scattered through the executor.
"""

from dataclasses import dataclass

from reprobuild.build.errors import PlanError


@dataclass(frozen=True)
class PackagePolicy:
    """
    How one logical package maps onto a source unit and a binary.

    Attributes:
        package: Logical package name as it appears in plans and manifests.
        source_name: Source directory relative to the project root. Defaults
            to the package name.
        features: Comma-separated cargo features, or "" for defaults.
        binary_suffix: Renames the built binary to `<prefix>-<suffix>`.
            Without it the binary keeps its built name, which is the source
            name with `_` and `/` turned into `-`.
        only_triples: If non-empty, the package is built only for these
            triples and skipped everywhere else.
        skip_reason: Logged when the package is skipped for a triple.
    """

    package: str
    source_name: str = ""
    features: str = ""
    binary_suffix: str = ""
    only_triples: tuple[str, ...] = ()
    skip_reason: str = ""

    @property
    def source(self) -> str:
        return self.source_name or self.package

    def built_binary_name(self, prefix: str) -> str:
        """Name the toolchain writes the binary under, derived from the source unit."""
        return f"{prefix}-{self.source.replace('_', '-').replace('/', '-')}"

    def binary_name(self, prefix: str) -> str:
        """Final name recorded in the manifest."""
        if self.binary_suffix:
            return f"{prefix}-{self.binary_suffix}"
        return self.built_binary_name(prefix)

    def applies_to(self, triple: str) -> bool:
        return not self.only_triples or triple in self.only_triples


_RASPBERRY_ONLY = ("aarch64-unknown-linux-gnu",)

_POLICIES: dict[str, PackagePolicy] = {
    policy.package: policy
    for policy in (
        PackagePolicy(package="update"),
        PackagePolicy(
            package="reset",
            only_triples=_RASPBERRY_ONLY,
            skip_reason="raspberry-only",
        ),
        PackagePolicy(package="config_tool"),
        PackagePolicy(package="server"),
        PackagePolicy(
            package="raspberry_camera_hub",
            source_name="camera_hub",
            features="raspberry,telemetry",
            binary_suffix="raspberry-camera-hub",
            only_triples=_RASPBERRY_ONLY,
            skip_reason="raspberry-only",
        ),
        PackagePolicy(
            package="ip_camera_hub",
            source_name="camera_hub",
            features="ip",
            binary_suffix="ip-camera-hub",
        ),
        PackagePolicy(
            package="motion_ai_cli",
            source_name="motion_ai/cli",
            features="raspberry",
        ),
        PackagePolicy(
            package="deploy_tool",
            source_name="deploy/src-tauri",
            binary_suffix="deploy",
        ),
    )
}


def package_policy(package: str) -> PackagePolicy:
    """
    Return the policy for a package.

    Raises:
        PlanError: If the package has no policy entry.
    """
    try:
        return _POLICIES[package]
    except KeyError:
        raise PlanError(f"No build policy for package '{package}'") from None
