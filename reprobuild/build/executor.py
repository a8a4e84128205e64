# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Binary build executor.

Turns a binary BuildPlan into artifacts under `<run>/artifacts/<triple>/` plus
one ArtifactRecord per produced binary. For every triple in plan order and
every package in plan order:

  1. consult the package policy and skip packages that don't apply to the triple
  2. resolve the source unit (version, lock fingerprint)
  3. build inside the shared container with the triple's pinned toolchain
  4. require the expected output file, applying the policy rename
  5. hash the final file and record it

Any failure aborts the whole plan. A toolchain that "succeeds" without
producing the expected file is a MissingArtifactError and is never retried.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from reprobuild.build.builder import ContainerBuilder
from reprobuild.build.errors import MissingArtifactError, ToolchainInvocationError
from reprobuild.build.sources import resolve_source_unit
from reprobuild.logging.logger import get_logger
from reprobuild.plan.policy import package_policy
from reprobuild.plan.resolver import BuildPlan
from reprobuild.release.manifests.manifest import ArtifactRecord
from reprobuild.toolchain.digests import DigestRegistry
from reprobuild.utils.hashing import compute_sha256

_logger: logging.Logger = get_logger(__name__)

ARTIFACTS_DIRNAME = "artifacts"
_DOCKER_BUILD_TARGET = "artifact"
_PROJECT_CONTEXT_NAME = "proj"


def artifact_dir_for_triple(run_dir: Path, triple: str) -> Path:
    return run_dir / ARTIFACTS_DIRNAME / triple


@dataclass(frozen=True)
class BinaryExecutor:
    """
    Builds binary plans. Stateless apart from its configuration.

    Attributes:
        project_root: Source tree containing the crates.
        releases_dir: Docker build context (holds the Dockerfile).
        registry: Toolchain digests, already checked against the plan.
        binary_prefix: Prefix for produced binary names.
    """

    project_root: Path
    releases_dir: Path
    registry: DigestRegistry
    binary_prefix: str = "secluso"

    def execute(
        self,
        plan: BuildPlan,
        run_dir: Path,
        builder: ContainerBuilder,
        run_label: str = "1",
    ) -> list[ArtifactRecord]:
        """
        Build every applicable (triple, package) pair of the plan.

        Args:
            plan: A binary BuildPlan.
            run_dir: The run directory artifacts are written into.
            builder: Active shared container builder.
            run_label: Run identifier used in log lines.

        Returns:
            Artifact records in execution order.

        Raises:
            MissingDigestError: If a triple has no pinned toolchain.
            SourceError: If a source unit is incomplete.
            ToolchainInvocationError: If the container build fails.
            MissingArtifactError: If the build produced no binary.
        """
        identities = self.registry.require_all(plan.triples)
        records: list[ArtifactRecord] = []

        for triple in plan.triples:
            for package in plan.packages:
                policy = package_policy(package)
                if not policy.applies_to(triple):
                    _logger.info(
                        "Skipping package for triple",
                        extra={
                            "run": run_label,
                            "package": package,
                            "triple": triple,
                            "reason": policy.skip_reason or "not applicable",
                        },
                    )
                    continue

                records.append(
                    self._build_one(
                        package=package,
                        triple=triple,
                        identity=identities[triple],
                        run_dir=run_dir,
                        builder=builder,
                        run_label=run_label,
                    )
                )

        return records

    def _build_one(
        self,
        package: str,
        triple: str,
        identity: str,
        run_dir: Path,
        builder: ContainerBuilder,
        run_label: str,
    ) -> ArtifactRecord:
        policy = package_policy(package)
        source = resolve_source_unit(self.project_root, policy.source)
        built_name = policy.built_binary_name(self.binary_prefix)
        final_name = policy.binary_name(self.binary_prefix)
        art_dir = artifact_dir_for_triple(run_dir, triple)

        build_args = {
            "CRATE_NAME": policy.source,
            "BINARY_FILE_NAME": built_name,
            "CARGO_TARGET": triple,
            "RUST_HASH": identity,
        }
        if policy.features:
            build_args["FEATURES"] = f"--features {policy.features}"

        _logger.info(
            "Building package",
            extra={
                "run": run_label,
                "package": package,
                "triple": triple,
                "crate": policy.source,
                "bin": built_name,
                "features": policy.features,
            },
        )
        result = builder.build(
            context_dir=self.releases_dir,
            output_dir=art_dir,
            build_args=build_args,
            build_contexts={_PROJECT_CONTEXT_NAME: self.project_root},
            target=_DOCKER_BUILD_TARGET,
        )
        if not result.success:
            raise ToolchainInvocationError(
                "docker buildx build",
                result.exit_code,
                f"package={package} triple={triple}",
                result.output,
            )

        built_path = art_dir / built_name
        if not built_path.is_file():
            raise MissingArtifactError(triple, package, str(built_path))

        final_path = art_dir / final_name
        if final_path != built_path:
            built_path.replace(final_path)

        record = ArtifactRecord(
            package=package,
            triple=triple,
            binary_name=final_name,
            relative_path=f"{ARTIFACTS_DIRNAME}/{triple}/{final_name}",
            content_hash=compute_sha256(final_path),
            source_name=source.name,
            source_version=source.version,
            dependency_lock_hash=source.lock_hash,
            toolchain_identity=identity,
        )
        _logger.info(
            "Package built",
            extra={
                "run": run_label,
                "package": package,
                "triple": triple,
                "bin": final_name,
                "sha256": record.content_hash,
            },
        )
        return record
