# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Run orchestration: one `build` invocation from plan to manifest.

    <output_root>/<unix-time>/                 single run
    <output_root>/<unix-time>/run1, run2/      --test-reproduce

Each run directory receives its artifacts and then exactly one manifest.
With --test-reproduce the two runs are built independently, one after the
other, and then compared.

The container builder, when the plan needs one, is acquired once for the
whole invocation and released on every exit path. If anything fails the
build root is deleted, so no partial manifest ever survives.
"""

import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from reprobuild.build.builder import ContainerBuilder
from reprobuild.build.desktop import DesktopExecutor, check_desktop_preflight
from reprobuild.build.errors import BuildError
from reprobuild.build.executor import BinaryExecutor
from reprobuild.build.smoke import smoke_check
from reprobuild.canonical.diagnostics import Diagnostics
from reprobuild.config.schema import BuildConfig
from reprobuild.logging.logger import get_logger
from reprobuild.plan.resolver import BuildKind, BuildPlan
from reprobuild.release.comparison.comparator import ComparisonReport, compare_runs
from reprobuild.release.manifests.manifest import ArtifactRecord, create_manifest, write_manifest
from reprobuild.runtime.environment import detect_host_triple
from reprobuild.toolchain.digests import DigestRegistry
from reprobuild.utils.filesystem import remove_tree
from reprobuild.utils.process import CommandRunner

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class BuildPaths:
    """Config paths resolved against a base directory."""

    project_root: Path
    releases_dir: Path
    lock_file: Path
    output_root: Path


def resolve_build_paths(
    config: BuildConfig, base_dir: Path | None = None, output_root: Path | None = None
) -> BuildPaths:
    """
    Resolve the config's relative paths.

    The lock file is relative to `releases_dir`. An explicit `output_root`
    overrides the configured one.
    """
    base = (base_dir or Path.cwd()).resolve()
    releases_dir = (base / config.releases_dir).resolve()
    return BuildPaths(
        project_root=(base / config.project_root).resolve(),
        releases_dir=releases_dir,
        lock_file=releases_dir / config.digests_lock_file,
        output_root=(output_root or base / config.output_root).resolve(),
    )


@dataclass(frozen=True)
class BuildOutcome:
    """What a finished build invocation left behind."""

    build_root: Path
    run_dirs: tuple[Path, ...]
    manifests: tuple[Path, ...]
    comparison: ComparisonReport | None = None
    artifact_counts: tuple[int, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return self.comparison is None or self.comparison.passed


def require_plan_preflight(
    plan: BuildPlan, registry: DigestRegistry, allow_container_fallback: bool = True
) -> None:
    """
    Checks that must pass before a build root, builder or tool is touched.

    Binary plans need a digest for every triple. Desktop plans need the
    container toolchains they may fall back to, and a macOS host for macOS
    triples.

    Raises:
        MissingDigestError: Listing every unpinned triple.
        HostCapabilityError: If a desktop triple can't be bundled on this host.
    """
    if plan.build_kind is BuildKind.BINARY:
        registry.require_all(plan.triples)
    else:
        check_desktop_preflight(plan, registry, detect_host_triple(), allow_container_fallback)


def _needs_builder(plan: BuildPlan, config: BuildConfig) -> bool:
    if plan.build_kind is BuildKind.BINARY:
        return True
    return plan.needs_container_builder and config.allow_container_fallback


def run_build(
    plan: BuildPlan,
    config: BuildConfig,
    runner: CommandRunner,
    paths: BuildPaths,
    test_reproduce: bool = False,
    diagnostics: bool | None = None,
    clock: Callable[[], float] = time.time,
) -> BuildOutcome:
    """
    Build a plan into a fresh build root, once or twice.

    Args:
        plan: The resolved plan.
        config: Build settings.
        runner: Runs every external tool.
        paths: Resolved filesystem locations.
        test_reproduce: Build twice and compare the runs.
        diagnostics: Overrides `config.diagnostics` when not None.
        clock: Source of the build root's timestamp.

    Returns:
        Where the runs went and, with test_reproduce, the comparison report.

    Raises:
        MissingDigestError: If the plan's toolchains aren't pinned.
        HostCapabilityError: If a desktop triple needs a different host OS.
        BuildError: Any build failure. The build root is removed first.
    """
    registry = DigestRegistry.from_lock_file(paths.lock_file)
    require_plan_preflight(plan, registry, config.allow_container_fallback)

    build_root = paths.output_root / str(int(clock()))
    try:
        build_root.mkdir(parents=True, exist_ok=False)
    except FileExistsError:
        raise BuildError(f"Build directory already exists: {build_root}") from None

    run_dirs = (build_root / "run1", build_root / "run2") if test_reproduce else (build_root,)
    with_diagnostics = config.diagnostics if diagnostics is None else diagnostics

    _logger.info(
        "Build started",
        extra={**plan.as_log_fields(), "build_root": str(build_root), "runs": len(run_dirs)},
    )

    manifests: list[Path] = []
    counts: list[int] = []
    try:
        with contextlib.ExitStack() as stack:
            builder = None
            if _needs_builder(plan, config):
                builder = stack.enter_context(
                    ContainerBuilder(runner, config.builder_name, config.buildkit_image)
                )

            for index, run_dir in enumerate(run_dirs, start=1):
                run_id = str(index)
                run_dir.mkdir(parents=True, exist_ok=True)
                records = _execute_run(
                    plan, config, runner, paths, registry, run_dir, builder, run_id, with_diagnostics
                )
                manifest = create_manifest(plan.target, plan.profile, run_id, records)
                manifests.append(write_manifest(manifest, run_dir))
                counts.append(len(records))

                if config.smoke_check and index == 1:
                    smoke_check(
                        records,
                        run_dir,
                        detect_host_triple(),
                        runner,
                        config.smoke_check_timeout_seconds,
                    )
    except BaseException:
        _logger.error("Build failed, removing build directory", extra={"build_root": str(build_root)})
        remove_tree(build_root)
        raise

    comparison = compare_runs(run_dirs[0], run_dirs[1]) if test_reproduce else None
    outcome = BuildOutcome(
        build_root=build_root,
        run_dirs=run_dirs,
        manifests=tuple(manifests),
        comparison=comparison,
        artifact_counts=tuple(counts),
    )
    _logger.info(
        "Build finished",
        extra={
            "build_root": str(build_root),
            "artifacts": list(counts),
            "reproducible": comparison.passed if comparison is not None else None,
        },
    )
    return outcome


def _execute_run(
    plan: BuildPlan,
    config: BuildConfig,
    runner: CommandRunner,
    paths: BuildPaths,
    registry: DigestRegistry,
    run_dir: Path,
    builder: ContainerBuilder | None,
    run_id: str,
    with_diagnostics: bool,
) -> list[ArtifactRecord]:
    if plan.build_kind is BuildKind.BINARY:
        executor = BinaryExecutor(
            project_root=paths.project_root,
            releases_dir=paths.releases_dir,
            registry=registry,
            binary_prefix=config.binary_prefix,
        )
        return executor.execute(plan, run_dir, builder, run_label=run_id)

    desktop = DesktopExecutor(
        project_root=paths.project_root,
        releases_dir=paths.releases_dir,
        registry=registry,
        runner=runner,
        binary_prefix=config.binary_prefix,
        source_date_epoch=config.source_date_epoch,
        allow_container_fallback=config.allow_container_fallback,
        canonicalize_linux_bundles=config.canonicalize_linux_bundles,
    )
    return desktop.execute(
        plan,
        run_dir,
        builder,
        run_label=run_id,
        diagnostics=Diagnostics(run_dir if with_diagnostics else None),
    )
