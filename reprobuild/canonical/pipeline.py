# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Canonicalization pipeline for one triple's bundle directory.

Each format is a step with an explicit prerequisite list. The rpm step
rebuilds its package from the deb step's payload, so it declares
`requires=("deb",)` rather than relying on being listed second. Steps are
ordered topologically. A step whose prerequisite produced nothing is skipped
with a warning, and a bad declaration (cycle, unknown prerequisite) fails
loudly before any file is touched.

Only Linux-family triples are canonicalized. For every other family the
pipeline does nothing.

Bundle layout expected under the bundle root:
    deb/*.deb
    rpm/*.rpm
    appimage/*.AppImage  (plus the *.AppDir it was packed from)
"""

import logging
import tarfile
import tempfile
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from reprobuild.build.errors import CanonicalizationError
from reprobuild.canonical.appimage import AppImageError, rebuild_appimage
from reprobuild.canonical.archive import ArchiveFormatError
from reprobuild.canonical.deb import DebFormatError, DebPayload, canonicalize_deb
from reprobuild.canonical.diagnostics import Diagnostics
from reprobuild.canonical.rpm import RpmBuildError, rebuild_rpm_from_deb
from reprobuild.canonical.tree import UnsafeArchiveError
from reprobuild.logging.logger import get_logger
from reprobuild.plan.platform import PlatformFamily, TripleInfo, triple_info
from reprobuild.utils.process import CommandRunner

_logger: logging.Logger = get_logger(__name__)

# Failures a step may raise that mean "this bundle can't be canonicalized".
_STEP_FAILURES = (
    AppImageError,
    ArchiveFormatError,
    DebFormatError,
    RpmBuildError,
    UnsafeArchiveError,
    tarfile.TarError,
    OSError,
)


class StepGraphError(ValueError):
    """The step declarations contain a cycle or an unknown prerequisite."""


@dataclass
class StepContext:
    """Mutable state shared by the steps of one pipeline run."""

    info: TripleInfo
    bundle_root: Path
    epoch: int
    work_dir: Path
    runner: CommandRunner
    diagnostics: Diagnostics
    deb_payload: DebPayload | None = None

    def scratch(self, name: str) -> Path:
        path = self.work_dir / name
        path.mkdir(parents=True, exist_ok=False)
        return path


@dataclass(frozen=True)
class CanonicalStep:
    """
    One canonicalization step.

    `inputs` lists the files the step would rewrite. An empty list means the
    bundle has nothing for this step. `run` rewrites them and returns the
    paths it changed.
    """

    name: str
    inputs: Callable[[Path], list[Path]]
    run: Callable[[StepContext, list[Path]], list[Path]]
    requires: tuple[str, ...] = ()


@dataclass(frozen=True)
class CanonicalizationResult:
    triple: str
    rewritten: tuple[Path, ...] = ()
    skipped: tuple[str, ...] = field(default_factory=tuple)


def order_steps(steps: list[CanonicalStep]) -> list[CanonicalStep]:
    """
    Topologically order steps, keeping declaration order among independent ones.

    Raises:
        StepGraphError: On a duplicate name, unknown prerequisite, or cycle.
    """
    by_name: dict[str, CanonicalStep] = {}
    for step in steps:
        if step.name in by_name:
            raise StepGraphError(f"Duplicate canonicalization step '{step.name}'")
        by_name[step.name] = step

    dependents: dict[str, list[str]] = {name: [] for name in by_name}
    in_degree: dict[str, int] = {}
    for step in steps:
        for prerequisite in step.requires:
            if prerequisite not in by_name:
                raise StepGraphError(
                    f"Step '{step.name}' requires unknown step '{prerequisite}'"
                )
            dependents[prerequisite].append(step.name)
        in_degree[step.name] = len(step.requires)

    queue = deque(step.name for step in steps if in_degree[step.name] == 0)
    ordered: list[CanonicalStep] = []
    while queue:
        name = queue.popleft()
        ordered.append(by_name[name])
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(steps):
        raise StepGraphError(
            f"Canonicalization steps have a cycle. Ordered {len(ordered)}/{len(steps)} steps."
        )
    return ordered


def _sorted_files(directory: Path, suffixes: tuple[str, ...]) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.name.lower().endswith(suffixes)
    )


def _deb_inputs(bundle_root: Path) -> list[Path]:
    return _sorted_files(bundle_root / "deb", (".deb",))


def _rpm_inputs(bundle_root: Path) -> list[Path]:
    return _sorted_files(bundle_root / "rpm", (".rpm",))


def _appimage_inputs(bundle_root: Path) -> list[Path]:
    return _sorted_files(bundle_root / "appimage", (".appimage",))


def _run_deb(ctx: StepContext, inputs: list[Path]) -> list[Path]:
    rewritten = []
    for index, deb_path in enumerate(inputs):
        payload = canonicalize_deb(
            deb_path, ctx.epoch, ctx.scratch(f"deb-{index}"), ctx.runner
        )
        # The first deb (sorted) is the payload source for rpm.
        if ctx.deb_payload is None:
            ctx.deb_payload = payload
        rewritten.append(deb_path)
    return rewritten


def _run_rpm(ctx: StepContext, inputs: list[Path]) -> list[Path]:
    if ctx.deb_payload is None:
        return []
    rewritten = []
    for index, rpm_path in enumerate(inputs):
        result = rebuild_rpm_from_deb(
            ctx.deb_payload,
            rpm_path,
            ctx.info.rpm_arch,
            ctx.epoch,
            ctx.scratch(f"rpm-{index}"),
            ctx.runner,
        )
        ctx.diagnostics.record_command(ctx.info.triple, f"rpmbuild-{index}", result)
        rewritten.append(rpm_path)
    return rewritten


def _run_appimage(ctx: StepContext, inputs: list[Path]) -> list[Path]:
    appdirs = sorted(
        p for p in (ctx.bundle_root / "appimage").iterdir() if p.is_dir() and p.name.endswith(".AppDir")
    )
    if not appdirs:
        _logger.warning(
            "AppImage canonicalization skipped, AppDir missing",
            extra={"triple": ctx.info.triple, "appimages": [p.name for p in inputs]},
        )
        return []

    appdir = appdirs[0]
    ctx.diagnostics.record_tree(ctx.info.triple, "appdir-before", appdir)
    rewritten = []
    for index, appimage_path in enumerate(inputs):
        result = rebuild_appimage(
            appimage_path, appdir, ctx.epoch, ctx.scratch(f"appimage-{index}"), ctx.runner
        )
        ctx.diagnostics.record_command(ctx.info.triple, f"mksquashfs-{index}", result)
        rewritten.append(appimage_path)
    ctx.diagnostics.record_tree(ctx.info.triple, "appdir-after", appdir)
    return rewritten


DEFAULT_STEPS: tuple[CanonicalStep, ...] = (
    CanonicalStep(name="deb", inputs=_deb_inputs, run=_run_deb),
    CanonicalStep(name="rpm", inputs=_rpm_inputs, run=_run_rpm, requires=("deb",)),
    CanonicalStep(name="appimage", inputs=_appimage_inputs, run=_run_appimage),
)


def canonicalize_bundle(
    triple: str,
    bundle_root: Path,
    epoch: int,
    runner: CommandRunner,
    diagnostics: Diagnostics | None = None,
    steps: tuple[CanonicalStep, ...] = DEFAULT_STEPS,
) -> CanonicalizationResult:
    """
    Rewrite every Linux installer under `bundle_root` into canonical form.

    Args:
        triple: Target triple the bundle was built for.
        bundle_root: The bundler's output directory.
        epoch: Source date epoch applied to every entry.
        runner: Runs external packaging tools.
        diagnostics: Optional diagnostics sink.
        steps: Step declarations. The defaults cover deb, rpm and AppImage.

    Returns:
        Which files were rewritten and which steps were skipped.

    Raises:
        CanonicalizationError: If a step fails. Names the triple and step.
        StepGraphError: If the step declarations are inconsistent.
    """
    info = triple_info(triple)
    if info.family is not PlatformFamily.LINUX:
        return CanonicalizationResult(triple=triple)

    ordered = order_steps(list(steps))
    diagnostics = diagnostics or Diagnostics.disabled()
    diagnostics.record_tree(triple, "bundle-before", bundle_root)

    produced: dict[str, list[Path]] = {}
    skipped: list[str] = []
    rewritten: list[Path] = []

    with tempfile.TemporaryDirectory(prefix="reprobuild-canon-") as tmp:
        ctx = StepContext(
            info=info,
            bundle_root=bundle_root,
            epoch=epoch,
            work_dir=Path(tmp),
            runner=runner,
            diagnostics=diagnostics,
        )
        for step in ordered:
            inputs = step.inputs(bundle_root)
            if not inputs:
                produced[step.name] = []
                _logger.debug("No inputs for step", extra={"triple": triple, "step": step.name})
                continue

            missing = [name for name in step.requires if not produced.get(name)]
            if missing:
                produced[step.name] = []
                skipped.append(step.name)
                _logger.warning(
                    "Canonicalization step skipped, prerequisite produced nothing",
                    extra={
                        "triple": triple,
                        "step": step.name,
                        "missing": missing,
                        "files": [p.name for p in inputs],
                    },
                )
                continue

            _logger.info(
                "Canonicalization step started",
                extra={"triple": triple, "step": step.name, "files": [p.name for p in inputs]},
            )
            try:
                changed = step.run(ctx, inputs)
            except _STEP_FAILURES as err:
                raise CanonicalizationError(triple, step.name, str(err)) from err

            produced[step.name] = changed
            rewritten.extend(changed)

    diagnostics.record_tree(triple, "bundle-after", bundle_root)
    return CanonicalizationResult(triple=triple, rewritten=tuple(rewritten), skipped=tuple(skipped))
