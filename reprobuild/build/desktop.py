# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Desktop bundle executor.

The desktop application is bundled per triple. The host's bundler is used
when it supports one of the triple's preferred formats. Otherwise the
triple is bundled in the pinned container, which is never possible for
macOS. Linux bundles are canonicalized before anything is copied into the
run directory or hashed.

A canonicalization failure doesn't stop the remaining triples. Once every
triple has been attempted the run aborts with one error listing all of the
failed triples. Every other failure aborts immediately.
"""

import json
import logging
import os
import re
import tempfile
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from reprobuild.build.builder import ContainerBuilder
from reprobuild.build.errors import (
    AggregateCanonicalizationError,
    BuildError,
    CanonicalizationError,
    HostCapabilityError,
    MissingArtifactError,
    ToolchainInvocationError,
)
from reprobuild.build.executor import ARTIFACTS_DIRNAME, artifact_dir_for_triple
from reprobuild.build.sources import SourceUnit, resolve_desktop_source
from reprobuild.canonical.diagnostics import Diagnostics
from reprobuild.canonical.pipeline import canonicalize_bundle
from reprobuild.logging.logger import get_logger
from reprobuild.plan.platform import PlatformFamily, TripleInfo, triple_info
from reprobuild.plan.policy import package_policy
from reprobuild.plan.resolver import BuildPlan
from reprobuild.release.manifests.manifest import ArtifactRecord
from reprobuild.release.reproducibility import (
    HOST_IDENTITY_PREFIX,
    enforce_host_pins,
    host_toolchain_identity,
    resolve_source_date_epoch,
    snapshot_host_toolchain,
)
from reprobuild.runtime.environment import detect_host_triple
from reprobuild.toolchain.digests import DigestRegistry
from reprobuild.utils.filesystem import copy_file, remove_tree
from reprobuild.utils.hashing import compute_sha256
from reprobuild.utils.process import CommandResult, CommandRunner

_logger: logging.Logger = get_logger(__name__)

DESKTOP_PACKAGE = "deploy_tool"

# Transient registry lookups during bundling. The only failure that is retried.
RETRYABLE_BUNDLE_FAILURE = re.compile(
    r"Temporary failure in name resolution|failed to lookup address information",
    re.IGNORECASE,
)
RETRY_DELAY_SECONDS = 3.0

INSTALLER_SUFFIXES = (".appimage", ".deb", ".rpm", ".msi", ".exe", ".dmg", ".pkg")

_POSSIBLE_VALUES = re.compile(r"\[possible values: ([^\]]*)\]")
_WORK_DIRNAME = ".repro-work"
_CONTAINER_DOCKERFILE = "Dockerfile.deploy"
_DOCKER_BUILD_TARGET = "artifact"
_PROJECT_CONTEXT_NAME = "proj"


def parse_supported_bundles(help_text: str) -> tuple[str, ...]:
    """Bundle formats listed by the bundler's `--bundles` help, in listed order."""
    match = _POSSIBLE_VALUES.search(help_text)
    if match is None:
        return ()
    values = [value.strip() for value in match.group(1).split(",")]
    return tuple(value for value in values if value)


def choose_bundle(info: TripleInfo, supported: tuple[str, ...]) -> str | None:
    """First format in the family's preference order that the host supports."""
    for candidate in info.family.bundle_preference:
        if candidate in supported:
            return candidate
    return None


def deterministic_rustflags(
    project_root: Path, apple: bool, environ: Mapping[str, str] | None = None
) -> str:
    """
    RUSTFLAGS that strip host paths out of compiled binaries.

    Existing flags are kept. Each remap is added at most once.
    """
    env = os.environ if environ is None else environ
    home = env.get("HOME", str(Path.home()))
    cargo_home = env.get("CARGO_HOME", f"{home}/.cargo")

    flags = env.get("RUSTFLAGS", "").strip()
    wanted = [
        f"--remap-path-prefix={project_root.resolve()}=.",
        f"--remap-path-prefix={cargo_home}=/cargo-home",
        f"--remap-path-prefix={home}=/home/user",
    ]
    if apple:
        wanted.append("-C link-arg=-Wl,-no_uuid")

    for flag in wanted:
        if flag not in flags:
            flags = f"{flags} {flag}" if flags else flag
    return flags


def bundle_environment(epoch: int, target_dir: Path, rustflags: str) -> dict[str, str]:
    """Environment for a native bundling run. Pins time, locale and parallelism."""
    return {
        "SOURCE_DATE_EPOCH": str(epoch),
        "TZ": "UTC",
        "LC_ALL": "C",
        "LANG": "C",
        "ZERO_AR_DATE": "1",
        "CARGO_INCREMENTAL": "0",
        "CARGO_BUILD_JOBS": "1",
        "CARGO_PROFILE_RELEASE_CODEGEN_UNITS": "1",
        "CARGO_TARGET_DIR": str(target_dir),
        "TAURI_TARGET_DIR": str(target_dir),
        "RUSTFLAGS": rustflags,
        "CI": "true",
    }


def run_with_retry(
    invoke: Callable[[], CommandResult],
    label: str,
    sleep: Callable[[float], None] = time.sleep,
) -> CommandResult:
    """
    Run a bundling step, retrying once if it failed on name resolution.

    Any other failure, and a second failure of any kind, is returned as is.
    """
    result = invoke()
    if result.success or not RETRYABLE_BUNDLE_FAILURE.search(result.output):
        return result

    _logger.warning(
        "Bundling hit a transient name resolution failure, retrying once",
        extra={"step": label, "delay_seconds": RETRY_DELAY_SECONDS},
    )
    sleep(RETRY_DELAY_SECONDS)
    return invoke()


def container_toolchain_triples(plan: BuildPlan) -> tuple[str, ...]:
    """
    Linux triples whose digests pin the bundling container for `plan`.

    Every triple that isn't host-only may end up in the container, so all of
    their container toolchains count.
    """
    found: set[str] = set()
    for triple in plan.triples:
        info = triple_info(triple)
        if not info.family.host_only:
            found.add(info.container_toolchain_triple)
    return tuple(sorted(found))


def check_desktop_preflight(
    plan: BuildPlan,
    registry: DigestRegistry,
    host_triple: str | None,
    allow_container_fallback: bool,
) -> None:
    """
    Fail a desktop plan before anything runs if it can't complete here.

    Raises:
        HostCapabilityError: For the first macOS triple when the host isn't macOS.
        MissingDigestError: Listing every unpinned container toolchain, when
            the container fallback is allowed.
    """
    host_is_macos = host_triple is not None and triple_info(host_triple).family.is_macos
    for triple in plan.triples:
        if triple_info(triple).family.host_only and not host_is_macos:
            raise HostCapabilityError(
                triple, f"requires a macOS host (host: {host_triple or 'unknown'})"
            )

    if allow_container_fallback:
        registry.require_all(container_toolchain_triples(plan))


def collect_installers(bundle_dir: Path) -> list[Path]:
    """Installer files under `bundle_dir`, as sorted relative paths."""
    if not bundle_dir.is_dir():
        return []
    found = [
        path.relative_to(bundle_dir)
        for path in bundle_dir.rglob("*")
        if path.is_file() and path.name.lower().endswith(INSTALLER_SUFFIXES)
    ]
    return sorted(found, key=lambda rel: rel.as_posix())


def collect_app_payload(bundle_dir: Path) -> list[Path]:
    """
    Files that identify a `.app` bundle: Info.plist and the executables.

    Returned relative to `bundle_dir`, sorted.
    """
    if not bundle_dir.is_dir():
        return []
    found: list[Path] = []
    for app in sorted(bundle_dir.rglob("*.app")):
        if not app.is_dir():
            continue
        plist = app / "Contents" / "Info.plist"
        if plist.is_file():
            found.append(plist.relative_to(bundle_dir))
        macos_dir = app / "Contents" / "MacOS"
        if macos_dir.is_dir():
            found.extend(p.relative_to(bundle_dir) for p in macos_dir.iterdir() if p.is_file())
    return sorted(found, key=lambda rel: rel.as_posix())


@dataclass(frozen=True)
class DesktopExecutor:
    """
    Builds desktop bundle plans.

    Attributes:
        project_root: Source tree containing `deploy/`.
        releases_dir: Holds the bundling Dockerfile and the scratch target dir.
        registry: Toolchain digests and host tool pins.
        runner: Runs pnpm, the bundler and version queries.
        binary_prefix: Prefix for the portable binary name.
        source_date_epoch: Explicit epoch. None means derive it.
        allow_container_fallback: Whether triples the host can't bundle may
            use the container.
        canonicalize_linux_bundles: Rewrite Linux installers deterministically.
        environ: Environment to read HOME, CARGO_HOME, RUSTFLAGS and
            SOURCE_DATE_EPOCH from. None means the process environment.
        sleep: Delay used before the single retry.
        host_triple: The triple of the machine doing the bundling. Defaults to
            the detected host.
    """

    project_root: Path
    releases_dir: Path
    registry: DigestRegistry
    runner: CommandRunner
    binary_prefix: str = "secluso"
    source_date_epoch: int | None = None
    allow_container_fallback: bool = True
    canonicalize_linux_bundles: bool = True
    environ: Mapping[str, str] | None = None
    sleep: Callable[[float], None] = field(default=time.sleep)
    host_triple: str | None = field(default_factory=detect_host_triple)

    @property
    def app_dir(self) -> Path:
        return self.project_root / "deploy"

    def execute(
        self,
        plan: BuildPlan,
        run_dir: Path,
        builder: ContainerBuilder | None = None,
        run_label: str = "1",
        diagnostics: Diagnostics | None = None,
    ) -> list[ArtifactRecord]:
        """
        Bundle every triple of a desktop plan.

        Args:
            plan: A desktop-bundle BuildPlan.
            run_dir: The run directory artifacts are written into.
            builder: Active container builder. Required only for fallback.
            run_label: Run identifier used in log lines.
            diagnostics: Optional diagnostics sink.

        Returns:
            Artifact records in execution order.

        Raises:
            SourceError: If the application's manifest or locks are missing.
            MissingDigestError: If a container toolchain the plan may need
                isn't pinned. Raised before any tool runs.
            ToolchainInvocationError: If pnpm or the bundler fails.
            HostToolchainMismatchError: If a pinned macOS host tool differs.
            HostCapabilityError: If a triple can't be bundled here. macOS
                triples on another host are rejected before any tool runs.
            MissingArtifactError: If bundling produced nothing.
            AggregateCanonicalizationError: After all triples, if any failed
                canonicalization.
        """
        diagnostics = diagnostics or Diagnostics.disabled()
        policy = package_policy(DESKTOP_PACKAGE)
        source = resolve_desktop_source(self.project_root, policy.source)
        infos = [triple_info(triple) for triple in plan.triples]
        apple = any(info.family.is_macos for info in infos)

        check_desktop_preflight(plan, self.registry, self.host_triple, self.allow_container_fallback)

        if (
            plan.requires_container_fallback
            and self.allow_container_fallback
            and not (self.releases_dir / _CONTAINER_DOCKERFILE).is_file()
        ):
            raise BuildError(
                f"Missing {self.releases_dir / _CONTAINER_DOCKERFILE} required for "
                "cross-platform desktop builds"
            )

        self._install_frontend()

        if apple:
            snapshot = snapshot_host_toolchain(self.runner, self.app_dir)
            enforce_host_pins(snapshot, self.registry.host_pins())
            host_identity = snapshot.identity
        else:
            host_identity = f"{HOST_IDENTITY_PREFIX}{host_toolchain_identity(self.runner)}"

        supported = self._supported_bundles()
        epoch = resolve_source_date_epoch(
            self.project_root, self.runner, self.source_date_epoch, self.environ
        )
        rustflags = deterministic_rustflags(self.project_root, apple, self.environ)
        _logger.info(
            "Desktop build inputs resolved",
            extra={
                "run": run_label,
                "version": source.version,
                "supported_bundles": list(supported),
                "source_date_epoch": epoch,
            },
        )

        records: list[ArtifactRecord] = []
        failures: list[CanonicalizationError] = []
        for info in infos:
            try:
                records.extend(
                    self._bundle_triple(
                        info=info,
                        source=source,
                        supported=supported,
                        host_identity=host_identity,
                        epoch=epoch,
                        rustflags=rustflags,
                        run_dir=run_dir,
                        builder=builder,
                        run_label=run_label,
                        diagnostics=diagnostics,
                    )
                )
            except CanonicalizationError as err:
                _logger.error(
                    "Canonicalization failed",
                    extra={"run": run_label, "triple": err.triple, "step": err.step},
                )
                failures.append(err)

        if failures:
            raise AggregateCanonicalizationError(failures)
        return records

    def _install_frontend(self) -> None:
        result = self.runner.run(
            ["pnpm", "install", "--frozen-lockfile"], cwd=self.app_dir, env={"CI": "true"}
        )
        if not result.success:
            raise ToolchainInvocationError(
                "pnpm install", result.exit_code, f"dir={self.app_dir}", result.output
            )

    def _supported_bundles(self) -> tuple[str, ...]:
        result = self.runner.run(["pnpm", "tauri", "build", "--help"], cwd=self.app_dir)
        supported = parse_supported_bundles(result.stdout) if result.success else ()
        if not supported:
            raise BuildError("Could not determine supported bundle types from the host bundler")
        return supported

    def _bundle_triple(
        self,
        info: TripleInfo,
        source: SourceUnit,
        supported: tuple[str, ...],
        host_identity: str,
        epoch: int,
        rustflags: str,
        run_dir: Path,
        builder: ContainerBuilder | None,
        run_label: str,
        diagnostics: Diagnostics,
    ) -> list[ArtifactRecord]:
        art_dir = artifact_dir_for_triple(run_dir, info.triple)
        art_dir.mkdir(parents=True, exist_ok=True)

        bundle = choose_bundle(info, supported)
        if bundle is not None:
            identity = host_identity
            if not info.family.is_macos:
                identity = self.registry.lookup(info.triple) or host_identity
            produced = self._bundle_natively(
                info, bundle, epoch, rustflags, art_dir, run_label, diagnostics
            )
        elif not self.allow_container_fallback:
            raise HostCapabilityError(
                info.triple,
                f"container fallback is disabled (host supports: {', '.join(supported)})",
            )
        elif info.family.host_only:
            raise HostCapabilityError(
                info.triple,
                f"requires macOS host bundling (host supports: {', '.join(supported)})",
            )
        else:
            if builder is None or not builder.active:
                raise BuildError(f"Container bundling for {info.triple} needs an active builder")
            identity = self.registry.require(info.container_toolchain_triple)
            produced = self._bundle_in_container(
                info, identity, epoch, art_dir, builder, run_label, diagnostics
            )

        if not produced:
            raise MissingArtifactError(info.triple, DESKTOP_PACKAGE, str(art_dir))

        records = []
        for rel in produced:
            path = art_dir / rel
            record = ArtifactRecord(
                package=DESKTOP_PACKAGE,
                triple=info.triple,
                binary_name=path.name,
                relative_path=f"{ARTIFACTS_DIRNAME}/{info.triple}/{rel.as_posix()}",
                content_hash=compute_sha256(path),
                source_name=source.name,
                source_version=source.version,
                dependency_lock_hash=source.lock_hash,
                toolchain_identity=identity,
            )
            records.append(record)
            _logger.info(
                "Desktop artifact recorded",
                extra={
                    "run": run_label,
                    "triple": info.triple,
                    "bin": record.binary_name,
                    "sha256": record.content_hash,
                },
            )
        return records

    def _canonicalize(
        self, info: TripleInfo, bundle_dir: Path, epoch: int, diagnostics: Diagnostics
    ) -> None:
        if not self.canonicalize_linux_bundles or info.family is not PlatformFamily.LINUX:
            return
        if bundle_dir.is_dir():
            canonicalize_bundle(info.triple, bundle_dir, epoch, self.runner, diagnostics)

    def _bundle_natively(
        self,
        info: TripleInfo,
        bundle: str,
        epoch: int,
        rustflags: str,
        art_dir: Path,
        run_label: str,
        diagnostics: Diagnostics,
    ) -> list[Path]:
        target_dir = self.releases_dir / _WORK_DIRNAME / "deploy-target"
        remove_tree(target_dir)
        target_dir.mkdir(parents=True)

        argv = ["pnpm", "tauri", "build", "-v", "-v"]
        argv += ["--target", info.triple, "--bundles", bundle, "--ci", "--no-sign"]
        argv += ["--", "--locked"]
        env = bundle_environment(epoch, target_dir, rustflags)
        _logger.info(
            "Bundling natively",
            extra={"run": run_label, "triple": info.triple, "bundle": bundle},
        )
        result = run_with_retry(
            lambda: self.runner.run(argv, cwd=self.app_dir, env=env),
            label=f"bundle {info.triple}",
            sleep=self.sleep,
        )
        diagnostics.record_command(info.triple, "bundle", result)
        if not result.success:
            raise ToolchainInvocationError(
                "tauri build", result.exit_code, f"triple={info.triple} bundle={bundle}", result.output
            )

        bundle_dir = target_dir / info.triple / "release" / "bundle"
        self._canonicalize(info, bundle_dir, epoch, diagnostics)

        produced = collect_installers(bundle_dir)
        prefix = Path()
        if not produced and bundle == "app":
            produced = collect_app_payload(bundle_dir)
            prefix = Path("app")

        copied = []
        for rel in produced:
            destination = rel if prefix == Path() else prefix / _strip_bundle_kind(rel)
            copy_file(bundle_dir / rel, art_dir / destination)
            copied.append(destination)
        return copied

    def _bundle_in_container(
        self,
        info: TripleInfo,
        identity: str,
        epoch: int,
        art_dir: Path,
        builder: ContainerBuilder,
        run_label: str,
        diagnostics: Diagnostics,
    ) -> list[Path]:
        build_args = {
            "RUST_HASH": identity,
            "TAURI_TARGET": info.triple,
            "TAURI_RUNNER": info.family.container_runner,
            "TAURI_BUNDLE_TARGETS_JSON": json.dumps(list(info.family.container_bundles)),
            "SOURCE_DATE_EPOCH": str(epoch),
            "DEBUG": "1" if diagnostics.enabled else "0",
        }
        _logger.info(
            "Bundling in container",
            extra={
                "run": run_label,
                "triple": info.triple,
                "platform": info.container_platform,
                "bundles": list(info.family.container_bundles),
            },
        )

        with tempfile.TemporaryDirectory(prefix="reprobuild-deploy-") as tmp:
            output_dir = Path(tmp)
            result = run_with_retry(
                lambda: builder.build(
                    context_dir=self.releases_dir,
                    output_dir=output_dir,
                    build_args=build_args,
                    build_contexts={_PROJECT_CONTEXT_NAME: self.project_root},
                    target=_DOCKER_BUILD_TARGET,
                    dockerfile=self.releases_dir / _CONTAINER_DOCKERFILE,
                    platform=info.container_platform,
                    extra_args=("--progress", "plain"),
                ),
                label=f"container bundle {info.triple}",
                sleep=self.sleep,
            )
            diagnostics.record_command(info.triple, "container-bundle", result)
            if not result.success:
                raise ToolchainInvocationError(
                    "docker buildx build", result.exit_code, f"desktop triple={info.triple}", result.output
                )

            release_dir = output_dir / "release"
            bundle_dir = release_dir / "bundle"
            self._canonicalize(info, bundle_dir, epoch, diagnostics)

            copied = []
            for rel in collect_installers(bundle_dir):
                destination = Path("bundle") / rel
                copy_file(bundle_dir / rel, art_dir / destination)
                copied.append(destination)

            if not copied:
                portable_name = package_policy(DESKTOP_PACKAGE).binary_name(self.binary_prefix)
                portable = release_dir / f"{portable_name}{info.executable_suffix}"
                if portable.is_file():
                    destination = Path("portable") / portable.name
                    copy_file(portable, art_dir / destination)
                    copied.append(destination)
                    _logger.info(
                        "No installer produced, recording portable binary",
                        extra={"run": run_label, "triple": info.triple, "bin": portable.name},
                    )
        return copied


def _strip_bundle_kind(rel: Path) -> Path:
    """`macos/Foo.app/Contents/Info.plist` -> `Foo.app/Contents/Info.plist`."""
    parts = rel.parts
    for index, part in enumerate(parts):
        if part.endswith(".app"):
            return Path(*parts[index:])
    return rel
