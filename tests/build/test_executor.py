# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Tests for the binary executor.

The container build is faked: the handler for `docker buildx build` reads
the requested binary name and output directory from the argv and writes a
small file there, the way the real export stage would.
"""

from pathlib import Path

import pytest

from reprobuild.build.builder import ContainerBuilder
from reprobuild.build.errors import MissingArtifactError, MissingDigestError, ToolchainInvocationError
from reprobuild.build.executor import BinaryExecutor
from reprobuild.plan.resolver import resolve_build_plan
from reprobuild.toolchain.digests import DigestRegistry
from reprobuild.utils.hashing import compute_sha256

X86_LINUX = "x86_64-unknown-linux-gnu"
ARM_LINUX = "aarch64-unknown-linux-gnu"
DIGEST_X86 = "sha256:" + "1" * 64


def _build_arg(argv: list[str], key: str) -> str | None:
    for i, part in enumerate(argv):
        if part == "--build-arg" and argv[i + 1].startswith(f"{key}="):
            return argv[i + 1].split("=", 1)[1]
    return None


def _output_dir(argv: list[str]) -> Path:
    return Path(argv[argv.index("--output") + 1].split("dest=", 1)[1])


def _export_binary(runner):
    def handler(argv, cwd, env):
        name = _build_arg(argv, "BINARY_FILE_NAME")
        target = _build_arg(argv, "CARGO_TARGET")
        (_output_dir(argv) / name).write_bytes(f"{name}@{target}".encode())
        return runner.result(argv)

    return handler


@pytest.fixture()
def project(tmp_path: Path, make_crate) -> Path:
    root = tmp_path / "project"
    for crate in ("server", "update", "reset", "config_tool", "camera_hub"):
        make_crate(root, crate, version="1.4.0")
    return root


def _executor(project: Path, lock_file: Path) -> BinaryExecutor:
    return BinaryExecutor(
        project_root=project,
        releases_dir=lock_file.parent,
        registry=DigestRegistry.from_lock_file(lock_file),
    )


class TestBinaryExecutor:
    def test_server_plan_produces_one_record(
        self, fake_runner, project: Path, lock_file: Path, tmp_path: Path
    ) -> None:
        fake_runner.on("docker", "buildx", "build", handler=_export_binary(fake_runner))
        run_dir = tmp_path / "run"

        with ContainerBuilder(fake_runner, "b", "img") as builder:
            records = _executor(project, lock_file).execute(
                resolve_build_plan("server", "server"), run_dir, builder
            )

        assert len(records) == 1
        record = records[0]
        assert record.key == ("server", X86_LINUX, "secluso-server")
        assert record.relative_path == f"artifacts/{X86_LINUX}/secluso-server"
        assert record.source_version == "1.4.0"
        assert record.toolchain_identity == DIGEST_X86
        assert record.content_hash == compute_sha256(run_dir / record.relative_path)

        argv = fake_runner.argvs("docker", "buildx", "build")[0]
        assert _build_arg(argv, "RUST_HASH") == DIGEST_X86
        assert _build_arg(argv, "CRATE_NAME") == "server"
        assert _build_arg(argv, "FEATURES") is None

    def test_raspberry_only_packages_are_skipped_on_x86(
        self, fake_runner, project: Path, lock_file: Path, tmp_path: Path
    ) -> None:
        fake_runner.on("docker", "buildx", "build", handler=_export_binary(fake_runner))

        with ContainerBuilder(fake_runner, "b", "img") as builder:
            records = _executor(project, lock_file).execute(
                resolve_build_plan("all", "all"), tmp_path / "run", builder
            )

        keys = [record.key for record in records]
        assert ("reset", ARM_LINUX, "secluso-reset") in keys
        assert not any(key[0] == "reset" and key[1] == X86_LINUX for key in keys)
        assert not any(key[0] == "raspberry_camera_hub" and key[1] == X86_LINUX for key in keys)
        # arm: six packages, x86: four
        assert len(records) == 10
        assert [key[1] for key in keys[:6]] == [ARM_LINUX] * 6

    def test_camera_hub_is_renamed_after_build(
        self, fake_runner, project: Path, lock_file: Path, tmp_path: Path
    ) -> None:
        fake_runner.on("docker", "buildx", "build", handler=_export_binary(fake_runner))
        run_dir = tmp_path / "run"

        with ContainerBuilder(fake_runner, "b", "img") as builder:
            records = _executor(project, lock_file).execute(
                resolve_build_plan("raspberry", "camerahub"), run_dir, builder
            )

        art_dir = run_dir / "artifacts" / ARM_LINUX
        assert records[0].binary_name == "secluso-raspberry-camera-hub"
        assert (art_dir / "secluso-raspberry-camera-hub").is_file()
        assert not (art_dir / "secluso-camera-hub").exists()
        argv = fake_runner.argvs("docker", "buildx", "build")[0]
        assert _build_arg(argv, "FEATURES") == "--features raspberry,telemetry"

    def test_missing_output_is_not_retried(
        self, fake_runner, project: Path, lock_file: Path, tmp_path: Path
    ) -> None:
        with ContainerBuilder(fake_runner, "b", "img") as builder:
            with pytest.raises(MissingArtifactError, match="server on x86_64-unknown-linux-gnu"):
                _executor(project, lock_file).execute(
                    resolve_build_plan("server", "server"), tmp_path / "run", builder
                )
        assert len(fake_runner.argvs("docker", "buildx", "build")) == 1

    def test_failed_build_raises(
        self, fake_runner, project: Path, lock_file: Path, tmp_path: Path
    ) -> None:
        fake_runner.on("docker", "buildx", "build", exit_code=1, stderr="compile error")
        with ContainerBuilder(fake_runner, "b", "img") as builder:
            with pytest.raises(ToolchainInvocationError) as excinfo:
                _executor(project, lock_file).execute(
                    resolve_build_plan("server", "server"), tmp_path / "run", builder
                )
        assert "compile error" in excinfo.value.output

    def test_missing_digest_stops_before_building(
        self, fake_runner, project: Path, tmp_path: Path
    ) -> None:
        executor = BinaryExecutor(
            project_root=project, releases_dir=tmp_path, registry=DigestRegistry()
        )
        with ContainerBuilder(fake_runner, "b", "img") as builder:
            with pytest.raises(MissingDigestError):
                executor.execute(resolve_build_plan("server", "server"), tmp_path / "run", builder)
        assert fake_runner.argvs("docker", "buildx", "build") == []
