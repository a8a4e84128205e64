# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""Tests for rebuilding an rpm from the canonical deb payload."""

from pathlib import Path

import pytest

from reprobuild.canonical.deb import DebPayload
from reprobuild.canonical.rpm import (
    RpmBuildError,
    build_file_list,
    rebuild_rpm_from_deb,
    render_spec,
    rpmbuild_argv,
    split_version,
)

EPOCH = 1700000000


@pytest.fixture()
def payload(tmp_path: Path) -> DebPayload:
    data = tmp_path / "deb" / "data"
    (data / "usr" / "bin").mkdir(parents=True)
    (data / "usr" / "bin" / "secluso-deploy").write_bytes(b"bin")
    control = tmp_path / "deb" / "control"
    control.mkdir()
    return DebPayload(
        deb_path=tmp_path / "secluso-deploy_1.2.3_amd64.deb",
        control_dir=control,
        data_dir=data,
        control_fields={
            "Package": "secluso-deploy",
            "Version": "1.2.3-2",
            "Description": "Deploy 100% of it\nextended text",
        },
    )


class TestSpecRendering:
    @pytest.mark.parametrize(
        ("field", "expected"),
        [
            ("1.2.3", ("1.2.3", "1")),
            ("1.2.3-4", ("1.2.3", "4")),
            ("1.2.3-4-beta", ("1.2.3", "4-beta")),
            ("-5", ("0.0.0", "5")),
        ],
    )
    def test_split_version(self, field: str, expected: tuple[str, str]) -> None:
        assert split_version(field) == expected

    def test_spec_uses_control_fields(self, payload: DebPayload) -> None:
        name, spec = render_spec(payload.control_fields, "x86_64", EPOCH)
        assert name == "secluso-deploy"
        assert "Version: 1.2.3\n" in spec
        assert "Release: 2\n" in spec
        assert "Summary: Deploy 100%% of it\n" in spec
        assert "extended text" not in spec
        assert "BuildArch: x86_64" in spec
        assert f'touch -h -d "@{EPOCH}"' in spec

    def test_spec_defaults(self) -> None:
        name, spec = render_spec({}, "aarch64", EPOCH)
        assert name == "secluso-deploy"
        assert "Version: 0.0.0\n" in spec

    def test_file_list(self, payload: DebPayload) -> None:
        assert build_file_list(payload.data_dir).splitlines() == [
            "%defattr(-,root,root,-)",
            "%dir /usr",
            "%dir /usr/bin",
            "/usr/bin/secluso-deploy",
        ]

    def test_argv_pins_build_metadata(self, tmp_path: Path) -> None:
        argv = rpmbuild_argv(tmp_path, tmp_path / "x.spec", EPOCH)
        assert "_buildhost reproducible" in argv
        assert f"_source_date_epoch {EPOCH}" in argv
        assert argv[-2:] == ["-bb", str(tmp_path / "x.spec")]


class TestRebuildRpm:
    def test_built_rpm_replaces_original(self, tmp_path: Path, payload: DebPayload, fake_runner) -> None:
        def fake_rpmbuild(argv, cwd, env):
            topdir = Path(argv[argv.index("--define") + 1].split(" ", 1)[1])
            out = topdir / "RPMS" / "x86_64" / "secluso-deploy-1.2.3-2.x86_64.rpm"
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(b"rpm bytes")
            return fake_runner.result(argv)

        fake_runner.on("rpmbuild", handler=fake_rpmbuild)
        rpm_path = tmp_path / "bundle" / "rpm" / "secluso-deploy.rpm"
        rpm_path.parent.mkdir(parents=True)
        rpm_path.write_bytes(b"original")
        work = tmp_path / "work"

        rebuild_rpm_from_deb(payload, rpm_path, "x86_64", EPOCH, work, fake_runner)

        assert rpm_path.read_bytes() == b"rpm bytes"
        sources = work / "rpmbuild" / "SOURCES"
        assert (sources / "rootfs" / "usr" / "bin" / "secluso-deploy").read_bytes() == b"bin"
        assert (sources / "rootfs" / "usr").stat().st_mtime == EPOCH
        assert fake_runner.calls[0]["env"]["RPM_BUILD_NCPUS"] == "1"

    def test_rpmbuild_failure(self, tmp_path: Path, payload: DebPayload, fake_runner) -> None:
        fake_runner.on("rpmbuild", exit_code=1, stderr="error: bad spec")
        with pytest.raises(RpmBuildError, match="bad spec"):
            rebuild_rpm_from_deb(payload, tmp_path / "x.rpm", "x86_64", EPOCH, tmp_path / "w", fake_runner)

    def test_no_package_produced(self, tmp_path: Path, payload: DebPayload, fake_runner) -> None:
        with pytest.raises(RpmBuildError, match="no package"):
            rebuild_rpm_from_deb(payload, tmp_path / "x.rpm", "x86_64", EPOCH, tmp_path / "w", fake_runner)
