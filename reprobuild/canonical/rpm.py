# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Deterministic rebuild of .rpm packages from the canonical deb payload.

rpm's own metadata (build host, build time, file order) is hard to control
after the fact, so the rpm is rebuilt from scratch instead of rewritten. The
package fields come from the deb's control file, the payload from the deb's
data tree, and rpmbuild is pinned to the source date epoch with a fixed
build host name. Because the deb has already been canonicalized, both
packages ship byte-identical payload files.
"""

import logging
import re
import shutil
from pathlib import Path

from reprobuild.canonical.deb import DebPayload
from reprobuild.canonical.tree import iter_sorted, normalize_mtimes
from reprobuild.logging.logger import get_logger
from reprobuild.utils.filesystem import copy_file
from reprobuild.utils.process import CommandResult, CommandRunner

_logger: logging.Logger = get_logger(__name__)

_DEFAULT_PACKAGE = "secluso-deploy"
_DEFAULT_VERSION = "0.0.0-1"
_DEFAULT_SUMMARY = "Secluso deploy app"
_DEFAULT_MAINTAINER = "Secluso Repro Builder <noreply@secluso.invalid>"


class RpmBuildError(RuntimeError):
    """rpmbuild failed or produced no package."""

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        self.result = result
        super().__init__(message)


def _single_line(value: str) -> str:
    collapsed = re.sub(r"\s+", " ", value).strip()
    return collapsed.replace("%", "%%")


def split_version(version_field: str) -> tuple[str, str]:
    """
    Split a Debian version into rpm (Version, Release).

    Only the first `-` separates them: "1.2.3-4-beta" gives ("1.2.3", "4-beta").
    """
    version, release = version_field, "1"
    if "-" in version_field:
        version, _, release = version_field.partition("-")
    return version or "0.0.0", release or "1"


def build_file_list(rootfs: Path) -> str:
    """rpm %files list for a tree: directories marked with %dir, sorted paths."""
    lines = ["%defattr(-,root,root,-)"]
    for entry in iter_sorted(rootfs):
        rel = entry.relative_to(rootfs).as_posix()
        if entry.is_dir() and not entry.is_symlink():
            lines.append(f"%dir /{rel}")
        else:
            lines.append(f"/{rel}")
    return "\n".join(lines) + "\n"


def render_spec(control_fields: dict[str, str], arch: str, epoch: int) -> tuple[str, str]:
    """
    Render the spec file for a package.

    Returns:
        (package_name, spec_text)
    """
    package_name = control_fields.get("Package") or _DEFAULT_PACKAGE
    version, release = split_version(control_fields.get("Version") or _DEFAULT_VERSION)
    # Only the synopsis line; the extended description is continuation lines.
    description = control_fields.get("Description", "").split("\n", 1)[0]
    summary = _single_line(description or _DEFAULT_SUMMARY)
    maintainer = control_fields.get("Maintainer") or _DEFAULT_MAINTAINER

    spec = f"""Name: {package_name}
Version: {version}
Release: {release}
Summary: {summary}
License: Proprietary
BuildArch: {arch}

%description
{summary}

%prep

%build

%install
rm -rf %{{buildroot}}
mkdir -p %{{buildroot}}
cp -a %{{_sourcedir}}/rootfs/. %{{buildroot}}/
find %{{buildroot}} -mindepth 1 -exec touch -h -d "@{epoch}" {{}} +

%files -f %{{_sourcedir}}/filelist.txt

%changelog
* Thu Jan 01 1970 {maintainer} - {version}-{release}
- Deterministic rebuild
"""
    return package_name, spec


def rpmbuild_argv(topdir: Path, spec_path: Path, epoch: int) -> list[str]:
    return [
        "rpmbuild",
        "--quiet",
        "--define",
        f"_topdir {topdir}",
        "--define",
        "_buildhost reproducible",
        "--define",
        "_build_id_links none",
        "--define",
        f"_source_date_epoch {epoch}",
        "--define",
        "use_source_date_epoch_as_buildtime 1",
        "--define",
        "clamp_mtime_to_source_date_epoch 1",
        "--define",
        "source_date_epoch_from_changelog 0",
        "--define",
        "_binary_payload w9.gzdio",
        "--define",
        "_build_name_fmt %%{NAME}-%%{VERSION}-%%{RELEASE}.%%{ARCH}.rpm",
        "-bb",
        str(spec_path),
    ]


def rebuild_rpm_from_deb(
    payload: DebPayload,
    rpm_path: Path,
    arch: str,
    epoch: int,
    work_dir: Path,
    runner: CommandRunner,
) -> CommandResult:
    """
    Replace `rpm_path` with a deterministic rebuild of the deb payload.

    Args:
        payload: Output of the deb step.
        rpm_path: The bundler's rpm, overwritten on success.
        arch: rpm BuildArch (x86_64 or aarch64).
        epoch: Source date epoch.
        work_dir: Empty scratch directory for the rpm topdir.
        runner: Runs rpmbuild.

    Returns:
        The rpmbuild invocation result, for diagnostics.

    Raises:
        RpmBuildError: If rpmbuild fails or writes no package.
    """
    topdir = work_dir / "rpmbuild"
    for sub in ("BUILD", "BUILDROOT", "RPMS", "SOURCES", "SPECS", "SRPMS"):
        (topdir / sub).mkdir(parents=True, exist_ok=True)

    rootfs = topdir / "SOURCES" / "rootfs"
    shutil.copytree(payload.data_dir, rootfs, symlinks=True)
    normalize_mtimes(rootfs, epoch)

    (topdir / "SOURCES" / "filelist.txt").write_text(build_file_list(rootfs), encoding="utf-8")

    package_name, spec_text = render_spec(payload.control_fields, arch, epoch)
    spec_path = topdir / "SPECS" / f"{package_name}.spec"
    spec_path.write_text(spec_text, encoding="utf-8")

    result = runner.run(
        rpmbuild_argv(topdir, spec_path, epoch),
        env={
            "RPM_BUILD_NCPUS": "1",
            "SOURCE_DATE_EPOCH": str(epoch),
            "TZ": "UTC",
            "LC_ALL": "C",
        },
    )
    if not result.success:
        raise RpmBuildError(
            f"rpmbuild exited with {result.exit_code}: {result.output.strip()[-2000:]}", result
        )

    built = sorted((topdir / "RPMS").rglob("*.rpm"))
    if not built:
        raise RpmBuildError("rpmbuild produced no package", result)

    copy_file(built[0], rpm_path)
    _logger.info(
        "Rebuilt rpm from deb payload",
        extra={"rpm": rpm_path.name, "deb": payload.deb_path.name, "arch": arch},
    )
    return result
