# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""Tests for single-run verification."""

import json
from pathlib import Path

from reprobuild.release.verification.verifier import verify_run

X86_LINUX = "x86_64-unknown-linux-gnu"
SERVER = ("server", X86_LINUX, "secluso-server")
UPDATE = ("update", X86_LINUX, "secluso-update")


class TestVerifyRun:
    def test_intact_run_passes(self, tmp_path: Path, make_run) -> None:
        run = make_run(tmp_path / "run", {SERVER: b"bin", UPDATE: b"upd"})
        report = verify_run(run)
        assert report.is_valid
        assert report.checks_passed == [
            "manifest_valid",
            "fields_populated",
            "files_present",
            "hashes_match",
        ]
        assert report.errors == []

    def test_missing_directory(self, tmp_path: Path) -> None:
        report = verify_run(tmp_path / "nope")
        assert not report.is_valid
        assert report.checks_failed == ["directory_exists"]

    def test_missing_manifest(self, tmp_path: Path) -> None:
        report = verify_run(tmp_path)
        assert not report.is_valid
        assert report.checks_failed == ["manifest_valid"]

    def test_duplicate_keys_fail_manifest_check(self, tmp_path: Path, make_run) -> None:
        run = make_run(tmp_path / "run", {SERVER: b"bin"})
        manifest = json.loads((run / "manifest.json").read_text(encoding="utf-8"))
        manifest["artifacts"].append(manifest["artifacts"][0])
        (run / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")

        report = verify_run(run)
        assert report.checks_failed == ["manifest_valid"]
        assert "Duplicate" in report.errors[0]

    def test_empty_field_fails(self, tmp_path: Path, make_run) -> None:
        run = make_run(tmp_path / "run", {SERVER: b"bin"}, overrides={SERVER: {"rust_digest": ""}})
        report = verify_run(run)
        assert report.checks_failed == ["fields_populated"]
        assert "rust_digest" in report.errors[0]

    def test_missing_file_fails(self, tmp_path: Path, make_run) -> None:
        run = make_run(tmp_path / "run", {SERVER: b"bin"})
        (run / "artifacts" / X86_LINUX / "secluso-server").unlink()
        report = verify_run(run)
        assert "files_present" in report.checks_failed
        assert "hashes_match" in report.checks_passed

    def test_escaping_path_fails(self, tmp_path: Path, make_run) -> None:
        run = make_run(tmp_path / "run", {SERVER: b"bin"}, overrides={SERVER: {"bin_path": "../../etc/passwd"}})
        report = verify_run(run)
        assert "files_present" in report.checks_failed
        assert "outside" in report.errors[0]

    def test_hash_mismatch_fails(self, tmp_path: Path, make_run) -> None:
        run = make_run(tmp_path / "run", {SERVER: b"bin"})
        (run / "artifacts" / X86_LINUX / "secluso-server").write_bytes(b"changed")
        report = verify_run(run)
        assert report.checks_failed == ["hashes_match"]
        assert "Hash mismatch" in report.errors[0]
