# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Tests for the run comparator.

Runs are written with the make_run fixture. Each record declares the true
hash of its file unless a test overrides it.
"""

import json
from pathlib import Path

import pytest

from reprobuild.release.comparison.comparator import (
    RUN_A,
    RUN_B,
    Layer,
    Verdict,
    compare_runs,
    write_report,
)
from reprobuild.release.manifests.manifest import ManifestError

X86_LINUX = "x86_64-unknown-linux-gnu"
ARM_LINUX = "aarch64-unknown-linux-gnu"
SERVER = ("server", X86_LINUX, "secluso-server")
UPDATE = ("update", ARM_LINUX, "secluso-update")
RESET = ("reset", ARM_LINUX, "secluso-reset")


class TestMatchingRuns:
    def test_identical_runs_pass(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin", UPDATE: b"upd"})
        b = make_run(tmp_path / "b", {SERVER: b"bin", UPDATE: b"upd"})

        report = compare_runs(a, b)
        assert report.passed
        assert [v.verdict for v in report.verdicts] == [Verdict.OK, Verdict.OK]
        assert report.extra_keys == ()

    def test_small_run_may_be_a_subset(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin", UPDATE: b"upd"})

        report = compare_runs(a, b)
        assert report.passed
        assert report.small_run == RUN_A
        assert report.extra_keys == (UPDATE,)
        assert len(report.verdicts) == 1

    def test_subset_works_in_either_argument_order(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin", UPDATE: b"upd"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"})

        report = compare_runs(a, b)
        assert report.passed
        assert report.small_run == RUN_B

    def test_repeated_comparison_gives_same_report(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"other"})
        assert compare_runs(a, b).to_json_dict() == compare_runs(a, b).to_json_dict()

    def test_comparison_is_read_only(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"})
        before = sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*"))
        compare_runs(a, b)
        assert sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*")) == before


class TestStructuralFailure:
    def test_disjoint_keys_fail_without_verdicts(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin", RESET: b"r"})
        b = make_run(tmp_path / "b", {SERVER: b"bin", UPDATE: b"upd", ("x", X86_LINUX, "x"): b"x"})

        report = compare_runs(a, b)
        assert report.structural_failure
        assert not report.passed
        assert report.missing_keys == (RESET,)
        assert report.verdicts == ()
        assert not report.small_run_empty

    @pytest.mark.parametrize("empty_first", [True, False])
    def test_empty_small_run_is_not_a_pass(self, tmp_path: Path, make_run, empty_first: bool) -> None:
        empty = make_run(tmp_path / "empty", {})
        full = make_run(tmp_path / "full", {SERVER: b"bin", UPDATE: b"upd"})

        report = compare_runs(empty, full) if empty_first else compare_runs(full, empty)
        assert report.small_run == (RUN_A if empty_first else RUN_B)
        assert report.small_run_empty
        assert report.structural_failure
        assert not report.passed
        assert report.missing_keys == ()
        assert report.extra_keys == tuple(sorted([SERVER, UPDATE]))

    def test_two_empty_runs_fail(self, tmp_path: Path, make_run) -> None:
        report = compare_runs(make_run(tmp_path / "a", {}), make_run(tmp_path / "b", {}))
        assert report.small_run_empty
        assert not report.passed

    def test_empty_small_run_in_written_report(self, tmp_path: Path, make_run) -> None:
        report = compare_runs(make_run(tmp_path / "a", {}), make_run(tmp_path / "b", {SERVER: b"bin"}))
        path = write_report(report, tmp_path / "report.json")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["small_run_empty"] is True
        assert data["structural_failure"] is True
        assert data["passed"] is False

    def test_missing_manifest_raises(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        (tmp_path / "b").mkdir()
        with pytest.raises(FileNotFoundError):
            compare_runs(a, tmp_path / "b")

    def test_duplicate_keys_raise(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        manifest = json.loads((a / "manifest.json").read_text(encoding="utf-8"))
        manifest["artifacts"].append(manifest["artifacts"][0])
        (a / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")
        b = make_run(tmp_path / "b", {SERVER: b"bin"})

        with pytest.raises(ManifestError, match="Duplicate"):
            compare_runs(a, b)


class TestLayers:
    def test_version_difference_is_metadata(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"}, overrides={SERVER: {"version": "1.0.1"}})

        verdict = compare_runs(a, b).verdict_for(SERVER)
        assert verdict.verdict is Verdict.DIFF_METADATA
        assert verdict.layer is Layer.SOURCE

    def test_lock_difference_is_metadata(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"}, overrides={SERVER: {"crate_lock_sha256": "b" * 64}})

        verdict = compare_runs(a, b).verdict_for(SERVER)
        assert verdict.verdict is Verdict.DIFF_METADATA
        assert verdict.layer is Layer.DEPENDENCY_LOCK

    def test_empty_toolchain_identity_is_metadata(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"}, overrides={SERVER: {"rust_digest": ""}})
        b = make_run(tmp_path / "b", {SERVER: b"bin"}, overrides={SERVER: {"rust_digest": ""}})

        verdict = compare_runs(a, b).verdict_for(SERVER)
        assert verdict.verdict is Verdict.DIFF_METADATA
        assert verdict.layer is Layer.TOOLCHAIN
        assert "empty" in verdict.detail

    @pytest.mark.parametrize(
        ("override", "layer"),
        [
            ({"version": "2.0.0"}, Layer.SOURCE),
            ({"crate_lock_sha256": "b" * 64}, Layer.DEPENDENCY_LOCK),
            ({"rust_digest": "sha256:" + "9" * 64}, Layer.TOOLCHAIN),
        ],
    )
    def test_metadata_is_checked_before_files(
        self, tmp_path: Path, make_run, override: dict, layer: Layer
    ) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"}, overrides={SERVER: override})
        (b / "artifacts" / X86_LINUX / "secluso-server").unlink()

        verdict = compare_runs(a, b).verdict_for(SERVER)
        assert verdict.verdict is Verdict.DIFF_METADATA
        assert verdict.layer is layer

    def test_missing_file(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"})
        (b / "artifacts" / X86_LINUX / "secluso-server").unlink()

        verdict = compare_runs(a, b).verdict_for(SERVER)
        assert verdict.verdict is Verdict.FAIL_MISSING_FILE
        assert RUN_B in verdict.detail

    def test_path_escaping_run_dir_counts_as_missing(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"}, overrides={SERVER: {"bin_path": "../a/artifacts/x86_64-unknown-linux-gnu/secluso-server"}})

        assert compare_runs(a, b).verdict_for(SERVER).verdict is Verdict.FAIL_MISSING_FILE

    def test_declared_hash_must_match_own_file(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"}, overrides={SERVER: {"sha256": "0" * 64}})

        verdict = compare_runs(a, b).verdict_for(SERVER)
        assert verdict.verdict is Verdict.FAIL_MANIFEST_HASH
        assert verdict.layer is Layer.FILE_HASH

    def test_tampered_file_with_stale_manifest(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"})
        (b / "artifacts" / X86_LINUX / "secluso-server").write_bytes(b"tampered")

        assert compare_runs(a, b).verdict_for(SERVER).verdict is Verdict.FAIL_MANIFEST_HASH

    def test_different_bytes_fail_cross_run(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin-one"})
        b = make_run(tmp_path / "b", {SERVER: b"bin-two"})

        report = compare_runs(a, b)
        verdict = report.verdict_for(SERVER)
        assert verdict.verdict is Verdict.FAIL_CROSS_RUN_HASH
        assert verdict.layer is Layer.CROSS_RUN
        assert report.failures == [verdict]

    def test_uppercase_declared_hash_is_accepted(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        manifest = json.loads((a / "manifest.json").read_text(encoding="utf-8"))
        manifest["artifacts"][0]["sha256"] = manifest["artifacts"][0]["sha256"].upper()
        (a / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")
        b = make_run(tmp_path / "b", {SERVER: b"bin"})

        assert compare_runs(a, b).passed

    def test_every_key_is_evaluated(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"one", UPDATE: b"upd", RESET: b"r"})
        b = make_run(tmp_path / "b", {SERVER: b"two", UPDATE: b"upd", RESET: b"r2"})

        report = compare_runs(a, b)
        assert len(report.verdicts) == 3
        assert {v.key for v in report.failures} == {SERVER, RESET}
        assert report.verdict_for(UPDATE).ok

    def test_verdicts_are_symmetric(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"one", UPDATE: b"upd"})
        b = make_run(tmp_path / "b", {SERVER: b"two", UPDATE: b"upd"}, overrides={UPDATE: {"version": "9"}})

        forward = [(v.key, v.verdict) for v in compare_runs(a, b).verdicts]
        backward = [(v.key, v.verdict) for v in compare_runs(b, a).verdicts]
        assert forward == backward


class TestWriteReport:
    def test_writes_json_outside_runs(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"other"})

        path = write_report(compare_runs(a, b), tmp_path / "report.json")
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["passed"] is False
        assert data["verdicts"][0]["verdict"] == "FAIL_CROSS_RUN_HASH"
        assert data["verdicts"][0]["layer"] == "e:cross_run"

    def test_refuses_to_write_inside_a_run(self, tmp_path: Path, make_run) -> None:
        a = make_run(tmp_path / "a", {SERVER: b"bin"})
        b = make_run(tmp_path / "b", {SERVER: b"bin"})

        with pytest.raises(ValueError, match="inside run directory"):
            write_report(compare_runs(a, b), b / "report.json")
        assert not (b / "report.json").exists()
