# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for reprobuild tests.

Fixtures here are available to every test file automatically. External
tools are never run: build code gets a FakeRunner that records argv lists
and answers from a script of handlers.
"""

import json
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from reprobuild.utils.hashing import compute_sha256
from reprobuild.utils.process import CommandResult, CommandRunner

X86_LINUX = "x86_64-unknown-linux-gnu"
ARM_LINUX = "aarch64-unknown-linux-gnu"
DIGEST_X86 = "sha256:" + "1" * 64
DIGEST_ARM = "sha256:" + "2" * 64


def make_result(argv, exit_code: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(
        argv=tuple(str(a) for a in argv),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        elapsed_seconds=0.0,
    )


class FakeRunner(CommandRunner):
    """
    Records every invocation. Handlers are tried in registration order; the
    first whose prefix matches the argv answers. Unmatched commands succeed
    with empty output.
    """

    result = staticmethod(make_result)

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self._handlers: list[tuple[tuple[str, ...], Callable]] = []
        self.tools: dict[str, str] = {}

    def on(self, *prefix: str, handler=None, exit_code: int = 0, stdout: str = "", stderr: str = ""):
        if handler is None:
            def handler(argv, cwd, env):
                return make_result(argv, exit_code, stdout, stderr)
        self._handlers.append((tuple(prefix), handler))
        return self

    def run(self, argv, cwd=None, env=None, timeout_seconds=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append({"argv": argv, "cwd": cwd, "env": dict(env or {}), "timeout": timeout_seconds})
        for prefix, handler in self._handlers:
            if tuple(argv[: len(prefix)]) == prefix:
                return handler(argv, cwd, env or {})
        return make_result(argv)

    def which(self, tool: str) -> str | None:
        return self.tools.get(tool)

    def argvs(self, *prefix: str) -> list[list[str]]:
        return [c["argv"] for c in self.calls if tuple(c["argv"][: len(prefix)]) == prefix]


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """A small valid config file. Every unspecified field keeps its default."""
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "reprobuild-test"
          log_level: "DEBUG"
        build:
          output_root: "out"
          diagnostics: true
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """Valid YAML that fails schema validation (unknown field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "reprobuild-test"
          colour: "blue"
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file


@pytest.fixture()
def make_crate() -> Callable[..., Path]:
    """Write a minimal crate (Cargo.toml + Cargo.lock) under a project root."""

    def _make(root: Path, name: str, version: str = "0.1.0", lock: str = "# lock\n") -> Path:
        crate = root / name
        crate.mkdir(parents=True, exist_ok=True)
        (crate / "Cargo.toml").write_text(
            f'[package]\nname = "{name.replace("/", "-")}"\nversion = "{version}"\n',
            encoding="utf-8",
        )
        (crate / "Cargo.lock").write_text(lock, encoding="utf-8")
        return crate

    return _make


@pytest.fixture()
def lock_file(tmp_path: Path) -> Path:
    path = tmp_path / "releases" / "digests.lock.env"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        textwrap.dedent(f"""\
            # toolchains
            RUST_DIGEST__X86_64_UNKNOWN_LINUX_GNU={DIGEST_X86}
            export RUST_DIGEST__AARCH64_UNKNOWN_LINUX_GNU="{DIGEST_ARM}"
        """),
        encoding="utf-8",
    )
    return path


def _record(package: str, triple: str, binary: str, rel: str, sha: str, **overrides) -> dict:
    entry = {
        "package": package,
        "target": triple,
        "bin": binary,
        "bin_path": rel,
        "sha256": sha,
        "crate": package,
        "version": "1.0.0",
        "crate_lock_sha256": "a" * 64,
        "rust_digest": DIGEST_X86,
    }
    entry.update(overrides)
    return entry


@pytest.fixture()
def make_run() -> Callable[..., Path]:
    """
    Write a run directory with a manifest.

    `artifacts` maps (package, triple, binary_name) to file bytes. `overrides`
    maps a key to manifest field overrides for that record.
    """

    def _make(
        run_dir: Path,
        artifacts: dict[tuple[str, str, str], bytes],
        overrides: dict[tuple[str, str, str], dict] | None = None,
        run_id: str = "1",
    ) -> Path:
        run_dir.mkdir(parents=True, exist_ok=True)
        entries = []
        for (package, triple, binary), content in sorted(artifacts.items()):
            rel = f"artifacts/{triple}/{binary}"
            path = run_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            entries.append(
                _record(
                    package,
                    triple,
                    binary,
                    rel,
                    compute_sha256(path),
                    **(overrides or {}).get((package, triple, binary), {}),
                )
            )
        manifest = {
            "build": {
                "target": "all",
                "profile": "all",
                "run_id": run_id,
                "timestamp": "2026-01-01T00:00:00Z",
            },
            "artifacts": entries,
        }
        (run_dir / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        return run_dir

    return _make
