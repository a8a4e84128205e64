# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Opt-in diagnostic output for canonicalization and bundling.

When enabled, tool invocations and tree statistics are written under
`<run>/diagnostics/<triple>/`. When disabled, every method is a no-op and
nothing is written. A normal run leaves no trace beyond its manifest and
artifacts.
"""

import json
from dataclasses import asdict
from pathlib import Path

from reprobuild.canonical.tree import tree_stats
from reprobuild.utils.filesystem import atomic_write
from reprobuild.utils.process import CommandResult

DIAGNOSTICS_DIRNAME = "diagnostics"


class Diagnostics:
    """Sink for per-triple diagnostic files. Pass `None` to disable."""

    def __init__(self, run_dir: Path | None) -> None:
        self._root = run_dir / DIAGNOSTICS_DIRNAME if run_dir is not None else None

    @classmethod
    def disabled(cls) -> "Diagnostics":
        return cls(None)

    @property
    def enabled(self) -> bool:
        return self._root is not None

    def _path(self, triple: str, filename: str) -> Path | None:
        if self._root is None:
            return None
        return self._root / triple / filename

    def record_command(self, triple: str, label: str, result: CommandResult) -> None:
        path = self._path(triple, f"{label}.log")
        if path is None:
            return
        text = (
            f"argv: {' '.join(result.argv)}\n"
            f"exit_code: {result.exit_code}\n"
            f"elapsed_seconds: {result.elapsed_seconds:.3f}\n"
            f"--- stdout ---\n{result.stdout}\n"
            f"--- stderr ---\n{result.stderr}\n"
        )
        atomic_write(path, text)

    def record_tree(self, triple: str, label: str, root: Path) -> None:
        path = self._path(triple, f"tree-{label}.json")
        if path is None or not root.exists():
            return
        stats = asdict(tree_stats(root))
        stats["root"] = str(root)
        atomic_write(path, json.dumps(stats, indent=2, sort_keys=True) + "\n")
