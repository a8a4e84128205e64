# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Scoped handle for the shared container builder.

One builder instance is shared by every build step in a run. It is created
when the run starts and removed when the run ends, on every exit path. The
handle is an explicit object passed into each step, never a module global,
so a step cannot run without a live builder.

    with ContainerBuilder(runner, name="secluso-builds", image=...) as builder:
        executor.run(plan, builder)

A builder left over from a crashed run with the same name is removed before
the new one is created.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from reprobuild.build.errors import BuildError, ToolchainInvocationError
from reprobuild.logging.logger import get_logger
from reprobuild.utils.process import CommandResult, CommandRunner

_logger: logging.Logger = get_logger(__name__)


class ContainerBuilder:
    """
    A buildx builder instance scoped to one run.

    The handle is only usable between __enter__ and __exit__. `build` outside
    that window raises BuildError.
    """

    def __init__(self, runner: CommandRunner, name: str, image: str) -> None:
        self._runner = runner
        self.name = name
        self.image = image
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def __enter__(self) -> "ContainerBuilder":
        self._remove(quiet=True)
        result = self._runner.run(
            [
                "docker",
                "buildx",
                "create",
                "--name",
                self.name,
                "--driver",
                "docker-container",
                "--driver-opt",
                f"image={self.image}",
                "--use",
            ]
        )
        if not result.success:
            raise ToolchainInvocationError(
                "docker buildx create", result.exit_code, f"builder {self.name}", result.output
            )
        self._active = True
        _logger.info("Container builder acquired", extra={"builder": self.name, "image": self.image})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._active = False
        self._remove(quiet=False)

    def _remove(self, quiet: bool) -> None:
        result = self._runner.run(["docker", "buildx", "rm", "-f", self.name])
        if not quiet:
            if result.success:
                _logger.info("Container builder released", extra={"builder": self.name})
            else:
                _logger.warning(
                    "Container builder removal failed",
                    extra={"builder": self.name, "exit_code": result.exit_code},
                )

    def build(
        self,
        context_dir: Path,
        output_dir: Path,
        build_args: dict[str, str],
        build_contexts: dict[str, Path] | None = None,
        target: str | None = None,
        dockerfile: Path | None = None,
        platform: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> CommandResult:
        """
        Run one `docker buildx build` on this builder, exporting to a local dir.

        Build args are emitted in sorted key order, so two runs with the same
        inputs pass byte-identical argv lists. The caller decides what a
        non-zero exit means. This method only raises when the handle isn't
        active.
        """
        if not self._active:
            raise BuildError(f"Container builder '{self.name}' used outside its scope")

        argv: list[str] = ["docker", "buildx", "build", "--builder", self.name, "--no-cache"]
        if dockerfile is not None:
            argv += ["-f", str(dockerfile)]
        if target is not None:
            argv += ["--target", target]
        if platform is not None:
            argv += ["--platform", platform]
        for context_name, context_path in sorted((build_contexts or {}).items()):
            argv += ["--build-context", f"{context_name}={context_path}"]
        for key in sorted(build_args):
            argv += ["--build-arg", f"{key}={build_args[key]}"]
        argv += list(extra_args)
        argv += ["--output", f"type=local,dest={output_dir}", str(context_dir)]

        output_dir.mkdir(parents=True, exist_ok=True)
        return self._runner.run(argv)
